"""
Endpoint authorization API.

Administrators manage the endpoint registry and its role grants here:
- Registry reads and lifecycle changes (SuperUser)
- Role assignment with validation and audit (SuperUser)
- Access self-check for UI menus (HasAccess)
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status

from ..auth.enforcement import require_has_access, require_super_user
from ..auth.principal import Principal
from ..auth.resolver import EndpointAuthorizationResolver
from ..dependencies import get_management_service, get_resolver
from ..schemas.endpoint_authorization import (
    AccessCheckResponse,
    AuditLogEntryResponse,
    EndpointCreate,
    EndpointLifecycleRequest,
    EndpointResponse,
    EndpointRolesResponse,
    EndpointUpdate,
    MessageResponse,
    UpdateRolesRequest,
    ValidatePermissionsRequest,
    ValidationResultResponse,
)
from ..services.endpoint_management import EndpointManagementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/endpoint-authorization", tags=["endpoint-authorization"])


def _actor(principal: Principal) -> str:
    return principal.name or "unknown"


@router.get("/check", response_model=AccessCheckResponse)
async def check_access(
    method: str = Query(..., min_length=1),
    route: str = Query(..., min_length=1),
    principal: Principal = Depends(require_has_access),
    resolver: EndpointAuthorizationResolver = Depends(get_resolver),
):
    """
    Report whether the caller may call one endpoint.

    Never fails: any internal error is reported as hasAccess=false with the
    error text, so UI code can check many endpoints at once.
    """
    user_roles = sorted(principal.roles)
    try:
        allowed = await resolver.get_allowed_roles(method, route)
    except Exception as exc:
        logger.exception("Access check failed for %s %s", method, route)
        return AccessCheckResponse(has_access=False, user_roles=user_roles, error=str(exc))

    if not allowed:
        return AccessCheckResponse(
            has_access=False,
            user_roles=user_roles,
            error=f"No roles configured for endpoint {method} {route}",
        )
    return AccessCheckResponse(
        has_access=not allowed.isdisjoint(principal.roles),
        allowed_roles=sorted(allowed),
        user_roles=user_roles,
    )


@router.get("/endpoints", response_model=list[EndpointResponse])
async def list_endpoints(
    include_inactive: bool = Query(False, alias="includeInactive"),
    _: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    return await service.list_endpoints(include_inactive=include_inactive)


@router.post(
    "/endpoints", response_model=EndpointResponse, status_code=status.HTTP_201_CREATED
)
async def create_endpoint(
    payload: EndpointCreate,
    principal: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    return await service.create_endpoint(
        http_method=payload.http_method,
        route=payload.route,
        endpoint_name=payload.endpoint_name,
        description=payload.description,
        category=payload.category,
        is_active=payload.is_active,
        allowed_roles=payload.allowed_roles,
        created_by=_actor(principal),
    )


@router.get("/endpoints/by-route", response_model=EndpointResponse)
async def get_endpoint_by_route(
    method: str = Query(..., min_length=1),
    route: str = Query(..., min_length=1),
    _: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    return await service.get_endpoint_by_route(method, route)


@router.get("/endpoints/{endpoint_id}", response_model=EndpointResponse)
async def get_endpoint(
    endpoint_id: int,
    _: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    return await service.get_endpoint(endpoint_id)


@router.put("/endpoints/{endpoint_id}", response_model=EndpointResponse)
async def update_endpoint(
    endpoint_id: int,
    payload: EndpointUpdate,
    principal: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    return await service.update_endpoint_metadata(
        endpoint_id,
        endpoint_name=payload.endpoint_name,
        description=payload.description,
        category=payload.category,
        modified_by=_actor(principal),
    )


@router.post("/endpoints/{endpoint_id}/deactivate", response_model=EndpointResponse)
async def deactivate_endpoint(
    endpoint_id: int,
    payload: EndpointLifecycleRequest,
    principal: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    return await service.deactivate_endpoint(endpoint_id, _actor(principal), payload.reason)


@router.post("/endpoints/{endpoint_id}/reactivate", response_model=EndpointResponse)
async def reactivate_endpoint(
    endpoint_id: int,
    payload: EndpointLifecycleRequest,
    principal: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    return await service.reactivate_endpoint(endpoint_id, _actor(principal), payload.reason)


@router.get("/endpoints/{endpoint_id}/roles", response_model=EndpointRolesResponse)
async def get_endpoint_roles(
    endpoint_id: int,
    _: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    roles = await service.get_endpoint_roles(endpoint_id)
    return EndpointRolesResponse(endpoint_id=endpoint_id, role_names=roles)


@router.post("/endpoints/{endpoint_id}/roles", response_model=MessageResponse)
async def update_endpoint_roles(
    endpoint_id: int,
    payload: UpdateRolesRequest,
    principal: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    """
    Replace the role set of an endpoint.

    Returns 400 with every validation message when the set is rejected,
    404 when the endpoint does not exist.
    """
    await service.update_roles(
        endpoint_id,
        payload.role_names,
        changed_by=_actor(principal),
        reason=payload.change_reason,
    )
    return MessageResponse(message="Roles updated successfully")


@router.get("/roles", response_model=list[str])
async def list_roles(
    _: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    return await service.get_available_roles()


@router.get("/audit", response_model=list[AuditLogEntryResponse])
async def get_audit_log(
    endpoint_id: int | None = Query(None, alias="endpointId"),
    from_date: datetime | None = Query(None, alias="fromDate"),
    to_date: datetime | None = Query(None, alias="toDate"),
    _: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    entries = await service.get_audit_log(
        endpoint_id=endpoint_id, from_date=from_date, to_date=to_date
    )
    return [AuditLogEntryResponse.from_entry(entry) for entry in entries]


@router.post("/cache/invalidate", response_model=MessageResponse)
async def invalidate_cache(
    principal: Principal = Depends(require_super_user),
    resolver: EndpointAuthorizationResolver = Depends(get_resolver),
):
    resolver.invalidate_cache()
    logger.info("Authorization cache invalidated by %s", _actor(principal))
    return MessageResponse(message="Cache invalidated successfully")


@router.post("/validate", response_model=ValidationResultResponse)
async def validate_permissions(
    payload: ValidatePermissionsRequest,
    _: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    errors = await service.validate_permission_change(payload.endpoint_id, payload.role_names)
    return ValidationResultResponse(is_valid=not errors, validation_errors=errors)


@router.post("/sync", response_model=list[EndpointResponse])
async def sync_endpoints(
    request: Request,
    principal: Principal = Depends(require_super_user),
    service: EndpointManagementService = Depends(get_management_service),
):
    return await service.sync_endpoints_from_routes(request.app, changed_by=_actor(principal))
