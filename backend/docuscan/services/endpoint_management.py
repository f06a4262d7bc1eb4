"""
Endpoint Management Service - administrator operations over the endpoint registry.

Every mutation follows the same order: validate, commit through the
permission store (row change and audit row in one transaction), then clear
the authorization cache. The cache is only cleared after the commit, so a
concurrent reader cannot re-cache the old role set after the clear.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Sequence
from datetime import datetime
from typing import TypeVar

from fastapi import FastAPI
from fastapi.routing import APIRoute
from sqlalchemy.exc import SQLAlchemyError

from ..auth.resolver import EndpointAuthorizationResolver
from ..crud.permission_store import PermissionStore
from ..errors import NotFoundError, StoreUnavailableError, ValidationError
from ..models.endpoint import Endpoint
from ..models.permission_change_audit_log import PermissionChangeAuditLog

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ROLE_NAME_LENGTH = 50
API_ROUTE_PREFIX = "/api"
SYNC_REASON = "Discovered from application routes"
IGNORED_SYNC_METHODS = frozenset({"HEAD", "OPTIONS"})


class EndpointManagementService:
    """
    Administrator-facing orchestration of the permission store.

    Args:
        store: Permission store bound to the request's database session
        resolver: Resolver whose cache is cleared after each committed change
        timeout_seconds: Upper bound for each store mutation
    """

    def __init__(
        self,
        store: PermissionStore,
        resolver: EndpointAuthorizationResolver,
        timeout_seconds: float = 30.0,
    ):
        self.store = store
        self.resolver = resolver
        self.timeout_seconds = timeout_seconds

    async def _write(self, operation: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.error("Permission store write timed out after %ss", self.timeout_seconds)
            raise StoreUnavailableError("Permission store timed out") from exc
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Permission store write failed: %s", exc)
            raise StoreUnavailableError(details=str(exc)) from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_endpoints(self, include_inactive: bool = False) -> list[Endpoint]:
        return await self.store.list_endpoints(include_inactive=include_inactive)

    async def get_endpoint(self, endpoint_id: int) -> Endpoint:
        endpoint = await self.store.get_endpoint(endpoint_id)
        if endpoint is None:
            raise NotFoundError(f"Endpoint with ID {endpoint_id} not found")
        return endpoint

    async def get_endpoint_by_route(self, http_method: str, route: str) -> Endpoint:
        endpoint = await self.store.get_endpoint_by_route(http_method, route)
        if endpoint is None:
            raise NotFoundError(f"Endpoint {http_method} {route} not found")
        return endpoint

    async def get_endpoint_roles(self, endpoint_id: int) -> list[str]:
        if not await self.store.endpoint_exists(endpoint_id):
            raise NotFoundError(f"Endpoint with ID {endpoint_id} not found")
        return await self.store.get_endpoint_roles(endpoint_id)

    async def get_available_roles(self) -> list[str]:
        return await self.store.list_role_names()

    async def get_audit_log(
        self,
        endpoint_id: int | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[PermissionChangeAuditLog]:
        return await self.store.list_audit_log(
            endpoint_id=endpoint_id, from_date=from_date, to_date=to_date
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate_permission_change(
        self, endpoint_id: int, role_names: Sequence[str]
    ) -> list[str]:
        """
        Check a proposed role set without changing anything.

        Every rule is evaluated, so the result lists all problems at once.

        Args:
            endpoint_id: Endpoint the roles would be assigned to
            role_names: Proposed complete role set

        Returns:
            Validation messages, empty when the change is acceptable
        """
        errors: list[str] = []

        if not role_names:
            errors.append("At least one role must be assigned to the endpoint")

        errors.extend(self._role_name_errors(role_names))

        if not await self.store.endpoint_exists(endpoint_id):
            errors.append(f"Endpoint with ID {endpoint_id} does not exist")

        return errors

    @staticmethod
    def _role_name_errors(role_names: Sequence[str]) -> list[str]:
        errors: list[str] = []

        if any(not role or not role.strip() for role in role_names):
            errors.append("Role names cannot be empty or whitespace")

        for role in role_names:
            if role and len(role) > MAX_ROLE_NAME_LENGTH:
                errors.append(
                    f"Role name '{role}' exceeds maximum length of "
                    f"{MAX_ROLE_NAME_LENGTH} characters"
                )

        counts = Counter(role for role in role_names if role and role.strip())
        duplicates = sorted(role for role, count in counts.items() if count > 1)
        if duplicates:
            errors.append(f"Duplicate roles detected: {', '.join(duplicates)}")

        return errors

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def update_roles(
        self,
        endpoint_id: int,
        role_names: Sequence[str],
        changed_by: str,
        reason: str | None = None,
    ) -> None:
        """
        Replace the role set of an endpoint.

        Raises:
            NotFoundError: If the endpoint does not exist
            ValidationError: If any rule fails; details carry every message
            StoreUnavailableError: If the store fails or times out
        """
        if not await self.store.endpoint_exists(endpoint_id):
            raise NotFoundError(f"Endpoint with ID {endpoint_id} not found")

        errors = await self.validate_permission_change(endpoint_id, role_names)
        if errors:
            logger.warning(
                "Rejected role update for endpoint %s by %s: %s",
                endpoint_id,
                changed_by,
                "; ".join(errors),
            )
            raise ValidationError("Role update failed validation", details=errors)

        await self._write(
            self.store.replace_role_permissions(
                endpoint_id, list(role_names), changed_by, reason
            )
        )
        self.resolver.invalidate_cache()

    async def create_endpoint(
        self,
        *,
        http_method: str,
        route: str,
        endpoint_name: str,
        created_by: str,
        description: str | None = None,
        category: str | None = None,
        is_active: bool = True,
        allowed_roles: Sequence[str] = (),
    ) -> Endpoint:
        """
        Register an endpoint, optionally with its initial role grants.

        An empty role list is allowed; the endpoint then stays closed until
        roles are assigned.

        Raises:
            ValidationError: If an initial role name is blank, too long or repeated
            ConflictError: If the method and route are already registered
        """
        errors = self._role_name_errors(allowed_roles)
        if errors:
            logger.warning(
                "Rejected registration of %s %s by %s: %s",
                http_method,
                route,
                created_by,
                "; ".join(errors),
            )
            raise ValidationError("Endpoint registration failed validation", details=errors)

        endpoint = await self._write(
            self.store.create_endpoint(
                http_method=http_method,
                route=route,
                endpoint_name=endpoint_name,
                created_by=created_by,
                description=description,
                category=category,
                is_active=is_active,
                allowed_roles=allowed_roles,
            )
        )
        self.resolver.invalidate_cache()
        return endpoint

    async def update_endpoint_metadata(
        self,
        endpoint_id: int,
        *,
        endpoint_name: str,
        description: str | None,
        category: str | None,
        modified_by: str,
    ) -> Endpoint:
        endpoint = await self._write(
            self.store.update_endpoint_metadata(
                endpoint_id,
                endpoint_name=endpoint_name,
                description=description,
                category=category,
                modified_by=modified_by,
            )
        )
        self.resolver.invalidate_cache()
        return endpoint

    async def deactivate_endpoint(
        self, endpoint_id: int, changed_by: str, reason: str | None = None
    ) -> Endpoint:
        endpoint = await self._write(
            self.store.deactivate_endpoint(endpoint_id, changed_by, reason)
        )
        self.resolver.invalidate_cache()
        return endpoint

    async def reactivate_endpoint(
        self, endpoint_id: int, changed_by: str, reason: str | None = None
    ) -> Endpoint:
        endpoint = await self._write(
            self.store.reactivate_endpoint(endpoint_id, changed_by, reason)
        )
        self.resolver.invalidate_cache()
        return endpoint

    async def sync_endpoints_from_routes(self, app: FastAPI, changed_by: str) -> list[Endpoint]:
        """
        Register every API route of the application that is not yet known.

        New rows start with no roles, so they stay closed until an
        administrator grants access.

        Returns:
            The endpoints created by this call
        """
        created: list[Endpoint] = []
        for route in app.routes:
            if not isinstance(route, APIRoute):
                continue
            template = route.path_format
            if not template.startswith(API_ROUTE_PREFIX):
                continue
            category = str(route.tags[0]) if route.tags else None
            for http_method in sorted(route.methods - IGNORED_SYNC_METHODS):
                if await self.store.get_endpoint_by_route(http_method, template) is not None:
                    continue
                endpoint = await self._write(
                    self.store.create_endpoint(
                        http_method=http_method,
                        route=template,
                        endpoint_name=route.name,
                        created_by=changed_by,
                        description=route.summary,
                        category=category,
                        reason=SYNC_REASON,
                    )
                )
                created.append(endpoint)

        if created:
            self.resolver.invalidate_cache()
        logger.info(
            "Endpoint sync by %s registered %s new endpoints", changed_by, len(created)
        )
        return created
