"""
Route-level enforcement of authorization policies.

Every check enforces:
- Caller must be authenticated (401 if not)
- Caller must satisfy the resolved policy (403 if not)
"""
from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, Request

from ..dependencies import get_current_principal, get_policy_provider
from ..errors import PermissionError
from .policies import (
    HAS_ACCESS_POLICY,
    SUPER_USER_POLICY,
    EndpointPolicy,
    Policy,
    StaticPolicy,
    parse_policy_name,
)
from .policy_provider import DynamicPolicyProvider
from .principal import Principal

logger = logging.getLogger(__name__)


async def _enforce(
    request: Request,
    policy: Policy,
    principal: Principal,
    provider: DynamicPolicyProvider,
) -> Principal:
    resolved = await provider.resolve(policy)
    if not resolved.evaluate(principal):
        logger.warning(
            "Access denied: user=%s roles=[%s] policy=%s method=%s path=%s",
            principal.name,
            ", ".join(sorted(principal.roles)),
            resolved.name,
            request.method,
            request.url.path,
        )
        raise PermissionError(f"Access denied by policy {resolved.name}")

    logger.debug("Access granted: user=%s policy=%s", principal.name, resolved.name)
    return principal


def require_policy(policy: Policy | str) -> Callable:
    """
    Enforce a policy declared at route registration.

    Args:
        policy: A StaticPolicy, an EndpointPolicy, or a policy name to parse once

    Returns:
        Dependency returning the authorized Principal
    """
    declared = parse_policy_name(policy) if isinstance(policy, str) else policy

    async def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        provider: DynamicPolicyProvider = Depends(get_policy_provider),
    ) -> Principal:
        return await _enforce(request, declared, principal, provider)

    return dependency


def require_endpoint_access() -> Callable:
    """
    Enforce the role grants registered for the matched route.

    The policy is built from the request method and the route template
    (``/api/documents/{id}``), never from the resolved path.

    Returns:
        Dependency returning the authorized Principal
    """

    async def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        provider: DynamicPolicyProvider = Depends(get_policy_provider),
    ) -> Principal:
        route = request.scope.get("route")
        template = getattr(route, "path_format", None) or getattr(route, "path", None)
        if template is None:
            raise PermissionError("Route template could not be determined")
        policy = EndpointPolicy(http_method=request.method, route=template)
        return await _enforce(request, policy, principal, provider)

    return dependency


require_has_access = require_policy(StaticPolicy(HAS_ACCESS_POLICY))
require_super_user = require_policy(StaticPolicy(SUPER_USER_POLICY))
