from __future__ import annotations

import logging
from collections.abc import Mapping

from .policies import (
    DEFAULT_STATIC_POLICIES,
    EndpointPolicy,
    Policy,
    ResolvedPolicy,
    StaticPolicy,
    parse_policy_name,
)
from .resolver import EndpointAuthorizationResolver

logger = logging.getLogger(__name__)


class UnknownPolicyError(LookupError):
    """Raised when a static policy name has no registered definition."""


class DynamicPolicyProvider:
    """Resolve declared policies, looking up endpoint role grants at request time."""

    def __init__(
        self,
        resolver: EndpointAuthorizationResolver,
        static_policies: Mapping[str, ResolvedPolicy] | None = None,
    ):
        self._resolver = resolver
        self._static_policies = dict(
            DEFAULT_STATIC_POLICIES if static_policies is None else static_policies
        )

    async def resolve(self, policy: Policy | str) -> ResolvedPolicy:
        if isinstance(policy, str):
            policy = parse_policy_name(policy)

        if isinstance(policy, EndpointPolicy):
            roles = await self._resolver.get_allowed_roles(policy.http_method, policy.route)
            if not roles:
                logger.warning(
                    "No roles configured for endpoint %s %s, policy denies all",
                    policy.http_method,
                    policy.route,
                )
                return ResolvedPolicy.denying(policy.name)
            return ResolvedPolicy.requiring_roles(policy.name, roles)

        if isinstance(policy, StaticPolicy):
            resolved = self._static_policies.get(policy.name)
            if resolved is None:
                raise UnknownPolicyError(f"Authorization policy {policy.name!r} is not defined")
            return resolved

        raise TypeError(f"Unsupported policy type: {type(policy).__name__}")
