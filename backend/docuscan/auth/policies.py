"""Authorization policies.

A policy is declared once, when a route is registered, as either a
``StaticPolicy`` (a named claim gate) or an ``EndpointPolicy`` (role grants
looked up in the endpoint registry at request time). The provider turns it
into a ``ResolvedPolicy`` which is evaluated against the caller.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from .claims import has_bool_claim
from .principal import HAS_ACCESS_CLAIM, IS_SUPER_USER_CLAIM, Principal

ENDPOINT_POLICY_PREFIX = "Endpoint:"

HAS_ACCESS_POLICY = "HasAccess"
SUPER_USER_POLICY = "SuperUser"


@dataclass(frozen=True)
class StaticPolicy:
    name: str


@dataclass(frozen=True)
class EndpointPolicy:
    http_method: str
    route: str

    @property
    def name(self) -> str:
        return f"{ENDPOINT_POLICY_PREFIX}{self.http_method}:{self.route}"


Policy = Union[StaticPolicy, EndpointPolicy]


def parse_policy_name(name: str) -> Policy:
    """Build a policy from its string name.

    ``Endpoint:{METHOD}:{ROUTE}`` is split on the first two colons only, so
    the route keeps any colons of its own. Any other name is a static policy.

    Raises:
        ValueError: If an endpoint policy name lacks a method or a route
    """
    if not name.startswith(ENDPOINT_POLICY_PREFIX):
        return StaticPolicy(name)

    parts = name.split(":", 2)
    if len(parts) != 3 or not parts[1] or not parts[2]:
        raise ValueError(f"Malformed endpoint policy name: {name!r}")
    return EndpointPolicy(http_method=parts[1], route=parts[2])


@dataclass(frozen=True)
class ResolvedPolicy:
    name: str
    any_of_roles: frozenset[str] = field(default_factory=frozenset)
    required_claim: str | None = None
    deny_all: bool = False

    @classmethod
    def requiring_roles(cls, name: str, roles: frozenset[str]) -> "ResolvedPolicy":
        if not roles:
            return cls.denying(name)
        return cls(name=name, any_of_roles=roles)

    @classmethod
    def requiring_claim(cls, name: str, claim: str) -> "ResolvedPolicy":
        return cls(name=name, required_claim=claim)

    @classmethod
    def denying(cls, name: str) -> "ResolvedPolicy":
        return cls(name=name, deny_all=True)

    def evaluate(self, principal: Principal) -> bool:
        if self.deny_all or not principal.is_authenticated:
            return False
        if self.required_claim is not None and not has_bool_claim(
            principal, self.required_claim
        ):
            return False
        if self.any_of_roles and self.any_of_roles.isdisjoint(principal.roles):
            return False
        return True


DEFAULT_STATIC_POLICIES: dict[str, ResolvedPolicy] = {
    HAS_ACCESS_POLICY: ResolvedPolicy.requiring_claim(HAS_ACCESS_POLICY, HAS_ACCESS_CLAIM),
    SUPER_USER_POLICY: ResolvedPolicy.requiring_claim(SUPER_USER_POLICY, IS_SUPER_USER_CLAIM),
}
