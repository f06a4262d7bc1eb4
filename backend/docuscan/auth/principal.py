from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

HAS_ACCESS_CLAIM = "HasAccess"
IS_SUPER_USER_CLAIM = "IsSuperUser"
ROLE_CLAIMS = ("roles", "role")


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as seen by the authorization layer."""

    name: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)
    claims: Mapping[str, Any] = field(default_factory=dict)
    is_authenticated: bool = False

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls()


def _collect_roles(claims: Mapping[str, Any]) -> frozenset[str]:
    roles: set[str] = set()
    for claim in ROLE_CLAIMS:
        value = claims.get(claim)
        if isinstance(value, str):
            if value:
                roles.add(value)
        elif isinstance(value, Iterable):
            roles.update(item for item in value if isinstance(item, str) and item)
    return frozenset(roles)


def principal_from_claims(claims: Mapping[str, Any]) -> Principal:
    name = claims.get("name") or claims.get("sub")
    return Principal(
        name=str(name) if name is not None else None,
        roles=_collect_roles(claims),
        claims=dict(claims),
        is_authenticated=True,
    )
