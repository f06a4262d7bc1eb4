"""Boolean claim gates evaluated independently of endpoint role grants."""
from __future__ import annotations

from typing import Any

from .principal import HAS_ACCESS_CLAIM, IS_SUPER_USER_CLAIM, Principal


def parse_bool_claim(value: Any) -> bool:
    # Only an explicit true counts; anything unparseable is false.
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def has_bool_claim(principal: Principal, claim: str) -> bool:
    if not principal.is_authenticated:
        return False
    return parse_bool_claim(principal.claims.get(claim))


def has_access(principal: Principal) -> bool:
    return has_bool_claim(principal, HAS_ACCESS_CLAIM)


def is_super_user(principal: Principal) -> bool:
    return has_bool_claim(principal, IS_SUPER_USER_CLAIM)
