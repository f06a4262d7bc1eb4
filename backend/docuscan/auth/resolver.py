from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from contextlib import AbstractAsyncContextManager

from sqlalchemy.exc import SQLAlchemyError

from ..crud.permission_store import PermissionStore
from .cache import AuthorizationCache, make_cache_key

logger = logging.getLogger(__name__)

PermissionStoreFactory = Callable[[], AbstractAsyncContextManager[PermissionStore]]


class EndpointAuthorizationResolver:
    """Single decision point for dynamic endpoint authorization.

    Role sets come from the cache, or from a short-lived store session on a
    miss. A store that fails or does not answer within ``timeout_seconds``
    resolves to no roles, which denies the request.
    """

    def __init__(
        self,
        store_factory: PermissionStoreFactory,
        cache: AuthorizationCache,
        timeout_seconds: float = 30.0,
    ):
        self._store_factory = store_factory
        self._cache = cache
        self._timeout_seconds = timeout_seconds

    @property
    def cache(self) -> AuthorizationCache:
        return self._cache

    async def _load_roles(self, http_method: str, route: str) -> set[str]:
        async with self._store_factory() as store:
            return await store.get_allowed_roles(http_method, route)

    async def get_allowed_roles(self, http_method: str, route: str) -> frozenset[str]:
        key = make_cache_key(http_method, route)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached

        logger.debug("Cache miss for %s, loading from store", key)
        generation = self._cache.generation
        try:
            roles = await asyncio.wait_for(
                self._load_roles(http_method, route),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Permission store timed out after %ss for %s %s, denying by default",
                self._timeout_seconds,
                http_method,
                route,
            )
            return frozenset()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning(
                "Permission store unavailable for %s %s, denying by default: %s",
                http_method,
                route,
                exc,
            )
            return frozenset()

        allowed = frozenset(roles)
        self._cache.set(key, allowed, generation=generation)
        logger.info(
            "Loaded roles for %s %s: [%s]",
            http_method,
            route,
            ", ".join(sorted(allowed)),
        )
        return allowed

    async def check_access(
        self,
        http_method: str,
        route: str,
        caller_roles: Iterable[str],
    ) -> bool:
        allowed = await self.get_allowed_roles(http_method, route)
        if not allowed:
            logger.warning(
                "No roles configured for endpoint %s %s, access denied by default",
                http_method,
                route,
            )
            return False
        return not allowed.isdisjoint(caller_roles)

    def invalidate_cache(self) -> None:
        self._cache.invalidate_all()
