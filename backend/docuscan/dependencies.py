from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .auth.cache import AuthorizationCache
from .auth.policy_provider import DynamicPolicyProvider
from .auth.principal import Principal, principal_from_claims
from .auth.resolver import EndpointAuthorizationResolver, PermissionStoreFactory
from .config import settings
from .crud.permission_store import PermissionStore
from .database import AsyncSessionLocal, get_session
from .errors import AuthError
from .security.token_inspection import ExpiredTokenError, InvalidTokenError, validate_access_token
from .services.endpoint_management import EndpointManagementService

bearer_scheme = HTTPBearer(auto_error=False)

_resolver: EndpointAuthorizationResolver | None = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


def get_permission_store(db: AsyncSession = Depends(get_db)) -> PermissionStore:
    return PermissionStore(db)


def get_permission_store_factory() -> PermissionStoreFactory:
    @asynccontextmanager
    async def factory() -> AsyncIterator[PermissionStore]:
        async with AsyncSessionLocal() as session:
            yield PermissionStore(session)

    return factory


def get_resolver() -> EndpointAuthorizationResolver:
    """Return the process-wide resolver; its cache is shared by every request."""
    global _resolver
    if _resolver is None:
        _resolver = EndpointAuthorizationResolver(
            store_factory=get_permission_store_factory(),
            cache=AuthorizationCache(ttl_seconds=settings.auth_cache_ttl_seconds),
            timeout_seconds=settings.store_timeout_seconds,
        )
    return _resolver


def get_policy_provider(
    resolver: EndpointAuthorizationResolver = Depends(get_resolver),
) -> DynamicPolicyProvider:
    return DynamicPolicyProvider(resolver)


def get_management_service(
    store: PermissionStore = Depends(get_permission_store),
    resolver: EndpointAuthorizationResolver = Depends(get_resolver),
) -> EndpointManagementService:
    return EndpointManagementService(
        store, resolver, timeout_seconds=settings.store_timeout_seconds
    )


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthError("Not authenticated")

    try:
        payload = validate_access_token(credentials.credentials)
    except ExpiredTokenError:
        raise AuthError("Token has expired") from None
    except InvalidTokenError:
        raise AuthError("Invalid token") from None

    return principal_from_claims(payload)
