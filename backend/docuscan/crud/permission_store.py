"""Durable storage for the endpoint registry, role grants and their audit trail.

Every mutation runs as one unit of work: the row changes and the audit row
are committed together or rolled back together.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ConflictError, NotFoundError
from ..models.base import utcnow
from ..models.endpoint import Endpoint
from ..models.endpoint_role_permission import EndpointRolePermission
from ..models.permission_change_audit_log import ChangeType, PermissionChangeAuditLog

logger = logging.getLogger(__name__)


def format_roles(roles: Iterable[str]) -> str:
    return ", ".join(sorted(roles))


def format_metadata(name: str, description: str | None, category: str | None) -> str:
    return f"Name: {name}, Desc: {description or ''}, Cat: {category or ''}"


class PermissionStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[None]:
        try:
            yield
            await self.session.commit()
        except BaseException:
            await self.session.rollback()
            raise

    def _audit(
        self,
        *,
        endpoint_id: int | None,
        changed_by: str,
        change_type: str,
        old_value: str | None,
        new_value: str | None,
        reason: str | None,
    ) -> PermissionChangeAuditLog:
        entry = PermissionChangeAuditLog(
            endpoint_id=endpoint_id,
            changed_by=changed_by,
            change_type=change_type,
            old_value=old_value,
            new_value=new_value,
            change_reason=reason,
            changed_on=utcnow(),
        )
        self.session.add(entry)
        return entry

    async def _require_endpoint(self, endpoint_id: int) -> Endpoint:
        endpoint = await self.get_endpoint(endpoint_id)
        if endpoint is None:
            raise NotFoundError(f"Endpoint with ID {endpoint_id} not found")
        return endpoint

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_allowed_roles(self, http_method: str, route: str) -> set[str]:
        """Return the roles granted on an active endpoint.

        Matching is exact on both method and route template. An unknown or
        inactive endpoint yields an empty set, not an error.
        """
        result = await self.session.execute(
            select(EndpointRolePermission.role_name)
            .join(Endpoint, Endpoint.id == EndpointRolePermission.endpoint_id)
            .where(
                Endpoint.http_method == http_method,
                Endpoint.route == route,
                Endpoint.is_active.is_(True),
            )
            .distinct()
        )
        return set(result.scalars().all())

    async def get_endpoint(self, endpoint_id: int) -> Endpoint | None:
        result = await self.session.execute(
            select(Endpoint).where(Endpoint.id == endpoint_id)
        )
        return result.scalar_one_or_none()

    async def endpoint_exists(self, endpoint_id: int) -> bool:
        result = await self.session.execute(
            select(Endpoint.id).where(Endpoint.id == endpoint_id)
        )
        return result.scalar_one_or_none() is not None

    async def get_endpoint_by_route(self, http_method: str, route: str) -> Endpoint | None:
        result = await self.session.execute(
            select(Endpoint).where(
                Endpoint.http_method == http_method, Endpoint.route == route
            )
        )
        return result.scalar_one_or_none()

    async def list_endpoints(self, include_inactive: bool = False) -> list[Endpoint]:
        query = select(Endpoint)
        if not include_inactive:
            query = query.where(Endpoint.is_active.is_(True))
        query = query.order_by(Endpoint.category, Endpoint.route, Endpoint.http_method)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_endpoint_roles(self, endpoint_id: int) -> list[str]:
        result = await self.session.execute(
            select(EndpointRolePermission.role_name)
            .where(EndpointRolePermission.endpoint_id == endpoint_id)
            .order_by(EndpointRolePermission.role_name)
        )
        return list(result.scalars().all())

    async def list_role_names(self) -> list[str]:
        result = await self.session.execute(
            select(EndpointRolePermission.role_name)
            .distinct()
            .order_by(EndpointRolePermission.role_name)
        )
        return list(result.scalars().all())

    async def list_audit_log(
        self,
        endpoint_id: int | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[PermissionChangeAuditLog]:
        query = select(PermissionChangeAuditLog)

        conditions = []
        if endpoint_id is not None:
            conditions.append(PermissionChangeAuditLog.endpoint_id == endpoint_id)
        if from_date is not None:
            conditions.append(PermissionChangeAuditLog.changed_on >= from_date)
        if to_date is not None:
            conditions.append(PermissionChangeAuditLog.changed_on <= to_date)

        if conditions:
            query = query.where(and_(*conditions))

        # Rows written earlier in this session still need their endpoint joined in.
        query = query.order_by(
            PermissionChangeAuditLog.changed_on.desc(),
            PermissionChangeAuditLog.id.desc(),
        ).execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return list(result.unique().scalars().all())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def replace_role_permissions(
        self,
        endpoint_id: int,
        new_roles: Iterable[str],
        changed_by: str,
        reason: str | None = None,
    ) -> None:
        """Replace the whole role set of an endpoint and audit the change.

        Raises:
            NotFoundError: If the endpoint does not exist
        """
        roles = list(new_roles)
        async with self._unit_of_work():
            endpoint = await self._require_endpoint(endpoint_id)
            old_roles = [permission.role_name for permission in endpoint.role_permissions]

            # Deletes must reach the database before the inserts, otherwise a
            # role kept across the update collides with its own unique key.
            endpoint.role_permissions.clear()
            await self.session.flush()

            for role_name in roles:
                endpoint.role_permissions.append(
                    EndpointRolePermission(role_name=role_name, created_by=changed_by)
                )
            endpoint.modified_on = utcnow()

            self._audit(
                endpoint_id=endpoint_id,
                changed_by=changed_by,
                change_type=ChangeType.ROLE_PERMISSION_UPDATE,
                old_value=format_roles(old_roles),
                new_value=format_roles(roles),
                reason=reason,
            )

        logger.info(
            "Endpoint %s (%s %s) permissions updated by %s. Old: [%s], New: [%s]",
            endpoint_id,
            endpoint.http_method,
            endpoint.route,
            changed_by,
            format_roles(old_roles),
            format_roles(roles),
        )

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
        allowed_roles: Iterable[str] = (),
        reason: str = "New endpoint registered",
    ) -> Endpoint:
        """Register a new endpoint with its initial role grants.

        Raises:
            ConflictError: If the (method, route) pair is already registered
        """
        roles = list(allowed_roles)
        try:
            async with self._unit_of_work():
                existing = await self.get_endpoint_by_route(http_method, route)
                if existing is not None:
                    raise ConflictError(f"Endpoint {http_method} {route} already exists")

                endpoint = Endpoint(
                    http_method=http_method,
                    route=route,
                    endpoint_name=endpoint_name,
                    description=description,
                    category=category,
                    is_active=is_active,
                    created_on=utcnow(),
                    role_permissions=[
                        EndpointRolePermission(role_name=role_name, created_by=created_by)
                        for role_name in roles
                    ],
                )
                self.session.add(endpoint)
                await self.session.flush()

                self._audit(
                    endpoint_id=endpoint.id,
                    changed_by=created_by,
                    change_type=ChangeType.ENDPOINT_CREATED,
                    old_value=None,
                    new_value=format_roles(roles),
                    reason=reason,
                )
        except IntegrityError as exc:
            raise ConflictError(
                f"Endpoint {http_method} {route} already exists", details=str(exc.orig)
            ) from exc

        logger.info(
            "Endpoint created: %s %s with roles [%s] by %s",
            http_method,
            route,
            format_roles(roles),
            created_by,
        )
        return endpoint

    async def update_endpoint_metadata(
        self,
        endpoint_id: int,
        *,
        endpoint_name: str,
        description: str | None,
        category: str | None,
        modified_by: str,
        reason: str = "Metadata update",
    ) -> Endpoint:
        async with self._unit_of_work():
            endpoint = await self._require_endpoint(endpoint_id)
            old_value = format_metadata(
                endpoint.endpoint_name, endpoint.description, endpoint.category
            )

            endpoint.endpoint_name = endpoint_name
            endpoint.description = description
            endpoint.category = category
            endpoint.modified_on = utcnow()

            self._audit(
                endpoint_id=endpoint_id,
                changed_by=modified_by,
                change_type=ChangeType.ENDPOINT_METADATA_UPDATE,
                old_value=old_value,
                new_value=format_metadata(endpoint_name, description, category),
                reason=reason,
            )

        logger.info(
            "Endpoint %s (%s) metadata updated by %s", endpoint_id, endpoint.route, modified_by
        )
        return endpoint

    async def _set_active(
        self,
        endpoint_id: int,
        is_active: bool,
        changed_by: str,
        reason: str | None,
    ) -> Endpoint:
        change_type = (
            ChangeType.ENDPOINT_REACTIVATED if is_active else ChangeType.ENDPOINT_DEACTIVATED
        )
        async with self._unit_of_work():
            endpoint = await self._require_endpoint(endpoint_id)
            old_state = endpoint.is_active
            endpoint.is_active = is_active
            endpoint.modified_on = utcnow()

            self._audit(
                endpoint_id=endpoint_id,
                changed_by=changed_by,
                change_type=change_type,
                old_value=f"Active: {str(old_state).lower()}",
                new_value=f"Active: {str(is_active).lower()}",
                reason=reason,
            )
        return endpoint

    async def deactivate_endpoint(
        self, endpoint_id: int, changed_by: str, reason: str | None = None
    ) -> Endpoint:
        endpoint = await self._set_active(endpoint_id, False, changed_by, reason)
        logger.warning(
            "Endpoint %s (%s) deactivated by %s. Reason: %s",
            endpoint_id,
            endpoint.route,
            changed_by,
            reason,
        )
        return endpoint

    async def reactivate_endpoint(
        self, endpoint_id: int, changed_by: str, reason: str | None = None
    ) -> Endpoint:
        endpoint = await self._set_active(endpoint_id, True, changed_by, reason)
        logger.info(
            "Endpoint %s (%s) reactivated by %s. Reason: %s",
            endpoint_id,
            endpoint.route,
            changed_by,
            reason,
        )
        return endpoint
