from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow

if TYPE_CHECKING:
    from .endpoint_role_permission import EndpointRolePermission


class Endpoint(Base):
    """One (HTTP method, route template) pair subject to authorization.

    Endpoints are never hard-deleted; ``is_active`` is the only lifecycle
    switch so audit rows keep pointing at a real row.
    """

    __tablename__ = "endpoint_registry"
    __table_args__ = (
        UniqueConstraint(
            "http_method", "route", name="uq_endpoint_registry_http_method_route"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    http_method: Mapped[str] = mapped_column(String(10), nullable=False)
    route: Mapped[str] = mapped_column(String(500), nullable=False)
    endpoint_name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500))
    category: Mapped[str | None] = mapped_column(String(100), index=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    created_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    modified_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    role_permissions: Mapped[list["EndpointRolePermission"]] = relationship(
        "EndpointRolePermission",
        back_populates="endpoint",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def allowed_roles(self) -> list[str]:
        return sorted({permission.role_name for permission in self.role_permissions})
