from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow

if TYPE_CHECKING:
    from .endpoint import Endpoint


class ChangeType:
    ROLE_PERMISSION_UPDATE = "RolePermissionUpdate"
    ENDPOINT_CREATED = "EndpointCreated"
    ENDPOINT_METADATA_UPDATE = "EndpointMetadataUpdate"
    ENDPOINT_DEACTIVATED = "EndpointDeactivated"
    ENDPOINT_REACTIVATED = "EndpointReactivated"


class PermissionChangeAuditLog(Base):
    """Append-only record of one administrative change to the registry."""

    __tablename__ = "permission_change_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    endpoint_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("endpoint_registry.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    changed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    change_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    old_value: Mapped[str | None] = mapped_column(Text)
    new_value: Mapped[str | None] = mapped_column(Text)
    change_reason: Mapped[str | None] = mapped_column(String(500))
    changed_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    endpoint: Mapped["Endpoint | None"] = relationship("Endpoint", lazy="joined")
