from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow

if TYPE_CHECKING:
    from .endpoint import Endpoint


class EndpointRolePermission(Base):
    __tablename__ = "endpoint_role_permissions"
    __table_args__ = (
        UniqueConstraint(
            "endpoint_id",
            "role_name",
            name="uq_endpoint_role_permissions_endpoint_id_role_name",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    endpoint_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("endpoint_registry.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Matched case-sensitively against the caller's role claims
    role_name: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    created_by: Mapped[str | None] = mapped_column(String(255))
    created_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    endpoint: Mapped["Endpoint"] = relationship(
        "Endpoint", back_populates="role_permissions"
    )
