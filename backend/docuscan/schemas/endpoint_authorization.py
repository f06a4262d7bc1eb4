from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from ..models.permission_change_audit_log import PermissionChangeAuditLog

# Stored verbatim and matched case-sensitively against request methods
HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class EndpointBase(CamelModel):
    http_method: str = Field(..., min_length=1, max_length=10)
    route: str = Field(..., min_length=1, max_length=500)
    endpoint_name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=500)
    category: str | None = Field(None, max_length=100)


class EndpointCreate(EndpointBase):
    http_method: HttpMethod
    is_active: bool = True
    allowed_roles: list[str] = Field(default_factory=list)


class EndpointUpdate(CamelModel):
    endpoint_name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=500)
    category: str | None = Field(None, max_length=100)


class EndpointResponse(EndpointBase):
    id: int
    is_active: bool
    created_on: datetime
    modified_on: datetime | None = None
    allowed_roles: list[str] = Field(default_factory=list)


class EndpointRolesResponse(CamelModel):
    endpoint_id: int
    role_names: list[str]


class UpdateRolesRequest(CamelModel):
    role_names: list[str] = Field(default_factory=list)
    change_reason: str | None = Field(None, max_length=500)


class ValidatePermissionsRequest(CamelModel):
    endpoint_id: int
    role_names: list[str] = Field(default_factory=list)


class ValidationResultResponse(CamelModel):
    is_valid: bool
    validation_errors: list[str] = Field(default_factory=list)


class EndpointLifecycleRequest(CamelModel):
    reason: str | None = Field(None, max_length=500)


class AccessCheckResponse(CamelModel):
    has_access: bool
    allowed_roles: list[str] = Field(default_factory=list)
    user_roles: list[str] = Field(default_factory=list)
    error: str | None = None


class AuditLogEntryResponse(CamelModel):
    id: int
    endpoint_id: int | None
    route: str | None = None
    http_method: str | None = None
    endpoint_name: str | None = None
    changed_by: str
    change_type: str
    old_value: str | None = None
    new_value: str | None = None
    change_reason: str | None = None
    changed_on: datetime

    @classmethod
    def from_entry(cls, entry: PermissionChangeAuditLog) -> "AuditLogEntryResponse":
        endpoint = entry.endpoint
        return cls(
            id=entry.id,
            endpoint_id=entry.endpoint_id,
            route=endpoint.route if endpoint is not None else None,
            http_method=endpoint.http_method if endpoint is not None else None,
            endpoint_name=endpoint.endpoint_name if endpoint is not None else None,
            changed_by=entry.changed_by,
            change_type=entry.change_type,
            old_value=entry.old_value,
            new_value=entry.new_value,
            change_reason=entry.change_reason,
            changed_on=entry.changed_on,
        )


class MessageResponse(BaseModel):
    message: str
