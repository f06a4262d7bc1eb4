from .base import Base
from .endpoint import Endpoint
from .endpoint_role_permission import EndpointRolePermission
from .permission_change_audit_log import ChangeType, PermissionChangeAuditLog

__all__ = [
    "Base",
    "ChangeType",
    "Endpoint",
    "EndpointRolePermission",
    "PermissionChangeAuditLog",
]
