from backoffice.models.audit_log import AuditLog
from backoffice.models.booking import Booking
from backoffice.models.role_permission import DEFAULT_ROLE_PERMISSIONS, RolePermission
from backoffice.models.service_request import ServiceRequest
from backoffice.models.subscription import SUBSCRIPTION_STATUSES, Subscription
from backoffice.models.user import EntityStatus, User, UserRole

__all__ = [
    "AuditLog",
    "Booking",
    "DEFAULT_ROLE_PERMISSIONS",
    "EntityStatus",
    "RolePermission",
    "SUBSCRIPTION_STATUSES",
    "ServiceRequest",
    "Subscription",
    "User",
    "UserRole",
]
