"""
Role permissions configuration.

Stores customizable bulk-operation permissions for each role (ADMIN, STAFF, CUSTOMER).
"""

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.db.base import Base


class RolePermission(Base):
    """Configurable permission for a role."""

    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role", "permission", name="uq_role_permission"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    role: Mapped[str] = mapped_column(String(50), index=True)  # ADMIN, STAFF, CUSTOMER
    permission: Mapped[str] = mapped_column(String(100))  # permission name
    granted: Mapped[bool] = mapped_column(Boolean, default=False)


# Default permissions by role. Large deletes are never granted by role;
# they have to be given to an individual user.
DEFAULT_ROLE_PERMISSIONS = {
    "ADMIN": {
        "BULK_ALL": True,
        "CRITICAL_BULK_OPERATIONS": True,
        "BULK_DELETE_LARGE": False,
        "CANCEL_ANY_BULK_OPERATION": True,
        "VIEW_ALL_BULK_OPERATIONS": True,
    },
    "STAFF": {
        "BULK_ALL": False,
        "BULK_UPDATE_BOOKING": True,
        "BULK_UPDATE_SERVICEREQUEST": True,
        "BULK_ACTIVATE_SUBSCRIPTION": True,
        "BULK_DEACTIVATE_SUBSCRIPTION": True,
        "CRITICAL_BULK_OPERATIONS": False,
        "BULK_DELETE_LARGE": False,
        "CANCEL_ANY_BULK_OPERATION": False,
        "VIEW_ALL_BULK_OPERATIONS": False,
    },
    "CUSTOMER": {},
}
