from enum import Enum

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.db.base import Base, JSONType, TimestampMixin, UUIDMixin


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    CUSTOMER = "CUSTOMER"


class EntityStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"


class User(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.CUSTOMER.value, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=EntityStatus.ACTIVE.value, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True)

    # Permissions granted directly to this user, on top of the role defaults
    permissions: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
