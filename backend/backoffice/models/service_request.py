import uuid

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.db.base import Base, TimestampMixin, UUIDMixin
from backoffice.models.user import EntityStatus


class ServiceRequest(Base, UUIDMixin, TimestampMixin):
    """An ad-hoc customer request (repair, cleaning, etc.)."""

    __tablename__ = "service_requests"

    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=EntityStatus.ACTIVE.value, nullable=False)
