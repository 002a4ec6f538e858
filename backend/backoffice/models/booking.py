import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.db.base import Base, TimestampMixin, UUIDMixin
from backoffice.models.user import EntityStatus


class Booking(Base, UUIDMixin, TimestampMixin):
    """A scheduled household-service visit."""

    __tablename__ = "bookings"

    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=EntityStatus.ACTIVE.value, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
