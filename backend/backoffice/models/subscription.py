import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.db.base import Base, TimestampMixin, UUIDMixin
from backoffice.models.user import EntityStatus

# Statuses a subscription may be moved to by a bulk update
SUBSCRIPTION_STATUSES = ("ACTIVE", "INACTIVE", "CANCELLED", "SUSPENDED")


class Subscription(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "subscriptions"

    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    plan_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=EntityStatus.ACTIVE.value, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    renews_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
