"""
Audit log model.

One row per audited action. Bulk operations write START/COMPLETED/CANCELLED/ERROR
rows plus rate-limit checks, cancellations and rollback requests.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.db.base import Base, JSONType, UUIDMixin


class AuditLog(Base, UUIDMixin):
    __tablename__ = "audit_logs"

    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    changes: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    # "metadata" is reserved on declarative classes
    request_metadata: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    severity: Mapped[str] = mapped_column(String(10), default="low", nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_audit_logs_created_at_desc", created_at.desc()),
    )
