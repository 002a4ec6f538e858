"""
Audit logging service for tracking operator actions.

Usage:
    from backoffice.services.audit import audit_log
    await audit_log(db, operator_id, "BULK_DELETE_START", "user", "bulk-<id>", {"entityCount": 5})

The bulk engine talks to an ``AuditSink`` instead; ``DatabaseAuditSink``
writes each event in its own short transaction so audit rows survive even
when the surrounding operation fails.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.core.logging import LogHelper
from backoffice.models.audit_log import AuditLog

logger = LogHelper(__name__)

# Audit verbosity: the severity decides how loudly the event is logged
SEVERITY_LOG_LEVELS = {
    "low": logging.DEBUG,
    "medium": logging.INFO,
    "high": logging.WARNING,
}


@dataclass
class AuditEvent:
    """One audited action."""

    actor_id: str | None
    action: str
    entity_type: str
    entity_id: str | None = None
    changes: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    severity: str = "low"


class AuditSink(ABC):
    """Destination for audit events."""

    @abstractmethod
    async def log_action(self, event: AuditEvent) -> None:
        """Persist or forward an audit event."""


def _as_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def audit_log(
    db: AsyncSession,
    actor_id: str | uuid.UUID | None,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    changes: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    severity: str = "low",
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        actor_id: Operator performing the action (None for system actions)
        action: Action name (e.g., "BULK_DELETE_START", "RATE_LIMIT_CHECK")
        entity_type: Type of entity affected (e.g., "user", "system")
        entity_id: ID of the affected entity, or "bulk-<operation id>"
        changes: What changed
        metadata: Request context (ip_address, user_agent, request_id, operation_id)
        severity: low, medium or high

    Returns:
        Created AuditLog entry
    """
    metadata = dict(metadata or {})
    log = AuditLog(
        actor_id=_as_uuid(actor_id),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        changes=changes or None,
        request_metadata=metadata or None,
        severity=severity,
        ip_address=metadata.get("ip_address"),
    )
    db.add(log)
    # Don't commit here - let the caller manage the transaction
    return log


class DatabaseAuditSink(AuditSink):
    """Writes audit events to the audit_logs table and the application log."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def log_action(self, event: AuditEvent) -> None:
        logger.log(
            SEVERITY_LOG_LEVELS.get(event.severity, logging.INFO),
            f"audit: {event.action}",
            actor_id=event.actor_id,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            severity=event.severity,
        )

        async with self._session_maker() as session:
            await audit_log(
                session,
                event.actor_id,
                event.action,
                event.entity_type,
                event.entity_id,
                event.changes,
                event.metadata,
                event.severity,
            )
            await session.commit()
