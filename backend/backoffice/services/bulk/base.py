"""Core types shared by the bulk operation engine."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class OperationType(str, Enum):
    """Administrative actions a bulk operation can apply."""

    DELETE = "delete"
    UPDATE = "update"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    SUSPEND = "suspend"


class EntityType(str, Enum):
    """Entity types a bulk operation can target."""

    USER = "user"
    SUBSCRIPTION = "subscription"
    BOOKING = "booking"
    SERVICE_REQUEST = "serviceRequest"


class OperationStatus(str, Enum):
    RUNNING = "running"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationStatus.COMPLETED, OperationStatus.CANCELLED, OperationStatus.ERROR)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Operations that always need explicit confirmation and elevated permissions
CRITICAL_OPERATIONS = frozenset({OperationType.DELETE.value, OperationType.SUSPEND.value})


def classify_severity(operation_type: str, count: int) -> Severity:
    """Audit severity for an operation of the given type and item count."""
    if operation_type == OperationType.DELETE.value and count > 100:
        return Severity.HIGH
    if operation_type == OperationType.DELETE.value and count > 10:
        return Severity.MEDIUM
    if count > 500:
        return Severity.MEDIUM
    return Severity.LOW


def bulk_permission(operation_type: str, entity_type: str) -> str:
    """Permission name for a bulk action, e.g. BULK_DELETE_USER."""
    return f"BULK_{operation_type.upper()}_{entity_type.upper()}"


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Operator:
    """The authenticated operator initiating or inspecting bulk operations."""

    id: str
    email: str | None = None
    permissions: frozenset[str] = field(default_factory=frozenset)

    def has(self, permission: str) -> bool:
        return permission in self.permissions

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "email": self.email}


@dataclass(frozen=True)
class AdditionalAuth:
    """Step-up confirmation supplied with critical or large requests."""

    confirmed: bool = False


@dataclass
class BulkRequest:
    """
    A bulk operation as requested by a caller.

    ``type`` and ``entity_type`` stay raw strings until validation so that
    unsupported values are rejected with a specific reason.
    """

    type: str | None
    entity_type: str | None
    entity_ids: list[str] | None
    admin_user: Operator | None
    data: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    additional_auth: AdditionalAuth | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    operation_id: str | None = None


@dataclass
class ErrorEntry:
    """A per-item failure recorded against an operation."""

    entity_id: str
    message: str
    error_code: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "message": self.message,
            "error_code": self.error_code,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class BatchResult:
    """Outcome of running one strategy over one batch."""

    processed: int = 0
    failed: int = 0
    errors: list[ErrorEntry] = field(default_factory=list)
    rollback_data: list[dict[str, Any]] = field(default_factory=list)

    def fail(self, entity_id: str, message: str, error_code: str) -> None:
        self.failed += 1
        self.errors.append(ErrorEntry(entity_id=entity_id, message=message, error_code=error_code))


@dataclass
class OperationResult:
    """Final summary returned to the caller of ``execute``."""

    operation_id: str
    success: bool
    processed: int
    failed: int
    total: int
    errors: list[ErrorEntry]
    duration_ms: int
    status: OperationStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "success": self.success,
            "processed": self.processed,
            "failed": self.failed,
            "total": self.total,
            "errors": [e.to_dict() for e in self.errors],
            "duration_ms": self.duration_ms,
            "status": self.status.value,
        }
