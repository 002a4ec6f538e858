"""
Mutation strategies, one per operation type.

Each strategy runs a single batch inside one store session and gives every
item its own transaction. Item-level failures are recorded on the
BatchResult and never abort siblings; a failure of the batch scope itself
(payload rejection, lost connection) marks every item that had not yet
run as failed.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from backoffice.core.exceptions import BulkValidationError
from backoffice.models import SUBSCRIPTION_STATUSES, EntityStatus, UserRole
from backoffice.services.bulk.base import BatchResult, EntityType, OperationType, utcnow
from backoffice.services.bulk.batching import Batch
from backoffice.services.bulk.store import EntitySession, EntityStore

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PROTECTED_FIELDS = ("id", "created_at")
ADMIN_RESTRICTED_FIELDS = ("role", "permissions", "is_active")


class ItemRejectedError(Exception):
    """Raised inside an item transaction to fail that item with a specific code."""

    def __init__(self, message: str, code: str):
        self.code = code
        super().__init__(message)


def _error_code(exc: Exception) -> str:
    code = getattr(exc, "code", None)
    return str(code) if code else "UNKNOWN_ERROR"


class MutationStrategy(ABC):
    operation_type: OperationType

    def prepare(self, entity_type: EntityType, data: dict[str, Any]) -> None:
        """Validate the batch-wide payload. Raising fails the whole batch."""

    @abstractmethod
    async def apply(
        self,
        session: EntitySession,
        entity_type: EntityType,
        entity_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any] | None:
        """
        Mutate one entity inside an open transaction.

        Returns a rollback snapshot, or None when the operation keeps none.
        Raises ItemRejectedError to fail the item with a specific code.
        """

    async def run_batch(
        self,
        store: EntityStore,
        entity_type: EntityType,
        batch: Batch,
        data: dict[str, Any] | None = None,
    ) -> BatchResult:
        data = data or {}
        result = BatchResult()
        done = 0
        try:
            self.prepare(entity_type, data)
            async with store.session() as session:
                for entity_id in batch:
                    await self._run_item(session, entity_type, entity_id, data, result)
                    done += 1
        except Exception as e:
            logger.error(
                "Bulk %s batch of %d %s failed after %d items: %s",
                self.operation_type.value, len(batch), entity_type.value, done, e,
            )
            # Items that already ran keep their outcome
            message = f"Batch {self.operation_type.value} failed: {e}"
            code = getattr(e, "code", None) or "BATCH_FAILED"
            for entity_id in batch[done:]:
                result.fail(entity_id, message, code)
        return result

    async def _run_item(
        self,
        session: EntitySession,
        entity_type: EntityType,
        entity_id: str,
        data: dict[str, Any],
        result: BatchResult,
    ) -> None:
        try:
            async with session.transaction():
                snapshot = await self.apply(session, entity_type, entity_id, data)
        except Exception as e:
            result.fail(entity_id, str(e), _error_code(e))
            return

        result.processed += 1
        if snapshot is not None:
            result.rollback_data.append(snapshot)


async def _require(session: EntitySession, entity_type: EntityType, entity_id: str) -> dict[str, Any]:
    record = await session.find_by_id(entity_type, entity_id)
    if record is None:
        raise ItemRejectedError("Record not found", "NOT_FOUND")
    return record


def _is_admin(entity_type: EntityType, record: dict[str, Any]) -> bool:
    return entity_type == EntityType.USER and record.get("role") == UserRole.ADMIN.value


class DeleteStrategy(MutationStrategy):
    operation_type = OperationType.DELETE

    async def apply(self, session, entity_type, entity_id, data):
        record = await _require(session, entity_type, entity_id)
        if _is_admin(entity_type, record):
            raise ItemRejectedError("Cannot delete admin users via bulk operations", "ADMIN_PROTECTION")

        await session.delete(entity_type, entity_id)
        return {"id": entity_id, "data": record, "operation": "delete"}


class UpdateStrategy(MutationStrategy):
    operation_type = OperationType.UPDATE

    def prepare(self, entity_type: EntityType, data: dict[str, Any]) -> None:
        validate_update_data(entity_type, data)

    async def apply(self, session, entity_type, entity_id, data):
        record = await _require(session, entity_type, entity_id)
        if _is_admin(entity_type, record) and any(f in data for f in ADMIN_RESTRICTED_FIELDS):
            raise ItemRejectedError("Cannot modify critical admin fields via bulk operations", "ADMIN_PROTECTION")

        await session.update(entity_type, entity_id, {**data, "updated_at": utcnow()})
        return {"id": entity_id, "original_data": record, "new_data": dict(data), "operation": "update"}


class StatusStrategy(MutationStrategy):
    """Sets a fixed status value; keeps no rollback snapshot."""

    def __init__(self, operation_type: OperationType, status: EntityStatus):
        self.operation_type = operation_type
        self.status = status

    async def apply(self, session, entity_type, entity_id, data):
        await _require(session, entity_type, entity_id)
        await session.update(entity_type, entity_id, {"status": self.status.value, "updated_at": utcnow()})
        return None


def validate_update_data(entity_type: EntityType, data: dict[str, Any]) -> None:
    """
    Reject update payloads that are unsafe to apply in bulk.

    Raises:
        BulkValidationError: with a payload-specific code
    """
    if not isinstance(data, dict) or not data:
        raise BulkValidationError("Update data must be a non-empty object", "INVALID_UPDATE_DATA")

    if any(field in data for field in PROTECTED_FIELDS):
        raise BulkValidationError("Cannot update protected system fields", "PROTECTED_FIELD")

    if entity_type == EntityType.USER:
        if data.get("role") == UserRole.ADMIN.value:
            raise BulkValidationError("Cannot bulk assign admin role for security reasons", "ADMIN_ROLE_ASSIGNMENT")
        email = data.get("email")
        if email is not None and not (isinstance(email, str) and EMAIL_PATTERN.match(email)):
            raise BulkValidationError("Invalid email format provided", "INVALID_EMAIL")

    if entity_type == EntityType.SUBSCRIPTION:
        status = data.get("status")
        if status is not None and status not in SUBSCRIPTION_STATUSES:
            raise BulkValidationError(f"Invalid subscription status: {status}", "INVALID_STATUS")


STRATEGIES: dict[OperationType, MutationStrategy] = {
    OperationType.DELETE: DeleteStrategy(),
    OperationType.UPDATE: UpdateStrategy(),
    OperationType.ACTIVATE: StatusStrategy(OperationType.ACTIVATE, EntityStatus.ACTIVE),
    OperationType.DEACTIVATE: StatusStrategy(OperationType.DEACTIVATE, EntityStatus.INACTIVE),
    OperationType.SUSPEND: StatusStrategy(OperationType.SUSPEND, EntityStatus.SUSPENDED),
}


def get_strategy(operation_type: OperationType) -> MutationStrategy:
    return STRATEGIES[operation_type]
