"""
In-memory state of in-flight and recently finished bulk operations.

Records are owned by the task running the operation; other callers only
read projections or flip the cancellation token. Finished records are
evicted after a retention period. Nothing here survives a restart.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from backoffice.services.bulk.base import (
    BatchResult,
    EntityType,
    ErrorEntry,
    OperationStatus,
    OperationType,
    Operator,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 300.0


class CancellationToken:
    """Advisory cancellation flag, polled between batches."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class OperationRecord:
    id: str
    type: OperationType
    entity_type: EntityType
    total_items: int
    admin_user: Operator
    batch_size: int
    metadata: dict[str, Any] = field(default_factory=dict)
    processed_items: int = 0
    failed_items: int = 0
    errors: list[ErrorEntry] = field(default_factory=list)
    status: OperationStatus = OperationStatus.RUNNING
    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None
    token: CancellationToken = field(default_factory=CancellationToken)
    rollback_data: list[dict[str, Any]] = field(default_factory=list)
    error_message: str | None = None

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    @property
    def percentage(self) -> int:
        if not self.total_items:
            return 0
        return round(self.processed_items / self.total_items * 100)

    @property
    def duration_ms(self) -> int:
        end = self.end_time or utcnow()
        return int((end - self.start_time).total_seconds() * 1000)

    @property
    def snapshot_count(self) -> int:
        return sum(len(entry["snapshots"]) for entry in self.rollback_data)

    def apply_batch(self, batch_index: int, result: BatchResult) -> None:
        """Fold one batch's outcome into the running totals."""
        self.processed_items += result.processed
        self.failed_items += result.failed
        self.errors.extend(result.errors)
        if result.rollback_data:
            self.rollback_data.append({"batch_index": batch_index, "snapshots": result.rollback_data})

    def finish(self, status: OperationStatus, error_message: str | None = None) -> None:
        self.status = status
        self.end_time = utcnow()
        self.error_message = error_message

    def to_status(self) -> dict[str, Any]:
        """Read-only projection returned by status queries."""
        return {
            "id": self.id,
            "type": self.type.value,
            "entity_type": self.entity_type.value,
            "status": self.status.value,
            "progress": {
                "total": self.total_items,
                "processed": self.processed_items,
                "failed": self.failed_items,
                "percentage": self.percentage,
            },
            "errors": [e.to_dict() for e in self.errors],
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
        }


class OperationRegistry:
    """Operation records keyed by id, with timed eviction of finished ones."""

    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.retention_seconds = retention_seconds
        self._sleep = sleep
        self._records: dict[str, OperationRecord] = {}
        self._lock = asyncio.Lock()
        self._eviction_tasks: dict[str, asyncio.Task] = {}

    async def add(self, record: OperationRecord) -> None:
        async with self._lock:
            if record.id in self._records:
                raise ValueError(f"Operation {record.id} is already registered")
            self._records[record.id] = record

    async def get(self, operation_id: str) -> OperationRecord | None:
        async with self._lock:
            return self._records.get(operation_id)

    async def remove(self, operation_id: str) -> OperationRecord | None:
        async with self._lock:
            return self._records.pop(operation_id, None)

    async def contains(self, operation_id: str) -> bool:
        async with self._lock:
            return operation_id in self._records

    async def active(self) -> list[OperationRecord]:
        """Records that have not reached a terminal state."""
        async with self._lock:
            return [r for r in self._records.values() if not r.status.is_terminal]

    def schedule_eviction(self, operation_id: str) -> asyncio.Task:
        """Drop the record once the retention period has passed."""
        task = asyncio.create_task(self._evict_later(operation_id))
        self._eviction_tasks[operation_id] = task
        return task

    async def _evict_later(self, operation_id: str) -> None:
        try:
            await self._sleep(self.retention_seconds)
            await self.remove(operation_id)
            logger.debug("Evicted bulk operation %s", operation_id)
        finally:
            self._eviction_tasks.pop(operation_id, None)

    async def shutdown(self) -> None:
        """Cancel pending evictions."""
        tasks = list(self._eviction_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._eviction_tasks.clear()

    def __len__(self) -> int:
        return len(self._records)
