"""
Bulk operation engine.

Drives a validated, rate-limited request through its batches:

    validate -> reserve quota -> register record -> split -> run strategy
    per batch -> publish progress -> finalize -> audit -> schedule eviction

One engine instance is created per application and shared by all requests.
Audit and progress delivery are best-effort: their failures are logged and
never change the outcome of an operation.
"""

import asyncio
import logging
import math
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from backoffice.core.exceptions import (
    BulkOperationError,
    BulkValidationError,
    CancellationDeniedError,
    OperationNotCancellableError,
    OperationNotFoundError,
)
from backoffice.services.audit import AuditEvent, AuditSink
from backoffice.services.bulk.base import (
    CRITICAL_OPERATIONS,
    BulkRequest,
    OperationResult,
    OperationStatus,
    Operator,
    Severity,
    classify_severity,
    utcnow,
)
from backoffice.services.bulk.batching import (
    DEFAULT_BATCH_SIZE,
    MAX_BATCH_SIZE,
    resolve_batch_size,
    split_batches,
)
from backoffice.services.bulk.progress import ProgressNotifier
from backoffice.services.bulk.rate_limiter import RateLimiter
from backoffice.services.bulk.state import OperationRecord, OperationRegistry
from backoffice.services.bulk.store import EntityStore, RollbackStore
from backoffice.services.bulk.strategies import get_strategy
from backoffice.services.bulk.validator import OperationPlan, validate_bulk_request

logger = logging.getLogger(__name__)

DEFAULT_BATCH_DELAY_MS = 100
# Rough per-batch duration used by dry-run estimates
ESTIMATED_SECONDS_PER_BATCH = 2

ERROR_RECOMMENDATIONS = {
    "NOT_FOUND": (
        "Some records may have been deleted by another process. "
        "Consider refreshing the data before retrying."
    ),
    "ADMIN_PROTECTION": "Admin records are protected from bulk operations. Remove admin users from selection.",
    "BATCH_FAILED": (
        "Whole batches failed, which usually points to a database or connectivity problem. "
        "Check service health before retrying."
    ),
}

SAFETY_FEATURES = {
    "rate_limiting_enabled": True,
    "batch_processing_enabled": True,
    "rollback_supported": False,
    "audit_logging_enabled": True,
    "additional_auth_required": True,
    "admin_protection_enabled": True,
}


class BulkOperationEngine:
    """Runs bulk operations and answers status, cancellation and analysis queries."""

    def __init__(
        self,
        store: EntityStore,
        audit: AuditSink,
        rate_limiter: RateLimiter | None = None,
        registry: OperationRegistry | None = None,
        notifier: ProgressNotifier | None = None,
        rollback_store: RollbackStore | None = None,
        default_batch_size: int = DEFAULT_BATCH_SIZE,
        max_batch_size: int = MAX_BATCH_SIZE,
        batch_delay_ms: int = DEFAULT_BATCH_DELAY_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.audit = audit
        self.rate_limiter = rate_limiter or RateLimiter(audit=audit)
        self.registry = registry or OperationRegistry()
        self.notifier = notifier
        self.rollback_store = rollback_store
        self.default_batch_size = default_batch_size
        self.max_batch_size = max_batch_size
        self.batch_delay_ms = batch_delay_ms
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()

    # -- running operations ---------------------------------------------

    async def execute(self, request: BulkRequest) -> OperationResult:
        """
        Run a bulk operation to completion and return its summary.

        Raises:
            BulkValidationError: request rejected before any work started
            RateLimitExceededError: operator over quota for this operation type
        """
        record, plan = await self._begin(request)
        return await self._run(record, plan)

    async def submit(self, request: BulkRequest) -> str:
        """
        Validate and register a bulk operation, then run it in the background.

        Returns the operation id as soon as the record exists; progress is
        available through ``get_status`` and the progress notifier.
        """
        record, plan = await self._begin(request)
        task = asyncio.create_task(self._run(record, plan), name=f"bulk-{record.id}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return record.id

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background bulk operation %s failed: %s", task.get_name(), exc)

    async def _begin(self, request: BulkRequest) -> tuple[OperationRecord, OperationPlan]:
        operation_id = request.operation_id or str(uuid.uuid4())
        try:
            plan = validate_bulk_request(request)
            if await self.registry.contains(operation_id):
                raise BulkValidationError(f"Operation id already in use: {operation_id}", "DUPLICATE_OPERATION_ID")
            await self.rate_limiter.check_and_reserve(plan.operator.id, plan.item_count, plan.operation_type.value)
        except BulkOperationError as e:
            logger.warning("Bulk %s on %s rejected: %s", request.type, request.entity_type, e)
            await self._audit(
                actor_id=request.admin_user.id if request.admin_user else None,
                action=f"BULK_{(request.type or 'unknown').upper()}_ERROR",
                entity_type=request.entity_type or "unknown",
                entity_id=f"bulk-{operation_id}",
                changes={"error": str(e), "code": getattr(e, "code", type(e).__name__)},
                metadata={**(request.metadata or {}), "operation_id": operation_id},
                severity=Severity.HIGH,
            )
            raise

        batch_size = resolve_batch_size(
            plan.options.get("batch_size"), self.default_batch_size, self.max_batch_size
        )
        record = OperationRecord(
            id=operation_id,
            type=plan.operation_type,
            entity_type=plan.entity_type,
            total_items=plan.item_count,
            admin_user=plan.operator,
            batch_size=batch_size,
            metadata=plan.metadata,
        )
        await self.registry.add(record)

        logger.info(
            "Bulk %s started: %d %s items in batches of %d (operation %s)",
            plan.operation_type.value,
            plan.item_count,
            plan.entity_type.value,
            batch_size,
            operation_id,
        )
        await self._audit(
            actor_id=plan.operator.id,
            action=f"BULK_{plan.operation_type.value.upper()}_START",
            entity_type=plan.entity_type.value,
            entity_id=f"bulk-{operation_id}",
            changes={
                "operation_type": plan.operation_type.value,
                "entity_count": plan.item_count,
                "batch_size": batch_size,
            },
            metadata={**plan.metadata, "operation_id": operation_id},
            severity=classify_severity(plan.operation_type.value, plan.item_count),
        )
        return record, plan

    async def _run(self, record: OperationRecord, plan: OperationPlan) -> OperationResult:
        op_name = plan.operation_type.value
        try:
            batches = split_batches(plan.entity_ids, record.batch_size)
            strategy = get_strategy(plan.operation_type)
            delay_ms = plan.options.get("batch_delay_ms", self.batch_delay_ms)

            for index, batch in enumerate(batches):
                if record.cancelled:
                    logger.info("Bulk operation %s cancelled before batch %d", record.id, index + 1)
                    break

                result = await strategy.run_batch(self.store, plan.entity_type, batch, plan.data)
                record.apply_batch(index, result)

                if result.rollback_data and self.rollback_store is not None:
                    await self._save_rollback(record.id, index, result.rollback_data)
                await self._publish_progress(record, index + 1, len(batches))

                if index < len(batches) - 1 and delay_ms:
                    await self._sleep(delay_ms / 1000)

            record.finish(OperationStatus.CANCELLED if record.cancelled else OperationStatus.COMPLETED)
        except Exception as e:
            logger.exception("Bulk operation %s failed", record.id)
            record.finish(OperationStatus.ERROR, error_message=str(e))
            await self._audit(
                actor_id=record.admin_user.id,
                action=f"BULK_{op_name.upper()}_ERROR",
                entity_type=record.entity_type.value,
                entity_id=f"bulk-{record.id}",
                changes={"error": str(e), "processed": record.processed_items, "failed": record.failed_items},
                metadata={**record.metadata, "operation_id": record.id},
                severity=Severity.HIGH,
            )
            self.registry.schedule_eviction(record.id)
            raise

        outcome = OperationResult(
            operation_id=record.id,
            success=not record.cancelled and record.failed_items < record.total_items,
            processed=record.processed_items,
            failed=record.failed_items,
            total=record.total_items,
            errors=list(record.errors),
            duration_ms=record.duration_ms,
            status=record.status,
        )

        logger.info(
            "Bulk %s %s: %d processed, %d failed of %d in %dms (operation %s)",
            op_name,
            record.status.value,
            outcome.processed,
            outcome.failed,
            outcome.total,
            outcome.duration_ms,
            record.id,
        )
        await self._audit(
            actor_id=record.admin_user.id,
            action=f"BULK_{op_name.upper()}_{record.status.value.upper()}",
            entity_type=record.entity_type.value,
            entity_id=f"bulk-{record.id}",
            changes={"result": outcome.to_dict(), "duration_ms": outcome.duration_ms},
            metadata={**record.metadata, "operation_id": record.id},
            severity=classify_severity(op_name, record.failed_items),
        )

        self.registry.schedule_eviction(record.id)
        return outcome

    async def _publish_progress(self, record: OperationRecord, current_batch: int, total_batches: int) -> None:
        snapshot = {
            "operation_id": record.id,
            "processed": record.processed_items,
            "failed": record.failed_items,
            "total": record.total_items,
            "current_batch": current_batch,
            "total_batches": total_batches,
            "percentage": record.percentage,
            "status": record.status.value,
        }
        if self.notifier is None:
            return
        try:
            await self.notifier.publish(record.admin_user.id, snapshot)
        except Exception as e:
            logger.warning("Failed to publish progress for bulk operation %s: %s", record.id, e)

    async def _save_rollback(self, operation_id: str, batch_index: int, snapshots: list[dict[str, Any]]) -> None:
        try:
            await self.rollback_store.save(operation_id, batch_index, snapshots)
        except Exception as e:
            logger.warning("Failed to store rollback data for bulk operation %s: %s", operation_id, e)

    async def _audit(
        self,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        changes: dict[str, Any],
        metadata: dict[str, Any],
        severity: Severity,
    ) -> None:
        try:
            await self.audit.log_action(AuditEvent(
                actor_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                changes=changes,
                metadata=metadata,
                severity=severity.value,
            ))
        except Exception as e:
            logger.warning("Failed to write audit event %s: %s", action, e)

    # -- queries and control ----------------------------------------------

    async def plan(self, request: BulkRequest) -> dict[str, Any]:
        """
        Dry run: validate and check the quota without reserving it.

        Raises the same errors as ``execute`` would before starting.
        """
        plan = validate_bulk_request(request)
        await self.rate_limiter.check(plan.operator.id, plan.item_count, plan.operation_type.value)

        batch_size = resolve_batch_size(
            plan.options.get("batch_size"), self.default_batch_size, self.max_batch_size
        )
        estimated_batches = math.ceil(plan.item_count / batch_size)
        return {
            "type": plan.operation_type.value,
            "entity_type": plan.entity_type.value,
            "item_count": plan.item_count,
            "batch_size": batch_size,
            "estimated_batches": estimated_batches,
            "estimated_duration_seconds": estimated_batches * ESTIMATED_SECONDS_PER_BATCH,
            "requires_confirmation": plan.operation_type.value in CRITICAL_OPERATIONS,
            "risk_level": classify_severity(plan.operation_type.value, plan.item_count).value,
        }

    async def cancel(self, operation_id: str, operator: Operator) -> dict[str, Any]:
        """
        Flag a running operation for cancellation at the next batch boundary.

        Raises:
            OperationNotFoundError: unknown or already evicted id
            CancellationDeniedError: operator neither started it nor may cancel any
            OperationNotCancellableError: operation already finished
        """
        record = await self.registry.get(operation_id)
        if record is None:
            raise OperationNotFoundError(operation_id)

        if record.admin_user.id != operator.id and not operator.has("CANCEL_ANY_BULK_OPERATION"):
            raise CancellationDeniedError(operation_id)

        if record.status.is_terminal:
            raise OperationNotCancellableError(operation_id, record.status.value)

        record.token.cancel()
        record.status = OperationStatus.CANCELLING
        logger.info("Bulk operation %s cancellation requested by %s", operation_id, operator.id)

        await self._audit(
            actor_id=operator.id,
            action="BULK_OPERATION_CANCELLED",
            entity_type=record.entity_type.value,
            entity_id=f"bulk-{operation_id}",
            changes={
                "original_admin_id": record.admin_user.id,
                "processed_items": record.processed_items,
                "total_items": record.total_items,
            },
            metadata={"operation_id": operation_id, "cancelled_by": operator.id},
            severity=Severity.MEDIUM,
        )
        return {
            "operation_id": operation_id,
            "status": record.status.value,
            "message": "Operation cancellation requested",
        }

    async def get_status(self, operation_id: str) -> dict[str, Any] | None:
        record = await self.registry.get(operation_id)
        return record.to_status() if record is not None else None

    async def get_active(self, operator: Operator) -> list[dict[str, Any]]:
        """In-flight operations visible to the operator."""
        see_all = operator.has("VIEW_ALL_BULK_OPERATIONS")
        return [
            record.to_status()
            for record in await self.registry.active()
            if see_all or record.admin_user.id == operator.id
        ]

    async def error_analysis(self, operation_id: str) -> dict[str, Any] | None:
        """Group an operation's errors by message prefix and code."""
        record = await self.registry.get(operation_id)
        if record is None:
            return None

        errors_by_type: dict[str, int] = {}
        errors_by_code: dict[str, int] = {}
        for error in record.errors:
            error_type = error.message.split(":")[0] or "Unknown"
            errors_by_type[error_type] = errors_by_type.get(error_type, 0) + 1
            errors_by_code[error.error_code] = errors_by_code.get(error.error_code, 0) + 1

        return {
            "total_errors": len(record.errors),
            "errors_by_type": errors_by_type,
            "errors_by_code": errors_by_code,
            "recommendations": [
                text for code, text in ERROR_RECOMMENDATIONS.items() if errors_by_code.get(code)
            ],
        }

    async def request_rollback(self, operation_id: str, operator: Operator) -> dict[str, Any]:
        """
        Record a rollback request. Snapshots are never replayed.

        Raises:
            OperationNotFoundError: unknown or already evicted id
        """
        record = await self.registry.get(operation_id)
        if record is None:
            raise OperationNotFoundError(operation_id)

        await self._audit(
            actor_id=operator.id,
            action="BULK_OPERATION_ROLLBACK_REQUESTED",
            entity_type="bulk",
            entity_id=f"bulk-{operation_id}",
            changes={"operation_id": operation_id, "requested_by": operator.id},
            metadata={"timestamp": utcnow().isoformat()},
            severity=Severity.HIGH,
        )
        return {
            "operation_id": operation_id,
            "snapshots_held": record.snapshot_count,
            "message": "Rollback request recorded; automatic replay requires persistent rollback storage",
        }

    async def safety_metrics(self, operator: Operator) -> dict[str, Any]:
        return {
            "rate_limit_status": {
                "window_seconds": self.rate_limiter.window_seconds,
                "limits": dict(self.rate_limiter.quotas),
                "current_usage": await self.rate_limiter.usage(operator.id),
            },
            "safety_features": {**SAFETY_FEATURES, "rollback_supported": self.rollback_store is not None},
            "active_operations": len(await self.registry.active()),
        }

    async def shutdown(self) -> None:
        """Cancel background runs and pending evictions."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.registry.shutdown()
