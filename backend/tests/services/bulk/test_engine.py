"""Tests for the bulk operation engine."""

import asyncio

import pytest

from backoffice.core.exceptions import (
    BulkValidationError,
    CancellationDeniedError,
    OperationNotCancellableError,
    OperationNotFoundError,
    RateLimitExceededError,
)
from backoffice.services.bulk import (
    AdditionalAuth,
    BulkOperationEngine,
    BulkRequest,
    EntityType,
    OperationRecord,
    OperationStatus,
    OperationType,
    RollbackStore,
)

CONFIRMED = AdditionalAuth(confirmed=True)


def bulk_request(operator, **overrides) -> BulkRequest:
    fields = {
        "type": "update",
        "entity_type": "booking",
        "entity_ids": [],
        "admin_user": operator,
        "data": {"notes": "moved"},
    }
    fields.update(overrides)
    return BulkRequest(**fields)


def seed_user_delete(store) -> list[str]:
    customers = [store.add(EntityType.USER, role="CUSTOMER") for _ in range(3)]
    admin_id = store.add(EntityType.USER, role="ADMIN")
    return [customers[0], "ghost", customers[1], admin_id, customers[2]]


def user_delete(operator, ids, **overrides) -> BulkRequest:
    return bulk_request(
        operator,
        type="delete",
        entity_type="user",
        entity_ids=ids,
        data={},
        options={"allow_admin_deletion": True},
        additional_auth=CONFIRMED,
        **overrides,
    )


class RecordingRollbackStore(RollbackStore):
    def __init__(self):
        self.saved = []

    async def save(self, operation_id, batch_index, snapshots):
        self.saved.append((operation_id, batch_index, len(snapshots)))


class TestExecute:
    @pytest.mark.asyncio
    async def test_mixed_user_delete(self, engine, store, admin, audit):
        ids = seed_user_delete(store)

        result = await engine.execute(user_delete(admin, ids))

        assert result.processed == 3
        assert result.failed == 2
        assert result.total == 5
        assert result.success is True
        assert result.status == OperationStatus.COMPLETED
        assert [e.error_code for e in result.errors] == ["NOT_FOUND", "ADMIN_PROTECTION"]
        assert [e.entity_id for e in result.errors] == ["ghost", ids[3]]
        assert len(store.rows[EntityType.USER]) == 1
        assert audit.actions() == ["RATE_LIMIT_CHECK", "BULK_DELETE_START", "BULK_DELETE_COMPLETED"]

    @pytest.mark.asyncio
    async def test_batches_progress_and_pacing(self, engine, store, admin, notifier, sleeper):
        ids = [store.add(EntityType.BOOKING) for _ in range(120)]

        result = await engine.execute(bulk_request(admin, entity_ids=ids, additional_auth=CONFIRMED))

        assert result.processed == 120
        assert [s["current_batch"] for s in notifier.snapshots] == [1, 2, 3]
        assert [s["processed"] for s in notifier.snapshots] == [50, 100, 120]
        assert [s["percentage"] for s in notifier.snapshots] == [42, 83, 100]
        assert all(s["total_batches"] == 3 for s in notifier.snapshots)
        assert all(s["operator_id"] == admin.id for s in notifier.snapshots)
        assert sleeper.delays == [0.1, 0.1]
        assert all(store.get(EntityType.BOOKING, i)["notes"] == "moved" for i in ids)

    @pytest.mark.asyncio
    async def test_batch_options_are_honoured(self, engine, store, admin, notifier, sleeper):
        ids = [store.add(EntityType.BOOKING) for _ in range(5)]

        await engine.execute(bulk_request(admin, entity_ids=ids, options={"batch_size": 2, "batch_delay_ms": 0}))

        assert [s["current_batch"] for s in notifier.snapshots] == [1, 2, 3]
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_all_items_failing_is_not_success(self, engine, admin):
        result = await engine.execute(bulk_request(admin, entity_ids=["ghost-1", "ghost-2"]))

        assert result.success is False
        assert result.status == OperationStatus.COMPLETED
        assert result.failed == 2

    @pytest.mark.asyncio
    async def test_lost_session_fails_only_that_batch(self, engine, store, admin):
        ids = [store.add(EntityType.BOOKING) for _ in range(4)]
        store.failing_sessions.add(2)

        result = await engine.execute(bulk_request(admin, entity_ids=ids, options={"batch_size": 2}))

        assert result.processed == 2
        assert result.failed == 2
        assert {e.error_code for e in result.errors} == {"BATCH_FAILED"}
        assert [e.entity_id for e in result.errors] == ids[2:]

    @pytest.mark.asyncio
    async def test_status_available_after_completion(self, engine, store, admin):
        ids = [store.add(EntityType.BOOKING) for _ in range(2)]

        result = await engine.execute(bulk_request(admin, entity_ids=ids, operation_id="op-42"))
        status = await engine.get_status("op-42")

        assert result.operation_id == "op-42"
        assert status["status"] == "completed"
        assert status["progress"] == {"total": 2, "processed": 2, "failed": 0, "percentage": 100}
        assert status["end_time"] is not None

    @pytest.mark.asyncio
    async def test_completion_audit_carries_result(self, engine, store, admin, audit):
        ids = seed_user_delete(store)

        await engine.execute(user_delete(admin, ids, metadata={"ip_address": "10.0.0.5"}))

        start = audit.find("BULK_DELETE_START")
        done = audit.find("BULK_DELETE_COMPLETED")
        assert start.changes["entity_count"] == 5
        assert start.metadata["ip_address"] == "10.0.0.5"
        assert done.changes["result"]["failed"] == 2
        assert done.entity_id == start.entity_id
        assert done.severity == "low"

    @pytest.mark.asyncio
    async def test_audit_failures_do_not_change_outcome(self, store, failing_audit, admin, sleeper):
        engine = BulkOperationEngine(store=store, audit=failing_audit, sleep=sleeper)
        ids = [store.add(EntityType.BOOKING) for _ in range(3)]
        try:
            result = await engine.execute(bulk_request(admin, entity_ids=ids))
        finally:
            await engine.shutdown()

        assert result.processed == 3
        assert result.success is True

    @pytest.mark.asyncio
    async def test_notifier_failure_is_ignored(self, engine, store, admin, notifier):
        async def explode(snapshot):
            raise ConnectionError("socket closed")

        notifier.on_publish = explode
        ids = [store.add(EntityType.BOOKING) for _ in range(3)]

        result = await engine.execute(bulk_request(admin, entity_ids=ids))

        assert result.processed == 3

    @pytest.mark.asyncio
    async def test_rollback_snapshots_saved_per_batch(self, store, audit, admin, sleeper):
        rollback_store = RecordingRollbackStore()
        engine = BulkOperationEngine(store=store, audit=audit, rollback_store=rollback_store, sleep=sleeper)
        ids = [store.add(EntityType.BOOKING) for _ in range(3)]
        try:
            await engine.execute(bulk_request(admin, entity_ids=ids, operation_id="op-rb", options={"batch_size": 2}))
        finally:
            await engine.shutdown()

        assert rollback_store.saved == [("op-rb", 0, 2), ("op-rb", 1, 1)]

    @pytest.mark.asyncio
    async def test_unexpected_failure_marks_operation_error(self, store, audit, admin):
        async def broken_sleep(seconds):
            raise RuntimeError("event loop stalled")

        engine = BulkOperationEngine(store=store, audit=audit, sleep=broken_sleep)
        ids = [store.add(EntityType.BOOKING) for _ in range(3)]
        try:
            with pytest.raises(RuntimeError):
                await engine.execute(bulk_request(admin, entity_ids=ids, operation_id="op-err", options={"batch_size": 2}))
            status = await engine.get_status("op-err")
        finally:
            await engine.shutdown()

        assert status["status"] == "error"
        assert status["progress"]["processed"] == 2
        assert status["error_message"] == "event loop stalled"
        assert audit.find("BULK_UPDATE_ERROR").severity == "high"


class TestRejections:
    @pytest.mark.asyncio
    async def test_validation_failure_is_audited_and_raised(self, engine, admin, audit, store):
        with pytest.raises(BulkValidationError) as exc_info:
            await engine.execute(bulk_request(admin, type="delete", entity_ids=["b1"]))

        assert exc_info.value.code == "CONFIRMATION_REQUIRED"
        event = audit.find("BULK_DELETE_ERROR")
        assert event.severity == "high"
        assert event.changes["code"] == "CONFIRMATION_REQUIRED"
        assert store.sessions_opened == 0

    @pytest.mark.asyncio
    async def test_rate_limit_rejection(self, engine, store, admin, audit):
        ids = [store.add(EntityType.BOOKING) for _ in range(100)]
        await engine.execute(bulk_request(admin, type="delete", entity_ids=ids, data={}, additional_auth=CONFIRMED))
        opened = store.sessions_opened

        with pytest.raises(RateLimitExceededError) as exc_info:
            await engine.execute(
                bulk_request(admin, type="delete", entity_ids=["b-extra"], data={}, additional_auth=CONFIRMED)
            )

        assert exc_info.value.current_usage == 100
        assert exc_info.value.quota == 100
        assert store.sessions_opened == opened
        assert audit.actions().count("BULK_DELETE_ERROR") == 1

    @pytest.mark.asyncio
    async def test_duplicate_operation_id(self, engine, store, admin):
        ids = [store.add(EntityType.BOOKING)]
        await engine.execute(bulk_request(admin, entity_ids=ids, operation_id="op-dup"))

        with pytest.raises(BulkValidationError) as exc_info:
            await engine.execute(bulk_request(admin, entity_ids=ids, operation_id="op-dup"))
        assert exc_info.value.code == "DUPLICATE_OPERATION_ID"


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_between_batches(self, engine, store, admin, notifier, audit):
        ids = [store.add(EntityType.BOOKING) for _ in range(120)]

        async def cancel_after_first(snapshot):
            if snapshot["current_batch"] == 1:
                await engine.cancel("op-c", admin)

        notifier.on_publish = cancel_after_first

        result = await engine.execute(
            bulk_request(admin, entity_ids=ids, additional_auth=CONFIRMED, operation_id="op-c")
        )

        assert result.status == OperationStatus.CANCELLED
        assert result.success is False
        assert result.processed == 50
        assert len(notifier.snapshots) == 1
        assert sum(1 for i in ids if "notes" in store.get(EntityType.BOOKING, i)) == 50
        assert "BULK_OPERATION_CANCELLED" in audit.actions()
        assert audit.actions()[-1] == "BULK_UPDATE_CANCELLED"

    @pytest.mark.asyncio
    async def test_cancel_response(self, engine, admin):
        record = running_record("op-r", admin)
        await engine.registry.add(record)

        response = await engine.cancel("op-r", admin)

        assert response == {
            "operation_id": "op-r",
            "status": "cancelling",
            "message": "Operation cancellation requested",
        }
        assert record.cancelled

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, engine, admin):
        with pytest.raises(OperationNotFoundError):
            await engine.cancel("missing", admin)

    @pytest.mark.asyncio
    async def test_cancel_someone_elses_operation_denied(self, engine, admin, other_admin):
        await engine.registry.add(running_record("op-r", admin))

        with pytest.raises(CancellationDeniedError):
            await engine.cancel("op-r", other_admin)

    @pytest.mark.asyncio
    async def test_cancel_any_permission(self, engine, admin, other_admin):
        await engine.registry.add(running_record("op-r", other_admin))

        response = await engine.cancel("op-r", admin)
        assert response["status"] == "cancelling"

    @pytest.mark.asyncio
    async def test_cancel_finished_operation(self, engine, admin):
        record = running_record("op-done", admin)
        record.finish(OperationStatus.COMPLETED)
        await engine.registry.add(record)

        with pytest.raises(OperationNotCancellableError) as exc_info:
            await engine.cancel("op-done", admin)
        assert exc_info.value.status == "completed"


def running_record(operation_id, operator, total=10) -> OperationRecord:
    return OperationRecord(
        id=operation_id,
        type=OperationType.UPDATE,
        entity_type=EntityType.BOOKING,
        total_items=total,
        admin_user=operator,
        batch_size=50,
    )


class TestSubmit:
    @pytest.mark.asyncio
    async def test_runs_in_background(self, engine, store, admin):
        ids = [store.add(EntityType.BOOKING) for _ in range(3)]

        operation_id = await engine.submit(bulk_request(admin, entity_ids=ids))
        assert (await engine.get_status(operation_id)) is not None

        for _ in range(50):
            status = await engine.get_status(operation_id)
            if status["status"] == "completed":
                break
            await asyncio.sleep(0)

        assert status["status"] == "completed"
        assert status["progress"]["processed"] == 3
        assert status["error_message"] is None

    @pytest.mark.asyncio
    async def test_background_failure_reason_is_visible(self, store, audit, admin):
        async def broken_sleep(seconds):
            raise RuntimeError("event loop stalled")

        engine = BulkOperationEngine(store=store, audit=audit, sleep=broken_sleep)
        ids = [store.add(EntityType.BOOKING) for _ in range(3)]
        try:
            operation_id = await engine.submit(bulk_request(admin, entity_ids=ids, options={"batch_size": 2}))
            for _ in range(50):
                status = await engine.get_status(operation_id)
                if status["status"] == "error":
                    break
                await asyncio.sleep(0)
        finally:
            await engine.shutdown()

        assert status["status"] == "error"
        assert status["error_message"] == "event loop stalled"

    @pytest.mark.asyncio
    async def test_rejection_raised_before_scheduling(self, engine, admin):
        with pytest.raises(BulkValidationError):
            await engine.submit(bulk_request(admin, entity_ids=[]))
        assert len(engine.registry) == 0


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_active_visibility(self, engine, admin, other_admin):
        await engine.registry.add(running_record("op-a", admin))
        await engine.registry.add(running_record("op-b", other_admin))
        finished = running_record("op-c", admin)
        finished.finish(OperationStatus.COMPLETED)
        await engine.registry.add(finished)

        assert {op["id"] for op in await engine.get_active(admin)} == {"op-a", "op-b"}
        assert [op["id"] for op in await engine.get_active(other_admin)] == ["op-b"]

    @pytest.mark.asyncio
    async def test_unknown_status_is_none(self, engine):
        assert await engine.get_status("nope") is None
        assert await engine.error_analysis("nope") is None

    @pytest.mark.asyncio
    async def test_error_analysis(self, engine, store, admin):
        ids = seed_user_delete(store)
        await engine.execute(user_delete(admin, ids, operation_id="op-e"))

        analysis = await engine.error_analysis("op-e")

        assert analysis["total_errors"] == 2
        assert analysis["errors_by_code"] == {"NOT_FOUND": 1, "ADMIN_PROTECTION": 1}
        assert analysis["errors_by_type"] == {
            "Record not found": 1,
            "Cannot delete admin users via bulk operations": 1,
        }
        assert len(analysis["recommendations"]) == 2

    @pytest.mark.asyncio
    async def test_plan_does_not_reserve_quota(self, engine, admin):
        ids = [f"b{i}" for i in range(120)]

        plan = await engine.plan(bulk_request(admin, entity_ids=ids, additional_auth=CONFIRMED))

        assert plan == {
            "type": "update",
            "entity_type": "booking",
            "item_count": 120,
            "batch_size": 50,
            "estimated_batches": 3,
            "estimated_duration_seconds": 6,
            "requires_confirmation": False,
            "risk_level": "low",
        }
        assert await engine.rate_limiter.usage(admin.id) == {}

    @pytest.mark.asyncio
    async def test_request_rollback(self, engine, store, admin, audit):
        ids = seed_user_delete(store)
        await engine.execute(user_delete(admin, ids, operation_id="op-rb"))

        response = await engine.request_rollback("op-rb", admin)

        assert response["operation_id"] == "op-rb"
        assert response["snapshots_held"] == 3
        assert audit.find("BULK_OPERATION_ROLLBACK_REQUESTED").severity == "high"

    @pytest.mark.asyncio
    async def test_request_rollback_unknown(self, engine, admin):
        with pytest.raises(OperationNotFoundError):
            await engine.request_rollback("missing", admin)

    @pytest.mark.asyncio
    async def test_safety_metrics(self, engine, store, admin):
        ids = [store.add(EntityType.BOOKING) for _ in range(10)]
        await engine.execute(bulk_request(admin, entity_ids=ids))

        metrics = await engine.safety_metrics(admin)

        assert metrics["rate_limit_status"]["current_usage"] == {"update": 10}
        assert metrics["rate_limit_status"]["limits"]["delete"] == 100
        assert metrics["rate_limit_status"]["window_seconds"] == 60
        assert metrics["safety_features"]["rollback_supported"] is False
        assert metrics["active_operations"] == 0
