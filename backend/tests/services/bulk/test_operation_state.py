"""Tests for operation records and the registry."""

import asyncio

import pytest

from backoffice.services.bulk import (
    BatchResult,
    EntityType,
    OperationRecord,
    OperationRegistry,
    OperationStatus,
    OperationType,
)


def make_record(operation_id="op-1", operator=None, total=120) -> OperationRecord:
    return OperationRecord(
        id=operation_id,
        type=OperationType.DELETE,
        entity_type=EntityType.USER,
        total_items=total,
        admin_user=operator,
        batch_size=50,
    )


class ManualSleep:
    """Sleep that blocks until released by the test."""

    def __init__(self):
        self.requested: list[float] = []
        self.release = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        self.requested.append(seconds)
        await self.release.wait()


class TestOperationRecord:
    def test_apply_batch_accumulates(self, admin):
        record = make_record(operator=admin)
        first = BatchResult(processed=48, rollback_data=[{"id": "u1"}])
        first.fail("u2", "Record not found", "NOT_FOUND")
        first.fail("u3", "Record not found", "NOT_FOUND")

        record.apply_batch(0, first)
        record.apply_batch(1, BatchResult(processed=50))

        assert record.processed_items == 98
        assert record.failed_items == 2
        assert record.percentage == 82
        assert record.snapshot_count == 1
        assert record.rollback_data == [{"batch_index": 0, "snapshots": [{"id": "u1"}]}]

    def test_status_projection(self, admin):
        record = make_record(operator=admin, total=4)
        result = BatchResult(processed=3)
        result.fail("u9", "Record not found", "NOT_FOUND")
        record.apply_batch(0, result)
        record.finish(OperationStatus.COMPLETED)

        status = record.to_status()

        assert status["id"] == "op-1"
        assert status["type"] == "delete"
        assert status["entity_type"] == "user"
        assert status["status"] == "completed"
        assert status["progress"] == {"total": 4, "processed": 3, "failed": 1, "percentage": 75}
        assert status["errors"][0]["error_code"] == "NOT_FOUND"
        assert status["end_time"] is not None
        assert status["duration_ms"] >= 0
        assert status["error_message"] is None

    def test_cancellation_token(self, admin):
        record = make_record(operator=admin)
        assert not record.cancelled
        record.token.cancel()
        assert record.cancelled

    def test_terminal_states(self):
        assert OperationStatus.COMPLETED.is_terminal
        assert OperationStatus.CANCELLED.is_terminal
        assert OperationStatus.ERROR.is_terminal
        assert not OperationStatus.RUNNING.is_terminal
        assert not OperationStatus.CANCELLING.is_terminal


class TestOperationRegistry:
    @pytest.mark.asyncio
    async def test_add_get_remove(self, admin):
        registry = OperationRegistry()
        record = make_record(operator=admin)

        await registry.add(record)
        assert await registry.get("op-1") is record
        assert await registry.contains("op-1")
        assert len(registry) == 1

        assert await registry.remove("op-1") is record
        assert await registry.get("op-1") is None

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, admin):
        registry = OperationRegistry()
        await registry.add(make_record(operator=admin))

        with pytest.raises(ValueError):
            await registry.add(make_record(operator=admin))

    @pytest.mark.asyncio
    async def test_active_excludes_finished(self, admin):
        registry = OperationRegistry()
        running = make_record("op-run", operator=admin)
        done = make_record("op-done", operator=admin)
        done.finish(OperationStatus.CANCELLED)
        await registry.add(running)
        await registry.add(done)

        assert await registry.active() == [running]

    @pytest.mark.asyncio
    async def test_eviction_after_retention(self, admin):
        sleep = ManualSleep()
        registry = OperationRegistry(retention_seconds=300, sleep=sleep)
        await registry.add(make_record(operator=admin))

        task = registry.schedule_eviction("op-1")
        await asyncio.sleep(0)
        assert sleep.requested == [300]
        assert await registry.contains("op-1")

        sleep.release.set()
        await task

        assert not await registry.contains("op-1")

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_evictions(self, admin):
        sleep = ManualSleep()
        registry = OperationRegistry(sleep=sleep)
        await registry.add(make_record(operator=admin))
        task = registry.schedule_eviction("op-1")
        await asyncio.sleep(0)

        await registry.shutdown()

        assert task.cancelled()
        assert await registry.contains("op-1")
