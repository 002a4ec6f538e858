"""In-memory collaborators for bulk engine tests."""

import copy
import itertools
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio

from backoffice.services.audit import AuditEvent, AuditSink
from backoffice.services.bulk import (
    BulkOperationEngine,
    EntityStore,
    EntityType,
    OperationRegistry,
    Operator,
    ProgressNotifier,
    RateLimiter,
)
from backoffice.services.bulk.store import EntitySession, EntityStoreError

FULL_ADMIN_PERMISSIONS = frozenset({
    "BULK_ALL",
    "CRITICAL_BULK_OPERATIONS",
    "BULK_DELETE_LARGE",
    "CANCEL_ANY_BULK_OPERATION",
    "VIEW_ALL_BULK_OPERATIONS",
})


class FakeEntitySession(EntitySession):
    def __init__(self, store: "FakeEntityStore"):
        self.store = store

    @asynccontextmanager
    async def transaction(self):
        staged = copy.deepcopy(self.store.rows)
        try:
            yield
        except Exception:
            self.store.rows = staged
            raise

    async def find_by_id(self, entity_type, entity_id):
        if entity_id in self.store.broken_ids:
            raise self.store.broken_ids[entity_id]
        row = self.store.rows[entity_type].get(entity_id)
        return dict(row) if row is not None else None

    async def update(self, entity_type, entity_id, patch):
        row = self.store.rows[entity_type].get(entity_id)
        if row is None:
            raise EntityStoreError("Record not found", "NOT_FOUND")
        row.update(patch)
        return dict(row)

    async def delete(self, entity_type, entity_id):
        if self.store.rows[entity_type].pop(entity_id, None) is None:
            raise EntityStoreError("Record not found", "NOT_FOUND")


class FakeEntityStore(EntityStore):
    """
    Rows kept in dicts.

    Sessions listed in ``failing_sessions`` raise on open, those in
    ``failing_closes`` raise on exit.
    """

    def __init__(self):
        self.rows = {entity_type: {} for entity_type in EntityType}
        self.broken_ids: dict[str, Exception] = {}
        self.failing_sessions: set[int] = set()
        self.failing_closes: set[int] = set()
        self.sessions_opened = 0
        self._ids = itertools.count(1)

    def add(self, entity_type: EntityType, entity_id: str | None = None, **fields) -> str:
        entity_id = entity_id or f"{entity_type.value}-{next(self._ids)}"
        self.rows[entity_type][entity_id] = {"id": entity_id, "status": "ACTIVE", **fields}
        return entity_id

    def get(self, entity_type: EntityType, entity_id: str) -> dict | None:
        return self.rows[entity_type].get(entity_id)

    @asynccontextmanager
    async def session(self):
        self.sessions_opened += 1
        number = self.sessions_opened
        if number in self.failing_sessions:
            raise ConnectionError("database connection lost")
        yield FakeEntitySession(self)
        if number in self.failing_closes:
            raise ConnectionError("connection reset on close")


class RecordingAuditSink(AuditSink):
    def __init__(self, fail: bool = False):
        self.events: list[AuditEvent] = []
        self.fail = fail

    async def log_action(self, event: AuditEvent) -> None:
        if self.fail:
            raise RuntimeError("audit store unavailable")
        self.events.append(event)

    def actions(self) -> list[str]:
        return [e.action for e in self.events]

    def find(self, action: str) -> AuditEvent:
        return next(e for e in self.events if e.action == action)


class RecordingNotifier(ProgressNotifier):
    def __init__(self):
        self.snapshots: list[dict] = []
        self.on_publish = None

    async def publish(self, operator_id, snapshot):
        self.snapshots.append({"operator_id": operator_id, **snapshot})
        if self.on_publish is not None:
            await self.on_publish(snapshot)


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def store() -> FakeEntityStore:
    return FakeEntityStore()


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def failing_audit() -> RecordingAuditSink:
    return RecordingAuditSink(fail=True)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def admin() -> Operator:
    return Operator(id="admin-1", email="admin@example.com", permissions=FULL_ADMIN_PERMISSIONS)


@pytest.fixture
def other_admin() -> Operator:
    return Operator(id="admin-2", email="other@example.com", permissions=frozenset({"BULK_ALL"}))


@pytest_asyncio.fixture
async def engine(store, audit, notifier, sleeper):
    engine = BulkOperationEngine(
        store=store,
        audit=audit,
        rate_limiter=RateLimiter(audit=audit),
        registry=OperationRegistry(retention_seconds=300),
        notifier=notifier,
        sleep=sleeper,
    )
    yield engine
    await engine.shutdown()
