"""
Entity store contracts used by mutation strategies, and the SQLAlchemy implementation.

A strategy opens one ``session()`` per batch and one ``transaction()`` per
item inside it, so a failing item never rolls back its siblings.
"""

import enum
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import date, datetime
from typing import Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.models import Booking, ServiceRequest, Subscription, User
from backoffice.services.bulk.base import EntityType


class EntityStoreError(Exception):
    """Store-level failure with a machine-readable code."""

    def __init__(self, message: str, code: str):
        self.code = code
        super().__init__(message)


class EntitySession(ABC):
    """Batch-scoped handle on the entity store."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Scope for a single item; commits on exit, rolls back on error."""

    @abstractmethod
    async def find_by_id(self, entity_type: EntityType, entity_id: str) -> dict[str, Any] | None:
        """Return a JSON-safe snapshot of the row, or None when it does not exist."""

    @abstractmethod
    async def update(self, entity_type: EntityType, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Apply ``patch`` and return the updated snapshot."""

    @abstractmethod
    async def delete(self, entity_type: EntityType, entity_id: str) -> None:
        """Delete the row."""


class EntityStore(ABC):
    """Keyed CRUD over the four bulk-addressable entity types."""

    @abstractmethod
    def session(self) -> AbstractAsyncContextManager[EntitySession]:
        """Open a batch scope."""


class RollbackStore(ABC):
    """
    Destination for pre-mutation snapshots.

    No durable implementation exists yet; snapshots are kept in memory on
    the operation record and handed to a RollbackStore only if one is configured.
    """

    @abstractmethod
    async def save(self, operation_id: str, batch_index: int, snapshots: list[dict[str, Any]]) -> None:
        """Persist one batch's snapshots."""


MODEL_MAP = {
    EntityType.USER: User,
    EntityType.SUBSCRIPTION: Subscription,
    EntityType.BOOKING: Booking,
    EntityType.SERVICE_REQUEST: ServiceRequest,
}


def _json_safe(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return value


def snapshot(obj: Any) -> dict[str, Any]:
    """Column values of an ORM object as a JSON-safe dict."""
    mapper = sa_inspect(obj).mapper
    return {attr.key: _json_safe(getattr(obj, attr.key)) for attr in mapper.column_attrs}


class SqlAlchemyEntitySession(EntitySession):
    def __init__(self, session: AsyncSession):
        self._session = session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._session.begin():
            yield

    async def _get(self, entity_type: EntityType, entity_id: str) -> Any | None:
        model = MODEL_MAP[entity_type]
        try:
            pk = uuid.UUID(str(entity_id))
        except ValueError:
            return None
        return await self._session.get(model, pk, populate_existing=True)

    async def find_by_id(self, entity_type: EntityType, entity_id: str) -> dict[str, Any] | None:
        obj = await self._get(entity_type, entity_id)
        return snapshot(obj) if obj is not None else None

    async def update(self, entity_type: EntityType, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        obj = await self._get(entity_type, entity_id)
        if obj is None:
            raise EntityStoreError("Record not found", "NOT_FOUND")

        columns = {attr.key for attr in sa_inspect(obj).mapper.column_attrs}
        for key, value in patch.items():
            if key not in columns:
                raise EntityStoreError(f"Unknown field for {entity_type.value}: {key}", "UNKNOWN_FIELD")
            setattr(obj, key, value)

        await self._session.flush()
        # onupdate columns are expired by the flush
        await self._session.refresh(obj)
        return snapshot(obj)

    async def delete(self, entity_type: EntityType, entity_id: str) -> None:
        obj = await self._get(entity_type, entity_id)
        if obj is None:
            raise EntityStoreError("Record not found", "NOT_FOUND")
        await self._session.delete(obj)
        await self._session.flush()


class SqlAlchemyEntityStore(EntityStore):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @asynccontextmanager
    async def session(self) -> AsyncIterator[EntitySession]:
        async with self._session_maker() as session:
            yield SqlAlchemyEntitySession(session)
