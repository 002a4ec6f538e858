"""
In-process sliding window rate limiting for bulk operations.

Quotas are counted in items, not requests: an operator may delete at most
``quota["delete"]`` entities per window regardless of how many requests
that is spread over. State lives in this process only.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from backoffice.core.exceptions import RateLimitExceededError
from backoffice.services.audit import AuditEvent, AuditSink

logger = logging.getLogger(__name__)

# Window size in seconds
WINDOW_SECONDS = 60.0

DEFAULT_QUOTAS = {
    "delete": 100,
    "suspend": 200,
    "update": 500,
    "activate": 1000,
    "deactivate": 300,
    "default": 1000,
}


@dataclass(frozen=True)
class WindowEntry:
    timestamp: float
    item_count: int
    operation_type: str


@dataclass(frozen=True)
class RateLimitDecision:
    operation_type: str
    quota: int
    current_usage: int
    requested: int

    @property
    def utilization_percentage(self) -> int:
        return round((self.current_usage + self.requested) / self.quota * 100)


class RateLimiter:
    """Per-operator item quotas over a sliding time window."""

    def __init__(
        self,
        quotas: dict[str, int] | None = None,
        window_seconds: float = WINDOW_SECONDS,
        audit: AuditSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.quotas = {**DEFAULT_QUOTAS, **(quotas or {})}
        self.window_seconds = window_seconds
        self._audit = audit
        self._clock = clock
        self._windows: dict[str, list[WindowEntry]] = {}
        self._lock = asyncio.Lock()

    def quota_for(self, operation_type: str) -> int:
        return self.quotas.get(operation_type, self.quotas["default"])

    def _prune(self, operator_id: str, now: float) -> list[WindowEntry]:
        window_start = now - self.window_seconds
        entries = [e for e in self._windows.get(operator_id, []) if e.timestamp > window_start]
        self._windows[operator_id] = entries
        return entries

    def _decide(self, operator_id: str, item_count: int, operation_type: str, now: float) -> RateLimitDecision:
        entries = self._prune(operator_id, now)
        decision = RateLimitDecision(
            operation_type=operation_type,
            quota=self.quota_for(operation_type),
            current_usage=sum(e.item_count for e in entries),
            requested=item_count,
        )

        if decision.current_usage + item_count > decision.quota:
            logger.warning(
                "Bulk rate limit exceeded for operator %s: %d + %d > %d (%s)",
                operator_id,
                decision.current_usage,
                item_count,
                decision.quota,
                operation_type,
            )
            raise RateLimitExceededError(
                operation_type=operation_type,
                quota=decision.quota,
                current_usage=decision.current_usage,
                requested=item_count,
                window_seconds=self.window_seconds,
            )
        return decision

    async def check(self, operator_id: str, item_count: int, operation_type: str) -> RateLimitDecision:
        """Check a request against the quota without reserving capacity."""
        async with self._lock:
            return self._decide(operator_id, item_count, operation_type, self._clock())

    async def check_and_reserve(
        self,
        operator_id: str,
        item_count: int,
        operation_type: str,
    ) -> RateLimitDecision:
        """
        Check a request against the quota and, if it fits, record it.

        Raises:
            RateLimitExceededError: if the request would exceed the quota
        """
        async with self._lock:
            now = self._clock()
            decision = self._decide(operator_id, item_count, operation_type, now)
            self._windows[operator_id].append(
                WindowEntry(timestamp=now, item_count=item_count, operation_type=operation_type)
            )

        if self._audit is not None:
            try:
                await self._audit.log_action(AuditEvent(
                    actor_id=operator_id,
                    action="RATE_LIMIT_CHECK",
                    entity_type="system",
                    entity_id="rate_limiter",
                    changes={
                        "operation_type": operation_type,
                        "item_count": item_count,
                        "current_usage": decision.current_usage,
                        "max_allowed": decision.quota,
                        "utilization_percentage": decision.utilization_percentage,
                    },
                    metadata={"window_seconds": self.window_seconds},
                    severity="low",
                ))
            except Exception as e:
                logger.warning("Failed to audit rate limit check: %s", e)

        return decision

    async def usage(self, operator_id: str) -> dict[str, int]:
        """Items used in the current window, per operation type."""
        async with self._lock:
            totals: dict[str, int] = {}
            for entry in self._prune(operator_id, self._clock()):
                totals[entry.operation_type] = totals.get(entry.operation_type, 0) + entry.item_count
            return totals
