"""Bulk operation engine: validation, rate limiting, batching and execution."""

from backoffice.services.bulk.base import (
    AdditionalAuth,
    BatchResult,
    BulkRequest,
    EntityType,
    ErrorEntry,
    OperationResult,
    OperationStatus,
    OperationType,
    Operator,
    Severity,
    classify_severity,
)
from backoffice.services.bulk.catalog import OperationDescriptor, supported_operations
from backoffice.services.bulk.engine import BulkOperationEngine
from backoffice.services.bulk.progress import ProgressNotifier, WebSocketProgressNotifier
from backoffice.services.bulk.rate_limiter import RateLimiter
from backoffice.services.bulk.state import CancellationToken, OperationRecord, OperationRegistry
from backoffice.services.bulk.store import EntityStore, RollbackStore, SqlAlchemyEntityStore
from backoffice.services.bulk.validator import OperationPlan, validate_bulk_request

__all__ = [
    # Request and result types
    "AdditionalAuth",
    "BatchResult",
    "BulkRequest",
    "EntityType",
    "ErrorEntry",
    "OperationResult",
    "OperationStatus",
    "OperationType",
    "Operator",
    "Severity",
    "classify_severity",
    # Components
    "BulkOperationEngine",
    "CancellationToken",
    "OperationDescriptor",
    "OperationPlan",
    "OperationRecord",
    "OperationRegistry",
    "RateLimiter",
    "supported_operations",
    "validate_bulk_request",
    # Collaborator contracts
    "EntityStore",
    "ProgressNotifier",
    "RollbackStore",
    "SqlAlchemyEntityStore",
    "WebSocketProgressNotifier",
]
