"""
Pre-flight validation for bulk operations.

Every check is side-effect free and fails fast with a BulkValidationError
carrying a human-readable reason and a machine-readable code.
"""

from dataclasses import dataclass, field
from typing import Any

from backoffice.core.exceptions import BulkValidationError
from backoffice.services.bulk.base import (
    CRITICAL_OPERATIONS,
    AdditionalAuth,
    BulkRequest,
    EntityType,
    OperationType,
    Operator,
    bulk_permission,
)

HARD_BATCH_CEILING = 500
MAX_ITEMS = HARD_BATCH_CEILING * 10
LARGE_BULK_THRESHOLD = 100
LARGE_DELETE_THRESHOLD = 50

SUPPORTED_ENTITY_TYPES = frozenset(e.value for e in EntityType)
SUPPORTED_OPERATIONS = frozenset(o.value for o in OperationType)


@dataclass
class OperationPlan:
    """A request that passed validation, with its type and entity resolved."""

    operation_type: OperationType
    entity_type: EntityType
    entity_ids: list[str]
    operator: Operator
    data: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def item_count(self) -> int:
        return len(self.entity_ids)


def validate_bulk_request(request: BulkRequest, max_items: int = MAX_ITEMS) -> OperationPlan:
    """
    Validate a bulk request and resolve it into an OperationPlan.

    Raises:
        BulkValidationError: on the first failed check
    """
    _check_shape(request, max_items)
    operator = request.admin_user
    op_type = request.type
    entity_type = request.entity_type
    count = len(request.entity_ids)

    if not (operator.has(bulk_permission(op_type, entity_type)) or operator.has("BULK_ALL")):
        raise BulkValidationError(
            f"Insufficient permissions for bulk {op_type} on {entity_type}",
            "PERMISSION_DENIED",
        )

    _check_confirmation(op_type, count, operator, request.additional_auth)

    if entity_type not in SUPPORTED_ENTITY_TYPES:
        raise BulkValidationError(f"Unsupported entity type: {entity_type}", "UNSUPPORTED_ENTITY_TYPE")
    if op_type not in SUPPORTED_OPERATIONS:
        raise BulkValidationError(f"Unsupported operation type: {op_type}", "UNSUPPORTED_OPERATION")

    if op_type == OperationType.DELETE.value:
        _check_delete(entity_type, count, operator, request.options)

    return OperationPlan(
        operation_type=OperationType(op_type),
        entity_type=EntityType(entity_type),
        entity_ids=[str(entity_id) for entity_id in request.entity_ids],
        operator=operator,
        data=dict(request.data or {}),
        options=dict(request.options or {}),
        metadata=dict(request.metadata or {}),
    )


def _check_shape(request: BulkRequest, max_items: int) -> None:
    if not request.type or not request.entity_type or request.entity_ids is None or request.admin_user is None:
        raise BulkValidationError("Missing required parameters for bulk operation", "MISSING_FIELD")

    if not isinstance(request.entity_ids, (list, tuple)) or len(request.entity_ids) == 0:
        raise BulkValidationError("Entity IDs must be a non-empty array", "EMPTY_ENTITY_IDS")

    if len(request.entity_ids) > max_items:
        raise BulkValidationError(
            f"Bulk operation exceeds maximum allowed items ({max_items})",
            "TOO_MANY_ITEMS",
        )


def _check_confirmation(
    op_type: str,
    count: int,
    operator: Operator,
    additional_auth: AdditionalAuth | None,
) -> None:
    is_critical = op_type in CRITICAL_OPERATIONS
    if not is_critical and count <= LARGE_BULK_THRESHOLD:
        return

    if additional_auth is None or not additional_auth.confirmed:
        raise BulkValidationError(
            "Additional authentication required for critical bulk operations",
            "CONFIRMATION_REQUIRED",
        )

    if is_critical and not operator.has("CRITICAL_BULK_OPERATIONS"):
        raise BulkValidationError(
            "Elevated permissions required for critical bulk operations",
            "ELEVATED_PERMISSION_REQUIRED",
        )


def _check_delete(entity_type: str, count: int, operator: Operator, options: dict[str, Any]) -> None:
    if count > LARGE_DELETE_THRESHOLD and not operator.has("BULK_DELETE_LARGE"):
        raise BulkValidationError(
            "Large bulk delete operations require special permissions",
            "LARGE_DELETE_PERMISSION_REQUIRED",
        )

    if entity_type == EntityType.USER.value and not (options or {}).get("allow_admin_deletion"):
        raise BulkValidationError(
            "Bulk deletion of users requires explicit admin deletion flag",
            "ADMIN_DELETION_FLAG_REQUIRED",
        )
