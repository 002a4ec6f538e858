"""Catalogue of bulk operations offered to operators."""

from dataclasses import asdict, dataclass

from backoffice.services.bulk.base import EntityType, OperationType, Operator, bulk_permission

ALL_ENTITIES = tuple(e.value for e in EntityType)
ACCOUNT_ENTITIES = (EntityType.USER.value, EntityType.SUBSCRIPTION.value)


@dataclass(frozen=True)
class OperationDescriptor:
    type: str
    label: str
    description: str
    requires_confirmation: bool
    risk_level: str
    supported_entities: tuple[str, ...]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["supported_entities"] = list(self.supported_entities)
        return data


OPERATIONS = (
    OperationDescriptor(
        type=OperationType.DELETE.value,
        label="Delete",
        description="Permanently delete selected items",
        requires_confirmation=True,
        risk_level="high",
        supported_entities=ALL_ENTITIES,
    ),
    OperationDescriptor(
        type=OperationType.UPDATE.value,
        label="Update",
        description="Update selected items with new data",
        requires_confirmation=False,
        risk_level="medium",
        supported_entities=ALL_ENTITIES,
    ),
    OperationDescriptor(
        type=OperationType.ACTIVATE.value,
        label="Activate",
        description="Activate selected items",
        requires_confirmation=False,
        risk_level="low",
        supported_entities=ACCOUNT_ENTITIES,
    ),
    OperationDescriptor(
        type=OperationType.DEACTIVATE.value,
        label="Deactivate",
        description="Deactivate selected items",
        requires_confirmation=False,
        risk_level="medium",
        supported_entities=ACCOUNT_ENTITIES,
    ),
    OperationDescriptor(
        type=OperationType.SUSPEND.value,
        label="Suspend",
        description="Suspend selected items",
        requires_confirmation=True,
        risk_level="high",
        supported_entities=ACCOUNT_ENTITIES,
    ),
)


def supported_operations(operator: Operator) -> list[OperationDescriptor]:
    """Operations the operator may run on at least one entity type."""
    if operator.has("BULK_ALL"):
        return list(OPERATIONS)
    return [
        op for op in OPERATIONS
        if any(operator.has(bulk_permission(op.type, entity)) for entity in op.supported_entities)
    ]
