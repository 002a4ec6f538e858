"""Schemas for the bulk operations API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class BulkOptions(BaseModel):
    """Execution options; unknown keys are passed through to the engine."""

    model_config = ConfigDict(extra="allow")

    batch_size: int | None = Field(None, ge=1)
    batch_delay_ms: int | None = Field(None, ge=0, le=60000)
    allow_admin_deletion: bool = False


class BulkOperationRequest(BaseModel):
    # Kept loose so the engine's validator reports the specific reason
    type: str | None = None
    entity_type: str | None = None
    entity_ids: list[str] | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    options: BulkOptions = Field(default_factory=BulkOptions)
    confirmed: bool = False
    requires_confirmation: bool = True
    background: bool = False


class BulkValidateRequest(BaseModel):
    type: str | None = None
    entity_type: str | None = None
    entity_ids: list[str] | None = None
    options: BulkOptions = Field(default_factory=BulkOptions)
    confirmed: bool = False


class ErrorEntryResponse(BaseModel):
    entity_id: str
    message: str
    error_code: str
    timestamp: datetime


class OperationResultResponse(BaseModel):
    operation_id: str
    success: bool
    processed: int
    failed: int
    total: int
    errors: list[ErrorEntryResponse]
    duration_ms: int
    status: str


class BulkExecuteResponse(BaseModel):
    success: bool = True
    operation_id: str
    result: OperationResultResponse


class BulkSubmitResponse(BaseModel):
    operation_id: str
    status: str


class OperationProgress(BaseModel):
    total: int
    processed: int
    failed: int
    percentage: int


class OperationStatusResponse(BaseModel):
    id: str
    type: str
    entity_type: str
    status: str
    progress: OperationProgress
    errors: list[ErrorEntryResponse]
    start_time: datetime
    end_time: datetime | None
    duration_ms: int
    error_message: str | None = None


class ActiveOperationsResponse(BaseModel):
    operations: list[OperationStatusResponse]


class CancelResponse(BaseModel):
    success: bool = True
    operation_id: str
    status: str
    message: str


class OperationSummary(BaseModel):
    type: str
    entity_type: str
    item_count: int
    batch_size: int
    estimated_batches: int
    estimated_duration_seconds: int
    requires_confirmation: bool
    risk_level: str


class BulkValidateResponse(BaseModel):
    valid: bool
    summary: OperationSummary | None = None
    error: str | None = None
    code: str | None = None


class SupportedOperation(BaseModel):
    type: str
    label: str
    description: str
    requires_confirmation: bool
    risk_level: str
    supported_entities: list[str]


class SupportedOperationsResponse(BaseModel):
    operations: list[SupportedOperation]


class RollbackResponse(BaseModel):
    success: bool = True
    operation_id: str
    snapshots_held: int
    message: str


class ErrorAnalysisResponse(BaseModel):
    total_errors: int
    errors_by_type: dict[str, int]
    errors_by_code: dict[str, int]
    recommendations: list[str]


class RateLimitStatus(BaseModel):
    window_seconds: float
    limits: dict[str, int]
    current_usage: dict[str, int]


class SafetyMetricsResponse(BaseModel):
    rate_limit_status: RateLimitStatus
    safety_features: dict[str, bool]
    active_operations: int


class BulkHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actor_id: UUID | None
    action: str
    entity_type: str
    entity_id: str | None
    changes: dict | None
    severity: str
    created_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total_count: int
    total_pages: int


class BulkHistoryResponse(BaseModel):
    operations: list[BulkHistoryEntry]
    pagination: Pagination
