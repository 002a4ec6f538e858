"""Bulk operations API (admin only)."""

import logging
import math
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.api.deps import get_bulk_engine, get_current_operator, get_db
from backoffice.core.errors import (
    ErrorCode,
    HTTPError,
    conflict,
    forbidden,
    internal_error,
    not_found,
    too_many_requests,
    validation_error,
)
from backoffice.core.exceptions import (
    BulkOperationError,
    BulkValidationError,
    CancellationDeniedError,
    OperationNotCancellableError,
    OperationNotFoundError,
    RateLimitExceededError,
)
from backoffice.models.audit_log import AuditLog
from backoffice.schemas.bulk import (
    ActiveOperationsResponse,
    BulkExecuteResponse,
    BulkHistoryEntry,
    BulkHistoryResponse,
    BulkOperationRequest,
    BulkSubmitResponse,
    BulkValidateRequest,
    BulkValidateResponse,
    CancelResponse,
    ErrorAnalysisResponse,
    OperationStatusResponse,
    Pagination,
    RollbackResponse,
    SafetyMetricsResponse,
    SupportedOperationsResponse,
)
from backoffice.services.bulk import (
    AdditionalAuth,
    BulkOperationEngine,
    BulkRequest,
    Operator,
    supported_operations,
)
from backoffice.services.bulk.base import CRITICAL_OPERATIONS
from backoffice.services.bulk.engine import ESTIMATED_SECONDS_PER_BATCH
from backoffice.utils.request import request_metadata

router = APIRouter(prefix="/bulk-operations", tags=["bulk-operations"])
logger = logging.getLogger(__name__)

EngineDep = Annotated[BulkOperationEngine, Depends(get_bulk_engine)]
OperatorDep = Annotated[Operator, Depends(get_current_operator)]


def to_http_error(exc: BulkOperationError) -> HTTPError:
    """Translate an engine error into the API error envelope."""
    if isinstance(exc, BulkValidationError):
        return validation_error(exc.message, details={"code": exc.code})
    if isinstance(exc, RateLimitExceededError):
        return too_many_requests(str(exc), details=exc.to_dict(), retry_after=math.ceil(exc.window_seconds))
    if isinstance(exc, OperationNotFoundError):
        return not_found("Operation", details={"operation_id": exc.operation_id})
    if isinstance(exc, CancellationDeniedError):
        return forbidden(str(exc), details={"operation_id": exc.operation_id})
    if isinstance(exc, OperationNotCancellableError):
        return conflict(str(exc), details={"operation_id": exc.operation_id, "status": exc.status})
    return internal_error(str(exc))


def _build_request(
    body: BulkOperationRequest | BulkValidateRequest,
    operator: Operator,
    request: Request,
) -> BulkRequest:
    return BulkRequest(
        type=body.type,
        entity_type=body.entity_type,
        entity_ids=body.entity_ids,
        admin_user=operator,
        data=getattr(body, "data", {}),
        options=body.options.model_dump(exclude_none=True),
        additional_auth=AdditionalAuth(confirmed=body.confirmed),
        metadata=request_metadata(request),
    )


@router.post(
    "/execute",
    response_model=BulkExecuteResponse | BulkSubmitResponse,
)
async def execute_bulk_operation(
    body: BulkOperationRequest,
    request: Request,
    response: Response,
    engine: EngineDep,
    operator: OperatorDep,
):
    """
    Execute a bulk operation.

    Destructive operations (delete, suspend) must carry ``confirmed=true``.
    With ``background=true`` the operation is started and 202 is returned
    immediately; follow it through the status endpoint or the WebSocket.
    """
    if body.requires_confirmation and body.type in CRITICAL_OPERATIONS and not body.confirmed:
        item_count = len(body.entity_ids or [])
        raise validation_error(
            "Confirmation required for destructive operations",
            details={
                "requires_confirmation": True,
                "operation_summary": {
                    "type": body.type,
                    "entity_type": body.entity_type,
                    "item_count": item_count,
                    "estimated_duration_seconds": math.ceil(item_count / 50) * ESTIMATED_SECONDS_PER_BATCH,
                },
            },
            code=ErrorCode.CONFIRMATION_REQUIRED,
        )

    bulk_request = _build_request(body, operator, request)
    bulk_request.operation_id = str(uuid.uuid4())

    try:
        if body.background:
            operation_id = await engine.submit(bulk_request)
            response.status_code = status.HTTP_202_ACCEPTED
            return BulkSubmitResponse(operation_id=operation_id, status="running")

        result = await engine.execute(bulk_request)
    except BulkOperationError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception("Error executing bulk operation %s", bulk_request.operation_id)
        raise internal_error("Bulk operation failed", details={"operation_id": bulk_request.operation_id}) from e

    return BulkExecuteResponse(operation_id=result.operation_id, result=result.to_dict())


@router.get("/active", response_model=ActiveOperationsResponse)
async def list_active_operations(engine: EngineDep, operator: OperatorDep):
    """Running and cancelling operations visible to the operator."""
    return ActiveOperationsResponse(operations=await engine.get_active(operator))


@router.post("/validate", response_model=BulkValidateResponse)
async def validate_bulk_operation(
    body: BulkValidateRequest,
    request: Request,
    engine: EngineDep,
    operator: OperatorDep,
):
    """Check a bulk operation without running it or consuming quota."""
    try:
        summary = await engine.plan(_build_request(body, operator, request))
    except BulkValidationError as e:
        return BulkValidateResponse(valid=False, error=e.message, code=e.code)
    except RateLimitExceededError as e:
        return BulkValidateResponse(valid=False, error=str(e), code=ErrorCode.RATE_LIMITED)

    return BulkValidateResponse(valid=True, summary=summary)


@router.get("/supported-operations", response_model=SupportedOperationsResponse)
async def list_supported_operations(operator: OperatorDep):
    return SupportedOperationsResponse(
        operations=[op.to_dict() for op in supported_operations(operator)]
    )


@router.get("/safety-metrics", response_model=SafetyMetricsResponse)
async def get_safety_metrics(engine: EngineDep, operator: OperatorDep):
    """Quota table, the operator's current usage and enabled safety features."""
    return await engine.safety_metrics(operator)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@router.get("/history", response_model=BulkHistoryResponse)
async def get_bulk_history(
    db: Annotated[AsyncSession, Depends(get_db)],
    operator: OperatorDep,
    type: str | None = Query(None),
    entity_type: str | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """
    Audit trail of bulk operations.

    Operators see their own entries; VIEW_ALL_BULK_OPERATIONS shows everyone's.
    """
    query = select(AuditLog).where(AuditLog.action.like("BULK\\_%", escape="\\"))

    if not operator.has("VIEW_ALL_BULK_OPERATIONS"):
        query = query.where(AuditLog.actor_id == uuid.UUID(operator.id))
    if type:
        query = query.where(AuditLog.action.like(f"BULK\\_{_escape_like(type.upper())}\\_%", escape="\\"))
    if status_filter:
        query = query.where(AuditLog.action.like(f"%\\_{_escape_like(status_filter.upper())}", escape="\\"))
    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    if start_date:
        query = query.where(AuditLog.created_at >= start_date)
    if end_date:
        query = query.where(AuditLog.created_at <= end_date)

    # Get total count
    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(AuditLog.created_at.desc()).offset((page - 1) * limit).limit(limit)
    result = await db.execute(query)

    return BulkHistoryResponse(
        operations=[BulkHistoryEntry.model_validate(log) for log in result.scalars().all()],
        pagination=Pagination(
            page=page,
            limit=limit,
            total_count=total,
            total_pages=math.ceil(total / limit),
        ),
    )


@router.get("/{operation_id}/status", response_model=OperationStatusResponse)
async def get_operation_status(operation_id: str, engine: EngineDep, _: OperatorDep):
    operation = await engine.get_status(operation_id)
    if operation is None:
        raise not_found("Operation", details={"operation_id": operation_id})
    return operation


@router.post("/{operation_id}/cancel", response_model=CancelResponse)
async def cancel_operation(operation_id: str, engine: EngineDep, operator: OperatorDep):
    """Request cancellation; takes effect at the next batch boundary."""
    try:
        ack = await engine.cancel(operation_id, operator)
    except BulkOperationError as e:
        raise to_http_error(e)
    return CancelResponse(**ack)


@router.post("/{operation_id}/rollback", response_model=RollbackResponse)
async def request_rollback(operation_id: str, engine: EngineDep, operator: OperatorDep):
    try:
        ack = await engine.request_rollback(operation_id, operator)
    except BulkOperationError as e:
        raise to_http_error(e)
    return RollbackResponse(**ack)


@router.get("/{operation_id}/error-analysis", response_model=ErrorAnalysisResponse)
async def get_error_analysis(operation_id: str, engine: EngineDep, _: OperatorDep):
    analysis = await engine.error_analysis(operation_id)
    if analysis is None:
        raise not_found("Operation", details={"operation_id": operation_id})
    return analysis
