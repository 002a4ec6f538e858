from backoffice.schemas.bulk import (
    BulkExecuteResponse,
    BulkHistoryResponse,
    BulkOperationRequest,
    BulkOptions,
    BulkSubmitResponse,
    BulkValidateRequest,
    BulkValidateResponse,
    OperationStatusResponse,
)

__all__ = [
    "BulkExecuteResponse",
    "BulkHistoryResponse",
    "BulkOperationRequest",
    "BulkOptions",
    "BulkSubmitResponse",
    "BulkValidateRequest",
    "BulkValidateResponse",
    "OperationStatusResponse",
]
