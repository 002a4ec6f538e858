"""Custom exceptions for the bulk operation engine."""


class BulkOperationError(Exception):
    """Base class for errors raised by the bulk operation engine."""


class BulkValidationError(BulkOperationError):
    """Raised when a bulk request is rejected before any work starts."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class RateLimitExceededError(BulkOperationError):
    """Raised when an operator exceeds the item quota for an operation type."""

    def __init__(
        self,
        operation_type: str,
        quota: int,
        current_usage: int,
        requested: int,
        window_seconds: float = 60.0,
    ):
        self.operation_type = operation_type
        self.quota = quota
        self.current_usage = current_usage
        self.requested = requested
        self.window_seconds = window_seconds
        super().__init__(
            f"Rate limit exceeded for {operation_type} operations. "
            f"Maximum {quota} items per {window_seconds:g} seconds allowed. "
            f"Current usage: {current_usage}, Requested: {requested}"
        )

    def to_dict(self) -> dict:
        return {
            "operation_type": self.operation_type,
            "quota": self.quota,
            "current_usage": self.current_usage,
            "requested": self.requested,
            "window_seconds": self.window_seconds,
        }


class OperationNotFoundError(BulkOperationError):
    """Raised when an operation id is unknown or has already been evicted."""

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Operation not found or already evicted: {operation_id}")


class CancellationDeniedError(BulkOperationError):
    """Raised when an operator may not cancel someone else's operation."""

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__("Insufficient permissions to cancel this operation")


class OperationNotCancellableError(BulkOperationError):
    """Raised when cancelling an operation that already reached a terminal state."""

    def __init__(self, operation_id: str, status: str):
        self.operation_id = operation_id
        self.status = status
        super().__init__(f"Operation {operation_id} is already {status}")
