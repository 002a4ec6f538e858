import json
from unittest.mock import MagicMock

import pytest

from backoffice.core.errors import (
    ErrorCode,
    ErrorResponse,
    conflict,
    http_error_handler,
    not_found,
    too_many_requests,
    validation_error,
)


def test_error_response_envelope():
    response = ErrorResponse.create(
        code=ErrorCode.NOT_FOUND,
        message="Operation not found",
        status_code=404,
        details={"operation_id": "op-1"},
        request_id="req-1",
    )

    assert response.status_code == 404
    assert json.loads(response.body) == {
        "error": {
            "code": "NOT_FOUND",
            "message": "Operation not found",
            "details": {"operation_id": "op-1"},
            "request_id": "req-1",
        }
    }


def test_helpers_status_codes():
    assert not_found("Operation").status_code == 404
    assert conflict("already completed").status_code == 409
    assert validation_error("bad").status_code == 400
    assert validation_error("bad", code=ErrorCode.CONFIRMATION_REQUIRED).code == "CONFIRMATION_REQUIRED"


def test_too_many_requests_sets_retry_after():
    err = too_many_requests("slow down", retry_after=30)
    assert err.status_code == 429
    assert err.headers == {"Retry-After": "30"}


@pytest.mark.asyncio
async def test_handler_uses_request_id():
    request = MagicMock()
    request.state.request_id = "req-9"

    response = await http_error_handler(request, too_many_requests("slow down", details={"quota": 100}))

    body = json.loads(response.body)
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"
    assert body["error"]["request_id"] == "req-9"
    assert body["error"]["details"] == {"quota": 100}
