import logging

from backoffice.core.logging import LogHelper, redact_sensitive_data, redact_string


def test_sensitive_keys_are_redacted():
    event = {"event": "login", "access_token": "abc", "Authorization": "Bearer xyz", "operation_id": "op-1"}

    redacted = redact_sensitive_data(None, "info", event)

    assert redacted["access_token"] == "***REDACTED***"
    assert redacted["Authorization"] == "***REDACTED***"
    assert redacted["operation_id"] == "op-1"
    assert event["access_token"] == "abc"


def test_email_masked():
    assert redact_string("operator@example.com") == "o***@example.com"


def test_long_token_like_values_truncated():
    assert redact_string("a" * 12 + "b" * 12) == "aaaaaaaa...bbbb"
    assert redact_string("bulk delete started") == "bulk delete started"


def test_log_helper_adds_context(caplog):
    helper = LogHelper("backoffice.tests")

    with caplog.at_level(logging.INFO, logger="backoffice.tests"):
        helper.info("audit: BULK_DELETE_START", operation_id="op-1")

    record = caplog.records[-1]
    assert record.getMessage() == "audit: BULK_DELETE_START"
    assert record.service == "backoffice"
    assert record.operation_id == "op-1"
