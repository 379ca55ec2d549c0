"""Tests for observability utilities."""

import json
import logging

from flowrelay.observability.correlation import (
    correlation_scope,
    get_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from flowrelay.observability.logging import JsonFormatter, get_logger
from flowrelay.observability.redaction import (
    hash_identifier,
    redact_string,
    redact_value,
    safe_log_context,
)


class TestRedaction:
    """Tests for redaction helpers."""

    def test_redact_phone_number(self):
        result = redact_string("Call me at +55 11 99999-8888")
        assert "99999" not in result
        assert "[REDACTED]" in result

    def test_redact_email(self):
        result = redact_string("Email: user@example.com")
        assert "user@example.com" not in result

    def test_redact_bearer_token(self):
        result = redact_string("Authorization: Bearer EAAGabc123")
        assert "EAAGabc123" not in result

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"text": "secret words", "to": "+5511999998888"})
        assert "secret words" not in result
        assert "text" in result

    def test_redact_value_list_only_len(self):
        assert redact_value(["a", "b", "c"]) == "list(len=3)"

    def test_redact_value_scalars(self):
        assert redact_value(None) == "null"
        assert redact_value(True) == "true"
        assert redact_value(3) == "3"

    def test_safe_log_context(self):
        ctx = safe_log_context(phone="+5511999998888", count=42)
        assert "[REDACTED]" in ctx["phone"]
        assert ctx["count"] == "42"

    def test_hash_identifier_is_stable_and_short(self):
        assert hash_identifier("+15550001111") == hash_identifier("+15550001111")
        assert hash_identifier("+15550001111") != hash_identifier("+15550002222")
        assert len(hash_identifier("x")) == 12


class TestCorrelation:
    def test_set_and_reset(self):
        token = set_correlation_id("cid-1")
        assert get_correlation_id() == "cid-1"
        reset_correlation_id(token)
        assert get_correlation_id() == ""

    def test_scope_generates_id_when_missing(self):
        with correlation_scope(None) as cid:
            assert cid
            assert get_correlation_id() == cid
        assert get_correlation_id() == ""

    def test_scope_uses_given_id(self):
        with correlation_scope("job-cid"):
            assert get_correlation_id() == "job-cid"


class TestJsonFormatter:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("flowrelay.test", logging.INFO, __file__, 1, "hello", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        data = json.loads(JsonFormatter().format(self._record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "flowrelay.test"
        assert data["message"] == "hello"
        assert "correlationId" not in data

    def test_extra_fields_and_correlation(self):
        with correlation_scope("cid-9"):
            line = JsonFormatter().format(self._record(extra_fields={"tenant_id": "t1"}))

        data = json.loads(line)
        assert data["tenant_id"] == "t1"
        assert data["correlationId"] == "cid-9"

    def test_get_logger_configures_once(self):
        logger = get_logger("flowrelay.test.once")
        get_logger("flowrelay.test.once")

        assert len(logger.handlers) == 1
        assert logger.propagate is False
