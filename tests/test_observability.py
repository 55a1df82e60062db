"""Tests for observability utilities."""

import json
import logging

from fiscalia.observability.logging import (
    JsonFormatter,
    correlation_scope,
    get_correlation_id,
)
from fiscalia.observability.redaction import (
    mask_document,
    redact_string,
    redact_value,
    safe_log_context,
    shorten_technical,
)


class TestRedaction:
    """Tests for redaction helpers."""

    def test_redact_cpf_and_cnpj(self):
        result = redact_string("cliente 529.982.247-25 e empresa 11.222.333/0001-81")
        assert "529.982.247-25" not in result
        assert "11.222.333/0001-81" not in result
        assert result.count("[REDACTED]") == 2

    def test_redact_bare_document_digits(self):
        assert "52998224725" not in redact_string("cpf 52998224725")

    def test_redact_phone_number(self):
        result = redact_string("Call me at +55 11 99999-8888")
        assert "99999" not in result
        assert "[REDACTED]" in result

    def test_redact_email(self):
        result = redact_string("Email: user@example.com")
        assert "user@example.com" not in result
        assert "[REDACTED]" in result

    def test_mask_document(self):
        assert mask_document("65325273949") == "***49"
        assert mask_document(None) == "null"

    def test_shorten_technical(self):
        result = shorten_technical("x" * 400)
        assert len(result) == 300
        assert result.endswith("...")

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"password": "secret123", "user": "john"})
        assert "secret123" not in result
        assert "john" not in result
        assert "password" in result
        assert "user" in result

    def test_redact_value_list_only_len(self):
        result = redact_value(["a", "b", "c"])
        assert "a" not in result
        assert "len=3" in result

    def test_safe_log_context(self):
        ctx = safe_log_context(document="52998224725", count=42, ok=True, missing=None)
        assert ctx["document"] == "[REDACTED]"
        assert ctx["count"] == "42"
        assert ctx["ok"] == "true"
        assert ctx["missing"] == "null"


class TestJsonLogging:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("fiscalia.test", logging.INFO, __file__, 1, "invoice issued", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_one_json_line_with_extra_fields(self):
        line = JsonFormatter().format(self._record(extra_fields={"invoice_id": "inv-1"}))

        payload = json.loads(line)
        assert payload["level"] == "INFO"
        assert payload["logger"] == "fiscalia.test"
        assert payload["message"] == "invoice issued"
        assert payload["invoice_id"] == "inv-1"
        assert "correlationId" not in payload

    def test_correlation_id_is_included(self):
        with correlation_scope("cid-123") as cid:
            payload = json.loads(JsonFormatter().format(self._record()))

        assert cid == "cid-123"
        assert payload["correlationId"] == "cid-123"

    def test_scope_is_restored(self):
        with correlation_scope() as cid:
            assert get_correlation_id() == cid
            assert cid
        assert get_correlation_id() == ""
