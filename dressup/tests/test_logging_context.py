"""Tests for structured logging and request_id propagation."""

import json
import logging

from dressup.core.logging import JsonFormatter, PrettyFormatter, latency_bucket_ms, log_event


def test_request_id_in_response_and_logs(client, caplog):
    with caplog.at_level(logging.INFO, logger="dressup"):
        response = client.get("/api/billing/summary")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert any(r.getMessage() == "request.complete" for r in records)


def test_request_id_in_error_response(client):
    response = client.get("/api/billing/summary")
    rid = response.headers.get("x-request-id")
    assert response.status_code == 401
    assert rid
    assert response.json()["request_id"] == rid


def test_json_formatter_includes_structured_fields():
    record = logging.LogRecord("dressup", logging.INFO, __file__, 1, "stripe.webhook", None, None)
    record.request_id = "rid-1"
    record.customer_id = "cus_1"
    record.event_type = "invoice.paid"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "stripe.webhook"
    assert payload["request_id"] == "rid-1"
    assert payload["customer_id"] == "cus_1"
    assert payload["event_type"] == "invoice.paid"
    assert "user_id" not in payload


def test_pretty_formatter_prefix():
    record = logging.LogRecord("dressup", logging.WARNING, __file__, 1, "hello", None, None)
    record.request_id = None
    line = PrettyFormatter().format(record)
    assert "WARNING [dressup] hello" in line


def test_log_event_truncates_long_values(caplog):
    with caplog.at_level(logging.INFO, logger="dressup"):
        log_event("info", "test.event", user_id="u1", extra={"detail": "x" * 1000})
    record = caplog.records[-1]
    assert record.user_id == "u1"
    assert record.detail.endswith("...<truncated>")
    assert len(record.detail) < 600


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(5000) == ">=1000ms"
