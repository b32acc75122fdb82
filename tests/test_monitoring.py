"""Tests for monitoring: health checks, request timing and structured logging."""

import json
import logging

from docops.middleware.logging_config import JSONFormatter, ReadableFormatter


def _record(msg="Document 7: draft → in_review", **extra):
    record = logging.LogRecord(
        name="docops.services.workflow_engine", level=logging.INFO, pathname=__file__,
        lineno=1, msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ── Health Endpoints ────────────────────────────────────────────────────


class TestHealthEndpoints:
    """Health check endpoint tests."""

    def test_health_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_health_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "ok"
        assert "blob_store" in data["checks"]
        assert data["checks"]["app"]["testing"] is True

    def test_unknown_route_is_json_404(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ── Request Timing ──────────────────────────────────────────────────────


class TestRequestTiming:
    """Request timing middleware tests."""

    def test_duration_header_present(self, client):
        """Every response should have X-Request-Duration-Ms header."""
        res = client.get("/api/v1/health/ready")
        assert "X-Request-Duration-Ms" in res.headers
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health/ready")
        assert len(res.headers["X-Request-ID"]) > 0

    def test_custom_request_id_passthrough(self, client):
        """Client-provided X-Request-ID should be preserved."""
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "test-123"})
        assert res.headers["X-Request-ID"] == "test-123"

    def test_error_responses_are_timed(self, client):
        res = client.get("/api/v1/documents/99999")
        assert res.status_code == 404
        assert "X-Request-Duration-Ms" in res.headers


# ── Structured Logging ──────────────────────────────────────────────────


class TestLogFormatters:
    def test_json_formatter_carries_context(self):
        line = JSONFormatter().format(_record(document_id=7, project_id=3, event_type="transition"))
        entry = json.loads(line)
        assert entry["level"] == "INFO"
        assert entry["message"] == "Document 7: draft → in_review"
        assert entry["document_id"] == 7
        assert entry["project_id"] == 3
        assert entry["event_type"] == "transition"
        assert "package_id" not in entry

    def test_readable_formatter_shows_document(self):
        line = ReadableFormatter().format(_record(document_id=7))
        assert "doc=7" in line
        assert "draft → in_review" in line

    def test_readable_formatter_without_context(self):
        line = ReadableFormatter().format(_record(msg="plain"))
        assert "doc=" not in line
