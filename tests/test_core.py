"""
Core Tests - config, error taxonomy and the bounded event log.

Run with:
    python -m pytest tests/test_core.py -v
"""

import logging
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Config, get_config, reload_config
from core.errors import (
    InvalidRequest,
    NoImageProduced,
    QuotaExceeded,
    Unauthenticated,
    UpstreamDownloadFailed,
    UpstreamRejected,
    error_from_payload,
)
from core.event_log import EventLog, EventLogHandler, LogEntry, LogFilter


class TestConfig:

    def setup_method(self):
        self._saved = {k: os.environ.get(k) for k in ("POLL_INTERVAL_SECONDS", "POLL_MAX_ATTEMPTS", "STUDIO_ENV")}

    def teardown_method(self):
        for key, value in self._saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        reload_config()

    def test_polling_defaults(self):
        os.environ.pop("POLL_INTERVAL_SECONDS", None)
        os.environ.pop("POLL_MAX_ATTEMPTS", None)

        config = Config.from_env()
        assert config.polling.interval_seconds == 5.0
        assert config.polling.max_attempts is None

    def test_polling_from_env(self):
        os.environ["POLL_INTERVAL_SECONDS"] = "2.5"
        os.environ["POLL_MAX_ATTEMPTS"] = "40"

        config = Config.from_env()
        assert config.polling.interval_seconds == 2.5
        assert config.polling.max_attempts == 40

    def test_development_flag(self):
        os.environ["STUDIO_ENV"] = "development"
        reload_config()
        assert get_config().server.is_development

    def test_validate_reports_missing_key(self):
        config = Config()
        config.api.gemini_api_key = ""
        config.polling.interval_seconds = 0
        issues = config.validate()
        assert "GEMINI_API_KEY not configured" in issues
        assert "POLL_INTERVAL_SECONDS must be positive" in issues


class TestErrors:

    def test_payload_includes_code_and_details(self):
        error = InvalidRequest("Missing prompt", details="prompt was blank")
        assert error.to_payload() == {
            "error": "Missing prompt",
            "code": "invalid_request",
            "details": "prompt was blank",
        }

    def test_quota_is_upstream_rejection_with_remediation(self):
        error = QuotaExceeded(retry_after=12)
        assert isinstance(error, UpstreamRejected)
        assert error.remediation.startswith("Retry after 12s.")
        assert error.solutions == ["Wait for quota reset", "Upgrade your plan", "Retry later"]

    def test_error_from_payload_by_code(self):
        error = error_from_payload(429, {
            "error": "Quota exceeded", "code": "quota_exceeded", "retry_after": 9, "solutions": ["Retry later"],
        })
        assert isinstance(error, QuotaExceeded)
        assert error.retry_after == 9.0
        assert error.solutions == ["Retry later"]

    def test_error_from_payload_download_failure(self):
        error = error_from_payload(502, {
            "error": "Upstream download failed: 404 Not Found",
            "code": "upstream_download_failed",
            "upstream_status": 404,
        })
        assert isinstance(error, UpstreamDownloadFailed)
        assert error.upstream_status == 404
        assert error.message == "Upstream download failed: 404 Not Found"

    def test_error_from_payload_without_code(self):
        assert isinstance(error_from_payload(401, {"error": "Unauthorized"}), Unauthenticated)
        assert isinstance(error_from_payload(429, {"error": "slow down"}), QuotaExceeded)
        assert isinstance(error_from_payload(500, {}), UpstreamRejected)

    def test_subclass_codes(self):
        assert isinstance(error_from_payload(502, {"code": "no_image_produced"}), NoImageProduced)


class TestEventLog:

    def test_keeps_only_last_entries(self):
        log = EventLog(max_entries=3)
        for i in range(5):
            log.record(LogEntry(level="info", service="veo", action=f"a{i}"))

        assert len(log) == 3
        assert [e.action for e in log.query()] == ["a2", "a3", "a4"]

    def test_filters(self):
        log = EventLog()
        old = datetime.now(timezone.utc) - timedelta(hours=1)
        log.record(LogEntry(level="error", service="veo", action="old", timestamp=old))
        log.record(LogEntry(level="info", service="veo", action="submit"))
        log.record(LogEntry(level="error", service="imagen", action="generate"))
        log.record(LogEntry(level="error", service="veo", action="poll"))

        assert [e.action for e in log.query(LogFilter(service="veo", level="error"))] == ["old", "poll"]
        since = datetime.now(timezone.utc) - timedelta(minutes=1)
        assert [e.action for e in log.query(LogFilter(level="error", since=since))] == ["generate", "poll"]
        assert [e.action for e in log.query(LogFilter(limit=1))] == ["poll"]

    def test_stats(self):
        log = EventLog()
        log.record(LogEntry(level="info", service="veo", action="a", duration_ms=10))
        log.record(LogEntry(level="error", service="veo", action="b", duration_ms=30))

        stats = log.stats()
        assert stats["total"] == 2
        assert stats["errors"] == 1
        assert stats["by_service"] == {"veo": 2}
        assert stats["avg_duration_ms"] == pytest.approx(20.0)

    def test_api_request_records_start_and_completion(self):
        log = EventLog()
        with log.api_request("veo", "POST", "/api/veo/generate", user_id="u1") as outcome:
            outcome["status_code"] = 429

        start, end = log.query()
        assert start.action == "POST /api/veo/generate"
        assert end.action == "POST /api/veo/generate - 429"
        assert end.level == "error"
        assert end.user_id == "u1"
        assert end.duration_ms is not None
        assert start.details["request_id"] == end.details["request_id"]

    def test_api_request_records_exception(self):
        log = EventLog()
        with pytest.raises(RuntimeError):
            with log.api_request("veo", "GET", "/x") as outcome:
                outcome["error"] = RuntimeError("boom")
                raise RuntimeError("boom")

        end = log.query()[-1]
        assert end.status_code == 500
        assert end.details["error"] == "boom"

    def test_csv_export(self):
        log = EventLog()
        log.record(LogEntry(level="warn", service="veo", action="redirect", status_code=302))

        lines = log.to_csv().splitlines()
        assert lines[0] == "Timestamp,Level,Service,Action,Duration,Status,Details"
        assert ",warn,veo,redirect,,302," in lines[1]

    def test_logging_handler_mirrors_records(self):
        log = EventLog()
        test_logger = logging.getLogger("services.test_event_log")
        test_logger.setLevel(logging.INFO)
        handler = EventLogHandler(log)
        test_logger.addHandler(handler)
        try:
            test_logger.warning("Quota close to limit")
            test_logger.debug("ignored")
        finally:
            test_logger.removeHandler(handler)

        entries = log.query()
        assert len(entries) == 1
        assert entries[0].level == "warn"
        assert entries[0].service == "services.test_event_log"
        assert entries[0].action == "Quota close to limit"
