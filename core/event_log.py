"""
Bounded in-memory event log.

Keeps the last N entries for the admin/log routes. Owned by whoever builds
the app (see services.api.server.create_app) rather than living as a module
global, and fed from the standard logging tree through EventLogHandler.
"""

import csv
import io
import json
import logging
import time
import uuid
from collections import Counter, deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

LEVELS = ("debug", "info", "warn", "error")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LogEntry:
    """A single event log entry."""

    level: str
    service: str
    action: str
    timestamp: datetime = field(default_factory=_utcnow)
    user_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    duration_ms: Optional[float] = None
    status_code: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class LogFilter:
    """Read filter for EventLog.query."""
    service: Optional[str] = None
    level: Optional[str] = None
    since: Optional[datetime] = None
    limit: Optional[int] = None


class EventLog:
    """
    Append-only log that retains only the most recent `max_entries`.

    Usage:
        events = EventLog(max_entries=1000)
        events.record(LogEntry(level="info", service="veo", action="submit"))

        recent_errors = events.query(LogFilter(level="error", limit=20))
    """

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, entry: LogEntry):
        """Append an entry, evicting the oldest once full."""
        self._entries.append(entry)

    def query(self, log_filter: Optional[LogFilter] = None) -> list[LogEntry]:
        """Return entries matching the filter, oldest first."""
        entries = list(self._entries)
        if log_filter is None:
            return entries

        if log_filter.service:
            entries = [e for e in entries if e.service == log_filter.service]
        if log_filter.level:
            entries = [e for e in entries if e.level == log_filter.level]
        if log_filter.since:
            entries = [e for e in entries if e.timestamp >= log_filter.since]
        if log_filter.limit:
            entries = entries[-log_filter.limit:]

        return entries

    def clear(self):
        self._entries.clear()
        logger.info("Event log cleared")

    def stats(self) -> dict[str, Any]:
        """Totals by level and service, average request duration, error count."""
        by_level = Counter(e.level for e in self._entries)
        by_service = Counter(e.service for e in self._entries)
        durations = [e.duration_ms for e in self._entries if e.duration_ms]

        return {
            "total": len(self._entries),
            "by_level": dict(by_level),
            "by_service": dict(by_service),
            "avg_duration_ms": sum(durations) / len(durations) if durations else 0.0,
            "errors": by_level.get("error", 0),
        }

    def to_json(self, entries: Optional[list[LogEntry]] = None) -> str:
        entries = self.query() if entries is None else entries
        return json.dumps([e.to_dict() for e in entries], indent=2)

    def to_csv(self, entries: Optional[list[LogEntry]] = None) -> str:
        entries = self.query() if entries is None else entries
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["Timestamp", "Level", "Service", "Action", "Duration", "Status", "Details"])
        for e in entries:
            writer.writerow([
                e.timestamp.isoformat(),
                e.level,
                e.service,
                e.action,
                "" if e.duration_ms is None else round(e.duration_ms, 1),
                "" if e.status_code is None else e.status_code,
                json.dumps(e.details, default=str),
            ])
        return buffer.getvalue()

    @contextmanager
    def api_request(
        self,
        service: str,
        method: str,
        endpoint: str,
        user_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> Iterator[dict[str, Any]]:
        """
        Record a request start entry, then a timed completion entry.

        The caller sets `outcome["status_code"]` (and optionally
        `outcome["error"]`) inside the block.
        """
        request_id = uuid.uuid4().hex[:12]
        base_details = {"request_id": request_id, **(details or {})}
        self.record(LogEntry(
            level="info",
            service=service,
            action=f"{method} {endpoint}",
            user_id=user_id,
            details=dict(base_details),
        ))

        outcome: dict[str, Any] = {"status_code": 500}
        started = time.perf_counter()
        try:
            yield outcome
        finally:
            status_code = int(outcome.get("status_code") or 500)
            end_details = dict(base_details)
            if outcome.get("error"):
                end_details["error"] = str(outcome["error"])

            if status_code >= 400:
                level = "error"
            elif status_code >= 300:
                level = "warn"
            else:
                level = "info"

            self.record(LogEntry(
                level=level,
                service=service,
                action=f"{method} {endpoint} - {status_code}",
                user_id=user_id,
                details=end_details,
                duration_ms=(time.perf_counter() - started) * 1000,
                status_code=status_code,
            ))


_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


class EventLogHandler(logging.Handler):
    """Mirrors standard logging records into an EventLog."""

    def __init__(self, event_log: EventLog, level: int = logging.INFO):
        super().__init__(level)
        self.event_log = event_log

    def emit(self, record: logging.LogRecord):
        try:
            details = dict(getattr(record, "details", None) or {})
            if record.exc_info and record.exc_info[1] is not None:
                details["error"] = repr(record.exc_info[1])
            self.event_log.record(LogEntry(
                level=_LEVEL_NAMES.get(record.levelno, "info"),
                service=getattr(record, "service", None) or record.name,
                action=record.getMessage(),
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc),
                details=details,
            ))
        except Exception:
            self.handleError(record)
