"""
Studio Core Components

Provides foundational infrastructure for the generative media studio:
- Environment-driven configuration
- Error taxonomy shared by services and client
- Bounded event log for request auditing
"""

from .config import Config, get_config
from .errors import StudioError
from .event_log import EventLog, EventLogHandler, LogEntry, LogFilter

__all__ = [
    "Config",
    "get_config",
    "StudioError",
    "EventLog",
    "EventLogHandler",
    "LogEntry",
    "LogFilter",
]
