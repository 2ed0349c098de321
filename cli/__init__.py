"""
Studio CLI Tools

Command-line helpers for the generation workflow.

Tools:
- progress_monitor: Console rendering of workflow progress and event logs
"""

from .progress_monitor import ProgressMonitor, format_log_entry, format_snapshot

__all__ = ["ProgressMonitor", "format_log_entry", "format_snapshot"]
