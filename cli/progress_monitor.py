#!/usr/bin/env python3
"""
CLI Progress Monitor for Video Generation

Renders GenerationOrchestrator snapshots as console lines. Pass a monitor as
the orchestrator's `on_change` callback.

Usage:
    monitor = ProgressMonitor()
    orchestrator = GenerationOrchestrator(..., on_change=monitor)
"""

import sys
import time
from typing import Optional, TextIO

from services.studio.orchestrator import Snapshot, TrimState, WorkflowState


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    # Clear line
    CLEAR_LINE = "\033[2K\r"


def colored(text: str, color: str) -> str:
    """Apply color to text."""
    return f"{color}{text}{Colors.RESET}"


def progress_bar(percent: float, width: int = 30) -> str:
    """Create a visual progress bar."""
    percent = max(0.0, min(percent, 100.0))
    filled = int(percent / 100 * width)
    bar = "█" * filled + "░" * (width - filled)

    if percent >= 100:
        color = Colors.GREEN
    elif percent >= 50:
        color = Colors.CYAN
    elif percent >= 25:
        color = Colors.YELLOW
    else:
        color = Colors.WHITE

    return colored(f"[{bar}]", color) + f" {percent:5.1f}%"


def format_duration(seconds: float) -> str:
    """Format duration as HH:MM:SS or MM:SS."""
    if seconds < 0:
        return "--:--"

    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


STATE_STYLE = {
    WorkflowState.IDLE: ("•", Colors.DIM, "Idle"),
    WorkflowState.SUBMITTING: ("🚀", Colors.CYAN, "Submitting generation request"),
    WorkflowState.POLLING: ("⏳", Colors.BLUE, "Waiting for the video"),
    WorkflowState.RETRIEVING: ("☁️", Colors.CYAN, "Downloading video"),
    WorkflowState.READY: ("✅", Colors.GREEN, "Video ready"),
    WorkflowState.FAILED: ("❌", Colors.RED, "Generation failed"),
}

TRIM_STYLE = {
    TrimState.TRIMMING: ("✂️", Colors.MAGENTA, "Trimming (real-time capture)"),
    TrimState.TRIMMED: ("🎬", Colors.GREEN, "Trimmed clip ready"),
    TrimState.NOT_TRIMMED: ("↩️", Colors.DIM, "Showing original video"),
}


def format_snapshot(snapshot: Snapshot, elapsed: float = 0.0) -> str:
    """Format a snapshot for display."""
    icon, color, label = STATE_STYLE[snapshot.state]
    lines = []

    if snapshot.state == WorkflowState.POLLING:
        time_info = colored(format_duration(elapsed), Colors.DIM)
        polls = colored(f"poll #{snapshot.poll_count}", Colors.DIM)
        if snapshot.progress is not None:
            lines.append(f"{Colors.CLEAR_LINE}{icon} {progress_bar(snapshot.progress)} {polls} {time_info}")
        else:
            lines.append(f"{Colors.CLEAR_LINE}{icon} {colored(label, color)} {polls} {time_info}")

    elif snapshot.state == WorkflowState.FAILED:
        lines.append(f"{icon} {colored(label, color)}: {snapshot.error_message or 'unknown error'}")
        if snapshot.error is not None and snapshot.error.details:
            lines.append(colored(f"    └─ {snapshot.error.details[:200]}", Colors.DIM))
        if snapshot.remediation:
            lines.append(colored(f"    Try: {snapshot.remediation}", Colors.YELLOW))

    elif snapshot.state == WorkflowState.READY:
        size = f"{snapshot.size_bytes / 1024 / 1024:.1f} MB" if snapshot.size_bytes else "?"
        lines.append(f"{icon} {colored(label, color)} ({snapshot.mime_type}, {size})")

    else:
        line = f"{icon} {colored(label, color)}"
        if snapshot.operation:
            line += colored(f"  {snapshot.operation}", Colors.DIM)
        lines.append(line)

    return "\n".join(lines)


def format_trim(snapshot: Snapshot) -> str:
    icon, color, label = TRIM_STYLE[snapshot.trim_state]
    line = f"{icon} {colored(label, color)}"
    if snapshot.trim_state == TrimState.TRIMMED and snapshot.mime_type:
        line += colored(f"  {snapshot.mime_type}", Colors.DIM)
    return line


class ProgressMonitor:
    """Console renderer for orchestrator snapshots."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self._started_at: Optional[float] = None
        self._last: Optional[Snapshot] = None

    def __call__(self, snapshot: Snapshot):
        self.handle(snapshot)

    def handle(self, snapshot: Snapshot):
        """Print a snapshot, updating polling lines in place."""
        last = self._last
        self._last = snapshot

        if snapshot.state == WorkflowState.SUBMITTING or self._started_at is None:
            self._started_at = time.monotonic()
        elapsed = time.monotonic() - self._started_at

        if last is not None and last.trim_state != snapshot.trim_state and last.state == snapshot.state:
            self._write(format_trim(snapshot) + "\n")
            return

        if snapshot.state == WorkflowState.POLLING:
            self._write(format_snapshot(snapshot, elapsed))
            return

        if last is not None and last.state == WorkflowState.POLLING:
            self._write("\n")
        self._write(format_snapshot(snapshot, elapsed) + "\n")

    def _write(self, text: str):
        self.stream.write(text)
        self.stream.flush()


def format_log_entry(entry: dict) -> str:
    """One line per event log entry, for `main.py logs`."""
    level = entry.get("level", "info")
    color = {
        "error": Colors.RED,
        "warn": Colors.YELLOW,
        "info": Colors.BLUE,
        "debug": Colors.DIM,
    }.get(level, Colors.WHITE)

    parts = [
        colored(entry.get("timestamp", ""), Colors.DIM),
        colored(f"{level.upper():5}", color),
        colored(entry.get("service", ""), Colors.CYAN),
        entry.get("action", ""),
    ]
    if entry.get("status_code") is not None:
        parts.append(f"[{entry['status_code']}]")
    if entry.get("duration_ms") is not None:
        parts.append(colored(f"{entry['duration_ms']:.0f}ms", Colors.DIM))
    return " ".join(parts)
