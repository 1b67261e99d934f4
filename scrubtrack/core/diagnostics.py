"""
Structured diagnostics for the tracking pipeline.

DiagnosticsLog keeps a bounded ring of recent events (frame index,
operation name, payload) that a host application may display or export.
Every event is also forwarded to the standard logging module, so the
log is a side channel only: nothing in the pipeline reads it back.
"""

import json
import logging
import time
from collections import deque
from dataclasses import dataclass, field, asdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class DiagnosticEvent:
    """A single diagnostics event."""
    frame: int
    operation: str
    data: dict[str, Any] = field(default_factory=dict)
    level: str = "info"
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DiagnosticsLog:
    """
    Bounded event log with optional sink.

    Example:
        >>> diagnostics = DiagnosticsLog(capacity=50)
        >>> diagnostics.log(12, "TRACKING_SUMMARY", {"accepted": 3})
        >>> diagnostics.export_json()
    """

    def __init__(
        self,
        capacity: int = 100,
        sink: Callable[[DiagnosticEvent], None] | None = None,
        logger_: logging.Logger | None = None,
    ):
        """
        Args:
            capacity: Number of most recent events retained
            sink: Optional callable receiving every event as it is logged
            logger_: Logger used for forwarding (defaults to this module's)
        """
        self.capacity = capacity
        self.sink = sink
        self._events: deque[DiagnosticEvent] = deque(maxlen=capacity)
        self._logger = logger_ or logger

    def log(
        self,
        frame: int,
        operation: str,
        data: dict[str, Any] | None = None,
        level: str = "info",
    ) -> DiagnosticEvent:
        """Record an event and forward it to the logger and sink."""
        if level not in _LEVELS:
            raise ValueError(f"Unknown diagnostics level: {level}")
        event = DiagnosticEvent(frame=frame, operation=operation, data=data or {}, level=level)
        self._events.append(event)
        self._logger.log(_LEVELS[level], "[frame %d] %s %s", frame, operation, event.data)
        if self.sink is not None:
            try:
                self.sink(event)
            except Exception:
                self._logger.exception("Diagnostics sink failed on %s", operation)
        return event

    def get_events(self, operation: str | None = None) -> list[DiagnosticEvent]:
        """Return retained events, optionally filtered by operation name."""
        if operation is None:
            return list(self._events)
        return [e for e in self._events if e.operation == operation]

    def format_events(self, limit: int = 50) -> str:
        """Human-readable rendering of the most recent events."""
        if not self._events:
            return "No tracking events recorded."
        recent = list(self._events)[-limit:]
        lines = []
        for event in recent:
            stamp = time.strftime("%H:%M:%S", time.localtime(event.timestamp))
            lines.append(
                f"[{stamp}] {event.level.upper():5s} frame {event.frame} "
                f"{event.operation}: {json.dumps(event.data, default=str)}"
            )
        return "\n".join(lines)

    def export_json(self) -> str:
        """Export retained events as a JSON array."""
        return json.dumps([e.to_dict() for e in self._events], indent=2, default=str)

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
