"""
Diagnostic sinks.

The estimator reports everything through `DiagnosticSink.record(severity,
event, payload)`; severities are the stdlib `logging` levels.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, NamedTuple, Optional

# ─── Event names ───────────────────────────────────────────
CONFIGURATION_ERROR = "configuration_error"
PRIMING             = "priming"
NO_MEASUREMENTS     = "no_measurements"
ORIENTATION_DROPPED = "orientation_dropped"
SMALL_QUATERNION    = "small_quaternion"
NUMERIC_DIVERGENCE  = "numeric_divergence"


class DiagnosticEvent(NamedTuple):
    severity: int
    event: str
    payload: Dict[str, Any]


class DiagnosticSink(ABC):
    @abstractmethod
    def record(self, severity: int, event: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingSink(DiagnosticSink):
    """Forward events to a `logging.Logger`."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("GraftUKF")

    def record(self, severity: int, event: str, payload: Dict[str, Any]) -> None:
        if not self.logger.isEnabledFor(severity):
            return
        details = ", ".join(f"{k}={v}" for k, v in payload.items())
        self.logger.log(severity, "%s: %s", event, details)


class MemorySink(DiagnosticSink):
    """Keep every event in memory (tests, demo summaries)."""

    def __init__(self, min_severity: int = logging.NOTSET):
        self.min_severity = min_severity
        self.events: List[DiagnosticEvent] = []

    def record(self, severity: int, event: str, payload: Dict[str, Any]) -> None:
        if severity >= self.min_severity:
            self.events.append(DiagnosticEvent(severity, event, dict(payload)))

    def of(self, event: str) -> List[DiagnosticEvent]:
        return [e for e in self.events if e.event == event]

    def clear(self) -> None:
        self.events.clear()
