"""
Audit sink.

Purpose
Every component emits its decisions through one sink so an operator can read
back exactly what the orchestrator observed, decided and commanded.

Behavior
emit writes one timestamped line to stdout and, when a log destination is
configured, appends the same line to it. Handlers flush per event.

ERROR events signal failure upward. They are collected in failures and passed
to on_error when set. The sink never aborts anything itself; the caller
decides whether the enclosing playbook continues.

The sink owns its logging handlers. It does not touch the root logger.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path
from typing import Callable, TextIO

from power_orchestrator.audit.trail import JsonlAuditTrail
from power_orchestrator.core.serialization import to_json_safe_dict

LINE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class AuditLevel(StrEnum):
    info = "INFO"
    warning = "WARNING"
    error = "ERROR"

    @property
    def logging_level(self) -> int:
        return logging.getLevelName(self.value)


@dataclass(frozen=True)
class AuditEvent:
    """
    One audit event.

    timestamp
    Time the event was emitted, timezone aware.

    level
    INFO, WARNING or ERROR.

    message
    Human readable decision or observation.
    """

    timestamp: datetime
    level: AuditLevel
    message: str


class _IsoFormatter(logging.Formatter):
    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: N802
        return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="seconds")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuditSink:
    """
    Process wide, append only audit sink.

    log_path
    Optional file the formatted lines are appended to.

    stream
    Console stream, stdout by default.

    trail
    Optional JSON line trail receiving every event as structured data.

    on_error
    Optional callback invoked with each ERROR event.
    """

    def __init__(
        self,
        log_path: Path | None = None,
        stream: TextIO | None = None,
        trail: JsonlAuditTrail | None = None,
        on_error: Callable[[AuditEvent], None] | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._trail = trail
        self._on_error = on_error
        self._clock = clock
        self._events: list[AuditEvent] = []

        formatter = _IsoFormatter(LINE_FORMAT)
        self._handlers: list[logging.Handler] = []

        console = logging.StreamHandler(stream if stream is not None else sys.stdout)
        console.setFormatter(formatter)
        self._handlers.append(console)

        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
            file_handler.setFormatter(formatter)
            self._handlers.append(file_handler)

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    @property
    def failures(self) -> list[AuditEvent]:
        return [e for e in self._events if e.level == AuditLevel.error]

    @property
    def failed(self) -> bool:
        return any(e.level == AuditLevel.error for e in self._events)

    def emit(self, level: AuditLevel, message: str) -> AuditEvent:
        event = AuditEvent(timestamp=self._clock(), level=AuditLevel(level), message=message)
        self._events.append(event)

        record = logging.LogRecord(
            name="power_orchestrator.audit",
            level=event.level.logging_level,
            pathname=__file__,
            lineno=0,
            msg=message,
            args=None,
            exc_info=None,
        )
        record.created = event.timestamp.timestamp()
        for handler in self._handlers:
            handler.handle(record)
            handler.flush()

        if self._trail is not None:
            self._trail.log(to_json_safe_dict(event), at=event.timestamp)

        if event.level == AuditLevel.error and self._on_error is not None:
            self._on_error(event)

        return event

    def info(self, message: str) -> AuditEvent:
        return self.emit(AuditLevel.info, message)

    def warning(self, message: str) -> AuditEvent:
        return self.emit(AuditLevel.warning, message)

    def error(self, message: str) -> AuditEvent:
        return self.emit(AuditLevel.error, message)

    def close(self) -> None:
        """Close file handlers. The console stream is left open."""
        for handler in self._handlers:
            if isinstance(handler, logging.FileHandler):
                handler.close()
