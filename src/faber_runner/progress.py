"""Side-channel progress feed for a single command execution.

Every meaningful event of an execution is written to a durable log file as
``[timestamp] TAG: message`` and, when a callback is supplied, forwarded to it
synchronously. The sink never raises: a failing file or callback must not
change the outcome of the command it reports on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, TextIO

from .parsers import strip_ansi

logger = logging.getLogger(__name__)


class ProgressTag(Enum):
    """Source of a progress event."""

    SSH = "SSH"
    STDOUT = "STDOUT"
    STDERR = "STDERR"
    TIMEOUT = "TIMEOUT"
    ERROR = "ERROR"
    DEVICE_FLOW = "DEVICE_FLOW"


# Type alias for the live progress callback
ProgressCallback = Callable[[ProgressTag, str, int], None]  # (tag, message, count) -> None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProgressEvent:
    """A single timestamped progress entry."""

    tag: ProgressTag
    message: str
    timestamp: datetime = field(default_factory=_utc_now)

    def format(self) -> str:
        stamp = self.timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return f"[{stamp}] {self.tag.value}: {self.message}"


def clean_chunk(data: str) -> str:
    """Strip ANSI escapes and surrounding whitespace from a raw output chunk."""
    return strip_ansi(data).strip()


class ProgressLog:
    """Durable progress log plus optional live callback.

    The file is truncated when the log is opened, so it only ever holds the
    events of the current execution. Use as a context manager so the file is
    closed on every exit path.
    """

    def __init__(self, path: Path | None = None, callback: ProgressCallback | None = None):
        self.path = path
        self.callback = callback
        self.events: list[ProgressEvent] = []
        self._file: TextIO | None = None

    @property
    def count(self) -> int:
        return len(self.events)

    def open(self) -> ProgressLog:
        self.events = []
        if self.path is None:
            return self
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "w", encoding="utf-8")
        except OSError as e:
            logger.warning("Cannot open progress log %s: %s", self.path, e)
            self._file = None
        return self

    def close(self) -> None:
        if self._file is None:
            return
        try:
            self._file.close()
        except OSError as e:
            logger.warning("Cannot close progress log %s: %s", self.path, e)
        finally:
            self._file = None

    def __enter__(self) -> ProgressLog:
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    def emit(self, tag: ProgressTag, message: str) -> None:
        """Record an event. Never raises."""
        event = ProgressEvent(tag, message)
        self.events.append(event)
        self._write(event)

        if self.callback:
            try:
                self.callback(tag, message, self.count)
            except Exception:
                logger.warning("Progress callback failed for %s event", tag.value, exc_info=True)

    def emit_chunk(self, tag: ProgressTag, data: str) -> None:
        """Record a raw output chunk; chunks that clean up to nothing are skipped."""
        message = clean_chunk(data)
        if message:
            self.emit(tag, message)

    def _write(self, event: ProgressEvent) -> None:
        if self._file is None:
            return
        try:
            self._file.write(event.format() + "\n")
            self._file.flush()
        except (OSError, ValueError) as e:
            logger.warning("Cannot write progress log %s: %s", self.path, e)
