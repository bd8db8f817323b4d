"""
Log sink abstractions and concrete implementations.

Every sink serializes writers with its own lock: one entry is one
``write`` + ``flush`` under the lock, so lines never interleave and the
order of a single thread's calls is preserved.
"""

from __future__ import annotations

import os
import sys
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, TextIO

from .exceptions import RotationError

DEFAULT_DIR_MODE = 0o750
DEFAULT_FILE_MODE = 0o640


def fallback_write(data: str) -> None:
    """Last-resort output when the active sink itself is broken."""
    stream = sys.stderr or sys.__stderr__
    if stream is None:
        return
    try:
        stream.write(data)
        stream.flush()
    except (OSError, ValueError):
        pass


# =============================================================================
# Sink Abstraction (Strategy Pattern)
# =============================================================================


class BaseSink(ABC):
    """Abstract base class for log sinks."""

    @abstractmethod
    def write(self, line: str) -> None:
        """Append one rendered entry (without trailing newline)."""
        ...

    def flush(self) -> None:
        """Flush buffered output."""

    @abstractmethod
    def close(self) -> None:
        """Close the sink and release resources."""
        ...

    @property
    def use_color(self) -> bool:
        return False


class StreamSink(BaseSink):
    """Writes to an already-open text stream (stdout, stderr or a caller-supplied writer).

    The stream is borrowed: ``close`` flushes it but never closes it.
    """

    def __init__(self, stream: Any = None):
        self._stream = stream if stream is not None else sys.stderr
        self._lock = threading.Lock()

    @property
    def stream(self) -> Any:
        return self._stream

    @property
    def use_color(self) -> bool:
        return bool(getattr(self._stream, "isatty", lambda: False)())

    def write(self, line: str) -> None:
        data = line + "\n"
        with self._lock:
            try:
                self._stream.write(data)
                self._stream.flush()
            except (OSError, ValueError) as exc:
                fallback_write(f"relaylog: stream sink write failed: {exc}\n{data}")

    def flush(self) -> None:
        with self._lock:
            try:
                self._stream.flush()
            except (OSError, ValueError):
                pass

    def close(self) -> None:
        self.flush()


# =============================================================================
# Rotating File Sink
# =============================================================================


class SinkState(str, Enum):
    UNOPENED = "unopened"
    OPEN = "open"
    ROTATING = "rotating"
    CLOSED = "closed"


def dated_log_path(base_path: str | Path, when: datetime) -> Path:
    """``/var/log/app.log`` -> ``/var/log/app.2024-05-01.log``."""
    base = str(base_path)
    if base.endswith(".log"):
        base = base[: -len(".log")]
    return Path(f"{base}.{when:%Y-%m-%d}.log")


class RotatingFileSink(BaseSink):
    """Date-stamped append-only file sink.

    Owns the file handle exclusively. ``rotate`` swaps the handle under the
    same lock writers take, so a writer only ever sees the handle before or
    after the swap. A failed rotation leaves the previous handle active.

    The next file is opened before the current one is closed: a failed open
    must leave a usable handle behind. Two descriptors therefore coexist
    between the open and the swap, but only one is ever written to.

    Args:
        base_path: Configured path; the date is inserted before ``.log``.
        clock: Returns the current local time (injectable for tests).
        dir_mode: Mode for created parent directories.
        file_mode: Mode for created log files.
    """

    def __init__(
        self,
        base_path: str | Path,
        *,
        clock: Callable[[], datetime] | None = None,
        dir_mode: int = DEFAULT_DIR_MODE,
        file_mode: int = DEFAULT_FILE_MODE,
    ):
        self._base_path = Path(base_path)
        self._clock = clock or datetime.now
        self._dir_mode = dir_mode
        self._file_mode = file_mode
        self._lock = threading.Lock()
        self._file: TextIO | None = None
        self._current_path: Path | None = None
        self._last_rotation: datetime | None = None
        self._state = SinkState.UNOPENED

    @property
    def base_path(self) -> Path:
        return self._base_path

    @property
    def path(self) -> Path | None:
        """Path of the file currently receiving writes."""
        return self._current_path

    @property
    def state(self) -> SinkState:
        return self._state

    @property
    def last_rotation(self) -> datetime | None:
        return self._last_rotation

    def _open_file(self, path: Path) -> TextIO:
        path.parent.mkdir(mode=self._dir_mode, parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, self._file_mode)
        return os.fdopen(fd, "a", encoding="utf-8")

    def _swap_locked(self, now: datetime) -> Path:
        target = dated_log_path(self._base_path, now)
        if self._file is not None and target == self._current_path:
            # Same calendar day: keep appending to the same file.
            self._last_rotation = now
            return target

        previous_state = self._state
        self._state = SinkState.ROTATING
        try:
            new_file = self._open_file(target)
        except OSError:
            self._state = previous_state
            raise

        old_file = self._file
        if old_file is not None:
            try:
                old_file.flush()
                old_file.close()
            except OSError:
                new_file.close()
                self._state = previous_state
                raise

        self._file = new_file
        self._current_path = target
        self._last_rotation = now
        self._state = SinkState.OPEN
        return target

    def open(self) -> Path:
        """Create parent directories and open today's file.

        Raises:
            OSError: The directory or file cannot be created.
        """
        with self._lock:
            if self._state is SinkState.CLOSED:
                raise ValueError("cannot reopen a closed sink")
            return self._swap_locked(self._clock())

    def rotate(self) -> Path:
        """Switch to the file for the current date.

        Raises:
            RotationError: The new file could not be opened or the old one
                could not be closed. The previous handle stays active.
        """
        now = self._clock()
        with self._lock:
            if self._state is SinkState.CLOSED:
                raise RotationError(path=str(dated_log_path(self._base_path, now)), reason="sink is closed")
            try:
                return self._swap_locked(now)
            except OSError as exc:
                raise RotationError(path=str(dated_log_path(self._base_path, now)), reason=str(exc)) from exc

    def write(self, line: str) -> None:
        data = line + "\n"
        with self._lock:
            if self._file is None:
                fallback_write(data)
                return
            try:
                self._file.write(data)
                self._file.flush()
            except (OSError, ValueError) as exc:
                fallback_write(f"relaylog: write to {self._current_path} failed: {exc}\n{data}")

    def flush(self) -> None:
        with self._lock:
            if self._file is not None:
                try:
                    self._file.flush()
                except (OSError, ValueError):
                    pass

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                try:
                    self._file.flush()
                finally:
                    self._file.close()
                    self._file = None
            self._state = SinkState.CLOSED
