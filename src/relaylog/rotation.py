"""
Background rotation task for the rotating file sink.
"""

from __future__ import annotations

import threading
from typing import Callable

from .exceptions import RotationError
from .sinks import RotatingFileSink

DEFAULT_INTERVAL_SECONDS = 24 * 60 * 60


class RotationScheduler:
    """Calls ``sink.rotate()`` every ``interval`` seconds on a daemon thread.

    A failed rotation is handed to ``on_error`` and retried on the next tick.
    """

    def __init__(
        self,
        sink: RotatingFileSink,
        *,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        on_error: Callable[[RotationError], None],
    ):
        if interval <= 0:
            raise ValueError("rotation interval must be positive")
        self._sink = sink
        self._interval = interval
        self._on_error = on_error
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="relaylog-rotation", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.tick()

    def tick(self) -> None:
        """Run one rotation attempt."""
        try:
            self._sink.rotate()
        except RotationError as exc:
            self._on_error(exc)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
