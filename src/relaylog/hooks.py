"""
Remote index hooks, the hook registry and the background hook dispatcher.

Hooks run after the primary sink write, on a dedicated thread fed by a
bounded queue. They are best-effort: failures are reported at debug level
and never retried, and a full queue drops entries instead of blocking the
emitting thread.
"""

from __future__ import annotations

import queue
import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, ClassVar

import httpx
import orjson

from .clients import ElasticsearchClient, MeilisearchClient
from .entry import LogEntry
from .exceptions import HookDeliveryError

HOOK_THREAD_NAME = "relaylog-hooks"

ReportFunc = Callable[..., None]


def _ignore_report(message: str, **fields: Any) -> None:
    return None


# =============================================================================
# Hook Abstraction
# =============================================================================


class Hook(ABC):
    """Uniform delivery contract for post-write backends.

    ``kind`` identifies the backend; the registry keeps at most one hook per kind.
    """

    kind: ClassVar[str] = "hook"
    levels: ClassVar[frozenset[str] | None] = None  # None accepts every level

    def accepts(self, entry: LogEntry) -> bool:
        return self.levels is None or entry.level in self.levels

    @abstractmethod
    def fire(self, entry: LogEntry) -> None:
        """Deliver ``entry``; raise on failure."""
        ...

    def close(self) -> None:
        """Release backend resources."""


class MeilisearchHook(Hook):
    """Forwards entries to Meilisearch (search index A).

    A no-op while no client is configured.
    """

    kind = "meilisearch"

    def __init__(self, client: MeilisearchClient | None, index_name: str):
        self._client = client
        self._index_name = index_name

    @property
    def client(self) -> MeilisearchClient | None:
        return self._client

    def fire(self, entry: LogEntry) -> None:
        if self._client is None:
            return
        document = entry.document()
        document.setdefault("id", uuid.uuid4().hex)
        try:
            payload = orjson.dumps([document], default=str, option=orjson.OPT_NON_STR_KEYS)
        except orjson.JSONEncodeError as exc:
            raise HookDeliveryError(kind=self.kind, reason=f"serialization failed: {exc}") from exc
        try:
            self._client.index_documents(self._index_name, payload, primary_key="id")
        except httpx.HTTPStatusError as exc:
            raise HookDeliveryError(
                kind=self.kind, reason=str(exc), status_code=exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            raise HookDeliveryError(kind=self.kind, reason=str(exc)) from exc

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


class ElasticsearchHook(Hook):
    """Forwards entries to Elasticsearch (search index B), keyed by entry timestamp.

    A no-op while no client is configured.
    """

    kind = "elasticsearch"

    def __init__(self, client: ElasticsearchClient | None, index_name: str):
        self._client = client
        self._index_name = index_name

    @property
    def client(self) -> ElasticsearchClient | None:
        return self._client

    def fire(self, entry: LogEntry) -> None:
        if self._client is None:
            return
        try:
            self._client.index_document(self._index_name, entry.rfc3339, entry.document())
        except orjson.JSONEncodeError as exc:
            raise HookDeliveryError(kind=self.kind, reason=f"serialization failed: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise HookDeliveryError(
                kind=self.kind, reason=str(exc), status_code=exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            raise HookDeliveryError(kind=self.kind, reason=str(exc)) from exc

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


# =============================================================================
# Registry
# =============================================================================


class HookRegistry:
    """Installed hooks keyed by ``Hook.kind``."""

    def __init__(self) -> None:
        self._hooks: dict[str, Hook] = {}
        self._lock = threading.Lock()

    def register_if_absent(self, hook: Hook) -> bool:
        """Install ``hook`` unless a hook of the same kind is present.

        Returns:
            True when the hook was installed.
        """
        with self._lock:
            if hook.kind in self._hooks:
                return False
            self._hooks[hook.kind] = hook
            return True

    def register(self, hook: Hook) -> Hook | None:
        """Install ``hook``, replacing and returning any hook of the same kind."""
        with self._lock:
            previous = self._hooks.get(hook.kind)
            self._hooks[hook.kind] = hook
            return previous

    def unregister(self, kind: str) -> Hook | None:
        with self._lock:
            return self._hooks.pop(kind, None)

    def get(self, kind: str) -> Hook | None:
        with self._lock:
            return self._hooks.get(kind)

    def hooks(self) -> tuple[Hook, ...]:
        with self._lock:
            return tuple(self._hooks.values())

    def clear(self) -> list[Hook]:
        with self._lock:
            removed = list(self._hooks.values())
            self._hooks.clear()
            return removed

    def __contains__(self, kind: object) -> bool:
        with self._lock:
            return kind in self._hooks

    def __len__(self) -> int:
        with self._lock:
            return len(self._hooks)


# =============================================================================
# Dispatcher
# =============================================================================

_STOP = object()


class HookDispatcher:
    """Delivers entries to every registered hook on a background thread.

    Args:
        registry: Source of the hooks to fire, read at delivery time.
        maxsize: Bound of the pending-entry queue.
        report: ``report(message, **fields)`` used for debug-level diagnostics.
    """

    def __init__(self, registry: HookRegistry, *, maxsize: int = 1024, report: ReportFunc | None = None):
        self._registry = registry
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=maxsize)
        self._report = report or _ignore_report
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._dropped = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def dropped(self) -> int:
        return self._dropped

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._thread = threading.Thread(target=self._run, name=HOOK_THREAD_NAME, daemon=True)
            self._thread.start()

    def submit(self, entry: LogEntry) -> bool:
        """Queue ``entry`` without blocking. Returns False when it was dropped."""
        if self._thread is None:
            return False
        try:
            self._queue.put_nowait(entry)
        except queue.Full:
            with self._lock:
                self._dropped += 1
                dropped = self._dropped
            self._report("hook queue full, entry dropped", dropped=dropped)
            return False
        return True

    def deliver(self, entry: LogEntry) -> None:
        """Fire every accepting hook once; failures are reported, never raised."""
        for hook in self._registry.hooks():
            if not hook.accepts(entry):
                continue
            try:
                hook.fire(entry)
            except Exception as exc:  # noqa: BLE001
                self._report("hook delivery failed", hook=hook.kind, error=str(exc))

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.deliver(item)
            finally:
                self._queue.task_done()

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until queued entries are delivered. Returns False on timeout."""
        if self._thread is None:
            return True
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    self._queue.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def stop(self, timeout: float | None = 5.0) -> None:
        """Drain pending entries (bounded by ``timeout``) and stop the worker."""
        with self._lock:
            thread, self._thread = self._thread, None
        if thread is None:
            return
        if thread is threading.current_thread():
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            self._report("hook dispatcher did not drain before shutdown")
            return
        thread.join(timeout)
