"""
Core logger: process-wide instance, structlog pipeline, init/teardown and emission API.
"""

from __future__ import annotations

import contextvars
import sys
import threading
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Mapping

import structlog
from pydantic import ValidationError
from structlog.typing import EventDict, WrappedLogger

from .clients import ElasticsearchClient, MeilisearchClient, new_elasticsearch_client
from .config import LogFormat, LoggingSettings, LogLevel, LogOutput, Settings
from .entry import LogEntry
from .exceptions import AlreadyInitializedError, ConfigurationError, LogPanic, RotationError
from .formatters import BaseFormatter, JSONFormatter, TextFormatter
from .hooks import ElasticsearchHook, Hook, HookDispatcher, HookRegistry, MeilisearchHook
from .rotation import RotationScheduler
from .sinks import BaseSink, RotatingFileSink, StreamSink, fallback_write
from .trace import TRACE_ID_KEY, get_or_create_trace_id

VERSION_KEY = "version"

# Label written to the entry -> (numeric severity, structlog method name)
_LEVELS: dict[str, tuple[int, str]] = {
    "debug": (LogLevel.DEBUG.numeric, "debug"),
    "info": (LogLevel.INFO.numeric, "info"),
    "warning": (LogLevel.WARNING.numeric, "warning"),
    "error": (LogLevel.ERROR.numeric, "error"),
    "fatal": (LogLevel.CRITICAL.numeric, "critical"),
    "panic": (LogLevel.CRITICAL.numeric, "critical"),
}

_METHOD_TO_LEVEL = {
    "msg": "info",
    "warn": "warning",
    "exception": "error",
    "err": "error",
    "failure": "error",
}

_METHOD_NUMERIC = {
    "debug": LogLevel.DEBUG.numeric,
    "info": LogLevel.INFO.numeric,
    "msg": LogLevel.INFO.numeric,
    "warn": LogLevel.WARNING.numeric,
    "warning": LogLevel.WARNING.numeric,
    "err": LogLevel.ERROR.numeric,
    "error": LogLevel.ERROR.numeric,
    "exception": LogLevel.ERROR.numeric,
    "failure": LogLevel.ERROR.numeric,
    "critical": LogLevel.CRITICAL.numeric,
    "fatal": LogLevel.CRITICAL.numeric,
}


# =============================================================================
# Structlog Processors
# =============================================================================


def add_log_level(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add the level label, honouring an explicit ``_level`` override."""
    event_dict["level"] = event_dict.pop("_level", None) or _METHOD_TO_LEVEL.get(method_name, method_name)
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO 8601 timestamp to log event."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_logger_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add logger name to log event."""
    event_dict["logger"] = event_dict.get("_name", "root")
    event_dict.pop("_name", None)
    return event_dict


def rename_event_key(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename 'event' to 'message'."""
    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")
    return event_dict


class _NopFile:
    def write(self, s: str) -> None:
        pass

    def flush(self) -> None:
        pass


_NOP_FILE = _NopFile()


def _sprint(args: tuple[Any, ...]) -> str:
    return " ".join(str(a) for a in args)


def _sprintf(fmt: str, args: tuple[Any, ...]) -> str:
    if not args:
        return fmt
    try:
        return fmt % args
    except (TypeError, ValueError, KeyError):
        return f"{fmt} {args!r}"


# Caller fields that would clobber pipeline-managed keys are kept as "fields.<key>".
_CLASHING_KEYS = ("event", "message", "level", "timestamp", "logger")


def _escape_clashing(fields: dict[str, Any]) -> dict[str, Any]:
    for key in _CLASHING_KEYS:
        if key in fields:
            fields[f"fields.{key}"] = fields.pop(key)
    return fields


# =============================================================================
# Logger
# =============================================================================


class Logger:
    """Shared logging facility: level, formatter, sink and hooks.

    Before ``init`` it renders JSON to stderr at INFO. ``init`` may run once;
    a second call raises until the returned teardown has been invoked.
    """

    def __init__(self, *, stream: Any = None):
        self._lock = threading.RLock()
        self._level = LogLevel.INFO
        self._formatter: BaseFormatter = JSONFormatter()
        self._default_stream = stream
        self._sink: BaseSink = StreamSink(stream)
        self._registry = HookRegistry()
        self._dispatcher: HookDispatcher | None = None
        self._scheduler: RotationScheduler | None = None
        self._settings: LoggingSettings | None = None
        self._initialized = False
        self._version = ""
        self._index_name = ""
        self._meili_client: MeilisearchClient | None = None
        self._es_client: ElasticsearchClient | None = None
        self._hook_queue_size = 1024
        self._flush_timeout = 5.0
        self.exit_func: Callable[[int], Any] = sys.exit

        # Rendering happens in _dispatch; the wrapped PrintLogger only sees "".
        self._root = structlog.BoundLogger(
            structlog.PrintLogger(file=_NOP_FILE),
            processors=[
                self._filter_by_level,
                structlog.contextvars.merge_contextvars,
                add_log_level,
                add_timestamp,
                add_logger_name,
                self._add_trace_context,
                rename_event_key,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                self._dispatch,
            ],
            context={},
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def level(self) -> LogLevel:
        return self._level

    @property
    def sink(self) -> BaseSink:
        return self._sink

    @property
    def registry(self) -> HookRegistry:
        return self._registry

    @property
    def dispatcher(self) -> HookDispatcher | None:
        return self._dispatcher

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def version(self) -> str:
        return self._version

    def is_enabled(self, level: str) -> bool:
        return _LEVELS[level][0] >= self._level.numeric

    # -------------------------------------------------------------------------
    # Processors bound to this instance
    # -------------------------------------------------------------------------

    def _filter_by_level(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        if _METHOD_NUMERIC.get(method_name, LogLevel.INFO.numeric) < self._level.numeric:
            raise structlog.DropEvent
        return event_dict

    def _add_trace_context(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        if not event_dict.get(TRACE_ID_KEY):
            # Not persisted: an unbound caller gets a fresh id per entry.
            _, event_dict[TRACE_ID_KEY] = get_or_create_trace_id()
        if self._version:
            event_dict.setdefault(VERSION_KEY, self._version)
        return event_dict

    def _dispatch(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> str:
        """Write to the active sink, then hand the entry to the hooks."""
        sink = self._sink
        try:
            line = self._formatter.format(event_dict, use_color=sink.use_color)
        except (TypeError, ValueError) as exc:
            fallback_write(f"relaylog: cannot render entry: {exc}\n{event_dict!r}\n")
        else:
            sink.write(line)
        dispatcher = self._dispatcher
        if dispatcher is not None and len(self._registry):
            dispatcher.submit(LogEntry.from_event_dict(event_dict))
        return ""

    def _report(self, message: str, **fields: Any) -> None:
        """Debug-level diagnostics written to the sink only, never to hooks."""
        if not self.is_enabled("debug"):
            return
        event = {
            "level": "debug",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "logger": "relaylog",
            "message": message,
            **fields,
        }
        sink = self._sink
        sink.write(self._formatter.format(event, use_color=sink.use_color))

    def _on_rotation_error(self, exc: RotationError) -> None:
        self.log("error", f"Error rotating log: {exc}", path=exc.details.get("path"))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def init(self, settings: LoggingSettings | Mapping[str, Any] | None = None) -> Callable[[], None]:
        """Configure level, format, sink and remote hooks.

        Returns:
            Teardown callable; invoke it on shutdown.

        Raises:
            ConfigurationError: Invalid settings, remote client construction
                failure, or the log file cannot be opened.
            AlreadyInitializedError: ``init`` already ran without teardown.
        """
        if settings is None:
            settings = LoggingSettings()
        elif not isinstance(settings, LoggingSettings):
            try:
                settings = LoggingSettings(**dict(settings))
            except ValidationError as exc:
                raise ConfigurationError(f"invalid logging settings: {exc}") from exc

        with self._lock:
            if self._initialized:
                raise AlreadyInitializedError()

            meili_client = None
            es_client = None
            try:
                if settings.meilisearch.enabled:
                    api_key = settings.meilisearch.api_key
                    meili_client = MeilisearchClient(
                        settings.meilisearch.host,
                        api_key.get_secret_value() if api_key else None,
                        timeout=settings.hook_timeout_seconds,
                    )
                if settings.elasticsearch.enabled:
                    password = settings.elasticsearch.password
                    es_client = new_elasticsearch_client(
                        settings.elasticsearch.addresses,
                        settings.elasticsearch.username,
                        password.get_secret_value() if password else None,
                        timeout=settings.hook_timeout_seconds,
                        verify=settings.elasticsearch.verify_on_init,
                    )
                sink, scheduler = self._build_sink(settings)
            except Exception:
                for client in (meili_client, es_client):
                    if client is not None:
                        client.close()
                raise

            previous_sink, self._sink = self._sink, sink
            previous_sink.close()
            self._level = settings.level
            self._formatter = self._build_formatter(settings)
            self._settings = settings
            self._index_name = settings.index_name
            self._hook_queue_size = settings.hook_queue_size
            self._flush_timeout = settings.hook_timeout_seconds * 2
            self._meili_client = meili_client
            self._es_client = es_client

            if meili_client is not None:
                self.add_meilisearch_hook()
            if es_client is not None:
                self.add_elasticsearch_hook()

            if scheduler is not None:
                scheduler.start()
                self._scheduler = scheduler
            self._initialized = True

        return self.teardown

    @staticmethod
    def _build_formatter(settings: LoggingSettings) -> BaseFormatter:
        if settings.format is LogFormat.JSON:
            return JSONFormatter()
        return TextFormatter(
            timestamp_format=settings.console_timestamp_format,
            level_width=settings.console_level_width,
            logger_width=settings.console_logger_width,
            separator=settings.console_separator,
        )

    def _build_sink(self, settings: LoggingSettings) -> tuple[BaseSink, RotationScheduler | None]:
        if settings.output is LogOutput.STDOUT:
            return StreamSink(sys.stdout), None
        if settings.output is LogOutput.STDERR:
            return StreamSink(sys.stderr), None

        if not settings.file_path:
            raise ConfigurationError("file output requires file_path")
        sink = RotatingFileSink(settings.file_path)
        try:
            sink.open()
        except OSError as exc:
            raise ConfigurationError(
                f"cannot open log file for {settings.file_path}: {exc}",
                details={"path": settings.file_path},
            ) from exc
        scheduler = RotationScheduler(
            sink,
            interval=settings.rotation_interval_seconds,
            on_error=self._on_rotation_error,
        )
        return sink, scheduler

    def teardown(self) -> None:
        """Stop background work, flush and close the sink. Safe to call twice."""
        with self._lock:
            scheduler, self._scheduler = self._scheduler, None
            if scheduler is not None:
                scheduler.stop()

            dispatcher, self._dispatcher = self._dispatcher, None
            if dispatcher is not None:
                dispatcher.stop(self._flush_timeout)
            for hook in self._registry.clear():
                hook.close()
            self._meili_client = None
            self._es_client = None

            sink, self._sink = self._sink, StreamSink(self._default_stream)
            sink.flush()
            sink.close()
            self._initialized = False

    def flush(self) -> None:
        """Flush the sink and wait (bounded) for queued hook deliveries."""
        dispatcher = self._dispatcher
        if dispatcher is not None:
            dispatcher.flush(self._flush_timeout)
        self._sink.flush()

    # -------------------------------------------------------------------------
    # Overrides
    # -------------------------------------------------------------------------

    def set_version(self, version: str) -> None:
        self._version = version

    def set_output(self, stream: Any) -> None:
        """Replace the active sink with ``stream`` (or a ready-made ``BaseSink``)."""
        sink = stream if isinstance(stream, BaseSink) else StreamSink(stream)
        with self._lock:
            scheduler, self._scheduler = self._scheduler, None
            if scheduler is not None:
                scheduler.stop()
            previous, self._sink = self._sink, sink
        previous.close()

    def _ensure_dispatcher(self) -> None:
        with self._lock:
            if self._dispatcher is None:
                self._dispatcher = HookDispatcher(
                    self._registry, maxsize=self._hook_queue_size, report=self._report
                )
                self._dispatcher.start()

    def add_hook(self, hook: Hook) -> None:
        """Install ``hook``, replacing any hook of the same kind."""
        previous = self._registry.register(hook)
        if previous is not None and previous is not hook:
            previous.close()
        self._ensure_dispatcher()

    def register_hook(self, hook: Hook) -> bool:
        """Install ``hook`` only if no hook of its kind is present."""
        added = self._registry.register_if_absent(hook)
        if added:
            self._ensure_dispatcher()
        return added

    def add_meilisearch_hook(self) -> bool:
        if self._meili_client is None:
            return False
        return self.register_hook(MeilisearchHook(self._meili_client, self._index_name))

    def add_elasticsearch_hook(self) -> bool:
        if self._es_client is None:
            return False
        return self.register_hook(ElasticsearchHook(self._es_client, self._index_name))

    # -------------------------------------------------------------------------
    # Emission
    # -------------------------------------------------------------------------

    def get_logger(self, name: str | None = None) -> "BoundEntry":
        """Named logger feeding this instance."""
        return BoundEntry(self, {"_name": name or "root"})

    def bind(self, ctx: contextvars.Context | None = None, /, **fields: Any) -> "BoundEntry":
        """Entry pre-bound with the trace id of ``ctx`` and ``fields``."""
        _, trace_id = get_or_create_trace_id(ctx)
        return BoundEntry(self, {TRACE_ID_KEY: trace_id, **fields})

    def _emit(
        self,
        level: str,
        message: str,
        fields: dict[str, Any],
        ctx: contextvars.Context | None = None,
    ) -> None:
        if not self.is_enabled(level):
            return
        fields = _escape_clashing(dict(fields))
        if ctx is not None and not fields.get(TRACE_ID_KEY):
            _, fields[TRACE_ID_KEY] = get_or_create_trace_id(ctx)
        method = _LEVELS[level][1]
        getattr(self._root, method)(message, _level=level, **fields)

    def _fatal(self, message: str, fields: dict[str, Any], ctx: contextvars.Context | None = None) -> None:
        self._emit("fatal", message, fields, ctx)
        self.flush()
        self.exit_func(1)

    def _panic(self, message: str, fields: dict[str, Any], ctx: contextvars.Context | None = None) -> None:
        self._emit("panic", message, fields, ctx)
        self.flush()
        raise LogPanic(message, fields=dict(fields))

    def log(self, level: str, message: str, /, *, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        self._emit(level, message, fields, ctx)

    def debug(self, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        self._emit("debug", _sprint(args), fields, ctx)

    def info(self, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        self._emit("info", _sprint(args), fields, ctx)

    def warn(self, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        self._emit("warning", _sprint(args), fields, ctx)

    warning = warn

    def error(self, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        self._emit("error", _sprint(args), fields, ctx)

    def fatal(self, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        self._fatal(_sprint(args), fields, ctx)

    def panic(self, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        self._panic(_sprint(args), fields, ctx)

    def debugf(self, fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        if self.is_enabled("debug"):
            self._emit("debug", _sprintf(fmt, args), fields, ctx)

    def infof(self, fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        if self.is_enabled("info"):
            self._emit("info", _sprintf(fmt, args), fields, ctx)

    def warnf(self, fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        if self.is_enabled("warning"):
            self._emit("warning", _sprintf(fmt, args), fields, ctx)

    def errorf(self, fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        if self.is_enabled("error"):
            self._emit("error", _sprintf(fmt, args), fields, ctx)

    def fatalf(self, fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        self._fatal(_sprintf(fmt, args), fields, ctx)

    def panicf(self, fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
        self._panic(_sprintf(fmt, args), fields, ctx)


# =============================================================================
# Bound Entry
# =============================================================================


class BoundEntry:
    """Fields bound once and emitted with every call, through the owning ``Logger``.

    Every level keeps the owner's semantics: ``fatal`` flushes and exits,
    ``panic`` flushes and raises ``LogPanic``. Per-call fields override
    bound ones.
    """

    def __init__(self, logger: Logger, fields: Mapping[str, Any]):
        self._logger = logger
        self._fields = dict(fields)

    @property
    def fields(self) -> Mapping[str, Any]:
        return MappingProxyType(self._fields)

    def bind(self, **fields: Any) -> "BoundEntry":
        return BoundEntry(self._logger, {**self._fields, **fields})

    def _merge(self, fields: dict[str, Any]) -> dict[str, Any]:
        return {**self._fields, **fields}

    def log(self, level: str, message: str, /, **fields: Any) -> None:
        self._logger._emit(level, message, self._merge(fields))

    def debug(self, *args: Any, **fields: Any) -> None:
        self._logger._emit("debug", _sprint(args), self._merge(fields))

    def info(self, *args: Any, **fields: Any) -> None:
        self._logger._emit("info", _sprint(args), self._merge(fields))

    def warn(self, *args: Any, **fields: Any) -> None:
        self._logger._emit("warning", _sprint(args), self._merge(fields))

    warning = warn

    def error(self, *args: Any, **fields: Any) -> None:
        self._logger._emit("error", _sprint(args), self._merge(fields))

    def fatal(self, *args: Any, **fields: Any) -> None:
        self._logger._fatal(_sprint(args), self._merge(fields))

    def panic(self, *args: Any, **fields: Any) -> None:
        self._logger._panic(_sprint(args), self._merge(fields))

    def debugf(self, fmt: str, /, *args: Any, **fields: Any) -> None:
        if self._logger.is_enabled("debug"):
            self._logger._emit("debug", _sprintf(fmt, args), self._merge(fields))

    def infof(self, fmt: str, /, *args: Any, **fields: Any) -> None:
        if self._logger.is_enabled("info"):
            self._logger._emit("info", _sprintf(fmt, args), self._merge(fields))

    def warnf(self, fmt: str, /, *args: Any, **fields: Any) -> None:
        if self._logger.is_enabled("warning"):
            self._logger._emit("warning", _sprintf(fmt, args), self._merge(fields))

    def errorf(self, fmt: str, /, *args: Any, **fields: Any) -> None:
        if self._logger.is_enabled("error"):
            self._logger._emit("error", _sprintf(fmt, args), self._merge(fields))

    def fatalf(self, fmt: str, /, *args: Any, **fields: Any) -> None:
        self._logger._fatal(_sprintf(fmt, args), self._merge(fields))

    def panicf(self, fmt: str, /, *args: Any, **fields: Any) -> None:
        self._logger._panic(_sprintf(fmt, args), self._merge(fields))


# =============================================================================
# Process-wide Instance
# =============================================================================

_standard_logger: Logger | None = None
_standard_logger_lock = threading.Lock()


def standard_logger() -> Logger:
    """Return the process-wide logger, creating it on first use."""
    global _standard_logger
    if _standard_logger is None:
        with _standard_logger_lock:
            if _standard_logger is None:
                _standard_logger = Logger()
    return _standard_logger


def init(settings: LoggingSettings | Mapping[str, Any] | None = None) -> Callable[[], None]:
    """Initialize the process-wide logger. See ``Logger.init``."""
    return standard_logger().init(settings)


def init_from_settings(settings: Settings | None = None) -> Callable[[], None]:
    """Stamp the application version and initialize from composite settings."""
    if settings is None:
        from .config import settings as default_settings

        settings = default_settings
    if settings.app.version:
        set_version(settings.app.version)
    return init(settings.logging)


def set_version(version: str) -> None:
    standard_logger().set_version(version)


def set_output(stream: Any) -> None:
    standard_logger().set_output(stream)


def add_hook(hook: Hook) -> None:
    standard_logger().add_hook(hook)


def add_meilisearch_hook() -> bool:
    return standard_logger().add_meilisearch_hook()


def add_elasticsearch_hook() -> bool:
    return standard_logger().add_elasticsearch_hook()


def get_logger(name: str | None = None) -> BoundEntry:
    """Get a structured logger instance."""
    return standard_logger().get_logger(name)


def entry_with_fields(fields: Mapping[str, Any], ctx: contextvars.Context | None = None) -> BoundEntry:
    """Bound logger carrying the trace id of ``ctx`` plus ``fields``."""
    return standard_logger().bind(ctx, **dict(fields))


def debug(*args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().debug(*args, ctx=ctx, **fields)


def info(*args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().info(*args, ctx=ctx, **fields)


def warn(*args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().warn(*args, ctx=ctx, **fields)


warning = warn


def error(*args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().error(*args, ctx=ctx, **fields)


def fatal(*args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().fatal(*args, ctx=ctx, **fields)


def panic(*args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().panic(*args, ctx=ctx, **fields)


def debugf(fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().debugf(fmt, *args, ctx=ctx, **fields)


def infof(fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().infof(fmt, *args, ctx=ctx, **fields)


def warnf(fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().warnf(fmt, *args, ctx=ctx, **fields)


def errorf(fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().errorf(fmt, *args, ctx=ctx, **fields)


def fatalf(fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().fatalf(fmt, *args, ctx=ctx, **fields)


def panicf(fmt: str, /, *args: Any, ctx: contextvars.Context | None = None, **fields: Any) -> None:
    standard_logger().panicf(fmt, *args, ctx=ctx, **fields)
