"""
relaylog: process-wide structured logging with trace correlation.

Provides structured logging with pluggable outputs:
- stdout / stderr: console streams (json or text format)
- file: date-stamped file, rotated on a fixed interval
- meilisearch / elasticsearch: best-effort remote index hooks

Every entry carries a ``trace_id`` recovered from (or generated into) the
calling context, plus the process ``version`` when one is set.

Library: structlog + orjson for the pipeline, httpx for the index backends.

Usage:
    import relaylog

    teardown = relaylog.init({"output": "file", "file_path": "/var/log/app.log"})
    try:
        with relaylog.bind_trace_id():
            relaylog.info("hello")
    finally:
        teardown()
"""

from .core import (
    BoundEntry,
    Logger,
    add_elasticsearch_hook,
    add_hook,
    add_meilisearch_hook,
    debug,
    debugf,
    entry_with_fields,
    error,
    errorf,
    fatal,
    fatalf,
    get_logger,
    info,
    infof,
    init,
    init_from_settings,
    panic,
    panicf,
    set_output,
    set_version,
    standard_logger,
    warn,
    warnf,
    warning,
)
from .entry import LogEntry
from .exceptions import (
    AlreadyInitializedError,
    ConfigurationError,
    HookDeliveryError,
    LogPanic,
    RelayLogError,
    RotationError,
)
from .hooks import ElasticsearchHook, Hook, HookRegistry, MeilisearchHook
from .trace import bind_trace_id, ensure_trace_id, get_or_create_trace_id, get_trace_id

__all__ = [
    "Logger",
    "BoundEntry",
    "LogEntry",
    "Hook",
    "HookRegistry",
    "MeilisearchHook",
    "ElasticsearchHook",
    "standard_logger",
    "init",
    "init_from_settings",
    "set_version",
    "set_output",
    "add_hook",
    "add_meilisearch_hook",
    "add_elasticsearch_hook",
    "get_logger",
    "entry_with_fields",
    "debug",
    "info",
    "warn",
    "warning",
    "error",
    "fatal",
    "panic",
    "debugf",
    "infof",
    "warnf",
    "errorf",
    "fatalf",
    "panicf",
    "get_or_create_trace_id",
    "get_trace_id",
    "ensure_trace_id",
    "bind_trace_id",
    "RelayLogError",
    "ConfigurationError",
    "AlreadyInitializedError",
    "RotationError",
    "HookDeliveryError",
    "LogPanic",
]
