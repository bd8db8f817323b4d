"""
Log entry record handed to sinks and hooks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

from structlog.typing import EventDict

# Keys the pipeline manages itself; everything else in an event dict is a field.
RESERVED_KEYS = frozenset({"timestamp", "level", "message", "event", "logger", "_name", "_level"})


@dataclass(frozen=True)
class LogEntry:
    """Immutable snapshot of one emission."""

    timestamp: datetime
    level: str
    message: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @classmethod
    def from_event_dict(cls, event_dict: EventDict) -> "LogEntry":
        """Build an entry from a processed structlog event dict."""
        raw_ts = event_dict.get("timestamp")
        if isinstance(raw_ts, datetime):
            timestamp = raw_ts
        elif isinstance(raw_ts, str):
            try:
                timestamp = datetime.fromisoformat(raw_ts.replace("Z", "+00:00"))
            except ValueError:
                timestamp = datetime.now(timezone.utc)
        else:
            timestamp = datetime.now(timezone.utc)

        message = event_dict.get("message", event_dict.get("event", ""))
        fields = {k: v for k, v in event_dict.items() if k not in RESERVED_KEYS}
        return cls(
            timestamp=timestamp,
            level=str(event_dict.get("level", "info")),
            message="" if message is None else str(message),
            fields=fields,
        )

    @property
    def rfc3339(self) -> str:
        return self.timestamp.isoformat()

    def document(self) -> dict[str, Any]:
        """Serializable mapping forwarded to remote indexers."""
        doc = dict(self.fields)
        doc["message"] = self.message
        doc["level"] = self.level
        doc["timestamp"] = self.rfc3339
        return doc
