"""
Log formatters and color utilities.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import orjson
from structlog.typing import EventDict

# =============================================================================
# JSON Serialization
# =============================================================================


def orjson_dumps(v: Any, *, default: Any = str) -> str:
    """Fast JSON serialization using orjson."""
    return orjson.dumps(
        v,
        default=default,
        option=orjson.OPT_UTC_Z | orjson.OPT_NAIVE_UTC | orjson.OPT_NON_STR_KEYS,
    ).decode()


# =============================================================================
# Formatter Abstraction
# =============================================================================


class BaseFormatter(ABC):
    """Renders a processed event dict into a single output line (no newline)."""

    @abstractmethod
    def format(self, event_dict: EventDict, *, use_color: bool = False) -> str: ...


class JSONFormatter(BaseFormatter):
    """One JSON object per line."""

    def format(self, event_dict: EventDict, *, use_color: bool = False) -> str:
        return orjson_dumps({k: v for k, v in event_dict.items() if not k.startswith("_")})


# =============================================================================
# Text Formatter (Aligned Columns)
# =============================================================================

COLORS = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "debug": "\033[36m",
    "info": "\033[32m",
    "warning": "\033[33m",
    "error": "\033[31m",
    "critical": "\033[1;31m",
    "timestamp": "\033[90m",
    "logger": "\033[35m",
    "key": "\033[34m",
}

_LEVEL_COLORS = {
    "DEBUG": COLORS["debug"],
    "INFO": COLORS["info"],
    "WARNING": COLORS["warning"],
    "ERROR": COLORS["error"],
    "CRITICAL": COLORS["critical"],
    "FATAL": COLORS["critical"],
    "PANIC": COLORS["critical"],
}


def colorize(text: str, color: str) -> str:
    """Apply ANSI color to text."""
    return f"{COLORS.get(color, '')}{text}{COLORS['reset']}"


class TextFormatter(BaseFormatter):
    """Human-readable rendering: ``timestamp | LEVEL | logger | message key=value ...``."""

    EXCLUDED_KEYS = {"level", "message", "event", "logger", "timestamp", "_name", "_level"}

    def __init__(
        self,
        *,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
        level_width: int = 8,
        logger_width: int = 24,
        separator: str = " | ",
    ):
        self.timestamp_format = timestamp_format
        self.timestamp_width = len(datetime.now().strftime(timestamp_format))
        self.level_width = level_width
        self.logger_width = logger_width
        self.separator = separator

    @staticmethod
    def _fit_right(text: str, width: int) -> str:
        if width <= 0:
            return text
        if len(text) > width:
            if width <= 3:
                text = text[-width:]
            else:
                text = "..." + text[-(width - 3) :]
        return f"{text:>{width}}"

    def _format_timestamp(self, raw_timestamp: Any) -> str:
        if isinstance(raw_timestamp, datetime):
            return raw_timestamp.astimezone().strftime(self.timestamp_format)
        if raw_timestamp:
            try:
                dt = datetime.fromisoformat(str(raw_timestamp).replace("Z", "+00:00"))
                if dt.tzinfo is None:
                    dt = dt.replace(tzinfo=timezone.utc)
                return dt.astimezone().strftime(self.timestamp_format)
            except (ValueError, TypeError):
                pass
        return datetime.now().strftime(self.timestamp_format)

    @staticmethod
    def _maybe_color(text: str, color: str, use_color: bool) -> str:
        if not use_color:
            return text
        return colorize(text, color)

    def format(self, event_dict: EventDict, *, use_color: bool = False) -> str:
        level_upper = str(event_dict.get("level", "info")).upper()
        message = str(event_dict.get("message", event_dict.get("event", "")))
        logger_name = str(event_dict.get("logger", "root"))

        extras = []
        for k, v in event_dict.items():
            if k not in self.EXCLUDED_KEYS:
                key = self._maybe_color(k, "key", use_color)
                value = self._maybe_color(str(v), "dim", use_color)
                extras.append(f"{key}={value}")
        if extras:
            message = f"{message} " + " ".join(extras)

        level_text = self._fit_right(level_upper, self.level_width)
        if use_color and level_upper in _LEVEL_COLORS:
            level_text = f"{_LEVEL_COLORS[level_upper]}{level_text}{COLORS['reset']}"

        return "".join(
            [
                self._maybe_color(
                    self._fit_right(self._format_timestamp(event_dict.get("timestamp")), self.timestamp_width),
                    "timestamp",
                    use_color,
                ),
                self.separator,
                level_text,
                self.separator,
                self._maybe_color(self._fit_right(logger_name, self.logger_width), "logger", use_color),
                self.separator,
                message,
            ]
        )
