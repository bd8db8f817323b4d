"""
JSON / text formatter unit tests.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from uuid import UUID

from relaylog.formatters import COLORS, JSONFormatter, TextFormatter, colorize, orjson_dumps


def event(**extra):
    return {
        "timestamp": "2024-05-01T09:30:00+00:00",
        "level": "info",
        "logger": "billing",
        "message": "charged",
        **extra,
    }


class TestJSONFormatter:
    def test_one_object_per_line(self):
        rendered = JSONFormatter().format(event(amount=12, trace_id="t1"))
        assert "\n" not in rendered
        assert json.loads(rendered) == event(amount=12, trace_id="t1")

    def test_private_keys_are_dropped(self):
        rendered = JSONFormatter().format(event(_name="x", _level="info"))
        assert "_name" not in json.loads(rendered)

    def test_unserializable_values_fall_back_to_str(self):
        value = UUID("12345678-1234-5678-1234-567812345678")
        rendered = JSONFormatter().format(event(obj=object(), uid=value))
        parsed = json.loads(rendered)
        assert parsed["uid"] == str(value)
        assert parsed["obj"].startswith("<object object")

    def test_non_string_keys_are_stringified(self):
        parsed = json.loads(JSONFormatter().format(event(counts={1: 2, 2.5: "x"})))
        assert parsed["counts"] == {"1": 2, "2.5": "x"}

    def test_datetimes_render_as_utc_z(self):
        assert orjson_dumps({"at": datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)}) == '{"at":"2024-05-01T09:30:00Z"}'


class TestTextFormatter:
    def test_column_layout(self):
        formatter = TextFormatter(timestamp_format="%Y", level_width=8, logger_width=10, separator=" | ")
        rendered = formatter.format(event(amount=12))

        ts, level, logger, rest = rendered.split(" | ")
        assert len(ts) == 4
        assert level == "    INFO"
        assert logger == "   billing"
        assert rest == "charged amount=12"

    def test_long_logger_names_are_trimmed_from_the_left(self):
        formatter = TextFormatter(logger_width=8)
        rendered = formatter.format(event(logger="relaylog.interceptors"))
        assert " | ...ptors | " in rendered

    def test_color_only_when_requested(self):
        formatter = TextFormatter()
        plain = formatter.format(event(level="error"))
        colored = formatter.format(event(level="error"), use_color=True)

        assert "\033[" not in plain
        assert COLORS["error"] in colored
        assert colored.count(COLORS["reset"]) >= 3

    def test_missing_timestamp_uses_now(self):
        rendered = TextFormatter(timestamp_format="%Y").format({"level": "debug", "message": "x"})
        assert rendered.startswith(str(datetime.now().year))


def test_colorize_wraps_with_reset():
    assert colorize("x", "info") == f"{COLORS['info']}x{COLORS['reset']}"
