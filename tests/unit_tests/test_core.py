"""
Logger core unit tests: init/teardown, emission, enrichment and the file scenarios.
"""

from __future__ import annotations

import contextvars
import io
import json
import threading
from datetime import datetime, timedelta

import pytest

import relaylog
from relaylog.core import Logger
from relaylog.entry import LogEntry
from relaylog.exceptions import AlreadyInitializedError, ConfigurationError, LogPanic
from relaylog.hooks import ElasticsearchHook, Hook, MeilisearchHook
from relaylog.sinks import RotatingFileSink, StreamSink
from relaylog.trace import bind_trace_id, get_or_create_trace_id


def json_lines(text: str) -> list[dict]:
    return [json.loads(line) for line in text.splitlines() if line]


class RecordingHook(Hook):
    kind = "recording"

    def __init__(self):
        self.entries: list[LogEntry] = []

    def fire(self, entry: LogEntry) -> None:
        self.entries.append(entry)


# ================================
# Default state and emission
# ================================


class TestEmission:
    def test_default_state_renders_json(self, logger, stream):
        logger.info("hello", user="u1")

        (line,) = json_lines(stream.getvalue())
        assert line["message"] == "hello"
        assert line["level"] == "info"
        assert line["user"] == "u1"
        assert line["trace_id"]
        assert "timestamp" in line

    def test_args_are_joined_like_print(self, logger, stream):
        logger.warn("disk", 93, "percent")
        (line,) = json_lines(stream.getvalue())
        assert line["message"] == "disk 93 percent"
        assert line["level"] == "warning"

    def test_formatted_variants(self, logger, stream):
        logger.infof("user %s logged in %d times", "bob", 3)
        logger.errorf("100% literal")
        lines = json_lines(stream.getvalue())
        assert lines[0]["message"] == "user bob logged in 3 times"
        assert lines[1]["message"] == "100% literal"
        assert lines[1]["level"] == "error"

    def test_level_filtering(self, logger, stream):
        logger.debug("hidden")
        logger.debugf("hidden %s", "too")
        logger.info("shown")
        assert [l["message"] for l in json_lines(stream.getvalue())] == ["shown"]

    def test_unbound_calls_get_distinct_trace_ids(self, logger, stream):
        logger.info("a")
        logger.info("b")
        first, second = json_lines(stream.getvalue())
        assert first["trace_id"] != second["trace_id"]

    def test_bound_trace_id_is_used(self, logger, stream):
        with bind_trace_id("req-42"):
            logger.info("a")
            logger.error("b")
        assert {l["trace_id"] for l in json_lines(stream.getvalue())} == {"req-42"}

    def test_explicit_context_carries_trace_id(self, logger, stream):
        ctx, trace_id = get_or_create_trace_id(contextvars.Context())
        logger.info("from request", ctx=ctx)
        logger.info("same request", ctx=ctx)
        assert [l["trace_id"] for l in json_lines(stream.getvalue())] == [trace_id, trace_id]

    def test_version_is_stamped_once_set(self, logger, stream):
        logger.info("before")
        logger.set_version("1.4.2")
        logger.info("after")
        before, after = json_lines(stream.getvalue())
        assert "version" not in before
        assert after["version"] == "1.4.2"

    def test_named_logger(self, logger, stream):
        logger.get_logger("billing").info("charged", amount=12)
        (line,) = json_lines(stream.getvalue())
        assert line["logger"] == "billing"
        assert line["amount"] == 12

    def test_bind_with_context_and_fields(self, logger, stream):
        ctx, trace_id = get_or_create_trace_id(contextvars.Context())
        logger.bind(ctx, user="u1").warning("slow")
        (line,) = json_lines(stream.getvalue())
        assert line["trace_id"] == trace_id
        assert line["user"] == "u1"
        assert line["level"] == "warning"

    def test_context_argument_inside_its_own_run(self, logger, stream):
        ctx, trace_id = get_or_create_trace_id(contextvars.Context())

        def handle_request():
            logger.info("inside request", ctx=ctx)
            logger.bind(ctx).info("bound inside request")

        ctx.run(handle_request)

        assert [l["trace_id"] for l in json_lines(stream.getvalue())] == [trace_id, trace_id]

    def test_non_string_keys_are_rendered(self, logger, stream):
        logger.info("counts", counts={1: 2, None: 3})
        (line,) = json_lines(stream.getvalue())
        assert line["counts"] == {"1": 2, "null": 3}

    def test_render_failure_goes_to_stderr(self, logger, stream, monkeypatch, capsys):
        hook = RecordingHook()
        logger.add_hook(hook)

        def broken_format(event_dict, *, use_color=False):
            raise TypeError("Type is not JSON serializable")

        monkeypatch.setattr(logger._formatter, "format", broken_format)
        logger.info("unrenderable")
        logger.flush()

        assert stream.getvalue() == ""
        assert "cannot render entry" in capsys.readouterr().err
        assert [e.message for e in hook.entries] == ["unrenderable"]

    @pytest.mark.parametrize("key", ["message", "level", "timestamp", "logger", "event"])
    def test_clashing_field_names_are_prefixed(self, logger, stream, key):
        logger.info("x", **{key: "caller value"})
        (line,) = json_lines(stream.getvalue())
        assert line["message"] == "x"
        assert line[f"fields.{key}"] == "caller value"

    def test_parameter_names_are_usable_as_fields(self, logger, stream):
        logger.infof("rendered %s", "fine", fmt="csv")
        logger.log("error", "explicit", level="high")
        first, second = json_lines(stream.getvalue())
        assert first["fmt"] == "csv"
        assert second["level"] == "error"
        assert second["fields.level"] == "high"

    def test_mismatched_format_arguments_do_not_raise(self, logger, stream):
        logger.infof("%d items", "many")
        logger.infof("%s and %s", "one")
        first, second = json_lines(stream.getvalue())
        assert first["message"] == "%d items ('many',)"
        assert second["message"] == "%s and %s ('one',)"


class TestBoundEntry:
    def test_bound_fields_merge_with_call_fields(self, logger, stream):
        entry = logger.bind(None, user="u1", step=1).bind(step=2)
        entry.info("a", step=3)
        entry.warnf("b %d", 4)

        first, second = json_lines(stream.getvalue())
        assert (first["user"], first["step"]) == ("u1", 3)
        assert (second["step"], second["message"], second["level"]) == (2, "b 4", "warning")
        assert first["trace_id"] == second["trace_id"] == entry.fields["trace_id"]

    def test_bound_entry_honours_level(self, logger, stream):
        entry = logger.bind()
        entry.debug("hidden")
        entry.debugf("hidden %s", "too")
        assert stream.getvalue() == ""

    def test_fatal_flushes_hooks_then_exits(self, logger, stream):
        hook = RecordingHook()
        logger.add_hook(hook)
        entry = logger.bind(None, job="nightly")

        with pytest.raises(SystemExit):
            entry.fatal("job failed")

        (line,) = json_lines(stream.getvalue())
        assert line["level"] == "fatal"
        assert line["job"] == "nightly"
        assert [e.message for e in hook.entries] == ["job failed"]

    def test_fatalf_uses_exit_func(self, logger, stream):
        codes: list[int] = []
        logger.exit_func = codes.append
        logger.get_logger("jobs").fatalf("exit %s", "now")
        assert codes == [1]
        assert json_lines(stream.getvalue())[0]["logger"] == "jobs"

    def test_panic_raises_with_bound_fields(self, logger, stream):
        entry = logger.bind(None, shard=3)

        with pytest.raises(LogPanic) as exc_info:
            entry.panic("split brain")

        assert exc_info.value.fields["shard"] == 3
        assert json_lines(stream.getvalue())[0]["level"] == "panic"

    def test_panicf_on_named_logger(self, logger):
        with pytest.raises(LogPanic, match="lag 9s"):
            logger.get_logger("replica").panicf("lag %ds", 9)


class TestFatalAndPanic:
    def test_fatal_flushes_then_exits(self, logger, stream):
        hook = RecordingHook()
        logger.add_hook(hook)

        with pytest.raises(SystemExit) as exc_info:
            logger.fatal("cannot continue", code=7)

        assert exc_info.value.code == 1
        (line,) = json_lines(stream.getvalue())
        assert line["level"] == "fatal"
        assert [e.message for e in hook.entries] == ["cannot continue"]

    def test_fatal_uses_exit_func(self, logger, stream):
        codes: list[int] = []
        logger.exit_func = codes.append
        logger.fatalf("bad %s", "state")
        assert codes == [1]
        assert json_lines(stream.getvalue())[0]["message"] == "bad state"

    def test_panic_raises_after_writing(self, logger, stream):
        with pytest.raises(LogPanic) as exc_info:
            logger.panic("invariant broken", shard=3)

        assert str(exc_info.value) == "invariant broken"
        assert exc_info.value.fields == {"shard": 3}
        (line,) = json_lines(stream.getvalue())
        assert line["level"] == "panic"

    def test_panicf_formats_message(self, logger):
        with pytest.raises(LogPanic, match="queue 5 overflow"):
            logger.panicf("queue %d overflow", 5)


# ================================
# Init / teardown
# ================================


class TestInit:
    def test_double_init_raises_until_teardown(self, logger, stream):
        teardown = logger.init({"output": "stderr"})
        with pytest.raises(AlreadyInitializedError):
            logger.init({"output": "stderr"})

        teardown()
        assert not logger.initialized
        logger.init({"output": "stdout"})
        assert logger.initialized

    def test_teardown_is_idempotent_and_restores_default_sink(self, logger, stream):
        teardown = logger.init({"output": "stdout"})
        teardown()
        teardown()

        logger.info("back to default")
        assert json_lines(stream.getvalue())[0]["message"] == "back to default"

    def test_level_from_init(self, logger, stream):
        logger.init({"level": "warn", "output": "stdout"})
        logger.set_output(stream)

        logger.info("dropped")
        logger.warn("kept")

        assert [l["message"] for l in json_lines(stream.getvalue())] == ["kept"]

    def test_debug_level_from_ordinal(self, logger, stream):
        logger.init({"level": 5, "output": "stdout"})
        logger.set_output(stream)
        logger.debug("visible")
        assert json_lines(stream.getvalue())[0]["level"] == "debug"

    def test_text_format(self, logger, stream):
        logger.init({"format": "plain", "output": "stdout"})
        logger.set_output(stream)

        logger.info("hello", user="u1")

        line = stream.getvalue().strip()
        assert " |     INFO | " in line
        assert "user=u1" in line

    def test_invalid_level_is_a_configuration_error(self, logger):
        with pytest.raises(ConfigurationError):
            logger.init({"level": "loud"})
        assert not logger.initialized

    def test_invalid_elasticsearch_address_fails_before_file_is_opened(self, logger, tmp_path):
        base = tmp_path / "logs" / "app.log"
        with pytest.raises(ConfigurationError):
            logger.init(
                {
                    "output": "file",
                    "file_path": str(base),
                    "elasticsearch": {"addresses": ["es-node-without-scheme"]},
                }
            )
        assert not (tmp_path / "logs").exists()
        assert not logger.initialized

    def test_unwritable_file_path_is_a_configuration_error(self, logger, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            logger.init({"output": "file", "file_path": str(blocker / "app.log")})

    def test_remote_indexers_register_one_hook_each(self, logger):
        logger.init(
            {
                "output": "stdout",
                "index_name": "svc-logs",
                "meilisearch": {"host": "http://localhost:7700", "api_key": "k"},
                "elasticsearch": {"addresses": ["http://localhost:9200"]},
            }
        )

        assert isinstance(logger.registry.get("meilisearch"), MeilisearchHook)
        assert isinstance(logger.registry.get("elasticsearch"), ElasticsearchHook)
        assert logger.add_meilisearch_hook() is False
        assert logger.add_elasticsearch_hook() is False
        assert len(logger.registry) == 2
        assert logger.dispatcher is not None and logger.dispatcher.running

    def test_without_remote_indexers_no_hooks_are_installed(self, logger):
        logger.init({"output": "stdout"})
        assert logger.add_meilisearch_hook() is False
        assert logger.add_elasticsearch_hook() is False
        assert len(logger.registry) == 0
        assert logger.dispatcher is None

    def test_teardown_clears_hooks(self, logger):
        teardown = logger.init({"output": "stdout", "meilisearch": {"host": "http://localhost:7700"}})
        dispatcher = logger.dispatcher
        teardown()
        assert len(logger.registry) == 0
        assert logger.dispatcher is None
        assert not dispatcher.running


# ================================
# Hooks and outputs
# ================================


class TestHooksAndOutputs:
    def test_hooks_receive_written_entries(self, logger, stream):
        hook = RecordingHook()
        logger.add_hook(hook)
        logger.set_version("2.0.0")

        with bind_trace_id("req-1"):
            logger.info("created", order=17)
        logger.flush()

        (entry,) = hook.entries
        assert entry.message == "created"
        assert entry.level == "info"
        assert entry.fields["order"] == 17
        assert entry.fields["trace_id"] == "req-1"
        assert entry.fields["version"] == "2.0.0"

    def test_filtered_entries_never_reach_hooks(self, logger):
        hook = RecordingHook()
        logger.add_hook(hook)
        logger.debug("quiet")
        logger.flush()
        assert hook.entries == []

    def test_add_hook_replaces_same_kind(self, logger):
        first, second = RecordingHook(), RecordingHook()
        logger.add_hook(first)
        logger.add_hook(second)
        logger.info("x")
        logger.flush()
        assert first.entries == []
        assert len(second.entries) == 1

    def test_set_output_redirects(self, logger, stream):
        other = io.StringIO()
        logger.set_output(other)
        logger.info("moved")
        assert stream.getvalue() == ""
        assert json_lines(other.getvalue())[0]["message"] == "moved"

    def test_set_output_accepts_a_sink(self, logger):
        other = io.StringIO()
        sink = StreamSink(other)
        logger.set_output(sink)
        assert logger.sink is sink


# ================================
# File scenarios
# ================================


def today_path(base):
    return base.with_name(f"{base.stem}.{datetime.now():%Y-%m-%d}.log")


class TestFileOutput:
    def test_init_creates_dated_file_and_appends_json(self, logger, tmp_path):
        base = tmp_path / "app.log"
        logger.init({"output": "file", "file_path": str(base)})

        with bind_trace_id("req-9"):
            logger.info("hello")

        target = today_path(base)
        assert logger.sink.path == target
        (line,) = json_lines(target.read_text(encoding="utf-8"))
        assert line["message"] == "hello"
        assert line["trace_id"] == "req-9"

    def test_concurrent_calls_write_intact_lines(self, logger, tmp_path):
        base = tmp_path / "app.log"
        logger.init({"output": "file", "file_path": str(base)})
        threads_count, per_thread = 10, 100
        start = threading.Barrier(threads_count)

        def worker(n: int) -> None:
            start.wait()
            for i in range(per_thread):
                logger.info("msg", worker=n, seq=i)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        lines = json_lines(today_path(base).read_text(encoding="utf-8"))
        assert len(lines) == threads_count * per_thread
        for n in range(threads_count):
            assert [l["seq"] for l in lines if l["worker"] == n] == list(range(per_thread))
        assert len(logger.registry) == 0
        assert logger.dispatcher is None

    def test_failed_rotation_keeps_writing_to_old_file(self, logger, tmp_path):
        base = tmp_path / "app.log"
        logger.init({"output": "file", "file_path": str(base)})
        sink = logger.sink
        assert isinstance(sink, RotatingFileSink)
        current = sink.path

        tomorrow = datetime.now() + timedelta(days=1)
        (tmp_path / f"app.{tomorrow:%Y-%m-%d}.log").mkdir()
        sink._clock = lambda: tomorrow
        logger._scheduler.tick()
        logger.info("still writing")

        lines = json_lines(current.read_text(encoding="utf-8"))
        assert lines[0]["level"] == "error"
        assert lines[0]["message"].startswith("Error rotating log:")
        assert lines[1]["message"] == "still writing"
        assert sink.path == current

    def test_teardown_closes_file(self, logger, tmp_path):
        teardown = logger.init({"output": "file", "file_path": str(tmp_path / "app.log")})
        sink = logger.sink
        teardown()
        assert sink.state.value == "closed"
        assert not isinstance(logger.sink, RotatingFileSink)


# ================================
# Process-wide functions
# ================================


class TestModuleFunctions:
    def test_module_functions_use_standard_logger(self, standard, stream):
        assert relaylog.standard_logger() is standard

        relaylog.info("one")
        relaylog.warnf("two %d", 2)
        relaylog.get_logger("svc").error("three")

        lines = json_lines(stream.getvalue())
        assert [l["message"] for l in lines] == ["one", "two 2", "three"]
        assert lines[2]["logger"] == "svc"

    def test_entry_with_fields(self, standard, stream):
        ctx, trace_id = get_or_create_trace_id(contextvars.Context())
        relaylog.set_version("9.9")

        relaylog.entry_with_fields({"user": "u1"}, ctx).info("login")

        (line,) = json_lines(stream.getvalue())
        assert line["user"] == "u1"
        assert line["trace_id"] == trace_id
        assert line["version"] == "9.9"
        assert line["message"] == "login"

    def test_entry_with_fields_accepts_any_field_name(self, standard, stream):
        relaylog.entry_with_fields({"ctx": "tenant-a", "message": "raw"}).info("stored")

        (line,) = json_lines(stream.getvalue())
        assert line["ctx"] == "tenant-a"
        assert line["fields.message"] == "raw"
        assert line["message"] == "stored"

    def test_entry_with_fields_fatal_and_panic(self, standard, stream):
        codes: list[int] = []
        standard.exit_func = codes.append
        entry = relaylog.entry_with_fields({"order": 17})

        entry.fatal("payment lost")
        with pytest.raises(LogPanic):
            entry.panicf("ledger %s", "diverged")

        assert codes == [1]
        fatal_line, panic_line = json_lines(stream.getvalue())
        assert (fatal_line["level"], fatal_line["order"]) == ("fatal", 17)
        assert (panic_line["level"], panic_line["message"]) == ("panic", "ledger diverged")

    def test_init_and_teardown_through_module(self, standard):
        teardown = relaylog.init({"output": "stdout"})
        with pytest.raises(AlreadyInitializedError):
            relaylog.init()
        teardown()
        assert not standard.initialized

    def test_add_hook_through_module(self, standard):
        hook = RecordingHook()
        relaylog.add_hook(hook)
        relaylog.error("boom")
        standard.flush()
        assert [e.message for e in hook.entries] == ["boom"]

    def test_module_panic(self, standard):
        with pytest.raises(LogPanic):
            relaylog.panic("stop")

    def test_init_from_settings_sets_version(self, standard, monkeypatch):
        from relaylog.config import Settings

        monkeypatch.setenv("RL_APP_VERSION", "3.1.0")
        monkeypatch.setenv("RL_LOG_OUTPUT", "stdout")
        teardown = relaylog.init_from_settings(Settings())
        try:
            assert standard.version == "3.1.0"
            assert standard.initialized
        finally:
            teardown()


def test_fresh_logger_is_independent():
    first, second = Logger(stream=io.StringIO()), Logger(stream=io.StringIO())
    first.set_version("a")
    assert second.version == ""
