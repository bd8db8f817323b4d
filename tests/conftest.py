import io
import typing as t

import pytest
import structlog

from relaylog import core
from relaylog.core import Logger


@pytest.fixture(autouse=True)
def clear_trace_context():
    """Each test starts without any bound trace id."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(stream) -> t.Iterator[Logger]:
    """
    Fresh Logger writing to an in-memory stream.
    Torn down after the test so background threads never leak.
    """
    instance = Logger(stream=stream)
    yield instance
    instance.teardown()


@pytest.fixture
def standard(monkeypatch, stream) -> t.Iterator[Logger]:
    """
    Patches the process-wide logger so module-level functions
    (relaylog.info, relaylog.init, ...) hit a test-scoped instance.
    """
    instance = Logger(stream=stream)
    monkeypatch.setattr(core, "_standard_logger", instance)
    yield instance
    instance.teardown()
