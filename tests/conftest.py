"""
Brief: Global pytest configuration: src on sys.path, per-test 10s timeout and
engine fixtures wired to in-process fakes.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'ensresolve' is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)
TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
if TESTS_DIR not in sys.path:
    sys.path.insert(0, TESTS_DIR)

from ensresolve.config.settings import EngineSettings  # noqa: E402
from ensresolve.engine import ResolutionEngine  # noqa: E402
from fakes import FakeChain, FakeGateway  # noqa: E402


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


@pytest.fixture
def chain():
    """Brief: Fresh FakeChain per test."""

    return FakeChain()


@pytest.fixture
def make_engine(chain):
    """
    Brief: Factory building ResolutionEngine instances over fakes.

    Inputs:
      - index: IndexReader for the engine.
      - gateway: Optional FakeGateway (default: one with no backend).
      - table: Optional ResolverPatternTable.
      - settings keyword arguments forwarded to EngineSettings.

    Outputs:
      - Callable returning a ResolutionEngine; all engines are closed after
        the test.
    """

    engines = []

    def _make(index, *, gateway=None, table=None, label_healer=None, **settings_kwargs):
        engine = ResolutionEngine(
            index,
            chain,
            gateway or FakeGateway(),
            settings=EngineSettings(**settings_kwargs),
            table=table,
            label_healer=label_healer,
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()
