import pytest

from ctxscope.config.environment import Environment
from ctxscope.runtime.context import AsyncLocalContext
from ctxscope.runtime.tracker import ExecutionTracker


@pytest.fixture(autouse=True)
def _reset_environment():
    """Drop cached settings so tests driving configuration through env vars stay isolated."""
    Environment.reset()
    yield
    Environment.reset()


@pytest.fixture
def tracker() -> ExecutionTracker:
    """A fresh tracker so bookkeeping assertions only see this test's scopes."""
    return ExecutionTracker()


@pytest.fixture
def async_context(tracker: ExecutionTracker) -> AsyncLocalContext:
    return AsyncLocalContext(tracker=tracker)
