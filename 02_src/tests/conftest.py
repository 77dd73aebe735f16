"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add source and test directories to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import InMemoryBroker  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.config/mqtrace."""
    home = tmp_path / "home"
    monkeypatch.setenv("MQTRACE_HOME", str(home))
    monkeypatch.delenv("MQTRACE_USERNAME", raising=False)
    monkeypatch.delenv("MQTRACE_PASSWORD", raising=False)
    return home


@pytest_asyncio.fixture
async def history_store():
    """Create in-memory history store for testing."""
    from mqtrace.storage import HistoryStore

    st = HistoryStore("default", ":memory:")
    yield st
    await st.close()


@pytest_asyncio.fixture
async def trace_store():
    """Create in-memory trace store for testing."""
    from mqtrace.storage import TraceStore

    st = TraceStore(":memory:")
    yield st
    await st.close()


@pytest.fixture
def broker():
    """Create in-memory broker."""
    return InMemoryBroker()
