"""Tests for TraceLauncher pre-flight ordering."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from mqtrace.errors import DataExistsError, TraceConfigError, TraceDeadlineExceeded
from mqtrace.models import Message, format_rfc3339
from mqtrace.tracer import TraceLauncher


@pytest.fixture
def mock_store():
    """Create mock trace store."""
    store = Mock()
    store.has_data = AsyncMock(return_value=False)
    store.add_trace = AsyncMock()
    return store


def future(seconds: float) -> str:
    return format_rfc3339(datetime.now(timezone.utc) + timedelta(seconds=seconds))


class TestLaunchOrdering:
    """Failures surface before the side effects they guard."""

    async def test_invalid_start_before_storage(self, mock_store):
        runner = AsyncMock()
        launcher = TraceLauncher(mock_store, runner)

        with pytest.raises(TraceConfigError, match="invalid trace start time"):
            await launcher.launch("k", start="not-a-time")

        mock_store.has_data.assert_not_awaited()
        runner.assert_not_awaited()

    async def test_invalid_end(self, mock_store):
        launcher = TraceLauncher(mock_store, AsyncMock())
        with pytest.raises(TraceConfigError, match="invalid trace end time"):
            await launcher.launch("k", end="2024-01-01")
        mock_store.has_data.assert_not_awaited()

    async def test_end_in_past_before_storage(self, mock_store):
        runner = AsyncMock()
        launcher = TraceLauncher(mock_store, runner)

        with pytest.raises(TraceConfigError, match="already passed"):
            await launcher.launch("k", end="2000-01-01T00:00:00Z")

        mock_store.has_data.assert_not_awaited()
        mock_store.add_trace.assert_not_awaited()
        runner.assert_not_awaited()

    async def test_data_exists_before_network(self, mock_store):
        mock_store.has_data.return_value = True
        runner = AsyncMock()
        launcher = TraceLauncher(mock_store, runner)

        with pytest.raises(DataExistsError, match="trace key already exists: default/k"):
            await launcher.launch("k")

        mock_store.add_trace.assert_not_awaited()
        runner.assert_not_awaited()

    async def test_registers_then_runs(self, mock_store):
        runner = AsyncMock()
        launcher = TraceLauncher(mock_store, runner)

        config = await launcher.launch("k", topics=["a", "b"], end=future(60))

        assert config.profile == "default"
        assert config.topics == ["a", "b"]
        mock_store.add_trace.assert_awaited_once_with(config)
        runner.assert_awaited_once_with(config)

    async def test_profile_is_kept(self, mock_store):
        launcher = TraceLauncher(mock_store, AsyncMock())
        config = await launcher.launch("k", profile="lab")
        assert config.profile == "lab"
        mock_store.has_data.assert_awaited_once_with("lab", "k")

    async def test_deadline_exceeded(self, mock_store):
        async def runner(config):
            await asyncio.sleep(10)

        launcher = TraceLauncher(mock_store, runner)

        with pytest.raises(TraceDeadlineExceeded) as exc:
            await launcher.launch("k", timeout=0.05)
        assert isinstance(exc.value, TimeoutError)
        mock_store.add_trace.assert_awaited_once()


class TestLaunchWithStore:
    async def test_existing_partition_blocks_launch(self, trace_store):
        await trace_store.append(
            "lab", "k", Message(timestamp=datetime.now(timezone.utc), topic="a")
        )
        launcher = TraceLauncher(trace_store, AsyncMock())

        with pytest.raises(DataExistsError):
            await launcher.launch("k", profile="lab")
        assert await trace_store.load_traces("lab") == {}

    async def test_registered_config_is_persisted(self, trace_store):
        launcher = TraceLauncher(trace_store, AsyncMock())
        await launcher.launch("k", topics=["a"], end=future(3600))

        traces = await trace_store.load_traces()
        assert traces["k"].topics == ["a"]
        assert traces["k"].end is not None
