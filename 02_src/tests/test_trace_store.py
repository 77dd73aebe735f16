"""Tests for TraceStore."""

from datetime import datetime, timedelta, timezone

import pytest

from mqtrace.errors import DataExistsError, StoreClosedError, TraceConfigError
from mqtrace.models import Message, TracerConfig
from mqtrace.storage import TraceStore


def make_message(topic: str, payload: str = "x") -> Message:
    return Message(timestamp=datetime.now(timezone.utc), topic=topic, payload=payload.encode())


class TestTraceRegistry:
    """Tests for trace registration."""

    async def test_add_and_load(self, trace_store):
        cfg = TracerConfig(
            key="k1",
            profile="lab",
            topics=["a/#"],
            end=datetime.now(timezone.utc) + timedelta(hours=1),
        )
        await trace_store.add_trace(cfg)

        traces = await trace_store.load_traces("lab")
        assert list(traces) == ["k1"]
        assert traces["k1"].profile == "lab"
        assert traces["k1"].topics == ["a/#"]

    async def test_add_rejects_existing_data(self, trace_store):
        await trace_store.append("default", "k1", make_message("a"))

        with pytest.raises(DataExistsError) as exc:
            await trace_store.add_trace(TracerConfig(key="k1"))
        assert "default/k1" in str(exc.value)
        assert await trace_store.load_traces() == {}

    async def test_remove_keeps_data(self, trace_store):
        await trace_store.add_trace(TracerConfig(key="k1"))
        await trace_store.append("default", "k1", make_message("a"))

        await trace_store.remove_trace("k1")

        assert await trace_store.load_traces() == {}
        assert await trace_store.has_data("default", "k1")

    async def test_save_replaces_registry(self, trace_store):
        await trace_store.add_trace(TracerConfig(key="old"))
        await trace_store.add_trace(TracerConfig(key="kept", profile="lab"))

        await trace_store.save_traces({"a": TracerConfig(key="a"), "b": TracerConfig(key="b")})

        assert sorted(await trace_store.load_traces()) == ["a", "b"]
        assert list(await trace_store.load_traces("lab")) == ["kept"]

    async def test_save_rejects_other_profile(self, trace_store):
        with pytest.raises(TraceConfigError):
            await trace_store.save_traces({"b": TracerConfig(key="b", profile="lab")})
        assert await trace_store.load_traces() == {}

    async def test_same_key_in_two_profiles(self, trace_store):
        await trace_store.add_trace(TracerConfig(key="k", profile="alpha", topics=["a"]))
        await trace_store.add_trace(TracerConfig(key="k", profile="beta", topics=["b"]))

        alpha = await trace_store.load_traces("alpha")
        beta = await trace_store.load_traces("beta")
        assert len(alpha) + len(beta) == 2
        assert alpha["k"].topics == ["a"]
        assert beta["k"].topics == ["b"]

        await trace_store.remove_trace("k", "alpha")

        assert await trace_store.load_traces("alpha") == {}
        assert list(await trace_store.load_traces("beta")) == ["k"]


class TestTraceData:
    """Tests for trace partitions."""

    async def test_has_data(self, trace_store):
        assert not await trace_store.has_data("default", "k1")
        await trace_store.append("default", "k1", make_message("a"))
        assert await trace_store.has_data("default", "k1")
        assert not await trace_store.has_data("default", "k2")
        assert not await trace_store.has_data("lab", "k1")

    async def test_messages_in_insertion_order(self, trace_store):
        for topic in ["c", "a", "b"]:
            await trace_store.append("default", "k1", make_message(topic))
        await trace_store.append("default", "k2", make_message("other"))

        msgs = await trace_store.messages("default", "k1")
        assert [m.topic for m in msgs] == ["c", "a", "b"]

    async def test_counts(self, trace_store):
        await trace_store.append("default", "k1", make_message("a"))
        await trace_store.append("default", "k1", make_message("a"))
        await trace_store.append("default", "k1", make_message("wild/x"))

        counts = await trace_store.load_counts("default", "k1", ["a", "b"])
        assert counts == {"a": 2, "b": 0, "wild/x": 1}

    async def test_counts_without_data(self, trace_store):
        assert await trace_store.load_counts("default", "k1", ["a"]) == {"a": 0}
        assert await trace_store.load_counts("default", "k1") == {}

    async def test_clear_data(self, trace_store):
        await trace_store.append("default", "k1", make_message("a"))
        await trace_store.append("default", "k2", make_message("a"))

        await trace_store.clear_data("default", "k1")

        assert not await trace_store.has_data("default", "k1")
        assert await trace_store.load_counts("default", "k1") == {}
        assert await trace_store.has_data("default", "k2")

    async def test_closed_store_raises(self):
        store = TraceStore(":memory:")
        await store.close()
        with pytest.raises(StoreClosedError):
            await store.load_traces()
        with pytest.raises(StoreClosedError):
            await store.append("default", "k", make_message("a"))


class TestTraceFiles:
    """Tests for the on-disk layout."""

    async def test_layout(self, tmp_path):
        store = TraceStore(tmp_path)
        try:
            assert not await store.has_data("lab", "k1")
            assert not (tmp_path / "data").exists()

            await store.add_trace(TracerConfig(key="k1", profile="lab"))
            await store.append("lab", "k1", make_message("a"))
        finally:
            await store.close()

        assert (tmp_path / "traces.db").exists()
        assert (tmp_path / "data" / "lab" / "traces" / "traces.db").exists()

        reopened = TraceStore(tmp_path)
        try:
            assert "k1" in await reopened.load_traces("lab")
            assert len(await reopened.messages("lab", "k1")) == 1
        finally:
            await reopened.close()

    async def test_delete_profile(self, tmp_path):
        store = TraceStore(tmp_path)
        try:
            await store.add_trace(TracerConfig(key="k1", profile="lab"))
            await store.append("lab", "k1", make_message("a"))
            await store.add_trace(TracerConfig(key="k1", profile="other"))
            await store.append("other", "k1", make_message("a"))

            await store.delete_profile("lab")

            assert not (tmp_path / "data" / "lab" / "traces").exists()
            assert not await store.has_data("lab", "k1")
            assert await store.load_traces("lab") == {}
            assert await store.has_data("other", "k1")
            assert list(await store.load_traces("other")) == ["k1"]

            # A fresh partition is created on the next append.
            await store.append("lab", "k1", make_message("b"))
            assert [m.topic for m in await store.messages("lab", "k1")] == ["b"]
            assert await store.load_counts("lab", "k1") == {"b": 1}

            # Nothing left to remove is not an error.
            await store.delete_profile("missing")
        finally:
            await store.close()


class TestDeleteProfileInMemory:
    """Profile deletion when every profile shares one connection."""

    async def test_delete_profile(self, trace_store):
        await trace_store.add_trace(TracerConfig(key="k1", profile="lab"))
        await trace_store.append("lab", "k1", make_message("a"))
        await trace_store.append("default", "k1", make_message("a"))

        await trace_store.delete_profile("lab")

        assert not await trace_store.has_data("lab", "k1")
        assert await trace_store.load_counts("lab", "k1") == {}
        assert await trace_store.load_traces("lab") == {}
        assert await trace_store.has_data("default", "k1")
