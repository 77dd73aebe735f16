"""Tests for the HTTP API."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from mqtrace.api import create_fastapi_app
from mqtrace.app import Application
from mqtrace.connections import Profile
from mqtrace.models import Message, format_rfc3339


@pytest.fixture
async def application(broker):
    """Create started application on in-memory stores and broker."""
    app = Application(
        home=":memory:",
        broker=Profile(name="default", host="127.0.0.1", port=1883),
        use_relay=False,
        client_factory=lambda address: broker.client(address),
    )
    await app.start()
    yield app
    await app.stop()


@pytest.fixture
async def client(application):
    """Create HTTP client for the API."""
    transport = httpx.ASGITransport(app=create_fastapi_app(application))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def seed_history(application) -> list[Message]:
    now = datetime.now(timezone.utc)
    messages = [
        Message(timestamp=now - timedelta(minutes=30), topic="sensor/temperature", payload=b'{"t":21}'),
        Message(timestamp=now - timedelta(minutes=20), topic="sensor/humidity", payload=b"40"),
        Message(timestamp=now - timedelta(hours=2), topic="door/status", payload=b"open"),
    ]
    for msg in messages:
        await application.history.append(msg)
    return messages


class TestHistoryAPI:
    async def test_search_all(self, client, application):
        await seed_history(application)

        response = await client.get("/api/history")

        assert response.status_code == 200
        topics = [m["topic"] for m in response.json()]
        assert topics == ["door/status", "sensor/temperature", "sensor/humidity"]

    async def test_search_filters(self, client, application):
        await seed_history(application)
        start = format_rfc3339(datetime.now(timezone.utc) - timedelta(hours=1))

        response = await client.get(
            "/api/history", params={"topic": ["temp", "hum"], "start": start}
        )
        assert [m["topic"] for m in response.json()] == [
            "sensor/temperature",
            "sensor/humidity",
        ]

        response = await client.get("/api/history", params={"payload": "open"})
        assert [m["topic"] for m in response.json()] == ["door/status"]

    async def test_search_query_string(self, client, application):
        await seed_history(application)

        response = await client.get("/api/history", params={"q": "topic=sntp"})
        body = response.json()
        assert [m["topic"] for m in body] == ["sensor/temperature"]
        assert body[0]["detail"] == '{\n  "t": 21\n}'

    async def test_invalid_window(self, client):
        response = await client.get(
            "/api/history",
            params={"start": "2024-01-02T00:00:00Z", "end": "2024-01-01T00:00:00Z"},
        )
        assert response.status_code == 400
        assert "End must be after start" in response.json()["detail"]

    async def test_archive_count_delete(self, client, application):
        messages = await seed_history(application)

        response = await client.post(f"/api/history/{messages[0].id}/archive")
        assert response.json() == {"ref": messages[0].id, "affected": 1}

        assert (await client.get("/api/history/count")).json()["count"] == 2
        response = await client.get("/api/history/count", params={"archived": True})
        assert response.json() == {"archived": True, "count": 1}

        archived = (await client.get("/api/history", params={"archived": True})).json()
        assert archived[0]["archived"] is True

        response = await client.delete("/api/history/door/status")
        assert response.json() == {"ref": "door/status", "affected": 1}
        assert (await client.get("/api/history/count")).json()["count"] == 1

    async def test_topics(self, client, application):
        await seed_history(application)
        response = await client.get("/api/history/topics")
        assert response.json() == ["door/status", "sensor/humidity", "sensor/temperature"]


class TestTracesAPI:
    async def test_trace_round_trip(self, client, application, broker):
        end = format_rfc3339(datetime.now(timezone.utc) + timedelta(hours=1))
        response = await client.post(
            "/api/traces", json={"key": "k1", "topics": ["test/trace"], "end": end}
        )
        assert response.status_code == 201
        body = response.json()
        assert body["state"] == "running"
        assert body["counts"] == {"test/trace": 0}
        assert body["end"] == end

        broker.deliver("test/trace", "integration payload")
        for _ in range(100):
            if application.tracer("k1").counts()["test/trace"]:
                break
            await asyncio.sleep(0.01)

        response = await client.post("/api/traces/k1/stop")
        assert response.json()["state"] == "stopped"

        response = await client.get("/api/traces/k1")
        assert response.json()["counts"] == {"test/trace": 1}

        response = await client.get("/api/traces/k1/messages")
        assert [m["payload"] for m in response.json()] == ["integration payload"]

        response = await client.get("/api/traces")
        assert [t["key"] for t in response.json()] == ["k1"]

    async def test_end_in_past(self, client):
        response = await client.post(
            "/api/traces", json={"key": "k1", "end": "2000-01-01T00:00:00Z"}
        )
        assert response.status_code == 400

    async def test_invalid_time(self, client):
        response = await client.post("/api/traces", json={"key": "k1", "start": "soon"})
        assert response.status_code == 400

    async def test_already_running(self, client):
        assert (await client.post("/api/traces", json={"key": "k1"})).status_code == 201
        response = await client.post("/api/traces", json={"key": "k1"})
        assert response.status_code == 409

    async def test_data_exists(self, client, application):
        await application.traces.append(
            "default", "k1", Message(timestamp=datetime.now(timezone.utc), topic="a")
        )
        response = await client.post("/api/traces", json={"key": "k1"})
        assert response.status_code == 409
        assert "trace key already exists" in response.json()["detail"]

    async def test_unknown_key(self, client):
        assert (await client.get("/api/traces/missing")).status_code == 404
        assert (await client.post("/api/traces/missing/stop")).status_code == 404
        assert (await client.get("/api/traces/missing/messages")).status_code == 404
        assert (await client.delete("/api/traces/missing")).status_code == 404

    async def test_delete_trace(self, client, application):
        await client.post("/api/traces", json={"key": "k1"})

        response = await client.delete("/api/traces/k1", params={"clear": True})

        assert response.json() == {"status": "ok"}
        assert (await client.get("/api/traces")).json() == []

    async def test_registered_but_not_running(self, client, application):
        from mqtrace.models import TracerConfig

        await application.traces.add_trace(TracerConfig(key="idle", topics=["a"]))

        response = await client.get("/api/traces/idle")
        assert response.json()["state"] == "stopped"
        assert response.json()["counts"] == {"a": 0}


class TestControlAPI:
    async def test_relay_not_running(self, client):
        response = await client.get("/api/relay")
        assert response.json() == {
            "running": False,
            "address": None,
            "active_connections": 0,
        }

    async def test_relay_running(self):
        app = Application(home=":memory:", broker=Profile(name="default", host="127.0.0.1"))
        await app.start()
        try:
            transport = httpx.ASGITransport(app=create_fastapi_app(app))
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
                body = (await c.get("/api/relay")).json()
            assert body["running"] is True
            assert body["address"] == app.relay.address
        finally:
            await app.stop()

    async def test_delete_profile_data(self, client, application):
        await seed_history(application)
        assert (await client.post("/api/traces", json={"key": "k1"})).status_code == 201

        response = await client.delete("/api/profile/data")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "profile": "default"}
        assert (await client.get("/api/traces")).json() == []
        assert (await client.get("/api/history")).json() == []
        assert application.tracer("k1") is None
