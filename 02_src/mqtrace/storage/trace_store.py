"""SQLite trace store: trace registry plus one data partition per (profile, key)."""

import asyncio
import json
import shutil
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..config import (
    MEMORY,
    PathLike,
    data_dir,
    profile_name,
    registry_db_path,
    traces_db_path,
)
from ..errors import DataExistsError, StoreClosedError, TraceConfigError
from ..logging_config import get_logger
from ..models import Message, TracerConfig
from .sqlite import open_database, row_to_message, to_db_timestamp

logger = get_logger(__name__)


class ITraceStore(Protocol):
    """Persistence for trace configurations and captured trace data."""

    async def add_trace(self, config: TracerConfig) -> None:
        """Register a trace. Fails when data already exists for its key."""
        ...

    async def remove_trace(self, key: str, profile: str | None = None) -> None:
        """Unregister a trace of a profile (its data is kept)."""
        ...

    async def load_traces(self, profile: str | None = None) -> dict[str, TracerConfig]:
        """Registered traces of a profile by key."""
        ...

    async def save_traces(
        self, traces: dict[str, TracerConfig], profile: str | None = None
    ) -> None:
        """Replace the registry of a profile with the given traces."""
        ...

    async def has_data(self, profile: str, key: str) -> bool:
        """Whether any message is stored for (profile, key)."""
        ...

    async def clear_data(self, profile: str, key: str) -> None:
        """Drop all messages and counts of (profile, key)."""
        ...

    async def append(self, profile: str, key: str, message: Message) -> None:
        """Append a captured message and bump its topic count."""
        ...

    async def messages(self, profile: str, key: str) -> list[Message]:
        """Captured messages of (profile, key) in insertion order."""
        ...

    async def load_counts(
        self, profile: str, key: str, topics: list[str] | None = None
    ) -> dict[str, int]:
        """Persisted per-topic counts of (profile, key)."""
        ...

    async def delete_profile(self, profile: str) -> None:
        """Drop every registered trace and all captured data of a profile."""
        ...

    async def close(self) -> None:
        """Release all database connections."""
        ...


class TraceStore:
    """SQLite trace store.

    The registry lives in <home>/traces.db, captured data in
    <home>/data/<profile>/traces/traces.db. With home=":memory:" everything
    shares one in-memory connection.
    """

    def __init__(self, home: PathLike | None = None):
        self._home = home
        self._memory = registry_db_path(home) == MEMORY
        self._registry: aiosqlite.Connection | None = None
        self._data: dict[str, aiosqlite.Connection] = {}
        self._closed = False
        self._lock = asyncio.Lock()

    async def _registry_conn(self) -> aiosqlite.Connection:
        if self._closed:
            raise StoreClosedError("Trace store is closed")
        if self._registry is None:
            self._registry = await open_database(registry_db_path(self._home))
        return self._registry

    async def _data_conn(
        self, profile: str, create: bool = True
    ) -> aiosqlite.Connection | None:
        if self._closed:
            raise StoreClosedError("Trace store is closed")
        if self._memory:
            return await self._registry_conn()

        conn = self._data.get(profile)
        if conn is None:
            path = traces_db_path(profile, self._home)
            if not create and not Path(path).exists():
                return None
            conn = await open_database(path)
            self._data[profile] = conn
            logger.debug("Opened trace partition store %s", path)
        return conn

    # Registry
    async def add_trace(self, config: TracerConfig) -> None:
        """Register a trace. Fails when data already exists for its key."""
        if await self.has_data(config.profile, config.key):
            raise DataExistsError(config.profile, config.key)

        async with self._lock:
            conn = await self._registry_conn()
            await conn.execute(
                """
                INSERT OR REPLACE INTO trace_configs (profile, key, config)
                VALUES (?, ?, ?)
                """,
                (config.profile, config.key, json.dumps(config.to_dict())),
            )
            await conn.commit()
        logger.info("Registered trace %s/%s", config.profile, config.key)

    async def remove_trace(self, key: str, profile: str | None = None) -> None:
        """Unregister a trace of a profile (its data is kept)."""
        async with self._lock:
            conn = await self._registry_conn()
            await conn.execute(
                "DELETE FROM trace_configs WHERE profile = ? AND key = ?",
                (profile_name(profile), key),
            )
            await conn.commit()

    async def load_traces(self, profile: str | None = None) -> dict[str, TracerConfig]:
        """Registered traces of a profile by key."""
        async with self._lock:
            conn = await self._registry_conn()
            cursor = await conn.execute(
                "SELECT key, config FROM trace_configs WHERE profile = ? ORDER BY key",
                (profile_name(profile),),
            )
            rows = await cursor.fetchall()
        return {row[0]: TracerConfig.from_dict(json.loads(row[1])) for row in rows}

    async def save_traces(
        self, traces: dict[str, TracerConfig], profile: str | None = None
    ) -> None:
        """
        Replace the registry of a profile with the given traces.

        Raises:
            TraceConfigError: A config belongs to another profile
        """
        profile = profile_name(profile)
        for key, cfg in traces.items():
            if cfg.profile != profile:
                raise TraceConfigError(
                    f"trace {key} belongs to profile {cfg.profile}, not {profile}"
                )

        async with self._lock:
            conn = await self._registry_conn()
            await conn.execute("DELETE FROM trace_configs WHERE profile = ?", (profile,))
            await conn.executemany(
                """
                INSERT INTO trace_configs (profile, key, config)
                VALUES (?, ?, ?)
                """,
                [(profile, key, json.dumps(cfg.to_dict())) for key, cfg in traces.items()],
            )
            await conn.commit()

    # Data partitions
    async def has_data(self, profile: str, key: str) -> bool:
        """Whether any message is stored for (profile, key)."""
        async with self._lock:
            conn = await self._data_conn(profile, create=False)
            if conn is None:
                return False
            cursor = await conn.execute(
                """
                SELECT 1 FROM trace_messages
                WHERE profile = ? AND trace_key = ?
                LIMIT 1
                """,
                (profile, key),
            )
            return await cursor.fetchone() is not None

    async def clear_data(self, profile: str, key: str) -> None:
        """Drop all messages and counts of (profile, key)."""
        async with self._lock:
            conn = await self._data_conn(profile, create=False)
            if conn is None:
                return
            await conn.execute(
                "DELETE FROM trace_messages WHERE profile = ? AND trace_key = ?",
                (profile, key),
            )
            await conn.execute(
                "DELETE FROM trace_counts WHERE profile = ? AND trace_key = ?",
                (profile, key),
            )
            await conn.commit()
        logger.info("Cleared trace data %s/%s", profile, key)

    async def append(self, profile: str, key: str, message: Message) -> None:
        """Append a captured message and bump its topic count."""
        async with self._lock:
            conn = await self._data_conn(profile)
            await conn.execute(
                """
                INSERT INTO trace_messages
                (id, profile, trace_key, timestamp, topic, payload, kind, retained)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.id,
                    profile,
                    key,
                    to_db_timestamp(message.timestamp),
                    message.topic,
                    message.payload,
                    message.kind.value,
                    int(message.retained),
                ),
            )
            await conn.execute(
                """
                INSERT INTO trace_counts (profile, trace_key, topic, count)
                VALUES (?, ?, ?, 1)
                ON CONFLICT (profile, trace_key, topic)
                DO UPDATE SET count = count + 1
                """,
                (profile, key, message.topic),
            )
            await conn.commit()

    async def messages(self, profile: str, key: str) -> list[Message]:
        """Captured messages of (profile, key) in insertion order."""
        async with self._lock:
            conn = await self._data_conn(profile, create=False)
            if conn is None:
                return []
            cursor = await conn.execute(
                """
                SELECT id, timestamp, topic, payload, kind, retained
                FROM trace_messages
                WHERE profile = ? AND trace_key = ?
                ORDER BY seq ASC
                """,
                (profile, key),
            )
            rows = await cursor.fetchall()
        return [row_to_message(row) for row in rows]

    async def load_counts(
        self, profile: str, key: str, topics: list[str] | None = None
    ) -> dict[str, int]:
        """
        Persisted per-topic counts of (profile, key).

        Every topic in ``topics`` is present in the result (0 when nothing was
        captured on it); topics captured through wildcard subscriptions are
        included as well.
        """
        counts = {t: 0 for t in topics or []}
        async with self._lock:
            conn = await self._data_conn(profile, create=False)
            if conn is None:
                return counts
            cursor = await conn.execute(
                """
                SELECT topic, count FROM trace_counts
                WHERE profile = ? AND trace_key = ?
                """,
                (profile, key),
            )
            rows = await cursor.fetchall()
        for topic, count in rows:
            counts[topic] = count
        return counts

    async def delete_profile(self, profile: str) -> None:
        """Drop every registered trace and all captured data of a profile.

        The cached partition connection is closed before its files go away;
        later appends recreate the partition.
        """
        async with self._lock:
            registry = await self._registry_conn()
            if self._memory:
                for table in ("trace_messages", "trace_counts"):
                    await registry.execute(
                        f"DELETE FROM {table} WHERE profile = ?", (profile,)
                    )
            else:
                conn = self._data.pop(profile, None)
                if conn is not None:
                    await conn.close()
                try:
                    shutil.rmtree(data_dir(profile, self._home) / "traces")
                except FileNotFoundError:
                    pass
            await registry.execute(
                "DELETE FROM trace_configs WHERE profile = ?", (profile,)
            )
            await registry.commit()
        logger.info("Deleted trace data of profile %s", profile)

    async def close(self) -> None:
        """Release all database connections. Later calls fail."""
        async with self._lock:
            self._closed = True
            for conn in self._data.values():
                await conn.close()
            self._data.clear()
            if self._registry:
                await self._registry.close()
                self._registry = None
