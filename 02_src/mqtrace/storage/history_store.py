"""SQLite history log: active and archived client activity of one profile."""

import asyncio
import shutil
from datetime import datetime
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..config import MEMORY, PathLike, history_db_path, profile_name
from ..errors import StoreClosedError
from ..history.filter import fuzzy_match_topic
from ..logging_config import get_logger
from ..models import Message
from .sqlite import open_database, row_to_message, to_db_timestamp

logger = get_logger(__name__)


class IHistoryStore(Protocol):
    """Append/search log of captured messages, split into active and archived."""

    async def append(self, message: Message) -> None:
        """Add one message to the log."""
        ...

    async def archive(self, ref: str) -> int:
        """Move messages matching an id or topic to the archived partition."""
        ...

    async def delete(self, ref: str) -> int:
        """Permanently remove messages matching an id or topic."""
        ...

    async def count(self, archived: bool) -> int:
        """Count messages in one partition."""
        ...

    async def search(
        self,
        archived: bool,
        topics: list[str] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        payload: str = "",
    ) -> list[Message]:
        """Filtered read of one partition, sorted by timestamp."""
        ...

    async def topics(self) -> list[str]:
        """Distinct topics seen in the log."""
        ...

    async def delete_profile(self) -> None:
        """Remove the whole log of this profile."""
        ...

    async def close(self) -> None:
        """Release the database connection."""
        ...


class HistoryStore:
    """SQLite history log for one profile.

    The database file is only created by the first append; reads before that
    see an empty log.
    """

    def __init__(self, profile: str | None = None, home: PathLike | None = None):
        self._profile = profile_name(profile)
        self._db_path = history_db_path(self._profile, home)
        self._conn: aiosqlite.Connection | None = None
        self._closed = False
        self._lock = asyncio.Lock()

    @property
    def profile(self) -> str:
        return self._profile

    async def _connect(self, create: bool) -> aiosqlite.Connection | None:
        if self._closed:
            raise StoreClosedError("History store is closed")
        if self._conn is None:
            if (
                not create
                and self._db_path != MEMORY
                and not Path(self._db_path).exists()
            ):
                return None
            self._conn = await open_database(self._db_path)
            logger.debug("Opened history store %s", self._db_path)
        return self._conn

    async def append(self, message: Message) -> None:
        """Add one message to the log."""
        async with self._lock:
            conn = await self._connect(create=True)
            await conn.execute(
                """
                INSERT INTO history_messages
                (id, profile, timestamp, topic, payload, kind, retained, archived)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.id,
                    self._profile,
                    to_db_timestamp(message.timestamp),
                    message.topic,
                    message.payload,
                    message.kind.value,
                    int(message.retained),
                    int(message.archived),
                ),
            )
            await conn.commit()

    async def archive(self, ref: str) -> int:
        """Move messages matching an id or topic to the archived partition."""
        async with self._lock:
            conn = await self._connect(create=False)
            if conn is None:
                return 0
            cursor = await conn.execute(
                """
                UPDATE history_messages SET archived = 1
                WHERE profile = ? AND archived = 0 AND (id = ? OR topic = ?)
                """,
                (self._profile, ref, ref),
            )
            await conn.commit()
            return cursor.rowcount

    async def delete(self, ref: str) -> int:
        """Permanently remove messages matching an id or topic."""
        async with self._lock:
            conn = await self._connect(create=False)
            if conn is None:
                return 0
            cursor = await conn.execute(
                """
                DELETE FROM history_messages
                WHERE profile = ? AND (id = ? OR topic = ?)
                """,
                (self._profile, ref, ref),
            )
            await conn.commit()
            return cursor.rowcount

    async def count(self, archived: bool) -> int:
        """Count messages in one partition."""
        async with self._lock:
            conn = await self._connect(create=False)
            if conn is None:
                return 0
            cursor = await conn.execute(
                """
                SELECT COUNT(*) FROM history_messages
                WHERE profile = ? AND archived = ?
                """,
                (self._profile, int(archived)),
            )
            row = await cursor.fetchone()
            return row[0]

    async def search(
        self,
        archived: bool,
        topics: list[str] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        payload: str = "",
    ) -> list[Message]:
        """
        Filtered read of one partition.

        Args:
            archived: Search the archived partition instead of the active one
            topics: Fuzzy topic patterns, OR-ed; empty matches everything
            start: Lower timestamp bound (inclusive), None for unbounded
            end: Upper timestamp bound (inclusive), None for unbounded
            payload: Case-sensitive substring the payload must contain

        Returns:
            Matching messages, stably sorted by timestamp
        """
        conditions = ["profile = ?", "archived = ?"]
        params: list = [self._profile, int(archived)]

        if start is not None:
            conditions.append("timestamp >= ?")
            params.append(to_db_timestamp(start))
        if end is not None:
            conditions.append("timestamp <= ?")
            params.append(to_db_timestamp(end))
        if payload:
            # instr() is case-sensitive, unlike LIKE
            conditions.append("instr(payload, ?) > 0")
            params.append(payload.encode("utf-8"))

        query = f"""
            SELECT id, timestamp, topic, payload, kind, retained, archived
            FROM history_messages
            WHERE {' AND '.join(conditions)}
            ORDER BY timestamp ASC, seq ASC
        """

        async with self._lock:
            conn = await self._connect(create=False)
            if conn is None:
                return []
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()

        return [
            row_to_message(row)
            for row in rows
            if fuzzy_match_topic(row[2], topics)
        ]

    async def topics(self) -> list[str]:
        """Distinct topics seen in the log, sorted."""
        async with self._lock:
            conn = await self._connect(create=False)
            if conn is None:
                return []
            cursor = await conn.execute(
                """
                SELECT DISTINCT topic FROM history_messages
                WHERE profile = ?
                ORDER BY topic
                """,
                (self._profile,),
            )
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def delete_profile(self) -> None:
        """Remove the whole log of this profile.

        The connection is closed before the history directory goes away; the
        next append starts a fresh file.
        """
        async with self._lock:
            if self._closed:
                raise StoreClosedError("History store is closed")
            if self._conn:
                await self._conn.close()
                self._conn = None
            if self._db_path != MEMORY:
                try:
                    shutil.rmtree(Path(self._db_path).parent)
                except FileNotFoundError:
                    pass
        logger.info("Deleted history of profile %s", self._profile)

    async def close(self) -> None:
        """Release the database connection. Later calls fail."""
        async with self._lock:
            self._closed = True
            if self._conn:
                await self._conn.close()
                self._conn = None
