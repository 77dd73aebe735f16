"""Shared SQLite helpers for the capture stores."""

from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from ..config import PathLike, resolve_db_path
from ..models import Message, MessageKind

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


async def open_database(path: PathLike) -> aiosqlite.Connection:
    """Open a database file (creating its directory) and apply the schema."""
    conn = await aiosqlite.connect(resolve_db_path(path))

    with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
        schema_sql = f.read()
    await conn.executescript(schema_sql)
    await conn.commit()
    return conn


def to_db_timestamp(ts: datetime) -> str:
    """Normalise to a sortable UTC ISO string with fixed precision."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def row_to_message(row, archived: bool = False) -> Message:
    """Build a Message from (id, timestamp, topic, payload, kind, retained[, archived])."""
    if len(row) > 6:
        archived = bool(row[6])
    return Message(
        id=row[0],
        timestamp=from_db_timestamp(row[1]),
        topic=row[2],
        payload=bytes(row[3]),
        kind=MessageKind(row[4]),
        retained=bool(row[5]),
        archived=archived,
    )
