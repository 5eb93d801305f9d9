"""Row helpers shared by the stores."""

import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from novelflow.db.errors import NotFoundError


def generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def now() -> str:
    """Get current timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


async def fetch_one(
    conn: aiosqlite.Connection,
    query: str,
    params: Iterable[Any],
    entity: str,
    entity_id: str | int,
) -> aiosqlite.Row:
    """Fetch exactly one row or raise NotFoundError."""
    cursor = await conn.execute(query, tuple(params))
    row = await cursor.fetchone()
    if row is None:
        raise NotFoundError(entity, entity_id)
    return row


async def fetch_all(
    conn: aiosqlite.Connection, query: str, params: Iterable[Any] = ()
) -> list[aiosqlite.Row]:
    cursor = await conn.execute(query, tuple(params))
    return list(await cursor.fetchall())


async def update_row(
    conn: aiosqlite.Connection,
    table: str,
    entity: str,
    row_id: str,
    values: dict[str, Any],
    touch: bool = True,
) -> None:
    """Apply a partial update to one row.

    Args:
        values: Column -> new value; only these columns change
        touch: Also set ``updated_at`` to now

    Raises:
        NotFoundError: If no row has this id
    """
    values = dict(values)
    if touch:
        values["updated_at"] = now()

    if not values:
        await fetch_one(conn, f"SELECT 1 FROM {table} WHERE id = ?", (row_id,), entity, row_id)
        return

    assignments = ", ".join(f"{column} = ?" for column in values)
    cursor = await conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id = ?",
        (*values.values(), row_id),
    )
    if cursor.rowcount == 0:
        raise NotFoundError(entity, row_id)


async def delete_row(
    conn: aiosqlite.Connection, table: str, entity: str, row_id: str
) -> None:
    """Delete one row; foreign keys cascade to its children.

    Raises:
        NotFoundError: If no row has this id
    """
    cursor = await conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
    if cursor.rowcount == 0:
        raise NotFoundError(entity, row_id)
