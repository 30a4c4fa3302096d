"""Async SQLite database layer.

Uses aiosqlite for non-blocking access.  The connection is opened by the
application lifespan and handed to whatever needs it; tables are created
on open.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS secrets (
    key         TEXT    PRIMARY KEY,
    value       BLOB    NOT NULL,              -- Fernet-encrypted payload
    updated_at  TEXT    NOT NULL DEFAULT (datetime('now'))
);
"""


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------

async def open_db(path: Path | str) -> aiosqlite.Connection:
    """Open (or create) the SQLite database and ensure schema exists."""
    db = await aiosqlite.connect(str(path))
    db.row_factory = aiosqlite.Row  # type: ignore[assignment]
    await db.executescript(_SCHEMA_SQL)
    await db.commit()
    return db


async def close_db(db: aiosqlite.Connection | None) -> None:
    """Close the database connection."""
    if db is not None:
        await db.close()
