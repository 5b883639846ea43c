"""SQLite database initialisation for smsrental.

This module is responsible for:

* Opening (or creating) the SQLite file.
* Configuring PRAGMA settings (WAL journal mode, foreign keys).
* Bootstrapping the schema via ``CREATE TABLE IF NOT EXISTS``, safe to run
  on every startup.

Call :func:`open_db` once at startup and share the connection with
:class:`~smsrental.storage.rentals.RentalRepository` and
:class:`~smsrental.storage.messages.MessageStore`.  The caller closes it.

Typical usage::

    from smsrental.storage.database import open_db

    conn = await open_db(settings.database_path_resolved)
    ...
    await conn.close()
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "to_db_time",
    "from_db_time",
]

logger = logging.getLogger(__name__)

#: Fallback database path when no explicit path is passed to :func:`open_db`.
DEFAULT_DB_PATH: Path = Path("smsrental.db")

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: Canonical lease records.
#:
#: native_ids_json   JSON object role → provider id (``{"order_id": ..}``).
#: credentials_json  JSON object of opaque provider secrets.
#: *_at              ISO-8601 UTC with microseconds, so text order is time order.
_DDL_RENTALS = """\
CREATE TABLE IF NOT EXISTS rentals (
    id               TEXT NOT NULL PRIMARY KEY,
    phone_number     TEXT NOT NULL,
    provider         TEXT NOT NULL,
    native_ids_json  TEXT NOT NULL DEFAULT '{}',
    service_code     TEXT NOT NULL DEFAULT '',
    country_code     TEXT NOT NULL DEFAULT '',
    status           TEXT NOT NULL,
    leased_at        TEXT NOT NULL,
    expires_at       TEXT NOT NULL,
    assignee         TEXT,
    credentials_json TEXT NOT NULL DEFAULT '{}',
    updated_at       TEXT NOT NULL
)"""

#: One row per provider-issued identifier, for lookups by native id.
_DDL_NATIVE_IDS = """\
CREATE TABLE IF NOT EXISTS rental_native_ids (
    rental_id TEXT NOT NULL REFERENCES rentals(id) ON DELETE CASCADE,
    provider  TEXT NOT NULL,
    role      TEXT NOT NULL,
    value     TEXT NOT NULL,
    PRIMARY KEY (rental_id, role)
)"""

#: Append-only message log.  ``dedup_key`` UNIQUE makes re-ingestion a no-op.
_DDL_MESSAGES = """\
CREATE TABLE IF NOT EXISTS messages (
    id          TEXT NOT NULL PRIMARY KEY,
    rental_id   TEXT NOT NULL REFERENCES rentals(id) ON DELETE CASCADE,
    sender      TEXT NOT NULL,
    body        TEXT NOT NULL,
    received_at TEXT NOT NULL,
    source      TEXT NOT NULL,
    dedup_key   TEXT NOT NULL UNIQUE,
    inserted_at TEXT NOT NULL
)"""

_DDL_INDEXES: tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS ix_rentals_status ON rentals (status, expires_at)",
    "CREATE INDEX IF NOT EXISTS ix_rentals_phone ON rentals (provider, phone_number)",
    "CREATE INDEX IF NOT EXISTS ix_native_ids_value ON rental_native_ids (provider, value)",
    "CREATE INDEX IF NOT EXISTS ix_messages_rental ON messages (rental_id, received_at)",
)

# ---------------------------------------------------------------------------
# Time encoding
# ---------------------------------------------------------------------------


def to_db_time(value: datetime) -> str:
    """Encode a datetime as fixed-width ISO-8601 UTC text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime:
    """Decode a value written by :func:`to_db_time`."""
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def open_db(path: Path | str | None = None) -> aiosqlite.Connection:
    """Open (or create) the SQLite database and configure it.

    1. Create parent directories for the DB file if needed.
    2. Open the connection with ``row_factory = aiosqlite.Row``.
    3. Enable WAL and foreign keys.
    4. Bootstrap the schema (idempotent).

    Args:
        path: Filesystem path for the SQLite file.  Defaults to
            :data:`DEFAULT_DB_PATH`.

    Returns:
        An open :class:`aiosqlite.Connection`; the caller closes it.

    Raises:
        aiosqlite.OperationalError: If the file cannot be opened or created.
    """
    db_path = Path(path or DEFAULT_DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", db_path)

    conn: aiosqlite.Connection = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    await _configure_pragmas(conn)
    await create_schema(conn)

    logger.info("SQLite database ready at %s", db_path)
    return conn


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create all tables and indexes if they do not exist.  Non-destructive."""
    for ddl in (_DDL_RENTALS, _DDL_NATIVE_IDS, _DDL_MESSAGES, *_DDL_INDEXES):
        await conn.execute(ddl)
    await conn.commit()
    logger.debug("Schema bootstrap complete (rentals, rental_native_ids, messages)")


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    """Enable WAL (concurrent readers, single writer) and FK enforcement."""
    result = await conn.execute("PRAGMA journal_mode=WAL")
    row = await result.fetchone()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.warning("Requested WAL journal mode but SQLite reported %r", mode)

    await conn.execute("PRAGMA foreign_keys=ON")
