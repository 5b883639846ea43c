"""Dedup store: the append-only, idempotent message log.

:class:`MessageStore` turns :class:`~smsrental.core.models.RawMessage`
values into persisted :class:`~smsrental.core.models.Message` rows.  Every
row carries a content-derived ``dedup_key`` (see
:func:`~smsrental.core.ids.dedup_key`) under a UNIQUE constraint, and inserts
use ``INSERT OR IGNORE``.  Consequences:

* Re-ingesting a message already seen is a no-op, so a sync may be retried
  after a partial failure.
* Running the same sync twice against an unchanged upstream leaves the
  table byte-identical: ignored inserts touch nothing, not even
  ``inserted_at``.
* Concurrent writers converge without locking.

Listeners registered with :meth:`MessageStore.add_listener` are called once
per genuinely new row, after commit.  The realtime notifier uses this as its
change feed.

Typical usage::

    store = MessageStore(conn)
    new = await store.upsert_many(rental.id, raw_messages)
    for message in await store.list(rental.id):
        print(message.received_at, message.sender, message.body)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

import aiosqlite

from smsrental.core import events
from smsrental.core.ids import DEFAULT_BUCKET_SECONDS, dedup_key, new_message_id
from smsrental.core.models import Message, MessageSource, RawMessage
from smsrental.storage.database import from_db_time, to_db_time

__all__ = ["MessageStore", "UpsertResult", "InsertListener"]

logger = logging.getLogger(__name__)

#: Called with each newly inserted message.
InsertListener = Callable[[Message], None]


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of a single :meth:`MessageStore.upsert`.

    Attributes:
        inserted: ``True`` if the message was new.
        message: The message as it would be stored (its ``id`` is only
            meaningful when *inserted* is true).
    """

    inserted: bool
    message: Message


class MessageStore:
    """Data-access object for the ``messages`` table.

    Args:
        conn: Open, configured :class:`aiosqlite.Connection`.
        bucket_seconds: Time-bucket width for dedup keys.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        *,
        bucket_seconds: int = DEFAULT_BUCKET_SECONDS,
    ) -> None:
        self._conn = conn
        self._bucket_seconds = bucket_seconds
        self._listeners: list[InsertListener] = []

    def add_listener(self, listener: InsertListener) -> None:
        """Register *listener* for newly inserted messages."""
        self._listeners.append(listener)

    def remove_listener(self, listener: InsertListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, rental_id: str, raw: RawMessage) -> UpsertResult:
        """Insert *raw* for *rental_id* unless its dedup key is already stored."""
        message = self._to_message(rental_id, raw)
        inserted = await self._insert(message)
        await self._conn.commit()
        if inserted:
            self._announce([message])
        return UpsertResult(inserted=inserted, message=message)

    async def upsert_many(self, rental_id: str, raws: Iterable[RawMessage]) -> int:
        """Insert a batch in one transaction.

        Duplicates within the batch collapse to one row, as do rows already
        stored.

        Returns:
            Number of newly inserted messages.
        """
        new_messages: list[Message] = []
        for raw in raws:
            message = self._to_message(rental_id, raw)
            if await self._insert(message):
                new_messages.append(message)
        await self._conn.commit()

        if new_messages:
            logger.info(
                "Stored %d new message(s) for rental %s",
                len(new_messages),
                rental_id,
                extra={"event": events.MESSAGE_INSERTED, "rental_id": rental_id},
            )
            self._announce(new_messages)
        return len(new_messages)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list(self, rental_id: str) -> list[Message]:
        """Return every message of *rental_id*, oldest ``received_at`` first."""
        cursor = await self._conn.execute(
            """
            SELECT id, rental_id, sender, body, received_at, source, dedup_key
              FROM messages
             WHERE rental_id = ?
             ORDER BY received_at ASC, id ASC
            """,
            (rental_id,),
        )
        return [
            Message(
                id=row["id"],
                rental_id=row["rental_id"],
                sender=row["sender"],
                body=row["body"],
                received_at=from_db_time(row["received_at"]),
                source=MessageSource(row["source"]),
                dedup_key=row["dedup_key"],
            )
            for row in await cursor.fetchall()
        ]

    async def count(self, rental_id: str) -> int:
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM messages WHERE rental_id = ?",
            (rental_id,),
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _to_message(self, rental_id: str, raw: RawMessage) -> Message:
        return Message(
            id=new_message_id(),
            rental_id=rental_id,
            sender=raw.sender,
            body=raw.body,
            received_at=raw.received_at,
            source=raw.source,
            dedup_key=dedup_key(
                rental_id,
                raw.sender,
                raw.body,
                raw.received_at,
                bucket_seconds=self._bucket_seconds,
                exact=raw.timestamp_exact,
            ),
        )

    async def _insert(self, message: Message) -> bool:
        cursor = await self._conn.execute(
            """
            INSERT OR IGNORE INTO messages
                (id, rental_id, sender, body, received_at, source, dedup_key, inserted_at)
            VALUES
                (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.rental_id,
                message.sender,
                message.body,
                to_db_time(message.received_at),
                str(message.source),
                message.dedup_key,
                to_db_time(datetime.now(UTC)),
            ),
        )
        return cursor.rowcount == 1

    def _announce(self, messages: list[Message]) -> None:
        for message in messages:
            for listener in list(self._listeners):
                try:
                    listener(message)
                except Exception:  # noqa: BLE001
                    logger.warning(
                        "Message listener %r failed for rental %s",
                        listener,
                        message.rental_id,
                        exc_info=True,
                    )
