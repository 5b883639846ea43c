"""Rental registry: canonical lease records.

Provides :class:`RentalRepository`, the single data-access object for the
``rentals`` and ``rental_native_ids`` tables.  Canonical status lives here
and nowhere else; what a provider currently reports about a lease never
overwrites it.

State machine
-------------
``active`` → ``expired`` (time-triggered, :meth:`RentalRepository.expire_due`)
``active`` → ``cancelled`` (explicit, :meth:`RentalRepository.update_status`)
``active`` → ``active`` (expiry mutation only, :meth:`RentalRepository.extend_expiry`)

``expired`` and ``cancelled`` are terminal.  Leaving them raises
:class:`~smsrental.core.exceptions.AlreadyTerminalError`; re-applying the
same terminal status is a no-op.  Status updates are guarded in SQL
(``WHERE status = 'active'``) so two writers cannot both win a transition.

Typical usage::

    repo = RentalRepository(conn)
    rental = await repo.create_rental(rental)
    rental = await repo.extend_expiry(rental.id, rental.expires_at + timedelta(hours=4))
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Final

import aiosqlite

from smsrental.core import events
from smsrental.core.exceptions import (
    AlreadyTerminalError,
    DuplicateAssignmentError,
    RentalNotFoundError,
    StorageError,
)
from smsrental.core.models import (
    ProviderKind,
    Rental,
    RentalStatus,
)
from smsrental.storage.database import from_db_time, to_db_time

__all__ = ["RentalRepository", "REGISTERED_PROVIDERS"]

logger = logging.getLogger(__name__)

#: Providers whose numbers are registered by an operator rather than rented.
#: Registration is idempotent on their native ids.
REGISTERED_PROVIDERS: Final[frozenset[ProviderKind]] = frozenset(
    {ProviderKind.MANUAL, ProviderKind.RECEIVE_SMS_ONLINE}
)

_COLUMN_NAMES: Final[tuple[str, ...]] = (
    "id",
    "phone_number",
    "provider",
    "native_ids_json",
    "service_code",
    "country_code",
    "status",
    "leased_at",
    "expires_at",
    "assignee",
    "credentials_json",
)
_COLUMNS: Final[str] = ", ".join(_COLUMN_NAMES)
_JOINED_COLUMNS: Final[str] = ", ".join(f"r.{c} AS {c}" for c in _COLUMN_NAMES)


def _row_to_rental(row: aiosqlite.Row) -> Rental:
    return Rental(
        id=row["id"],
        phone_number=row["phone_number"],
        provider=ProviderKind(row["provider"]),
        provider_native_ids=json.loads(row["native_ids_json"] or "{}"),
        service_code=row["service_code"],
        country_code=row["country_code"],
        status=RentalStatus(row["status"]),
        leased_at=from_db_time(row["leased_at"]),
        expires_at=from_db_time(row["expires_at"]),
        assignee=row["assignee"],
        access_credentials=json.loads(row["credentials_json"] or "{}"),
    )


class RentalRepository:
    """Data-access object for canonical rentals.

    Owns no connection lifecycle; the caller supplies an open
    :class:`aiosqlite.Connection` (see
    :func:`~smsrental.storage.database.open_db`).  The connection must use
    ``row_factory = aiosqlite.Row``.

    Args:
        conn: Open, configured connection.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find(self, rental_id: str) -> Rental | None:
        """Return the rental with *rental_id*, or ``None``."""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM rentals WHERE id = ?",
            (rental_id,),
        )
        row = await cursor.fetchone()
        return _row_to_rental(row) if row is not None else None

    async def get(self, rental_id: str) -> Rental:
        """Return the rental with *rental_id*.

        Raises:
            RentalNotFoundError: No such rental.
        """
        rental = await self.find(rental_id)
        if rental is None:
            raise RentalNotFoundError(rental_id)
        return rental

    async def list(
        self,
        *,
        status: RentalStatus | None = None,
        assignee: str | None = None,
        provider: ProviderKind | None = None,
    ) -> list[Rental]:
        """Return rentals, newest lease first, optionally filtered."""
        clauses: list[str] = []
        params: list[str] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(str(status))
        if assignee is not None:
            clauses.append("assignee = ?")
            params.append(assignee)
        if provider is not None:
            clauses.append("provider = ?")
            params.append(str(provider))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM rentals{where} ORDER BY leased_at DESC, id",
            params,
        )
        return [_row_to_rental(row) for row in await cursor.fetchall()]

    async def find_by_native_id(self, provider: ProviderKind, value: str) -> list[Rental]:
        """Return rentals of *provider* that carry *value* under any id role."""
        cursor = await self._conn.execute(
            f"""
            SELECT {_JOINED_COLUMNS}
            FROM rentals r
            JOIN rental_native_ids n ON n.rental_id = r.id
            WHERE n.provider = ? AND n.value = ?
            ORDER BY r.leased_at DESC
            """,
            (str(provider), value),
        )
        seen: dict[str, Rental] = {}
        for row in await cursor.fetchall():
            seen.setdefault(row["id"], _row_to_rental(row))
        return list(seen.values())

    async def find_by_phone(self, provider: ProviderKind, phone_number: str) -> list[Rental]:
        """Return rentals of *provider* leasing *phone_number*, newest first."""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM rentals WHERE provider = ? AND phone_number = ? ORDER BY leased_at DESC, id",
            (str(provider), phone_number),
        )
        return [_row_to_rental(row) for row in await cursor.fetchall()]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_rental(self, rental: Rental) -> Rental:
        """Persist a freshly leased or registered rental.

        For operator-registered providers (:data:`REGISTERED_PROVIDERS`) the
        call is idempotent: if a non-terminal rental of the same provider
        already carries any of the new rental's native ids, that rental is
        returned unchanged and nothing is written.

        Returns:
            The stored rental (the existing one on an idempotent hit).

        Raises:
            StorageError: The id already exists.
        """
        if rental.provider in REGISTERED_PROVIDERS:
            for value in rental.provider_native_ids.values():
                for existing in await self.find_by_native_id(rental.provider, value):
                    if not existing.is_terminal:
                        logger.info(
                            "Rental %s already registered for %s; returning it",
                            existing.id,
                            rental.phone_number,
                        )
                        return existing

        now = to_db_time(datetime.now(UTC))
        try:
            await self._conn.execute(
                f"""
                INSERT INTO rentals ({_COLUMNS}, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rental.id,
                    rental.phone_number,
                    str(rental.provider),
                    json.dumps(rental.provider_native_ids, sort_keys=True),
                    rental.service_code,
                    rental.country_code,
                    str(rental.status),
                    to_db_time(rental.leased_at),
                    to_db_time(rental.expires_at),
                    rental.assignee,
                    json.dumps(rental.access_credentials, sort_keys=True),
                    now,
                ),
            )
            await self._conn.executemany(
                "INSERT INTO rental_native_ids (rental_id, provider, role, value) VALUES (?, ?, ?, ?)",
                [
                    (rental.id, str(rental.provider), role, value)
                    for role, value in rental.provider_native_ids.items()
                ],
            )
        except aiosqlite.IntegrityError as exc:
            await self._conn.rollback()
            raise StorageError(f"Could not insert rental {rental.id!r}: {exc}") from exc
        await self._conn.commit()

        logger.info(
            "Rental %s created (%s %s, native ids %s, expires %s)",
            rental.id,
            rental.provider,
            rental.phone_number,
            rental.provider_native_ids,
            rental.expires_at.isoformat(),
            extra={"event": events.RENTAL_CREATED, "rental_id": rental.id},
        )
        return rental

    async def update_status(self, rental_id: str, status: RentalStatus) -> Rental:
        """Move *rental_id* to *status*.

        Raises:
            RentalNotFoundError: No such rental.
            AlreadyTerminalError: The rental is terminal and *status* differs.
        """
        current = await self.get(rental_id)
        if current.status == status:
            return current
        if current.is_terminal:
            raise AlreadyTerminalError(rental_id, str(current.status), f"mark {status}")

        cursor = await self._conn.execute(
            "UPDATE rentals SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (str(status), to_db_time(datetime.now(UTC)), rental_id, str(RentalStatus.ACTIVE)),
        )
        await self._conn.commit()
        if cursor.rowcount == 0:
            # Lost a race with another writer; report what won.
            latest = await self.get(rental_id)
            if latest.status == status:
                return latest
            raise AlreadyTerminalError(rental_id, str(latest.status), f"mark {status}")

        event = events.RENTAL_CANCELLED if status is RentalStatus.CANCELLED else events.RENTAL_EXPIRED
        logger.info(
            "Rental %s: %s -> %s",
            rental_id,
            current.status,
            status,
            extra={"event": event, "rental_id": rental_id},
        )
        return current.model_copy(update={"status": status})

    async def extend_expiry(self, rental_id: str, new_expiry: datetime) -> Rental:
        """Set the expiry of an active rental, never moving it backward.

        Raises:
            RentalNotFoundError: No such rental.
            AlreadyTerminalError: The rental is expired or cancelled.
        """
        current = await self.get(rental_id)
        if current.is_terminal:
            raise AlreadyTerminalError(rental_id, str(current.status), "extend")

        candidate = new_expiry if new_expiry.tzinfo else new_expiry.replace(tzinfo=UTC)
        expires_at = max(current.expires_at, candidate)
        # Text comparison is safe: both sides use the fixed-width encoding.
        cursor = await self._conn.execute(
            """
            UPDATE rentals
               SET expires_at = MAX(expires_at, ?), updated_at = ?
             WHERE id = ? AND status = ?
            """,
            (to_db_time(expires_at), to_db_time(datetime.now(UTC)), rental_id, str(RentalStatus.ACTIVE)),
        )
        await self._conn.commit()
        if cursor.rowcount == 0:
            latest = await self.get(rental_id)
            raise AlreadyTerminalError(rental_id, str(latest.status), "extend")

        logger.info(
            "Rental %s expiry %s -> %s",
            rental_id,
            current.expires_at.isoformat(),
            expires_at.isoformat(),
            extra={"event": events.RENTAL_EXTENDED, "rental_id": rental_id},
        )
        return await self.get(rental_id)

    async def assign(self, rental_id: str, assignee: str, *, force: bool = False) -> Rental:
        """Attach *assignee* to a rental.

        Re-assigning to the current assignee is a no-op.

        Raises:
            RentalNotFoundError: No such rental.
            AlreadyTerminalError: The rental is expired or cancelled.
            DuplicateAssignmentError: A different assignee is set and
                *force* is false.
        """
        current = await self.get(rental_id)
        if current.assignee == assignee:
            return current
        if current.is_terminal:
            raise AlreadyTerminalError(rental_id, str(current.status), "assign")
        if current.assignee is not None and not force:
            raise DuplicateAssignmentError(rental_id, current.assignee)

        await self._conn.execute(
            "UPDATE rentals SET assignee = ?, updated_at = ? WHERE id = ?",
            (assignee, to_db_time(datetime.now(UTC)), rental_id),
        )
        await self._conn.commit()
        logger.info(
            "Rental %s assigned to %s%s",
            rental_id,
            assignee,
            f" (was {current.assignee})" if current.assignee else "",
            extra={"event": events.RENTAL_ASSIGNED, "rental_id": rental_id},
        )
        return current.model_copy(update={"assignee": assignee})

    async def expire_due(self, now: datetime | None = None) -> list[Rental]:
        """Mark every active rental whose expiry has passed as ``expired``.

        Returns:
            The rentals that were expired by this call.
        """
        moment = now or datetime.now(UTC)
        due = [r for r in await self.list(status=RentalStatus.ACTIVE) if r.is_due(moment)]
        expired: list[Rental] = []
        for rental in due:
            try:
                expired.append(await self.update_status(rental.id, RentalStatus.EXPIRED))
            except AlreadyTerminalError:
                logger.debug("Rental %s reached a terminal status concurrently", rental.id)
        if expired:
            logger.info("Expired %d rental(s)", len(expired))
        return expired

    async def delete_manual(self, rental_id: str) -> bool:
        """Hard-delete an operator-registered rental and its messages.

        Returns:
            ``True`` if a row was deleted, ``False`` if it did not exist.

        Raises:
            ValueError: The rental was rented from a provider; such rentals
                are never hard-deleted.
        """
        rental = await self.find(rental_id)
        if rental is None:
            return False
        if rental.provider not in REGISTERED_PROVIDERS:
            raise ValueError(f"Rental {rental_id!r} is a {rental.provider} rental and cannot be deleted")

        await self._conn.execute("DELETE FROM messages WHERE rental_id = ?", (rental_id,))
        await self._conn.execute("DELETE FROM rental_native_ids WHERE rental_id = ?", (rental_id,))
        await self._conn.execute("DELETE FROM rentals WHERE id = ?", (rental_id,))
        await self._conn.commit()
        logger.info(
            "Manual rental %s (%s) deleted",
            rental_id,
            rental.phone_number,
            extra={"event": events.RENTAL_DELETED, "rental_id": rental_id},
        )
        return True
