"""Rental service facade: the operations the HTTP surface exposes.

:class:`RentalService` composes the provider adapters, the rental registry,
the message dedup store, the sync orchestrator, the read cache and the
realtime notifier.  It owns the lifecycle rules that span those components:

* **Canonical status wins.**  Expiry is time-triggered: any rental whose
  lease time has passed is marked ``expired`` the moment it is read, before
  any operation is applied to it.
* **Best-effort provider mutations.**  Extending or cancelling never fails
  because the provider disagrees; the canonical change is applied and the
  provider's complaint is returned as a warning.
* **Read-through caching.**  :meth:`RentalService.status` and
  :meth:`RentalService.list_rentals` read through the
  :class:`~smsrental.cache.CacheController`; every mutation invalidates the
  affected keys, and every newly stored message invalidates its rental's
  message snapshot.

Typical usage::

    service = await RentalService.open(settings)
    try:
        rental = await service.rent(RentalSpec(provider="sms_activate", service="wa",
                                               country="DE", duration_hours=24))
        result = await service.sync(rental.id)
    finally:
        await service.close()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import aiosqlite

from smsrental.cache.controller import CacheController
from smsrental.core.exceptions import (
    AlreadyTerminalError,
    ConfigError,
    ProviderRejectedError,
    RentalNotFoundError,
)
from smsrental.core.ids import new_rental_id
from smsrental.core.models import (
    Message,
    MessageSource,
    ProviderKind,
    RawMessage,
    Rental,
    RentalSpec,
    RentalStatus,
    ServiceCatalog,
)
from smsrental.core.settings import Settings
from smsrental.notifiers.realtime import RealtimeNotifier
from smsrental.orchestrator.backoff import SyncBackoffRegistry
from smsrental.orchestrator.sync import SyncOrchestrator, SyncResult, SyncTrigger
from smsrental.providers.base import BaseProvider, LeaseUpdate
from smsrental.providers.factory import build_providers, close_providers
from smsrental.providers.normalizers import normalise_phone
from smsrental.providers.scrape.receive_sms_online import validate_inbox_url
from smsrental.storage.database import open_db
from smsrental.storage.messages import MessageStore, UpsertResult
from smsrental.storage.rentals import REGISTERED_PROVIDERS, RentalRepository

__all__ = ["RentalService", "RentalStatusView"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RentalStatusView:
    """A rental with its messages, as shown to a reader.

    Attributes:
        rental: Canonical rental.
        messages: Messages in ``received_at`` order.
        unseen_count: Changes notified since the list was last viewed
            (always 0 after this view, which marks it viewed).
        stale: ``True`` when either snapshot is older than the cache TTL.
        error: Text of a failed reload whose previous snapshot is shown.
    """

    rental: Rental
    messages: list[Message] = field(default_factory=list)
    unseen_count: int = 0
    stale: bool = False
    error: str | None = None


def _rental_key(rental_id: str) -> str:
    return f"rental:{rental_id}"


def _messages_key(rental_id: str) -> str:
    return f"messages:{rental_id}"


_LIST_PREFIX = "rentals:"


class RentalService:
    """Facade over every rental operation.

    Args:
        settings: Application settings.
        repo: Rental registry.
        store: Message dedup store.
        providers: Adapters keyed by kind.
        orchestrator: Sync orchestrator; built from *settings* when omitted.
        cache: Read cache; built from *settings* when omitted.
        notifier: Realtime notifier; built from *settings* when omitted.
        conn: Database connection to close in :meth:`close`, if any.
    """

    def __init__(
        self,
        settings: Settings,
        repo: RentalRepository,
        store: MessageStore,
        providers: Mapping[ProviderKind, BaseProvider],
        *,
        orchestrator: SyncOrchestrator | None = None,
        cache: CacheController | None = None,
        notifier: RealtimeNotifier | None = None,
        conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._settings = settings
        self._repo = repo
        self._store = store
        self._providers = providers
        self._orchestrator = orchestrator or SyncOrchestrator(
            repo,
            store,
            providers,
            timeout=settings.sync_timeout_s,
            max_attempts=settings.sync_max_attempts,
            backoff=SyncBackoffRegistry(
                failure_threshold=settings.sync_failure_threshold,
                max_delay=settings.sync_failure_backoff_max_s,
                min_gap=settings.sync_min_gap_s,
            ),
        )
        self._cache = cache or CacheController(
            ttl=settings.cache_ttl_s,
            cooling_period=settings.cache_cooling_s,
        )
        self._notifier = notifier or RealtimeNotifier(
            refresh_fn=self._refresh_after_reconnect,
            hidden_threshold=settings.hidden_reconnect_threshold_s,
        )
        self._store.add_listener(self._on_message_stored)
        self._conn = conn
        self._owns_providers = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    async def open(cls, settings: Settings) -> RentalService:
        """Open the database and providers and return an owning service.

        Raises:
            ConfigError: If a provider cannot be configured.
        """
        conn = await open_db(settings.database_path_resolved)
        try:
            providers = build_providers(settings)
        except ConfigError:
            await conn.close()
            raise
        service = cls(settings, RentalRepository(conn), MessageStore(conn), providers, conn=conn)
        service._owns_providers = True
        return service

    async def close(self) -> None:
        """Finish in-flight syncs, then release what :meth:`open` acquired."""
        await self._orchestrator.drain()
        await self._notifier.close()
        if self._owns_providers:
            await close_providers(dict(self._providers))
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def repo(self) -> RentalRepository:
        return self._repo

    @property
    def orchestrator(self) -> SyncOrchestrator:
        return self._orchestrator

    @property
    def notifier(self) -> RealtimeNotifier:
        return self._notifier

    @property
    def cache(self) -> CacheController:
        return self._cache

    @property
    def enabled_providers(self) -> list[ProviderKind]:
        return list(self._providers)

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    async def rent(self, spec: RentalSpec) -> Rental:
        """Lease a new number and record it.  Not idempotent.

        Raises:
            ConfigError: The provider is not enabled.
            ProviderError: Any subclass, from the provider's rent call.
        """
        adapter = self._adapter(spec.provider)
        rental = await adapter.rent(spec)
        try:
            stored = await self._repo.create_rental(rental)
        except Exception:
            logger.error(
                "Leased %s from %s (native ids %s) but could not record it",
                rental.phone_number,
                rental.provider,
                rental.provider_native_ids,
            )
            raise
        self._cache.invalidate_prefix(_LIST_PREFIX)
        await self._notifier.subscribe(stored.id)
        return stored

    async def extend(self, rental_id: str, hours: int) -> LeaseUpdate:
        """Extend an active rental by *hours*.

        The provider is asked first; if it refuses, the expiry still moves
        and the refusal comes back as :attr:`LeaseUpdate.warning`.

        Raises:
            RentalNotFoundError: No such rental.
            AlreadyTerminalError: The rental is expired or cancelled.
        """
        if hours < 1:
            raise ValueError("hours must be >= 1")
        rental = await self._current(rental_id)
        if rental.is_terminal:
            raise AlreadyTerminalError(rental_id, str(rental.status), "extend")

        adapter = self._providers.get(rental.provider)
        if adapter is None:
            update = LeaseUpdate(
                rental=rental.model_copy(update={"expires_at": rental.expires_at + timedelta(hours=hours)}),
                warning=f"Provider {rental.provider} is not enabled; extended locally only",
            )
        else:
            update = await adapter.extend(rental, hours)

        stored = await self._repo.extend_expiry(rental_id, update.rental.expires_at)
        self._invalidate(rental_id)
        return LeaseUpdate(rental=stored, warning=update.warning)

    async def cancel(self, rental_id: str) -> LeaseUpdate:
        """Cancel a rental.

        Cancelling a cancelled rental is a no-op.  An expired rental stays
        expired.

        Raises:
            RentalNotFoundError: No such rental.
            AlreadyTerminalError: The rental is expired.
        """
        rental = await self._current(rental_id)
        if rental.status is RentalStatus.CANCELLED:
            return LeaseUpdate(rental=rental)
        if rental.is_terminal:
            raise AlreadyTerminalError(rental_id, str(rental.status), "cancel")

        adapter = self._providers.get(rental.provider)
        warning: str | None = None
        if adapter is None:
            warning = f"Provider {rental.provider} is not enabled; cancelled locally only"
        else:
            warning = (await adapter.cancel(rental)).warning

        stored = await self._repo.update_status(rental_id, RentalStatus.CANCELLED)
        self._invalidate(rental_id)
        return LeaseUpdate(rental=stored, warning=warning)

    async def remove(self, rental_id: str) -> LeaseUpdate | None:
        """``DELETE`` semantics: hard-delete registered numbers, cancel the rest.

        Returns:
            ``None`` when a registered number was deleted, else the
            cancellation outcome.
        """
        rental = await self._repo.get(rental_id)
        if rental.provider in REGISTERED_PROVIDERS:
            await self.delete_manual(rental_id)
            return None
        return await self.cancel(rental_id)

    async def assign(self, rental_id: str, assignee: str, *, force: bool = False) -> Rental:
        """Attach *assignee* to a rental.

        Raises:
            DuplicateAssignmentError: Someone else is assigned and *force*
                is false.
        """
        await self._current(rental_id)
        stored = await self._repo.assign(rental_id, assignee, force=force)
        self._invalidate(rental_id)
        return stored

    # ------------------------------------------------------------------
    # Registered numbers
    # ------------------------------------------------------------------

    async def register_manual(
        self,
        phone_number: str,
        *,
        service: str = "",
        country: str = "",
        access_url: str | None = None,
        hours: int | None = None,
    ) -> Rental:
        """Register a number obtained outside any rental API.

        With *access_url* the number is a receive-sms-online inbox and its
        messages are scraped; without it the number is manual and messages
        only arrive through :meth:`inject_test_message`.  Registering the
        same number (or inbox) again returns the existing active rental.

        Raises:
            ProviderRejectedError: Invalid phone number or inbox URL.
        """
        phone = normalise_phone(phone_number)
        if len(phone) < 5:
            raise ProviderRejectedError(
                str(ProviderKind.MANUAL),
                f"INVALID_PHONE: {phone_number!r}",
                hint="Give the number in international format, e.g. +4915123456789.",
            )

        credentials: dict[str, str] = {}
        if access_url:
            url = validate_inbox_url(access_url)
            provider = ProviderKind.RECEIVE_SMS_ONLINE
            native_ids = {"inbox_key": parse_qs(urlparse(url).query)["key"][0]}
            credentials["url"] = url
        else:
            provider = ProviderKind.MANUAL
            native_ids = {"phone": phone}

        now = datetime.now(UTC)
        rental = Rental(
            id=new_rental_id(),
            phone_number=phone,
            provider=provider,
            provider_native_ids=native_ids,
            service_code=service.strip(),
            country_code=country.strip().upper(),
            status=RentalStatus.ACTIVE,
            leased_at=now,
            expires_at=now + timedelta(hours=hours or self._settings.default_rent_hours),
            access_credentials=credentials,
        )
        stored = await self._repo.create_rental(rental)
        self._cache.invalidate_prefix(_LIST_PREFIX)
        await self._notifier.subscribe(stored.id)
        return stored

    async def delete_manual(self, rental_id: str) -> None:
        """Hard-delete a registered number and its messages.

        Raises:
            RentalNotFoundError: No such rental.
            ProviderRejectedError: The rental came from a rental provider.
        """
        rental = await self._repo.get(rental_id)
        if rental.provider not in REGISTERED_PROVIDERS:
            raise ProviderRejectedError(
                str(rental.provider),
                "DELETE_UNSUPPORTED",
                hint="Rented numbers are cancelled, not deleted.",
            )
        await self._repo.delete_manual(rental_id)
        await self._notifier.unsubscribe(rental_id)
        self._orchestrator.backoff.forget(rental_id)
        self._invalidate(rental_id)

    async def inject_test_message(
        self,
        rental_id: str,
        sender: str,
        body: str,
        received_at: datetime | None = None,
    ) -> UpsertResult:
        """Store a message by hand (source ``manual_test``).

        Raises:
            RentalNotFoundError: No such rental.
        """
        await self._repo.get(rental_id)
        raw = RawMessage(
            sender=sender,
            body=body,
            received_at=received_at or datetime.now(UTC),
            source=MessageSource.MANUAL_TEST,
        )
        return await self._store.upsert(rental_id, raw)

    async def ingest_pushed_message(
        self,
        provider: ProviderKind,
        raw: RawMessage,
        *,
        native_id: str = "",
        phone_number: str = "",
    ) -> UpsertResult | None:
        """Store a message a provider pushed to us instead of being polled.

        The rental is matched by provider-issued id first, then by phone
        number; an active match wins over terminal ones.  The message goes
        through the same dedup store as polled ones, so a push and a poll
        reporting the same message and time store it once.

        Returns:
            The upsert outcome, or ``None`` when no rental matches.
        """
        candidates = await self._repo.find_by_native_id(provider, native_id) if native_id else []
        if not candidates and phone_number:
            candidates = await self._repo.find_by_phone(provider, normalise_phone(phone_number))
        if not candidates:
            logger.info("%s push for unknown number %s (id %s) ignored", provider, phone_number, native_id)
            return None
        rental = next((r for r in candidates if r.status is RentalStatus.ACTIVE), candidates[0])
        return await self._store.upsert(rental.id, raw)

    # ------------------------------------------------------------------
    # Reads and sync
    # ------------------------------------------------------------------

    async def sync(self, rental_id: str, trigger: SyncTrigger = SyncTrigger.USER_REFRESH) -> SyncResult:
        """Sync one rental's messages; see :class:`SyncOrchestrator`."""
        return await self._orchestrator.sync(rental_id, trigger)

    async def status(self, rental_id: str, *, refresh: bool = False) -> RentalStatusView:
        """Return the rental and its messages, and mark them viewed.

        Args:
            rental_id: Rental to show.
            refresh: Opening a view: sync with the provider first and bypass
                the cache.

        Raises:
            RentalNotFoundError: No such rental.
        """
        if refresh:
            await self.sync(rental_id, SyncTrigger.VIEW_OPEN)

        rental_result = await self._cache.get(
            _rental_key(rental_id),
            lambda: self._current(rental_id),
            force=refresh,
        )
        cached = rental_result.value
        if cached is not None and cached.is_due(datetime.now(UTC)):
            # Expiry passed while the snapshot sat in the cache.
            rental_result = await self._cache.get(
                _rental_key(rental_id),
                lambda: self._current(rental_id),
                force=True,
            )
        if rental_result.value is None:
            raise rental_result.error or RentalNotFoundError(rental_id)

        messages_result = await self._cache.get(
            _messages_key(rental_id),
            lambda: self._store.list(rental_id),
            force=refresh,
        )

        await self._notifier.subscribe(rental_id)
        self._notifier.mark_viewed(rental_id)

        error = rental_result.error or messages_result.error
        return RentalStatusView(
            rental=rental_result.value,
            messages=list(messages_result.value or []),
            unseen_count=self._notifier.unseen_count(rental_id),
            stale=rental_result.stale or messages_result.stale,
            error=str(error) if error is not None else None,
        )

    async def list_rentals(
        self,
        *,
        status: RentalStatus | None = None,
        assignee: str | None = None,
        force: bool = False,
    ) -> list[Rental]:
        """Return rentals (newest first), after expiring due ones."""

        async def load() -> list[Rental]:
            await self._repo.expire_due()
            return await self._repo.list(status=status, assignee=assignee)

        result = await self._cache.get(f"{_LIST_PREFIX}{status}:{assignee}", load, force=force)
        if result.value is None:
            raise result.error or RuntimeError("rental list unavailable")
        return list(result.value)

    async def catalog(
        self,
        kind: ProviderKind,
        *,
        country: str | None = None,
        hours: int | None = None,
        force: bool = False,
    ) -> ServiceCatalog:
        """Return what *kind* can rent, read through the cache.

        Raises:
            ConfigError: *kind* is not enabled.
            ProviderError: The catalog could not be loaded and none is cached.
        """
        adapter = self._adapter(kind)
        country = country.upper() if country else None
        result = await self._cache.get(
            f"catalog:{kind}:{country}:{hours}",
            lambda: adapter.catalog(country=country, hours=hours),
            force=force,
        )
        if result.value is None:
            raise result.error or RuntimeError(f"{kind} catalog unavailable")
        return result.value

    def client_hidden(self) -> None:
        """The reader's view went to the background."""
        self._notifier.on_hidden()

    async def client_visible(self) -> bool:
        """The reader's view is back; ``True`` when subscriptions were rebuilt."""
        return await self._notifier.on_visible()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _adapter(self, kind: ProviderKind) -> BaseProvider:
        adapter = self._providers.get(kind)
        if adapter is None:
            raise ConfigError(f"Provider {kind} is not enabled; set its API key")
        return adapter

    async def _current(self, rental_id: str) -> Rental:
        """Read a rental, applying time-triggered expiry first."""
        rental = await self._repo.get(rental_id)
        if rental.is_due(datetime.now(UTC)):
            try:
                rental = await self._repo.update_status(rental_id, RentalStatus.EXPIRED)
            except AlreadyTerminalError:
                rental = await self._repo.get(rental_id)
            self._cache.invalidate_prefix(_LIST_PREFIX)
        return rental

    def _invalidate(self, rental_id: str) -> None:
        self._cache.invalidate(_rental_key(rental_id))
        self._cache.invalidate(_messages_key(rental_id))
        self._cache.invalidate_prefix(_LIST_PREFIX)

    def _on_message_stored(self, message: Message) -> None:
        self._cache.invalidate(_messages_key(message.rental_id))
        self._notifier.on_message(message)

    async def _refresh_after_reconnect(self) -> None:
        """Drop cached snapshots and sync every subscribed rental once."""
        self._cache.clear()
        for rental_id in sorted(self._notifier.subscriptions):
            try:
                await self._orchestrator.sync(rental_id, SyncTrigger.SCHEDULED)
            except RentalNotFoundError:
                await self._notifier.unsubscribe(rental_id)
