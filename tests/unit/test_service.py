"""Unit tests for :class:`~smsrental.service.RentalService`.

The service runs against an in-memory database and a fake rental provider.

Covers:
- Renting records the lease and subscribes to its changes.
- Extend and cancel are best-effort at the provider: the canonical change
  always lands, provider refusals come back as warnings.
- Expiry is applied on read, and terminal rentals refuse mutations.
- Registered numbers: manual and inbox registrations, idempotence,
  deletion, and ``remove`` choosing delete or cancel.
- Test messages, status views, unseen counters and cache invalidation.
- Pushed messages matched by native id or phone, the cached catalog, and
  visibility reports reaching the notifier.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import aiosqlite
import pytest
import pytest_asyncio

from smsrental.core.exceptions import (
    AlreadyTerminalError,
    ConfigError,
    DuplicateAssignmentError,
    ProviderRejectedError,
    RentalNotFoundError,
)
from smsrental.core.models import (
    CatalogService,
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
from smsrental.orchestrator.sync import SyncTrigger
from smsrental.providers.base import BaseProvider
from smsrental.providers.manual import ManualProvider
from smsrental.service import RentalService
from smsrental.storage.messages import MessageStore
from smsrental.storage.rentals import RentalRepository

INBOX_URL = "https://receive-sms-online.info/private.php?phone=4915100000001&key=abc123"


class FakeActivateProvider(BaseProvider):
    """In-process stand-in for a rental API."""

    kind = ProviderKind.SMS_ACTIVATE

    def __init__(self) -> None:
        self.messages: list[RawMessage] = []
        self.extend_error: Exception | None = None
        self.cancel_error: Exception | None = None
        self.cancelled: list[str] = []
        self.fetches = 0
        self.catalog_calls = 0

    async def rent(self, spec: RentalSpec) -> Rental:
        return self._build_rental(
            spec,
            phone_number="+4915100000042",
            native_ids={"activation_id": "A1"},
            expires_at=None,
            default_hours=spec.duration_hours,
        )

    async def fetch_messages(self, rental: Rental) -> list[RawMessage]:
        self.fetches += 1
        return list(self.messages)

    async def _extend(self, rental: Rental, hours: int) -> datetime | None:
        if self.extend_error is not None:
            raise self.extend_error
        return None

    async def _cancel(self, rental: Rental) -> None:
        if self.cancel_error is not None:
            raise self.cancel_error
        self.cancelled.append(rental.id)

    async def catalog(self, *, country: str | None = None, hours: int | None = None) -> ServiceCatalog:
        self.catalog_calls += 1
        return ServiceCatalog(
            provider=self.kind,
            services=[CatalogService(code="wa", price=0.8, available=3)],
            countries=[country or "DE"],
        )


@pytest.fixture()
def provider() -> FakeActivateProvider:
    return FakeActivateProvider()


@pytest_asyncio.fixture()
async def service(settings: Settings, conn: aiosqlite.Connection, provider: FakeActivateProvider):
    providers = {ProviderKind.SMS_ACTIVATE: provider, ProviderKind.MANUAL: ManualProvider()}
    svc = RentalService(settings, RentalRepository(conn), MessageStore(conn), providers)
    yield svc
    await svc.close()


def _spec(hours: int = 4) -> RentalSpec:
    return RentalSpec(provider=ProviderKind.SMS_ACTIVATE, service="wa", country="de", duration_hours=hours)


# ===========================================================================
# Leases
# ===========================================================================


class TestLeases:
    @pytest.mark.asyncio
    async def test_rent_records_and_subscribes(self, service: RentalService) -> None:
        rental = await service.rent(_spec())

        stored = await service.repo.get(rental.id)
        assert stored.provider_native_ids == {"activation_id": "A1"}
        assert stored.country_code == "DE"
        assert rental.id in service.notifier.subscriptions

    @pytest.mark.asyncio
    async def test_rent_from_disabled_provider(self, service: RentalService) -> None:
        spec = RentalSpec(provider=ProviderKind.SMSPVA, service="wa", country="DE", duration_hours=4)
        with pytest.raises(ConfigError):
            await service.rent(spec)

    @pytest.mark.asyncio
    async def test_extend_applies_even_when_provider_refuses(
        self, service: RentalService, provider: FakeActivateProvider
    ) -> None:
        rental = await service.rent(_spec())
        provider.extend_error = ProviderRejectedError("sms_activate", "NO_EXTENSION")

        update = await service.extend(rental.id, 2)

        assert update.rental.expires_at == rental.expires_at + timedelta(hours=2)
        assert "NO_EXTENSION" in (update.warning or "")
        assert (await service.repo.get(rental.id)).expires_at == update.rental.expires_at

    @pytest.mark.asyncio
    async def test_extend_without_warning(self, service: RentalService) -> None:
        rental = await service.rent(_spec())
        update = await service.extend(rental.id, 1)
        assert update.warning is None
        assert update.rental.expires_at == rental.expires_at + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_extend_rejects_bad_hours(self, service: RentalService) -> None:
        rental = await service.rent(_spec())
        with pytest.raises(ValueError):
            await service.extend(rental.id, 0)

    @pytest.mark.asyncio
    async def test_cancel_with_provider_failure(self, service: RentalService, provider: FakeActivateProvider) -> None:
        rental = await service.rent(_spec())
        provider.cancel_error = ProviderRejectedError("sms_activate", "EARLY_CANCEL_DENIED")

        update = await service.cancel(rental.id)

        assert update.rental.status is RentalStatus.CANCELLED
        assert "EARLY_CANCEL_DENIED" in (update.warning or "")
        assert (await service.repo.get(rental.id)).status is RentalStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_twice_is_noop(self, service: RentalService, provider: FakeActivateProvider) -> None:
        rental = await service.rent(_spec())
        await service.cancel(rental.id)

        again = await service.cancel(rental.id)

        assert again.rental.status is RentalStatus.CANCELLED
        assert again.warning is None
        assert provider.cancelled == [rental.id]

    @pytest.mark.asyncio
    async def test_terminal_rental_refuses_extend(self, service: RentalService) -> None:
        rental = await service.rent(_spec())
        await service.cancel(rental.id)
        with pytest.raises(AlreadyTerminalError):
            await service.extend(rental.id, 1)

    @pytest.mark.asyncio
    async def test_past_due_rental_expires_on_read(self, service: RentalService, make_rental) -> None:
        overdue = make_rental("old", leased_at=datetime.now(UTC) - timedelta(hours=3), hours=1)
        await service.repo.create_rental(overdue)

        with pytest.raises(AlreadyTerminalError):
            await service.cancel("old")
        assert (await service.repo.get("old")).status is RentalStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_cached_snapshot_expires_once_due(
        self, service: RentalService, make_rental, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        await service.repo.create_rental(make_rental("soon", hours=1))
        assert (await service.status("soon")).rental.status is RentalStatus.ACTIVE

        class _TwoHoursLater(datetime):
            @classmethod
            def now(cls, tz=None):
                return datetime.now(tz) + timedelta(hours=2)

        monkeypatch.setattr("smsrental.service.datetime", _TwoHoursLater)
        view = await service.status("soon")

        assert view.rental.status is RentalStatus.EXPIRED
        assert (await service.repo.get("soon")).status is RentalStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_assign(self, service: RentalService) -> None:
        rental = await service.rent(_spec())

        assert (await service.assign(rental.id, "alice")).assignee == "alice"
        with pytest.raises(DuplicateAssignmentError):
            await service.assign(rental.id, "bob")
        assert (await service.assign(rental.id, "bob", force=True)).assignee == "bob"

    @pytest.mark.asyncio
    async def test_unknown_rental(self, service: RentalService) -> None:
        with pytest.raises(RentalNotFoundError):
            await service.cancel("nope")


# ===========================================================================
# Registered numbers
# ===========================================================================


class TestRegisteredNumbers:
    @pytest.mark.asyncio
    async def test_register_manual_is_idempotent(self, service: RentalService) -> None:
        first = await service.register_manual("+49 151 0000 0001", service="wa", country="de")
        second = await service.register_manual("+4915100000001")

        assert first.id == second.id
        assert first.provider is ProviderKind.MANUAL
        assert first.phone_number == "+4915100000001"
        assert first.country_code == "DE"

    @pytest.mark.asyncio
    async def test_register_inbox(self, service: RentalService) -> None:
        rental = await service.register_manual("+4915100000001", access_url=INBOX_URL)

        assert rental.provider is ProviderKind.RECEIVE_SMS_ONLINE
        assert rental.provider_native_ids == {"inbox_key": "abc123"}
        assert rental.access_credentials == {"url": INBOX_URL}

    @pytest.mark.asyncio
    async def test_register_rejects_bad_input(self, service: RentalService) -> None:
        with pytest.raises(ProviderRejectedError):
            await service.register_manual("12")
        with pytest.raises(ProviderRejectedError):
            await service.register_manual("+4915100000001", access_url="https://example.com/inbox")

    @pytest.mark.asyncio
    async def test_remove_deletes_registered_number(self, service: RentalService) -> None:
        rental = await service.register_manual("+4915100000001")
        await service.inject_test_message(rental.id, "Tester", "Code 555555")

        assert await service.remove(rental.id) is None
        assert await service.repo.find(rental.id) is None
        assert rental.id not in service.notifier.subscriptions

    @pytest.mark.asyncio
    async def test_remove_cancels_rented_number(self, service: RentalService) -> None:
        rental = await service.rent(_spec())

        update = await service.remove(rental.id)

        assert update is not None
        assert update.rental.status is RentalStatus.CANCELLED
        assert await service.repo.find(rental.id) is not None

    @pytest.mark.asyncio
    async def test_delete_manual_refuses_rented_number(self, service: RentalService) -> None:
        rental = await service.rent(_spec())
        with pytest.raises(ProviderRejectedError, match="DELETE_UNSUPPORTED"):
            await service.delete_manual(rental.id)


# ===========================================================================
# Messages and views
# ===========================================================================


class TestMessagesAndViews:
    @pytest.mark.asyncio
    async def test_inject_test_message(self, service: RentalService) -> None:
        rental = await service.register_manual("+4915100000001")

        first = await service.inject_test_message(rental.id, "Tester", "Code 555555")
        second = await service.inject_test_message(
            rental.id, "Tester", "Code 555555", received_at=first.message.received_at
        )

        assert first.inserted is True
        assert first.message.source is MessageSource.MANUAL_TEST
        assert second.inserted is False
        assert service.notifier.unseen_count(rental.id) == 1

    @pytest.mark.asyncio
    async def test_inject_for_unknown_rental(self, service: RentalService) -> None:
        with pytest.raises(RentalNotFoundError):
            await service.inject_test_message("nope", "Tester", "hello")

    @pytest.mark.asyncio
    async def test_status_marks_viewed_and_sees_new_messages(self, service: RentalService) -> None:
        rental = await service.register_manual("+4915100000001")
        await service.inject_test_message(rental.id, "Tester", "Code 1")

        view = await service.status(rental.id)
        assert [m.body for m in view.messages] == ["Code 1"]
        assert view.unseen_count == 0

        await service.inject_test_message(rental.id, "Tester", "Code 2")
        assert service.notifier.unseen_count(rental.id) == 1

        view = await service.status(rental.id)
        assert [m.body for m in view.messages] == ["Code 1", "Code 2"]
        assert view.stale is False
        assert view.error is None

    @pytest.mark.asyncio
    async def test_status_refresh_syncs_with_provider(
        self, service: RentalService, provider: FakeActivateProvider
    ) -> None:
        rental = await service.rent(_spec())
        provider.messages = [
            RawMessage(sender="WhatsApp", body="Your code 123-456", received_at=datetime.now(UTC))
        ]

        view = await service.status(rental.id, refresh=True)

        assert provider.fetches == 1
        assert [m.body for m in view.messages] == ["Your code 123-456"]

    @pytest.mark.asyncio
    async def test_sync_reports_new_count(self, service: RentalService, provider: FakeActivateProvider) -> None:
        rental = await service.rent(_spec(24))
        assert rental.status is RentalStatus.ACTIVE
        assert rental.expires_at - rental.leased_at == timedelta(hours=24)

        empty = await service.sync(rental.id)
        provider.messages = [RawMessage(sender="A", body="Code 9", received_at=datetime.now(UTC))]
        first = await service.sync(rental.id)
        second = await service.sync(rental.id, SyncTrigger.VIEW_OPEN)

        assert (empty.new_messages_count, first.new_messages_count, second.new_messages_count) == (0, 1, 0)

    @pytest.mark.asyncio
    async def test_status_unknown_rental(self, service: RentalService) -> None:
        with pytest.raises(RentalNotFoundError):
            await service.status("nope")

    @pytest.mark.asyncio
    async def test_list_rentals_expires_and_filters(self, service: RentalService, make_rental) -> None:
        await service.repo.create_rental(
            make_rental("old", leased_at=datetime.now(UTC) - timedelta(hours=3), hours=1)
        )
        fresh = await service.rent(_spec())
        await service.assign(fresh.id, "alice")

        everything = await service.list_rentals()
        active = await service.list_rentals(status=RentalStatus.ACTIVE)
        mine = await service.list_rentals(assignee="alice")

        assert {r.id for r in everything} == {"old", fresh.id}
        assert [r.id for r in active] == [fresh.id]
        assert [r.id for r in mine] == [fresh.id]
        assert (await service.repo.get("old")).status is RentalStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_list_cache_invalidated_by_mutation(self, service: RentalService) -> None:
        assert await service.list_rentals() == []
        rental = await service.rent(_spec())
        assert [r.id for r in await service.list_rentals()] == [rental.id]


# ===========================================================================
# Pushed messages, catalog and visibility
# ===========================================================================


class TestPushedMessages:
    @pytest.mark.asyncio
    async def test_matched_by_native_id(self, service: RentalService) -> None:
        rental = await service.rent(_spec())
        raw = RawMessage(
            sender="Telegram",
            body="Code 42",
            received_at=datetime(2026, 3, 1, 9, tzinfo=UTC),
            source=MessageSource.WEBHOOK,
        )

        first = await service.ingest_pushed_message(ProviderKind.SMS_ACTIVATE, raw, native_id="A1")
        again = await service.ingest_pushed_message(ProviderKind.SMS_ACTIVATE, raw, native_id="A1")

        assert first is not None and first.inserted is True
        assert first.message.rental_id == rental.id
        assert again is not None and again.inserted is False
        assert service.notifier.unseen_count(rental.id) == 1

    @pytest.mark.asyncio
    async def test_matched_by_phone_prefers_active(self, service: RentalService, make_rental) -> None:
        await service.repo.create_rental(
            make_rental(
                "old",
                phone="+4915100000042",
                leased_at=datetime.now(UTC) - timedelta(minutes=30),
                status=RentalStatus.CANCELLED,
            )
        )
        live = await service.rent(_spec())
        raw = RawMessage(sender="WhatsApp", body="Code 7", received_at=datetime.now(UTC))

        result = await service.ingest_pushed_message(
            ProviderKind.SMS_ACTIVATE, raw, native_id="unknown", phone_number="4915100000042"
        )

        assert result is not None
        assert result.message.rental_id == live.id

    @pytest.mark.asyncio
    async def test_unknown_number_is_ignored(self, service: RentalService) -> None:
        raw = RawMessage(sender="X", body="hello", received_at=datetime.now(UTC))

        result = await service.ingest_pushed_message(
            ProviderKind.SMS_ACTIVATE, raw, native_id="nope", phone_number="+10000000000"
        )

        assert result is None


class TestCatalogAndVisibility:
    @pytest.mark.asyncio
    async def test_catalog_reads_through_cache(
        self, service: RentalService, provider: FakeActivateProvider
    ) -> None:
        first = await service.catalog(ProviderKind.SMS_ACTIVATE, country="gb", hours=4)
        second = await service.catalog(ProviderKind.SMS_ACTIVATE, country="GB", hours=4)
        forced = await service.catalog(ProviderKind.SMS_ACTIVATE, country="GB", hours=4, force=True)

        assert first.countries == ["GB"]
        assert second == first == forced
        assert provider.catalog_calls == 2

    @pytest.mark.asyncio
    async def test_catalog_of_disabled_provider(self, service: RentalService) -> None:
        with pytest.raises(ConfigError):
            await service.catalog(ProviderKind.ANOSIM)

    @pytest.mark.asyncio
    async def test_visibility_reports_reach_notifier(
        self, settings: Settings, conn: aiosqlite.Connection, provider: FakeActivateProvider
    ) -> None:
        now = [0.0]
        transport = AsyncMock()
        refresh = AsyncMock()
        notifier = RealtimeNotifier(transport, refresh, clock=lambda: now[0], hidden_threshold=60)
        service = RentalService(
            settings,
            RentalRepository(conn),
            MessageStore(conn),
            {ProviderKind.SMS_ACTIVATE: provider},
            notifier=notifier,
        )
        rental = await service.rent(_spec())

        service.client_hidden()
        now[0] += 10
        assert await service.client_visible() is False

        service.client_hidden()
        now[0] += 61
        assert await service.client_visible() is True
        refresh.assert_awaited_once()
        assert notifier.subscriptions == frozenset({rental.id})
        await service.close()
