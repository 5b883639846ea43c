"""Unit tests for the API provider adapters.

The HTTP client is an ``AsyncMock`` returning ``MagicMock`` responses, so
no network is touched.

Covers:
- sms-activate: rent/fetch/extend/cancel, bare error codes, empty inbox.
- GoGetSMS: duration rounding and ISO country passthrough.
- SMSPVA: billing periods, envelope unwrapping, all inbox shapes.
- Anosim: both identifiers recorded on rent, booking id used for fetch,
  legacy rentals resolved from current bookings, product selection.
- Best-effort extend/cancel turning provider errors into warnings.
- Service catalogs: sms-activate/GoGetSMS country mapping, SMSPVA merge
  across countries, Anosim cheapest product per service.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from smsrental.core.exceptions import (
    ParseFailureError,
    ProviderRejectedError,
    ProviderUnavailableError,
)
from smsrental.core.models import MessageSource, ProviderKind, RentalSpec, RentalStatus
from smsrental.core.settings import Settings
from smsrental.providers.api.anosim import AnosimProvider
from smsrental.providers.api.gogetsms import GoGetSmsProvider
from smsrental.providers.api.sms_activate import SmsActivateProvider
from smsrental.providers.api.smspva import SmspvaProvider, rental_period

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resp(payload: Any = None, *, text: str | None = None) -> MagicMock:
    response = MagicMock()
    if text is not None:
        response.json.side_effect = ValueError("not json")
        response.text = text
        response.content = text.encode()
    else:
        response.json.return_value = payload
        response.text = str(payload)
        response.content = b"{}"
    return response


def _http(*responses: MagicMock) -> AsyncMock:
    http = AsyncMock()
    http.get.side_effect = list(responses)
    return http


@pytest.fixture()
def provider_settings(clean_env: None) -> Settings:
    return Settings(
        sms_activate_api_key="sa-key",
        gogetsms_api_key="gg-key",
        smspva_api_key="pva-key",
        anosim_api_key="an-key",
        anosim_product_id=7,
    )


def _spec(provider: ProviderKind, **kw) -> RentalSpec:
    data = {"provider": provider, "service": "wa", "country": "DE", "duration_hours": 24}
    data.update(kw)
    return RentalSpec(**data)


# ===========================================================================
# sms-activate
# ===========================================================================


class TestSmsActivate:
    @pytest.mark.asyncio
    async def test_rent_records_rent_id_and_end_date(self, provider_settings: Settings) -> None:
        http = _http(
            _resp(
                {
                    "status": "success",
                    "phone": {"id": "1049", "number": "4915112345678", "endDate": "2026-03-02T12:00:00"},
                }
            )
        )
        provider = SmsActivateProvider(provider_settings, http_client=http)

        rental = await provider.rent(_spec(ProviderKind.SMS_ACTIVATE))

        assert rental.provider is ProviderKind.SMS_ACTIVATE
        assert rental.provider_native_ids == {"rent_id": "1049"}
        assert rental.phone_number == "+4915112345678"
        assert rental.expires_at == datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
        assert rental.status is RentalStatus.ACTIVE
        params = http.get.call_args.kwargs["params"]
        assert params["action"] == "getRentNumber"
        assert params["rent_time"] == "24"
        assert params["country"] == "43"
        assert params["api_key"] == "sa-key"

    @pytest.mark.asyncio
    async def test_rent_without_end_date_uses_requested_hours(self, provider_settings: Settings) -> None:
        http = _http(_resp({"status": "success", "phone": {"id": "1", "number": "4915100000000"}}))
        provider = SmsActivateProvider(provider_settings, http_client=http)

        before = datetime.now(UTC)
        rental = await provider.rent(_spec(ProviderKind.SMS_ACTIVATE, duration_hours=12))

        assert before + timedelta(hours=12) <= rental.expires_at <= datetime.now(UTC) + timedelta(hours=12)

    @pytest.mark.asyncio
    async def test_bare_error_code_is_rejected_with_hint(self, provider_settings: Settings) -> None:
        provider = SmsActivateProvider(provider_settings, http_client=_http(_resp(text="NO_BALANCE")))

        with pytest.raises(ProviderRejectedError) as excinfo:
            await provider.rent(_spec(ProviderKind.SMS_ACTIVATE))

        assert excinfo.value.detail == "NO_BALANCE"
        assert excinfo.value.hint is not None

    @pytest.mark.asyncio
    async def test_json_error_is_rejected(self, provider_settings: Settings) -> None:
        provider = SmsActivateProvider(
            provider_settings, http_client=_http(_resp({"status": "error", "message": "NO_NUMBERS"}))
        )
        with pytest.raises(ProviderRejectedError, match="NO_NUMBERS"):
            await provider.rent(_spec(ProviderKind.SMS_ACTIVATE))

    @pytest.mark.asyncio
    async def test_unsupported_country_rejected_before_call(self, provider_settings: Settings) -> None:
        http = _http()
        provider = SmsActivateProvider(provider_settings, http_client=http)

        with pytest.raises(ProviderRejectedError, match="BAD_COUNTRY"):
            await provider.rent(_spec(ProviderKind.SMS_ACTIVATE, country="ZZ"))
        http.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_rent_payload_is_parse_failure(self, provider_settings: Settings) -> None:
        provider = SmsActivateProvider(provider_settings, http_client=_http(_resp({"status": "success"})))
        with pytest.raises(ParseFailureError):
            await provider.rent(_spec(ProviderKind.SMS_ACTIVATE))

    @pytest.mark.asyncio
    async def test_fetch_messages(self, provider_settings: Settings, make_rental) -> None:
        http = _http(
            _resp(
                {
                    "status": "success",
                    "quantity": "2",
                    "values": {
                        "0": {"phoneFrom": "WhatsApp", "text": "Code 111-222", "date": "2026-03-01 10:00:00"},
                        "1": {"phoneFrom": "", "service": "tg", "text": "Login 9876", "date": "2026-03-01 10:05:00"},
                        "2": {"phoneFrom": "X", "text": ""},
                    },
                }
            )
        )
        provider = SmsActivateProvider(provider_settings, http_client=http)

        messages = await provider.fetch_messages(make_rental(native_ids={"rent_id": "1049"}))

        assert [m.sender for m in messages] == ["WhatsApp", "tg"]
        assert messages[0].received_at == datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
        assert all(m.source is MessageSource.PROVIDER_API for m in messages)
        assert http.get.call_args.kwargs["params"]["id"] == "1049"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [_resp(text="STATUS_WAIT_CODE"), _resp({"status": "error", "message": "STATUS_WAIT_CODE"})],
    )
    async def test_empty_inbox_returns_nothing(
        self, provider_settings: Settings, make_rental, response: MagicMock
    ) -> None:
        provider = SmsActivateProvider(provider_settings, http_client=_http(response))
        assert await provider.fetch_messages(make_rental()) == []

    @pytest.mark.asyncio
    async def test_extend_uses_provider_end_date(self, provider_settings: Settings, make_rental) -> None:
        rental = make_rental()
        new_end = (rental.expires_at + timedelta(hours=30)).replace(microsecond=0)
        http = _http(_resp({"status": "success", "phone": {"endDate": new_end.isoformat()}}))
        provider = SmsActivateProvider(provider_settings, http_client=http)

        update = await provider.extend(rental, 24)

        assert update.warning is None
        assert update.rental.expires_at == new_end
        assert http.get.call_args.kwargs["params"]["action"] == "continueRentNumber"

    @pytest.mark.asyncio
    async def test_extend_failure_becomes_warning(self, provider_settings: Settings, make_rental) -> None:
        rental = make_rental()
        http = AsyncMock()
        http.get.side_effect = ProviderUnavailableError("sms_activate", "timeout")
        provider = SmsActivateProvider(provider_settings, http_client=http)

        update = await provider.extend(rental, 6)

        assert update.rental.expires_at == rental.expires_at + timedelta(hours=6)
        assert update.warning is not None
        assert "timeout" in update.warning

    @pytest.mark.asyncio
    async def test_cancel_sends_cancel_status(self, provider_settings: Settings, make_rental) -> None:
        http = _http(_resp({"status": "success"}))
        provider = SmsActivateProvider(provider_settings, http_client=http)

        update = await provider.cancel(make_rental())

        assert update.rental.status is RentalStatus.CANCELLED
        assert update.warning is None
        params = http.get.call_args.kwargs["params"]
        assert params["action"] == "setRentStatus"
        assert params["status"] == "2"

    @pytest.mark.asyncio
    async def test_cancel_refusal_still_cancels(self, provider_settings: Settings, make_rental) -> None:
        provider = SmsActivateProvider(provider_settings, http_client=_http(_resp(text="EARLY_CANCEL_DENIED")))

        update = await provider.cancel(make_rental())

        assert update.rental.status is RentalStatus.CANCELLED
        assert "EARLY_CANCEL_DENIED" in (update.warning or "")

    @pytest.mark.asyncio
    async def test_operating_on_foreign_rental_is_an_error(self, provider_settings: Settings, make_rental) -> None:
        provider = SmsActivateProvider(provider_settings, http_client=_http())
        with pytest.raises(ValueError):
            await provider.cancel(make_rental(provider=ProviderKind.ANOSIM))


# ===========================================================================
# GoGetSMS
# ===========================================================================


class TestGoGetSms:
    @pytest.mark.parametrize(("hours", "expected"), [(1, 4), (4, 4), (5, 24), (48, 72), (1000, 720)])
    def test_rent_time_rounds_up(self, provider_settings: Settings, hours: int, expected: int) -> None:
        provider = GoGetSmsProvider(provider_settings, http_client=_http())
        assert provider._rent_time(hours) == expected

    @pytest.mark.asyncio
    async def test_rent_uses_iso_country_and_own_key(self, provider_settings: Settings) -> None:
        http = _http(_resp({"status": "success", "phone": {"id": "77", "number": "4915100000077"}}))
        provider = GoGetSmsProvider(provider_settings, http_client=http)

        rental = await provider.rent(_spec(ProviderKind.GOGETSMS, duration_hours=5))

        assert rental.provider is ProviderKind.GOGETSMS
        assert http.get.call_args.args[0] == GoGetSmsProvider.base_url
        params = http.get.call_args.kwargs["params"]
        assert params["country"] == "DE"
        assert params["rent_time"] == "24"
        assert params["api_key"] == "gg-key"


# ===========================================================================
# SMSPVA
# ===========================================================================


class TestSmspva:
    @pytest.mark.parametrize(
        ("hours", "expected"),
        [(1, ("week", 1)), (24, ("week", 1)), (169, ("week", 2)), (400, ("week", 3)), (1000, ("month", 2))],
    )
    def test_rental_period(self, hours: int, expected: tuple[str, int]) -> None:
        assert rental_period(hours) == expected

    @pytest.mark.asyncio
    async def test_rent(self, provider_settings: Settings) -> None:
        http = _http(
            _resp({"status": 1, "data": {"id": "555", "pnumber": "15112345678", "ccode": "49", "until": 1772452800}})
        )
        provider = SmspvaProvider(provider_settings, http_client=http)

        rental = await provider.rent(_spec(ProviderKind.SMSPVA))

        assert rental.phone_number == "+4915112345678"
        assert rental.provider_native_ids == {"rent_id": "555"}
        assert rental.expires_at == datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
        params = http.get.call_args.kwargs["params"]
        assert (params["method"], params["dtype"], params["dcount"]) == ("create", "week", "1")

    @pytest.mark.asyncio
    async def test_rejection_message_kept_verbatim(self, provider_settings: Settings) -> None:
        provider = SmspvaProvider(provider_settings, http_client=_http(_resp({"status": 0, "msg": "No free phones"})))
        with pytest.raises(ProviderRejectedError) as excinfo:
            await provider.rent(_spec(ProviderKind.SMSPVA))
        assert excinfo.value.detail == "No free phones"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {
                "status": 1,
                "data": {
                    "SmsList": [{"sender": "WA", "text": "code 1111", "date": 1772366400}],
                    "OtherSms": [{"sender": "TG", "text": "code 2222"}],
                },
            },
            {"status": 1, "data": [{"sender": "WA", "text": "code 1111"}, {"from": "TG", "message": "code 2222"}]},
            [{"sender": "WA", "text": "code 1111"}, {"sender": "TG", "text": "code 2222"}],
        ],
    )
    async def test_fetch_accepts_all_inbox_shapes(self, provider_settings: Settings, make_rental, payload) -> None:
        provider = SmspvaProvider(provider_settings, http_client=_http(_resp(payload)))
        messages = await provider.fetch_messages(make_rental(provider=ProviderKind.SMSPVA))
        assert [m.body for m in messages] == ["code 1111", "code 2222"]

    @pytest.mark.asyncio
    async def test_no_sms_is_empty_inbox(self, provider_settings: Settings, make_rental) -> None:
        provider = SmspvaProvider(provider_settings, http_client=_http(_resp({"status": 0, "msg": "No SMS yet"})))
        assert await provider.fetch_messages(make_rental(provider=ProviderKind.SMSPVA)) == []

    @pytest.mark.asyncio
    async def test_non_json_is_parse_failure(self, provider_settings: Settings, make_rental) -> None:
        provider = SmspvaProvider(provider_settings, http_client=_http(_resp(text="<html>maintenance</html>")))
        with pytest.raises(ParseFailureError):
            await provider.fetch_messages(make_rental(provider=ProviderKind.SMSPVA))


# ===========================================================================
# Anosim
# ===========================================================================


def _anosim_http(get_routes: dict[str, Any], post_payload: Any = None) -> AsyncMock:
    http = AsyncMock()

    async def get(path: str, *, params: dict[str, Any] | None = None, headers=None) -> MagicMock:
        return _resp(get_routes[path])

    http.get.side_effect = get
    http.post.return_value = _resp(post_payload)
    http.patch.return_value = _resp({})
    return http


class TestAnosim:
    BOOKINGS = [
        {"id": 9001, "orderId": 10, "number": "4915100000010"},
        {"id": 3301, "orderId": 812, "number": "4915100000001", "endDate": "2026-03-02T12:00:00Z"},
    ]

    @pytest.mark.asyncio
    async def test_rent_bare_order_records_both_ids(self, provider_settings: Settings) -> None:
        http = _anosim_http({"/OrderBookingsCurrent": self.BOOKINGS}, post_payload={"id": 812})
        provider = AnosimProvider(provider_settings, http_client=http)

        rental = await provider.rent(_spec(ProviderKind.ANOSIM))

        assert rental.provider_native_ids == {"order_id": "812", "booking_id": "3301"}
        assert rental.phone_number == "+4915100000001"
        assert rental.expires_at == datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
        assert http.post.call_args.kwargs["params"]["productId"] == 7

    @pytest.mark.asyncio
    async def test_rent_order_with_embedded_booking(self, provider_settings: Settings) -> None:
        order = {"id": 812, "orderBookings": [{"id": 3301, "number": "4915100000001"}]}
        http = _anosim_http({}, post_payload=order)
        provider = AnosimProvider(provider_settings, http_client=http)

        rental = await provider.rent(_spec(ProviderKind.ANOSIM))

        assert rental.provider_native_ids == {"order_id": "812", "booking_id": "3301"}
        http.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_rent_booking_shaped_response(self, provider_settings: Settings) -> None:
        booking = {"id": 3301, "orderId": 812, "number": "4915100000001"}
        provider = AnosimProvider(provider_settings, http_client=_anosim_http({}, post_payload=booking))

        rental = await provider.rent(_spec(ProviderKind.ANOSIM))

        assert rental.provider_native_ids == {"order_id": "812", "booking_id": "3301"}

    @pytest.mark.asyncio
    async def test_rent_without_booking_is_parse_failure(self, provider_settings: Settings) -> None:
        http = _anosim_http({"/OrderBookingsCurrent": []}, post_payload={"id": 812})
        provider = AnosimProvider(provider_settings, http_client=http)
        with pytest.raises(ParseFailureError):
            await provider.rent(_spec(ProviderKind.ANOSIM))

    @pytest.mark.asyncio
    async def test_fetch_uses_booking_id(self, provider_settings: Settings, make_rental) -> None:
        sms = [{"messageSender": "WhatsApp", "messageText": "Code 4444", "messageDate": "2026-03-01T10:00:00Z"}]
        http = _anosim_http({"/Sms/3301": sms})
        provider = AnosimProvider(provider_settings, http_client=http)
        rental = make_rental(provider=ProviderKind.ANOSIM, native_ids={"order_id": "812", "booking_id": "3301"})

        messages = await provider.fetch_messages(rental)

        assert http.get.call_args.args[0] == "/Sms/3301"
        assert messages[0].sender == "WhatsApp"
        assert messages[0].body == "Code 4444"

    @pytest.mark.asyncio
    async def test_legacy_rental_resolves_booking_from_order(self, provider_settings: Settings, make_rental) -> None:
        http = _anosim_http({"/OrderBookingsCurrent": self.BOOKINGS, "/Sms/3301": []})
        provider = AnosimProvider(provider_settings, http_client=http)
        rental = make_rental(provider=ProviderKind.ANOSIM, native_ids={"order_id": "812"})

        assert await provider.fetch_messages(rental) == []
        assert http.get.call_args.args[0] == "/Sms/3301"

    @pytest.mark.asyncio
    async def test_legacy_rental_resolves_booking_from_number(self, provider_settings: Settings, make_rental) -> None:
        http = _anosim_http({"/OrderBookingsCurrent": self.BOOKINGS, "/Sms/9001": []})
        provider = AnosimProvider(provider_settings, http_client=http)
        rental = make_rental(provider=ProviderKind.ANOSIM, native_ids={"order_id": "1"}, phone="+4915100000010")

        await provider.fetch_messages(rental)

        assert http.get.call_args.args[0] == "/Sms/9001"

    @pytest.mark.asyncio
    async def test_unresolvable_falls_back_to_order_id(self, provider_settings: Settings, make_rental) -> None:
        http = _anosim_http({"/OrderBookingsCurrent": [], "/Sms/812": None})
        provider = AnosimProvider(provider_settings, http_client=http)
        rental = make_rental(provider=ProviderKind.ANOSIM, native_ids={"order_id": "812"})

        assert await provider.fetch_messages(rental) == []
        assert http.get.call_args.args[0] == "/Sms/812"

    @pytest.mark.asyncio
    async def test_cancel_patches_booking(self, provider_settings: Settings, make_rental) -> None:
        http = _anosim_http({})
        provider = AnosimProvider(provider_settings, http_client=http)
        rental = make_rental(provider=ProviderKind.ANOSIM, native_ids={"order_id": "812", "booking_id": "3301"})

        update = await provider.cancel(rental)

        assert update.rental.status is RentalStatus.CANCELLED
        assert http.patch.call_args.args[0] == "/OrderBookings/3301"

    @pytest.mark.asyncio
    async def test_extend_sends_minutes(self, provider_settings: Settings, make_rental) -> None:
        http = _anosim_http({})
        http.post.return_value = _resp({})
        provider = AnosimProvider(provider_settings, http_client=http)
        rental = make_rental(provider=ProviderKind.ANOSIM, native_ids={"booking_id": "3301"})

        update = await provider.extend(rental, 2)

        assert http.post.call_args.kwargs["params"]["extentionInMinutes"] == 120
        assert update.rental.expires_at == rental.expires_at + timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_product_selected_by_service(self, clean_env: None) -> None:
        settings = Settings(anosim_api_key="an-key")
        products = [
            {"id": 1, "rentalType": "RentalFull", "service": None},
            {"id": 2, "rentalType": "RentalService", "service": "Telegram"},
            {"id": 3, "rentalType": "RentalService", "service": "WhatsApp"},
        ]
        booking = {"id": 3301, "orderId": 812, "number": "4915100000001"}
        http = _anosim_http({"/Products": products}, post_payload=booking)
        provider = AnosimProvider(settings, http_client=http)

        await provider.rent(_spec(ProviderKind.ANOSIM, service="wa"))
        assert http.post.call_args.kwargs["params"]["productId"] == 3

        await provider.rent(_spec(ProviderKind.ANOSIM, service="wa", mode="full"))
        assert http.post.call_args.kwargs["params"]["productId"] == 1

    @pytest.mark.asyncio
    async def test_no_matching_product_rejected(self, clean_env: None) -> None:
        settings = Settings(anosim_api_key="an-key")
        http = _anosim_http({"/Products": [{"id": 2, "rentalType": "RentalService", "service": "Telegram"}]})
        provider = AnosimProvider(settings, http_client=http)

        with pytest.raises(ProviderRejectedError, match="PRODUCT_NOT_FOUND"):
            await provider.rent(_spec(ProviderKind.ANOSIM, service="wa"))


# ===========================================================================
# Catalogs
# ===========================================================================


class TestCatalogs:
    @pytest.mark.asyncio
    async def test_sms_activate_maps_country_ids(self, provider_settings: Settings) -> None:
        http = _http(
            _resp(
                {
                    "countries": {"0": "43", "1": "16", "2": "999"},
                    "operators": ["any"],
                    "services": {
                        "wa": {"cost": "12.50", "quant": 30},
                        "tg": {"cost": 8, "quant": "0"},
                        "full": "n/a",
                    },
                }
            )
        )
        provider = SmsActivateProvider(provider_settings, http_client=http)

        catalog = await provider.catalog(country="DE", hours=4)

        assert [(s.code, s.price, s.available) for s in catalog.services] == [("tg", 8.0, 0), ("wa", 12.5, 30)]
        assert catalog.countries == ["DE", "GB", "999"]
        params = http.get.call_args.kwargs["params"]
        assert params["action"] == "getRentServicesAndCountries"
        assert (params["rent_time"], params["operator"], params["country"]) == ("4", "any", "43")

    @pytest.mark.asyncio
    async def test_sms_activate_without_services_is_parse_failure(self, provider_settings: Settings) -> None:
        provider = SmsActivateProvider(provider_settings, http_client=_http(_resp({"countries": [], "services": {}})))
        with pytest.raises(ParseFailureError):
            await provider.catalog()

    @pytest.mark.asyncio
    async def test_gogetsms_passes_iso_countries(self, provider_settings: Settings) -> None:
        http = _http(_resp({"countries": ["gb", "de"], "services": {"wa": {"cost": 1, "quant": 2}}}))
        provider = GoGetSmsProvider(provider_settings, http_client=http)

        catalog = await provider.catalog(country="GB", hours=30)

        assert catalog.provider is ProviderKind.GOGETSMS
        assert catalog.countries == ["GB", "DE"]
        params = http.get.call_args.kwargs["params"]
        assert (params["country"], params["rent_time"]) == ("GB", "72")

    @pytest.mark.asyncio
    async def test_smspva_merges_countries_and_skips_failures(self, provider_settings: Settings) -> None:
        http = _http(
            _resp({"status": 1, "data": {"services": [{"service": "wa", "name": "WhatsApp", "price_day": "0,9", "count": 0}]}}),
            _resp({"status": 0, "msg": "Country disabled"}),
            _resp({"status": 1, "data": {"services": [{"service": "wa", "name": "WhatsApp", "price_day": 1.2, "count": 5}]}}),
            _resp({"status": 1, "data": {"services": [{"service": "tg", "name": "Telegram", "price_day": 0.5, "count": 1}]}}),
            _resp({"status": 1, "data": {"services": []}}),
        )
        provider = SmspvaProvider(provider_settings, http_client=http)

        catalog = await provider.catalog()

        assert catalog.countries == ["US", "GB", "RU", "FR"]
        assert [(s.code, s.price, s.available) for s in catalog.services] == [("wa", 1.2, 5), ("tg", 0.5, 1)]
        assert [c.kwargs["params"]["method"] for c in http.get.call_args_list] == ["getdata"] * 5

    @pytest.mark.asyncio
    async def test_smspva_single_country_failure_raises(self, provider_settings: Settings) -> None:
        provider = SmspvaProvider(provider_settings, http_client=_http(_resp({"status": 0, "msg": "Bad key"})))
        with pytest.raises(ProviderRejectedError):
            await provider.catalog(country="DE")

    @pytest.mark.asyncio
    async def test_anosim_cheapest_product_per_service(self, clean_env: None) -> None:
        settings = Settings(anosim_api_key="an-key")
        products = [
            {"id": 1, "rentalType": "RentalFull", "service": None, "price": 30, "countryId": 98},
            {"id": 2, "rentalType": "RentalService", "service": "WhatsApp", "price": 4.5, "countryId": 98},
            {"id": 3, "rentalType": "RentalService", "service": "WhatsApp", "price": 3.0, "country": "Austria"},
            {"id": 4, "rentalType": "Activation", "service": "Telegram", "price": 0.1, "countryId": 286},
        ]
        provider = AnosimProvider(settings, http_client=_anosim_http({"/Products": products}))

        catalog = await provider.catalog()

        assert [(s.code, s.price) for s in catalog.services] == [("full", 30.0), ("wa", 3.0)]
        assert catalog.countries == ["DE", "Austria"]
