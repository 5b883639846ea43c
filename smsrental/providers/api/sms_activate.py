"""sms-activate rental adapter.

sms-activate exposes every operation through a single ``handler_api.php``
endpoint selected by the ``action`` query parameter:

================================  ======================================
action                            purpose
================================  ======================================
``getRentNumber``                 lease a number (``service``,
                                  ``rent_time``, ``country``,
                                  ``operator``)
``getRentStatus``                 list received SMS for a lease (``id``)
``continueRentNumber``            extend a lease (``id``, ``rent_time``)
``setRentStatus``                 finish (``1``) or cancel (``2``) a lease
``getRentServicesAndCountries``   rentable services with price and stock
================================  ======================================

Failures come back either as a bare upper-case code in a ``200 text/plain``
body (``NO_BALANCE``) or as ``{"status": "error", "message": "..."}``.  Both
are mapped to :class:`~smsrental.core.exceptions.ProviderRejectedError` with
the code kept verbatim and a readable hint attached.

:class:`~smsrental.providers.api.gogetsms.GoGetSmsProvider` speaks the same
protocol and subclasses this adapter.

Typical usage::

    async with SmsActivateProvider(settings) as provider:
        rental = await provider.rent(spec)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Final

import httpx

from smsrental.core.exceptions import ParseFailureError, ProviderRejectedError
from smsrental.core.models import (
    CatalogService,
    MessageSource,
    ProviderKind,
    RawMessage,
    Rental,
    RentalSpec,
    ServiceCatalog,
)
from smsrental.core.settings import Settings
from smsrental.providers.api.http_client import ProviderHttpClient
from smsrental.providers.base import BaseProvider
from smsrental.providers.normalizers import (
    first_present,
    normalise_phone,
    normalise_text,
    parse_float,
    parse_int,
    parse_timestamp_exact,
)

__all__ = ["SmsActivateProvider", "COUNTRY_IDS"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BASE_URL: Final[str] = "https://api.sms-activate.io/stubs/handler_api.php"

#: ``setRentStatus`` status values.
_STATUS_FINISH: Final[str] = "1"
_STATUS_CANCEL: Final[str] = "2"

#: ISO alpha-2 → sms-activate numeric country id.
COUNTRY_IDS: Final[dict[str, str]] = {
    "RU": "0",
    "UA": "1",
    "KZ": "2",
    "PL": "15",
    "GB": "16",
    "NL": "48",
    "DE": "43",
    "FR": "78",
    "ES": "56",
    "IT": "86",
    "SE": "46",
    "PT": "117",
    "US": "187",
    "CA": "36",
}

_COUNTRY_CODES: Final[dict[str, str]] = {v: k for k, v in COUNTRY_IDS.items()}

#: Error codes returned in place of a payload, with a readable hint.
_ERROR_HINTS: Final[dict[str, str]] = {
    "BAD_KEY": "Invalid API key; check the account credentials.",
    "NOT_AUTHORIZED": "API key is not authorised for the rental API.",
    "NO_NUMBERS": "No numbers available for this service/country. Try another country or service.",
    "NO_BALANCE": "Insufficient balance on the provider account.",
    "NOT_ENOUGH_FUNDS": "Insufficient balance on the provider account.",
    "BAD_ACTION": "The provider does not support this action.",
    "BAD_SERVICE": "Unknown service code for rentals.",
    "BAD_COUNTRY": "Unknown or unsupported country.",
    "EARLY_CANCEL_DENIED": "The lease cannot be cancelled yet; wait for the lock period to end.",
    "BANNED": "The provider account is banned or restricted.",
    "STATUS_FINISH": "The provider already considers this lease finished.",
    "STATUS_CANCEL": "The provider already considers this lease cancelled.",
    "NO_ID_RENT": "The provider does not know this lease id.",
    "INVALID_PHONE": "The provider rejected the lease id.",
}

#: ``getRentStatus`` codes meaning "nothing received yet".
_EMPTY_INBOX_CODES: Final[frozenset[str]] = frozenset({"STATUS_WAIT_CODE", "NO_SMS"})


class SmsActivateProvider(BaseProvider):
    """Adapter for sms-activate's rental API.

    Args:
        settings: Application settings (API key, timeout, default lease).
        http_client: Optional pre-built client (tests inject a mock).
    """

    kind = ProviderKind.SMS_ACTIVATE
    base_url: str = _BASE_URL

    def __init__(
        self,
        settings: Settings,
        http_client: ProviderHttpClient | None = None,
    ) -> None:
        self._settings = settings
        self._api_key = self._resolve_api_key(settings)
        self._http = http_client or ProviderHttpClient(
            provider=str(self.kind),
            timeout=settings.provider_timeout_s,
            max_attempts=settings.provider_max_attempts,
        )
        self._owns_http = http_client is None

    def _resolve_api_key(self, settings: Settings) -> str:
        return settings.sms_activate_api_key

    # ------------------------------------------------------------------
    # BaseProvider interface
    # ------------------------------------------------------------------

    async def rent(self, spec: RentalSpec) -> Rental:
        rent_time = self._rent_time(spec.duration_hours)
        data = await self._call(
            "getRentNumber",
            service=spec.service,
            rent_time=str(rent_time),
            operator="any",
            country=self._country_id(spec.country),
        )
        phone = data.get("phone") if isinstance(data, dict) else None
        if not isinstance(phone, dict) or not phone.get("id") or not phone.get("number"):
            raise ParseFailureError(
                str(self.kind), "getRentNumber response lacks phone.id/number", str(data)[:200]
            )

        rental = self._build_rental(
            spec,
            phone_number=normalise_phone(phone["number"]),
            native_ids={"rent_id": phone["id"]},
            expires_at=_parse_end_date(phone.get("endDate")),
            default_hours=rent_time,
        )
        logger.info(
            "%s: leased %s for %s/%s (%d h, rent_id=%s)",
            self.kind,
            rental.phone_number,
            spec.service,
            spec.country,
            rent_time,
            phone["id"],
        )
        return rental

    async def fetch_messages(self, rental: Rental) -> list[RawMessage]:
        rent_id = self._rent_id(rental)
        data = await self._call("getRentStatus", id=rent_id, page="0", size="100")
        values = data.get("values") if isinstance(data, dict) else None
        if not values:
            return []

        items = values.values() if isinstance(values, dict) else values
        messages: list[RawMessage] = []
        for raw in items:
            if not isinstance(raw, dict):
                continue
            body = normalise_text(first_present(raw, "text", "message"))
            if not body:
                continue
            received_at, exact = parse_timestamp_exact(raw.get("date"))
            messages.append(
                RawMessage(
                    sender=normalise_text(first_present(raw, "phoneFrom", "service"), fallback="unknown"),
                    body=body,
                    received_at=received_at,
                    timestamp_exact=exact,
                    source=MessageSource.PROVIDER_API,
                )
            )
        logger.debug("%s: rental %s has %d message(s)", self.kind, rental.id, len(messages))
        return messages

    async def catalog(self, *, country: str | None = None, hours: int | None = None) -> ServiceCatalog:
        params = {
            "rent_time": str(self._rent_time(hours or self._settings.default_rent_hours)),
            "operator": "any",
        }
        if country:
            params["country"] = self._country_id(country)
        data = await self._call("getRentServicesAndCountries", **params)

        services = data.get("services")
        if not isinstance(services, dict) or not services:
            raise ParseFailureError(
                str(self.kind), "getRentServicesAndCountries returned no services", str(data)[:200]
            )

        raw_countries = data.get("countries")
        if isinstance(raw_countries, dict):
            raw_countries = list(raw_countries.values())
        countries = [self._country_code(str(c)) for c in raw_countries or [] if c not in (None, "")]

        return ServiceCatalog(
            provider=self.kind,
            services=[
                CatalogService(
                    code=str(code),
                    price=parse_float(info.get("cost")),
                    available=parse_int(info.get("quant")),
                )
                for code, info in sorted(services.items())
                if isinstance(info, dict)
            ],
            countries=list(dict.fromkeys(countries)),
        )

    async def _extend(self, rental: Rental, hours: int) -> datetime | None:
        data = await self._call(
            "continueRentNumber", id=self._rent_id(rental), rent_time=str(self._rent_time(hours))
        )
        phone = data.get("phone") if isinstance(data, dict) else None
        if isinstance(phone, dict):
            return _parse_end_date(phone.get("endDate"))
        return None

    async def _cancel(self, rental: Rental) -> None:
        await self._call("setRentStatus", id=self._rent_id(rental), status=_STATUS_CANCEL)

    async def close(self) -> None:
        if self._owns_http:
            await self._http.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _rent_time(self, hours: int) -> int:
        """Rent duration sent to the provider (hours, as requested)."""
        return hours

    def _country_id(self, country: str) -> str:
        if country.isdigit():
            return country
        try:
            return COUNTRY_IDS[country]
        except KeyError:
            raise ProviderRejectedError(
                str(self.kind), "BAD_COUNTRY", hint=f"Country {country!r} is not supported."
            ) from None

    def _country_code(self, native: str) -> str:
        """Inverse of :meth:`_country_id`; unknown ids are returned as-is."""
        return _COUNTRY_CODES.get(native, native)

    def _rent_id(self, rental: Rental) -> str:
        rent_id = rental.native_id("rent_id")
        if rent_id is None:
            raise ParseFailureError(str(self.kind), f"Rental {rental.id} has no rent_id")
        return rent_id

    async def _call(self, action: str, **params: str) -> dict[str, Any]:
        """Invoke one ``handler_api.php`` action and return its JSON payload.

        Raises:
            ProviderRejectedError: For any error code or ``status=error``.
            ParseFailureError: For a body that is neither JSON nor a code.
        """
        response = await self._http.get(
            self.base_url,
            params={"api_key": self._api_key, "action": action, **params},
        )
        return self._decode(action, response)

    def _decode(self, action: str, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = response.text

        if isinstance(data, str):
            code = data.strip().upper()
            if action == "getRentStatus" and code in _EMPTY_INBOX_CODES:
                return {}
            if code in _ERROR_HINTS or code.replace("_", "").isalpha():
                raise ProviderRejectedError(str(self.kind), code, hint=_ERROR_HINTS.get(code))
            raise ParseFailureError(str(self.kind), f"Unexpected {action} body", data[:200])

        if not isinstance(data, dict):
            raise ParseFailureError(str(self.kind), f"Unexpected {action} payload", str(data)[:200])

        if data.get("status") == "error":
            code = str(data.get("message") or "UNKNOWN_ERROR")
            if action == "getRentStatus" and code.upper() in _EMPTY_INBOX_CODES:
                return {}
            raise ProviderRejectedError(str(self.kind), code, hint=_ERROR_HINTS.get(code.upper()))
        return data


def _parse_end_date(value: Any) -> datetime | None:
    """Parse ``endDate``; ``None`` when absent or unparseable."""
    if not value:
        return None
    parsed, exact = parse_timestamp_exact(value)
    return parsed if exact else None
