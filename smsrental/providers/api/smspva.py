"""SMSPVA rental adapter.

SMSPVA's rental API lives at ``/api/rent.php`` and is selected by ``method``:
``create`` (lease), ``sms`` (inbox), ``prolong`` (extend), ``delete``
(cancel) and ``getdata`` (services with daily price and stock, per country).  Every response is an envelope::

    {"status": 1, "data": {...}}          # success
    {"status": 0, "msg": "No free phones"} # failure

Leases are sold in whole weeks or months (``dtype`` + ``dcount``); requested
hours are rounded up.  ``until`` and message ``date`` values are epoch
seconds, though older accounts return date strings.

The ``sms`` inbox has had three shapes over time: ``data.SmsList`` plus
``data.OtherSms``, ``data`` as a bare list, or a top-level list.  All three
are accepted.
"""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from typing import Any, Final

from smsrental.core.exceptions import ParseFailureError, ProviderError, ProviderRejectedError
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
    parse_timestamp,
    parse_timestamp_exact,
)

__all__ = ["SmspvaProvider", "rental_period"]

logger = logging.getLogger(__name__)

_BASE_URL: Final[str] = "https://smspva.com"
_RENT_PATH: Final[str] = "/api/rent.php"

_HOURS_PER_WEEK: Final[int] = 24 * 7
_HOURS_PER_MONTH: Final[int] = 24 * 30

#: ``msg`` fragments that mean "nothing received yet" on the ``sms`` method.
_EMPTY_INBOX_MARKERS: Final[tuple[str, ...]] = ("no sms", "no messages", "not found sms")

#: Countries queried for the catalog when the caller names none.
_CATALOG_COUNTRIES: Final[tuple[str, ...]] = ("US", "DE", "GB", "RU", "FR")


def rental_period(hours: int) -> tuple[str, int]:
    """Round *hours* up to SMSPVA's ``(dtype, dcount)`` billing units.

    Up to four weeks are billed weekly, anything longer monthly.

    Examples::

        rental_period(24)   # → ("week", 1)
        rental_period(400)  # → ("week", 3)
        rental_period(1000) # → ("month", 2)
    """
    weeks = max(1, math.ceil(hours / _HOURS_PER_WEEK))
    if weeks <= 4:
        return "week", weeks
    return "month", math.ceil(hours / _HOURS_PER_MONTH)


def _period_hours(dtype: str, dcount: int) -> int:
    return dcount * (_HOURS_PER_WEEK if dtype == "week" else _HOURS_PER_MONTH)


class SmspvaProvider(BaseProvider):
    """Adapter for SMSPVA's rental API.

    Args:
        settings: Application settings.
        http_client: Optional pre-built client.
    """

    kind = ProviderKind.SMSPVA

    def __init__(
        self,
        settings: Settings,
        http_client: ProviderHttpClient | None = None,
    ) -> None:
        self._settings = settings
        self._http = http_client or ProviderHttpClient(
            provider=str(self.kind),
            base_url=_BASE_URL,
            timeout=settings.provider_timeout_s,
            max_attempts=settings.provider_max_attempts,
        )
        self._owns_http = http_client is None

    # ------------------------------------------------------------------
    # BaseProvider interface
    # ------------------------------------------------------------------

    async def rent(self, spec: RentalSpec) -> Rental:
        dtype, dcount = rental_period(spec.duration_hours)
        data = await self._call(
            "create", dtype=dtype, dcount=str(dcount), country=spec.country, service=spec.service
        )
        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict) or not data.get("id") or not data.get("pnumber"):
            raise ParseFailureError(
                str(self.kind), "create response lacks id/pnumber", str(data)[:200]
            )

        until = data.get("until")
        rental = self._build_rental(
            spec,
            phone_number=normalise_phone(data["pnumber"], data.get("ccode")),
            native_ids={"rent_id": data["id"]},
            expires_at=parse_timestamp(until) if until else None,
            default_hours=_period_hours(dtype, dcount),
        )
        logger.info(
            "smspva: leased %s for %s/%s (%s x%d, rent_id=%s)",
            rental.phone_number,
            spec.service,
            spec.country,
            dtype,
            dcount,
            data["id"],
        )
        return rental

    async def fetch_messages(self, rental: Rental) -> list[RawMessage]:
        try:
            data = await self._call("sms", id=self._rent_id(rental))
        except ProviderRejectedError as exc:
            if any(marker in exc.detail.lower() for marker in _EMPTY_INBOX_MARKERS):
                return []
            raise

        fetched_at = datetime.now(UTC)
        messages: list[RawMessage] = []
        for raw in _message_rows(data):
            body = normalise_text(first_present(raw, "text", "message"))
            if not body:
                continue
            received_at, exact = parse_timestamp_exact(raw.get("date"), now=fetched_at)
            messages.append(
                RawMessage(
                    sender=normalise_text(first_present(raw, "sender", "from"), fallback="SMSPVA"),
                    body=body,
                    received_at=received_at,
                    timestamp_exact=exact,
                    source=MessageSource.PROVIDER_API,
                )
            )
        return messages

    async def catalog(self, *, country: str | None = None, hours: int | None = None) -> ServiceCatalog:
        """Merge ``getdata`` across countries; prices are per day.

        A country whose query fails is skipped.  When every query fails the
        last error is raised.
        """
        services: dict[str, CatalogService] = {}
        countries: list[str] = []
        last_error: ProviderError | None = None
        for code in (country,) if country else _CATALOG_COUNTRIES:
            try:
                data = await self._call("getdata", country=code)
            except ProviderError as exc:
                logger.warning("smspva: catalog for %s failed: %s", code, exc)
                last_error = exc
                continue
            rows = data.get("services") if isinstance(data, dict) else None
            if not isinstance(rows, list):
                continue
            countries.append(code)
            for row in rows:
                if not isinstance(row, dict) or not row.get("service"):
                    continue
                entry = CatalogService(
                    code=str(row["service"]),
                    name=normalise_text(row.get("name")),
                    price=parse_float(row.get("price_day")),
                    available=parse_int(row.get("count")),
                )
                known = services.get(entry.code)
                # Prefer an entry with numbers in stock.
                if known is None or (not known.available and entry.available):
                    services[entry.code] = entry

        if not countries and last_error is not None:
            raise last_error
        return ServiceCatalog(provider=self.kind, services=list(services.values()), countries=countries)

    async def _extend(self, rental: Rental, hours: int) -> datetime | None:
        dtype, dcount = rental_period(hours)
        data = await self._call("prolong", id=self._rent_id(rental), dtype=dtype, dcount=str(dcount))
        until = data.get("until") if isinstance(data, dict) else None
        return parse_timestamp(until) if until else None

    async def _cancel(self, rental: Rental) -> None:
        await self._call("delete", id=self._rent_id(rental))

    async def close(self) -> None:
        if self._owns_http:
            await self._http.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _rent_id(self, rental: Rental) -> str:
        rent_id = rental.native_id("rent_id")
        if rent_id is None:
            raise ParseFailureError(str(self.kind), f"Rental {rental.id} has no rent_id")
        return rent_id

    async def _call(self, method: str, **params: str) -> Any:
        """Invoke one ``rent.php`` method and unwrap the ``data`` envelope.

        Raises:
            ProviderRejectedError: On ``status == 0`` (``msg`` kept verbatim).
            ParseFailureError: On a body that is not a recognised envelope.
        """
        response = await self._http.get(
            _RENT_PATH,
            params={"method": method, "apikey": self._settings.smspva_api_key, **params},
        )
        try:
            payload = response.json()
        except ValueError:
            raise ParseFailureError(
                str(self.kind), f"{method}: non-JSON response", response.text[:200]
            ) from None

        if isinstance(payload, list):
            return payload
        if not isinstance(payload, dict) or "status" not in payload:
            raise ParseFailureError(str(self.kind), f"{method}: unknown envelope", str(payload)[:200])

        if str(payload["status"]) != "1":
            message = str(payload.get("msg") or payload.get("error_msg") or "Unknown error")
            raise ProviderRejectedError(str(self.kind), message)
        return payload.get("data")


def _message_rows(data: Any) -> list[dict[str, Any]]:
    """Flatten the three known inbox shapes into a list of dicts."""
    if isinstance(data, list):
        return [row for row in data if isinstance(row, dict)]
    if isinstance(data, dict):
        rows: list[Any] = []
        for key in ("SmsList", "OtherSms"):
            value = data.get(key)
            if isinstance(value, list):
                rows.extend(value)
        return [row for row in rows if isinstance(row, dict)]
    return []
