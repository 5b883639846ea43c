"""Anosim rental adapter: the dual-identifier provider.

Anosim separates an **order** (what you pay for, created by ``POST /Orders``)
from the **order booking** (the lease of a concrete SIM).  The create call
answers with the order, yet every later endpoint (``/Sms/{id}``,
``/OrderBookings/{id}``, the extension call) wants the *booking* id.  Storing
only the id returned at creation time silently breaks every later sync, so
:meth:`AnosimProvider.rent` always records both:

``provider_native_ids = {"order_id": ..., "booking_id": ...}``

Create-order responses come in three shapes, all handled by
:func:`_extract_booking`:

1. A booking: ``{"id": <booking>, "orderId": <order>, "number": ...}``.
2. An order with bookings: ``{"id": <order>, "orderBookings": [{"id", "number"}]}``.
3. A bare order ``{"id": <order>}``: the booking is looked up in
   ``GET /OrderBookingsCurrent`` by ``orderId``.

Rentals recorded before both ids were stored are still served: the booking
id is re-resolved from the current bookings by order id or phone number.

Typical usage::

    async with AnosimProvider(settings) as provider:
        rental = await provider.rent(spec)
        rental.provider_native_ids   # {"order_id": "812", "booking_id": "3301"}
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Final

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
    parse_timestamp,
    parse_timestamp_exact,
)

__all__ = ["AnosimProvider", "COUNTRY_IDS"]

logger = logging.getLogger(__name__)

_BASE_URL: Final[str] = "https://anosim.net/api/v1"

#: Product rental types that lease a number (activations are excluded).
_RENTAL_FULL: Final[str] = "RentalFull"
_RENTAL_SERVICE: Final[str] = "RentalService"

#: ISO alpha-2 → Anosim country id.
COUNTRY_IDS: Final[dict[str, int]] = {
    "DE": 98,
    "GB": 286,
    "CZ": 67,
    "LT": 165,
    "NL": 196,
    "PL": 220,
    "PT": 221,
    "ZA": 252,
    "SE": 261,
    "CY": 66,
    "KE": 151,
}

_COUNTRY_CODES: Final[dict[int, str]] = {v: k for k, v in COUNTRY_IDS.items()}

#: Short service codes → Anosim product ``service`` names.
_SERVICE_NAMES: Final[dict[str, str]] = {
    "wa": "WhatsApp",
    "tg": "Telegram",
    "go": "Google",
    "fb": "Facebook",
    "ig": "Instagram",
    "tw": "Twitter",
    "ds": "Discord",
    "mm": "Microsoft",
    "am": "Amazon",
}


class AnosimProvider(BaseProvider):
    """Adapter for the Anosim REST API.

    Args:
        settings: Application settings (API key, optional product and
            carrier ids).
        http_client: Optional pre-built client.
    """

    kind = ProviderKind.ANOSIM

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
        product_id = await self._select_product(spec)
        params: dict[str, Any] = {"productId": product_id, "amount": 1}
        if self._settings.anosim_provider_id is not None:
            params["providerId"] = self._settings.anosim_provider_id

        order = await self._request("POST", "/Orders", params=params)
        if not isinstance(order, dict):
            raise ParseFailureError(str(self.kind), "POST /Orders returned no object", str(order)[:200])

        order_id, booking = _extract_booking(order)
        if booking is None and order_id:
            booking = await self._find_current_booking(order_id=order_id)
        if booking is None or not booking.get("id"):
            raise ParseFailureError(
                str(self.kind),
                f"No order booking found for order {order_id!r}",
                str(order)[:200],
            )

        number = first_present(booking, "number") or (booking.get("simCard") or {}).get("phoneNumber")
        if not number:
            raise ParseFailureError(str(self.kind), "Order booking lacks a number", str(booking)[:200])

        end = booking.get("endDate")
        rental = self._build_rental(
            spec,
            phone_number=normalise_phone(number),
            native_ids={
                "order_id": order_id or booking.get("orderId"),
                "booking_id": booking["id"],
            },
            expires_at=parse_timestamp(end) if end else None,
            default_hours=spec.duration_hours,
        )
        logger.info(
            "anosim: leased %s (order_id=%s booking_id=%s)",
            rental.phone_number,
            rental.provider_native_ids.get("order_id"),
            rental.provider_native_ids.get("booking_id"),
        )
        return rental

    async def fetch_messages(self, rental: Rental) -> list[RawMessage]:
        booking_id = await self._booking_id(rental)
        data = await self._request("GET", f"/Sms/{booking_id}")
        if data in (None, ""):
            return []
        if isinstance(data, dict):
            data = data.get("sms") or data.get("items") or []
        if not isinstance(data, list):
            raise ParseFailureError(str(self.kind), "Unexpected /Sms payload", str(data)[:200])

        fetched_at = datetime.now(UTC)
        messages: list[RawMessage] = []
        for raw in data:
            if not isinstance(raw, dict):
                continue
            body = normalise_text(first_present(raw, "messageText", "text"))
            if not body:
                continue
            received_at, exact = parse_timestamp_exact(raw.get("messageDate"), now=fetched_at)
            messages.append(
                RawMessage(
                    sender=normalise_text(first_present(raw, "messageSender", "sender"), fallback="unknown"),
                    body=body,
                    received_at=received_at,
                    timestamp_exact=exact,
                    source=MessageSource.PROVIDER_API,
                )
            )
        return messages

    async def catalog(self, *, country: str | None = None, hours: int | None = None) -> ServiceCatalog:
        """List rental products; the cheapest product wins per service code.

        Whole-number rentals appear under the code ``full``, which
        :meth:`rent` understands.  Activation products are left out.
        """
        params: dict[str, Any] = {}
        if country and country in COUNTRY_IDS:
            params["countryId"] = COUNTRY_IDS[country]
        products = await self._request("GET", "/Products", params=params)
        if not isinstance(products, list):
            raise ParseFailureError(str(self.kind), "Unexpected /Products payload", str(products)[:200])

        services: dict[str, CatalogService] = {}
        countries: list[str] = []
        for product in products:
            if not isinstance(product, dict):
                continue
            rental_type = product.get("rentalType")
            if rental_type == _RENTAL_FULL:
                code, name = "full", "Full number rental"
            elif rental_type == _RENTAL_SERVICE and product.get("service"):
                name = normalise_text(product["service"])
                code = _service_code(name)
            else:
                continue

            price = parse_float(product.get("price"))
            known = services.get(code)
            if known is None or (price is not None and (known.price is None or price < known.price)):
                services[code] = CatalogService(code=code, name=name, price=price)

            country_id = parse_int(product.get("countryId"))
            iso = _COUNTRY_CODES.get(country_id) if country_id is not None else None
            label = iso or normalise_text(product.get("country"))
            if label:
                countries.append(label)

        return ServiceCatalog(
            provider=self.kind,
            services=sorted(services.values(), key=lambda s: s.code),
            countries=list(dict.fromkeys(countries)),
        )

    async def _extend(self, rental: Rental, hours: int) -> datetime | None:
        booking_id = await self._booking_id(rental)
        data = await self._request(
            "POST",
            "/OrderBookings",
            params={"orderBookingId": booking_id, "extentionInMinutes": hours * 60},
        )
        end = data.get("endDate") if isinstance(data, dict) else None
        return parse_timestamp(end) if end else None

    async def _cancel(self, rental: Rental) -> None:
        booking_id = await self._booking_id(rental)
        await self._request("PATCH", f"/OrderBookings/{booking_id}")

    async def close(self) -> None:
        if self._owns_http:
            await self._http.close()

    # ------------------------------------------------------------------
    # Identifier selection
    # ------------------------------------------------------------------

    async def _booking_id(self, rental: Rental) -> str:
        """Return the id that booking-scoped endpoints need.

        Order: stored ``booking_id`` → re-resolved from current bookings →
        stored ``order_id`` (last resort, logged).
        """
        booking_id = rental.native_id("booking_id")
        if booking_id:
            return booking_id

        order_id = rental.native_id("order_id", "rent_id")
        booking = await self._find_current_booking(order_id=order_id, number=rental.phone_number)
        if booking is not None and booking.get("id"):
            logger.info(
                "anosim: resolved booking_id=%s for rental %s", booking["id"], rental.id
            )
            return str(booking["id"])

        if order_id:
            logger.warning(
                "anosim: rental %s has no booking_id; falling back to order_id=%s",
                rental.id,
                order_id,
            )
            return order_id
        raise ParseFailureError(str(self.kind), f"Rental {rental.id} has no Anosim identifiers")

    async def _find_current_booking(
        self, *, order_id: str | None = None, number: str | None = None
    ) -> dict[str, Any] | None:
        data = await self._request("GET", "/OrderBookingsCurrent")
        if not isinstance(data, list):
            return None
        wanted_number = normalise_phone(number) if number else None
        for booking in data:
            if not isinstance(booking, dict):
                continue
            if order_id and str(booking.get("orderId", "")) == str(order_id):
                return booking
            if wanted_number and normalise_phone(booking.get("number")) == wanted_number:
                return booking
        return None

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def _select_product(self, spec: RentalSpec) -> int:
        """Pick a rental product for *spec* (configured override wins)."""
        if self._settings.anosim_product_id is not None:
            return self._settings.anosim_product_id

        params: dict[str, Any] = {}
        country_id = COUNTRY_IDS.get(spec.country)
        if country_id is not None:
            params["countryId"] = country_id
        products = await self._request("GET", "/Products", params=params)
        if not isinstance(products, list):
            raise ParseFailureError(str(self.kind), "Unexpected /Products payload", str(products)[:200])

        full = spec.mode == "full" or spec.service.lower().startswith("full")
        wanted_type = _RENTAL_FULL if full else _RENTAL_SERVICE
        candidates = [p for p in products if isinstance(p, dict) and p.get("rentalType") == wanted_type]

        if not full:
            name = _SERVICE_NAMES.get(spec.service.lower(), spec.service).lower()
            candidates = [
                p
                for p in candidates
                if p.get("service")
                and (name in str(p["service"]).lower() or str(p["service"]).lower() in name)
            ]

        if not candidates:
            raise ProviderRejectedError(
                str(self.kind),
                f"PRODUCT_NOT_FOUND: no {wanted_type} product for {spec.service}/{spec.country}",
                hint="No rental product is available for this service and country.",
            )
        return int(candidates[0]["id"])

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, *, params: dict[str, Any] | None = None) -> Any:
        query = {"apikey": self._settings.anosim_api_key, **(params or {})}
        if method == "GET":
            response = await self._http.get(path, params=query)
        elif method == "POST":
            response = await self._http.post(path, params=query)
        else:
            response = await self._http.patch(path, params=query)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise ParseFailureError(
                str(self.kind), f"{method} {path}: non-JSON response", response.text[:200]
            ) from None


def _extract_booking(order: dict[str, Any]) -> tuple[str | None, dict[str, Any] | None]:
    """Split a create-order response into ``(order_id, booking)``.

    ``booking`` is ``None`` when the response is a bare order.
    """
    if order.get("number"):
        order_id = order.get("orderId") or order.get("id")
        return (str(order_id) if order_id else None), order

    bookings = order.get("orderBookings")
    order_id = str(order["id"]) if order.get("id") else None
    if isinstance(bookings, list) and bookings and isinstance(bookings[0], dict):
        return order_id, bookings[0]
    return order_id, None


def _service_code(product_service: str) -> str:
    """Map an Anosim product ``service`` name back to its short code."""
    lowered = product_service.lower()
    for code, name in _SERVICE_NAMES.items():
        if name.lower() in lowered:
            return code
    return lowered
