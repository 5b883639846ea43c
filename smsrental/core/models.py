"""smsrental core domain models.

This module defines the canonical :class:`Rental` and :class:`Message` models
and the related enumerations shared by every provider, storage, sync and API
layer.

Providers translate their own payloads into :class:`Rental` (on rent) and
:class:`RawMessage` (on fetch).  Only the storage layer turns a
:class:`RawMessage` into a persisted :class:`Message`, because only it knows
the rental the message belongs to and the resulting dedup key.

Typical usage::

    from smsrental.core.models import ProviderKind, RentalSpec

    spec = RentalSpec(
        provider=ProviderKind.SMS_ACTIVATE,
        service="whatsapp",
        country="DE",
        duration_hours=24,
    )
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

__all__ = [
    "ProviderKind",
    "RentalStatus",
    "MessageSource",
    "TERMINAL_STATUSES",
    "RentalSpec",
    "Rental",
    "RawMessage",
    "Message",
    "CatalogService",
    "ServiceCatalog",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ProviderKind(StrEnum):
    """Canonical names for every supported number source.

    Serialises as a plain string so DB rows and JSON payloads stay readable.
    """

    SMS_ACTIVATE = "sms_activate"
    GOGETSMS = "gogetsms"
    SMSPVA = "smspva"
    ANOSIM = "anosim"
    RECEIVE_SMS_ONLINE = "receive_sms_online"
    MANUAL = "manual"


class RentalStatus(StrEnum):
    """Canonical rental status, authoritative over what providers report."""

    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class MessageSource(StrEnum):
    """How a message entered the store."""

    PROVIDER_API = "provider_api"
    SCRAPE = "scrape"
    WEBHOOK = "webhook"
    MANUAL_TEST = "manual_test"


#: Statuses with no outbound transition.
TERMINAL_STATUSES: frozenset[RentalStatus] = frozenset(
    {RentalStatus.EXPIRED, RentalStatus.CANCELLED}
)


def _utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RentalSpec(BaseModel):
    """What the caller asks a provider for.

    Attributes:
        provider: Which provider to rent from.
        service: Provider service code (e.g. ``"whatsapp"``, ``"full"``).
        country: ISO 3166-1 alpha-2 country code, upper-cased.
        duration_hours: Requested lease length in hours.
        mode: Optional provider-specific rental mode (e.g. Anosim's
            ``"full"`` vs ``"service"`` rentals).
    """

    model_config = {"frozen": True}

    provider: ProviderKind
    service: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    duration_hours: int = Field(..., ge=1, le=24 * 365)
    mode: str | None = None

    @field_validator("country")
    @classmethod
    def _upper_country(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("service")
    @classmethod
    def _strip_service(cls, v: str) -> str:
        return v.strip()


# ---------------------------------------------------------------------------
# Rental
# ---------------------------------------------------------------------------


class Rental(BaseModel):
    """Canonical lease record owned by the rental registry.

    ``provider_native_ids`` maps an identifier *role* (``"rent_id"``,
    ``"order_id"``, ``"booking_id"``) to the value the provider issued.  A
    provider that issues two identifiers for one lease stores both, so later
    calls can pick whichever one the endpoint needs.

    The model is frozen; registry operations return updated copies via
    :meth:`pydantic.BaseModel.model_copy`.

    Attributes:
        id: Internal rental identifier.
        phone_number: The leased number in E.164-ish form (``+4915...``).
        provider: Source provider.
        provider_native_ids: Provider-issued identifiers keyed by role.
        service_code: Service the number was rented for.
        country_code: ISO alpha-2 country code.
        status: Canonical status.
        leased_at: When the lease started (UTC).
        expires_at: When the lease ends (UTC).
        assignee: Optional opaque reference to whoever uses the number.
        access_credentials: Opaque provider-specific secrets (e.g. the
            private inbox URL of the scrape provider).
    """

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    provider: ProviderKind
    provider_native_ids: dict[str, str] = Field(default_factory=dict)
    service_code: str = ""
    country_code: str = ""
    status: RentalStatus = RentalStatus.ACTIVE
    leased_at: datetime
    expires_at: datetime
    assignee: str | None = None
    access_credentials: dict[str, str] = Field(default_factory=dict)

    @field_validator("leased_at", "expires_at")
    @classmethod
    def _ensure_utc(cls, v: datetime) -> datetime:
        return _utc(v)

    @property
    def is_terminal(self) -> bool:
        """``True`` when the rental is expired or cancelled."""
        return self.status in TERMINAL_STATUSES

    def native_id(self, *roles: str) -> str | None:
        """Return the first provider id present among *roles*, in order.

        Example::

            rental.native_id("booking_id", "order_id")
        """
        for role in roles:
            value = self.provider_native_ids.get(role)
            if value:
                return value
        return None

    def is_due(self, now: datetime) -> bool:
        """``True`` when an active rental's expiry time has passed."""
        return self.status is RentalStatus.ACTIVE and self.expires_at <= _utc(now)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class RawMessage(BaseModel):
    """Provider-neutral message as returned by an adapter's fetch call.

    Scrape- and API-specific structure never leaks past this model.
    """

    model_config = {"frozen": True}

    sender: str
    body: str
    received_at: datetime
    source: MessageSource = MessageSource.PROVIDER_API
    #: False when received_at was derived from fetch time; identity then
    #: ignores the time bucket.
    timestamp_exact: bool = True

    @field_validator("received_at")
    @classmethod
    def _ensure_utc(cls, v: datetime) -> datetime:
        return _utc(v)


class Message(BaseModel):
    """A persisted message in the dedup store."""

    model_config = {"frozen": True}

    id: str
    rental_id: str
    sender: str
    body: str
    received_at: datetime
    source: MessageSource
    dedup_key: str

    @field_validator("received_at")
    @classmethod
    def _ensure_utc(cls, v: datetime) -> datetime:
        return _utc(v)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class CatalogService(BaseModel):
    """One rentable service as advertised by a provider.

    Attributes:
        code: Value to pass as :attr:`RentalSpec.service`.
        name: Human-readable label, when the provider sends one.
        price: Provider price for the quoted duration, in the account currency.
        available: Numbers in stock, when reported.
    """

    model_config = {"frozen": True}

    code: str
    name: str = ""
    price: float | None = None
    available: int | None = None


class ServiceCatalog(BaseModel):
    """What a provider can currently rent: services and country codes."""

    model_config = {"frozen": True}

    provider: ProviderKind
    services: list[CatalogService] = Field(default_factory=list)
    countries: list[str] = Field(default_factory=list)
