"""Adapter contract shared by every SMS number provider.

Every provider (sms-activate, GoGetSMS, SMSPVA, Anosim, the
receive-sms-online scraper and operator-registered manual numbers) subclasses
:class:`BaseProvider`.

Design decisions
----------------
* **Abstract base class** rather than a ``Protocol``: subclasses share the
  lifecycle helpers and the best-effort wrappers around extend/cancel.
* **``kind`` as a class variable**: the orchestrator and the factory inspect
  it without instantiating the adapter.
* **Best-effort lease mutations**: :meth:`BaseProvider.extend` and
  :meth:`BaseProvider.cancel` are template methods around ``_extend`` and
  ``_cancel``.  A :class:`~smsrental.core.exceptions.ProviderError` raised by
  the provider call is logged and turned into a :class:`LeaseUpdate` carrying
  a warning; canonical state is applied regardless.
* **Typed failures from fetches**: :meth:`fetch_messages` raises the
  provider error subclasses; the sync orchestrator turns them into tagged
  results.

Typical usage::

    async with SmsActivateProvider(settings) as provider:
        rental = await provider.rent(spec)
        messages = await provider.fetch_messages(rental)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from types import TracebackType
from typing import ClassVar

from smsrental.core import events
from smsrental.core.exceptions import ProviderError
from smsrental.core.ids import new_rental_id
from smsrental.core.models import (
    ProviderKind,
    RawMessage,
    Rental,
    RentalSpec,
    RentalStatus,
    ServiceCatalog,
)

__all__ = ["BaseProvider", "LeaseUpdate"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaseUpdate:
    """Outcome of a best-effort extend or cancel.

    Attributes:
        rental: The rental with the canonical mutation applied (new expiry,
            or ``cancelled`` status).  Not yet persisted.
        warning: Provider failure text when the provider call did not
            succeed, else ``None``.
    """

    rental: Rental
    warning: str | None = None


class BaseProvider(ABC):
    """Abstract base for every number provider.

    Subclasses **must** declare :attr:`kind` and implement :meth:`rent` and
    :meth:`fetch_messages`.  Override ``_extend`` / ``_cancel`` when the
    provider supports those calls; the defaults are local-only.

    Attributes:
        kind: The :class:`~smsrental.core.models.ProviderKind` served.
    """

    kind: ClassVar[ProviderKind]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:  # noqa: B027
        """Release any resources held by this provider (default: no-op)."""

    async def __aenter__(self) -> BaseProvider:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def rent(self, spec: RentalSpec) -> Rental:
        """Lease a new number and return the unsaved canonical rental.

        Implementations must record **every** identifier the provider issues
        in :attr:`~smsrental.core.models.Rental.provider_native_ids`.

        Raises:
            ProviderRejectedError: The provider declined (no numbers, no
                balance, bad key, …).
            ProviderUnavailableError: Transport failure or timeout.
            ParseFailureError: The response could not be understood.
        """

    @abstractmethod
    async def fetch_messages(self, rental: Rental) -> list[RawMessage]:
        """Return every message the provider currently holds for *rental*.

        Returning messages already stored is expected; the dedup store
        discards them.

        Raises:
            ProviderError: Any subclass, tagged for the orchestrator.
        """

    async def catalog(self, *, country: str | None = None, hours: int | None = None) -> ServiceCatalog:
        """Return the services and countries this provider currently rents.

        Args:
            country: ISO alpha-2 code narrowing prices and stock, where the
                provider quotes per country.
            hours: Lease length the prices are quoted for.

        The default is an empty catalog, for sources that are registered
        rather than rented.
        """
        return ServiceCatalog(provider=self.kind)

    async def extend(self, rental: Rental, hours: int) -> LeaseUpdate:
        """Extend *rental* by *hours*; never raises a provider error."""
        self._check_owner(rental)
        fallback = rental.expires_at + timedelta(hours=hours)
        try:
            provider_expiry = await self._extend(rental, hours)
        except ProviderError as exc:
            logger.warning(
                "%s: extend of rental %s failed, applying canonical expiry %s: %s",
                self.kind,
                rental.id,
                fallback.isoformat(),
                exc,
                extra={"event": events.PROVIDER_WARNING, "rental_id": rental.id},
            )
            return LeaseUpdate(
                rental=rental.model_copy(update={"expires_at": fallback}),
                warning=str(exc),
            )
        new_expiry = max(provider_expiry or fallback, rental.expires_at)
        return LeaseUpdate(rental=rental.model_copy(update={"expires_at": new_expiry}))

    async def cancel(self, rental: Rental) -> LeaseUpdate:
        """Release *rental* at the provider; never raises a provider error."""
        self._check_owner(rental)
        cancelled = rental.model_copy(update={"status": RentalStatus.CANCELLED})
        try:
            await self._cancel(rental)
        except ProviderError as exc:
            logger.warning(
                "%s: provider-side cancel of rental %s failed, cancelling locally: %s",
                self.kind,
                rental.id,
                exc,
                extra={"event": events.PROVIDER_WARNING, "rental_id": rental.id},
            )
            return LeaseUpdate(rental=cancelled, warning=str(exc))
        return LeaseUpdate(rental=cancelled)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    async def _extend(self, rental: Rental, hours: int) -> datetime | None:
        """Provider call behind :meth:`extend`.

        Returns the provider-reported new expiry, or ``None`` to let the base
        class compute ``expires_at + hours``.  The default performs no
        provider call.
        """
        return None

    async def _cancel(self, rental: Rental) -> None:  # noqa: B027
        """Provider call behind :meth:`cancel` (default: no provider call)."""

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _build_rental(
        self,
        spec: RentalSpec,
        *,
        phone_number: str,
        native_ids: dict[str, str],
        expires_at: datetime | None,
        default_hours: int,
        credentials: dict[str, str] | None = None,
    ) -> Rental:
        """Assemble the canonical rental for a fresh lease.

        A missing provider end date falls back to ``now + default_hours``.
        Empty identifier values are dropped.
        """
        now = datetime.now(UTC)
        return Rental(
            id=new_rental_id(),
            phone_number=phone_number,
            provider=self.kind,
            provider_native_ids={k: str(v) for k, v in native_ids.items() if v not in (None, "")},
            service_code=spec.service,
            country_code=spec.country,
            status=RentalStatus.ACTIVE,
            leased_at=now,
            expires_at=expires_at or now + timedelta(hours=default_hours),
            access_credentials=credentials or {},
        )

    def _check_owner(self, rental: Rental) -> None:
        if rental.provider != self.kind:
            raise ValueError(
                f"{type(self).__name__} cannot operate on a {rental.provider} rental"
            )
