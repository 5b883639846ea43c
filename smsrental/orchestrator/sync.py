"""Per-rental message sync: fetch → normalise → dedup-store.

:class:`SyncOrchestrator` is the only component that calls a provider's
``fetch_messages``.  For one rental it:

1. Selects the fetch channel from the provider identity
   (:func:`~smsrental.orchestrator.channels.select_channel`).
2. Calls the adapter under a timeout, retrying retryable failures with
   exponential back-off (**tenacity**).  Retries are always safe because the
   dedup store is idempotent.
3. Upserts the results into the
   :class:`~smsrental.storage.messages.MessageStore`.
4. Returns a tagged :class:`SyncResult`.  Expected failures (provider
   unavailable, rejected, relay exhaustion, parse failure) never raise.

Concurrency
-----------
At most one sync runs per rental.  A request for a rental that is already
syncing joins the in-flight :class:`asyncio.Task` instead of starting a new
one.  Callers await the task through :func:`asyncio.shield`: if a caller is
cancelled (its HTTP request dropped, its view closed) the fetch still
completes and its messages are still written; only that caller's result is
lost.

Triggers
--------
``user_refresh`` and ``view_open`` always call the provider.
``realtime_change`` is a local read-through and never calls the provider.
``scheduled`` consults :class:`~smsrental.orchestrator.backoff.SyncBackoffRegistry`
(minimum gap, failure back-off) and may be skipped.

Sync never changes a rental's status; terminal rentals are still synced
because providers may deliver late messages.

Typical usage::

    orchestrator = SyncOrchestrator(repo, store, providers)
    result = await orchestrator.sync(rental.id, SyncTrigger.USER_REFRESH)
    if not result.success:
        logger.warning("sync failed: %s", result.error_message)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from smsrental.core import events
from smsrental.core.exceptions import (
    FailureKind,
    ProviderError,
    ProviderUnavailableError,
    SmsRentalError,
)
from smsrental.core.ids import new_message_id
from smsrental.core.logging_config import SYNC_ID_CTX
from smsrental.core.models import ProviderKind, RawMessage, Rental
from smsrental.orchestrator.backoff import SyncBackoffRegistry
from smsrental.orchestrator.channels import FetchChannel, select_channel
from smsrental.providers.base import BaseProvider
from smsrental.storage.messages import MessageStore
from smsrental.storage.rentals import RentalRepository

__all__ = ["SyncTrigger", "SyncResult", "SyncOrchestrator"]

logger = logging.getLogger(__name__)

#: Default per-attempt provider timeout in seconds.
_DEFAULT_TIMEOUT: Final[float] = 15.0

#: Default number of attempts for retryable failures.
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3


class SyncTrigger(StrEnum):
    """What asked for a sync."""

    USER_REFRESH = "user_refresh"
    VIEW_OPEN = "view_open"
    REALTIME_CHANGE = "realtime_change"
    SCHEDULED = "scheduled"

    @property
    def calls_provider(self) -> bool:
        return self is not SyncTrigger.REALTIME_CHANGE

    @property
    def forced(self) -> bool:
        """``True`` for triggers that bypass the scheduled back-off."""
        return self in (SyncTrigger.USER_REFRESH, SyncTrigger.VIEW_OPEN)


@dataclass(frozen=True)
class SyncResult:
    """Tagged outcome of one sync.

    Attributes:
        rental_id: Rental that was synced.
        new_messages_count: Messages newly inserted into the store.
        success: ``False`` when the provider call failed.
        error_kind: Failure tag when *success* is false.
        error_message: Human-readable failure text (provider text verbatim).
        retryable: Whether retrying later may succeed.
        skipped: ``True`` when a scheduled sync was skipped by back-off.
    """

    rental_id: str
    new_messages_count: int = 0
    success: bool = True
    error_kind: FailureKind | None = None
    error_message: str | None = None
    retryable: bool = False
    skipped: bool = False

    @classmethod
    def from_error(cls, rental_id: str, exc: SmsRentalError) -> SyncResult:
        return cls(
            rental_id=rental_id,
            success=False,
            error_kind=exc.kind,
            error_message=str(exc),
            retryable=exc.retryable,
        )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, SmsRentalError) and exc.retryable


class SyncOrchestrator:
    """Drives provider fetches into the dedup store, one task per rental.

    Args:
        repo: Rental registry (read-only use).
        store: Message dedup store.
        providers: Adapters keyed by provider kind.  A rental whose provider
            is absent yields a ``config`` failure result.
        timeout: Per-attempt provider timeout in seconds.
        max_attempts: Attempts for retryable failures (1 disables retries).
        backoff: Registry consulted by ``scheduled`` syncs.  A default
            registry is created when omitted.
        retry_wait: tenacity wait strategy between attempts.  Defaults to
            exponential back-off (1 s, 2 s, 4 s … capped at 30 s).
    """

    def __init__(
        self,
        repo: RentalRepository,
        store: MessageStore,
        providers: Mapping[ProviderKind, BaseProvider],
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        backoff: SyncBackoffRegistry | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._repo = repo
        self._store = store
        self._providers = providers
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff or SyncBackoffRegistry()
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=30)
        self._inflight: dict[str, asyncio.Task[SyncResult]] = {}

    @property
    def backoff(self) -> SyncBackoffRegistry:
        return self._backoff

    def in_flight(self, rental_id: str) -> bool:
        """``True`` while a sync task for *rental_id* is running."""
        return rental_id in self._inflight

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def sync(
        self,
        rental_id: str,
        trigger: SyncTrigger = SyncTrigger.USER_REFRESH,
    ) -> SyncResult:
        """Sync one rental and return the tagged outcome.

        Raises:
            RentalNotFoundError: *rental_id* does not exist.
        """
        rental = await self._repo.get(rental_id)

        if not trigger.calls_provider:
            logger.debug("Rental %s: %s is a local read-through", rental_id, trigger)
            return SyncResult(rental_id=rental_id)

        task = self._inflight.get(rental_id)
        if task is not None:
            logger.debug(
                "Rental %s: joining in-flight sync (%s)",
                rental_id,
                trigger,
                extra={"event": events.SYNC_COALESCED, "rental_id": rental_id},
            )
            return await asyncio.shield(task)

        if trigger is SyncTrigger.SCHEDULED and not self._backoff.allow(rental_id):
            logger.debug(
                "Rental %s: scheduled sync skipped",
                rental_id,
                extra={"event": events.SYNC_SKIPPED_BACKOFF, "rental_id": rental_id},
            )
            return SyncResult(rental_id=rental_id, skipped=True)

        task = asyncio.create_task(self._run(rental, trigger), name=f"sync-{rental_id}")
        self._inflight[rental_id] = task
        task.add_done_callback(lambda _t, rid=rental_id: self._inflight.pop(rid, None))
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for every in-flight sync to finish (used on shutdown)."""
        tasks = list(self._inflight.values())
        if tasks:
            logger.info("Waiting for %d in-flight sync(s)", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self, rental: Rental, trigger: SyncTrigger) -> SyncResult:
        SYNC_ID_CTX.set(new_message_id()[:8])
        channel = select_channel(rental.provider)
        t0 = time.monotonic()
        logger.info(
            "Sync start: rental %s (%s via %s, %s)",
            rental.id,
            rental.provider,
            channel,
            trigger,
            extra={"event": events.SYNC_START, "rental_id": rental.id},
        )

        if channel is FetchChannel.LOCAL:
            return SyncResult(rental_id=rental.id)

        provider = self._providers.get(rental.provider)
        if provider is None:
            message = f"No adapter configured for provider {rental.provider!r}"
            logger.error(
                "Rental %s: %s",
                rental.id,
                message,
                extra={"event": events.SYNC_ERROR, "rental_id": rental.id},
            )
            return SyncResult(
                rental_id=rental.id,
                success=False,
                error_kind=FailureKind.CONFIG,
                error_message=message,
            )

        self._backoff.record_attempt(rental.id)
        try:
            raws = await self._fetch_with_retry(provider, rental)
        except ProviderError as exc:
            self._backoff.record_failure(rental.id)
            logger.warning(
                "Sync failed: rental %s (%s, retryable=%s): %s",
                rental.id,
                exc.kind,
                exc.retryable,
                exc,
                extra={"event": events.SYNC_ERROR, "rental_id": rental.id},
            )
            return SyncResult.from_error(rental.id, exc)

        new_count = await self._store.upsert_many(rental.id, raws)
        self._backoff.record_success(rental.id)
        logger.info(
            "Sync ok: rental %s, %d fetched, %d new (%.2f s)",
            rental.id,
            len(raws),
            new_count,
            time.monotonic() - t0,
            extra={"event": events.SYNC_OK, "rental_id": rental.id},
        )
        return SyncResult(rental_id=rental.id, new_messages_count=new_count)

    async def _fetch_with_retry(self, provider: BaseProvider, rental: Rental) -> list[RawMessage]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "Rental %s: fetch attempt %d/%d",
                        rental.id,
                        attempt.retry_state.attempt_number,
                        self._max_attempts,
                    )
                return await self._fetch_once(provider, rental)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _fetch_once(self, provider: BaseProvider, rental: Rental) -> list[RawMessage]:
        try:
            return await asyncio.wait_for(provider.fetch_messages(rental), timeout=self._timeout)
        except TimeoutError:
            raise ProviderUnavailableError(
                str(rental.provider), f"fetch timed out after {self._timeout:.0f}s"
            ) from None
