"""Background auto-sync for active rentals.

A *sync pass* first expires every rental whose lease time has passed, then
syncs each remaining active rental with the ``scheduled`` trigger.  Rentals
are synced one after the other so the shared SQLite connection sees a single
writer, and so that providers are not hit in bursts.

:func:`run_continuous` repeats passes with a randomised sleep drawn from
``[SYNC_INTERVAL_MIN, SYNC_INTERVAL_MAX]``.  Jitter keeps the polling pattern
from being metronomic; per-rental back-off and the minimum gap live in
:class:`~smsrental.orchestrator.backoff.SyncBackoffRegistry`.

Resource lifecycle (DB connection, provider HTTP sessions) is owned by the
caller, see :mod:`smsrental.__main__`.

Typical usage::

    stats = await run_sync_pass(repo, orchestrator)
    await run_continuous(repo, orchestrator, settings)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import NoReturn

from smsrental.core import events
from smsrental.core.models import RentalStatus
from smsrental.core.settings import Settings
from smsrental.orchestrator.sync import SyncOrchestrator, SyncResult, SyncTrigger
from smsrental.storage.rentals import RentalRepository

__all__ = [
    "SyncPassStats",
    "next_sync_interval",
    "run_sync_pass",
    "run_continuous",
]

logger = logging.getLogger(__name__)


@dataclass
class SyncPassStats:
    """Counters for one pass over the active rentals.

    Attributes:
        expired: Rentals moved to ``expired`` at the start of the pass.
        results: One :class:`SyncResult` per active rental considered.
    """

    expired: int = 0
    results: list[SyncResult] = field(default_factory=list)

    @property
    def synced(self) -> int:
        return sum(1 for r in self.results if not r.skipped)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def failed(self) -> list[str]:
        """Ids of rentals whose sync failed."""
        return [r.rental_id for r in self.results if not r.success]

    @property
    def new_messages(self) -> int:
        return sum(r.new_messages_count for r in self.results)


def next_sync_interval(settings: Settings) -> float:
    """Return a randomised sleep interval between two passes."""
    return random.uniform(settings.sync_interval_min, settings.sync_interval_max)


async def run_sync_pass(
    repo: RentalRepository,
    orchestrator: SyncOrchestrator,
    *,
    now: datetime | None = None,
) -> SyncPassStats:
    """Expire due rentals, then sync every active rental once.

    A failure for one rental never stops the pass.

    Args:
        repo: Rental registry.
        orchestrator: Sync orchestrator (its back-off registry decides which
            rentals are skipped).
        now: Reference time for expiry; defaults to the current time.

    Returns:
        Counters for the pass.
    """
    t0 = time.monotonic()
    stats = SyncPassStats()
    stats.expired = len(await repo.expire_due(now))

    for rental in await repo.list(status=RentalStatus.ACTIVE):
        try:
            result = await orchestrator.sync(rental.id, SyncTrigger.SCHEDULED)
        except Exception:
            logger.exception("Scheduled sync of rental %s raised", rental.id)
            continue
        stats.results.append(result)

    logger.info(
        "Sync pass complete: %d expired, %d synced, %d skipped, %d failed, %d new message(s) (%.1f s)",
        stats.expired,
        stats.synced,
        stats.skipped,
        len(stats.failed),
        stats.new_messages,
        time.monotonic() - t0,
        extra={"event": events.SYNC_PASS_COMPLETE},
    )
    return stats


async def _sync_loop(
    repo: RentalRepository,
    orchestrator: SyncOrchestrator,
    settings: Settings,
) -> NoReturn:
    while True:
        try:
            await run_sync_pass(repo, orchestrator)
        except Exception:
            logger.exception("Unhandled exception in sync pass; will retry after interval")

        interval = next_sync_interval(settings)
        logger.info("Next sync pass in %.0f s", interval)
        await asyncio.sleep(interval)


async def run_continuous(
    repo: RentalRepository,
    orchestrator: SyncOrchestrator,
    settings: Settings,
) -> NoReturn:
    """Run sync passes forever with randomised intervals.

    A ``SIGTERM`` handler cancels the loop; the in-flight sync is awaited via
    :meth:`SyncOrchestrator.drain` so its messages are still written.  The
    handler is removed in ``finally`` so it does not leak into a later
    :func:`asyncio.run`.

    Raises:
        asyncio.CancelledError: On shutdown (SIGTERM or Ctrl+C).
    """
    logger.info(
        "Entering continuous sync mode (interval %d-%d s)",
        settings.sync_interval_min,
        settings.sync_interval_max,
    )
    task = asyncio.create_task(_sync_loop(repo, orchestrator, settings), name="smsrental-sync-loop")

    loop = asyncio.get_running_loop()
    shutdown_signal: list[str] = []

    def _request_shutdown(signame: str) -> None:
        if not shutdown_signal:
            shutdown_signal.append(signame)
            logger.info("Received %s; shutting down sync loop", signame)
        task.cancel()

    loop.add_signal_handler(signal.SIGTERM, lambda: _request_shutdown("SIGTERM"))

    try:
        await task
    except (asyncio.CancelledError, KeyboardInterrupt):
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        await orchestrator.drain()
        logger.info(
            "Sync loop stopped%s",
            f" (signal: {shutdown_signal[0]})" if shutdown_signal else "",
        )
        raise
    finally:
        with contextlib.suppress(Exception):
            loop.remove_signal_handler(signal.SIGTERM)

    raise RuntimeError("run_continuous exited unexpectedly")
