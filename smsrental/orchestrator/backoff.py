"""Per-rental back-off for scheduled syncs.

Automatic (``scheduled``) syncs must not hammer a provider that keeps failing
for one rental, nor poll the same rental more often than a minimum gap.
:class:`SyncBackoffRegistry` tracks both per rental id:

* **Minimum gap**: a scheduled sync is skipped when the previous attempt
  (success or failure) started less than ``min_gap`` seconds ago.
* **Failure back-off**: once a rental has failed more than
  ``failure_threshold`` times in a row, it is skipped for
  ``min(consecutive_failures × base_delay, max_delay)`` seconds after its
  last failure.  One success resets the counter.

Forced syncs (user refresh, view open) bypass the registry entirely but
still report their outcome into it.

The registry is a plain in-process object with no locking, safe for
single-threaded ``asyncio`` use.

Typical usage::

    backoff = SyncBackoffRegistry(failure_threshold=3, max_delay=900)

    if backoff.allow(rental.id):
        backoff.record_attempt(rental.id)
        ...
        backoff.record_success(rental.id)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

__all__ = ["RentalBackoffState", "SyncBackoffRegistry"]

logger = logging.getLogger(__name__)

#: Default consecutive failures tolerated before back-off applies.
_DEFAULT_FAILURE_THRESHOLD: Final[int] = 3

#: Default back-off growth per consecutive failure (seconds).
_DEFAULT_BASE_DELAY: Final[float] = 60.0

#: Default ceiling on the back-off delay (seconds).
_DEFAULT_MAX_DELAY: Final[float] = 900.0

#: Default minimum interval between two scheduled syncs of one rental.
_DEFAULT_MIN_GAP: Final[float] = 60.0


@dataclass
class RentalBackoffState:
    """Mutable state bag for one rental.

    Attributes:
        consecutive_failures: Failures since the last success.
        last_attempt: Monotonic time the last sync started, or ``None``.
        last_failure: Monotonic time of the last failure, or ``None``.
    """

    consecutive_failures: int = 0
    last_attempt: float | None = None
    last_failure: float | None = None


class SyncBackoffRegistry:
    """Tracks sync attempts and failures for every rental.

    Args:
        failure_threshold: Consecutive failures tolerated before back-off.
        base_delay: Seconds of back-off per consecutive failure.
        max_delay: Hard ceiling on the back-off.
        min_gap: Minimum seconds between scheduled syncs of one rental.
        clock: Callable returning a monotonic timestamp in seconds.
            Defaults to :func:`time.monotonic`; override in tests.
    """

    def __init__(
        self,
        failure_threshold: int = _DEFAULT_FAILURE_THRESHOLD,
        base_delay: float = _DEFAULT_BASE_DELAY,
        max_delay: float = _DEFAULT_MAX_DELAY,
        min_gap: float = _DEFAULT_MIN_GAP,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._min_gap = min_gap
        self._clock = clock or time.monotonic
        self._states: dict[str, RentalBackoffState] = {}

    def _get_state(self, rental_id: str) -> RentalBackoffState:
        if rental_id not in self._states:
            self._states[rental_id] = RentalBackoffState()
        return self._states[rental_id]

    def delay_for(self, failures: int) -> float:
        """Back-off delay after *failures* consecutive failures (0 if none)."""
        if failures <= self._failure_threshold:
            return 0.0
        return min(failures * self._base_delay, self._max_delay)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def allow(self, rental_id: str) -> bool:
        """Return ``True`` if a scheduled sync of *rental_id* may run now."""
        state = self._get_state(rental_id)
        now = self._clock()

        if state.last_attempt is not None and now - state.last_attempt < self._min_gap:
            logger.debug(
                "Rental %s synced %.0f s ago (min gap %.0f s); skipping",
                rental_id,
                now - state.last_attempt,
                self._min_gap,
            )
            return False

        delay = self.delay_for(state.consecutive_failures)
        if delay and state.last_failure is not None and now - state.last_failure < delay:
            logger.debug(
                "Rental %s backing off after %d failure(s): %.0f / %.0f s",
                rental_id,
                state.consecutive_failures,
                now - state.last_failure,
                delay,
            )
            return False
        return True

    def record_attempt(self, rental_id: str) -> None:
        self._get_state(rental_id).last_attempt = self._clock()

    def record_success(self, rental_id: str) -> None:
        state = self._get_state(rental_id)
        if state.consecutive_failures:
            logger.debug(
                "Rental %s recovered after %d failure(s)", rental_id, state.consecutive_failures
            )
        state.consecutive_failures = 0
        state.last_failure = None

    def record_failure(self, rental_id: str) -> None:
        state = self._get_state(rental_id)
        state.consecutive_failures += 1
        state.last_failure = self._clock()
        delay = self.delay_for(state.consecutive_failures)
        if delay:
            logger.warning(
                "Rental %s failed %d time(s) in a row; scheduled syncs paused for %.0f s",
                rental_id,
                state.consecutive_failures,
                delay,
            )

    def get_state(self, rental_id: str) -> RentalBackoffState:
        """Return the (live) state for *rental_id*; treat as read-only."""
        return self._get_state(rental_id)

    def forget(self, rental_id: str) -> None:
        """Drop all tracking for *rental_id* (e.g. after deletion)."""
        self._states.pop(rental_id, None)
