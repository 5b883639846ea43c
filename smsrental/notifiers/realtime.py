"""Per-rental change subscriptions with visibility-driven reconnection.

:class:`RealtimeNotifier` keeps at most one subscription per rental and an
unseen-message counter for each.  Change notifications (one per newly
stored message, fed from
:meth:`~smsrental.storage.messages.MessageStore.add_listener`) increment the
counter; :meth:`RealtimeNotifier.mark_viewed` resets it when the message
list is actually shown.

The change transport does not guarantee delivery while its host is hidden
(backgrounded tab, suspended client).  The host therefore reports
visibility through :meth:`~RealtimeNotifier.on_hidden` and
:meth:`~RealtimeNotifier.on_visible`.  When the host was hidden for longer
than ``hidden_threshold`` seconds, becoming visible re-establishes every
known subscription and triggers one best-effort refresh.

The notifier is an explicitly constructed object owned by the service; its
transport, refresh action and clock are injected.

Typical usage::

    notifier = RealtimeNotifier(subscribe_fn=transport.subscribe, refresh_fn=refresh_all)
    store.add_listener(notifier.on_message)
    await notifier.subscribe(rental.id)
    ...
    notifier.on_hidden()
    await notifier.on_visible()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Final

from smsrental.core import events
from smsrental.core.models import Message

__all__ = ["RealtimeNotifier", "ChangeObserver"]

logger = logging.getLogger(__name__)

#: Hidden duration (seconds) after which subscriptions are re-established.
_DEFAULT_HIDDEN_THRESHOLD: Final[float] = 60.0

#: Called with ``(rental_id, unseen_count)`` after each change.
ChangeObserver = Callable[[str, int], None]


async def _noop_subscription(rental_id: str) -> None:
    return None


class RealtimeNotifier:
    """Tracks subscriptions and unseen counts for rentals.

    Args:
        subscribe_fn: Opens (or re-opens) the transport subscription for one
            rental.  Defaults to a no-op for in-process change feeds.
        refresh_fn: Best-effort refresh run once after a long hidden period.
        unsubscribe_fn: Closes the transport subscription for one rental.
        clock: Monotonic clock in seconds; override in tests.
        hidden_threshold: Seconds of hidden time that trigger reconnection.
    """

    def __init__(
        self,
        subscribe_fn: Callable[[str], Awaitable[None]] | None = None,
        refresh_fn: Callable[[], Awaitable[object]] | None = None,
        *,
        unsubscribe_fn: Callable[[str], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
        hidden_threshold: float = _DEFAULT_HIDDEN_THRESHOLD,
    ) -> None:
        self._subscribe_fn = subscribe_fn or _noop_subscription
        self._unsubscribe_fn = unsubscribe_fn or _noop_subscription
        self._refresh_fn = refresh_fn
        self._clock = clock or time.monotonic
        self._hidden_threshold = hidden_threshold
        self._subscriptions: set[str] = set()
        self._unseen: dict[str, int] = {}
        self._observers: list[ChangeObserver] = []
        self._hidden_since: float | None = None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @property
    def subscriptions(self) -> frozenset[str]:
        return frozenset(self._subscriptions)

    async def subscribe(self, rental_id: str) -> None:
        """Subscribe to changes of *rental_id*; a no-op if already subscribed."""
        if rental_id in self._subscriptions:
            return
        await self._subscribe_fn(rental_id)
        self._subscriptions.add(rental_id)
        self._unseen.setdefault(rental_id, 0)
        logger.debug("realtime: subscribed to rental %s", rental_id)

    async def unsubscribe(self, rental_id: str) -> None:
        if rental_id not in self._subscriptions:
            return
        self._subscriptions.discard(rental_id)
        self._unseen.pop(rental_id, None)
        await self._unsubscribe_fn(rental_id)
        logger.debug("realtime: unsubscribed from rental %s", rental_id)

    def add_observer(self, observer: ChangeObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: ChangeObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    # ------------------------------------------------------------------
    # Changes
    # ------------------------------------------------------------------

    def notify_change(self, rental_id: str) -> int:
        """Record one change for *rental_id* and return its unseen count.

        Changes for rentals without a subscription are not delivered.
        """
        if rental_id not in self._subscriptions:
            return 0
        count = self._unseen.get(rental_id, 0) + 1
        self._unseen[rental_id] = count
        for observer in list(self._observers):
            try:
                observer(rental_id, count)
            except Exception:  # noqa: BLE001
                logger.warning("realtime: observer %r failed", observer, exc_info=True)
        return count

    def on_message(self, message: Message) -> None:
        """Store listener adapter: one change per inserted message."""
        self.notify_change(message.rental_id)

    def unseen_count(self, rental_id: str) -> int:
        return self._unseen.get(rental_id, 0)

    def mark_viewed(self, rental_id: str) -> None:
        """Reset the unseen count once the message list has been shown."""
        if rental_id in self._unseen:
            self._unseen[rental_id] = 0

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    def on_hidden(self) -> None:
        if self._hidden_since is None:
            self._hidden_since = self._clock()

    async def on_visible(self) -> bool:
        """Handle the host becoming visible again.

        Returns:
            ``True`` if subscriptions were re-established.
        """
        hidden_since, self._hidden_since = self._hidden_since, None
        if hidden_since is None:
            return False
        hidden_for = self._clock() - hidden_since
        if hidden_for <= self._hidden_threshold:
            return False

        logger.info(
            "realtime: hidden for %.0f s, re-establishing %d subscription(s)",
            hidden_for,
            len(self._subscriptions),
            extra={"event": events.REALTIME_RECONNECT},
        )
        for rental_id in sorted(self._subscriptions):
            try:
                await self._subscribe_fn(rental_id)
            except Exception:  # noqa: BLE001
                logger.warning("realtime: re-subscribe of rental %s failed", rental_id, exc_info=True)

        if self._refresh_fn is not None:
            try:
                await self._refresh_fn()
            except Exception:  # noqa: BLE001
                logger.warning("realtime: refresh after reconnect failed", exc_info=True)
        return True

    async def close(self) -> None:
        """Drop every subscription and observer."""
        for rental_id in list(self._subscriptions):
            try:
                await self.unsubscribe(rental_id)
            except Exception:  # noqa: BLE001
                logger.warning("realtime: unsubscribe of rental %s failed", rental_id, exc_info=True)
        self._observers.clear()
        self._hidden_since = None
