"""Change notification for rentals (subscriptions, unseen counts, reconnection)."""

from smsrental.notifiers.realtime import ChangeObserver, RealtimeNotifier

__all__ = ["RealtimeNotifier", "ChangeObserver"]
