"""Session-scoped read cache and the optimistic pending overlay."""

from smsrental.cache.controller import CacheController, CacheResult
from smsrental.cache.overlay import OverlayView, PendingOverlay

__all__ = ["CacheController", "CacheResult", "PendingOverlay", "OverlayView"]
