"""Structured log event names.

Key transitions emit a record with an ``event`` field passed via
``extra={"event": events.X}``.  In ``LOG_FORMAT=json`` mode the value appears
as a top-level ``event`` key; in text mode the message is self-describing and
the field is not rendered.

Usage example::

    import logging
    from smsrental.core import events

    logger = logging.getLogger(__name__)

    logger.info("Rental created", extra={"event": events.RENTAL_CREATED})
"""

from __future__ import annotations

__all__ = [
    # Rental lifecycle
    "RENTAL_CREATED",
    "RENTAL_EXTENDED",
    "RENTAL_CANCELLED",
    "RENTAL_EXPIRED",
    "RENTAL_ASSIGNED",
    "RENTAL_DELETED",
    # Provider
    "PROVIDER_WARNING",
    "RELAY_FAILED",
    "RELAY_EXHAUSTED",
    "PARSE_FAILURE",
    # Sync
    "SYNC_START",
    "SYNC_OK",
    "SYNC_ERROR",
    "SYNC_COALESCED",
    "SYNC_SKIPPED_BACKOFF",
    "SYNC_PASS_COMPLETE",
    "MESSAGE_INSERTED",
    # Cache / realtime
    "CACHE_HIT",
    "CACHE_STALE",
    "CACHE_LOAD_ERROR",
    "REALTIME_RECONNECT",
]

# ---------------------------------------------------------------------------
# Rental lifecycle
# ---------------------------------------------------------------------------

#: A provider lease (or manual number) was recorded in the registry.
RENTAL_CREATED: str = "RENTAL_CREATED"

#: ``expires_at`` moved forward.
RENTAL_EXTENDED: str = "RENTAL_EXTENDED"

#: Canonical status became ``cancelled``.
RENTAL_CANCELLED: str = "RENTAL_CANCELLED"

#: Canonical status became ``expired`` (time-triggered).
RENTAL_EXPIRED: str = "RENTAL_EXPIRED"

#: Assignee set or force-replaced.
RENTAL_ASSIGNED: str = "RENTAL_ASSIGNED"

#: A manual rental was hard-deleted.
RENTAL_DELETED: str = "RENTAL_DELETED"

# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

#: Best-effort provider call (extend/cancel) failed; canonical state applied anyway.
PROVIDER_WARNING: str = "PROVIDER_WARNING"

#: One scrape relay failed; the next one is tried.
RELAY_FAILED: str = "RELAY_FAILED"

#: Every scrape relay failed for one fetch.
RELAY_EXHAUSTED: str = "RELAY_EXHAUSTED"

#: A provider payload had an unrecognised structure.
PARSE_FAILURE: str = "PARSE_FAILURE"

# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------

#: A rental sync started a provider fetch.
SYNC_START: str = "SYNC_START"

#: A rental sync wrote its results.
SYNC_OK: str = "SYNC_OK"

#: A rental sync ended with a tagged failure.
SYNC_ERROR: str = "SYNC_ERROR"

#: A sync request joined an already running sync for the same rental.
SYNC_COALESCED: str = "SYNC_COALESCED"

#: A scheduled sync was skipped because the rental is backing off.
SYNC_SKIPPED_BACKOFF: str = "SYNC_SKIPPED_BACKOFF"

#: One scheduler pass over all active rentals finished.
SYNC_PASS_COMPLETE: str = "SYNC_PASS_COMPLETE"

#: A new message row was inserted into the dedup store.
MESSAGE_INSERTED: str = "MESSAGE_INSERTED"

# ---------------------------------------------------------------------------
# Cache / realtime
# ---------------------------------------------------------------------------

#: Fresh snapshot served without invoking the loader.
CACHE_HIT: str = "CACHE_HIT"

#: Stale snapshot served inside the cooling period.
CACHE_STALE: str = "CACHE_STALE"

#: Loader raised; previous snapshot retained.
CACHE_LOAD_ERROR: str = "CACHE_LOAD_ERROR"

#: Subscriptions rebuilt after a long hidden period.
REALTIME_RECONNECT: str = "REALTIME_RECONNECT"
