"""Identifier strategy for rentals and messages.

Rental ids
----------
Rentals get an internal id from :func:`new_rental_id` (a random UUID4 hex
string).  Provider-issued identifiers are never used as the primary key: a
single lease can carry several of them (see
:attr:`~smsrental.core.models.Rental.provider_native_ids`).

Message dedup keys
------------------
:func:`dedup_key` is a deterministic SHA-256 over the rental id, the sender,
the body and a time bucket.  Providers report timestamps with varying
precision (some round to the minute, the scraper may fall back to fetch time
for unparseable dates), so the timestamp is floored to a
``bucket_seconds`` window before hashing.  The same message fetched twice
within one window therefore always yields the same key.

A timestamp derived from fetch time (for example ``"5 minutes ago"``) is not
hashed at all: it moves between fetches, so the key leaves the bucket out.

+---------------+--------------------------------------+
| Input         | Normalisation                        |
+===============+======================================+
| ``sender``    | whitespace collapsed, case-folded    |
+---------------+--------------------------------------+
| ``body``      | whitespace collapsed                 |
+---------------+--------------------------------------+
| ``received``  | UTC epoch floored to the bucket      |
+---------------+--------------------------------------+

Typical usage::

    from smsrental.core.ids import dedup_key

    key = dedup_key(rental.id, raw.sender, raw.body, raw.received_at)
"""

from __future__ import annotations

import hashlib
import logging
import re
import uuid
from datetime import UTC, datetime
from typing import Final

__all__ = [
    "DEFAULT_BUCKET_SECONDS",
    "new_rental_id",
    "new_message_id",
    "time_bucket",
    "dedup_key",
]

logger = logging.getLogger(__name__)

#: Width of the dedup time window in seconds.
DEFAULT_BUCKET_SECONDS: Final[int] = 60

_WHITESPACE_RE: re.Pattern[str] = re.compile(r"\s+")


def new_rental_id() -> str:
    """Return a fresh internal rental identifier."""
    return uuid.uuid4().hex


def new_message_id() -> str:
    """Return a fresh internal message identifier."""
    return uuid.uuid4().hex


def time_bucket(received_at: datetime, bucket_seconds: int = DEFAULT_BUCKET_SECONDS) -> int:
    """Floor *received_at* to the start of its bucket, as a UTC epoch integer.

    Naive datetimes are interpreted as UTC.

    Raises:
        ValueError: If *bucket_seconds* is not positive.
    """
    if bucket_seconds <= 0:
        raise ValueError(f"bucket_seconds must be > 0, got {bucket_seconds!r}")
    if received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=UTC)
    epoch = int(received_at.timestamp())
    return epoch - (epoch % bucket_seconds)


def dedup_key(
    rental_id: str,
    sender: str,
    body: str,
    received_at: datetime,
    bucket_seconds: int = DEFAULT_BUCKET_SECONDS,
    *,
    exact: bool = True,
) -> str:
    """Compute the content-derived identity of a message.

    Args:
        rental_id: Rental the message belongs to.
        sender: Sender label or number as reported by the provider.
        body: Message text.
        received_at: Provider-reported receive time.
        bucket_seconds: Width of the time window.
        exact: Whether *received_at* was reported by the provider.  When it
            was derived from fetch time the bucket is left out, so refetching
            an unchanged inbox later still yields the same key.

    Returns:
        A 64-character lowercase hex digest.
    """
    norm_sender = _WHITESPACE_RE.sub(" ", sender).strip().casefold()
    norm_body = _WHITESPACE_RE.sub(" ", body).strip()
    bucket = str(time_bucket(received_at, bucket_seconds)) if exact else "~"
    material = "\x1f".join((rental_id, norm_sender, norm_body, bucket))
    return hashlib.sha256(material.encode("utf-8")).hexdigest()
