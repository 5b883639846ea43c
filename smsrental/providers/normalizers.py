"""Provider-level field normalisation utilities.

Every adapter maps its raw payloads through these helpers before building a
:class:`~smsrental.core.models.RawMessage` or
:class:`~smsrental.core.models.Rental`.  Keeping the parsing here means:

* Timestamp parsing is tested once, not per provider.
* Providers that name the same field differently (``text`` / ``message`` /
  ``messageText``) share one lookup helper.
* The scraper and the API adapters agree on what a plausible message is.

Typical usage::

    from smsrental.providers.normalizers import first_present, parse_timestamp

    body = first_present(raw, "text", "message")
    received = parse_timestamp(raw.get("date"), now=fetched_at)
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

__all__ = [
    "normalise_text",
    "normalise_phone",
    "first_present",
    "parse_float",
    "parse_int",
    "parse_timestamp",
    "parse_timestamp_exact",
    "is_plausible_message",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_WHITESPACE_RE: re.Pattern[str] = re.compile(r"\s+")
_NON_DIGIT_RE: re.Pattern[str] = re.compile(r"\D")
_EPOCH_RE: re.Pattern[str] = re.compile(r"^\d{9,13}(\.\d+)?$")
_RELATIVE_RE: re.Pattern[str] = re.compile(
    r"(\d+)\s*(sec|second|min|minute|hour|hr|day)s?\s+ago", re.IGNORECASE
)
_TIME_ONLY_RE: re.Pattern[str] = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_SYMBOLS_ONLY_RE: re.Pattern[str] = re.compile(r"^[\W_]+$")

#: Absolute formats seen across providers and the scraped inbox, tried in order.
_DATETIME_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y %H:%M",
    "%b %d, %Y %I:%M %p",
    "%b %d, %Y %I:%M:%S %p",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
)

_RELATIVE_UNITS: dict[str, str] = {
    "sec": "seconds",
    "second": "seconds",
    "min": "minutes",
    "minute": "minutes",
    "hour": "hours",
    "hr": "hours",
    "day": "days",
}

#: Lower-cased bodies/senders that are page furniture rather than real SMS.
_PLACEHOLDERS: frozenset[str] = frozenset({"test", "example", "sample", "n/a", "none"})


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


def normalise_text(value: Any, *, fallback: str = "") -> str:
    """Strip and collapse whitespace; non-strings are converted via ``str()``.

    Examples::

        normalise_text("  Your code\\n 1234 ")  # → "Your code 1234"
        normalise_text(None)                  # → ""
    """
    if value is None:
        return fallback
    cleaned = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return cleaned if cleaned else fallback


def normalise_phone(number: Any, country_prefix: Any = None) -> str:
    """Return a ``+``-prefixed digit string.

    Providers report numbers with or without the country prefix, with or
    without ``+``.  When *country_prefix* is given and *number* does not
    already start with it, it is prepended.

    Examples::

        normalise_phone("4915112345678")        # → "+4915112345678"
        normalise_phone("15112345678", "49")    # → "+4915112345678"
        normalise_phone("+49 151 1234")         # → "+491511234"
    """
    digits = _NON_DIGIT_RE.sub("", str(number or ""))
    prefix = _NON_DIGIT_RE.sub("", str(country_prefix or ""))
    if prefix and not digits.startswith(prefix):
        digits = prefix + digits
    return f"+{digits}" if digits else ""


def first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-empty value among *keys* in *raw*, else ``None``."""
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_float(value: Any) -> float | None:
    """Return *value* as a finite float, or ``None`` when it is not a number.

    Providers send prices as numbers or strings, sometimes with a decimal
    comma.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip().replace(",", "."))
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_int(value: Any) -> int | None:
    """Like :func:`parse_float`, truncated to an int."""
    number = parse_float(value)
    return int(number) if number is not None else None


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def _from_epoch(value: float) -> datetime:
    # Millisecond epochs are 13 digits.
    if value > 1e11:
        value /= 1000.0
    return datetime.fromtimestamp(value, tz=UTC)


def parse_timestamp(value: Any, *, now: datetime | None = None) -> datetime:
    """Parse a provider timestamp into an aware UTC datetime.

    Accepted inputs, in order:

    * ``datetime`` (naive → UTC).
    * ``int`` / ``float`` / digit strings: epoch seconds or milliseconds.
    * ISO 8601 strings (``2026-03-01T09:15:02Z``).
    * The formats in :data:`_DATETIME_FORMATS`.
    * ``HH:MM[:SS]``: today's date (relative to *now*).  A time later than
      *now* is assumed to be from yesterday.
    * ``"<n> <unit> ago"`` relative phrases.

    Anything else falls back to *now* (default: the current UTC time) and is
    logged at DEBUG.  Naive results are treated as UTC.
    """
    return parse_timestamp_exact(value, now=now)[0]


def parse_timestamp_exact(value: Any, *, now: datetime | None = None) -> tuple[datetime, bool]:
    """Like :func:`parse_timestamp`, also reporting whether the time is exact.

    The flag is ``False`` when the result is derived from *now* rather than
    read from *value*: missing or unparseable input, and ``"<n> <unit> ago"``
    phrases.  Such a datetime moves between two fetches of the same message,
    so it must not take part in message identity.
    """
    reference = now or datetime.now(UTC)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=UTC)

    if value is None or value == "" or isinstance(value, bool):
        return reference, False

    if isinstance(value, datetime):
        return (value if value.tzinfo else value.replace(tzinfo=UTC)), True

    if isinstance(value, int | float):
        return _from_epoch(float(value)), True

    text = normalise_text(value)

    if _EPOCH_RE.match(text):
        return _from_epoch(float(text)), True

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    else:
        return (parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)), True

    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=UTC), True
        except ValueError:
            continue

    match = _TIME_ONLY_RE.match(text)
    if match:
        hour, minute, second = (int(g) if g else 0 for g in match.groups())
        if hour < 24 and minute < 60 and second < 60:
            candidate = reference.replace(hour=hour, minute=minute, second=second, microsecond=0)
            if candidate > reference:
                candidate -= timedelta(days=1)
            return candidate, True

    match = _RELATIVE_RE.search(text)
    if match:
        amount = int(match.group(1))
        unit = _RELATIVE_UNITS[match.group(2).lower()]
        return reference - timedelta(**{unit: amount}), False

    logger.debug("Unrecognised timestamp %r; using reference time", text)
    return reference, False


# ---------------------------------------------------------------------------
# Plausibility
# ---------------------------------------------------------------------------


def is_plausible_message(sender: str, body: str) -> bool:
    """Reject rows that are page furniture rather than received SMS.

    A plausible message has a sender of at least 2 characters, a body of at
    least 5, neither is a known placeholder, the body is not lorem ipsum and
    does not consist of symbols only.
    """
    if len(sender) < 2 or len(body) < 5:
        return False
    if sender.lower() in _PLACEHOLDERS or body.lower() in _PLACEHOLDERS:
        return False
    if "lorem ipsum" in body.lower():
        return False
    return not _SYMBOLS_ONLY_RE.match(body)
