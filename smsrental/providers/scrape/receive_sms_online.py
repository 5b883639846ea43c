"""receive-sms-online.info scrape adapter.

receive-sms-online.info has no API: each number comes with a private inbox
page ``https://receive-sms-online.info/private.php?phone=...&key=...``.  The
page cannot be fetched directly (the host blocks non-browser clients), so the
adapter goes through an **ordered chain of CORS relays**, trying each until
one returns a usable page.  A failing relay is logged and skipped; only when
every relay has failed does the fetch raise
:class:`~smsrental.core.exceptions.RelayExhaustedError`.

Everything scrape-specific stays in this module.  Callers only ever see
:class:`~smsrental.core.models.RawMessage` values.

Relay handling
--------------
* The target URL is appended URL-encoded to the relay prefix.
* ``allorigins.win/get`` wraps the page in JSON (``{"contents": "<html>"}``).
* A relay "fails" on transport errors, non-2xx, bodies shorter than
  :data:`_MIN_BODY_CHARS`, or an error/bot-check page.

Parsing
-------
Message rows are ``table tbody tr`` elements whose ``td`` cells carry
``data-label`` attributes.  The labels have been observed with trailing
whitespace and colons (``"From   :"``), so they are compared after
normalisation, by prefix.  Pages without labelled cells fall back to plain
three-column tables (From | Message | Added).

Typical usage::

    provider = ReceiveSmsOnlineProvider(settings)
    messages = await provider.fetch_messages(rental)
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import Final
from urllib.parse import parse_qs, quote, urlparse

from bs4 import BeautifulSoup
from bs4.element import Tag

from smsrental.core import events
from smsrental.core.exceptions import (
    ConfigError,
    ParseFailureError,
    ProviderError,
    ProviderRejectedError,
    RelayExhaustedError,
)
from smsrental.core.models import MessageSource, ProviderKind, RawMessage, Rental, RentalSpec
from smsrental.core.settings import Settings
from smsrental.providers.api.http_client import ProviderHttpClient
from smsrental.providers.base import BaseProvider
from smsrental.providers.normalizers import (
    is_plausible_message,
    normalise_text,
    parse_timestamp_exact,
)

__all__ = [
    "ReceiveSmsOnlineProvider",
    "validate_inbox_url",
    "parse_inbox",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_INBOX_HOSTS: Final[frozenset[str]] = frozenset(
    {"receive-sms-online.info", "www.receive-sms-online.info"}
)
_INBOX_PATH: Final[str] = "/private.php"

#: Shorter bodies are relay error stubs, never a real inbox page.
_MIN_BODY_CHARS: Final[int] = 100

#: Substrings (lower-case) identifying relay or bot-protection error pages.
_ERROR_PAGE_MARKERS: Final[tuple[str, ...]] = (
    "access denied",
    "forbidden",
    "error 403",
    "blocked",
    "bot detected",
    "cloudflare",
    "security check",
    "rate limit",
    "too many requests",
)

#: Substrings (lower-case) shown by the inbox when nothing has arrived.
_EMPTY_INBOX_MARKERS: Final[tuple[str, ...]] = (
    "no messages",
    "no sms",
    "waiting for sms",
)

#: Relay prefixes whose response is a JSON envelope with the page in ``contents``.
_JSON_ENVELOPE_MARKER: Final[str] = "allorigins.win/get"

_HTML_ACCEPT: Final[str] = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

_LABEL_RE: re.Pattern[str] = re.compile(r"[\s:]+$")


# ---------------------------------------------------------------------------
# URL validation
# ---------------------------------------------------------------------------


def validate_inbox_url(url: str) -> str:
    """Return *url* stripped if it is a private inbox URL.

    Raises:
        ProviderRejectedError: When the host, path, or ``phone`` / ``key``
            query parameters do not match.
    """
    candidate = url.strip()
    parsed = urlparse(candidate)
    query = parse_qs(parsed.query)
    if (
        parsed.scheme not in {"http", "https"}
        or parsed.hostname not in _INBOX_HOSTS
        or parsed.path != _INBOX_PATH
        or not query.get("phone")
        or not query.get("key")
    ):
        raise ProviderRejectedError(
            str(ProviderKind.RECEIVE_SMS_ONLINE),
            f"Not a private inbox URL: {candidate[:120]!r}",
            hint="Expected https://receive-sms-online.info/private.php?phone=...&key=...",
        )
    return candidate


# ---------------------------------------------------------------------------
# Parsing (module-level, stateless)
# ---------------------------------------------------------------------------


def _label_key(raw_label: str | list[str] | None) -> str:
    if not raw_label:
        return ""
    text = raw_label if isinstance(raw_label, str) else " ".join(raw_label)
    return _LABEL_RE.sub("", normalise_text(text)).lower()


def _cell_text(cell: Tag) -> str:
    return normalise_text(cell.get_text(" ", strip=True))


def _labelled_rows(soup: BeautifulSoup) -> list[tuple[str, str, str]]:
    rows: list[tuple[str, str, str]] = []
    for tr in soup.select("table tbody tr"):
        sender = body = added = None
        for td in tr.find_all("td"):
            key = _label_key(td.get("data-label"))
            if key.startswith("from"):
                sender = _cell_text(td)
            elif key.startswith("message"):
                body = _cell_text(td)
            elif key.startswith("added"):
                added = _cell_text(td)
        if sender is not None and body is not None and added is not None:
            rows.append((sender, body, added))
    return rows


def _column_rows(soup: BeautifulSoup) -> list[tuple[str, str, str]]:
    rows: list[tuple[str, str, str]] = []
    for table in soup.find_all("table"):
        for tr in table.find_all("tr"):
            cells = tr.find_all("td")
            if len(cells) != 3:
                continue
            sender, body, added = (_cell_text(c) for c in cells)
            if sender.lower().startswith("from") and body.lower().startswith("message"):
                continue
            rows.append((sender, body, added))
    return rows


def _has_data_rows(soup: BeautifulSoup) -> bool:
    """True when some table row carries cells other than a From/Message header."""
    for tr in soup.select("table tr"):
        cells = [_cell_text(td) for td in tr.find_all("td")]
        if not any(cells):
            continue
        if len(cells) >= 2 and cells[0].lower().startswith("from") and cells[1].lower().startswith("message"):
            continue
        return True
    return False


def parse_inbox(html: str, *, fetched_at: datetime | None = None) -> list[RawMessage]:
    """Extract messages from an inbox page.

    Args:
        html: Page markup as returned through a relay.
        fetched_at: Reference time for relative / time-only timestamps.

    Returns:
        Messages in page order, implausible rows dropped.  Empty for an
        inbox that shows no messages or an empty table.

    Raises:
        ParseFailureError: The page has no empty-inbox notice and either no
            table at all or a table whose data rows match neither layout.
    """
    reference = fetched_at or datetime.now(UTC)
    soup = BeautifulSoup(html, "html.parser")

    rows = _labelled_rows(soup) or _column_rows(soup)
    if not rows:
        page_text = soup.get_text(" ", strip=True).lower()
        if any(m in page_text for m in _EMPTY_INBOX_MARKERS):
            return []
        if soup.find("table") is None:
            reason = "No message table found in inbox page"
        elif _has_data_rows(soup):
            reason = "Message table has rows but none could be parsed"
        else:
            return []
        raise ParseFailureError(
            str(ProviderKind.RECEIVE_SMS_ONLINE),
            reason,
            snippet=normalise_text(html)[:200],
        )

    messages: list[RawMessage] = []
    for sender, body, added in rows:
        if not is_plausible_message(sender, body):
            logger.debug("receive_sms_online: dropping implausible row %r / %r", sender, body[:40])
            continue
        received_at, exact = parse_timestamp_exact(added, now=reference)
        messages.append(
            RawMessage(
                sender=sender,
                body=body,
                received_at=received_at,
                timestamp_exact=exact,
                source=MessageSource.SCRAPE,
            )
        )
    return messages


def _is_error_page(html: str) -> bool:
    lowered = html.lower()
    if "<table" in lowered:
        return False
    return any(marker in lowered for marker in _ERROR_PAGE_MARKERS)


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class ReceiveSmsOnlineProvider(BaseProvider):
    """Scrape adapter reading a private inbox page through CORS relays.

    Numbers are registered by an operator (see
    :meth:`~smsrental.service.RentalService.register_manual`); they cannot be
    rented or extended through this adapter.  Cancelling is local-only.

    Args:
        settings: Application settings (relay list, timeout).
        http_client: Optional pre-built client.  Relays are tried once
            each, so the default client performs no retries of its own.

    Raises:
        ConfigError: If the relay list is empty.
    """

    kind = ProviderKind.RECEIVE_SMS_ONLINE

    def __init__(
        self,
        settings: Settings,
        http_client: ProviderHttpClient | None = None,
    ) -> None:
        if not settings.receive_sms_relays:
            raise ConfigError("RECEIVE_SMS_RELAYS is empty; the scrape provider needs at least one relay")
        self._relays: list[str] = list(settings.receive_sms_relays)
        self._http = http_client or ProviderHttpClient(
            provider=str(self.kind),
            timeout=settings.provider_timeout_s,
            max_attempts=1,
        )
        self._owns_http = http_client is None

    @property
    def relays(self) -> list[str]:
        return list(self._relays)

    # ------------------------------------------------------------------
    # BaseProvider interface
    # ------------------------------------------------------------------

    async def rent(self, spec: RentalSpec) -> Rental:
        raise ProviderRejectedError(
            str(self.kind),
            "RENT_UNSUPPORTED",
            hint="receive-sms-online numbers are registered with their inbox URL, not rented.",
        )

    async def _extend(self, rental: Rental, hours: int) -> datetime | None:
        raise ProviderRejectedError(
            str(self.kind),
            "EXTEND_UNSUPPORTED",
            hint="Extend the number on receive-sms-online.info; only the local expiry changes here.",
        )

    async def fetch_messages(self, rental: Rental) -> list[RawMessage]:
        target = rental.access_credentials.get("url")
        if not target:
            raise ProviderRejectedError(
                str(self.kind), f"Rental {rental.id} has no inbox URL", hint="Re-register the number."
            )
        target = validate_inbox_url(target)
        html = await self._fetch_via_relays(target)
        try:
            messages = parse_inbox(html, fetched_at=datetime.now(UTC))
        except ParseFailureError as exc:
            logger.error(
                "receive_sms_online: unrecognised inbox page for rental %s: %r",
                rental.id,
                exc.snippet,
                extra={"event": events.PARSE_FAILURE, "rental_id": rental.id},
            )
            raise
        logger.debug("receive_sms_online: rental %s inbox has %d message(s)", rental.id, len(messages))
        return messages

    async def close(self) -> None:
        if self._owns_http:
            await self._http.close()

    # ------------------------------------------------------------------
    # Relay chain
    # ------------------------------------------------------------------

    async def _fetch_via_relays(self, target: str) -> str:
        """Return the first usable page body, trying relays in order.

        Raises:
            RelayExhaustedError: Every relay failed.
        """
        encoded = quote(target, safe="")
        attempts: list[tuple[str, str]] = []

        for relay in self._relays:
            try:
                html = await self._fetch_one(relay, relay + encoded)
            except ProviderError as exc:
                reason = exc.detail
            else:
                if len(html) < _MIN_BODY_CHARS:
                    reason = f"body too short ({len(html)} chars)"
                elif _is_error_page(html):
                    reason = "error or bot-check page"
                else:
                    if attempts:
                        logger.info(
                            "receive_sms_online: relay %s succeeded after %d failure(s)",
                            relay,
                            len(attempts),
                        )
                    return html

            attempts.append((relay, reason))
            logger.warning(
                "receive_sms_online: relay %s failed: %s",
                relay,
                reason,
                extra={"event": events.RELAY_FAILED},
            )

        logger.error(
            "receive_sms_online: all %d relay(s) failed",
            len(attempts),
            extra={"event": events.RELAY_EXHAUSTED},
        )
        raise RelayExhaustedError(str(self.kind), attempts)

    async def _fetch_one(self, relay: str, url: str) -> str:
        response = await self._http.get(url, headers={"Accept": _HTML_ACCEPT})
        if _JSON_ENVELOPE_MARKER in relay:
            try:
                payload = response.json()
            except ValueError:
                raise ParseFailureError(str(self.kind), "relay JSON envelope unreadable") from None
            contents = payload.get("contents") if isinstance(payload, dict) else None
            if not isinstance(contents, str):
                raise ParseFailureError(str(self.kind), "relay JSON envelope lacks contents")
            return contents
        return response.text
