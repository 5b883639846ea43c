"""Live integration tests: message fetching against real endpoints.

These tests call the real sms-activate API and the real
receive-sms-online.info inbox (through the configured relays).  They only
*read* existing leases, so running them never rents or cancels a number.

Default behaviour
-----------------
All tests are marked ``@pytest.mark.integration`` and are excluded from the
default run (``addopts = "-m 'not integration'"`` in ``pyproject.toml``).

Run on demand::

    pytest -m integration tests/integration/test_providers_live.py

Credential guards
-----------------
* sms-activate tests need ``SMS_ACTIVATE_API_KEY`` and
  ``LIVE_SMS_ACTIVATE_RENT_ID`` (an existing rent id on that account).
* Inbox tests need ``LIVE_RECEIVE_SMS_INBOX_URL`` (a private inbox URL).

Values are read from ``.env`` at import time.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime, timedelta

import pytest
from dotenv import load_dotenv

from smsrental.core.exceptions import RelayExhaustedError
from smsrental.core.models import ProviderKind, RawMessage, Rental, RentalStatus
from smsrental.core.settings import Settings
from smsrental.providers.api.sms_activate import SmsActivateProvider
from smsrental.providers.scrape.receive_sms_online import ReceiveSmsOnlineProvider

__all__: list[str] = []

logger = logging.getLogger(__name__)

load_dotenv()

_RENT_ID: str = os.environ.get("LIVE_SMS_ACTIVATE_RENT_ID", "")
_INBOX_URL: str = os.environ.get("LIVE_RECEIVE_SMS_INBOX_URL", "")

_skip_if_no_sms_activate = pytest.mark.skipif(
    not (os.environ.get("SMS_ACTIVATE_API_KEY") and _RENT_ID),
    reason="SMS_ACTIVATE_API_KEY and LIVE_SMS_ACTIVATE_RENT_ID are required for live sms-activate tests.",
)

_skip_if_no_inbox = pytest.mark.skipif(
    not _INBOX_URL,
    reason="LIVE_RECEIVE_SMS_INBOX_URL is required for live inbox tests.",
)


def _rental(provider: ProviderKind, native_ids: dict[str, str], credentials: dict[str, str] | None = None) -> Rental:
    now = datetime.now(UTC)
    return Rental(
        id="live",
        phone_number="+0000000000",
        provider=provider,
        provider_native_ids=native_ids,
        service_code="",
        country_code="",
        status=RentalStatus.ACTIVE,
        leased_at=now,
        expires_at=now + timedelta(hours=1),
        access_credentials=credentials or {},
    )


def _assert_valid(messages: list[RawMessage]) -> None:
    assert isinstance(messages, list)
    for message in messages:
        assert message.body, "message body must not be empty"
        assert message.sender, "message sender must not be empty"
        assert message.received_at.tzinfo is not None


@pytest.mark.integration
class TestSmsActivateLive:
    @_skip_if_no_sms_activate
    @pytest.mark.asyncio
    async def test_fetch_existing_rent(self) -> None:
        async with SmsActivateProvider(Settings()) as provider:
            messages = await provider.fetch_messages(
                _rental(ProviderKind.SMS_ACTIVATE, {"rent_id": _RENT_ID})
            )

        _assert_valid(messages)
        logger.info("sms-activate live: %d message(s) for rent %s", len(messages), _RENT_ID)


@pytest.mark.integration
class TestReceiveSmsOnlineLive:
    @_skip_if_no_inbox
    @pytest.mark.asyncio
    async def test_fetch_inbox(self) -> None:
        rental = _rental(ProviderKind.RECEIVE_SMS_ONLINE, {"inbox_key": "live"}, {"url": _INBOX_URL})
        async with ReceiveSmsOnlineProvider(Settings()) as provider:
            try:
                messages = await provider.fetch_messages(rental)
            except RelayExhaustedError as exc:
                pytest.skip(f"every relay failed right now: {exc}")

        _assert_valid(messages)
        logger.info("receive-sms-online live: %d message(s) in inbox", len(messages))
