"""Build the provider adapters enabled by the current settings.

API providers are included only when their key is set; the scrape and manual
adapters need no credentials and are always present.

Typical usage::

    providers = build_providers(settings)
    try:
        ...
    finally:
        await close_providers(providers)
"""

from __future__ import annotations

import logging

from smsrental.core.models import ProviderKind
from smsrental.core.settings import Settings
from smsrental.providers.api.anosim import AnosimProvider
from smsrental.providers.api.gogetsms import GoGetSmsProvider
from smsrental.providers.api.sms_activate import SmsActivateProvider
from smsrental.providers.api.smspva import SmspvaProvider
from smsrental.providers.base import BaseProvider
from smsrental.providers.manual import ManualProvider
from smsrental.providers.scrape.receive_sms_online import ReceiveSmsOnlineProvider

__all__ = ["build_providers", "close_providers"]

logger = logging.getLogger(__name__)


def build_providers(settings: Settings) -> dict[ProviderKind, BaseProvider]:
    """Instantiate every configured provider, keyed by kind."""
    providers: dict[ProviderKind, BaseProvider] = {}

    if settings.sms_activate_configured:
        providers[ProviderKind.SMS_ACTIVATE] = SmsActivateProvider(settings)
    if settings.gogetsms_configured:
        providers[ProviderKind.GOGETSMS] = GoGetSmsProvider(settings)
    if settings.smspva_configured:
        providers[ProviderKind.SMSPVA] = SmspvaProvider(settings)
    if settings.anosim_configured:
        providers[ProviderKind.ANOSIM] = AnosimProvider(settings)

    providers[ProviderKind.RECEIVE_SMS_ONLINE] = ReceiveSmsOnlineProvider(settings)
    providers[ProviderKind.MANUAL] = ManualProvider()

    disabled = [str(k) for k in ProviderKind if k not in providers]
    logger.info(
        "Providers enabled: %s%s",
        ", ".join(str(k) for k in providers),
        f" (disabled, no API key: {', '.join(disabled)})" if disabled else "",
    )
    return providers


async def close_providers(providers: dict[ProviderKind, BaseProvider]) -> None:
    """Close every provider, logging (not raising) individual failures."""
    for kind, provider in providers.items():
        try:
            await provider.close()
        except Exception:  # noqa: BLE001
            logger.warning("Provider %s failed to close cleanly", kind, exc_info=True)
