"""Fetch-channel selection.

How messages for a rental are acquired depends only on who issued the
number, never on runtime heuristics.  :func:`select_channel` is that pure
mapping; the orchestrator logs the channel and skips the provider call for
:attr:`FetchChannel.LOCAL` rentals.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

from smsrental.core.models import ProviderKind

__all__ = ["FetchChannel", "select_channel"]


class FetchChannel(StrEnum):
    """Acquisition channel for a rental's messages."""

    PROVIDER_API = "provider_api"
    """Authenticated HTTP polling of the provider's API."""

    SCRAPE = "scrape"
    """HTML inbox page fetched through CORS relays."""

    LOCAL = "local"
    """No upstream; messages only enter through the store."""


_CHANNELS: Final[dict[ProviderKind, FetchChannel]] = {
    ProviderKind.SMS_ACTIVATE: FetchChannel.PROVIDER_API,
    ProviderKind.GOGETSMS: FetchChannel.PROVIDER_API,
    ProviderKind.SMSPVA: FetchChannel.PROVIDER_API,
    ProviderKind.ANOSIM: FetchChannel.PROVIDER_API,
    ProviderKind.RECEIVE_SMS_ONLINE: FetchChannel.SCRAPE,
    ProviderKind.MANUAL: FetchChannel.LOCAL,
}


def select_channel(kind: ProviderKind) -> FetchChannel:
    """Return the fetch channel for provider *kind*."""
    return _CHANNELS[kind]
