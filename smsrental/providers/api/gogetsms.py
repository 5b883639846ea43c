"""GoGetSMS rental adapter.

GoGetSMS clones sms-activate's ``handler_api.php`` protocol, with two
differences handled here:

* Rentals are sold in fixed durations only (4 h, 1 d, 3 d, 1 w, 15 d, 30 d);
  a request is rounded **up** to the next available duration.
* The rental actions take ISO alpha-2 country codes directly.
"""

from __future__ import annotations

import bisect
import logging
from typing import Final

from smsrental.core.models import ProviderKind
from smsrental.core.settings import Settings
from smsrental.providers.api.sms_activate import SmsActivateProvider

__all__ = ["GoGetSmsProvider", "RENT_HOURS"]

logger = logging.getLogger(__name__)

_BASE_URL: Final[str] = "https://www.gogetsms.com/handler_api.php"

#: Durations GoGetSMS sells, in hours, ascending.
RENT_HOURS: Final[tuple[int, ...]] = (4, 24, 72, 168, 360, 720)


class GoGetSmsProvider(SmsActivateProvider):
    """Adapter for GoGetSMS (sms-activate compatible)."""

    kind = ProviderKind.GOGETSMS
    base_url = _BASE_URL

    def _resolve_api_key(self, settings: Settings) -> str:
        return settings.gogetsms_api_key

    def _rent_time(self, hours: int) -> int:
        idx = bisect.bisect_left(RENT_HOURS, hours)
        if idx >= len(RENT_HOURS):
            logger.warning(
                "gogetsms: %d h exceeds the longest rental; using %d h", hours, RENT_HOURS[-1]
            )
            return RENT_HOURS[-1]
        return RENT_HOURS[idx]

    def _country_id(self, country: str) -> str:
        return country

    def _country_code(self, native: str) -> str:
        return native.upper()
