"""Operator-registered numbers with no provider behind them.

Manual rentals exist so that a number obtained elsewhere (a physical SIM, a
colleague's test phone) can be tracked, assigned and shown alongside rented
ones.  There is nothing to poll: messages for a manual rental only enter the
store through
:meth:`~smsrental.service.RentalService.inject_test_message`.
"""

from __future__ import annotations

import logging

from smsrental.core.exceptions import ProviderRejectedError
from smsrental.core.models import ProviderKind, RawMessage, Rental, RentalSpec
from smsrental.providers.base import BaseProvider

__all__ = ["ManualProvider"]

logger = logging.getLogger(__name__)


class ManualProvider(BaseProvider):
    """No-op adapter for manual rentals; extend and cancel are local-only."""

    kind = ProviderKind.MANUAL

    async def rent(self, spec: RentalSpec) -> Rental:
        raise ProviderRejectedError(
            str(self.kind),
            "RENT_UNSUPPORTED",
            hint="Manual numbers are registered, not rented.",
        )

    async def fetch_messages(self, rental: Rental) -> list[RawMessage]:
        return []
