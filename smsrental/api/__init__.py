"""HTTP surface over :class:`~smsrental.service.RentalService`."""

from smsrental.api.app import ServiceFactory, create_app
from smsrental.api.deps import AllowAllGate, AuthorizationGate

__all__ = ["create_app", "ServiceFactory", "AuthorizationGate", "AllowAllGate"]
