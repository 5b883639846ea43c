"""Request dependencies: the service, the caller and the authorization gate.

Identity and sessions are managed elsewhere.  This surface only receives an
opaque caller id in the ``X-Caller-Id`` header and asks an injected
:class:`AuthorizationGate` whether that caller may operate on a rental.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from fastapi import Depends, Header, HTTPException, Request

from smsrental.service import RentalService

__all__ = [
    "AuthorizationGate",
    "AllowAllGate",
    "get_service",
    "get_gate",
    "get_caller",
    "authorized_rental_id",
]


@runtime_checkable
class AuthorizationGate(Protocol):
    """Decides whether *caller* may operate on *rental_id*."""

    def may_operate(self, caller: str, rental_id: str) -> bool: ...


class AllowAllGate:
    """Default gate: every identified caller may operate on every rental."""

    def may_operate(self, caller: str, rental_id: str) -> bool:
        return True


def get_service(request: Request) -> RentalService:
    return request.app.state.service


def get_gate(request: Request) -> AuthorizationGate:
    return request.app.state.gate


def get_caller(x_caller_id: str | None = Header(default=None, alias="X-Caller-Id")) -> str:
    if not x_caller_id or not x_caller_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Caller-Id header")
    return x_caller_id.strip()


def authorized_rental_id(
    rental_id: str,
    caller: str = Depends(get_caller),
    gate: AuthorizationGate = Depends(get_gate),
) -> str:
    """Path parameter *rental_id*, once the gate has allowed *caller*."""
    if not gate.may_operate(caller, rental_id):
        raise HTTPException(status_code=403, detail=f"Caller may not operate on rental {rental_id}")
    return rental_id
