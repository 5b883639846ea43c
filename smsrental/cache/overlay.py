"""Optimistic local mutations awaiting server confirmation.

A client that wants to show an assignment or a cancellation before the
server has answered records the change here instead of editing its cached
copy.  :meth:`PendingOverlay.view` merges every pending patch over the
confirmed base and flags the result as ``pending``, so an unconfirmed value
is never indistinguishable from a confirmed one.  On response the caller
either confirms the patch (the base it reloads now contains the change) or
rolls it back.

Typical usage::

    overlay = PendingOverlay()
    token = overlay.apply(rental.id, {"assignee": "agent-7"})
    try:
        confirmed = await service.assign(rental.id, "agent-7")
    except SmsRentalError:
        overlay.rollback(token)
        raise
    overlay.confirm(token)
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

__all__ = ["PendingOverlay", "OverlayView"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverlayView:
    """A base value with pending patches applied.

    Attributes:
        value: Merged value (same type as the base).
        pending: ``True`` while at least one patch for the key is unconfirmed.
    """

    value: Any
    pending: bool


class PendingOverlay:
    """Pending patches keyed by entity id, applied in submission order."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        # token -> (key, patch); dicts keep insertion order.
        self._patches: dict[str, tuple[str, dict[str, Any]]] = {}

    def apply(self, key: str, patch: Mapping[str, Any]) -> str:
        """Record *patch* for *key* and return a token identifying it."""
        token = f"{key}#{next(self._counter)}"
        self._patches[token] = (key, dict(patch))
        logger.debug("overlay: pending %s %s", token, sorted(patch))
        return token

    def confirm(self, token: str) -> None:
        """Drop the patch: the server accepted it and the base now has it."""
        self._patches.pop(token, None)

    def rollback(self, token: str) -> dict[str, Any] | None:
        """Discard the patch and return it (``None`` if unknown)."""
        entry = self._patches.pop(token, None)
        if entry is None:
            return None
        logger.debug("overlay: rolled back %s", token)
        return entry[1]

    def is_pending(self, key: str) -> bool:
        return any(k == key for k, _ in self._patches.values())

    def view(self, key: str, base: Any) -> OverlayView:
        """Merge every pending patch for *key* over *base*.

        *base* may be a mapping or a pydantic model; the merged value has the
        same type.
        """
        merged: dict[str, Any] = {}
        for patch_key, patch in self._patches.values():
            if patch_key == key:
                merged.update(patch)
        if not merged:
            return OverlayView(value=base, pending=False)
        if isinstance(base, BaseModel):
            return OverlayView(value=base.model_copy(update=merged), pending=True)
        return OverlayView(value={**base, **merged}, pending=True)
