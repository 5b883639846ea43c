"""Read-through cache with a TTL and a cooling period.

:class:`CacheController` sits in front of registry and store reads so that
frequent re-renders and navigations do not turn into provider or database
traffic.  Two clocks govern each key:

* **TTL** (staleness): a snapshot younger than ``ttl`` is returned without
  calling the loader.
* **Cooling period** (fetch frequency): a stale snapshot is still returned
  without calling the loader when the last *attempted* load (success or
  failure) started less than ``cooling_period`` ago.

``force=True`` skips both checks and always loads, but concurrent loads for
one key still coalesce into a single in-flight task: at most one loader runs
per key at any time.

A failing loader never clears the previous snapshot; the result carries the
old value alongside the error.

The cache is process-local and session-scoped.  Dropping it (restart,
:meth:`CacheController.clear`) only costs a reload.

Typical usage::

    cache = CacheController()
    result = await cache.get(f"messages:{rental_id}", load_messages, ttl=120, cooling_period=30)
    if result.error is not None:
        show_retry_banner(result.error)
    render(result.value)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Final, Generic, TypeVar

from smsrental.core import events

__all__ = ["CacheController", "CacheResult"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Default snapshot lifetime (seconds).
_DEFAULT_TTL: Final[float] = 120.0

#: Default minimum interval between automatic loads of one key (seconds).
_DEFAULT_COOLING: Final[float] = 30.0


@dataclass(frozen=True)
class CacheResult(Generic[T]):
    """What :meth:`CacheController.get` returns.

    Attributes:
        value: The snapshot, or ``None`` if no load ever succeeded.
        fetched_at: Clock reading when *value* was loaded.
        from_cache: ``True`` when *value* was not produced by this call.
        stale: ``True`` when *value* is older than the TTL.
        error: The loader exception when this call's load failed, or the
            last load error when a cooling-period hit has no snapshot.
    """

    value: T | None
    fetched_at: float | None
    from_cache: bool
    stale: bool
    error: BaseException | None = None


@dataclass
class _Entry:
    value: Any = None
    has_value: bool = False
    fetched_at: float | None = None
    last_attempt: float | None = None
    last_error: BaseException | None = None


class CacheController:
    """Per-key snapshot cache with coalesced loads.

    Args:
        ttl: Default TTL for :meth:`get`.
        cooling_period: Default cooling period for :meth:`get`.
        clock: Monotonic clock in seconds; override in tests.
    """

    def __init__(
        self,
        *,
        ttl: float = _DEFAULT_TTL,
        cooling_period: float = _DEFAULT_COOLING,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._ttl = ttl
        self._cooling = cooling_period
        self._clock = clock or time.monotonic
        self._entries: dict[str, _Entry] = {}
        self._inflight: dict[str, asyncio.Task[CacheResult[Any]]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        *,
        ttl: float | None = None,
        cooling_period: float | None = None,
        force: bool = False,
    ) -> CacheResult[T]:
        """Return the snapshot for *key*, loading it when needed."""
        ttl = self._ttl if ttl is None else ttl
        cooling = self._cooling if cooling_period is None else cooling_period
        entry = self._entries.get(key)
        now = self._clock()

        if (
            not force
            and entry is not None
            and entry.has_value
            and entry.fetched_at is not None
            and now - entry.fetched_at < ttl
        ):
            logger.debug("cache hit %s", key, extra={"event": events.CACHE_HIT})
            return CacheResult(entry.value, entry.fetched_at, from_cache=True, stale=False)

        task = self._inflight.get(key)
        if task is not None:
            return await asyncio.shield(task)

        if (
            not force
            and entry is not None
            and entry.last_attempt is not None
            and now - entry.last_attempt < cooling
        ):
            logger.debug(
                "cache %s stale but cooling (%.1f / %.1f s)",
                key,
                now - entry.last_attempt,
                cooling,
                extra={"event": events.CACHE_STALE},
            )
            return CacheResult(
                entry.value if entry.has_value else None,
                entry.fetched_at,
                from_cache=True,
                stale=True,
                error=None if entry.has_value else entry.last_error,
            )

        task = asyncio.create_task(self._load(key, loader), name=f"cache-load-{key}")
        self._inflight[key] = task
        task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        return await asyncio.shield(task)

    def peek(self, key: str) -> Any | None:
        """Return the current snapshot for *key* without loading."""
        entry = self._entries.get(key)
        return entry.value if entry is not None and entry.has_value else None

    def invalidate(self, key: str) -> None:
        """Forget *key*; the next :meth:`get` loads regardless of cooling."""
        self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> CacheResult[Any]:
        entry = self._entries.setdefault(key, _Entry())
        entry.last_attempt = self._clock()
        try:
            value = await loader()
        except Exception as exc:  # noqa: BLE001
            entry.last_error = exc
            logger.warning(
                "cache load for %s failed, keeping previous snapshot: %s",
                key,
                exc,
                extra={"event": events.CACHE_LOAD_ERROR},
            )
            return CacheResult(
                entry.value if entry.has_value else None,
                entry.fetched_at,
                from_cache=True,
                stale=True,
                error=exc,
            )

        entry.value = value
        entry.has_value = True
        entry.fetched_at = self._clock()
        entry.last_error = None
        return CacheResult(value, entry.fetched_at, from_cache=False, stale=False)
