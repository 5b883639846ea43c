"""Shared async HTTP client for every smsrental provider adapter.

Wraps :class:`httpx.AsyncClient` with:

* **User-Agent rotation**: a random browser UA on every attempt.  The scrape
  relays in particular reject obvious bot traffic.
* **Bounded calls**: one :class:`httpx.Timeout` (15 s by default) covers the
  whole request; a timeout is a retryable
  :class:`~smsrental.core.exceptions.ProviderUnavailableError`, never fatal.
* **Automatic retries**: exponential back-off with jitter via :mod:`tenacity`
  for transport errors, 5xx and 429 (honouring ``Retry-After``).
* **Structured error mapping**: after retries are exhausted transport
  failures and 5xx surface as ``ProviderUnavailableError``, 429 as
  :class:`~smsrental.core.exceptions.ProviderRateLimitError`; any other
  non-2xx raises :class:`~smsrental.core.exceptions.ProviderRejectedError`
  immediately with the body kept verbatim.

Adapters own one instance each (or share one injected by the factory).

Typical usage::

    from smsrental.providers.api.http_client import ProviderHttpClient

    async with ProviderHttpClient(provider="smspva", base_url="https://smspva.com") as c:
        response = await c.get("/api/rent.php", params={"method": "orders"})
        data = response.json()
"""

from __future__ import annotations

import logging
import random
from types import TracebackType
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from smsrental.core.exceptions import (
    ProviderRateLimitError,
    ProviderRejectedError,
    ProviderUnavailableError,
)

__all__ = ["ProviderHttpClient"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: HTTP status codes that signal a transient server-side fault (safe to retry).
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

#: Default per-request timeout in seconds.
_DEFAULT_TIMEOUT: Final[float] = 15.0

#: Default total attempts (1 initial + 2 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Hard cap on exponential back-off base before adding jitter (seconds).
_MAX_BACKOFF_BASE: Final[float] = 30.0

#: Upper bound on jitter added on top of the exponential base (seconds).
_MAX_BACKOFF_JITTER: Final[float] = 5.0

#: Longest provider-supplied ``Retry-After`` we are willing to sleep inline.
_MAX_RETRY_AFTER: Final[float] = 60.0

# ---------------------------------------------------------------------------
# User-Agent pool
# ---------------------------------------------------------------------------

_USER_AGENTS: Final[list[str]] = [
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (X11; Linux x86_64; rv:133.0) "
        "Gecko/20100101 Firefox/133.0"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_6) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) "
        "Version/18.1 Safari/605.1.15"
    ),
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0"
    ),
]


def _pick_user_agent() -> str:
    """Return a randomly selected User-Agent string."""
    return random.choice(_USER_AGENTS)


# ---------------------------------------------------------------------------
# Internal sentinel exception
# ---------------------------------------------------------------------------


class _RetryableServerError(ProviderUnavailableError):
    """Signals a 5xx status so tenacity retries it.

    Escapes the client as a plain :class:`ProviderUnavailableError` once
    retries are exhausted.
    """


# ---------------------------------------------------------------------------
# Retry wait strategy
# ---------------------------------------------------------------------------


def _provider_wait(retry_state: RetryCallState) -> float:
    """Compute the wait duration before the next retry attempt.

    * :class:`ProviderRateLimitError` with a positive ``retry_after`` →
      honour it, capped at :data:`_MAX_RETRY_AFTER`.
    * Everything else → exponential back-off (1 s, 2 s, 4 s, …) with jitter,
      capped at :data:`_MAX_BACKOFF_BASE`.
    """
    if retry_state.outcome is not None:
        exc = retry_state.outcome.exception()
        if (
            isinstance(exc, ProviderRateLimitError)
            and exc.retry_after is not None
            and exc.retry_after > 0
        ):
            logger.debug("Honouring provider Retry-After of %.1f s", exc.retry_after)
            return min(exc.retry_after, _MAX_RETRY_AFTER)

    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    jitter = random.uniform(0.0, min(base, _MAX_BACKOFF_JITTER))
    return base + jitter


# ---------------------------------------------------------------------------
# Public client
# ---------------------------------------------------------------------------


class ProviderHttpClient:
    """Async HTTP client shared by the provider adapters.

    Each request method returns the :class:`httpx.Response` on HTTP 2xx and
    raises a :class:`~smsrental.core.exceptions.ProviderError` subclass on
    every other outcome.

    Args:
        provider: Provider label used in exceptions and logs.
        base_url: Optional base URL prepended to relative request paths.
        headers: Additional default headers merged into every request.  The
            rotated ``User-Agent`` always wins.
        timeout: Per-request timeout in seconds.
        max_attempts: Total attempts including the initial try (≥ 1).
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """

    def __init__(
        self,
        *,
        provider: str,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._provider = provider
        self._base_url = base_url
        self._default_headers: dict[str, str] = headers or {}
        self._max_attempts = max_attempts
        self._timeout = httpx.Timeout(timeout, pool=5.0)
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def provider(self) -> str:
        return self._provider

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ProviderHttpClient:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public request methods
    # ------------------------------------------------------------------

    async def get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Perform an HTTP GET request with retries and UA rotation.

        Raises:
            ProviderRateLimitError: On HTTP 429 after exhausting retries.
            ProviderUnavailableError: On timeouts, network errors or 5xx
                after exhausting retries.
            ProviderRejectedError: On any other non-2xx status.
        """
        return await self._request_with_retry("GET", url, params=params, extra_headers=headers)

    async def post(
        self,
        url: str,
        *,
        json: Any | None = None,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Perform an HTTP POST request.  Same error contract as :meth:`get`."""
        return await self._request_with_retry(
            "POST", url, json=json, data=data, params=params, extra_headers=headers
        )

    async def patch(
        self,
        url: str,
        *,
        json: Any | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Perform an HTTP PATCH request.  Same error contract as :meth:`get`."""
        return await self._request_with_retry(
            "PATCH", url, json=json, params=params, extra_headers=headers
        )

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call repeatedly."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("ProviderHttpClient(%s) session closed.", self._provider)
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Return the open HTTP client, creating it lazily if needed."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
                headers={
                    "Accept": "application/json, text/html;q=0.9, */*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9",
                    "Cache-Control": "no-cache",
                    **self._default_headers,
                },
            )
            logger.debug(
                "ProviderHttpClient(%s) session opened (base_url=%r).",
                self._provider,
                self._base_url or "(none)",
            )
        return self._http

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        data: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Execute one logical request with tenacity-managed retries."""
        retry_types = (ProviderUnavailableError, httpx.TransportError)

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "%s %s %s: attempt %d/%d failed (%s). Retrying…",
                self._provider,
                method,
                _redact(url),
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
            )

        response: httpx.Response | None = None
        try:
            async for attempt in AsyncRetrying(
                wait=_provider_wait,
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(retry_types),
                reraise=True,
                before_sleep=_before_sleep,
            ):
                with attempt:
                    response = await self._single_request(
                        method=method,
                        url=url,
                        params=params,
                        json=json,
                        data=data,
                        extra_headers=extra_headers,
                    )
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                self._provider, f"Timed out after {self._max_attempts} attempt(s)"
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(
                self._provider, f"Transport error: {type(exc).__name__}: {exc}"
            ) from exc

        assert response is not None, "tenacity exited without a response or exception"
        return response

    async def _single_request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json: Any | None,
        data: dict[str, Any] | None,
        extra_headers: dict[str, str] | None,
    ) -> httpx.Response:
        """Perform exactly one HTTP request and classify the outcome."""
        client = await self._ensure_client()

        request_headers: dict[str, str] = {"User-Agent": _pick_user_agent()}
        if extra_headers:
            request_headers.update(extra_headers)

        response = await client.request(
            method=method,
            url=url,
            params=params,
            json=json,
            data=data,
            headers=request_headers,
        )

        logger.debug(
            "%s %s %s → %d (%d bytes)",
            self._provider,
            method,
            _redact(url),
            response.status_code,
            len(response.content),
        )

        if response.is_success:
            return response

        if response.status_code == 429:
            retry_after = _parse_retry_after(response)
            logger.warning(
                "%s rate limited (HTTP 429), retry_after=%.1f s", self._provider, retry_after
            )
            raise ProviderRateLimitError(self._provider, retry_after=retry_after)

        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableServerError(
                self._provider, f"Transient HTTP {response.status_code}"
            )

        raise ProviderRejectedError(
            self._provider,
            f"HTTP {response.status_code}: {response.text[:200]}",
        )


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------


def _parse_retry_after(response: httpx.Response) -> float:
    """Extract back-off duration from an HTTP 429 response (always ≥ 1.0 s)."""
    header = response.headers.get("retry-after", "")
    if header:
        try:
            return max(float(header), 1.0)
        except ValueError:
            logger.debug("Could not parse Retry-After header %r.", header)
    return 1.0


def _redact(url: str) -> str:
    """Drop the query string so API keys never reach the logs."""
    return url.split("?", 1)[0]
