"""Retry-with-jitter HTTP GET shared by every vendor adapter.

Each attempt is preceded by a small random courtesy delay (also before the
first try), failures back off linearly, and a not-found response ends the
call immediately with ``None``.  Every sleep goes through the injected Clock,
so tests observe the exact sleep sequence without waiting.

Usage::

    fetcher = RetryingFetcher(clock=SystemClock(), http_client=client)
    body = await fetcher.fetch(url, retries=3, base_delay_ms=60_000, jitter_ms=1000)
    if body is None:
        logger.warning("Nothing at %s", url)
"""

from __future__ import annotations

import inspect
import json
import logging
import random
from typing import Any, Callable, Iterable

import httpx

from tracker.feeds.clock import Clock
from tracker.feeds.errors import (
    NetworkTransient,
    NotFound,
    RetriesExhausted,
    VendorShapeError,
)

logger = logging.getLogger("tracker.feeds.fetch")

DEFAULT_USER_AGENT = "tracker-data/0.1"

Transform = Callable[[httpx.Response], Any]


class RetryingFetcher:
    """Generic retry-with-jitter wrapper around a single GET.

    Holds no state between calls apart from its collaborators.
    """

    def __init__(
        self,
        clock: Clock,
        http_client: httpx.AsyncClient | None = None,
        rng: random.Random | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_s: float = 30.0,
    ) -> None:
        """Initialize the fetcher.

        Args:
            clock:       Clock used for every sleep.
            http_client: Optional pre-configured httpx client (for testing and
                         connection reuse).  A short-lived client is created per
                         request when omitted.
            rng:         Random source for jitter; seed it in tests.
            user_agent:  Default User-Agent header.
            timeout_s:   Per-request timeout when no client is injected.
        """
        self._clock = clock
        self._http_client = http_client
        self._rng = rng or random.Random()
        self._user_agent = user_agent
        self._timeout_s = timeout_s

    @property
    def clock(self) -> Clock:
        return self._clock

    async def fetch(
        self,
        url: str,
        *,
        retries: int = 3,
        base_delay_ms: int = 2000,
        jitter_ms: int = 100,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        transform: Transform | None = None,
        not_found_statuses: Iterable[int] = (404,),
    ) -> Any | None:
        """GET ``url`` with retries.

        Args:
            url:                Absolute URL.
            retries:            Maximum number of attempts.
            base_delay_ms:      Backoff unit; attempt ``n`` (0-based) waits
                                ``base_delay_ms * (n + 1)`` plus jitter after failing.
            jitter_ms:          Upper bound (exclusive) of every random delay.
            headers:            Extra headers, overriding the defaults.
            params:             Query parameters.
            transform:          Callable (sync or async) turning the response
                                into the result.  Defaults to ``response.json()``.
            not_found_statuses: HTTP statuses meaning "resource absent".

        Returns:
            The transformed body, or None if the resource was not found.

        Raises:
            RetriesExhausted: If every attempt failed transiently.
            VendorShapeError: If a response body is malformed (not retried).
        """
        not_found = frozenset(not_found_statuses)
        last_error: Exception | None = None

        for attempt in range(retries):
            await self._clock.sleep(self._jitter(jitter_ms))
            try:
                response = await self._request(url, headers, params, not_found)
                return await self._decode(url, response, transform)
            except NotFound as exc:
                logger.info("%s. Not retrying.", exc)
                return None
            except NetworkTransient as exc:
                last_error = exc
                delay = base_delay_ms * (attempt + 1) + self._jitter(jitter_ms)
                logger.debug(
                    "Attempt %d/%d for %s failed (%s); backing off %d ms",
                    attempt + 1, retries, url, exc.reason, delay,
                )
                await self._clock.sleep(delay)

        raise RetriesExhausted(url, retries, last_error=last_error)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _jitter(self, jitter_ms: int) -> int:
        return self._rng.randrange(jitter_ms) if jitter_ms > 0 else 0

    def _build_headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        merged = {"User-Agent": self._user_agent, "Accept": "application/json"}
        if headers:
            merged.update(headers)
        return merged

    async def _request(
        self,
        url: str,
        headers: dict[str, str] | None,
        params: dict[str, Any] | None,
        not_found: frozenset[int],
    ) -> httpx.Response:
        """Perform one GET and classify the outcome.

        Raises:
            NotFound:         Status in ``not_found``.
            NetworkTransient: Transport failure or any other non-2xx status.
        """
        request_headers = self._build_headers(headers)
        try:
            if self._http_client:
                response = await self._http_client.get(url, params=params, headers=request_headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                    response = await client.get(url, params=params, headers=request_headers)
        except httpx.TransportError as exc:
            raise NetworkTransient(url, f"{type(exc).__name__}: {exc}") from exc

        if response.status_code in not_found:
            raise NotFound(url, response.status_code)
        if not response.is_success:
            raise NetworkTransient(
                url,
                f"status={response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    async def _decode(url: str, response: httpx.Response, transform: Transform | None) -> Any:
        try:
            if transform is None:
                return response.json()
            result = transform(response)
            if inspect.isawaitable(result):
                result = await result
            return result
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise VendorShapeError(f"Malformed JSON from {url}: {exc}") from exc


def text_body(response: httpx.Response) -> str:
    """Transform returning the response body as text."""
    return response.text
