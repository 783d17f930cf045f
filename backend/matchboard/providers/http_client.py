"""
backend/matchboard/providers/http_client.py

Purpose:
    Shared httpx client for odds and lineup providers. Transient statuses and
    network errors are retried with short backoff; repeated failures open a
    per-provider circuit so a dead upstream stops costing request latency.

Dependencies:
    - httpx
    - matchboard.config
    - matchboard.errors
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from matchboard.config import settings
from matchboard.errors import UpstreamUnavailable

logger = logging.getLogger("matchboard.http_client")

_TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})
_TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError)
_MAX_BACKOFF_SECONDS = 5.0


class CircuitBreaker:
    """Consecutive-failure breaker. Half-opens once ``recovery_timeout`` has passed."""

    def __init__(
        self,
        name: str,
        failure_threshold: int | None = None,
        recovery_timeout: float | None = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold or settings.PROVIDER_CIRCUIT_FAILURE_THRESHOLD
        self.recovery_timeout = (
            settings.PROVIDER_CIRCUIT_RECOVERY_SECONDS if recovery_timeout is None else recovery_timeout
        )
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.is_open = False

    def record_success(self) -> None:
        if self.is_open:
            logger.info("[%s] Provider recovered, circuit closed", self.name)
        self.failure_count = 0
        self.is_open = False

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if not self.is_open and self.failure_count >= self.failure_threshold:
            self.is_open = True
            logger.warning("[%s] Circuit open after %d consecutive failures", self.name, self.failure_count)

    def can_attempt(self) -> bool:
        if not self.is_open:
            return True
        return (
            self.last_failure_time is not None
            and time.monotonic() - self.last_failure_time > self.recovery_timeout
        )


def _retry_after(response: httpx.Response) -> Optional[float]:
    for header in ("retry-after", "x-ratelimit-retry-after"):
        try:
            return float(response.headers[header])
        except (KeyError, ValueError):
            continue
    return None


def _redacted(url: str) -> str:
    # Provider keys travel in query strings.
    parsed = urlparse(str(url))
    return f"{parsed.netloc}{parsed.path}"


class ResilientClient:
    """httpx.AsyncClient with bounded retries and a circuit breaker.

    Odds fetches sit on a user-facing path, so retries are few and short and
    the aggregator adds its own overall timeout on top.
    """

    def __init__(
        self,
        name: str,
        *,
        base_url: str = "",
        headers: Optional[dict[str, str]] = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._name = name
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            timeout=settings.PROVIDER_TIMEOUT_SECONDS if timeout is None else timeout,
            transport=transport,
        )
        self._attempts = 1 + (settings.PROVIDER_MAX_RETRIES if max_retries is None else max_retries)
        self._base_delay = settings.PROVIDER_RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self.circuit = CircuitBreaker(name)

    @property
    def name(self) -> str:
        return self._name

    async def _backoff(self, attempt: int, response: httpx.Response | None = None) -> None:
        delay = _retry_after(response) if response is not None else None
        if delay is None:
            delay = self._base_delay * (2 ** attempt)
        await asyncio.sleep(min(delay, _MAX_BACKOFF_SECONDS))

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, retrying transient failures.

        Returns the last response when every attempt got a transient status;
        re-raises the last network error when no response was received.
        """
        response: httpx.Response | None = None
        error: Exception | None = None
        for attempt in range(self._attempts):
            last = attempt == self._attempts - 1
            try:
                response = await self._client.request(method, url, **kwargs)
            except _TRANSIENT_ERRORS as exc:
                error = exc
                logger.warning(
                    "[%s] %s %s failed (attempt %d/%d): %s",
                    self._name, method, _redacted(url), attempt + 1, self._attempts, exc,
                )
                if not last:
                    await self._backoff(attempt)
                continue
            if response.status_code not in _TRANSIENT_STATUSES:
                return response
            logger.warning(
                "[%s] %s %s returned %d (attempt %d/%d)",
                self._name, method, _redacted(url), response.status_code, attempt + 1, self._attempts,
            )
            if not last:
                await self._backoff(attempt, response)

        if response is not None:
            return response
        raise error  # type: ignore[misc]

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def get_json(self, url: str, **kwargs) -> Any:
        """GET and decode JSON through the circuit breaker.

        Raises UpstreamUnavailable when the circuit is open, the request
        fails, the status is not 2xx, or the body is not JSON.
        """
        if not self.circuit.can_attempt():
            raise UpstreamUnavailable(self._name, "circuit open")
        try:
            response = await self.get(url, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.circuit.record_failure()
            raise UpstreamUnavailable(self._name, str(exc)) from exc
        self.circuit.record_success()
        return payload

    async def aclose(self) -> None:
        await self._client.aclose()
