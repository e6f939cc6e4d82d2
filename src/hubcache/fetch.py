"""Resilient HTTP fetch primitive.

Every request to the content host goes through :class:`Fetcher`, which adds
the bearer token, retries transient failures with a linear backoff and maps
permanent failures onto the error taxonomy.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Literal

import httpx

from hubcache.errors import (
    AuthenticationError,
    RequestError,
    RetryableServerError,
    RetryExhausted,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10

Method = Literal["GET", "HEAD"]
Sleep = Callable[[float], Awaitable[object]]


def is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status < 600


class Fetcher:
    """Authenticated GET/HEAD with retry on 429, 5xx and transport errors.

    The attempt ``n`` (starting at 0) that fails transiently is followed by a
    sleep of ``n + 1`` seconds. A 401 or any other 4xx is raised immediately.
    Responses are returned open and streaming; callers drain or copy them and
    must close them, preferably through :meth:`stream`.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        token: str | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Sleep = asyncio.sleep,
        log: logging.Logger | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self._token = token or None
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._log = log or logger

    @property
    def has_token(self) -> bool:
        return self._token is not None

    def _headers(self, extra: Mapping[str, str] | None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if extra:
            headers.update(extra)
        return headers

    async def fetch(
        self,
        method: Method,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        follow_redirects: bool = True,
    ) -> httpx.Response:
        """Send the request and return the live response once status < 400."""
        if method not in ("GET", "HEAD"):
            raise ValueError(f"unsupported method {method!r}")
        request_headers = self._headers(headers)
        last_failure: RetryableServerError | None = None

        for attempt in range(self.max_attempts):
            request = self._client.build_request(method, url, headers=request_headers)
            try:
                response = await self._client.send(
                    request, stream=True, follow_redirects=follow_redirects
                )
            except httpx.TransportError as exc:
                last_failure = RetryableServerError(
                    f"transport error: {exc}", url=url, context={"attempt": attempt + 1}
                )
                last_failure.__cause__ = exc
            else:
                if response.status_code < 400:
                    return response
                await response.aclose()
                status = response.status_code
                if status == 401:
                    raise AuthenticationError(url=url, token_supplied=self.has_token)
                if not is_retryable_status(status):
                    raise RequestError(
                        f"request failed: {status} {response.reason_phrase}",
                        url=url,
                        status=status,
                    )
                last_failure = RetryableServerError(
                    f"transient status {status}",
                    url=url,
                    status=status,
                    context={"attempt": attempt + 1},
                )

            if attempt + 1 < self.max_attempts:
                delay = attempt + 1
                self._log.warning("%s; retrying in %ds", last_failure, delay)
                await self._sleep(delay)

        status = last_failure.status if last_failure is not None else None
        raise RetryExhausted(
            url=url, attempts=self.max_attempts, status=status
        ) from last_failure

    @asynccontextmanager
    async def stream(
        self,
        method: Method,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        follow_redirects: bool = True,
    ) -> AsyncIterator[httpx.Response]:
        """Context-managed :meth:`fetch` that always closes the response."""
        response = await self.fetch(
            method, url, headers=headers, follow_redirects=follow_redirects
        )
        try:
            yield response
        finally:
            await response.aclose()
