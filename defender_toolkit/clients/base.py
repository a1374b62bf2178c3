"""
Async REST client with pagination, throttling, retry, and change-guard enforcement.
Shared by the Graph, Defender for Endpoint and Defender for Cloud Apps clients.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, AsyncGenerator, Optional

import httpx

from ..config import (
    MAX_RETRIES,
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    BACKOFF_MULTIPLIER,
    MAX_PAGES_PER_ENDPOINT,
    MAX_CONCURRENT_REQUESTS,
)
from ..safety.guardian import ChangeGuard, SafetyViolation

logger = logging.getLogger("defender_toolkit.clients")

RETRYABLE_STATUS = (429, 503, 504)


class ApiError(Exception):
    """Raised when an API returns a non-recoverable error."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"API Error {status_code} for {url}: {message}")


class ApiClient:
    """
    Async REST client for a single Microsoft security API.
    Features:
      - Change-guard validated requests (writes allowlisted, dry-run aware)
      - Automatic pagination with @odata.nextLink
      - Exponential backoff on 429/503/504
      - Concurrent request semaphore
    """

    service_name: str = "api"

    def __init__(
        self,
        base_url: str,
        access_token: str,
        guard: ChangeGuard,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.guard = guard
        self._transport = transport
        self._semaphore = asyncio.Semaphore(MAX_CONCURRENT_REQUESTS)
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None
        self.initial_backoff = INITIAL_BACKOFF_SECONDS

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            limits=httpx.Limits(
                max_connections=MAX_CONCURRENT_REQUESTS * 2,
                max_keepalive_connections=MAX_CONCURRENT_REQUESTS,
            ),
            headers=self._default_headers(),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _default_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from a relative endpoint."""
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        """Execute a single GET request with retry/throttle handling."""
        url = self._build_url(endpoint)
        self.guard.validate_request("GET", url)

        async with self._semaphore:
            return await self._execute_with_retry("GET", url, params=params)

    async def post(self, endpoint: str, json_body: Optional[dict] = None) -> dict:
        """
        POST through the change guard.
        Returns {"_dry_run": True} without sending when the guard only plans it.
        """
        return await self._send("POST", endpoint, json_body)

    async def patch(self, endpoint: str, json_body: Optional[dict] = None) -> dict:
        """PATCH through the change guard."""
        return await self._send("PATCH", endpoint, json_body)

    async def _send(self, method: str, endpoint: str, json_body: Optional[dict]) -> dict:
        url = self._build_url(endpoint)
        if not self.guard.validate_request(method, url, json_body):
            return {"_dry_run": True}

        async with self._semaphore:
            return await self._execute_with_retry(method, url, json_body=json_body)

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Fetch all pages of a paginated endpoint into a list."""
        items = []
        async for item in self.get_all_pages_stream(endpoint, params):
            items.append(item)
            if limit and len(items) >= limit:
                break
        return items

    async def get_all_pages_stream(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> AsyncGenerator[dict, None]:
        """
        Stream all pages of an OData endpoint as an async generator,
        following @odata.nextLink until exhausted or the page cap is hit.
        """
        url = self._build_url(endpoint)
        pages = 0

        while url and pages < MAX_PAGES_PER_ENDPOINT:
            self.guard.validate_request("GET", url)

            async with self._semaphore:
                data = await self._execute_with_retry("GET", url, params=params)

            for item in data.get("value", []):
                yield item

            url = data.get("@odata.nextLink")
            params = None  # nextLink carries the query
            pages += 1

        if pages >= MAX_PAGES_PER_ENDPOINT:
            logger.warning(
                f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) "
                f"for endpoint: {endpoint}"
            )

    async def _execute_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        """Execute request with exponential backoff on throttling."""
        backoff = self.initial_backoff

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await self._execute_raw(
                    method, url, params=params, json_body=json_body
                )
                self._request_count += 1

                if response.status_code in (200, 201):
                    if not response.content or not response.content.strip():
                        return {}
                    try:
                        return response.json()
                    except ValueError:
                        logger.debug(f"{response.status_code} response with non-JSON body from {url}")
                        return {}

                if response.status_code == 204:
                    return {}

                if response.status_code == 404:
                    logger.debug(f"404 Not Found: {url}")
                    return {"value": [], "_not_found": True}

                if response.status_code in RETRYABLE_STATUS and attempt < MAX_RETRIES:
                    self._throttle_count += 1
                    retry_after = _retry_after(response, backoff)
                    wait_time = max(retry_after, backoff)
                    logger.warning(
                        f"Throttled ({response.status_code}) on {url}. "
                        f"Retry {attempt + 1}/{MAX_RETRIES} in {wait_time:.1f}s"
                    )
                    await asyncio.sleep(wait_time)
                    backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
                    continue

                raise ApiError(response.status_code, _error_message(response), url)

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                logger.warning(
                    f"{type(e).__name__} on {url}, attempt {attempt + 1}/{MAX_RETRIES}"
                )
                if attempt == MAX_RETRIES:
                    raise
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)

        raise ApiError(0, "Maximum retries exceeded", url)

    async def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute raw HTTP request."""
        if not self._client:
            raise RuntimeError(f"{type(self).__name__} not initialized. Use 'async with' context.")

        if method == "GET":
            return await self._client.get(url, params=params)
        elif method == "POST":
            return await self._client.post(url, json=json_body, params=params)
        elif method == "PATCH":
            return await self._client.patch(url, json=json_body, params=params)
        else:
            raise SafetyViolation(f"Unsupported method at raw level: {method}")

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {
            "service": self.service_name,
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }


def _retry_after(response: httpx.Response, default: float) -> float:
    """
    Seconds to wait from a Retry-After header, given either as
    delta-seconds or as an HTTP-date. Falls back to `default`.
    """
    value = response.headers.get("Retry-After")
    if not value:
        return default
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = (when - datetime.now(timezone.utc)).total_seconds()
    return min(max(delta, 0.0), MAX_BACKOFF_SECONDS)


def _error_message(response: httpx.Response) -> str:
    """Pull the error message out of a Microsoft API error body."""
    try:
        body: Any = response.json() if response.content else {}
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message", "Unknown error")
        if isinstance(error, str):
            return body.get("detail") or error
    return response.text[:200]
