"""
Base API Client - common HTTP request pattern for provider adapters.

Every adapter talks HTTP through one :class:`BaseAPIClient`, which provides:
- One httpx.AsyncClient per adapter (timeout, default headers, optional proxy)
- Retry of transient failures (429, 5xx, transport errors) with tenacity,
  exponential backoff, and Retry-After support
- Mapping of HTTP failures onto the ProviderError family

Pacing, concurrency and circuit breaking are *not* done here: the
dispatcher wraps every adapter call in its rate limiter and breaker.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from typing_extensions import Self

from research_master.shared.exceptions import (
    NetworkError,
    NotFoundError,
    ParseError,
    ProviderError,
    RateLimitError,
    ServiceUnavailableError,
    get_retry_delay,
    is_retryable_error,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "research-master/0.1 (+https://github.com/research-master)"


class BaseAPIClient:
    """
    Base class for external API clients.

    Subclasses set ``_service_name`` and can override:
    - ``_prepare_params()``: add service-specific query parameters
    - ``_parse_response()``: custom response extraction

    Example:
        class MyClient(BaseAPIClient):
            _service_name = "myapi"

            def __init__(self):
                super().__init__(base_url="https://api.example.com")

            async def get_item(self, item_id: str) -> dict:
                return await self._make_request(f"/items/{item_id}")
    """

    _service_name: str = "api"
    _MAX_RETRIES: int = 3
    _MAX_RETRY_WAIT: float = 30.0

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        *,
        proxy: str | None = None,
        max_retries: int | None = None,
        retry_wait: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize base client.

        Args:
            base_url: Base URL for the API (optional, can pass full URLs)
            timeout: Request timeout in seconds
            headers: Default headers for all requests
            proxy: Proxy URL passed through to httpx
            max_retries: Attempts for transient failures (default ``_MAX_RETRIES``)
            retry_wait: Base backoff in seconds (``0`` disables waiting, for tests)
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries if max_retries is not None else self._MAX_RETRIES
        self._retry_wait = retry_wait
        client_kwargs: dict[str, Any] = {
            "timeout": self._timeout,
            "headers": {"User-Agent": DEFAULT_USER_AGENT, **(headers or {})},
            "follow_redirects": True,
            "limits": httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
                keepalive_expiry=30.0,
            ),
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        elif proxy:
            client_kwargs["proxy"] = proxy
        self._client = httpx.AsyncClient(**client_kwargs)

    def _build_url(self, url: str) -> str:
        """Build full URL from path or full URL."""
        if url.startswith(("http://", "https://")):
            return url
        return f"{self._base_url}{url}"

    def _prepare_params(self, params: dict[str, Any]) -> dict[str, Any]:
        """Add service-specific query parameters. Override in subclasses."""
        return params

    def _retry_wait_for(self, retry_state: RetryCallState) -> float:
        """Honour Retry-After on 429, else exponential backoff from ``retry_wait``."""
        if self._retry_wait <= 0:
            return 0.0
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if error is None:
            return self._retry_wait
        return get_retry_delay(
            error,
            retry_state.attempt_number - 1,
            base_delay=self._retry_wait,
            max_delay=self._MAX_RETRY_WAIT,
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"{self._service_name}: retry {retry_state.attempt_number}/{self._max_retries} "
            f"after {type(error).__name__}: {error}"
        )

    async def _make_request(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        method: str = "GET",
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        expect_json: bool = True,
    ) -> Any:
        """
        Make an HTTP request, retrying transient failures.

        Args:
            url: Full URL or path (appended to base_url)
            params: Query parameters
            method: HTTP method (GET or POST)
            data: JSON body for POST requests
            headers: Additional headers for this request
            expect_json: If True, parse response as JSON; otherwise return text

        Returns:
            Parsed JSON, or the response text

        Raises:
            ProviderError: (or a subclass) once retries are exhausted
        """
        full_url = self._build_url(url)
        query = self._prepare_params(dict(params or {}))

        result: Any = None
        async for attempt in self._retrying():
            with attempt:
                response = await self._send(full_url, method=method, params=query, data=data, headers=headers)
                result = self._parse_response(response, expect_json)
        return result

    async def _get_bytes(self, url: str, *, params: dict[str, Any] | None = None) -> bytes:
        """GET a binary body (e.g. a PDF), with the same retry policy."""
        full_url = self._build_url(url)
        content = b""
        async for attempt in self._retrying():
            with attempt:
                response = await self._send(
                    full_url, method="GET", params=dict(params or {}), data=None, headers=None
                )
                content = response.content
        return content

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self._max_retries)),
            wait=self._retry_wait_for,
            retry=retry_if_exception(is_retryable_error),
            before_sleep=self._log_retry,
            reraise=True,
        )

    async def _send(
        self,
        url: str,
        *,
        method: str,
        params: dict[str, Any],
        data: dict[str, Any] | None,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        """One HTTP round trip, with failures mapped onto ProviderError."""
        try:
            if method == "POST":
                response = await self._client.post(url, params=params, json=data, headers=headers or {})
            else:
                response = await self._client.get(url, params=params, headers=headers or {})
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {e}", source_id=self._service_name) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Request failed: {e}", source_id=self._service_name) from e

        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 404:
            raise NotFoundError("Resource", str(response.url), source_id=self._service_name)
        if status == 429:
            raise RateLimitError(
                source_id=self._service_name,
                retry_after=self._get_retry_after(response),
            )
        if status >= 500:
            raise ServiceUnavailableError(
                f"HTTP {status} {response.reason_phrase}",
                source_id=self._service_name,
                status_code=status,
            )
        raise ProviderError(
            f"{self._service_name} HTTP {status}: {response.reason_phrase}",
            source_id=self._service_name,
            retryable=False,
        )

    def _parse_response(self, response: httpx.Response, expect_json: bool) -> Any:
        """Parse response body. Override for custom extraction logic."""
        if not expect_json:
            return response.text
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON: {e}", source_id=self._service_name) from e

    @staticmethod
    def _get_retry_after(response: httpx.Response, default: float = 1.0) -> float:
        """Extract Retry-After (seconds) from response headers."""
        try:
            return float(response.headers.get("Retry-After", default))
        except (ValueError, TypeError):
            return default

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def aclose(self) -> None:
        await self.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
