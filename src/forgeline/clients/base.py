from __future__ import annotations

from typing import Any, Protocol

import httpx
import structlog
from circuitbreaker import CircuitBreaker, CircuitBreakerError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from forgeline.cancellation import CancellationToken, settle
from forgeline.core.errors import (
    ApiError,
    ErrorCategory,
    TransientError,
    category_for_status,
)

logger = structlog.get_logger()


def is_retryable_status(status_code: int) -> bool:
    """Determine if HTTP status code is retryable."""
    return status_code in (408, 429, 500, 502, 503, 504)


class ApiClient(Protocol):
    """Authenticated handle to a remote API, shared across dispatches."""

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Any:
        ...


class BaseHTTPClient:
    """HTTP client with typed errors, retry logic and circuit breaker."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 2.0,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 30.0,
        circuit_failure_threshold: int = 5,
        circuit_recovery_timeout: int = 60,
        user_agent: str | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff_factor = backoff_factor
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait
        self._user_agent = user_agent
        self._breaker = CircuitBreaker(
            failure_threshold=circuit_failure_threshold,
            recovery_timeout=circuit_recovery_timeout,
            expected_exception=TransientError,
            name=f"forgeline:{self._base_url}",
        )
        self._guarded_send = self._breaker(self._send)

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        """Override to provide custom headers."""
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if self._user_agent:
            headers["User-Agent"] = self._user_agent
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Any:
        """Execute HTTP request with retry and circuit breaker.

        Transient failures are retried with exponential backoff; anything else
        surfaces immediately as an ``ApiError``. When ``cancellation`` is
        tripped no further attempt is issued.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientError),
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(
                multiplier=self._backoff_factor,
                min=self._retry_min_wait,
                max=self._retry_max_wait,
            ),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    return await self._guarded_send(
                        method,
                        path,
                        json=json,
                        params=params,
                        headers=headers,
                        cancellation=cancellation,
                    )
        except CircuitBreakerError as exc:
            logger.warning("http_circuit_open", method=method, path=path, error=str(exc))
            raise TransientError(
                f"Circuit open for {self._base_url}",
                category=ErrorCategory.SERVER_ERROR,
            ) from exc

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        req_headers = self._headers()
        if headers:
            req_headers.update(headers)

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await settle(
                    client.request(
                        method,
                        url,
                        params=params,
                        json=json,
                        headers=req_headers,
                    ),
                    cancellation,
                )
        except (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError) as exc:
            logger.warning("http_network_error", method=method, url=url, error=str(exc))
            raise TransientError(f"{method} {path}: {exc}") from exc

        if is_retryable_status(response.status_code):
            logger.warning(
                "http_retryable_error",
                status=response.status_code,
                method=method,
                url=url,
            )
            raise TransientError(
                f"{method} {path}: HTTP {response.status_code}",
                status=response.status_code,
                category=category_for_status(response.status_code),
            )

        if response.is_error:
            error = ApiError.from_response(response, operation=f"{method} {path}")
            logger.info(
                "http_permanent_error",
                status=response.status_code,
                category=str(error.category),
                method=method,
                url=url,
            )
            raise error

        return response.json() if response.content else {}

    async def get(self, path: str, *, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        """Execute GET request."""
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, *, json: Any = None, **kwargs: Any) -> Any:
        """Execute POST request."""
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str, *, json: Any = None, **kwargs: Any) -> Any:
        """Execute PUT request."""
        return await self.request("PUT", path, json=json, **kwargs)

    async def patch(self, path: str, *, json: Any = None, **kwargs: Any) -> Any:
        """Execute PATCH request."""
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        """Execute DELETE request."""
        return await self.request("DELETE", path, **kwargs)
