"""
Async HTTP client wrapper for provider requests.
Includes exponential-backoff retry, timeout management, local rate limiting,
response envelope unwrapping and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY, PROVIDER_REQUESTS
from shared.utils.rate_limiter import ProviderRateLimiter

logger = get_logger(__name__)


class UpstreamPayloadError(Exception):
    """Upstream answered 2xx but the body is an error or unusable. Not retried."""


def unwrap_payload(body: Any) -> Any:
    """
    Strip the provider envelope off a decoded JSON body.

    Handles CricAPI style ``{"status": "success", "data": [...]}``, API-Sports
    style ``{"response": [...], "errors": ...}`` and bare arrays/objects.
    """
    if body is None:
        raise UpstreamPayloadError("Empty response body")
    if isinstance(body, list):
        return body
    if not isinstance(body, dict):
        raise UpstreamPayloadError(f"Unexpected response body type: {type(body).__name__}")

    status = body.get("status")
    if isinstance(status, str) and status.lower() in ("failure", "error"):
        reason = body.get("reason") or body.get("message") or "unknown reason"
        raise UpstreamPayloadError(f"Upstream reported failure: {reason}")
    if status == "success" and "data" in body:
        return body["data"]

    if "response" in body:
        errors = body.get("errors")
        if errors and not body.get("response"):
            raise UpstreamPayloadError(f"Upstream reported errors: {errors}")
        return body["response"]

    if "data" in body:
        return body["data"]
    return body


def backoff_delay(attempt: int, min_s: float, max_s: float, factor: float) -> float:
    """Delay before retry number ``attempt`` (1-based): min * factor^(attempt-1), capped."""
    return min(max_s, min_s * (factor ** max(0, attempt - 1)))


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class ProviderHTTPClient:
    """
    Async HTTP client tailored for sports data provider APIs.
    Handles timeouts, retries, local quotas, and records metrics per request.

    The credential is a plain parameter: pass ``api_key`` together with either
    ``api_key_header`` or ``api_key_param``.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        api_key: str = "",
        api_key_header: str | None = None,
        api_key_param: str | None = None,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        rate_limiter: ProviderRateLimiter | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        s = settings or get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or s.provider_request_timeout_s
        self._connect_timeout = min(s.provider_connect_timeout_s, self._timeout)
        self._max_retries = s.provider_max_retries if max_retries is None else max_retries
        self._backoff_min = s.provider_backoff_min_s
        self._backoff_max = s.provider_backoff_max_s
        self._backoff_factor = s.provider_backoff_factor
        self._rate_limiter = rate_limiter
        self._transport = transport
        self._sleep = sleep

        self._default_headers = {"Accept": "application/json", **(headers or {})}
        self._default_params: dict[str, Any] = {}
        if api_key and api_key_header:
            self._default_headers[api_key_header] = api_key
        elif api_key and api_key_param:
            self._default_params[api_key_param] = api_key
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def provider(self) -> str:
        return self._provider

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=self._connect_timeout),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``path`` and return the unwrapped payload."""
        resp = await self.request("GET", path, params=params)
        return unwrap_payload(_decode(resp))

    async def post(
        self, path: str, json: Any = None, params: dict[str, Any] | None = None
    ) -> Any:
        """POST ``json`` to ``path`` and return the unwrapped payload."""
        resp = await self.request("POST", path, params=params, json=json)
        return unwrap_payload(_decode(resp))

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """
        Perform a request with retry, metrics, and structured logging.

        Retries network errors, timeouts, 5xx and 429 with exponential backoff.
        Other 4xx responses are raised immediately.

        Raises:
            httpx.HTTPStatusError: On non-retryable HTTP errors or exhausted retries.
            httpx.TransportError: If the network keeps failing after all retries.
            ProviderRateLimited: If the local quota has no slot left.
        """
        if not self._client:
            raise RuntimeError("ProviderHTTPClient not started. Call start() first.")

        merged_params = {**self._default_params, **{k: v for k, v in (params or {}).items() if v is not None}}
        attempts = self._max_retries + 1
        last_exc: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            if self._rate_limiter is not None:
                await self._rate_limiter.acquire(retry=attempt > 1)

            start_time = time.perf_counter()
            status = "unknown"
            retry_after: float | None = None
            logger.debug(
                "provider_request",
                provider=self._provider,
                method=method,
                path=path,
                attempt=attempt,
            )
            try:
                resp = await self._client.request(method, path, params=merged_params, json=json)
                status = str(resp.status_code)

                if _is_retryable_status(resp.status_code):
                    if resp.status_code == 429:
                        retry_after = _retry_after(resp)
                        if self._rate_limiter is not None:
                            self._rate_limiter.record_429(retry_after)
                    logger.warning(
                        "provider_retryable_status",
                        provider=self._provider,
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    resp.raise_for_status()

                resp.raise_for_status()
                logger.debug(
                    "provider_response",
                    provider=self._provider,
                    path=path,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return resp

            except httpx.HTTPStatusError as exc:
                last_exc = exc
                code = exc.response.status_code
                if not _is_retryable_status(code):
                    logger.error(
                        "provider_client_error",
                        provider=self._provider,
                        path=path,
                        status=code,
                    )
                    raise

            except httpx.TimeoutException as exc:
                status = "timeout"
                last_exc = exc
                logger.warning(
                    "provider_timeout",
                    provider=self._provider,
                    path=path,
                    attempt=attempt,
                )

            except httpx.TransportError as exc:
                status = "network_error"
                last_exc = exc
                logger.warning(
                    "provider_network_error",
                    provider=self._provider,
                    path=path,
                    error=str(exc),
                    attempt=attempt,
                )

            finally:
                PROVIDER_REQUESTS.labels(
                    provider=self._provider, method=method, status=status
                ).inc()
                PROVIDER_LATENCY.labels(provider=self._provider).observe(
                    time.perf_counter() - start_time
                )

            if attempt < attempts:
                delay = backoff_delay(
                    attempt, self._backoff_min, self._backoff_max, self._backoff_factor
                )
                if retry_after is not None:
                    delay = max(delay, min(retry_after, self._backoff_max))
                logger.info(
                    "provider_retry_scheduled",
                    provider=self._provider,
                    path=path,
                    attempt=attempt,
                    retries_left=attempts - attempt,
                    delay_s=delay,
                )
                await self._sleep(delay)

        logger.error(
            "provider_retries_exhausted",
            provider=self._provider,
            path=path,
            attempts=attempts,
        )
        if last_exc:
            raise last_exc
        raise RuntimeError(f"Provider request failed after {attempts} attempts")


def _decode(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise UpstreamPayloadError(f"Response is not valid JSON: {exc}") from exc


def _retry_after(resp: httpx.Response) -> float | None:
    raw = resp.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None
