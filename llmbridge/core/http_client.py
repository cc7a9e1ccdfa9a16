"""
llmbridge - Provider HTTP Client

Thin transport used by every adapter:
- JSON POST for one-shot generation
- Streaming POST returning an open response for SSE / NDJSON parsing
- Exponential backoff retry (2s, 4s, ... honoring retry-after headers)
- Step-based logging with redacted payload summaries

Retry only covers opening a request. Once a stream is open nothing is
replayed; mid-stream failures surface as stream errors.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

import httpx

from .errors import (
    LLMBridgeError,
    RetryError,
    RetryReason,
    create_error_from_response,
    handle_transport_error,
)
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 2
    initial_delay: float = 2.0  # seconds
    backoff_factor: float = 2.0
    max_retry_after: float = 60.0  # server hints above this are ignored


def calculate_backoff(
    attempt: int,
    config: RetryConfig,
    error: Optional[BaseException] = None,
) -> float:
    """
    Delay before the next attempt.

    Sequence: 2s, 4s, 8s, ... unless the vendor sent retry-after-ms or
    retry-after within [0, max_retry_after], which then wins.
    """
    retry_after = getattr(getattr(error, "error", None), "retry_after", None)
    if retry_after is not None and 0 <= retry_after <= config.max_retry_after:
        return float(retry_after)
    return config.initial_delay * (config.backoff_factor ** attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    provider: str = "",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` with retries on retryable llmbridge errors.

    Raises:
        the original error when retries are disabled or the first failure
        is not retryable; otherwise RetryError carrying every attempt's error
    """
    errors: List[BaseException] = []

    for attempt in range(config.max_retries + 1):
        try:
            return await operation()
        except LLMBridgeError as e:
            if config.max_retries == 0:
                raise
            errors.append(e)

            if not e.retryable:
                if attempt == 0:
                    raise
                raise RetryError(
                    f"failed after {attempt + 1} attempts with non-retryable error: {e}",
                    RetryReason.ERROR_NOT_RETRYABLE,
                    errors,
                ) from e

            if attempt >= config.max_retries:
                raise RetryError(
                    f"failed after {attempt + 1} attempts: {e}",
                    RetryReason.MAX_RETRIES_EXCEEDED,
                    errors,
                ) from e

            delay = calculate_backoff(attempt, config, e)
            logger.warning(
                "Retrying vendor request",
                provider=provider,
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay_s=delay,
                error=str(e),
            )
            get_metrics().record_retry(provider, e.error.code)
            await sleep(delay)

    raise AssertionError("unreachable")


def summarize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Create a short payload summary for debug logs."""
    summary: Dict[str, Any] = {}
    for key, value in payload.items():
        if key in ("messages", "input", "contents") and isinstance(value, list):
            summary[key] = f"[{len(value)} items]"
        elif key == "tools" and isinstance(value, list):
            summary[key] = f"[{len(value)} tools]"
        elif isinstance(value, str) and len(value) > 100:
            summary[key] = f"{value[:50]}...({len(value)} chars)"
        else:
            summary[key] = value
    return summary


class ProviderHttpClient:
    """
    HTTP client bound to one vendor.

    Owns an httpx.AsyncClient unless one is injected (tests inject a
    client built on httpx.MockTransport).
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 60.0,
        retry_config: Optional[RetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.default_headers = {"Content-Type": "application/json", **(headers or {})}
        self.retry_config = retry_config or RetryConfig()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def close(self):
        if self._owns_client and not self.client.is_closed:
            await self.client.aclose()

    def _build_request(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]],
        params: Optional[Dict[str, Any]],
    ) -> httpx.Request:
        return self.client.build_request(
            "POST",
            self.url(path),
            json=payload,
            headers={**self.default_headers, **(headers or {})},
            params=params,
        )

    async def _send(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]],
        params: Optional[Dict[str, Any]],
        stream: bool,
    ) -> httpx.Response:
        request = self._build_request(path, payload, headers, params)
        logger.debug(
            "Sending vendor request",
            provider=self.provider,
            path=path,
            stream=stream,
            payload=summarize_payload(payload),
        )
        try:
            response = await self.client.send(request, stream=stream)
        except httpx.HTTPError as e:
            raise handle_transport_error(self.provider, e) from e

        if response.status_code >= 400:
            try:
                await response.aread()
            finally:
                await response.aclose()
            raise create_error_from_response(self.provider, response, request_body=payload)

        return response

    async def post_json(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Any, httpx.Headers]:
        """POST with retry and return the decoded JSON body and response headers."""

        async def attempt() -> httpx.Response:
            return await self._send(path, payload, headers, params, stream=False)

        response = await retry_with_backoff(attempt, self.retry_config, self.provider)
        try:
            return response.json(), response.headers
        except ValueError as e:
            raise create_error_from_response(self.provider, response, payload) from e

    async def open_stream(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        POST with retry and return the open streaming response.

        The caller must ``await response.aclose()``.
        """

        async def attempt() -> httpx.Response:
            return await self._send(path, payload, headers, params, stream=True)

        return await retry_with_backoff(attempt, self.retry_config, self.provider)


# ============================================================
# Stream framing
# ============================================================

SSE_DONE = "[DONE]"


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """
    Yield the data payload of each server-sent event.

    Multi-line data fields are joined with newlines; ``event:``, ``id:``
    and comment lines are ignored. Stops at the ``[DONE]`` sentinel.
    """
    data_lines: List[str] = []
    async for line in response.aiter_lines():
        if line == "":
            if data_lines:
                data = "\n".join(data_lines)
                data_lines = []
                if data == SSE_DONE:
                    return
                yield data
            continue
        if line.startswith("data:"):
            value = line[5:]
            data_lines.append(value[1:] if value.startswith(" ") else value)

    if data_lines:
        data = "\n".join(data_lines)
        if data != SSE_DONE:
            yield data


async def iter_ndjson(response: httpx.Response) -> AsyncIterator[str]:
    """Yield each non-blank line of a newline-delimited JSON stream."""
    async for line in response.aiter_lines():
        line = line.strip()
        if line:
            yield line
