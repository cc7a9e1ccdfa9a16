"""
llmbridge - Provider Adapter Base

Abstract base class for provider adapters.

Each adapter implements three vendor-specific steps:
1. _prepare_request: map a Call to the vendor request body, collecting
   warnings for settings it drops or alters
2. _parse_response: map a one-shot vendor JSON response to a Response
3. _parse_stream: drive a StreamStateMachine from the vendor's raw
   SSE / NDJSON stream

The base class owns everything around them: transport and retry,
logging, metrics, tracing, the warnings-first / single-terminal-event
stream contract, and connection release on cancellation.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..config import get_api_key, get_base_url, get_max_retries, get_timeout
from ..core.errors import (
    InvalidArgumentError,
    InvalidResponseDataError,
    LLMBridgeError,
    StreamProtocolError,
    handle_transport_error,
)
from ..core.http_client import ProviderHttpClient, RetryConfig
from ..core.models import (
    Call,
    CallWarning,
    FinishReason,
    FunctionTool,
    ProviderDefinedTool,
    Response,
)
from ..observability.logging import TimedOperation, call_context, get_logger
from ..observability.metrics import get_metrics
from ..observability.tracing import record_exception, start_provider_span, trace_provider_call
from ..schema.validator import validate_against_schema
from ..streaming.parts import StreamPart, StreamPartType
from ..streaming.state import StreamStateMachine

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass
class AdapterConfig:
    """Configuration for a provider adapter."""
    api_key: str = ""
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 2
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, provider: str) -> "AdapterConfig":
        """
        Build a config from environment variables.

        Raises:
            InvalidArgumentError: if the provider's API key is not set
        """
        api_key = get_api_key(provider)
        if api_key is None and provider != "openai-compat":
            raise InvalidArgumentError("api_key", f"no API key configured for {provider}")
        return cls(
            api_key=api_key or "",
            base_url=get_base_url(provider),
            timeout=get_timeout(),
            max_retries=get_max_retries(),
        )


@dataclass
class PreparedRequest:
    """A vendor request body plus the warnings produced while building it."""
    path: str
    payload: Dict[str, Any]
    warnings: List[CallWarning] = field(default_factory=list)
    params: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)


def decode_chunk(provider: str, raw: str) -> Dict[str, Any]:
    """Decode one streamed JSON chunk; malformed chunks end the stream."""
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise InvalidResponseDataError(provider, "malformed stream chunk", data=raw, cause=e) from e
    if not isinstance(data, dict):
        raise InvalidResponseDataError(provider, "stream chunk is not an object", data=raw)
    return data


def unsupported_tool_warnings(call: Call) -> List[CallWarning]:
    """Warnings for vendor-defined tools an adapter does not support."""
    return [
        CallWarning.unsupported_tool(tool)
        for tool in call.tools
        if isinstance(tool, ProviderDefinedTool)
    ]


def function_tools(call: Call) -> List[FunctionTool]:
    return [tool for tool in call.tools if isinstance(tool, FunctionTool)]


def mark_invalid_tool_calls(call: Call, response: Response) -> None:
    """Flag tool calls whose input is not valid JSON or does not match the tool schema."""
    tools = {tool.name: tool for tool in function_tools(call)}
    for tool_call in response.tool_calls():
        if tool_call.provider_executed:
            continue
        tool = tools.get(tool_call.tool_name)
        if tool is None:
            if any(t.name == tool_call.tool_name for t in call.tools):
                continue
            tool_call.invalid = True
            tool_call.validation_error = ValueError(f"unknown tool {tool_call.tool_name!r}")
            continue
        try:
            value = json.loads(tool_call.input or "{}")
        except ValueError as e:
            tool_call.invalid = True
            tool_call.validation_error = e
            continue
        if tool.input_schema is not None:
            violation = validate_against_schema(value, tool.parameters())
            if violation is not None:
                tool_call.invalid = True
                tool_call.validation_error = violation


def resolve_options(options: Dict[str, Any], key: str, model: Type[M]) -> Optional[M]:
    """
    Typed provider options stored under ``key``.

    Plain dicts (e.g. metadata handed back from an earlier response) are
    validated into ``model``.

    Raises:
        InvalidArgumentError: if the value has the wrong type or shape
    """
    value = (options or {}).get(key)
    if value is None:
        return None
    if isinstance(value, model):
        return value
    if isinstance(value, dict):
        try:
            return model.model_validate(value)
        except ValidationError as e:
            raise InvalidArgumentError("provider_options", f"invalid {key} options: {e}", cause=e) from e
    raise InvalidArgumentError(
        "provider_options", f"{key} provider options should be {model.__name__}"
    )


class BaseAdapter(ABC):
    """
    Abstract base class for provider adapters.

    Entry points:
    - generate: one-shot call, fails atomically
    - stream: async generator of StreamPart; errors before the vendor
      stream opens raise, later errors become a terminal ERROR part
    """

    provider: str = ""
    DEFAULT_BASE_URL: str = ""

    # Object generation: vendors with a native JSON schema mode
    supports_json_mode: bool = False

    def __init__(self, config: AdapterConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.http = ProviderHttpClient(
            provider=self.provider,
            base_url=config.base_url or self.DEFAULT_BASE_URL,
            headers={**self._auth_headers(), **config.headers},
            timeout=config.timeout,
            retry_config=RetryConfig(max_retries=config.max_retries),
            client=client,
        )

    def _auth_headers(self) -> Dict[str, str]:
        if not self.config.api_key:
            return {}
        return {"Authorization": f"Bearer {self.config.api_key}"}

    # ============================================================
    # Vendor-specific steps
    # ============================================================

    @abstractmethod
    def _prepare_request(self, call: Call, stream: bool) -> PreparedRequest:
        """Map a Call to the vendor request."""

    @abstractmethod
    def _parse_response(self, call: Call, data: Dict[str, Any],
                        warnings: List[CallWarning]) -> Response:
        """Map a one-shot vendor response."""

    @abstractmethod
    def _parse_stream(
        self,
        call: Call,
        response: httpx.Response,
        machine: StreamStateMachine,
    ) -> AsyncIterator[StreamPart]:
        """
        Consume the raw vendor stream, yielding the parts the machine emits.

        Must end the stream itself (machine.finish) when the vendor
        signals completion. Raising an LLMBridgeError ends it with an error.
        """

    # ============================================================
    # Entry points
    # ============================================================

    async def generate(self, call: Call) -> Response:
        """Generate a complete response."""
        start = time.perf_counter()
        metrics = get_metrics()

        with call_context(provider=self.provider, model=call.model, operation="generate"), \
                trace_provider_call(self.provider, call.model, "generate") as span:
            try:
                async with TimedOperation("generate", logger):
                    request = self._prepare_request(call, stream=False)
                    data, _ = await self.http.post_json(
                        request.path, request.payload,
                        headers={**request.headers, **call.headers},
                        params=request.params,
                    )
                    if not isinstance(data, dict):
                        raise InvalidResponseDataError(self.provider, "response is not an object", data=data)
                    response = self._parse_response(call, data, request.warnings)
            except Exception:
                metrics.record_call(self.provider, call.model, "generate", "error",
                                    time.perf_counter() - start)
                raise

            mark_invalid_tool_calls(call, response)
            if response.tool_calls():
                response.finish_reason = FinishReason.TOOL_CALLS

            for warning in response.warnings:
                metrics.record_warning(self.provider, warning.type.value)
            metrics.record_call(self.provider, call.model, "generate", "ok",
                                time.perf_counter() - start)
            metrics.record_usage(self.provider, call.model, response.usage)
            span.set_attribute("ai.finish_reason", response.finish_reason.value)
            span.set_attribute("ai.usage.input_tokens", response.usage.input_tokens)
            span.set_attribute("ai.usage.output_tokens", response.usage.output_tokens)
            return response

    async def stream(self, call: Call) -> AsyncIterator[StreamPart]:
        """
        Stream normalized parts.

        Pull-based: nothing is read from the network until the consumer
        asks for the next part. Closing the generator (``aclose``) closes
        the HTTP response and stops all processing.
        """
        metrics = get_metrics()
        start = time.perf_counter()
        span = start_provider_span(self.provider, call.model, "stream")
        status = "error"

        try:
            request = self._prepare_request(call, stream=True)
            response = await self.http.open_stream(
                request.path, request.payload,
                headers={**request.headers, **call.headers},
                params=request.params,
            )
        except Exception as e:
            record_exception(span, e)
            span.end()
            metrics.record_call(self.provider, call.model, "stream", status,
                                time.perf_counter() - start)
            raise

        logger.debug("Stream opened", provider=self.provider, model=call.model,
                     status_code=response.status_code)

        machine = StreamStateMachine(self.provider)
        inner = self._parse_stream(call, response, machine)
        guarded = self._guarded(inner, machine)
        first = True

        try:
            with metrics.track_active_stream(self.provider):
                for warning in request.warnings:
                    metrics.record_warning(self.provider, warning.type.value)
                for part in machine.warnings(request.warnings):
                    yield part

                async for part in guarded:
                    if first:
                        first = False
                        metrics.record_time_to_first_part(
                            self.provider, call.model, time.perf_counter() - start
                        )
                    metrics.record_stream_part(self.provider, part.type.value)

                    if part.type == StreamPartType.FINISH:
                        status = "ok"
                        if part.usage is not None:
                            metrics.record_usage(self.provider, call.model, part.usage)
                        span.set_attribute("ai.finish_reason", part.finish_reason.value)
                    elif part.type == StreamPartType.ERROR:
                        logger.error("Stream ended with error", provider=self.provider,
                                     model=call.model, error=str(part.error))
                        record_exception(span, part.error)

                    yield part
        finally:
            await guarded.aclose()
            await inner.aclose()
            await response.aclose()
            span.end()
            if status == "error" and not machine.done:
                status = "cancelled"
            metrics.record_call(self.provider, call.model, "stream", status,
                                time.perf_counter() - start)

    async def _guarded(
        self,
        inner: AsyncIterator[StreamPart],
        machine: StreamStateMachine,
    ) -> AsyncIterator[StreamPart]:
        """Turn parser and transport failures into a single terminal error part."""
        try:
            async for part in inner:
                yield part
                if part.type.is_terminal:
                    return
        except LLMBridgeError as e:
            for part in machine.fail(e):
                yield part
            return
        except httpx.HTTPError as e:
            for part in machine.fail(handle_transport_error(self.provider, e)):
                yield part
            return

        if not machine.done:
            for part in machine.fail(StreamProtocolError(
                self.provider, "stream ended without a completion signal"
            )):
                yield part

    async def close(self):
        """Close the HTTP client."""
        await self.http.close()

    async def __aenter__(self) -> "BaseAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
