"""
llmbridge - Anthropic Messages Adapter

Adapter for the Anthropic Messages API (/v1/messages).

Streaming is content-block driven: every block is opened by
content_block_start and closed by content_block_stop, so span boundaries
come from the vendor rather than being inferred. Thinking blocks carry a
signature (or redacted data) that must be sent back verbatim on the next
turn; it is threaded through as reasoning metadata under "anthropic".
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel

from ..core.errors import InvalidArgumentError, InvalidResponseDataError
from ..core.http_client import iter_sse_data
from ..core.models import (
    Call,
    CallWarning,
    Content,
    ErrorOutput,
    FilePart,
    FinishReason,
    MediaOutput,
    Message,
    ReasoningContent,
    ReasoningPart,
    Response,
    ResponseFormatType,
    Role,
    TextContent,
    TextPart,
    ToolCallContent,
    ToolCallPart,
    ToolChoiceType,
    ToolResultPart,
    Usage,
)
from ..core.registry import provider_type
from ..observability.logging import get_logger
from ..streaming.parts import StreamPart
from ..streaming.state import StreamStateMachine
from .base import (
    BaseAdapter,
    PreparedRequest,
    decode_chunk,
    function_tools,
    resolve_options,
    unsupported_tool_warnings,
)

logger = get_logger(__name__)

NAME = "anthropic"
API_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


# ============================================================
# Provider Options
# ============================================================

class ThinkingOptions(BaseModel):
    budget_tokens: int = 0


@provider_type("anthropic.options")
class AnthropicOptions(BaseModel):
    """Call-level options for Anthropic."""
    send_reasoning: Optional[bool] = None
    thinking: Optional[ThinkingOptions] = None
    disable_parallel_tool_use: Optional[bool] = None


class CacheControl(BaseModel):
    type: str = "ephemeral"


@provider_type("anthropic.cache_control_options")
class AnthropicCacheControlOptions(BaseModel):
    """Marks a message, part or tool as a prompt-cache breakpoint."""
    cache_control: CacheControl = CacheControl()


@provider_type("anthropic.reasoning_metadata")
class AnthropicReasoningMetadata(BaseModel):
    """Thinking block continuity data; exactly one field is set."""
    signature: str = ""
    redacted_data: str = ""


def get_cache_control(options: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    """Cache control stored under "anthropic" in message or part options, if any."""
    value = (options or {}).get(NAME)
    if isinstance(value, AnthropicCacheControlOptions):
        return value.cache_control.model_dump()
    if isinstance(value, dict) and isinstance(value.get("cache_control"), dict):
        return {"type": value["cache_control"].get("type") or "ephemeral"}
    return None


def get_reasoning_metadata(options: Optional[Dict[str, Any]]) -> Optional[AnthropicReasoningMetadata]:
    """Reasoning metadata stored under "anthropic", if any."""
    value = (options or {}).get(NAME)
    if isinstance(value, AnthropicReasoningMetadata):
        return value
    if isinstance(value, dict) and (value.get("signature") or value.get("redacted_data")):
        return AnthropicReasoningMetadata.model_validate(value)
    return None


def map_finish_reason(stop_reason: Optional[str]) -> FinishReason:
    if stop_reason in ("end_turn", "pause_turn", "stop_sequence"):
        return FinishReason.STOP
    if stop_reason == "max_tokens":
        return FinishReason.LENGTH
    if stop_reason == "tool_use":
        return FinishReason.TOOL_CALLS
    if stop_reason == "refusal":
        return FinishReason.CONTENT_FILTER
    return FinishReason.UNKNOWN


def anthropic_usage(raw: Optional[Dict[str, Any]]) -> Usage:
    raw = raw or {}
    input_tokens = raw.get("input_tokens") or 0
    output_tokens = raw.get("output_tokens") or 0
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        cache_creation_tokens=raw.get("cache_creation_input_tokens") or 0,
        cache_read_tokens=raw.get("cache_read_input_tokens") or 0,
    )


# ============================================================
# Prompt conversion
# ============================================================

def group_into_blocks(messages: List[Message]) -> List[Tuple[Role, List[Message]]]:
    """
    Group consecutive messages by the role Anthropic sees.

    Tool results are sent as user content, so tool messages join the
    surrounding user block.
    """
    blocks: List[Tuple[Role, List[Message]]] = []
    for message in messages:
        role = Role.USER if message.role == Role.TOOL else message.role
        if blocks and blocks[-1][0] == role:
            blocks[-1][1].append(message)
        else:
            blocks.append((role, [message]))
    return blocks


def _with_cache(block: Dict[str, Any], cache_control: Optional[Dict[str, str]]) -> Dict[str, Any]:
    if cache_control is not None:
        block["cache_control"] = cache_control
    return block


def _part_cache_control(message: Message, index: int) -> Optional[Dict[str, str]]:
    """Part-level cache control; the message's applies to its last part."""
    part = message.content[index]
    cache_control = get_cache_control(getattr(part, "provider_options", None))
    if cache_control is None and index == len(message.content) - 1:
        cache_control = get_cache_control(message.provider_options)
    return cache_control


def _file_block(part: FilePart, warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
    if part.media_type.startswith("image/"):
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": part.media_type, "data": part.base64_data()},
        }
    if part.media_type == "application/pdf":
        return {
            "type": "document",
            "source": {"type": "base64", "media_type": part.media_type, "data": part.base64_data()},
        }
    warnings.append(CallWarning.other(f"file part media type {part.media_type} not supported"))
    return None


def _tool_result_block(part: ToolResultPart) -> Dict[str, Any]:
    block: Dict[str, Any] = {"type": "tool_result", "tool_use_id": part.tool_call_id}
    if isinstance(part.output, MediaOutput):
        block["content"] = [{
            "type": "image",
            "source": {"type": "base64", "media_type": part.output.media_type, "data": part.output.data},
        }]
    else:
        block["content"] = [{"type": "text", "text": part.output_text()}]
        if isinstance(part.output, ErrorOutput):
            block["is_error"] = True
    return block


def to_prompt(messages: List[Message],
              send_reasoning: bool = True) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]], List[CallWarning]]:
    """
    Convert Messages to Anthropic system blocks and messages.

    Only the first run of system messages becomes the system prompt;
    later system messages are dropped with a warning.
    """
    system: List[Dict[str, Any]] = []
    result: List[Dict[str, Any]] = []
    warnings: List[CallWarning] = []
    seen_system = False

    for role, group in group_into_blocks(messages):
        if role == Role.SYSTEM:
            if seen_system or result:
                warnings.append(CallWarning.other(
                    "system messages are only supported at the beginning of the conversation"
                ))
                continue
            seen_system = True
            for message in group:
                for i, part in enumerate(message.content):
                    if isinstance(part, TextPart):
                        system.append(_with_cache(
                            {"type": "text", "text": part.text}, _part_cache_control(message, i)
                        ))
            continue

        content: List[Dict[str, Any]] = []
        for message in group:
            for i, part in enumerate(message.content):
                cache_control = _part_cache_control(message, i)
                block = _content_block(part, role, send_reasoning, warnings)
                if block is not None:
                    content.append(_with_cache(block, cache_control))
        result.append({"role": role.value, "content": content})

    return system, result, warnings


def _content_block(part: Any, role: Role, send_reasoning: bool,
                   warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}

    if isinstance(part, FilePart) and role == Role.USER:
        return _file_block(part, warnings)

    if isinstance(part, ToolResultPart):
        return _tool_result_block(part)

    if isinstance(part, ReasoningPart) and role == Role.ASSISTANT:
        if not send_reasoning:
            warnings.append(CallWarning.other("sending reasoning content is disabled for this model"))
            return None
        metadata = get_reasoning_metadata(part.provider_options)
        if metadata is not None and metadata.signature:
            return {"type": "thinking", "thinking": part.text, "signature": metadata.signature}
        if metadata is not None and metadata.redacted_data:
            return {"type": "redacted_thinking", "data": metadata.redacted_data}
        warnings.append(CallWarning.other("unsupported reasoning metadata"))
        return None

    if isinstance(part, ToolCallPart) and role == Role.ASSISTANT:
        if part.provider_executed:
            return None
        try:
            tool_input = json.loads(part.input or "{}")
        except ValueError:
            warnings.append(CallWarning.other(
                f"tool call {part.tool_call_id} input is not valid JSON and was dropped"
            ))
            return None
        return {"type": "tool_use", "id": part.tool_call_id, "name": part.tool_name, "input": tool_input}

    warnings.append(CallWarning.other(
        f"{role.value} message cannot contain {part.type.value} content"
    ))
    return None


def to_anthropic_tools(call: Call, disable_parallel_tool_use: bool) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]], List[CallWarning]]:
    tools = []
    for tool in function_tools(call):
        converted = {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.parameters(),
        }
        tools.append(_with_cache(converted, get_cache_control(tool.provider_options)))
    warnings = unsupported_tool_warnings(call)

    choice = call.tool_choice
    tool_choice: Optional[Dict[str, Any]] = None
    if choice is None:
        if disable_parallel_tool_use:
            tool_choice = {"type": "auto"}
    elif choice.type == ToolChoiceType.AUTO:
        tool_choice = {"type": "auto"}
    elif choice.type == ToolChoiceType.REQUIRED:
        tool_choice = {"type": "any"}
    elif choice.type == ToolChoiceType.TOOL:
        tool_choice = {"type": "tool", "name": choice.tool_name}

    if tool_choice is not None:
        tool_choice["disable_parallel_tool_use"] = disable_parallel_tool_use
    return tools, tool_choice, warnings


# ============================================================
# Adapter
# ============================================================

class AnthropicAdapter(BaseAdapter):
    """Anthropic Messages API adapter."""

    provider = "anthropic"
    DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
    PATH = "/messages"

    def _auth_headers(self) -> Dict[str, str]:
        headers = {"anthropic-version": API_VERSION}
        if self.config.api_key:
            headers["x-api-key"] = self.config.api_key
        return headers

    def _prepare_request(self, call: Call, stream: bool) -> PreparedRequest:
        options = resolve_options(call.provider_options, NAME, AnthropicOptions) or AnthropicOptions()
        send_reasoning = True if options.send_reasoning is None else options.send_reasoning

        system, messages, warnings = to_prompt(call.messages, send_reasoning)
        payload: Dict[str, Any] = {
            "model": call.model,
            "max_tokens": call.max_output_tokens or DEFAULT_MAX_TOKENS,
            "messages": messages,
        }
        if system:
            payload["system"] = system

        if call.frequency_penalty is not None:
            warnings.append(CallWarning.unsupported_setting("FrequencyPenalty"))
        if call.presence_penalty is not None:
            warnings.append(CallWarning.unsupported_setting("PresencePenalty"))
        if call.seed is not None:
            warnings.append(CallWarning.unsupported_setting("seed"))

        for key, value in (("temperature", call.temperature),
                           ("top_k", call.top_k),
                           ("top_p", call.top_p)):
            if value is not None:
                payload[key] = value
        if call.stop_sequences:
            payload["stop_sequences"] = list(call.stop_sequences)

        if options.thinking is not None:
            budget = options.thinking.budget_tokens
            if not budget:
                raise InvalidArgumentError("thinking", "thinking requires budget")
            payload["thinking"] = {"type": "enabled", "budget_tokens": budget}
            for key, setting in (("temperature", "temperature"), ("top_p", "TopP"), ("top_k", "TopK")):
                if key in payload:
                    del payload[key]
                    warnings.append(CallWarning.unsupported_setting(
                        setting, f"{setting} is not supported when thinking is enabled"
                    ))
            payload["max_tokens"] += budget

        if call.tools:
            tools, tool_choice, tool_warnings = to_anthropic_tools(
                call, bool(options.disable_parallel_tool_use)
            )
            if tools:
                payload["tools"] = tools
                if tool_choice is not None:
                    payload["tool_choice"] = tool_choice
            warnings.extend(tool_warnings)

        if call.response_format is not None and call.response_format.type == ResponseFormatType.JSON:
            warnings.append(CallWarning.unsupported_setting(
                "response_format", "JSON response format is not supported by this provider"
            ))

        if stream:
            payload["stream"] = True
        return PreparedRequest(path=self.PATH, payload=payload, warnings=warnings)

    def _parse_response(self, call: Call, data: Dict[str, Any],
                        warnings: List[CallWarning]) -> Response:
        content: List[Content] = []
        for block in data.get("content") or []:
            block_type = block.get("type")
            if block_type == "text":
                content.append(TextContent(text=block.get("text", "")))
            elif block_type == "thinking":
                content.append(ReasoningContent(
                    text=block.get("thinking", ""),
                    provider_metadata={NAME: {"signature": block.get("signature", "")}},
                ))
            elif block_type == "redacted_thinking":
                content.append(ReasoningContent(
                    text="",
                    provider_metadata={NAME: {"redacted_data": block.get("data", "")}},
                ))
            elif block_type == "tool_use":
                content.append(ToolCallContent(
                    tool_call_id=block.get("id", ""),
                    tool_name=block.get("name", ""),
                    input=json.dumps(block.get("input") or {}, separators=(",", ":")),
                ))

        return Response(
            content=content,
            finish_reason=map_finish_reason(data.get("stop_reason")),
            usage=anthropic_usage(data.get("usage")),
            warnings=list(warnings),
        )

    async def _parse_stream(
        self,
        call: Call,
        response: httpx.Response,
        machine: StreamStateMachine,
    ) -> AsyncIterator[StreamPart]:
        # content block index -> {"type", "id", "name", "input"}
        blocks: Dict[int, Dict[str, Any]] = {}
        usage: Dict[str, Any] = {}
        stop_reason: Optional[str] = None

        async for raw in iter_sse_data(response):
            event = decode_chunk(self.provider, raw)
            event_type = event.get("type")

            if event_type == "message_start":
                usage.update((event.get("message") or {}).get("usage") or {})
                machine.update_usage(anthropic_usage(usage))

            elif event_type == "content_block_start":
                index = event.get("index", 0)
                block = event.get("content_block") or {}
                emitted = self._block_start(machine, index, block, blocks)
                for part in emitted:
                    yield part

            elif event_type == "content_block_delta":
                for part in self._block_delta(machine, event, blocks):
                    yield part

            elif event_type == "content_block_stop":
                for part in self._block_stop(machine, event.get("index", 0), blocks):
                    yield part

            elif event_type == "message_delta":
                stop_reason = (event.get("delta") or {}).get("stop_reason") or stop_reason
                # message_delta usage is cumulative
                usage.update({k: v for k, v in (event.get("usage") or {}).items() if v is not None})
                machine.update_usage(anthropic_usage(usage))

            elif event_type == "message_stop":
                for part in machine.finish(map_finish_reason(stop_reason)):
                    yield part
                return

            elif event_type == "error":
                error = event.get("error") or {}
                raise InvalidResponseDataError(
                    self.provider, f"stream error: {error.get('message', 'unknown error')}", data=event
                )

    def _block_start(self, machine: StreamStateMachine, index: int, block: Dict[str, Any],
                     blocks: Dict[int, Dict[str, Any]]) -> List[StreamPart]:
        block_type = block.get("type")
        span_id = str(index)
        blocks[index] = {
            "type": block_type,
            "id": block.get("id", ""),
            "name": block.get("name", ""),
            "input": "",
        }
        if block_type == "text":
            return machine.text_start(span_id)
        if block_type == "thinking":
            return machine.reasoning_start(span_id)
        if block_type == "redacted_thinking":
            return machine.reasoning_start(span_id, {NAME: {"redacted_data": block.get("data", "")}})
        if block_type == "tool_use":
            return machine.tool_input_start(block.get("id", ""), block.get("name", ""))
        return []

    def _block_delta(self, machine: StreamStateMachine, event: Dict[str, Any],
                     blocks: Dict[int, Dict[str, Any]]) -> List[StreamPart]:
        index = event.get("index", 0)
        span_id = str(index)
        delta = event.get("delta") or {}
        delta_type = delta.get("type")

        if delta_type == "text_delta":
            return machine.text_delta(span_id, delta.get("text", ""))
        if delta_type == "thinking_delta":
            return machine.reasoning_delta(span_id, delta.get("thinking", ""))
        if delta_type == "signature_delta":
            return machine.reasoning_delta(span_id, "", {NAME: {"signature": delta.get("signature", "")}})
        if delta_type == "input_json_delta":
            block = blocks.get(index)
            if block is None:
                return []
            fragment = delta.get("partial_json", "")
            block["input"] += fragment
            return machine.tool_input_delta(block["id"], fragment)
        return []

    def _block_stop(self, machine: StreamStateMachine, index: int,
                    blocks: Dict[int, Dict[str, Any]]) -> List[StreamPart]:
        block = blocks.get(index)
        if block is None:
            return []
        span_id = str(index)
        if block["type"] == "text":
            return machine.text_end(span_id)
        if block["type"] in ("thinking", "redacted_thinking"):
            return machine.reasoning_end(span_id)
        if block["type"] == "tool_use":
            return machine.tool_call(block["id"], block["name"], block["input"])
        return []
