"""
llmbridge - OpenAI Responses Adapter

Adapter for the OpenAI Responses API (/responses).

The stream is item-lifecycle driven: every output item (message,
function_call, reasoning) is announced by response.output_item.added and
closed by response.output_item.done, so spans map one-to-one onto items.
Completion is explicit (response.completed / response.incomplete).

Reasoning items carry an item id, summary texts and, when requested, the
encrypted content needed to continue the chain of thought on a later
turn. They are surfaced as reasoning metadata under "openai".
"""

import json
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

import httpx
from pydantic import BaseModel

from ..core.errors import InvalidResponseDataError
from ..core.http_client import iter_sse_data
from ..core.models import (
    Call,
    CallWarning,
    Content,
    FilePart,
    FinishReason,
    MediaOutput,
    Message,
    ReasoningContent,
    ReasoningPart,
    Response,
    ResponseFormatType,
    Role,
    SourceContent,
    SourceType,
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
from .openai_chat import ReasoningEffort, add_additional_properties_false

logger = get_logger(__name__)

NAME = "openai"
TOP_LOGPROBS_MAX = 20
INCLUDE_LOGPROBS = "message.output_text.logprobs"


# ============================================================
# Provider Options
# ============================================================

@provider_type("openai-responses.options")
class OpenAIResponsesOptions(BaseModel):
    """
    Responses API options, stored under the "openai" key.

    ``logprobs`` is either a bool (True requests the maximum of 20) or
    the number of top logprobs to return.
    """
    include: Optional[List[str]] = None
    instructions: Optional[str] = None
    logprobs: Optional[Union[bool, int]] = None
    max_tool_calls: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    parallel_tool_calls: Optional[bool] = None
    prompt_cache_key: Optional[str] = None
    reasoning_effort: Optional[ReasoningEffort] = None
    reasoning_summary: Optional[str] = None
    safety_identifier: Optional[str] = None
    service_tier: Optional[str] = None
    strict_json_schema: Optional[bool] = None
    text_verbosity: Optional[str] = None
    user: Optional[str] = None


@provider_type("openai-responses.reasoning_metadata")
class ResponsesReasoningMetadata(BaseModel):
    """Continuation data of one reasoning item."""
    item_id: str = ""
    summary: List[str] = []
    encrypted_content: Optional[str] = None


def get_reasoning_metadata(options: Optional[Dict[str, Any]]) -> Optional[ResponsesReasoningMetadata]:
    """Reasoning metadata stored under "openai", if any."""
    value = (options or {}).get(NAME)
    if isinstance(value, ResponsesReasoningMetadata):
        return value
    if isinstance(value, dict) and "item_id" in value:
        return ResponsesReasoningMetadata.model_validate(value)
    return None


# ============================================================
# Model configuration
# ============================================================

class ModelConfig:
    """Per-model Responses behavior."""

    def __init__(self, model: str):
        self.supports_flex_processing = (
            model.startswith("o3") or model.startswith("o4-mini")
            or (model.startswith("gpt-5") and not model.startswith("gpt-5-chat"))
        )
        self.supports_priority_processing = (
            model.startswith("gpt-4") or model.startswith("gpt-5-mini")
            or (model.startswith("gpt-5") and not model.startswith(("gpt-5-nano", "gpt-5-chat")))
            or model.startswith("o3") or model.startswith("o4-mini")
        )

        if model.startswith("gpt-5-chat"):
            self.is_reasoning_model = False
            self.system_message_mode = "system"
        elif model.startswith(("o", "gpt-5", "codex-", "computer-use")):
            self.is_reasoning_model = True
            if model.startswith(("o1-mini", "o1-preview")):
                self.system_message_mode = "remove"
            else:
                self.system_message_mode = "developer"
        else:
            self.is_reasoning_model = False
            self.system_message_mode = "system"


def map_finish_reason(reason: Optional[str], has_function_call: bool) -> FinishReason:
    if has_function_call:
        return FinishReason.TOOL_CALLS
    if not reason:
        return FinishReason.STOP
    if reason in ("max_tokens", "max_output_tokens"):
        return FinishReason.LENGTH
    if reason == "content_filter":
        return FinishReason.CONTENT_FILTER
    return FinishReason.OTHER


def responses_usage(raw: Optional[Dict[str, Any]]) -> Usage:
    raw = raw or {}
    input_tokens = raw.get("input_tokens") or 0
    output_tokens = raw.get("output_tokens") or 0
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        reasoning_tokens=(raw.get("output_tokens_details") or {}).get("reasoning_tokens") or 0,
        cache_read_tokens=(raw.get("input_tokens_details") or {}).get("cached_tokens") or 0,
    )


def annotation_source(annotation: Dict[str, Any]) -> Optional[SourceContent]:
    """Map a url_citation / file_citation annotation to a source."""
    kind = annotation.get("type")
    if kind == "url_citation":
        return SourceContent(
            source_type=SourceType.URL,
            id=str(uuid.uuid4()),
            url=annotation.get("url", ""),
            title=annotation.get("title", ""),
        )
    if kind == "file_citation":
        filename = annotation.get("filename") or ""
        return SourceContent(
            source_type=SourceType.DOCUMENT,
            id=str(uuid.uuid4()),
            media_type="text/plain",
            title=filename or "Document",
            filename=filename or annotation.get("file_id", ""),
        )
    return None


# ============================================================
# Prompt conversion
# ============================================================

def to_responses_input(messages: List[Message], system_message_mode: str) -> Tuple[List[Dict[str, Any]], List[CallWarning]]:
    """Convert Messages to Responses input items."""
    items: List[Dict[str, Any]] = []
    warnings: List[CallWarning] = []

    for message in messages:
        if message.role == Role.SYSTEM:
            text = ""
            for part in message.content:
                if not isinstance(part, TextPart):
                    warnings.append(CallWarning.other("system prompt can only have text content"))
                    continue
                if part.text.strip():
                    text += part.text
            if not text:
                warnings.append(CallWarning.other("system prompt has no text parts"))
                continue
            if system_message_mode == "remove":
                warnings.append(CallWarning.other("system messages are removed for this model"))
                continue
            items.append({"role": system_message_mode, "content": text})

        elif message.role == Role.USER:
            content: List[Dict[str, Any]] = []
            for i, part in enumerate(message.content):
                if isinstance(part, TextPart):
                    content.append({"type": "input_text", "text": part.text})
                elif isinstance(part, FilePart):
                    converted = _input_file(part, i, warnings)
                    if converted is not None:
                        content.append(converted)
            items.append({"role": "user", "content": content})

        elif message.role == Role.ASSISTANT:
            for part in message.content:
                if isinstance(part, TextPart):
                    items.append({"role": "assistant", "content": part.text})
                elif isinstance(part, ToolCallPart):
                    if part.provider_executed:
                        continue
                    items.append({
                        "type": "function_call",
                        "call_id": part.tool_call_id,
                        "name": part.tool_name,
                        "arguments": part.input,
                    })
                elif isinstance(part, ReasoningPart):
                    reasoning = _reasoning_item(part, warnings)
                    if reasoning is not None:
                        items.append(reasoning)

        elif message.role == Role.TOOL:
            for part in message.content:
                if not isinstance(part, ToolResultPart):
                    warnings.append(CallWarning.other("tool message can only have tool result content"))
                    continue
                if isinstance(part.output, MediaOutput):
                    output = json.dumps({"data": part.output.data, "media_type": part.output.media_type})
                else:
                    output = part.output_text()
                items.append({"type": "function_call_output", "call_id": part.tool_call_id, "output": output})

    return items, warnings


def _input_file(part: FilePart, index: int, warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
    if part.media_type.startswith("image/"):
        return {"type": "input_image", "image_url": part.data_url()}
    if part.media_type == "application/pdf":
        return {
            "type": "input_file",
            "filename": part.filename or f"part-{index}.pdf",
            "file_data": part.data_url(),
        }
    warnings.append(CallWarning.other(f"file part media type {part.media_type} not supported"))
    return None


def _reasoning_item(part: ReasoningPart, warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
    metadata = get_reasoning_metadata(part.provider_options)
    # Reasoning that did not come from this API cannot be replayed
    if metadata is None or not metadata.item_id:
        return None
    if not metadata.summary and metadata.encrypted_content is None:
        warnings.append(CallWarning.other("assistant message reasoning part is empty"))
        return None
    item: Dict[str, Any] = {
        "type": "reasoning",
        "id": metadata.item_id,
        "summary": [{"type": "summary_text", "text": s} for s in metadata.summary],
    }
    if metadata.encrypted_content is not None:
        item["encrypted_content"] = metadata.encrypted_content
    return item


def to_responses_tools(call: Call, strict: bool) -> Tuple[List[Dict[str, Any]], Optional[Any], List[CallWarning]]:
    tools = [
        {
            "type": "function",
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters(),
            "strict": strict,
        }
        for tool in function_tools(call)
    ]
    warnings = unsupported_tool_warnings(call)

    choice = call.tool_choice
    if choice is None:
        return tools, None, warnings
    if choice.type == ToolChoiceType.TOOL:
        return tools, {"type": "function", "name": choice.tool_name}, warnings
    return tools, choice.type.value, warnings


# ============================================================
# Adapter
# ============================================================

class OpenAIResponsesAdapter(BaseAdapter):
    """OpenAI Responses API adapter. Responses are never stored server-side."""

    provider = "openai-responses"
    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    PATH = "/responses"
    supports_json_mode = True

    def _prepare_request(self, call: Call, stream: bool) -> PreparedRequest:
        config = ModelConfig(call.model)
        options = resolve_options(call.provider_options, NAME, OpenAIResponsesOptions)
        warnings: List[CallWarning] = []

        for value, setting in ((call.top_k, "top_k"),
                               (call.presence_penalty, "presence_penalty"),
                               (call.frequency_penalty, "frequency_penalty")):
            if value is not None:
                warnings.append(CallWarning.unsupported_setting(setting))
        if call.stop_sequences:
            warnings.append(CallWarning.unsupported_setting("stop_sequences"))
        if call.seed is not None:
            warnings.append(CallWarning.unsupported_setting("seed"))

        items, input_warnings = to_responses_input(call.messages, config.system_message_mode)
        warnings.extend(input_warnings)

        payload: Dict[str, Any] = {"model": call.model, "input": items, "store": False}
        if call.temperature is not None:
            payload["temperature"] = call.temperature
        if call.top_p is not None:
            payload["top_p"] = call.top_p
        if call.max_output_tokens is not None:
            payload["max_output_tokens"] = call.max_output_tokens

        include: List[str] = []
        if options is not None:
            warnings.extend(self._apply_options(options, config, payload, include))

        if include:
            payload["include"] = include

        if config.is_reasoning_model:
            for key, setting in (("temperature", "temperature"), ("top_p", "top_p")):
                if key in payload:
                    del payload[key]
                    warnings.append(CallWarning.unsupported_setting(
                        setting, f"{setting} is not supported for reasoning models"
                    ))

        if call.tools:
            strict = bool(options and options.strict_json_schema)
            tools, tool_choice, tool_warnings = to_responses_tools(call, strict)
            if tools:
                payload["tools"] = tools
                if tool_choice is not None:
                    payload["tool_choice"] = tool_choice
            warnings.extend(tool_warnings)

        fmt = call.response_format
        if fmt is not None and fmt.type == ResponseFormatType.JSON:
            text = payload.setdefault("text", {})
            if fmt.schema is None:
                text["format"] = {"type": "json_object"}
            else:
                text["format"] = {
                    "type": "json_schema",
                    "name": fmt.name or "response",
                    "schema": add_additional_properties_false(fmt.schema.to_dict()),
                    "strict": True,
                }
                if fmt.description:
                    text["format"]["description"] = fmt.description

        if stream:
            payload["stream"] = True
        return PreparedRequest(path=self.PATH, payload=payload, warnings=warnings)

    @staticmethod
    def _apply_options(options: OpenAIResponsesOptions, config: ModelConfig,
                       payload: Dict[str, Any], include: List[str]) -> List[CallWarning]:
        warnings: List[CallWarning] = []

        top_logprobs = 0
        if options.logprobs is True:
            top_logprobs = TOP_LOGPROBS_MAX
        elif isinstance(options.logprobs, int) and not isinstance(options.logprobs, bool):
            top_logprobs = options.logprobs
        if top_logprobs > 0:
            include.append(INCLUDE_LOGPROBS)
            payload["top_logprobs"] = top_logprobs

        fields = {
            "max_tool_calls": options.max_tool_calls,
            "parallel_tool_calls": options.parallel_tool_calls,
            "user": options.user,
            "instructions": options.instructions,
            "service_tier": options.service_tier,
            "prompt_cache_key": options.prompt_cache_key,
            "safety_identifier": options.safety_identifier,
        }
        for key, value in fields.items():
            if value is not None:
                payload[key] = value
        if options.metadata:
            payload["metadata"] = {k: v for k, v in options.metadata.items() if isinstance(v, str)}
        if options.text_verbosity is not None:
            payload.setdefault("text", {})["verbosity"] = options.text_verbosity
        include.extend(options.include or [])

        if config.is_reasoning_model:
            reasoning: Dict[str, Any] = {}
            if options.reasoning_effort is not None:
                reasoning["effort"] = options.reasoning_effort.value
            if options.reasoning_summary is not None:
                reasoning["summary"] = options.reasoning_summary
            if reasoning:
                payload["reasoning"] = reasoning
        else:
            if options.reasoning_effort is not None:
                warnings.append(CallWarning.unsupported_setting(
                    "reasoning_effort", "reasoning_effort is not supported for non-reasoning models"
                ))
            if options.reasoning_summary is not None:
                warnings.append(CallWarning.unsupported_setting(
                    "reasoning_summary", "reasoning_summary is not supported for non-reasoning models"
                ))

        if options.service_tier == "flex" and not config.supports_flex_processing:
            payload.pop("service_tier", None)
            warnings.append(CallWarning.unsupported_setting(
                "service_tier", "flex processing is only available for o3, o4-mini, and gpt-5 models"
            ))
        elif options.service_tier == "priority" and not config.supports_priority_processing:
            payload.pop("service_tier", None)
            warnings.append(CallWarning.unsupported_setting(
                "service_tier",
                "priority processing is only available for supported models "
                "(gpt-4, gpt-5, gpt-5-mini, o3, o4-mini) and requires Enterprise access",
            ))
        return warnings

    # ============================================================
    # One-shot response
    # ============================================================

    def _parse_response(self, call: Call, data: Dict[str, Any],
                        warnings: List[CallWarning]) -> Response:
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            raise InvalidResponseDataError(
                self.provider,
                f"response error: {error['message']} (code: {error.get('code', '')})",
                data=data,
            )

        content: List[Content] = []
        has_function_call = False
        for item in data.get("output") or []:
            item_type = item.get("type")
            if item_type == "message":
                for part in item.get("content") or []:
                    if part.get("type") != "output_text":
                        continue
                    content.append(TextContent(text=part.get("text", "")))
                    for annotation in part.get("annotations") or []:
                        source = annotation_source(annotation)
                        if source is not None:
                            content.append(source)
            elif item_type == "function_call":
                has_function_call = True
                content.append(ToolCallContent(
                    tool_call_id=item.get("call_id", ""),
                    tool_name=item.get("name", ""),
                    input=item.get("arguments") or "{}",
                ))
            elif item_type == "reasoning":
                reasoning = self._reasoning_content(item)
                if reasoning is not None:
                    content.append(reasoning)

        reason = (data.get("incomplete_details") or {}).get("reason")
        return Response(
            content=content,
            finish_reason=map_finish_reason(reason, has_function_call),
            usage=responses_usage(data.get("usage")),
            warnings=list(warnings),
        )

    @staticmethod
    def _reasoning_content(item: Dict[str, Any]) -> Optional[ReasoningContent]:
        summaries = [s.get("text", "") for s in item.get("summary") or []]
        encrypted = item.get("encrypted_content") or None
        if not summaries and encrypted is None:
            return None
        summaries = summaries or [""]
        return ReasoningContent(
            text="\n".join(summaries),
            provider_metadata={NAME: {
                "item_id": item.get("id", ""),
                "summary": summaries,
                "encrypted_content": encrypted,
            }},
        )

    # ============================================================
    # Stream
    # ============================================================

    async def _parse_stream(
        self,
        call: Call,
        response: httpx.Response,
        machine: StreamStateMachine,
    ) -> AsyncIterator[StreamPart]:
        # output index -> (call id, tool name)
        tool_calls: Dict[int, Tuple[str, str]] = {}
        # item id -> reasoning metadata
        reasoning: Dict[str, Dict[str, Any]] = {}
        has_function_call = False

        async for raw in iter_sse_data(response):
            event = decode_chunk(self.provider, raw)
            event_type = event.get("type", "")
            emitted: List[StreamPart] = []

            if event_type == "response.output_item.added":
                item = event.get("item") or {}
                item_type = item.get("type")
                if item_type == "function_call":
                    tool_calls[event.get("output_index", 0)] = (item.get("call_id", ""), item.get("name", ""))
                    emitted = machine.tool_input_start(item.get("call_id", ""), item.get("name", ""))
                elif item_type == "message":
                    emitted = machine.text_start(item.get("id", ""))
                elif item_type == "reasoning":
                    metadata = {
                        "item_id": item.get("id", ""),
                        "summary": [],
                        "encrypted_content": item.get("encrypted_content") or None,
                    }
                    reasoning[item.get("id", "")] = metadata
                    emitted = machine.reasoning_start(item.get("id", ""), {NAME: dict(metadata)})

            elif event_type == "response.output_item.done":
                item = event.get("item") or {}
                item_type = item.get("type")
                if item_type == "function_call":
                    if tool_calls.pop(event.get("output_index", 0), None) is not None:
                        has_function_call = True
                        emitted = machine.tool_call(
                            item.get("call_id", ""), item.get("name", ""), item.get("arguments") or "{}"
                        )
                elif item_type == "message":
                    emitted = machine.text_end(item.get("id", ""))
                elif item_type == "reasoning":
                    metadata = reasoning.pop(item.get("id", ""), None)
                    if metadata is not None:
                        if item.get("encrypted_content"):
                            metadata["encrypted_content"] = item["encrypted_content"]
                        emitted = machine.reasoning_end(item.get("id", ""), {NAME: metadata})

            elif event_type == "response.function_call_arguments.delta":
                tool = tool_calls.get(event.get("output_index", 0))
                if tool is not None:
                    emitted = machine.tool_input_delta(tool[0], event.get("delta", ""))

            elif event_type == "response.output_text.delta":
                emitted = machine.text_delta(event.get("item_id", ""), event.get("delta", ""))

            elif event_type == "response.output_text.annotation.added":
                source = annotation_source(event.get("annotation") or {})
                if source is not None:
                    emitted = machine.source(source.id, source.source_type, source.url, source.title)

            elif event_type == "response.reasoning_summary_part.added":
                metadata = reasoning.get(event.get("item_id", ""))
                if metadata is not None:
                    metadata["summary"].append("")
                    if len(metadata["summary"]) > 1:
                        emitted = machine.reasoning_delta(
                            event["item_id"], "\n", {NAME: _snapshot(metadata)}
                        )

            elif event_type == "response.reasoning_summary_text.delta":
                metadata = reasoning.get(event.get("item_id", ""))
                if metadata is not None:
                    index = event.get("summary_index", 0)
                    if index < len(metadata["summary"]):
                        metadata["summary"][index] += event.get("delta", "")
                    emitted = machine.reasoning_delta(
                        event["item_id"], event.get("delta", ""), {NAME: _snapshot(metadata)}
                    )

            elif event_type in ("response.completed", "response.incomplete"):
                completed = event.get("response") or {}
                reason = (completed.get("incomplete_details") or {}).get("reason")
                machine.update_usage(responses_usage(completed.get("usage")))
                for part in machine.finish(map_finish_reason(reason, has_function_call)):
                    yield part
                return

            elif event_type in ("error", "response.failed"):
                error = event.get("error") or (event.get("response") or {}).get("error") or {}
                raise InvalidResponseDataError(
                    self.provider,
                    f"response error: {error.get('message', 'unknown error')} (code: {error.get('code', '')})",
                    data=event,
                )

            for part in emitted:
                yield part


def _snapshot(metadata: Dict[str, Any]) -> Dict[str, Any]:
    return {**metadata, "summary": list(metadata["summary"])}
