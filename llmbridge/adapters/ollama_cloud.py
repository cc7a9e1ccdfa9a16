"""
llmbridge - Ollama Cloud Adapter

Adapter for the Ollama chat API (/api/chat) hosted at ollama.com.

The stream is newline-delimited JSON. Each line carries a message
fragment (content, thinking, or complete tool calls); the last line has
``done: true`` together with the done reason and token counts.
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel

from ..core.errors import InvalidArgumentError, InvalidResponseDataError
from ..core.http_client import iter_ndjson
from ..core.models import (
    Call,
    CallWarning,
    Content,
    FilePart,
    FinishReason,
    MediaOutput,
    ReasoningContent,
    ReasoningPart,
    Response,
    ResponseFormatType,
    Role,
    TextContent,
    TextPart,
    ToolCallContent,
    ToolCallPart,
    ToolResultPart,
    Usage,
)
from ..core.registry import provider_type
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

NAME = "ollama-cloud"


@provider_type("ollama-cloud.options")
class OllamaCloudOptions(BaseModel):
    think: Optional[bool] = None


def map_finish_reason(reason: Optional[str]) -> FinishReason:
    if reason == "stop":
        return FinishReason.STOP
    if reason == "length":
        return FinishReason.LENGTH
    return FinishReason.OTHER


def ollama_usage(data: Dict[str, Any]) -> Usage:
    input_tokens = data.get("prompt_eval_count") or 0
    output_tokens = data.get("eval_count") or 0
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
    )


def _tool_result_content(part: ToolResultPart) -> str:
    if isinstance(part.output, MediaOutput):
        return json.dumps({"data": part.output.data, "media_type": part.output.media_type})
    return part.output_text()


def to_ollama_messages(call: Call) -> Tuple[List[Dict[str, Any]], List[CallWarning]]:
    """
    Convert Messages to Ollama chat messages.

    Raises:
        InvalidArgumentError: if an assistant tool call input is not valid JSON
    """
    messages: List[Dict[str, Any]] = []
    warnings: List[CallWarning] = []
    tool_names: Dict[str, str] = {}

    for message in call.messages:
        if message.role == Role.TOOL:
            for part in message.content:
                if isinstance(part, ToolResultPart):
                    messages.append(_tool_message(part, tool_names))
            continue

        converted: Dict[str, Any] = {"role": message.role.value}
        texts: List[str] = []
        tool_calls: List[Dict[str, Any]] = []
        images: List[str] = []

        for part in message.content:
            if isinstance(part, (TextPart, ReasoningPart)):
                texts.append(part.text)
            elif isinstance(part, ToolCallPart):
                if part.provider_executed:
                    continue
                try:
                    args = json.loads(part.input) if part.input else {}
                except ValueError as e:
                    raise InvalidArgumentError(
                        "tool_call.input", "invalid JSON in tool call input", cause=e
                    ) from e
                tool_call: Dict[str, Any] = {
                    "type": "function",
                    "function": {"name": part.tool_name, "arguments": args or {}},
                }
                if part.tool_call_id:
                    tool_call["id"] = part.tool_call_id
                    tool_names[part.tool_call_id] = part.tool_name
                tool_calls.append(tool_call)
            elif isinstance(part, ToolResultPart):
                messages.append(_tool_message(part, tool_names))
            elif isinstance(part, FilePart):
                if part.media_type.startswith("image/"):
                    images.append(part.base64_data())
                else:
                    warnings.append(CallWarning.other(f"file part media type {part.media_type} not supported"))

        converted["content"] = "".join(texts)
        if tool_calls:
            converted["tool_calls"] = tool_calls
        if images:
            converted["images"] = images
        messages.append(converted)

    return messages, warnings


def _tool_message(part: ToolResultPart, tool_names: Dict[str, str]) -> Dict[str, Any]:
    converted = {"role": "tool", "content": _tool_result_content(part)}
    if part.tool_call_id:
        converted["tool_call_id"] = part.tool_call_id
        name = tool_names.get(part.tool_call_id) or part.tool_name
        if name:
            converted["tool_name"] = name
    return converted


def _tool_call_id(tool_call: Dict[str, Any], position: int) -> str:
    function = tool_call.get("function") or {}
    if tool_call.get("id"):
        return str(tool_call["id"])
    return str(function.get("index", position))


class OllamaCloudAdapter(BaseAdapter):
    """Ollama Cloud chat adapter."""

    provider = "ollama-cloud"
    DEFAULT_BASE_URL = "https://ollama.com"
    PATH = "/api/chat"
    supports_json_mode = True

    def _prepare_request(self, call: Call, stream: bool) -> PreparedRequest:
        messages, warnings = to_ollama_messages(call)
        payload: Dict[str, Any] = {
            "model": call.model,
            "messages": messages,
            "stream": stream,
        }

        if call.tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters(),
                    },
                }
                for tool in function_tools(call)
            ]
            warnings.extend(unsupported_tool_warnings(call))
        if call.tool_choice is not None:
            warnings.append(CallWarning.unsupported_setting("tool_choice"))

        options = resolve_options(call.provider_options, NAME, OllamaCloudOptions)
        if options is not None and options.think:
            payload["think"] = True

        model_options: Dict[str, Any] = {}
        for key, value in (("temperature", call.temperature),
                           ("top_p", call.top_p),
                           ("top_k", call.top_k),
                           ("num_predict", call.max_output_tokens),
                           ("seed", call.seed),
                           ("presence_penalty", call.presence_penalty),
                           ("frequency_penalty", call.frequency_penalty)):
            if value is not None:
                model_options[key] = value
        if call.stop_sequences:
            model_options["stop"] = list(call.stop_sequences)
        if model_options:
            payload["options"] = model_options

        fmt = call.response_format
        if fmt is not None and fmt.type == ResponseFormatType.JSON:
            payload["format"] = fmt.schema.to_dict() if fmt.schema is not None else "json"

        return PreparedRequest(path=self.PATH, payload=payload, warnings=warnings)

    def _parse_response(self, call: Call, data: Dict[str, Any],
                        warnings: List[CallWarning]) -> Response:
        message = data.get("message") or {}
        content: List[Content] = []
        if message.get("thinking"):
            content.append(ReasoningContent(text=message["thinking"]))
        if message.get("content"):
            content.append(TextContent(text=message["content"]))
        for position, tool_call in enumerate(message.get("tool_calls") or []):
            function = tool_call.get("function") or {}
            content.append(ToolCallContent(
                tool_call_id=_tool_call_id(tool_call, position),
                tool_name=function.get("name", ""),
                input=json.dumps(function.get("arguments") or {}, separators=(",", ":")),
            ))

        return Response(
            content=content,
            finish_reason=map_finish_reason(data.get("done_reason")),
            usage=ollama_usage(data),
            warnings=list(warnings),
        )

    async def _parse_stream(
        self,
        call: Call,
        response: httpx.Response,
        machine: StreamStateMachine,
    ) -> AsyncIterator[StreamPart]:
        tool_position = 0

        async for raw in iter_ndjson(response):
            chunk = decode_chunk(self.provider, raw)
            if chunk.get("error"):
                raise InvalidResponseDataError(self.provider, f"stream error: {chunk['error']}", data=chunk)
            message = chunk.get("message") or {}
            emitted: List[StreamPart] = []

            if message.get("thinking"):
                emitted += machine.reasoning_delta("0", message["thinking"])
            if message.get("content"):
                emitted += machine.text_delta("0", message["content"])
            for tool_call in message.get("tool_calls") or []:
                function = tool_call.get("function") or {}
                emitted += machine.complete_tool_call(
                    _tool_call_id(tool_call, tool_position),
                    function.get("name", ""),
                    function.get("arguments") or {},
                )
                tool_position += 1

            for part in emitted:
                yield part

            if chunk.get("done"):
                for part in machine.finish(map_finish_reason(chunk.get("done_reason")), ollama_usage(chunk)):
                    yield part
                return
