"""
llmbridge - Google Gemini Adapter

Adapter for the Gemini API (generateContent / streamGenerateContent).

Gemini streams whole parts rather than typed events: a part is either
text, a thought (text with ``thought: true``) or a complete function call.
Span boundaries are inferred from changes of part kind, and the stream
has no explicit completion event, so Finish is emitted when the SSE
stream ends (the last chunk carries the final usage snapshot).

Thought signatures are attached to the part that follows the thinking;
they close the reasoning span as metadata under "google" and are sent
back on the next function call part.
"""

import json
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel

from ..core.errors import InvalidResponseDataError
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

logger = get_logger(__name__)

NAME = "google"
MIN_THINKING_BUDGET = 128


# ============================================================
# Provider Options
# ============================================================

class ThinkingConfig(BaseModel):
    thinking_budget: Optional[int] = None
    include_thoughts: Optional[bool] = None


class SafetySetting(BaseModel):
    category: str
    threshold: str


@provider_type("google.options")
class GoogleOptions(BaseModel):
    thinking_config: Optional[ThinkingConfig] = None
    cached_content: str = ""
    safety_settings: List[SafetySetting] = []


@provider_type("google.reasoning_metadata")
class GoogleReasoningMetadata(BaseModel):
    """Thought signature of a reasoning block."""
    signature: str = ""


def get_reasoning_metadata(options: Optional[Dict[str, Any]]) -> Optional[GoogleReasoningMetadata]:
    value = (options or {}).get(NAME)
    if isinstance(value, GoogleReasoningMetadata):
        return value
    if isinstance(value, dict) and value.get("signature"):
        return GoogleReasoningMetadata.model_validate(value)
    return None


# ============================================================
# Mapping helpers
# ============================================================

CONTENT_FILTER_REASONS = {"SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII", "IMAGE_SAFETY"}
OTHER_REASONS = {"OTHER", "RECITATION", "LANGUAGE", "MALFORMED_FUNCTION_CALL"}


def map_finish_reason(reason: Optional[str]) -> FinishReason:
    if reason == "STOP":
        return FinishReason.STOP
    if reason == "MAX_TOKENS":
        return FinishReason.LENGTH
    if reason in CONTENT_FILTER_REASONS:
        return FinishReason.CONTENT_FILTER
    if reason in OTHER_REASONS:
        return FinishReason.OTHER
    return FinishReason.UNKNOWN


def google_usage(raw: Optional[Dict[str, Any]]) -> Usage:
    raw = raw or {}
    return Usage(
        input_tokens=raw.get("promptTokenCount") or 0,
        output_tokens=raw.get("candidatesTokenCount") or 0,
        total_tokens=raw.get("totalTokenCount") or 0,
        reasoning_tokens=raw.get("thoughtsTokenCount") or 0,
        cache_read_tokens=raw.get("cachedContentTokenCount") or 0,
    )


JSON_TYPES = {
    "string": "STRING",
    "number": "NUMBER",
    "integer": "INTEGER",
    "boolean": "BOOLEAN",
    "array": "ARRAY",
    "object": "OBJECT",
}


def to_google_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert JSON Schema to the OpenAPI subset Gemini accepts.

    Unknown or missing types become STRING; keywords Gemini rejects
    (additionalProperties, $schema, ...) are dropped.
    """
    if not isinstance(schema, dict):
        return {"type": "STRING"}
    converted: Dict[str, Any] = {"type": JSON_TYPES.get(schema.get("type"), "STRING")}
    if schema.get("description"):
        converted["description"] = schema["description"]
    if schema.get("enum"):
        converted["enum"] = [str(v) for v in schema["enum"]]
    if schema.get("nullable"):
        converted["nullable"] = True
    if converted["type"] == "ARRAY" and isinstance(schema.get("items"), dict):
        converted["items"] = to_google_schema(schema["items"])
    if converted["type"] == "OBJECT":
        properties = schema.get("properties") or {}
        converted["properties"] = {name: to_google_schema(prop) for name, prop in properties.items()}
        if schema.get("required"):
            converted["required"] = list(schema["required"])
    return converted


def grounding_sources(candidate: Dict[str, Any]) -> List[Dict[str, str]]:
    chunks = (candidate.get("groundingMetadata") or {}).get("groundingChunks") or []
    sources = []
    for chunk in chunks:
        web = chunk.get("web") if isinstance(chunk, dict) else None
        if web and web.get("uri"):
            sources.append({"url": web["uri"], "title": web.get("title", "")})
    return sources


# ============================================================
# Prompt conversion
# ============================================================

def _tool_names(messages: List[Message]) -> Dict[str, str]:
    """Tool call id -> tool name, for function responses that omit the name."""
    names = {}
    for message in messages:
        if message.role != Role.ASSISTANT:
            continue
        for part in message.content:
            if isinstance(part, ToolCallPart):
                names[part.tool_call_id] = part.tool_name
    return names


def to_google_prompt(messages: List[Message]) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]], List[CallWarning]]:
    """Convert Messages to a system instruction and Gemini contents."""
    system: Optional[Dict[str, Any]] = None
    contents: List[Dict[str, Any]] = []
    warnings: List[CallWarning] = []
    finished_system = False
    tool_names = _tool_names(messages)

    for message in messages:
        if message.role == Role.SYSTEM:
            if finished_system or contents:
                warnings.append(CallWarning.other(
                    "system messages are only supported at the beginning of the conversation"
                ))
                continue
            finished_system = True
            texts = [p.text for p in message.content if isinstance(p, TextPart) and p.text]
            if texts:
                system = {"parts": [{"text": "\n".join(texts)}]}
            continue

        parts: List[Dict[str, Any]] = []
        if message.role == Role.USER:
            for part in message.content:
                if isinstance(part, TextPart) and part.text:
                    parts.append({"text": part.text})
                elif isinstance(part, FilePart):
                    parts.append({"inlineData": {"mimeType": part.media_type, "data": part.base64_data()}})
            role = "user"

        elif message.role == Role.ASSISTANT:
            signature = ""
            for part in message.content:
                if isinstance(part, TextPart) and part.text:
                    parts.append({"text": part.text})
                elif isinstance(part, ReasoningPart):
                    metadata = get_reasoning_metadata(part.provider_options)
                    if metadata is not None:
                        signature = metadata.signature
                elif isinstance(part, ToolCallPart):
                    try:
                        args = json.loads(part.input or "{}")
                    except ValueError:
                        warnings.append(CallWarning.other(
                            f"tool call {part.tool_call_id} input is not valid JSON and was dropped"
                        ))
                        continue
                    converted: Dict[str, Any] = {
                        "functionCall": {"id": part.tool_call_id, "name": part.tool_name, "args": args}
                    }
                    # The signature of preceding thinking rides on the next function call
                    if signature:
                        converted["thoughtSignature"] = signature
                        signature = ""
                    parts.append(converted)
            role = "model"

        else:
            for part in message.content:
                if not isinstance(part, ToolResultPart):
                    continue
                if isinstance(part.output, MediaOutput):
                    warnings.append(CallWarning.other("media tool results are not supported"))
                    continue
                result = part.output.error if isinstance(part.output, ErrorOutput) else part.output_text()
                parts.append({
                    "functionResponse": {
                        "id": part.tool_call_id,
                        "name": part.tool_name or tool_names.get(part.tool_call_id, ""),
                        "response": {"result": result},
                    }
                })
            role = "user"

        if parts:
            contents.append({"role": role, "parts": parts})

    return system, contents, warnings


def to_google_tools(call: Call) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]], List[CallWarning]]:
    declarations = [
        {
            "name": tool.name,
            "description": tool.description,
            "parameters": to_google_schema(tool.parameters()),
        }
        for tool in function_tools(call)
    ]
    warnings = unsupported_tool_warnings(call)

    choice = call.tool_choice
    if choice is None:
        return declarations, None, warnings
    if choice.type == ToolChoiceType.AUTO:
        config: Dict[str, Any] = {"mode": "AUTO"}
    elif choice.type == ToolChoiceType.REQUIRED:
        config = {"mode": "ANY"}
    elif choice.type == ToolChoiceType.NONE:
        config = {"mode": "NONE"}
    else:
        config = {"mode": "ANY", "allowedFunctionNames": [choice.tool_name]}
    return declarations, {"functionCallingConfig": config}, warnings


# ============================================================
# Adapter
# ============================================================

class GoogleAdapter(BaseAdapter):
    """Gemini API adapter (API-key auth)."""

    provider = "google"
    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    supports_json_mode = True

    def _auth_headers(self) -> Dict[str, str]:
        if not self.config.api_key:
            return {}
        return {"x-goog-api-key": self.config.api_key}

    def _prepare_request(self, call: Call, stream: bool) -> PreparedRequest:
        options = resolve_options(call.provider_options, NAME, GoogleOptions) or GoogleOptions()
        system, contents, warnings = to_google_prompt(call.messages)

        if call.model.lower().startswith("gemma-") and system is not None:
            # Gemma has no system instruction; fold it into the first user turn
            if contents and contents[0]["role"] == "user":
                system_text = "\n".join(p["text"] for p in system["parts"])
                contents[0]["parts"].insert(0, {"text": system_text + "\n\n"})
                system = None

        generation: Dict[str, Any] = {}
        for key, value in (("maxOutputTokens", call.max_output_tokens),
                           ("temperature", call.temperature),
                           ("topK", call.top_k),
                           ("topP", call.top_p),
                           ("frequencyPenalty", call.frequency_penalty),
                           ("presencePenalty", call.presence_penalty),
                           ("seed", call.seed)):
            if value is not None:
                generation[key] = value
        if call.stop_sequences:
            generation["stopSequences"] = list(call.stop_sequences)

        thinking = options.thinking_config
        if thinking is not None:
            thinking_config: Dict[str, Any] = {}
            if thinking.include_thoughts is not None:
                thinking_config["includeThoughts"] = thinking.include_thoughts
            if thinking.thinking_budget is not None:
                budget = thinking.thinking_budget
                if budget < MIN_THINKING_BUDGET:
                    warnings.append(CallWarning.other(
                        "The 'thinking_budget' option can not be under 128 and will be set to 128 by default"
                    ))
                    budget = MIN_THINKING_BUDGET
                thinking_config["thinkingBudget"] = budget
            generation["thinkingConfig"] = thinking_config

        fmt = call.response_format
        if fmt is not None and fmt.type == ResponseFormatType.JSON:
            generation["responseMimeType"] = "application/json"
            if fmt.schema is not None:
                generation["responseSchema"] = to_google_schema(fmt.schema.to_dict())

        payload: Dict[str, Any] = {"contents": contents}
        if system is not None:
            payload["systemInstruction"] = system
        if generation:
            payload["generationConfig"] = generation
        if options.safety_settings:
            payload["safetySettings"] = [s.model_dump() for s in options.safety_settings]
        if options.cached_content:
            payload["cachedContent"] = options.cached_content

        if call.tools:
            declarations, tool_config, tool_warnings = to_google_tools(call)
            if declarations:
                payload["tools"] = [{"functionDeclarations": declarations}]
                if tool_config is not None:
                    payload["toolConfig"] = tool_config
            warnings.extend(tool_warnings)

        if stream:
            return PreparedRequest(
                path=f"/models/{call.model}:streamGenerateContent",
                payload=payload,
                warnings=warnings,
                params={"alt": "sse"},
            )
        return PreparedRequest(path=f"/models/{call.model}:generateContent", payload=payload, warnings=warnings)

    # ============================================================
    # One-shot response
    # ============================================================

    def _parse_response(self, call: Call, data: Dict[str, Any],
                        warnings: List[CallWarning]) -> Response:
        candidates = data.get("candidates") or []
        if not candidates or not candidates[0].get("content"):
            raise InvalidResponseDataError(self.provider, "no response from model", data=data)
        candidate = candidates[0]

        content: List[Content] = []
        for part in candidate["content"].get("parts") or []:
            if part.get("text"):
                if part.get("thought"):
                    content.append(ReasoningContent(
                        text=part["text"],
                        provider_metadata={NAME: {"signature": part.get("thoughtSignature", "")}},
                    ))
                else:
                    content.append(TextContent(text=part["text"]))
            elif part.get("functionCall"):
                function_call = part["functionCall"]
                content.append(ToolCallContent(
                    tool_call_id=function_call.get("id") or str(uuid.uuid4()),
                    tool_name=function_call.get("name", ""),
                    input=json.dumps(function_call.get("args") or {}, separators=(",", ":")),
                ))

        for source in grounding_sources(candidate):
            content.append(SourceContent(
                source_type=SourceType.URL, id=str(uuid.uuid4()),
                url=source["url"], title=source["title"],
            ))

        return Response(
            content=content,
            finish_reason=map_finish_reason(candidate.get("finishReason")),
            usage=google_usage(data.get("usageMetadata")),
            warnings=list(warnings),
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
        block_counter = 0
        text_id: Optional[str] = None
        reasoning_id: Optional[str] = None
        finish_reason: Optional[str] = None
        seen_sources = set()

        async for raw in iter_sse_data(response):
            chunk = decode_chunk(self.provider, raw)
            if chunk.get("error"):
                error = chunk["error"]
                message = error.get("message") if isinstance(error, dict) else str(error)
                raise InvalidResponseDataError(self.provider, f"stream error: {message}", data=chunk)

            candidates = chunk.get("candidates") or []
            candidate = candidates[0] if candidates else {}

            for part in (candidate.get("content") or {}).get("parts") or []:
                signature = part.get("thoughtSignature")
                signature_md = {NAME: {"signature": signature}} if signature else None
                emitted: List[StreamPart] = []

                if part.get("text") and part.get("thought"):
                    if text_id is not None:
                        emitted += machine.text_end(text_id)
                        text_id = None
                    if reasoning_id is None:
                        reasoning_id = str(block_counter)
                        block_counter += 1
                    emitted += machine.reasoning_delta(reasoning_id, part["text"], signature_md)

                elif part.get("text"):
                    if reasoning_id is not None:
                        emitted += machine.reasoning_end(reasoning_id, signature_md)
                        reasoning_id = None
                    if text_id is None:
                        text_id = str(block_counter)
                        block_counter += 1
                    emitted += machine.text_delta(text_id, part["text"])

                elif part.get("functionCall"):
                    if text_id is not None:
                        emitted += machine.text_end(text_id)
                        text_id = None
                    if reasoning_id is not None:
                        emitted += machine.reasoning_end(reasoning_id, signature_md)
                        reasoning_id = None
                    function_call = part["functionCall"]
                    emitted += machine.complete_tool_call(
                        function_call.get("id") or str(uuid.uuid4()),
                        function_call.get("name", ""),
                        function_call.get("args") or {},
                    )

                for stream_part in emitted:
                    yield stream_part

            for source in grounding_sources(candidate):
                if source["url"] in seen_sources:
                    continue
                seen_sources.add(source["url"])
                for stream_part in machine.source(str(uuid.uuid4()), SourceType.URL,
                                                  url=source["url"], title=source["title"]):
                    yield stream_part

            if chunk.get("usageMetadata"):
                machine.update_usage(google_usage(chunk["usageMetadata"]))
            if candidate.get("finishReason"):
                finish_reason = candidate["finishReason"]

        reason = map_finish_reason(finish_reason) if finish_reason else FinishReason.STOP
        for stream_part in machine.finish(reason):
            yield stream_part
