"""
llmbridge - OpenAI Chat Completions Adapter

Adapter for /chat/completions and every vendor that speaks the same wire
shape. Vendor differences are isolated in a ChatHooks strategy object:

- prepare_call: vendor provider options -> request fields
- map_finish_reason: vendor finish code -> FinishReason
- extra_content: additional one-shot content (e.g. reasoning fields)
- stream_extra: additional stream handling run before a choice's content
- usage / stream_usage: token accounting and side-channel metadata
- to_prompt: Messages -> vendor messages

OpenAIChatAdapter is parameterized by a ChatHooks instance; the OpenAI
defaults live in ChatHooks itself. OpenAI-compatible and OpenRouter
subclass the hooks, not the stream machine.
"""

import copy
import uuid
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Type

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
    Message,
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


# ============================================================
# Provider Options
# ============================================================

class ReasoningEffort(str, Enum):
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@provider_type("openai.options")
class OpenAIOptions(BaseModel):
    """Request options specific to OpenAI chat completions."""
    logit_bias: Optional[Dict[str, int]] = None
    logprobs: Optional[bool] = None
    top_logprobs: Optional[int] = None
    parallel_tool_calls: Optional[bool] = None
    user: Optional[str] = None
    reasoning_effort: Optional[ReasoningEffort] = None
    max_completion_tokens: Optional[int] = None
    text_verbosity: Optional[str] = None
    prediction: Optional[Dict[str, Any]] = None
    store: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None
    prompt_cache_key: Optional[str] = None
    safety_identifier: Optional[str] = None
    service_tier: Optional[str] = None


@provider_type("openai.file_options")
class OpenAIFileOptions(BaseModel):
    """Per-file options; ``image_detail`` is one of low, high, auto."""
    image_detail: Optional[str] = None


# ============================================================
# Model capabilities
# ============================================================

def is_reasoning_model(model: str) -> bool:
    return (
        model.startswith("o1") or "-o1" in model
        or model.startswith("o3") or "-o3" in model
        or model.startswith("o4") or "-o4" in model
        or model.startswith("oss") or "-oss" in model
        or "gpt-5" in model
    )


def is_search_preview_model(model: str) -> bool:
    return "search-preview" in model


def supports_flex_processing(model: str) -> bool:
    return model.startswith("o3") or "-o3" in model or "o4-mini" in model or "gpt-5" in model


def supports_priority_processing(model: str) -> bool:
    return (
        "gpt-4" in model or "gpt-5" in model
        or model.startswith("o3") or "-o3" in model
        or "o4-mini" in model
    )


def add_additional_properties_false(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Strict JSON schema mode requires every object to forbid extra keys."""
    schema = copy.deepcopy(schema)

    def visit(node: Any):
        if isinstance(node, dict):
            if node.get("type") == "object":
                node["additionalProperties"] = False
            for value in node.values():
                visit(value)
        elif isinstance(node, list):
            for item in node:
                visit(item)

    visit(schema)
    return schema


def chat_usage(raw: Optional[Dict[str, Any]]) -> Usage:
    """Map a chat-completions usage object."""
    raw = raw or {}
    completion_details = raw.get("completion_tokens_details") or {}
    prompt_details = raw.get("prompt_tokens_details") or {}
    return Usage(
        input_tokens=raw.get("prompt_tokens") or 0,
        output_tokens=raw.get("completion_tokens") or 0,
        total_tokens=raw.get("total_tokens") or 0,
        reasoning_tokens=completion_details.get("reasoning_tokens") or 0,
        cache_read_tokens=prompt_details.get("cached_tokens") or 0,
    )


def url_citations(annotations: Optional[List[Dict[str, Any]]]) -> List[Dict[str, str]]:
    """url_citation annotations as {url, title} dicts."""
    result = []
    for annotation in annotations or []:
        if not isinstance(annotation, dict) or annotation.get("type") != "url_citation":
            continue
        citation = annotation.get("url_citation") or {}
        result.append({"url": citation.get("url", ""), "title": citation.get("title", "")})
    return result


# ============================================================
# Strategy hooks
# ============================================================

class ChatHooks:
    """
    Vendor strategy for chat-completions-shaped APIs.

    ``name`` is the key used for provider options and provider metadata.
    The defaults implement OpenAI's own behavior.
    """

    name = "openai"

    # ------------------------------------------------------------
    # Request shaping
    # ------------------------------------------------------------

    def prepare_call(self, model: str, payload: Dict[str, Any], call: Call) -> List[CallWarning]:
        """Apply vendor provider options to the request payload."""
        options = resolve_options(call.provider_options, self.name, OpenAIOptions)
        if options is None:
            return []
        warnings: List[CallWarning] = []

        # top_logprobs implies logprobs
        logprobs = options.logprobs if options.top_logprobs is None else None

        fields = {
            "logit_bias": options.logit_bias,
            "logprobs": logprobs,
            "top_logprobs": options.top_logprobs,
            "user": options.user,
            "parallel_tool_calls": options.parallel_tool_calls,
            "max_completion_tokens": options.max_completion_tokens,
            "verbosity": options.text_verbosity,
            "store": options.store,
            "prompt_cache_key": options.prompt_cache_key,
            "safety_identifier": options.safety_identifier,
            "service_tier": options.service_tier,
        }
        for key, value in fields.items():
            if value is not None:
                payload[key] = value

        if options.prediction and isinstance(options.prediction.get("content"), str):
            payload["prediction"] = {"type": "content", "content": options.prediction["content"]}
        if options.metadata:
            payload["metadata"] = {k: v for k, v in options.metadata.items() if isinstance(v, str)}
        if options.reasoning_effort is not None:
            payload["reasoning_effort"] = options.reasoning_effort.value

        if is_reasoning_model(model):
            for key, setting in (("logit_bias", "LogitBias"),
                                 ("logprobs", "Logprobs"),
                                 ("top_logprobs", "TopLogprobs")):
                if key in payload:
                    del payload[key]
                    warnings.append(CallWarning.unsupported_setting(
                        setting, f"{setting} is not supported for reasoning models"
                    ))

        if options.service_tier == "flex" and not supports_flex_processing(model):
            payload.pop("service_tier", None)
            warnings.append(CallWarning.unsupported_setting(
                "ServiceTier",
                "flex processing is only available for o3, o4-mini, and gpt-5 models",
            ))
        elif options.service_tier == "priority" and not supports_priority_processing(model):
            payload.pop("service_tier", None)
            warnings.append(CallWarning.unsupported_setting(
                "ServiceTier",
                "priority processing is only available for supported models "
                "(gpt-4, gpt-5, gpt-5-mini, o3, o4-mini) and requires Enterprise access",
            ))
        return warnings

    def map_finish_reason(self, finish_reason: Optional[str]) -> FinishReason:
        if finish_reason == "stop":
            return FinishReason.STOP
        if finish_reason == "length":
            return FinishReason.LENGTH
        if finish_reason == "content_filter":
            return FinishReason.CONTENT_FILTER
        if finish_reason in ("function_call", "tool_calls"):
            return FinishReason.TOOL_CALLS
        return FinishReason.UNKNOWN

    # ------------------------------------------------------------
    # Response side
    # ------------------------------------------------------------

    def extra_content(self, choice: Dict[str, Any]) -> List[Content]:
        """Content beyond text, tool calls and annotations. None for OpenAI."""
        return []

    def stream_extra(
        self,
        chunk: Dict[str, Any],
        choice: Dict[str, Any],
        machine: StreamStateMachine,
        state: Dict[str, Any],
    ) -> List[StreamPart]:
        """
        Handle vendor-specific delta fields of one choice.

        Runs before the choice's text and tool-call deltas are processed.
        ``state`` persists for the whole stream.
        """
        logprobs = (choice.get("logprobs") or {}).get("content")
        if logprobs:
            state.setdefault("logprobs", []).extend(logprobs)
        return []

    def usage(self, response: Dict[str, Any]) -> Tuple[Usage, Dict[str, Any]]:
        """Usage plus provider metadata of a one-shot response."""
        raw = response.get("usage") or {}
        metadata: Dict[str, Any] = {}

        choices = response.get("choices") or []
        if choices:
            logprobs = (choices[0].get("logprobs") or {}).get("content")
            if logprobs:
                metadata["logprobs"] = logprobs

        metadata.update(self._prediction_metadata(raw))
        return chat_usage(raw), metadata

    def stream_usage(self, chunk: Dict[str, Any],
                     state: Dict[str, Any]) -> Tuple[Optional[Usage], Dict[str, Any]]:
        """Usage snapshot carried by a chunk, if any."""
        raw = chunk.get("usage")
        if not raw or not raw.get("total_tokens"):
            return None, {}
        return chat_usage(raw), self._prediction_metadata(raw)

    def stream_metadata(self, state: Dict[str, Any]) -> Dict[str, Any]:
        """Metadata known only once the stream ended."""
        if state.get("logprobs"):
            return {"logprobs": state["logprobs"]}
        return {}

    @staticmethod
    def _prediction_metadata(raw: Dict[str, Any]) -> Dict[str, Any]:
        details = raw.get("completion_tokens_details") or {}
        metadata = {}
        if details.get("accepted_prediction_tokens"):
            metadata["accepted_prediction_tokens"] = details["accepted_prediction_tokens"]
        if details.get("rejected_prediction_tokens"):
            metadata["rejected_prediction_tokens"] = details["rejected_prediction_tokens"]
        return metadata

    # ------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------

    def to_prompt(self, messages: List[Message], model: str) -> Tuple[List[Dict[str, Any]], List[CallWarning]]:
        """Convert Messages to chat-completions messages."""
        result: List[Dict[str, Any]] = []
        warnings: List[CallWarning] = []
        for message in messages:
            if message.role == Role.SYSTEM:
                converted = self._system_message(message, warnings)
                if converted is not None:
                    result.append(converted)
            elif message.role == Role.USER:
                converted = self._user_message(message, warnings)
                if converted is not None:
                    result.append(converted)
            elif message.role == Role.ASSISTANT:
                converted = self._assistant_message(message, model, warnings)
                if converted is not None:
                    result.append(converted)
            elif message.role == Role.TOOL:
                result.extend(self._tool_messages(message, warnings))
        return result, warnings

    def _system_message(self, message: Message, warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
        texts = []
        for part in message.content:
            if not isinstance(part, TextPart):
                warnings.append(CallWarning.other("system prompt can only have text content"))
                continue
            if part.text.strip():
                texts.append(part.text)
        if not texts:
            warnings.append(CallWarning.other("system prompt has no text parts"))
            return None
        return {"role": "system", "content": "\n".join(texts)}

    def _user_message(self, message: Message, warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
        if len(message.content) == 1 and isinstance(message.content[0], TextPart):
            return {"role": "user", "content": message.content[0].text}

        content: List[Dict[str, Any]] = []
        for part in message.content:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
            elif isinstance(part, FilePart):
                converted = self._file_part(part, len(content), warnings)
                if converted is not None:
                    content.append(converted)
            else:
                warnings.append(CallWarning.other(
                    f"user message cannot contain {part.type.value} content"
                ))
        return {"role": "user", "content": content}

    def _file_part(self, part: FilePart, index: int,
                   warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
        if part.media_type.startswith("image/"):
            image_url: Dict[str, Any] = {"url": part.data_url()}
            options = resolve_options(part.provider_options, "openai", OpenAIFileOptions)
            if options is not None and options.image_detail:
                image_url["detail"] = options.image_detail
            return {"type": "image_url", "image_url": image_url}

        if part.media_type == "audio/wav":
            return {"type": "input_audio", "input_audio": {"data": part.base64_data(), "format": "wav"}}

        if part.media_type in ("audio/mpeg", "audio/mp3"):
            return {"type": "input_audio", "input_audio": {"data": part.base64_data(), "format": "mp3"}}

        if part.media_type == "application/pdf":
            # Already-uploaded files are referenced by id
            raw = part.data.decode("utf-8", errors="ignore")
            if raw.startswith("file-"):
                return {"type": "file", "file": {"file_id": raw}}
            return {
                "type": "file",
                "file": {
                    "filename": part.filename or f"part-{index}.pdf",
                    "file_data": part.data_url(),
                },
            }

        warnings.append(CallWarning.other(f"file part media type {part.media_type} not supported"))
        return None

    def _assistant_message(self, message: Message, model: str,
                           warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
        if len(message.content) == 1 and isinstance(message.content[0], TextPart):
            return {"role": "assistant", "content": message.content[0].text}

        converted: Dict[str, Any] = {"role": "assistant"}
        tool_calls = []
        for part in message.content:
            if isinstance(part, TextPart):
                converted["content"] = part.text
            elif isinstance(part, ToolCallPart):
                tool_calls.append(self._tool_call(part))
        if tool_calls:
            converted["tool_calls"] = tool_calls
        return converted

    @staticmethod
    def _tool_call(part: ToolCallPart) -> Dict[str, Any]:
        return {
            "id": part.tool_call_id,
            "type": "function",
            "function": {"name": part.tool_name, "arguments": part.input},
        }

    def _tool_messages(self, message: Message, warnings: List[CallWarning]) -> List[Dict[str, Any]]:
        result = []
        for part in message.content:
            if not isinstance(part, ToolResultPart):
                warnings.append(CallWarning.other("tool message can only have tool result content"))
                continue
            result.append({
                "role": "tool",
                "tool_call_id": part.tool_call_id,
                "content": part.output_text(),
            })
        return result

    @staticmethod
    def reasoning_text(message: Message) -> str:
        return "".join(p.text for p in message.content if isinstance(p, ReasoningPart))


def to_openai_tools(call: Call) -> Tuple[List[Dict[str, Any]], Optional[Any], List[CallWarning]]:
    """Function tools and tool choice in chat-completions form."""
    tools = [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters(),
                "strict": False,
            },
        }
        for tool in function_tools(call)
    ]
    warnings = unsupported_tool_warnings(call)

    choice = call.tool_choice
    if choice is None:
        return tools, None, warnings
    if choice.type == ToolChoiceType.TOOL:
        return tools, {"type": "function", "function": {"name": choice.tool_name}}, warnings
    return tools, choice.type.value, warnings


# ============================================================
# Adapter
# ============================================================

class OpenAIChatAdapter(BaseAdapter):
    """
    Chat completions adapter.

    Stream completion is signalled by the end of the SSE stream ([DONE]):
    the finish reason arrives on the last content chunk but usage follows
    in a separate chunk, so Finish is emitted only at end of stream.
    """

    provider = "openai"
    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    PATH = "/chat/completions"
    supports_json_mode = True
    hooks_class: Type[ChatHooks] = ChatHooks

    def __init__(self, config, client: Optional[httpx.AsyncClient] = None,
                 hooks: Optional[ChatHooks] = None):
        self.hooks = hooks or self.hooks_class()
        super().__init__(config, client)

    # ============================================================
    # Request
    # ============================================================

    def _prepare_request(self, call: Call, stream: bool) -> PreparedRequest:
        messages, warnings = self.hooks.to_prompt(call.messages, call.model)
        payload: Dict[str, Any] = {"model": call.model, "messages": messages}

        if call.top_k is not None:
            warnings.append(CallWarning.unsupported_setting("top_k"))

        sampling = {
            "max_tokens": call.max_output_tokens,
            "temperature": call.temperature,
            "top_p": call.top_p,
            "frequency_penalty": call.frequency_penalty,
            "presence_penalty": call.presence_penalty,
            "seed": call.seed,
        }
        for key, value in sampling.items():
            if value is not None:
                payload[key] = value
        if call.stop_sequences:
            payload["stop"] = list(call.stop_sequences)

        if is_reasoning_model(call.model):
            for key, setting in (("temperature", "temperature"),
                                 ("top_p", "TopP"),
                                 ("frequency_penalty", "FrequencyPenalty"),
                                 ("presence_penalty", "PresencePenalty")):
                if key in payload:
                    del payload[key]
                    warnings.append(CallWarning.unsupported_setting(
                        setting, f"{setting} is not supported for reasoning models"
                    ))
            if "max_tokens" in payload:
                payload["max_completion_tokens"] = payload.pop("max_tokens")

        if is_search_preview_model(call.model) and "temperature" in payload:
            del payload["temperature"]
            warnings.append(CallWarning.unsupported_setting(
                "temperature",
                "temperature is not supported for the search preview models and has been removed",
            ))

        warnings.extend(self.hooks.prepare_call(call.model, payload, call))

        if call.tools:
            tools, tool_choice, tool_warnings = to_openai_tools(call)
            if tools:
                payload["tools"] = tools
                if tool_choice is not None:
                    payload["tool_choice"] = tool_choice
            warnings.extend(tool_warnings)

        warnings.extend(self._apply_response_format(call, payload))

        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}

        return PreparedRequest(path=self.PATH, payload=payload, warnings=warnings)

    def _apply_response_format(self, call: Call, payload: Dict[str, Any]) -> List[CallWarning]:
        fmt = call.response_format
        if fmt is None or fmt.type != ResponseFormatType.JSON:
            return []
        if not self.supports_json_mode:
            return [CallWarning.unsupported_setting(
                "response_format", "JSON response format is not supported by this provider"
            )]
        if fmt.schema is None:
            payload["response_format"] = {"type": "json_object"}
            return []
        json_schema: Dict[str, Any] = {
            "name": fmt.name or "response",
            "schema": add_additional_properties_false(fmt.schema.to_dict()),
            "strict": True,
        }
        if fmt.description:
            json_schema["description"] = fmt.description
        payload["response_format"] = {"type": "json_schema", "json_schema": json_schema}
        return []

    # ============================================================
    # One-shot response
    # ============================================================

    def _parse_response(self, call: Call, data: Dict[str, Any],
                        warnings: List[CallWarning]) -> Response:
        choices = data.get("choices") or []
        if not choices:
            raise InvalidResponseDataError(self.provider, "no response generated", data=data)
        choice = choices[0]
        message = choice.get("message") or {}

        content: List[Content] = list(self.hooks.extra_content(choice))
        text = message.get("content")
        if isinstance(text, str) and text:
            content.append(TextContent(text=text))

        for tool_call in message.get("tool_calls") or []:
            function = tool_call.get("function") or {}
            content.append(ToolCallContent(
                tool_call_id=tool_call.get("id") or "",
                tool_name=function.get("name") or "",
                input=function.get("arguments") or "{}",
            ))

        for citation in url_citations(message.get("annotations")):
            content.append(SourceContent(
                source_type=SourceType.URL,
                id=str(uuid.uuid4()),
                url=citation["url"],
                title=citation["title"],
            ))

        usage, metadata = self.hooks.usage(data)
        return Response(
            content=content,
            finish_reason=self.hooks.map_finish_reason(choice.get("finish_reason")),
            usage=usage,
            warnings=list(warnings),
            provider_metadata={self.hooks.name: metadata} if metadata else {},
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
        state: Dict[str, Any] = {}
        finish_reason: Optional[str] = None

        async for raw in iter_sse_data(response):
            chunk = decode_chunk(self.provider, raw)
            self._raise_on_error_chunk(chunk)

            usage, metadata = self.hooks.stream_usage(chunk, state)
            machine.update_usage(usage)
            machine.metadata.merge({self.hooks.name: metadata})

            for choice in chunk.get("choices") or []:
                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]

                for part in self.hooks.stream_extra(chunk, choice, machine, state):
                    yield part

                delta = choice.get("delta") or {}
                text = delta.get("content")
                tool_deltas = delta.get("tool_calls") or []

                if isinstance(text, str) and text:
                    for part in machine.text_delta("0", text):
                        yield part

                for tool_delta in tool_deltas:
                    function = tool_delta.get("function") or {}
                    for part in machine.tool_call_delta(
                        tool_delta.get("index", 0),
                        id=tool_delta.get("id"),
                        type=tool_delta.get("type"),
                        name=function.get("name"),
                        arguments=function.get("arguments") or "",
                    ):
                        yield part

                # Citations ride on the raw delta, outside the typed fields
                for citation in url_citations(delta.get("annotations")):
                    for part in machine.source(
                        str(uuid.uuid4()), SourceType.URL,
                        url=citation["url"], title=citation["title"],
                    ):
                        yield part

        machine.metadata.merge({self.hooks.name: self.hooks.stream_metadata(state)})
        logger.debug("Stream completed", provider=self.provider,
                     finish_reason=finish_reason or "")
        for part in machine.finish(self.hooks.map_finish_reason(finish_reason)):
            yield part

    def _raise_on_error_chunk(self, chunk: Dict[str, Any]):
        error = chunk.get("error")
        if not error or chunk.get("choices"):
            return
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise InvalidResponseDataError(self.provider, f"stream error: {message}", data=chunk)
