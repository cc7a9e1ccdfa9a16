"""
llmbridge - OpenRouter Adapter

OpenRouter speaks chat completions with three extensions handled here:

- reasoning_details: structured reasoning blocks whose format tells which
  upstream vendor produced them (OpenAI/xAI responses summaries and
  encrypted content, Anthropic signed thinking, or plain text)
- provider routing preferences and reasoning options in the request body
- usage accounting (cost) and the serving provider in the response
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from ..core.models import (
    Call,
    CallWarning,
    Content,
    FilePart,
    Message,
    ReasoningContent,
    ReasoningPart,
    TextPart,
    ToolCallPart,
    Usage,
)
from ..core.registry import provider_type
from ..streaming.parts import StreamPart
from ..streaming.state import StreamStateMachine
from .anthropic_adapter import get_cache_control, get_reasoning_metadata as get_anthropic_reasoning
from .base import resolve_options
from .openai_chat import ChatHooks, OpenAIChatAdapter, chat_usage
from .openai_responses import get_reasoning_metadata as get_responses_reasoning

NAME = "openrouter"

# Reasoning detail formats by upstream family
RESPONSES_FORMATS = ("openai-responses", "xai-responses")
ANTHROPIC_FORMAT = "anthropic-claude"


# ============================================================
# Provider Options
# ============================================================

class OpenRouterReasoningEffort(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReasoningOptions(BaseModel):
    enabled: Optional[bool] = None
    exclude: Optional[bool] = None
    max_tokens: Optional[int] = None
    effort: Optional[OpenRouterReasoningEffort] = None


class ProviderRouting(BaseModel):
    """Upstream provider routing preferences."""
    order: Optional[List[str]] = None
    allow_fallbacks: Optional[bool] = None
    require_parameters: Optional[bool] = None
    data_collection: Optional[str] = None
    only: Optional[List[str]] = None
    ignore: Optional[List[str]] = None
    quantizations: Optional[List[str]] = None
    sort: Optional[str] = None


@provider_type("openrouter.options")
class OpenRouterOptions(BaseModel):
    reasoning: Optional[ReasoningOptions] = None
    extra_body: Optional[Dict[str, Any]] = None
    include_usage: Optional[bool] = None
    logit_bias: Optional[Dict[str, int]] = None
    log_probs: Optional[bool] = None
    parallel_tool_calls: Optional[bool] = None
    user: Optional[str] = None
    provider: Optional[ProviderRouting] = None


@provider_type("openrouter.metadata")
class OpenRouterMetadata(BaseModel):
    """Serving provider and raw usage accounting (including cost)."""
    provider: str = ""
    usage: Dict[str, Any] = {}


class ReasoningDetail(BaseModel):
    id: str = ""
    type: str = ""
    text: str = ""
    data: str = ""
    format: str = ""
    summary: str = ""
    signature: str = ""
    index: int = 0


def reasoning_details(container: Dict[str, Any]) -> List[ReasoningDetail]:
    return [
        ReasoningDetail.model_validate(item)
        for item in container.get("reasoning_details") or []
        if isinstance(item, dict)
    ]


def _is_responses_format(detail: ReasoningDetail) -> bool:
    return detail.format.startswith(RESPONSES_FORMATS)


def _responses_metadata(block: Dict[str, Any]) -> Dict[str, Any]:
    """Snapshot of an in-progress responses reasoning block."""
    return {"openai": {**block, "summary": list(block["summary"])}}


# ============================================================
# Hooks
# ============================================================

class OpenRouterHooks(ChatHooks):
    """ChatHooks for OpenRouter."""

    name = NAME

    def prepare_call(self, model: str, payload: Dict[str, Any], call: Call) -> List[CallWarning]:
        options = resolve_options(call.provider_options, self.name, OpenRouterOptions) or OpenRouterOptions()

        if options.provider is not None:
            payload["provider"] = options.provider.model_dump(exclude_none=True, mode="json")
        if options.reasoning is not None:
            payload["reasoning"] = options.reasoning.model_dump(exclude_none=True, mode="json")

        include_usage = True if options.include_usage is None else options.include_usage
        payload["usage"] = {"include": include_usage}

        if options.logit_bias is not None:
            payload["logit_bias"] = options.logit_bias
        if options.log_probs is not None:
            payload["logprobs"] = options.log_probs
        if options.user is not None:
            payload["user"] = options.user
        if options.parallel_tool_calls is not None:
            payload["parallel_tool_calls"] = options.parallel_tool_calls

        payload.update(options.extra_body or {})
        return []

    # ------------------------------------------------------------
    # Reasoning
    # ------------------------------------------------------------

    def extra_content(self, choice: Dict[str, Any]) -> List[Content]:
        responses_blocks: List[Dict[str, Any]] = []
        anthropic_blocks: List[ReasoningContent] = []
        other: List[ReasoningContent] = []

        for detail in reasoning_details(choice.get("message") or {}):
            if _is_responses_format(detail):
                while len(responses_blocks) <= detail.index:
                    responses_blocks.append({"item_id": "", "summary": [], "encrypted_content": None})
                block = responses_blocks[detail.index]
                if detail.type == "reasoning.summary":
                    block["summary"].append(detail.summary)
                elif detail.type == "reasoning.encrypted":
                    block["encrypted_content"] = detail.data
                if detail.id:
                    block["item_id"] = detail.id
            elif detail.format.startswith(ANTHROPIC_FORMAT):
                anthropic_blocks.append(ReasoningContent(
                    text=detail.text,
                    provider_metadata={"anthropic": {"signature": detail.signature}},
                ))
            else:
                other.append(ReasoningContent(text=detail.text))

        content: List[Content] = []
        for block in responses_blocks:
            summary = block["summary"] or [""]
            content.append(ReasoningContent(
                text="\n".join(summary),
                provider_metadata={"openai": {**block, "summary": summary}},
            ))
        return content + anthropic_blocks + other

    def stream_extra(
        self,
        chunk: Dict[str, Any],
        choice: Dict[str, Any],
        machine: StreamStateMachine,
        state: Dict[str, Any],
    ) -> List[StreamPart]:
        # Only the first choice carries reasoning
        if choice.get("index", 0) != 0:
            return []
        delta = choice.get("delta") or {}
        details = reasoning_details(delta)
        span_id = "0"
        current: Optional[Dict[str, Any]] = state.get("reasoning")

        if current is None:
            if not details:
                return []
            detail = details[0]
            if not _is_responses_format(detail):
                state["reasoning"] = {"responses": None}
                return machine.reasoning_start(span_id) + machine.reasoning_delta(span_id, detail.text)

            block = {"item_id": "", "summary": [detail.summary], "encrypted_content": None}
            emitted = machine.reasoning_start(span_id, _responses_metadata(block))
            emitted += machine.reasoning_delta(span_id, detail.summary)
            if detail.data:
                # Encrypted content without a summary stream: the block is already complete
                block.update(encrypted_content=detail.data, item_id=detail.id)
                return emitted + machine.reasoning_end(span_id, _responses_metadata(block))
            state["reasoning"] = {"responses": block}
            return emitted

        if not details:
            if delta.get("content") or delta.get("tool_calls"):
                state["reasoning"] = None
                return machine.reasoning_end(span_id)
            return []

        detail = details[0]
        block = current.get("responses")
        if _is_responses_format(detail) and block is not None:
            if detail.data:
                block.update(encrypted_content=detail.data, item_id=detail.id)
                state["reasoning"] = None
                return machine.reasoning_end(span_id, _responses_metadata(block))
            if detail.index < len(block["summary"]):
                block["summary"][detail.index] += detail.summary
                text = detail.summary
            else:
                block["summary"].append(detail.summary)
                text = "\n" + detail.summary
            return machine.reasoning_delta(span_id, text, _responses_metadata(block))

        if detail.format.startswith(ANTHROPIC_FORMAT) and detail.signature:
            state["reasoning"] = None
            emitted = machine.reasoning_delta(
                span_id, detail.text, {"anthropic": {"signature": detail.signature}}
            )
            return emitted + machine.reasoning_end(span_id)

        return machine.reasoning_delta(span_id, detail.text)

    # ------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------

    def usage(self, response: Dict[str, Any]) -> Tuple[Usage, Dict[str, Any]]:
        if not response.get("choices"):
            return Usage(), {}
        raw = response.get("usage") or {}
        return chat_usage(raw), {"provider": response.get("provider") or "", "usage": raw}

    def stream_usage(self, chunk: Dict[str, Any],
                     state: Dict[str, Any]) -> Tuple[Optional[Usage], Dict[str, Any]]:
        raw = chunk.get("usage")
        if not raw or not raw.get("total_tokens"):
            return None, {}
        metadata: Dict[str, Any] = {"usage": raw}
        if chunk.get("provider"):
            metadata["provider"] = chunk["provider"]
        return chat_usage(raw), metadata

    def stream_metadata(self, state: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    # ------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------

    def _system_message(self, message: Message, warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
        converted = super()._system_message(message, warnings)
        cache_control = get_cache_control(message.provider_options)
        if converted is not None and cache_control is not None:
            converted["cache_control"] = cache_control
        return converted

    def _user_message(self, message: Message, warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
        if len(message.content) == 1 and isinstance(message.content[0], TextPart):
            converted = {"role": "user", "content": message.content[0].text}
            cache_control = get_cache_control(message.provider_options)
            if cache_control is not None:
                converted["cache_control"] = cache_control
            return converted

        content: List[Dict[str, Any]] = []
        last = len(message.content) - 1
        for i, part in enumerate(message.content):
            cache_control = get_cache_control(part.provider_options)
            if cache_control is None and i == last:
                cache_control = get_cache_control(message.provider_options)

            if isinstance(part, TextPart):
                block: Optional[Dict[str, Any]] = {"type": "text", "text": part.text}
            elif isinstance(part, FilePart):
                block = self._file_part(part, len(content), warnings)
            else:
                warnings.append(CallWarning.other(
                    f"user message cannot contain {part.type.value} content"
                ))
                block = None

            if block is not None:
                if cache_control is not None:
                    block["cache_control"] = cache_control
                content.append(block)
        return {"role": "user", "content": content}

    def _assistant_message(self, message: Message, model: str,
                           warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
        if len(message.content) == 1 and isinstance(message.content[0], TextPart):
            converted = {"role": "assistant", "content": message.content[0].text}
            cache_control = get_cache_control(message.provider_options)
            if cache_control is not None:
                converted["cache_control"] = cache_control
            return converted

        converted = {"role": "assistant"}
        texts: List[str] = []
        details: List[Dict[str, Any]] = []
        tool_calls: List[Dict[str, Any]] = []

        for part in message.content:
            if isinstance(part, TextPart):
                texts.append(part.text)
            elif isinstance(part, ReasoningPart):
                self._reasoning(part, model, texts, details, converted)
            elif isinstance(part, ToolCallPart):
                tool_calls.append(self._tool_call(part))

        if texts:
            converted["content"] = "\n".join(texts)
        if details:
            converted["reasoning_details"] = details
        if tool_calls:
            converted["tool_calls"] = tool_calls
        return converted

    @staticmethod
    def _reasoning(part: ReasoningPart, model: str, texts: List[str],
                   details: List[Dict[str, Any]], converted: Dict[str, Any]) -> None:
        """Send reasoning back in the detail format of the model family."""
        if model.startswith("anthropic/"):
            if not part.text:
                return
            metadata = get_anthropic_reasoning(part.provider_options)
            if metadata is None:
                texts.append(f"<thoughts>{part.text}</thoughts>")
                return
            details.append({
                "format": "anthropic-claude-v1",
                "type": "reasoning.text",
                "text": part.text,
                "signature": metadata.signature,
                "index": 0,
            })
            converted["reasoning"] = part.text
            return

        if model.startswith(("openai/", "xai/")):
            metadata = get_responses_reasoning(part.provider_options)
            if metadata is None:
                texts.append(f"<thoughts>{part.text}</thoughts>")
                return
            detail_format = "openai-responses-v1" if model.startswith("openai/") else "xai-responses-v1"
            for index, summary in enumerate(metadata.summary):
                if summary:
                    details.append({
                        "type": "reasoning.summary",
                        "format": detail_format,
                        "summary": summary,
                        "index": index,
                    })
            details.append({
                "type": "reasoning.encrypted",
                "format": detail_format,
                "data": metadata.encrypted_content or "",
                "id": metadata.item_id,
                "index": 0,
            })
            return

        details.append({"type": "reasoning.text", "text": part.text, "format": "unknown", "index": 0})


class OpenRouterAdapter(OpenAIChatAdapter):
    """OpenRouter chat completions adapter."""

    provider = "openrouter"
    DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
    supports_json_mode = False
    hooks_class = OpenRouterHooks
