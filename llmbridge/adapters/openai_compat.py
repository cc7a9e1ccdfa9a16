"""
llmbridge - OpenAI-Compatible Adapter

Chat completions against any OpenAI-compatible endpoint (vLLM, DeepSeek,
Groq, LM Studio, ...). Differences from OpenAI:
- reasoning arrives in a non-standard ``reasoning_content`` delta field
- assistant reasoning is sent back the same way
- messages that end up empty are dropped with a warning, since many
  compatible servers reject them
"""

from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from ..core.errors import InvalidArgumentError
from ..core.models import (
    Call,
    CallWarning,
    Content,
    Message,
    ReasoningContent,
    TextPart,
    ToolCallPart,
)
from ..core.registry import provider_type
from ..streaming.parts import StreamPart
from ..streaming.state import StreamStateMachine
from .base import AdapterConfig, resolve_options
from .openai_chat import ChatHooks, OpenAIChatAdapter, ReasoningEffort


@provider_type("openai-compat.options")
class OpenAICompatOptions(BaseModel):
    user: Optional[str] = None
    reasoning_effort: Optional[ReasoningEffort] = None


class OpenAICompatHooks(ChatHooks):
    """Hooks for generic OpenAI-compatible servers."""

    name = "openai-compat"

    def prepare_call(self, model: str, payload: Dict[str, Any], call: Call) -> List[CallWarning]:
        options = resolve_options(call.provider_options, self.name, OpenAICompatOptions)
        if options is None:
            return []
        if options.reasoning_effort is not None:
            payload["reasoning_effort"] = options.reasoning_effort.value
        if options.user is not None:
            payload["user"] = options.user
        return []

    def extra_content(self, choice: Dict[str, Any]) -> List[Content]:
        reasoning = (choice.get("message") or {}).get("reasoning_content")
        if isinstance(reasoning, str) and reasoning:
            return [ReasoningContent(text=reasoning)]
        return []

    def stream_extra(
        self,
        chunk: Dict[str, Any],
        choice: Dict[str, Any],
        machine: StreamStateMachine,
        state: Dict[str, Any],
    ) -> List[StreamPart]:
        # Reasoning is closed by the machine as soon as text or a tool call arrives
        reasoning = (choice.get("delta") or {}).get("reasoning_content")
        if not isinstance(reasoning, str) or not reasoning:
            return []
        return machine.reasoning_delta(str(choice.get("index", 0)), reasoning)

    def _user_message(self, message: Message, warnings: List[CallWarning]) -> Optional[Dict[str, Any]]:
        converted = super()._user_message(message, warnings)
        if converted is not None and not converted["content"]:
            warnings.append(CallWarning.other(
                "dropping empty user message (contains neither user-facing content nor tool results)"
            ))
            return None
        return converted

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

        reasoning = self.reasoning_text(message)
        if reasoning:
            converted["reasoning_content"] = reasoning

        if "content" not in converted and not tool_calls:
            warnings.append(CallWarning.other(
                "dropping empty assistant message (contains neither user-facing content nor tool calls)"
            ))
            return None
        return converted


class OpenAICompatAdapter(OpenAIChatAdapter):
    """Chat completions adapter for a caller-supplied base URL."""

    provider = "openai-compat"
    DEFAULT_BASE_URL = ""
    supports_json_mode = False
    hooks_class = OpenAICompatHooks

    def __init__(self, config: AdapterConfig, client: Optional[httpx.AsyncClient] = None,
                 hooks: Optional[ChatHooks] = None):
        if not config.base_url:
            raise InvalidArgumentError("base_url", "openai-compat requires a base URL")
        super().__init__(config, client, hooks)
