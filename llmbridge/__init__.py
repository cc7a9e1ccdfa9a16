"""
llmbridge - LLM Vendor Unification Layer

One call shape, one response shape and one normalized stream protocol
across OpenAI, Anthropic, Google, OpenRouter, Ollama Cloud and
OpenAI-compatible endpoints.
"""

__version__ = "1.0.0"

from .adapters import AdapterConfig, BaseAdapter, get_adapter
from .core import (
    Call,
    CallWarning,
    FinishReason,
    FunctionTool,
    LLMBridgeError,
    Message,
    NoObjectGeneratedError,
    Response,
    ToolChoice,
    Usage,
    assistant_message,
    system_message,
    tool_result_message,
    user_message,
)
from .objects import ObjectMode, ObjectOptions, StreamObjectResult, generate_object, stream_object
from .schema import Schema, SchemaType
from .streaming import StreamPart, StreamPartType

__all__ = [
    "AdapterConfig",
    "BaseAdapter",
    "Call",
    "CallWarning",
    "FinishReason",
    "FunctionTool",
    "LLMBridgeError",
    "Message",
    "NoObjectGeneratedError",
    "ObjectMode",
    "ObjectOptions",
    "Response",
    "Schema",
    "SchemaType",
    "StreamObjectResult",
    "StreamPart",
    "StreamPartType",
    "ToolChoice",
    "Usage",
    "assistant_message",
    "generate_object",
    "get_adapter",
    "stream_object",
    "system_message",
    "tool_result_message",
    "user_message",
]
