"""
llmbridge Core Module

Unified content model, error taxonomy, provider type registry and
HTTP transport shared by every adapter.
"""

from .errors import (
    ConnectionFailedError,
    ErrorDetails,
    ErrorType,
    InfraError,
    InvalidArgumentError,
    InvalidPromptError,
    InvalidResponseDataError,
    LLMBridgeError,
    NoObjectGeneratedError,
    ProviderError,
    RegistryError,
    RetryError,
    SemanticError,
    StreamProtocolError,
    UnsupportedFunctionalityError,
)
from .models import (
    # Enums
    ContentType,
    FinishReason,
    ResponseFormatType,
    Role,
    SourceType,
    ToolChoiceType,
    WarningType,

    # Messages
    ErrorOutput,
    FilePart,
    MediaOutput,
    Message,
    ReasoningPart,
    TextOutput,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    assistant_message,
    system_message,
    tool_result_message,
    user_message,

    # Tools and requests
    Call,
    FunctionTool,
    ProviderDefinedTool,
    ResponseFormat,
    ToolChoice,

    # Responses
    CallWarning,
    FileContent,
    ReasoningContent,
    Response,
    SourceContent,
    TextContent,
    ToolCallContent,
    ToolResultContent,
    Usage,
)
from .registry import (
    decode_provider_data,
    decode_provider_map,
    encode_provider_data,
    encode_provider_map,
    provider_type,
    register_provider_type,
)

__all__ = [
    "ConnectionFailedError",
    "ErrorDetails",
    "ErrorType",
    "InfraError",
    "InvalidArgumentError",
    "InvalidPromptError",
    "InvalidResponseDataError",
    "LLMBridgeError",
    "NoObjectGeneratedError",
    "ProviderError",
    "RegistryError",
    "RetryError",
    "SemanticError",
    "StreamProtocolError",
    "UnsupportedFunctionalityError",
    "ContentType",
    "FinishReason",
    "ResponseFormatType",
    "Role",
    "SourceType",
    "ToolChoiceType",
    "WarningType",
    "ErrorOutput",
    "FilePart",
    "MediaOutput",
    "Message",
    "ReasoningPart",
    "TextOutput",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "assistant_message",
    "system_message",
    "tool_result_message",
    "user_message",
    "Call",
    "FunctionTool",
    "ProviderDefinedTool",
    "ResponseFormat",
    "ToolChoice",
    "CallWarning",
    "FileContent",
    "ReasoningContent",
    "Response",
    "SourceContent",
    "TextContent",
    "ToolCallContent",
    "ToolResultContent",
    "Usage",
    "decode_provider_data",
    "decode_provider_map",
    "encode_provider_data",
    "encode_provider_map",
    "provider_type",
    "register_provider_type",
]
