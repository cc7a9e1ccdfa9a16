"""
llmbridge - Core Data Models

Unified content model exchanged between callers and provider adapters.

Request side:
- Message parts (text, reasoning, file, tool call, tool result)
- Messages, tools, tool choice and the immutable Call descriptor

Response side:
- Content variants (text, reasoning, file, source, tool call, tool result)
- Usage, finish reason, warnings and the Response envelope
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

from ..schema.schema import Schema


# Provider name -> opaque typed payload (pydantic model or plain dict)
ProviderOptions = Dict[str, Any]
ProviderMetadata = Dict[str, Any]


class Role(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ContentType(str, Enum):
    """Type tags for message parts and content."""
    TEXT = "text"
    REASONING = "reasoning"
    FILE = "file"
    SOURCE = "source"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"


class FinishReason(str, Enum):
    """Normalized reasons for completion."""
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    TOOL_CALLS = "tool_calls"
    OTHER = "other"
    UNKNOWN = "unknown"


class WarningType(str, Enum):
    """Kinds of call warnings."""
    UNSUPPORTED_SETTING = "unsupported-setting"
    UNSUPPORTED_TOOL = "unsupported-tool"
    OTHER = "other"


class SourceType(str, Enum):
    """Citation source kinds."""
    URL = "url"
    DOCUMENT = "document"


# ============================================================
# Message Parts
# ============================================================

@dataclass
class TextPart:
    """Plain text prompt content."""
    text: str
    provider_options: ProviderOptions = field(default_factory=dict)

    type: ClassVar[ContentType] = ContentType.TEXT


@dataclass
class ReasoningPart:
    """Reasoning from an earlier assistant turn, sent back to the vendor."""
    text: str
    provider_options: ProviderOptions = field(default_factory=dict)

    type: ClassVar[ContentType] = ContentType.REASONING


@dataclass
class FilePart:
    """Binary file content (image, audio, pdf, ...)."""
    data: bytes
    media_type: str
    filename: str = ""
    provider_options: ProviderOptions = field(default_factory=dict)

    type: ClassVar[ContentType] = ContentType.FILE

    def base64_data(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.base64_data()}"


@dataclass
class ToolCallPart:
    """A tool call made by the assistant in an earlier turn."""
    tool_call_id: str
    tool_name: str
    input: str = "{}"
    provider_executed: bool = False
    provider_options: ProviderOptions = field(default_factory=dict)

    type: ClassVar[ContentType] = ContentType.TOOL_CALL


@dataclass
class TextOutput:
    """Successful textual tool output."""
    text: str


@dataclass
class ErrorOutput:
    """Tool execution failure reported back to the model."""
    error: str


@dataclass
class MediaOutput:
    """Binary tool output, base64 encoded."""
    data: str
    media_type: str


ToolResultOutput = Union[TextOutput, ErrorOutput, MediaOutput]


@dataclass
class ToolResultPart:
    """Result of executing a tool call."""
    tool_call_id: str
    output: ToolResultOutput
    tool_name: str = ""
    provider_options: ProviderOptions = field(default_factory=dict)

    type: ClassVar[ContentType] = ContentType.TOOL_RESULT

    def output_text(self) -> str:
        """Render the output as text for vendors that only accept strings."""
        if isinstance(self.output, TextOutput):
            return self.output.text
        if isinstance(self.output, ErrorOutput):
            return self.output.error
        return self.output.data


MessagePart = Union[TextPart, ReasoningPart, FilePart, ToolCallPart, ToolResultPart]


@dataclass
class Message:
    """A single conversation turn."""
    role: Role
    content: List[MessagePart] = field(default_factory=list)
    provider_options: ProviderOptions = field(default_factory=dict)

    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.content if isinstance(p, TextPart))


def user_message(prompt: str, *files: FilePart) -> Message:
    """Build a user message from a prompt and optional file attachments."""
    content: List[MessagePart] = []
    if prompt:
        content.append(TextPart(text=prompt))
    content.extend(files)
    return Message(role=Role.USER, content=content)


def system_message(*prompts: str) -> Message:
    return Message(role=Role.SYSTEM, content=[TextPart(text=p) for p in prompts])


def assistant_message(text: str = "", tool_calls: Optional[List[ToolCallPart]] = None) -> Message:
    content: List[MessagePart] = []
    if text:
        content.append(TextPart(text=text))
    content.extend(tool_calls or [])
    return Message(role=Role.ASSISTANT, content=content)


def tool_result_message(*results: ToolResultPart) -> Message:
    return Message(role=Role.TOOL, content=list(results))


# ============================================================
# Tools
# ============================================================

@dataclass
class FunctionTool:
    """A caller-defined function the model may call."""
    name: str
    description: str = ""
    input_schema: Optional[Schema] = None
    provider_options: ProviderOptions = field(default_factory=dict)

    def parameters(self) -> Dict[str, Any]:
        """JSON Schema for the function parameters."""
        if self.input_schema is None:
            return {"type": "object", "properties": {}}
        return self.input_schema.to_dict()


@dataclass
class ProviderDefinedTool:
    """A tool implemented by the vendor itself (web search, code execution)."""
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


Tool = Union[FunctionTool, ProviderDefinedTool]


class ToolChoiceType(str, Enum):
    """How the model should use tools."""
    AUTO = "auto"
    NONE = "none"
    REQUIRED = "required"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolChoice:
    """Tool choice directive; ``tool_name`` is set only for TOOL."""
    type: ToolChoiceType = ToolChoiceType.AUTO
    tool_name: str = ""

    @classmethod
    def auto(cls) -> "ToolChoice":
        return cls(ToolChoiceType.AUTO)

    @classmethod
    def none(cls) -> "ToolChoice":
        return cls(ToolChoiceType.NONE)

    @classmethod
    def required(cls) -> "ToolChoice":
        return cls(ToolChoiceType.REQUIRED)

    @classmethod
    def tool(cls, name: str) -> "ToolChoice":
        return cls(ToolChoiceType.TOOL, name)


# ============================================================
# Call
# ============================================================

class ResponseFormatType(str, Enum):
    TEXT = "text"
    JSON = "json"


@dataclass(frozen=True)
class ResponseFormat:
    """Native structured-output request."""
    type: ResponseFormatType = ResponseFormatType.TEXT
    schema: Optional[Schema] = None
    name: str = ""
    description: str = ""


@dataclass(frozen=True)
class Call:
    """
    Immutable request descriptor built by the caller per invocation.

    Adapters never mutate a Call. Derived calls (e.g. the object overlay
    adding a pseudo-tool) are created with ``dataclasses.replace``.
    """
    model: str
    messages: List[Message] = field(default_factory=list)
    tools: List[Tool] = field(default_factory=list)
    tool_choice: Optional[ToolChoice] = None
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    stop_sequences: List[str] = field(default_factory=list)
    seed: Optional[int] = None
    response_format: Optional[ResponseFormat] = None
    headers: Dict[str, str] = field(default_factory=dict)
    provider_options: ProviderOptions = field(default_factory=dict)


# ============================================================
# Warnings and Usage
# ============================================================

@dataclass
class CallWarning:
    """A setting or tool the adapter dropped or altered."""
    type: WarningType
    setting: str = ""
    tool: Optional[Tool] = None
    details: str = ""
    message: str = ""

    @classmethod
    def unsupported_setting(cls, setting: str, details: str = "") -> "CallWarning":
        return cls(WarningType.UNSUPPORTED_SETTING, setting=setting, details=details)

    @classmethod
    def unsupported_tool(cls, tool: Tool, details: str = "") -> "CallWarning":
        return cls(WarningType.UNSUPPORTED_TOOL, tool=tool, details=details)

    @classmethod
    def other(cls, message: str) -> "CallWarning":
        return cls(WarningType.OTHER, message=message)

    def __str__(self) -> str:
        if self.type == WarningType.UNSUPPORTED_SETTING:
            text = f"unsupported setting: {self.setting}"
        elif self.type == WarningType.UNSUPPORTED_TOOL:
            name = getattr(self.tool, "name", "")
            text = f"unsupported tool: {name}"
        else:
            return self.message
        return f"{text} ({self.details})" if self.details else text


@dataclass
class Usage:
    """Token usage snapshot. Counters absent from the vendor stay at 0."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    reasoning_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0

    def is_empty(self) -> bool:
        return not any((
            self.input_tokens,
            self.output_tokens,
            self.total_tokens,
            self.reasoning_tokens,
            self.cache_read_tokens,
            self.cache_creation_tokens,
        ))

    def to_dict(self) -> Dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "reasoning_tokens": self.reasoning_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "cache_creation_tokens": self.cache_creation_tokens,
        }


# ============================================================
# Response Content
# ============================================================

@dataclass
class TextContent:
    text: str
    provider_metadata: ProviderMetadata = field(default_factory=dict)

    type: ClassVar[ContentType] = ContentType.TEXT


@dataclass
class ReasoningContent:
    text: str
    provider_metadata: ProviderMetadata = field(default_factory=dict)

    type: ClassVar[ContentType] = ContentType.REASONING


@dataclass
class FileContent:
    data: bytes
    media_type: str
    provider_metadata: ProviderMetadata = field(default_factory=dict)

    type: ClassVar[ContentType] = ContentType.FILE


@dataclass
class SourceContent:
    """A citation attached to generated text."""
    source_type: SourceType
    id: str
    url: str = ""
    title: str = ""
    media_type: str = ""
    filename: str = ""
    provider_metadata: ProviderMetadata = field(default_factory=dict)

    type: ClassVar[ContentType] = ContentType.SOURCE


@dataclass
class ToolCallContent:
    """
    A tool call produced by the model.

    ``invalid`` is set when the arguments are not valid JSON or do not
    match the tool's input schema; ``validation_error`` says why.
    """
    tool_call_id: str
    tool_name: str
    input: str
    provider_executed: bool = False
    invalid: bool = False
    validation_error: Optional[Exception] = None
    provider_metadata: ProviderMetadata = field(default_factory=dict)

    type: ClassVar[ContentType] = ContentType.TOOL_CALL


@dataclass
class ToolResultContent:
    """Result of a provider-executed tool."""
    tool_call_id: str
    tool_name: str
    result: Any = None
    provider_executed: bool = True
    provider_metadata: ProviderMetadata = field(default_factory=dict)

    type: ClassVar[ContentType] = ContentType.TOOL_RESULT


Content = Union[
    TextContent,
    ReasoningContent,
    FileContent,
    SourceContent,
    ToolCallContent,
    ToolResultContent,
]


@dataclass
class Response:
    """One-shot generation result."""
    content: List[Content] = field(default_factory=list)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = field(default_factory=Usage)
    warnings: List[CallWarning] = field(default_factory=list)
    provider_metadata: ProviderMetadata = field(default_factory=dict)

    def text(self) -> str:
        return "".join(c.text for c in self.content if isinstance(c, TextContent))

    def reasoning_text(self) -> str:
        return "".join(c.text for c in self.content if isinstance(c, ReasoningContent))

    def tool_calls(self) -> List[ToolCallContent]:
        return [c for c in self.content if isinstance(c, ToolCallContent)]

    def sources(self) -> List[SourceContent]:
        return [c for c in self.content if isinstance(c, SourceContent)]

    def files(self) -> List[FileContent]:
        return [c for c in self.content if isinstance(c, FileContent)]
