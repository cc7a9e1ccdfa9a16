"""
llmbridge - Structured Object Generation

Schema-constrained generation layered on any adapter.

Modes:
- json: vendor-native structured output via Call.response_format
- tool: one pseudo-tool whose input schema is the target schema, forced
  with a specific tool choice; the tool call input is the object
- text: schema instruction in the system prompt, free-form text parsed
  with repair

AUTO picks json when the adapter has a native JSON mode and tool
otherwise. Whatever the mode, callers see the same ObjectResult /
ObjectStreamPart shapes.
"""

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from ..core.errors import NoObjectGeneratedError
from ..core.models import (
    Call,
    CallWarning,
    FinishReason,
    FunctionTool,
    Message,
    ResponseFormat,
    ResponseFormatType,
    Role,
    TextPart,
    ToolChoice,
    Usage,
)
from ..observability.logging import get_logger
from ..schema.partial_json import ParseState, parse_partial_json
from ..schema.schema import Schema
from ..schema.validator import (
    ObjectParseError,
    RepairFunc,
    parse_and_validate_with_repair,
    validate_against_schema,
)
from ..streaming.parts import StreamPartType

logger = get_logger(__name__)

DEFAULT_TOOL_NAME = "generate_object"
DEFAULT_TOOL_DESCRIPTION = "Generate a structured object matching the schema"

_NOTHING = object()


class ObjectMode(str, Enum):
    """How structured output is requested from the model."""
    AUTO = "auto"
    JSON = "json"
    TOOL = "tool"
    TEXT = "text"


@dataclass
class ObjectOptions:
    """
    Target schema and strategy for one object generation.

    ``schema`` may be a Schema or a raw JSON Schema dict. ``repair`` is
    called once with the failing text and error when the output does not
    parse or validate.
    """
    schema: Union[Schema, Dict[str, Any]]
    mode: ObjectMode = ObjectMode.AUTO
    name: str = ""
    description: str = ""
    repair: Optional[RepairFunc] = None

    @classmethod
    def for_type(cls, tp: Any, **kwargs) -> "ObjectOptions":
        """Options whose schema is generated from a dataclass, pydantic model or typing hint."""
        return cls(schema=Schema.from_type(tp), **kwargs)

    def schema_dict(self) -> Dict[str, Any]:
        return self.schema.to_dict() if isinstance(self.schema, Schema) else self.schema

    def schema_model(self) -> Schema:
        return self.schema if isinstance(self.schema, Schema) else Schema.from_dict(self.schema)


@dataclass
class ObjectResult:
    """One-shot object generation result."""
    object: Any
    raw_text: str
    usage: Usage = field(default_factory=Usage)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    warnings: List[CallWarning] = field(default_factory=list)
    provider_metadata: Dict[str, Any] = field(default_factory=dict)


class ObjectStreamPartType(str, Enum):
    OBJECT = "object"
    TEXT_DELTA = "text-delta"
    ERROR = "error"
    FINISH = "finish"


@dataclass
class ObjectStreamPart:
    """One event of an object stream. Only the fields relevant to ``type`` are set."""
    type: ObjectStreamPartType
    object: Any = None
    delta: str = ""
    error: Optional[BaseException] = None
    usage: Optional[Usage] = None
    finish_reason: Optional[FinishReason] = None
    warnings: List[CallWarning] = field(default_factory=list)
    provider_metadata: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# Call Derivation
# ============================================================

def resolve_mode(adapter, mode: ObjectMode) -> ObjectMode:
    """Vendors without a native JSON mode fall back to tool mode."""
    if mode in (ObjectMode.AUTO, ObjectMode.JSON):
        return ObjectMode.JSON if adapter.supports_json_mode else ObjectMode.TOOL
    return mode


def schema_instruction(options: ObjectOptions) -> str:
    return (
        f"You must respond with valid JSON that matches this schema: "
        f"{json.dumps(options.schema_dict())}\n"
        "Respond ONLY with the JSON object, no additional text or explanation."
    )


def _with_instruction(messages: List[Message], instruction: str) -> List[Message]:
    result: List[Message] = []
    has_system = False
    for message in messages:
        if message.role == Role.SYSTEM:
            has_system = True
            result.append(Message(
                role=Role.SYSTEM,
                content=[TextPart(text=f"{message.text()}\n\n{instruction}")],
                provider_options=message.provider_options,
            ))
        else:
            result.append(message)
    if not has_system:
        result.insert(0, Message(role=Role.SYSTEM, content=[TextPart(text=instruction)]))
    return result


def build_object_call(call: Call, options: ObjectOptions, mode: ObjectMode) -> Call:
    """Derive the Call that asks for the object in the given (resolved) mode."""
    if mode == ObjectMode.JSON:
        return replace(call, response_format=ResponseFormat(
            type=ResponseFormatType.JSON,
            schema=options.schema_model(),
            name=options.name,
            description=options.description,
        ))

    if mode == ObjectMode.TOOL:
        tool = FunctionTool(
            name=options.name or DEFAULT_TOOL_NAME,
            description=options.description or DEFAULT_TOOL_DESCRIPTION,
            input_schema=options.schema_model(),
        )
        return replace(call, tools=[tool], tool_choice=ToolChoice.tool(tool.name),
                       response_format=None)

    return replace(
        call,
        messages=_with_instruction(call.messages, schema_instruction(options)),
        tools=[],
        tool_choice=None,
        response_format=None,
    )


# ============================================================
# One-shot
# ============================================================

async def generate_object(adapter, call: Call, options: ObjectOptions) -> ObjectResult:
    """
    Generate one object matching ``options.schema``.

    Raises:
        NoObjectGeneratedError: if the model output is missing, unparseable
            or invalid (after the optional repair)
        LLMBridgeError: for transport and vendor failures
    """
    mode = resolve_mode(adapter, options.mode)
    logger.debug("Generating object", provider=adapter.provider, model=call.model, mode=mode.value)

    response = await adapter.generate(build_object_call(call, options, mode))

    if mode == ObjectMode.TOOL:
        tool_calls = response.tool_calls()
        if not tool_calls:
            raise NoObjectGeneratedError(
                "no tool call generated",
                raw_text=response.text(),
                usage=response.usage,
                finish_reason=response.finish_reason,
            )
        raw_text = tool_calls[0].input
    else:
        raw_text = response.text()
        if not raw_text:
            raise NoObjectGeneratedError(
                "no text content in response",
                usage=response.usage,
                finish_reason=response.finish_reason,
            )

    try:
        value = await parse_and_validate_with_repair(raw_text, options.schema_dict(), options.repair)
    except ObjectParseError as e:
        raise NoObjectGeneratedError(
            raw_text=e.raw_text,
            cause=e.validation_error or e.parse_error,
            usage=response.usage,
            finish_reason=response.finish_reason,
        ) from e

    return ObjectResult(
        object=value,
        raw_text=raw_text,
        usage=response.usage,
        finish_reason=response.finish_reason,
        warnings=list(response.warnings),
        provider_metadata=response.provider_metadata,
    )


# ============================================================
# Streaming
# ============================================================

class _PartialObjectTracker:
    """Re-parses the accumulated text after each delta and reports new valid objects."""

    def __init__(self, options: ObjectOptions):
        self.options = options
        self.schema = options.schema_dict()
        self.text = ""
        self.last: Any = _NOTHING

    @property
    def has_object(self) -> bool:
        return self.last is not _NOTHING

    def _accept(self, value: Any) -> bool:
        if validate_against_schema(value, self.schema) is not None:
            return False
        # Deep structural equality suppresses duplicate emissions
        if self.has_object and value == self.last:
            return False
        self.last = value
        return True

    async def feed(self, delta: str) -> Any:
        """Append a delta; returns the new object or _NOTHING."""
        self.text += delta
        value, state, parse_error = parse_partial_json(self.text)
        if state in (ParseState.SUCCESSFUL, ParseState.REPAIRED):
            return value if self._accept(value) else _NOTHING

        if state == ParseState.FAILED and self.options.repair is not None:
            try:
                repaired = await self.options.repair(self.text, parse_error)
            except Exception as e:
                logger.debug("Partial object repair failed", error=str(e))
                return _NOTHING
            value, state, _ = parse_partial_json(repaired)
            if state in (ParseState.SUCCESSFUL, ParseState.REPAIRED) and self._accept(value):
                return value
        return _NOTHING

    async def complete(self, text: str) -> Any:
        """Full parse and validation of a finished tool call input."""
        try:
            value = await parse_and_validate_with_repair(text, self.schema, self.options.repair)
        except ObjectParseError as e:
            logger.debug("Tool call input is not a valid object", error=str(e))
            return _NOTHING
        return value if self._accept(value) else _NOTHING


async def stream_object(adapter, call: Call, options: ObjectOptions) -> AsyncIterator[ObjectStreamPart]:
    """
    Stream progressively more complete objects.

    Yields OBJECT parts (only when the parsed and validated value
    changes), TEXT_DELTA parts for model text, then one FINISH, or one
    ERROR when the vendor stream fails or nothing valid was produced.
    Errors before the vendor stream opens raise from the first
    ``__anext__``.
    """
    mode = resolve_mode(adapter, options.mode)
    logger.debug("Streaming object", provider=adapter.provider, model=call.model, mode=mode.value)

    tracker = _PartialObjectTracker(options)
    usage = Usage()
    finish_reason = FinishReason.UNKNOWN
    warnings: List[CallWarning] = []
    provider_metadata: Dict[str, Any] = {}

    parts = adapter.stream(build_object_call(call, options, mode))
    try:
        async for part in parts:
            new_object: Any = _NOTHING

            if part.type == StreamPartType.TEXT_DELTA:
                yield ObjectStreamPart(ObjectStreamPartType.TEXT_DELTA, delta=part.delta)
                if mode != ObjectMode.TOOL:
                    new_object = await tracker.feed(part.delta)
            elif part.type == StreamPartType.TOOL_INPUT_DELTA:
                if mode == ObjectMode.TOOL:
                    new_object = await tracker.feed(part.delta)
            elif part.type == StreamPartType.TOOL_CALL:
                if mode == ObjectMode.TOOL:
                    new_object = await tracker.complete(part.tool_input)
            elif part.type == StreamPartType.WARNINGS:
                warnings = list(part.warnings)
            elif part.type == StreamPartType.FINISH:
                usage = part.usage or Usage()
                finish_reason = part.finish_reason or FinishReason.UNKNOWN
            elif part.type == StreamPartType.ERROR:
                yield ObjectStreamPart(ObjectStreamPartType.ERROR, error=part.error)
                return

            if part.provider_metadata:
                provider_metadata = part.provider_metadata

            if new_object is not _NOTHING:
                yield ObjectStreamPart(ObjectStreamPartType.OBJECT, object=new_object)
    finally:
        await parts.aclose()

    if tracker.has_object:
        yield ObjectStreamPart(
            ObjectStreamPartType.FINISH,
            usage=usage,
            finish_reason=finish_reason,
            warnings=warnings,
            provider_metadata=provider_metadata,
        )
    else:
        yield ObjectStreamPart(ObjectStreamPartType.ERROR, error=NoObjectGeneratedError(
            "no valid object generated in stream",
            raw_text=tracker.text,
            usage=usage,
            finish_reason=finish_reason,
        ))
