"""
llmbridge - Object Stream Views

StreamObjectResult wraps one object stream and offers filtered views
of it. The underlying stream can be consumed only once, so use a single
view per result.
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional

from ..core.errors import NoObjectGeneratedError
from ..core.models import CallWarning, FinishReason, Usage
from .overlay import ObjectOptions, ObjectResult, ObjectStreamPart, ObjectStreamPartType, stream_object

_NOTHING = object()


class StreamObjectResult:
    """Views over a stream of ObjectStreamPart."""

    def __init__(self, parts: AsyncIterator[ObjectStreamPart]):
        self._parts = parts

    @classmethod
    def start(cls, adapter, call, options: ObjectOptions) -> "StreamObjectResult":
        return cls(stream_object(adapter, call, options))

    async def partial_object_stream(self) -> AsyncIterator[Any]:
        """Progressively more complete objects, each distinct from the previous one."""
        last: Any = _NOTHING
        async for part in self._parts:
            if part.type == ObjectStreamPartType.OBJECT and part.object is not None:
                if last is _NOTHING or part.object != last:
                    last = part.object
                    yield part.object

    async def text_stream(self) -> AsyncIterator[str]:
        async for part in self._parts:
            if part.type == ObjectStreamPartType.TEXT_DELTA and part.delta:
                yield part.delta

    def full_stream(self) -> AsyncIterator[ObjectStreamPart]:
        return self._parts

    async def object(self) -> ObjectResult:
        """
        Consume the stream and return the final object.

        Raises:
            LLMBridgeError: the stream's error, if it ended with one
            NoObjectGeneratedError: if no object was produced
        """
        final: Any = _NOTHING
        raw_text = ""
        usage = Usage()
        finish_reason = FinishReason.UNKNOWN
        warnings: List[CallWarning] = []
        provider_metadata: Dict[str, Any] = {}
        last_error: Optional[BaseException] = None

        async for part in self._parts:
            if part.type == ObjectStreamPartType.OBJECT and part.object is not None:
                final = part.object
                raw_text = json.dumps(part.object, separators=(",", ":"))
            elif part.type == ObjectStreamPartType.ERROR:
                last_error = part.error
            elif part.type == ObjectStreamPartType.FINISH:
                usage = part.usage or Usage()
                finish_reason = part.finish_reason or FinishReason.UNKNOWN
                if part.warnings:
                    warnings = part.warnings
                if part.provider_metadata:
                    provider_metadata = part.provider_metadata

        if last_error is not None:
            raise last_error

        if final is _NOTHING:
            raise NoObjectGeneratedError(
                "no valid object generated in stream",
                raw_text=raw_text,
                usage=usage,
                finish_reason=finish_reason,
            )

        return ObjectResult(
            object=final,
            raw_text=raw_text,
            usage=usage,
            finish_reason=finish_reason,
            warnings=warnings,
            provider_metadata=provider_metadata,
        )

    async def aclose(self):
        await self._parts.aclose()
