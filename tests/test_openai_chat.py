"""
llmbridge - Chat Completions Adapter Tests

Tests for:
- OpenAI chat request mapping and warnings
- One-shot response parsing and tool call validation
- Stream normalization: text, fragmented tool calls, citations, usage
- Stream error handling and cancellation
- OpenAI-compatible and OpenRouter hooks
"""

import json

import httpx
import pytest

from llmbridge.adapters.base import AdapterConfig
from llmbridge.adapters.openai_chat import OpenAIChatAdapter, OpenAIOptions
from llmbridge.adapters.openai_compat import OpenAICompatAdapter
from llmbridge.adapters.openrouter import OpenRouterAdapter
from llmbridge.core.errors import (
    InvalidArgumentError,
    InvalidResponseDataError,
    ProviderError,
    StreamProtocolError,
)
from llmbridge.core.models import (
    Call,
    FilePart,
    FinishReason,
    FunctionTool,
    Message,
    ProviderDefinedTool,
    ReasoningContent,
    ResponseFormat,
    ResponseFormatType,
    Role,
    TextOutput,
    ToolCallPart,
    ToolChoice,
    ToolResultPart,
    WarningType,
    assistant_message,
    system_message,
    tool_result_message,
    user_message,
)
from llmbridge.schema import Schema, SchemaType
from llmbridge.streaming.parts import StreamPartType as T

from conftest import (
    RUN_INTEGRATION,
    MockVendor,
    TrackedStream,
    assert_well_formed,
    collect,
    content_types,
    make_adapter,
    part_types,
    sse_body,
)


WEATHER_TOOL = FunctionTool(
    name="get_weather",
    description="Current weather",
    input_schema=Schema(
        type=SchemaType.OBJECT,
        properties={"city": Schema(type=SchemaType.STRING)},
        required=["city"],
    ),
)


def chat_response(message, finish_reason="stop", usage=None):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": usage or {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
    }


def delta_chunk(delta, finish_reason=None, **extra):
    choice = {"index": 0, "delta": delta, "finish_reason": finish_reason}
    choice.update(extra)
    return {"id": "chatcmpl-1", "object": "chat.completion.chunk", "choices": [choice]}


def tool_delta(index=0, arguments="", id=None, name=None):
    entry = {"index": index, "function": {"arguments": arguments}}
    if id is not None:
        entry["id"] = id
        entry["type"] = "function"
        entry["function"]["name"] = name
    return delta_chunk({"tool_calls": [entry]})


def usage_chunk(prompt=53, completion=17):
    return {
        "id": "chatcmpl-1",
        "choices": [],
        "usage": {"prompt_tokens": prompt, "completion_tokens": completion,
                  "total_tokens": prompt + completion},
    }


# ============================================================
# Request mapping
# ============================================================

class TestOpenAIChatRequest:
    """Tests for request payload construction."""

    @pytest.mark.asyncio
    async def test_basic_payload(self):
        vendor = MockVendor.json(chat_response({"role": "assistant", "content": "Hi"}))
        adapter = make_adapter(OpenAIChatAdapter, vendor)
        call = Call(
            model="gpt-4o",
            messages=[system_message("Be brief."), user_message("Hello")],
            max_output_tokens=50,
            temperature=0.2,
            stop_sequences=["END"],
            seed=7,
        )
        await adapter.generate(call)

        payload = vendor.last_payload
        assert str(vendor.last_request.url) == "https://api.openai.com/v1/chat/completions"
        assert vendor.last_request.headers["authorization"] == "Bearer test-api-key"
        assert payload["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hello"},
        ]
        assert payload["max_tokens"] == 50
        assert payload["temperature"] == 0.2
        assert payload["stop"] == ["END"]
        assert payload["seed"] == 7
        assert "stream" not in payload

    @pytest.mark.asyncio
    async def test_reasoning_model_drops_sampling(self):
        """Reasoning models lose temperature/top_p with a warning each."""
        vendor = MockVendor.json(chat_response({"role": "assistant", "content": "Hi"}))
        adapter = make_adapter(OpenAIChatAdapter, vendor)
        call = Call(model="o3-mini", messages=[user_message("Hi")],
                    temperature=0.5, top_p=0.9, max_output_tokens=100)
        response = await adapter.generate(call)

        payload = vendor.last_payload
        assert "temperature" not in payload
        assert "top_p" not in payload
        assert payload["max_completion_tokens"] == 100
        assert "max_tokens" not in payload
        assert {w.setting for w in response.warnings} == {"temperature", "TopP"}

    @pytest.mark.asyncio
    async def test_top_k_warning(self):
        vendor = MockVendor.json(chat_response({"role": "assistant", "content": "Hi"}))
        response = await make_adapter(OpenAIChatAdapter, vendor).generate(
            Call(model="gpt-4o", messages=[user_message("Hi")], top_k=3)
        )
        assert "top_k" not in vendor.last_payload
        assert response.warnings[0].type == WarningType.UNSUPPORTED_SETTING
        assert response.warnings[0].setting == "top_k"

    @pytest.mark.asyncio
    async def test_tools_and_tool_choice(self):
        vendor = MockVendor.json(chat_response({"role": "assistant", "content": "ok"}))
        call = Call(
            model="gpt-4o",
            messages=[user_message("Weather?")],
            tools=[WEATHER_TOOL, ProviderDefinedTool(id="openai.web_search", name="web_search")],
            tool_choice=ToolChoice.tool("get_weather"),
        )
        response = await make_adapter(OpenAIChatAdapter, vendor).generate(call)

        payload = vendor.last_payload
        assert payload["tools"] == [{
            "type": "function",
            "function": {
                "name": "get_weather",
                "description": "Current weather",
                "parameters": {
                    "type": "object",
                    "properties": {"city": {"type": "string"}},
                    "required": ["city"],
                },
                "strict": False,
            },
        }]
        assert payload["tool_choice"] == {"type": "function", "function": {"name": "get_weather"}}
        assert response.warnings[0].type == WarningType.UNSUPPORTED_TOOL

    @pytest.mark.asyncio
    async def test_json_schema_response_format(self):
        vendor = MockVendor.json(chat_response({"role": "assistant", "content": "{}"}))
        schema = Schema(type=SchemaType.OBJECT, properties={"a": Schema(type=SchemaType.STRING)})
        call = Call(
            model="gpt-4o",
            messages=[user_message("x")],
            response_format=ResponseFormat(ResponseFormatType.JSON, schema=schema),
        )
        await make_adapter(OpenAIChatAdapter, vendor).generate(call)
        assert vendor.last_payload["response_format"] == {
            "type": "json_schema",
            "json_schema": {
                "name": "response",
                "schema": {
                    "type": "object",
                    "properties": {"a": {"type": "string"}},
                    "additionalProperties": False,
                },
                "strict": True,
            },
        }

    @pytest.mark.asyncio
    async def test_provider_options(self):
        vendor = MockVendor.json(chat_response({"role": "assistant", "content": "ok"}))
        call = Call(
            model="gpt-4o",
            messages=[user_message("x")],
            provider_options={"openai": OpenAIOptions(user="u-1", parallel_tool_calls=False,
                                                      top_logprobs=2)},
        )
        await make_adapter(OpenAIChatAdapter, vendor).generate(call)
        payload = vendor.last_payload
        assert payload["user"] == "u-1"
        assert payload["parallel_tool_calls"] is False
        assert payload["top_logprobs"] == 2

    @pytest.mark.asyncio
    async def test_invalid_provider_options(self):
        vendor = MockVendor.json({})
        call = Call(model="gpt-4o", messages=[user_message("x")],
                    provider_options={"openai": {"top_logprobs": "many"}})
        with pytest.raises(InvalidArgumentError):
            await make_adapter(OpenAIChatAdapter, vendor).generate(call)
        assert vendor.requests == []

    @pytest.mark.asyncio
    async def test_conversation_with_tools_and_files(self):
        vendor = MockVendor.json(chat_response({"role": "assistant", "content": "ok"}))
        image = FilePart(data=b"\x89PNG", media_type="image/png")
        call = Call(model="gpt-4o", messages=[
            user_message("What is this?", image),
            assistant_message(tool_calls=[
                ToolCallPart(tool_call_id="c1", tool_name="get_weather", input='{"city":"Oslo"}')
            ]),
            tool_result_message(ToolResultPart(tool_call_id="c1", output=TextOutput("rainy"))),
        ])
        await make_adapter(OpenAIChatAdapter, vendor).generate(call)

        user, assistant, tool = vendor.last_payload["messages"]
        assert user["content"][0] == {"type": "text", "text": "What is this?"}
        assert user["content"][1]["image_url"]["url"].startswith("data:image/png;base64,")
        assert assistant["tool_calls"][0]["function"] == {
            "name": "get_weather", "arguments": '{"city":"Oslo"}',
        }
        assert tool == {"role": "tool", "tool_call_id": "c1", "content": "rainy"}


# ============================================================
# One-shot responses
# ============================================================

class TestOpenAIChatGenerate:
    """Tests for one-shot response parsing."""

    @pytest.mark.asyncio
    async def test_text_response(self):
        vendor = MockVendor.json(chat_response(
            {"role": "assistant", "content": "Hello!"},
            usage={"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7,
                   "prompt_tokens_details": {"cached_tokens": 3},
                   "completion_tokens_details": {"reasoning_tokens": 1,
                                                 "accepted_prediction_tokens": 4}},
        ))
        response = await make_adapter(OpenAIChatAdapter, vendor).generate(
            Call(model="gpt-4o", messages=[user_message("Hi")])
        )
        assert response.text() == "Hello!"
        assert response.finish_reason == FinishReason.STOP
        assert response.usage.input_tokens == 5
        assert response.usage.cache_read_tokens == 3
        assert response.usage.reasoning_tokens == 1
        assert response.provider_metadata == {"openai": {"accepted_prediction_tokens": 4}}

    @pytest.mark.asyncio
    async def test_tool_call_forces_finish_reason(self):
        vendor = MockVendor.json(chat_response({
            "role": "assistant",
            "content": None,
            "tool_calls": [{"id": "call_1", "type": "function",
                            "function": {"name": "get_weather", "arguments": '{"city":"Paris"}'}}],
        }, finish_reason="stop"))
        response = await make_adapter(OpenAIChatAdapter, vendor).generate(
            Call(model="gpt-4o", messages=[user_message("Weather?")], tools=[WEATHER_TOOL])
        )
        call = response.tool_calls()[0]
        assert call.tool_name == "get_weather"
        assert not call.invalid
        assert response.finish_reason == FinishReason.TOOL_CALLS

    @pytest.mark.asyncio
    async def test_schema_violating_tool_call_marked_invalid(self):
        vendor = MockVendor.json(chat_response({
            "role": "assistant",
            "tool_calls": [{"id": "call_1", "type": "function",
                            "function": {"name": "get_weather", "arguments": '{"city": 5}'}}],
        }, finish_reason="tool_calls"))
        response = await make_adapter(OpenAIChatAdapter, vendor).generate(
            Call(model="gpt-4o", messages=[user_message("Weather?")], tools=[WEATHER_TOOL])
        )
        call = response.tool_calls()[0]
        assert call.invalid
        assert call.validation_error is not None

    @pytest.mark.asyncio
    async def test_unknown_tool_marked_invalid(self):
        vendor = MockVendor.json(chat_response({
            "role": "assistant",
            "tool_calls": [{"id": "c", "type": "function",
                            "function": {"name": "launch", "arguments": "{}"}}],
        }))
        response = await make_adapter(OpenAIChatAdapter, vendor).generate(
            Call(model="gpt-4o", messages=[user_message("x")], tools=[WEATHER_TOOL])
        )
        assert response.tool_calls()[0].invalid

    @pytest.mark.asyncio
    async def test_annotations_become_sources(self):
        vendor = MockVendor.json(chat_response({
            "role": "assistant",
            "content": "See docs.",
            "annotations": [{"type": "url_citation",
                             "url_citation": {"url": "https://docs.example.com", "title": "Docs"}}],
        }))
        response = await make_adapter(OpenAIChatAdapter, vendor).generate(
            Call(model="gpt-4o-search-preview", messages=[user_message("x")])
        )
        source = response.sources()[0]
        assert source.url == "https://docs.example.com"
        assert source.title == "Docs"

    @pytest.mark.asyncio
    async def test_no_choices(self):
        vendor = MockVendor.json({"id": "x", "choices": []})
        with pytest.raises(InvalidResponseDataError, match="no response generated"):
            await make_adapter(OpenAIChatAdapter, vendor).generate(
                Call(model="gpt-4o", messages=[user_message("x")])
            )

    @pytest.mark.asyncio
    async def test_http_error(self):
        vendor = MockVendor.json({"error": {"message": "Invalid API key"}}, status_code=401)
        with pytest.raises(ProviderError) as exc_info:
            await make_adapter(OpenAIChatAdapter, vendor).generate(
                Call(model="gpt-4o", messages=[user_message("x")])
            )
        assert exc_info.value.status_code == 401
        assert not exc_info.value.retryable


# ============================================================
# Streaming
# ============================================================

class TestOpenAIChatStream:
    """Tests for stream normalization."""

    @pytest.mark.asyncio
    async def test_text_stream(self, simple_call):
        vendor = MockVendor.sse(
            delta_chunk({"role": "assistant", "content": ""}),
            delta_chunk({"content": "Hello"}),
            delta_chunk({"content": ", world"}),
            delta_chunk({}, finish_reason="stop"),
            usage_chunk(10, 3),
        )
        adapter = make_adapter(OpenAIChatAdapter, vendor)
        parts = await collect(adapter.stream(simple_call))

        assert part_types(parts) == [T.TEXT_START, T.TEXT_DELTA, T.TEXT_DELTA, T.TEXT_END, T.FINISH]
        assert "".join(p.delta for p in parts if p.type == T.TEXT_DELTA) == "Hello, world"
        finish = parts[-1]
        assert finish.finish_reason == FinishReason.STOP
        assert finish.usage.input_tokens == 10
        assert finish.usage.output_tokens == 3
        assert vendor.last_payload["stream"] is True
        assert vendor.last_payload["stream_options"] == {"include_usage": True}
        assert_well_formed(parts)

    @pytest.mark.asyncio
    async def test_fragmented_tool_call(self, simple_call):
        """Arguments split over six fragments realize one tool call."""
        fragments = ['{"', "value", '":"', "Spark", "le Day", '"}']
        vendor = MockVendor.sse(
            delta_chunk({"role": "assistant", "content": None}),
            tool_delta(id="call_01", name="test-tool"),
            *[tool_delta(arguments=f) for f in fragments],
            delta_chunk({}, finish_reason="tool_calls"),
            usage_chunk(53, 17),
        )
        parts = await collect(make_adapter(OpenAIChatAdapter, vendor).stream(simple_call))

        assert part_types(parts) == (
            [T.TOOL_INPUT_START] + [T.TOOL_INPUT_DELTA] * 6
            + [T.TOOL_INPUT_END, T.TOOL_CALL, T.FINISH]
        )
        call = parts[-2]
        assert call.id == "call_01"
        assert call.tool_name == "test-tool"
        assert json.loads(call.tool_input) == {"value": "Sparkle Day"}
        assert parts[-1].finish_reason == FinishReason.TOOL_CALLS
        assert parts[-1].usage.input_tokens == 53
        assert parts[-1].usage.output_tokens == 17

    @pytest.mark.asyncio
    async def test_text_then_tool_call(self, simple_call):
        """Text closes before the tool span; finish reason is tool_calls."""
        vendor = MockVendor.sse(
            delta_chunk({"content": "Checking."}),
            tool_delta(id="call_1", name="get_weather", arguments='{"city":'),
            tool_delta(arguments='"Paris"}'),
            delta_chunk({}, finish_reason="stop"),
        )
        parts = await collect(make_adapter(OpenAIChatAdapter, vendor).stream(simple_call))
        assert part_types(parts) == [
            T.TEXT_START, T.TEXT_DELTA, T.TEXT_END,
            T.TOOL_INPUT_START, T.TOOL_INPUT_DELTA, T.TOOL_INPUT_DELTA,
            T.TOOL_INPUT_END, T.TOOL_CALL, T.FINISH,
        ]
        assert parts[-1].finish_reason == FinishReason.TOOL_CALLS
        assert_well_formed(parts)

    @pytest.mark.asyncio
    async def test_parallel_tool_calls(self, simple_call):
        vendor = MockVendor.sse(
            tool_delta(0, id="a", name="get_weather", arguments='{"city":"Oslo"}'),
            tool_delta(1, id="b", name="get_weather", arguments='{"city":"Rome"}'),
            delta_chunk({}, finish_reason="tool_calls"),
        )
        parts = await collect(make_adapter(OpenAIChatAdapter, vendor).stream(simple_call))
        calls = [p for p in parts if p.type == T.TOOL_CALL]
        assert [c.id for c in calls] == ["a", "b"]
        assert_well_formed(parts)

    @pytest.mark.asyncio
    async def test_warnings_come_first(self):
        vendor = MockVendor.sse(delta_chunk({"content": "x"}), delta_chunk({}, finish_reason="stop"))
        call = Call(model="gpt-4o", messages=[user_message("Hi")], top_k=4)
        parts = await collect(make_adapter(OpenAIChatAdapter, vendor).stream(call))
        assert parts[0].type == T.WARNINGS
        assert parts[0].warnings[0].setting == "top_k"
        assert content_types(parts) == [T.TEXT_START, T.TEXT_DELTA, T.TEXT_END, T.FINISH]

    @pytest.mark.asyncio
    async def test_citation_sources(self, simple_call):
        vendor = MockVendor.sse(
            delta_chunk({"content": "See"}),
            delta_chunk({"annotations": [{"type": "url_citation",
                                          "url_citation": {"url": "https://a.example", "title": "A"}}]}),
            delta_chunk({}, finish_reason="stop"),
        )
        parts = await collect(make_adapter(OpenAIChatAdapter, vendor).stream(simple_call))
        sources = [p for p in parts if p.type == T.SOURCE]
        assert len(sources) == 1
        assert sources[0].url == "https://a.example"

    @pytest.mark.asyncio
    async def test_logprobs_in_finish_metadata(self, simple_call):
        logprobs = [{"token": "Hi", "logprob": -0.1}]
        vendor = MockVendor.sse(
            delta_chunk({"content": "Hi"}, logprobs={"content": logprobs}),
            delta_chunk({}, finish_reason="stop"),
        )
        parts = await collect(make_adapter(OpenAIChatAdapter, vendor).stream(simple_call))
        assert parts[-1].provider_metadata == {"openai": {"logprobs": logprobs}}

    @pytest.mark.asyncio
    async def test_error_chunk_ends_stream(self, simple_call):
        vendor = MockVendor.sse(
            delta_chunk({"content": "Hel"}),
            {"error": {"message": "overloaded", "type": "server_error"}},
        )
        parts = await collect(make_adapter(OpenAIChatAdapter, vendor).stream(simple_call))
        assert parts[-1].type == T.ERROR
        assert isinstance(parts[-1].error, InvalidResponseDataError)
        assert "overloaded" in str(parts[-1].error)
        assert_well_formed(parts)

    @pytest.mark.asyncio
    async def test_malformed_chunk(self, simple_call):
        vendor = MockVendor.sse(delta_chunk({"content": "a"}), "{not json")
        parts = await collect(make_adapter(OpenAIChatAdapter, vendor).stream(simple_call))
        assert part_types(parts)[-1] == T.ERROR
        assert isinstance(parts[-1].error, InvalidResponseDataError)

    @pytest.mark.asyncio
    async def test_missing_tool_type_is_protocol_error(self, simple_call):
        vendor = MockVendor.sse(
            delta_chunk({"tool_calls": [{"index": 0, "id": "c", "function": {"name": "f"}}]}),
        )
        parts = await collect(make_adapter(OpenAIChatAdapter, vendor).stream(simple_call))
        assert part_types(parts) == [T.ERROR]
        assert isinstance(parts[0].error, StreamProtocolError)

    @pytest.mark.asyncio
    async def test_unparseable_tool_arguments_at_end(self, simple_call):
        vendor = MockVendor.sse(
            tool_delta(id="c", name="f", arguments='{"a":'),
            delta_chunk({}, finish_reason="tool_calls"),
        )
        parts = await collect(make_adapter(OpenAIChatAdapter, vendor).stream(simple_call))
        assert parts[-1].type == T.ERROR
        assert isinstance(parts[-1].error, StreamProtocolError)

    @pytest.mark.asyncio
    async def test_pre_stream_error_raises(self, simple_call):
        """HTTP errors before the stream opens raise instead of yielding parts."""
        vendor = MockVendor.json({"error": {"message": "bad request"}}, status_code=400)
        with pytest.raises(ProviderError) as exc_info:
            await collect(make_adapter(OpenAIChatAdapter, vendor).stream(simple_call))
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_cancellation_closes_response(self, simple_call):
        """Closing the stream early releases the HTTP response and stops reading."""
        chunks = [sse_body(delta_chunk({"content": f"tok{i} "}), done=False) for i in range(50)]
        chunks.append(b"data: [DONE]\n\n")
        body = TrackedStream(chunks)
        vendor = MockVendor(httpx.Response(
            200, stream=body, headers={"content-type": "text/event-stream"},
        ))
        stream = make_adapter(OpenAIChatAdapter, vendor).stream(simple_call)

        received = []
        async for part in stream:
            received.append(part)
            if part.type == T.TEXT_DELTA:
                break
        await stream.aclose()

        assert body.closed
        assert body.sent < len(chunks)
        assert part_types(received) == [T.TEXT_START, T.TEXT_DELTA]

    @pytest.mark.asyncio
    async def test_nothing_read_before_first_pull(self, simple_call):
        vendor = MockVendor.sse(delta_chunk({"content": "x"}))
        stream = make_adapter(OpenAIChatAdapter, vendor).stream(simple_call)
        assert vendor.requests == []
        await stream.__anext__()
        assert len(vendor.requests) == 1
        await stream.aclose()


# ============================================================
# OpenAI-compatible
# ============================================================

class TestOpenAICompat:
    """Tests for the OpenAI-compatible adapter."""

    def test_requires_base_url(self):
        with pytest.raises(InvalidArgumentError, match="base_url"):
            OpenAICompatAdapter(AdapterConfig(api_key="k"))

    @pytest.mark.asyncio
    async def test_reasoning_content_stream(self):
        vendor = MockVendor.sse(
            delta_chunk({"reasoning_content": "Let me think"}),
            delta_chunk({"reasoning_content": " harder"}),
            delta_chunk({"content": "42"}),
            delta_chunk({}, finish_reason="stop"),
        )
        adapter = make_adapter(OpenAICompatAdapter, vendor, base_url="http://localhost:8000/v1")
        parts = await collect(adapter.stream(Call(model="deepseek-r1", messages=[user_message("?")])))

        assert str(vendor.last_request.url) == "http://localhost:8000/v1/chat/completions"
        assert part_types(parts) == [
            T.REASONING_START, T.REASONING_DELTA, T.REASONING_DELTA, T.REASONING_END,
            T.TEXT_START, T.TEXT_DELTA, T.TEXT_END, T.FINISH,
        ]
        assert_well_formed(parts)

    @pytest.mark.asyncio
    async def test_reasoning_content_generate(self):
        vendor = MockVendor.json(chat_response(
            {"role": "assistant", "content": "42", "reasoning_content": "math"}
        ))
        adapter = make_adapter(OpenAICompatAdapter, vendor, base_url="http://localhost:8000/v1")
        response = await adapter.generate(Call(model="m", messages=[user_message("?")]))
        assert isinstance(response.content[0], ReasoningContent)
        assert response.reasoning_text() == "math"
        assert response.text() == "42"

    @pytest.mark.asyncio
    async def test_json_mode_unsupported_warns(self):
        vendor = MockVendor.json(chat_response({"role": "assistant", "content": "{}"}))
        adapter = make_adapter(OpenAICompatAdapter, vendor, base_url="http://localhost:8000/v1")
        response = await adapter.generate(Call(
            model="m", messages=[user_message("x")],
            response_format=ResponseFormat(ResponseFormatType.JSON),
        ))
        assert "response_format" not in vendor.last_payload
        assert response.warnings[0].setting == "response_format"

    @pytest.mark.asyncio
    async def test_empty_assistant_message_dropped(self):
        vendor = MockVendor.json(chat_response({"role": "assistant", "content": "ok"}))
        adapter = make_adapter(OpenAICompatAdapter, vendor, base_url="http://localhost:8000/v1")
        response = await adapter.generate(Call(model="m", messages=[
            user_message("hi"), Message(role=Role.ASSISTANT), user_message("again"),
        ]))
        assert [m["role"] for m in vendor.last_payload["messages"]] == ["user", "user"]
        assert "dropping empty assistant message" in str(response.warnings[0])


# ============================================================
# OpenRouter
# ============================================================

class TestOpenRouter:
    """Tests for the OpenRouter adapter."""

    @pytest.mark.asyncio
    async def test_usage_accounting_requested(self):
        vendor = MockVendor.json({**chat_response({"role": "assistant", "content": "hi"}),
                                  "provider": "Anthropic"})
        response = await make_adapter(OpenRouterAdapter, vendor).generate(
            Call(model="anthropic/claude-sonnet-4", messages=[user_message("x")])
        )
        assert str(vendor.last_request.url) == "https://openrouter.ai/api/v1/chat/completions"
        assert vendor.last_payload["usage"] == {"include": True}
        assert response.provider_metadata["openrouter"]["provider"] == "Anthropic"

    @pytest.mark.asyncio
    async def test_plain_reasoning_details_stream(self):
        vendor = MockVendor.sse(
            delta_chunk({"reasoning_details": [{"type": "reasoning.text", "text": "step 1",
                                                "format": "unknown", "index": 0}]}),
            delta_chunk({"reasoning_details": [{"type": "reasoning.text", "text": ", step 2",
                                                "format": "unknown", "index": 0}]}),
            delta_chunk({"content": "Done"}),
            delta_chunk({}, finish_reason="stop"),
            {**usage_chunk(4, 6), "provider": "DeepInfra"},
        )
        parts = await collect(make_adapter(OpenRouterAdapter, vendor).stream(
            Call(model="deepseek/deepseek-r1", messages=[user_message("?")])
        ))
        assert part_types(parts) == [
            T.REASONING_START, T.REASONING_DELTA, T.REASONING_DELTA, T.REASONING_END,
            T.TEXT_START, T.TEXT_DELTA, T.TEXT_END, T.FINISH,
        ]
        assert "".join(p.delta for p in parts if p.type == T.REASONING_DELTA) == "step 1, step 2"
        assert parts[-1].provider_metadata["openrouter"]["provider"] == "DeepInfra"
        assert parts[-1].usage.output_tokens == 6
        assert_well_formed(parts)

    @pytest.mark.asyncio
    async def test_anthropic_signature_ends_reasoning(self):
        vendor = MockVendor.sse(
            delta_chunk({"reasoning_details": [{"type": "reasoning.text", "text": "hmm",
                                                "format": "anthropic-claude-v1", "index": 0}]}),
            delta_chunk({"reasoning_details": [{"type": "reasoning.text", "text": "",
                                                "signature": "sig-1",
                                                "format": "anthropic-claude-v1", "index": 0}]}),
            delta_chunk({"content": "Answer"}),
            delta_chunk({}, finish_reason="stop"),
        )
        parts = await collect(make_adapter(OpenRouterAdapter, vendor).stream(
            Call(model="anthropic/claude-sonnet-4", messages=[user_message("?")])
        ))
        end = next(p for p in parts if p.type == T.REASONING_END)
        assert end.provider_metadata == {"anthropic": {"signature": "sig-1"}}
        assert_well_formed(parts)

    @pytest.mark.asyncio
    async def test_reasoning_details_generate(self):
        vendor = MockVendor.json(chat_response({
            "role": "assistant",
            "content": "Answer",
            "reasoning_details": [{"type": "reasoning.text", "text": "thought",
                                   "signature": "sig", "format": "anthropic-claude-v1"}],
        }))
        response = await make_adapter(OpenRouterAdapter, vendor).generate(
            Call(model="anthropic/claude-sonnet-4", messages=[user_message("?")])
        )
        reasoning = response.content[0]
        assert isinstance(reasoning, ReasoningContent)
        assert reasoning.provider_metadata == {"anthropic": {"signature": "sig"}}


# ============================================================
# Live API
# ============================================================

@pytest.mark.integration
class TestOpenAILive:
    """Live calls against api.openai.com (RUN_INTEGRATION=1 and OPENAI_API_KEY)."""

    @pytest.mark.asyncio
    async def test_live_stream(self):
        from llmbridge import get_adapter

        assert RUN_INTEGRATION
        async with get_adapter("openai") as adapter:
            parts = await collect(adapter.stream(
                Call(model="gpt-4o-mini", messages=[user_message("Say hi")], max_output_tokens=10)
            ))
        assert parts[-1].type == T.FINISH
        assert_well_formed(parts)
