"""
llmbridge - Stream Termination Tests

Tests for:
- The adapter stream guard delivering the whole terminal batch
- Every adapter ending a text-only stream with exactly one finish, even
  when the vendor never closes the text span itself
"""

import pytest

from llmbridge.adapters.anthropic_adapter import AnthropicAdapter
from llmbridge.adapters.google_adapter import GoogleAdapter
from llmbridge.adapters.ollama_cloud import OllamaCloudAdapter
from llmbridge.adapters.openai_chat import OpenAIChatAdapter
from llmbridge.adapters.openai_compat import OpenAICompatAdapter
from llmbridge.adapters.openai_responses import OpenAIResponsesAdapter
from llmbridge.adapters.openrouter import OpenRouterAdapter
from llmbridge.core.models import Call, FinishReason, user_message
from llmbridge.streaming.parts import StreamPartType as T
from llmbridge.streaming.state import StreamStateMachine

from conftest import MockVendor, assert_well_formed, collect, content_types, make_adapter


# ============================================================
# Guard
# ============================================================

class TestStreamGuard:
    """Tests for BaseAdapter._guarded."""

    @pytest.mark.asyncio
    async def test_finish_delivered_after_drained_span(self):
        adapter = make_adapter(OpenAIChatAdapter, MockVendor.json({}))
        machine = StreamStateMachine("openai")

        async def inner():
            for part in machine.text_delta("0", "Hi"):
                yield part
            for part in machine.finish(FinishReason.STOP):
                yield part

        parts = await collect(adapter._guarded(inner(), machine))
        assert [p.type for p in parts] == [T.TEXT_START, T.TEXT_DELTA, T.TEXT_END, T.FINISH]

    @pytest.mark.asyncio
    async def test_nothing_after_terminal_part(self):
        adapter = make_adapter(OpenAIChatAdapter, MockVendor.json({}))
        machine = StreamStateMachine("openai")
        consumed = []

        async def inner():
            for part in machine.finish(FinishReason.STOP):
                yield part
            consumed.append("after finish")
            for part in machine.text_delta("0", "late"):
                yield part

        parts = await collect(adapter._guarded(inner(), machine))
        assert [p.type for p in parts] == [T.FINISH]
        assert consumed == []


# ============================================================
# Open text span at completion, per vendor
# ============================================================

def chat_sse():
    return MockVendor.sse(
        {"id": "c", "choices": [{"index": 0, "delta": {"content": "Hi"}, "finish_reason": None}]},
        {"id": "c", "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
    )


def responses_sse():
    return MockVendor.sse(
        {"type": "response.output_text.delta", "item_id": "msg_1", "delta": "Hi"},
        {"type": "response.completed", "response": {"usage": {"input_tokens": 3, "output_tokens": 1}}},
    )


def anthropic_sse():
    # No content_block_stop before message_stop
    return MockVendor.sse(
        {"type": "message_start", "message": {"id": "msg_1", "usage": {"input_tokens": 3, "output_tokens": 1}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 2}},
        {"type": "message_stop"},
        done=False,
    )


def google_sse():
    return MockVendor.sse(
        {"candidates": [{"content": {"role": "model", "parts": [{"text": "Hi"}]}, "finishReason": "STOP"}]},
        done=False,
    )


def ollama_ndjson():
    return MockVendor.ndjson(
        {"model": "m", "message": {"role": "assistant", "content": "Hi"}, "done": False},
        {"model": "m", "message": {"role": "assistant", "content": ""}, "done": True,
         "done_reason": "stop", "prompt_eval_count": 3, "eval_count": 1},
    )


VENDORS = [
    pytest.param(OpenAIChatAdapter, chat_sse, {}, id="openai"),
    pytest.param(OpenAICompatAdapter, chat_sse, {"base_url": "http://localhost:8000/v1"}, id="openai-compat"),
    pytest.param(OpenRouterAdapter, chat_sse, {}, id="openrouter"),
    pytest.param(OpenAIResponsesAdapter, responses_sse, {}, id="openai-responses"),
    pytest.param(AnthropicAdapter, anthropic_sse, {}, id="anthropic"),
    pytest.param(GoogleAdapter, google_sse, {}, id="google"),
    pytest.param(OllamaCloudAdapter, ollama_ndjson, {}, id="ollama-cloud"),
]


class TestOpenTextAtCompletion:
    """A text span still open when the vendor completes is drained before finish."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("adapter_class,make_vendor,config", VENDORS)
    async def test_ends_with_single_finish(self, adapter_class, make_vendor, config):
        adapter = make_adapter(adapter_class, make_vendor(), **config)
        parts = await collect(adapter.stream(Call(model="m", messages=[user_message("Hello")])))

        assert content_types(parts) == [T.TEXT_START, T.TEXT_DELTA, T.TEXT_END, T.FINISH]
        assert parts[-1].finish_reason == FinishReason.STOP
        assert_well_formed(parts)
