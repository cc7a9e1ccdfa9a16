"""
llmbridge - Core Tests

Tests for:
- Provider type registry and wire codec
- Usage and metadata accumulation
- Error taxonomy and the response error factory
- Environment configuration and adapter lookup
"""

import uuid

import httpx
import pytest
from pydantic import BaseModel

from llmbridge.adapters import ADAPTERS, get_adapter
from llmbridge.adapters.anthropic_adapter import AnthropicAdapter
from llmbridge.adapters.base import AdapterConfig
from llmbridge.adapters.openai_responses import OpenAIResponsesAdapter
from llmbridge.config import get_max_retries, get_timeout
from llmbridge.core.errors import (
    ConnectionFailedError,
    ErrorType,
    InvalidArgumentError,
    NoObjectGeneratedError,
    ProviderError,
    RegistryError,
    StreamProtocolError,
    create_error_from_response,
    handle_transport_error,
)
from llmbridge.core.models import CallWarning, FunctionTool, Usage, WarningType
from llmbridge.core.registry import (
    decode_provider_data,
    decode_provider_map,
    encode_provider_data,
    encode_provider_map,
    is_registered,
    provider_type,
    register_provider_type,
)
from llmbridge.usage.accumulator import ProviderMetadataAccumulator, UsageAccumulator


def unique_tag(prefix: str = "test") -> str:
    return f"{prefix}.{uuid.uuid4().hex[:8]}"


# ============================================================
# Registry
# ============================================================

class TestProviderRegistry:
    """Tests for the provider type registry."""

    def test_register_and_round_trip(self):
        tag = unique_tag()

        class Options(BaseModel):
            effort: str
            budget: int = 0

        register_provider_type(tag, Options)
        wire = encode_provider_data(Options(effort="high", budget=10))
        assert wire == {"type": tag, "data": {"effort": "high", "budget": 10}}
        decoded = decode_provider_data(wire)
        assert isinstance(decoded, Options)
        assert decoded.effort == "high"

    def test_duplicate_registration_rejected(self):
        """Registration is write-once per tag."""
        tag = unique_tag()

        class A(BaseModel):
            x: int = 0

        class B(BaseModel):
            y: int = 0

        register_provider_type(tag, A)
        with pytest.raises(RegistryError, match="already registered"):
            register_provider_type(tag, B)

    def test_empty_tag_rejected(self):
        class A(BaseModel):
            x: int = 0

        with pytest.raises(RegistryError):
            register_provider_type("", A)

    def test_decorator(self):
        tag = unique_tag()

        @provider_type(tag)
        class Meta(BaseModel):
            signature: str = ""

        assert is_registered(tag)
        assert encode_provider_data(Meta(signature="s"))["type"] == tag

    def test_unknown_type(self):
        with pytest.raises(RegistryError, match="unknown provider data type"):
            decode_provider_data({"type": unique_tag(), "data": {}})

    def test_invalid_data(self):
        tag = unique_tag()

        class Strict(BaseModel):
            count: int

        register_provider_type(tag, Strict)
        with pytest.raises(RegistryError, match="invalid data"):
            decode_provider_data({"type": tag, "data": {"count": "many"}})

    def test_unregistered_model_cannot_encode(self):
        class Loose(BaseModel):
            x: int = 0

        with pytest.raises(RegistryError):
            encode_provider_data(Loose())

    def test_provider_map_passes_plain_dicts(self):
        tag = unique_tag()

        class Opt(BaseModel):
            level: int = 1

        register_provider_type(tag, Opt)
        wire = encode_provider_map({"vendor": Opt(level=2), "other": {"raw": True}})
        assert wire["other"] == {"raw": True}
        decoded = decode_provider_map(wire)
        assert decoded["vendor"] == Opt(level=2)
        assert decoded["other"] == {"raw": True}

    def test_adapter_types_registered_on_import(self):
        assert is_registered("anthropic.options")


# ============================================================
# Usage accumulation
# ============================================================

class TestUsageAccumulator:
    """Tests for usage snapshots."""

    def test_later_snapshot_replaces(self):
        """Cumulative reports are never summed."""
        acc = UsageAccumulator()
        acc.update(Usage(input_tokens=10, output_tokens=2, total_tokens=12))
        acc.update(Usage(input_tokens=10, output_tokens=8, total_tokens=18))
        assert acc.result().output_tokens == 8
        assert acc.result().total_tokens == 18

    def test_empty_reports_ignored(self):
        acc = UsageAccumulator()
        acc.update(Usage(input_tokens=3))
        acc.update(Usage())
        acc.update(None)
        assert acc.result().input_tokens == 3

    def test_no_usage(self):
        acc = UsageAccumulator()
        assert not acc.has_usage
        assert acc.result().is_empty()


class TestProviderMetadataAccumulator:
    """Tests for metadata accumulation."""

    def test_empty_values_do_not_erase(self):
        acc = ProviderMetadataAccumulator()
        acc.set("openai", "accepted_prediction_tokens", 4)
        acc.set("openai", "accepted_prediction_tokens", 0)
        acc.set("openai", "logprobs", None)
        assert acc.result() == {"openai": {"accepted_prediction_tokens": 4}}

    def test_merge(self):
        acc = ProviderMetadataAccumulator()
        acc.merge({"a": {"x": 1}, "b": {"y": ""}})
        acc.merge({"a": {"x": 2, "z": [1]}})
        assert acc.result() == {"a": {"x": 2, "z": [1]}}


# ============================================================
# Errors
# ============================================================

class TestErrorTaxonomy:
    """Tests for error classification."""

    @pytest.mark.parametrize("status,retryable", [
        (400, False), (401, False), (404, False),
        (408, True), (409, True), (429, True), (500, True), (503, True),
    ])
    def test_retryable_status(self, status, retryable):
        assert ProviderError("openai", status).retryable is retryable

    def test_provider_error_details(self):
        err = ProviderError("openai", 429, "slow down", retry_after=1.5)
        assert err.status_code == 429
        assert err.error.type == ErrorType.INFRA
        body = err.error.to_dict()["error"]
        assert body["code"] == "provider_429"
        assert body["retry_after"] == 1.5

    def test_semantic_errors_not_retryable(self):
        assert not InvalidArgumentError("temperature", "too hot").retryable
        assert not StreamProtocolError("openai", "bad chunk").retryable

    def test_invalid_argument_message(self):
        err = InvalidArgumentError("thinking", "budget required")
        assert str(err) == "invalid argument for thinking: budget required"
        assert err.error.param == "thinking"

    def test_stream_protocol_code(self):
        assert StreamProtocolError("x", "y").error.code == "stream_protocol_violation"

    def test_no_object_generated_carries_diagnostics(self):
        cause = ValueError("bad")
        err = NoObjectGeneratedError(raw_text="{", cause=cause, usage=Usage(input_tokens=1))
        assert err.raw_text == "{"
        assert err.cause is cause
        assert err.__cause__ is cause
        assert err.usage.input_tokens == 1
        assert str(err) == "no object generated: bad"


class TestErrorFactory:
    """Tests for vendor response and transport error conversion."""

    def _response(self, status, body, headers=None):
        request = httpx.Request("POST", "https://api.example.com/v1/chat")
        return httpx.Response(status, content=body.encode(), headers=headers, request=request)

    def test_message_from_error_envelope(self):
        response = self._response(400, '{"error": {"message": "bad model", "type": "invalid"}}')
        err = create_error_from_response("openai", response, request_body={"model": "x"})
        assert "bad model" in str(err)
        assert err.status_code == 400
        assert err.error.url == "https://api.example.com/v1/chat"
        assert err.error.request_body == {"model": "x"}
        assert not err.retryable

    def test_retry_after_ms_wins(self):
        response = self._response(429, "{}", {"retry-after-ms": "1500", "retry-after": "9"})
        assert create_error_from_response("openai", response).error.retry_after == 1.5

    def test_retry_after_seconds(self):
        response = self._response(503, "busy", {"retry-after": "3"})
        err = create_error_from_response("anthropic", response)
        assert err.error.retry_after == 3.0
        assert err.retryable

    def test_plain_text_body(self):
        err = create_error_from_response("google", self._response(500, "upstream exploded"))
        assert "upstream exploded" in str(err)

    def test_timeout_becomes_connection_error(self):
        err = handle_transport_error("openai", httpx.ReadTimeout("slow"))
        assert isinstance(err, ConnectionFailedError)
        assert err.retryable

    def test_transport_error(self):
        err = handle_transport_error("openai", httpx.ConnectError("refused"))
        assert isinstance(err, ConnectionFailedError)
        assert "refused" in str(err)

    def test_llmbridge_errors_pass_through(self):
        original = ProviderError("openai", 500)
        assert handle_transport_error("openai", original) is original


class TestCallWarning:

    def test_str(self):
        assert str(CallWarning.unsupported_setting("top_k")) == "unsupported setting: top_k"
        tool = FunctionTool(name="lookup")
        warning = CallWarning.unsupported_tool(tool, "not supported")
        assert warning.type == WarningType.UNSUPPORTED_TOOL
        assert str(warning) == "unsupported tool: lookup (not supported)"
        assert str(CallWarning.other("heads up")) == "heads up"


# ============================================================
# Configuration
# ============================================================

class TestConfig:
    """Tests for environment configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LLMBRIDGE_TIMEOUT", raising=False)
        monkeypatch.delenv("LLMBRIDGE_MAX_RETRIES", raising=False)
        assert get_timeout() == 60.0
        assert get_max_retries() == 2

    def test_invalid_timeout(self, monkeypatch):
        monkeypatch.setenv("LLMBRIDGE_TIMEOUT", "soon")
        with pytest.raises(ValueError, match="LLMBRIDGE_TIMEOUT"):
            get_timeout()

    def test_negative_retries(self, monkeypatch):
        monkeypatch.setenv("LLMBRIDGE_MAX_RETRIES", "-1")
        with pytest.raises(ValueError):
            get_max_retries()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        monkeypatch.setenv("ANTHROPIC_BASE_URL", "https://proxy.example.com/v1")
        monkeypatch.setenv("LLMBRIDGE_MAX_RETRIES", "5")
        config = AdapterConfig.from_env("anthropic")
        assert config.api_key == "sk-ant"
        assert config.base_url == "https://proxy.example.com/v1"
        assert config.max_retries == 5

    def test_from_env_missing_key(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(InvalidArgumentError, match="no API key"):
            AdapterConfig.from_env("google")

    def test_compat_key_optional(self, monkeypatch):
        monkeypatch.delenv("OPENAI_COMPAT_API_KEY", raising=False)
        assert AdapterConfig.from_env("openai-compat").api_key == ""


class TestGetAdapter:
    """Tests for adapter lookup."""

    def test_all_providers_listed(self):
        assert set(ADAPTERS) == {
            "openai", "openai-responses", "anthropic", "google",
            "openrouter", "ollama-cloud", "openai-compat",
        }

    def test_explicit_config(self):
        adapter = get_adapter("anthropic", AdapterConfig(api_key="k"))
        assert isinstance(adapter, AnthropicAdapter)

    def test_responses_uses_openai_key(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        adapter = get_adapter("openai-responses")
        assert isinstance(adapter, OpenAIResponsesAdapter)
        assert adapter.config.api_key == "sk-openai"

    def test_unknown_provider(self):
        with pytest.raises(InvalidArgumentError, match="provider"):
            get_adapter("no-such-vendor", AdapterConfig(api_key="k"))
