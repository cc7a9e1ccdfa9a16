"""
llmbridge Provider Adapters

One adapter per vendor wire protocol, all exposing the same
generate / stream entry points.
"""

from typing import Dict, Optional, Type

import httpx

from ..core.errors import InvalidArgumentError
from .anthropic_adapter import AnthropicAdapter
from .base import AdapterConfig, BaseAdapter
from .google_adapter import GoogleAdapter
from .ollama_cloud import OllamaCloudAdapter
from .openai_chat import ChatHooks, OpenAIChatAdapter
from .openai_compat import OpenAICompatAdapter, OpenAICompatHooks
from .openai_responses import OpenAIResponsesAdapter
from .openrouter import OpenRouterAdapter, OpenRouterHooks

ADAPTERS: Dict[str, Type[BaseAdapter]] = {
    "openai": OpenAIChatAdapter,
    "openai-responses": OpenAIResponsesAdapter,
    "anthropic": AnthropicAdapter,
    "google": GoogleAdapter,
    "openrouter": OpenRouterAdapter,
    "openai-compat": OpenAICompatAdapter,
    "ollama-cloud": OllamaCloudAdapter,
}


def get_adapter(
    provider: str,
    config: Optional[AdapterConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> BaseAdapter:
    """
    Create an adapter by provider name.

    Without a config, settings are read from the environment.

    Raises:
        InvalidArgumentError: if the provider is unknown or not configured
    """
    adapter_class = ADAPTERS.get(provider)
    if adapter_class is None:
        raise InvalidArgumentError(
            "provider", f"unknown provider {provider!r}; expected one of {', '.join(sorted(ADAPTERS))}"
        )
    if config is None:
        # openai-responses shares the OpenAI credentials
        config = AdapterConfig.from_env("openai" if provider == "openai-responses" else provider)
    return adapter_class(config, client=client)


__all__ = [
    "ADAPTERS",
    "AdapterConfig",
    "AnthropicAdapter",
    "BaseAdapter",
    "ChatHooks",
    "GoogleAdapter",
    "OllamaCloudAdapter",
    "OpenAIChatAdapter",
    "OpenAICompatAdapter",
    "OpenAICompatHooks",
    "OpenAIResponsesAdapter",
    "OpenRouterAdapter",
    "OpenRouterHooks",
    "get_adapter",
]
