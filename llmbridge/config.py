"""
llmbridge - Configuration

Environment-based settings for provider adapters.

Variables:
- <PROVIDER>_API_KEY: OPENAI_API_KEY, ANTHROPIC_API_KEY, GOOGLE_API_KEY,
  OPENROUTER_API_KEY, OLLAMA_API_KEY, OPENAI_COMPAT_API_KEY
- <PROVIDER>_BASE_URL: optional base URL override
- LLMBRIDGE_TIMEOUT: request timeout in seconds (default 60)
- LLMBRIDGE_MAX_RETRIES: transport retries (default 2)
"""

import os
from typing import Dict, Optional

DEFAULT_TIMEOUT = 60.0
DEFAULT_MAX_RETRIES = 2

# Provider name -> environment variable prefix
ENV_PREFIXES: Dict[str, str] = {
    "openai": "OPENAI",
    "openai-responses": "OPENAI",
    "anthropic": "ANTHROPIC",
    "google": "GOOGLE",
    "openrouter": "OPENROUTER",
    "ollama-cloud": "OLLAMA",
    "openai-compat": "OPENAI_COMPAT",
}


def _env_prefix(provider: str) -> str:
    prefix = ENV_PREFIXES.get(provider.lower())
    if prefix is None:
        raise ValueError(f"Unknown provider: {provider}")
    return prefix


def get_api_key(provider: str) -> Optional[str]:
    """API key for a provider, or None when unset."""
    value = os.getenv(f"{_env_prefix(provider)}_API_KEY", "").strip()
    return value or None


def get_base_url(provider: str) -> Optional[str]:
    value = os.getenv(f"{_env_prefix(provider)}_BASE_URL", "").strip()
    return value or None


def get_timeout() -> float:
    raw = os.getenv("LLMBRIDGE_TIMEOUT", "").strip()
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        timeout = float(raw)
    except ValueError:
        raise ValueError("Invalid LLMBRIDGE_TIMEOUT. Use a number of seconds") from None
    if timeout <= 0:
        raise ValueError("Invalid LLMBRIDGE_TIMEOUT. Must be positive")
    return timeout


def get_max_retries() -> int:
    raw = os.getenv("LLMBRIDGE_MAX_RETRIES", "").strip()
    if not raw:
        return DEFAULT_MAX_RETRIES
    try:
        retries = int(raw)
    except ValueError:
        raise ValueError("Invalid LLMBRIDGE_MAX_RETRIES. Use a non-negative integer") from None
    if retries < 0:
        raise ValueError("Invalid LLMBRIDGE_MAX_RETRIES. Use a non-negative integer")
    return retries
