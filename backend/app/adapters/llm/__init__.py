"""
LLM Adapters - Unified interface for multiple chat-completion providers
"""

from typing import Optional

from .base import (
    BaseLLMAdapter,
    LLMConfig,
    LLMMessage,
    LLMResponse,
    LLMUsage,
    LLMProviderType,
    LLMAdapterError,
    LLMRateLimitError,
    LLMAuthenticationError,
    LLMTimeoutError,
    LLMInvalidRequestError,
)
from .openai_compatible import (
    OpenAICompatibleAdapter,
    OpenAIAdapter,
    GrokAdapter,
    DeepSeekAdapter,
)
from .gemini_adapter import GeminiAdapter

ADAPTERS = {
    "openai": OpenAIAdapter,
    "gemini": GeminiAdapter,
    "grok": GrokAdapter,
    "deepseek": DeepSeekAdapter,
}


def get_adapter(
    provider: str,
    api_key: str,
    config: Optional[LLMConfig] = None
) -> BaseLLMAdapter:
    """
    Factory function to get the appropriate LLM adapter.

    Args:
        provider: One of "openai", "gemini", "grok", "deepseek"
        api_key: Decrypted API key for the provider
        config: Optional LLM configuration

    Returns:
        Configured LLM adapter instance

    Raises:
        ValueError: If provider is not supported
    """
    if provider not in ADAPTERS:
        raise ValueError(f"Unsupported provider: {provider}. Must be one of {list(ADAPTERS.keys())}")

    return ADAPTERS[provider](api_key=api_key, config=config)


__all__ = [
    # Factory
    "get_adapter",
    "ADAPTERS",
    # Base classes
    "BaseLLMAdapter",
    "LLMConfig",
    "LLMMessage",
    "LLMResponse",
    "LLMUsage",
    "LLMProviderType",
    # Exceptions
    "LLMAdapterError",
    "LLMRateLimitError",
    "LLMAuthenticationError",
    "LLMTimeoutError",
    "LLMInvalidRequestError",
    # Adapters
    "OpenAICompatibleAdapter",
    "OpenAIAdapter",
    "GrokAdapter",
    "DeepSeekAdapter",
    "GeminiAdapter",
]
