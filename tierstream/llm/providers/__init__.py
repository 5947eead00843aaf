"""Streaming provider adapters, one per vendor kind."""

from __future__ import annotations

from tierstream.config import ProviderConfig
from tierstream.llm.providers.anthropic_sdk import AnthropicSDKProvider
from tierstream.llm.providers.base import Provider
from tierstream.llm.providers.gemini import GeminiProvider
from tierstream.llm.providers.openai_compat import OpenAICompatProvider
from tierstream.llm.providers.openai_sdk import OpenAISDKProvider


def build_default_adapters(config: ProviderConfig) -> dict[str, Provider]:
    """Return one adapter per vendor kind, configured from *config*."""
    timeout = config.timeout_seconds
    return {
        "aggregator": OpenAICompatProvider(
            base_url=config.aggregator.base_url, timeout=timeout
        ),
        "anthropic": AnthropicSDKProvider(
            max_output=config.max_output_tokens, timeout=timeout
        ),
        "openai": OpenAISDKProvider(timeout=timeout),
        "gemini": GeminiProvider(timeout=timeout),
    }


__all__ = [
    "AnthropicSDKProvider",
    "GeminiProvider",
    "OpenAICompatProvider",
    "OpenAISDKProvider",
    "Provider",
    "build_default_adapters",
]
