"""
Comrade Provider Adapters

One adapter per supported wire protocol (OpenAI, Anthropic, Ollama). The
ChatBridge picks the adapter from AgentConfig.provider.

Usage:
    from comrade.providers import AgentConfig, create_adapter

    adapter = create_adapter(AgentConfig(provider="anthropic"))
    request = adapter.build_request(messages, tools, ChatOptions(), stream=True, api_key=key)
"""

from comrade.providers.base import (
    AgentConfig,
    ChatOptions,
    ProviderAdapter,
    ProviderKind,
    ProviderRequest,
    StreamState,
    normalize_finish_reason,
)
from comrade.providers.claude import AnthropicAdapter
from comrade.providers.ollama import OllamaAdapter
from comrade.providers.openai import OpenAIAdapter

__all__ = [
    "AgentConfig",
    "AnthropicAdapter",
    "ChatOptions",
    "OllamaAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "ProviderKind",
    "ProviderRequest",
    "StreamState",
    "create_adapter",
    "normalize_finish_reason",
]

_ADAPTERS: dict[ProviderKind, type[ProviderAdapter]] = {
    ProviderKind.OPENAI: OpenAIAdapter,
    ProviderKind.ANTHROPIC: AnthropicAdapter,
    ProviderKind.OLLAMA: OllamaAdapter,
}


def create_adapter(config: AgentConfig) -> ProviderAdapter:
    """Factory function to create the adapter for an agent's provider."""
    try:
        adapter_cls = _ADAPTERS[ProviderKind(config.provider)]
    except (KeyError, ValueError):
        supported = ", ".join(k.value for k in ProviderKind)
        raise ValueError(f"Unknown provider: {config.provider}. Supported: {supported}") from None
    return adapter_cls(config)
