"""
AI Gateway Adapters Package.

This module provides adapters for the upstream LLM providers.
Each adapter handles the translation between the canonical OpenAI-compatible
format and the provider's native API format, streaming dialect included.

Available adapters:
- OpenAIAdapter: Official OpenAI API (near passthrough)
- AnthropicAdapter: Anthropic Messages API
- GeminiAdapter: Google Generative Language API

Usage:
    from aiproxy.gateway.adapters import create_adapters, get_adapter

    adapters = create_adapters(settings.providers, client)
    adapter = get_adapter(adapters, "claude-3-5-sonnet-latest")
    response = await adapter.complete(request)
"""

from typing import Dict, Mapping, Optional, Type

import httpx

from aiproxy.gateway.adapters.base import AdapterBase, UpstreamRequest
from aiproxy.gateway.adapters.openai import OpenAIAdapter
from aiproxy.gateway.adapters.anthropic import AnthropicAdapter
from aiproxy.gateway.adapters.gemini import GeminiAdapter
from aiproxy.gateway.errors import ValidationError
from aiproxy.schemas.chat import Provider


# Registry of available adapters
_ADAPTER_REGISTRY: Dict[Provider, Type[AdapterBase]] = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.ANTHROPIC: AnthropicAdapter,
    Provider.GEMINI: GeminiAdapter,
}


def resolve_provider(model: str) -> Provider:
    """
    Pick the provider family for a model name.

    ``claude`` models go to Anthropic, ``gemini`` models to Gemini and
    everything else to OpenAI.
    """
    name = model.lower()
    if "claude" in name:
        return Provider.ANTHROPIC
    if "gemini" in name:
        return Provider.GEMINI
    return Provider.OPENAI


def create_adapters(
    providers,
    client: Optional[httpx.AsyncClient] = None
) -> Dict[Provider, AdapterBase]:
    """
    Build one adapter per provider with a configured API key.

    Args:
        providers: ProviderSettings section
        client: Shared HTTP client for all adapters

    Returns:
        Provider -> adapter, in registry order
    """
    configured = {
        Provider.OPENAI: (providers.openai_api_key, providers.openai_base_url, {}),
        Provider.ANTHROPIC: (
            providers.anthropic_api_key,
            providers.anthropic_base_url,
            {
                "anthropic_version": providers.anthropic_version,
                "default_max_tokens": providers.anthropic_default_max_tokens,
            },
        ),
        Provider.GEMINI: (providers.gemini_api_key, providers.gemini_base_url, {}),
    }

    adapters: Dict[Provider, AdapterBase] = {}
    for provider, adapter_class in _ADAPTER_REGISTRY.items():
        api_key, base_url, extra = configured[provider]
        if not api_key:
            continue
        adapters[provider] = adapter_class(
            api_key,
            base_url=base_url,
            client=client,
            connect_timeout=providers.upstream_connect_timeout,
            **extra
        )
    return adapters


def get_adapter(adapters: Mapping[Provider, AdapterBase], model: str) -> AdapterBase:
    """
    Get the adapter serving a model.

    Raises:
        ValidationError: If the model's provider is not configured
    """
    provider = resolve_provider(model)
    adapter = adapters.get(provider)
    if adapter is None:
        raise ValidationError(
            f"Provider '{provider.value}' is not configured for model '{model}'",
            details={"provider": provider.value},
        )
    return adapter


def register_adapter(provider: Provider, adapter_class: Type[AdapterBase]) -> None:
    """Register (or replace) the adapter class for a provider."""
    _ADAPTER_REGISTRY[provider] = adapter_class


def list_adapters() -> Dict[Provider, Type[AdapterBase]]:
    """Get all registered adapters."""
    return _ADAPTER_REGISTRY.copy()


__all__ = [
    # Base classes
    "AdapterBase",
    "UpstreamRequest",
    # Adapters
    "OpenAIAdapter",
    "AnthropicAdapter",
    "GeminiAdapter",
    # Factory functions
    "resolve_provider",
    "create_adapters",
    "get_adapter",
    "register_adapter",
    "list_adapters",
]
