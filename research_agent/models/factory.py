"""
Adapter factory.

Maps each `ProviderId` variant to the adapter class that serves it. The
mapping is checked for completeness at import time, so adding a variant
without an adapter fails loudly instead of at the first request.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Type

from research_agent.errors import UnknownProviderError
from research_agent.models.anthropic_provider import AnthropicProvider
from research_agent.models.base import BaseProvider, ProviderConfig, ProviderId
from research_agent.models.catalog import catalog_for
from research_agent.models.config_store import ProviderConfigStore
from research_agent.models.gemini_provider import GeminiProvider
from research_agent.models.openai_provider import OpenAIProvider
from research_agent.models.perplexity_provider import PerplexityProvider

ADAPTERS: Dict[ProviderId, Type[BaseProvider]] = {
    ProviderId.OPENAI: OpenAIProvider,
    ProviderId.ANTHROPIC: AnthropicProvider,
    ProviderId.GEMINI: GeminiProvider,
    ProviderId.DEEPSEEK: OpenAIProvider,
    ProviderId.QWEN: OpenAIProvider,
    ProviderId.GROQ: OpenAIProvider,
    ProviderId.MISTRAL: OpenAIProvider,
    ProviderId.PERPLEXITY: PerplexityProvider,
    ProviderId.TOGETHER: OpenAIProvider,
    ProviderId.FIREWORKS: OpenAIProvider,
    ProviderId.OLLAMA: OpenAIProvider,
}

_missing = set(ProviderId) - set(ADAPTERS)
if _missing:  # pragma: no cover
    raise RuntimeError(f"No adapter registered for: {sorted(p.value for p in _missing)}")


def create_provider(
    config: ProviderConfig, provider_cfg: Optional[Mapping[str, Any]] = None
) -> BaseProvider:
    """
    Build the adapter for `config.provider`.

    Args:
        config: Resolved configuration snapshot from the config store.
        provider_cfg: The provider's section of config.yaml, whose `models`
            mapping extends the built-in catalog.
    """
    adapter_cls = ADAPTERS.get(config.provider)
    if adapter_cls is None:
        raise UnknownProviderError(str(config.provider), [p.value for p in ADAPTERS])
    models = catalog_for(config.provider, (provider_cfg or {}).get("models"))
    return adapter_cls(config, models)


def build_adapter(
    store: ProviderConfigStore,
    provider: "str | ProviderId",
    provider_cfg: Optional[Mapping[str, Any]] = None,
) -> BaseProvider:
    """
    Resolve the configuration for `provider` and build its adapter.

    `base_url` and `timeout_ms` from the provider's config.yaml section are
    passed to the store as explicit overrides.
    """
    section = provider_cfg or {}
    overrides = {
        "base_url": section.get("base_url"),
        "timeout_ms": section.get("timeout_ms"),
    }
    return create_provider(store.get_provider_config(provider, overrides), section)
