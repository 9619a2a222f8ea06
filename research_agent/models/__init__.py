"""
Model provider implementations.

`base.py` holds the uniform request/response types and `BaseProvider`.
Concrete adapters cover OpenAI and the OpenAI-compatible backends,
Perplexity, Anthropic and Gemini. `catalog.py` lists known models,
`config_store.py` resolves credentials and defaults, and `factory.py`
maps each provider id to its adapter. Adding a new provider involves
creating a module that subclasses `BaseProvider` and listing it in
`factory.ADAPTERS`.
"""

__all__ = [
    "base",
    "catalog",
    "config_store",
    "factory",
    "openai_provider",
    "perplexity_provider",
    "anthropic_provider",
    "gemini_provider",
]
