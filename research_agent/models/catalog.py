"""
Static model catalog.

Backends rarely expose a reliable "list models" endpoint with context
lengths, so each provider ships a built-in list here. Application config
can extend it (`providers.<id>.models` in config.yaml). Also holds the
model-name -> provider detector and token-limit lookup.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from research_agent.models.base import ModelInfo, ProviderId

_CHAT = ("chat", "stream")


def _m(
    model_id: str,
    provider: ProviderId,
    display_name: str,
    context_length: int,
    capabilities: Tuple[str, ...] = _CHAT,
) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        provider=provider,
        display_name=display_name,
        context_length=context_length,
        capabilities=capabilities,
    )


P = ProviderId

MODEL_CATALOG: Dict[ProviderId, List[ModelInfo]] = {
    P.OPENAI: [
        _m("gpt-4o", P.OPENAI, "GPT-4o", 128000, _CHAT + ("vision",)),
        _m("gpt-4o-mini", P.OPENAI, "GPT-4o mini", 128000),
        _m("gpt-4-turbo", P.OPENAI, "GPT-4 Turbo", 128000),
        _m("gpt-3.5-turbo", P.OPENAI, "GPT-3.5 Turbo", 16385),
        _m("text-embedding-3-small", P.OPENAI, "Embedding 3 small", 8191, ("embed",)),
    ],
    P.ANTHROPIC: [
        _m("claude-opus-4-20250514", P.ANTHROPIC, "Claude Opus 4", 200000),
        _m("claude-sonnet-4-20250514", P.ANTHROPIC, "Claude Sonnet 4", 200000),
        _m("claude-3-7-sonnet-latest", P.ANTHROPIC, "Claude 3.7 Sonnet", 200000),
        _m("claude-3-5-sonnet-latest", P.ANTHROPIC, "Claude 3.5 Sonnet", 200000),
        _m("claude-3-5-haiku-20241022", P.ANTHROPIC, "Claude 3.5 Haiku", 200000),
        _m("claude-3-5-haiku-latest", P.ANTHROPIC, "Claude 3.5 Haiku (latest)", 200000),
    ],
    P.GEMINI: [
        _m("gemini-2.5-pro", P.GEMINI, "Gemini 2.5 Pro", 1048576),
        _m("gemini-2.5-flash", P.GEMINI, "Gemini 2.5 Flash", 1048576),
        _m("gemini-2.0-flash", P.GEMINI, "Gemini 2.0 Flash", 1048576),
        _m("gemini-1.5-pro", P.GEMINI, "Gemini 1.5 Pro", 2097152),
        _m("gemini-1.5-flash", P.GEMINI, "Gemini 1.5 Flash", 1048576),
        _m("text-embedding-004", P.GEMINI, "Text Embedding 004", 2048, ("embed",)),
    ],
    P.DEEPSEEK: [
        _m("deepseek-chat", P.DEEPSEEK, "DeepSeek Chat", 65536),
        _m("deepseek-coder", P.DEEPSEEK, "DeepSeek Coder", 65536),
        _m("deepseek-reasoner", P.DEEPSEEK, "DeepSeek Reasoner", 65536, _CHAT + ("reasoning",)),
    ],
    P.QWEN: [
        _m("qwen-turbo", P.QWEN, "Qwen Turbo", 1008192),
        _m("qwen-plus", P.QWEN, "Qwen Plus", 131072),
        _m("qwen-max", P.QWEN, "Qwen Max", 32768),
        _m("qwq-32b-preview", P.QWEN, "QwQ 32B Preview", 32768, _CHAT + ("reasoning",)),
        _m("qwen2.5-72b-instruct", P.QWEN, "Qwen2.5 72B Instruct", 131072),
    ],
    P.GROQ: [
        _m("llama-3.1-8b-instant", P.GROQ, "Llama 3.1 8B Instant", 131072),
        _m("llama-3.1-70b-versatile", P.GROQ, "Llama 3.1 70B Versatile", 131072),
        _m("mixtral-8x7b-32768", P.GROQ, "Mixtral 8x7B", 32768),
    ],
    P.MISTRAL: [
        _m("mistral-small-latest", P.MISTRAL, "Mistral Small", 32768),
        _m("mistral-medium-latest", P.MISTRAL, "Mistral Medium", 32768),
        _m("mistral-large-latest", P.MISTRAL, "Mistral Large", 131072),
    ],
    P.PERPLEXITY: [
        _m("sonar", P.PERPLEXITY, "Sonar", 127072),
        _m("sonar-pro", P.PERPLEXITY, "Sonar Pro", 200000),
        _m("llama-3.1-sonar-small-128k-online", P.PERPLEXITY, "Sonar Small Online", 127072),
    ],
    P.TOGETHER: [
        _m("meta-llama/Llama-3.3-70B-Instruct-Turbo", P.TOGETHER, "Llama 3.3 70B Turbo", 131072),
    ],
    P.FIREWORKS: [
        _m(
            "accounts/fireworks/models/llama-v3p1-70b-instruct",
            P.FIREWORKS,
            "Llama 3.1 70B Instruct",
            131072,
        ),
    ],
    P.OLLAMA: [
        _m("llama3.1", P.OLLAMA, "Llama 3.1 (local)", 8192),
        _m("qwen2.5", P.OLLAMA, "Qwen 2.5 (local)", 32768),
    ],
}

_EXACT: Dict[str, ProviderId] = {
    info.id: provider for provider, infos in MODEL_CATALOG.items() for info in infos
}

_PATTERNS: List[Tuple[re.Pattern, ProviderId]] = [
    (re.compile(r"^gpt-", re.I), P.OPENAI),
    (re.compile(r"^claude-", re.I), P.ANTHROPIC),
    (re.compile(r"^deepseek-", re.I), P.DEEPSEEK),
    (re.compile(r"^(qwen|qwq-|qvq-)", re.I), P.QWEN),
    (re.compile(r"^gemini-", re.I), P.GEMINI),
    (re.compile(r"^(llama-|mixtral-)", re.I), P.GROQ),
    (re.compile(r"^mistral-", re.I), P.MISTRAL),
    (re.compile(r"^sonar", re.I), P.PERPLEXITY),
]


def catalog_for(
    provider: ProviderId, extra: Optional[Mapping[str, Any]] = None
) -> List[ModelInfo]:
    """
    Built-in models for `provider`, extended by config entries.

    `extra` is the `models` mapping of a provider section in config.yaml:
    model key -> {name, max_context_tokens, capabilities}. Entries whose id
    already exists replace the built-in entry.
    """
    models = {info.id: info for info in MODEL_CATALOG.get(provider, [])}
    for model_key, mcfg in (extra or {}).items():
        mcfg = mcfg or {}
        model_id = mcfg.get("name", model_key)
        models[model_id] = ModelInfo(
            id=model_id,
            provider=provider,
            display_name=mcfg.get("display_name", model_key),
            context_length=int(mcfg.get("max_context_tokens", 8192)),
            capabilities=tuple(mcfg.get("capabilities", _CHAT)),
        )
    return list(models.values())


def detect_provider(model_name: str) -> Optional[ProviderId]:
    """Guess the provider serving `model_name`: exact match first, then prefix patterns."""
    exact = _EXACT.get(model_name)
    if exact is not None:
        return exact
    for pattern, provider in _PATTERNS:
        if pattern.search(model_name):
            return provider
    return None


def token_limit(model_name: str) -> int:
    provider = detect_provider(model_name)
    if provider is None:
        return 4096
    for info in MODEL_CATALOG[provider]:
        if info.id == model_name:
            return info.context_length
    return max((info.context_length for info in MODEL_CATALOG[provider]), default=4096)
