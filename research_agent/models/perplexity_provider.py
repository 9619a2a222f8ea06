"""
Perplexity provider implementation.

Perplexity exposes an OpenAI-compatible Chat Completions endpoint, so this
adapter reuses `OpenAIProvider` with Perplexity's base URL. Perplexity has
no embeddings endpoint, and its online models reject the penalty
parameters when combined, so only one of them is forwarded.
"""

from __future__ import annotations

from typing import Any, Dict

from research_agent.models.base import GenerateRequest
from research_agent.models.openai_provider import OpenAIProvider


class PerplexityProvider(OpenAIProvider):
    """
    PerplexityProvider uses Perplexity's OpenAI-compatible Chat Completions API.
    """

    def supports(self, feature: str) -> bool:
        if feature == "embed":
            return False
        return super().supports(feature)

    def _build_kwargs(self, request: GenerateRequest) -> Dict[str, Any]:
        kwargs = super()._build_kwargs(request)
        if "presence_penalty" in kwargs and "frequency_penalty" in kwargs:
            kwargs.pop("frequency_penalty")
        # Perplexity requires user/assistant alternation after the system messages.
        kwargs["messages"] = _merge_consecutive_roles(kwargs["messages"])
        return kwargs


def _merge_consecutive_roles(messages):
    merged = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"] and msg["role"] != "system":
            merged[-1] = {
                "role": msg["role"],
                "content": merged[-1]["content"] + "\n\n" + msg["content"],
            }
        else:
            merged.append(dict(msg))
    return merged
