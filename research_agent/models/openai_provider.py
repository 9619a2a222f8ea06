"""
OpenAI provider implementation.

Wraps the OpenAI Chat Completions API using the official SDK's async
client. The same adapter serves every OpenAI-compatible backend
(DeepSeek, Qwen, Groq, Mistral, Together, Fireworks, Ollama); only the
default base URL differs. Token counting is estimated locally because the
Chat Completions API has no counting endpoint.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from research_agent.errors import ProviderError, ProviderErrorKind
from research_agent.models.base import (
    BaseProvider,
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ProviderConfig,
    ProviderId,
    StreamChunk,
    Usage,
    parse_retry_after,
)
from research_agent.models.config_store import ENV_VAR_MAPPING

DEFAULT_BASE_URLS: Dict[ProviderId, str] = {
    ProviderId.OPENAI: "https://api.openai.com/v1",
    ProviderId.DEEPSEEK: "https://api.deepseek.com",
    ProviderId.QWEN: "https://dashscope.aliyuncs.com/compatible-mode/v1",
    ProviderId.GROQ: "https://api.groq.com/openai/v1",
    ProviderId.MISTRAL: "https://api.mistral.ai/v1",
    ProviderId.TOGETHER: "https://api.together.xyz/v1",
    ProviderId.FIREWORKS: "https://api.fireworks.ai/inference/v1",
    ProviderId.OLLAMA: "http://localhost:11434/v1",
    ProviderId.PERPLEXITY: "https://api.perplexity.ai",
}

# Local servers accept any key.
KEYLESS_PROVIDERS = frozenset({ProviderId.OLLAMA})

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


def map_openai_error(exc: Exception, provider: str) -> ProviderError:
    """Translate an OpenAI SDK exception into the adapter error taxonomy."""
    if isinstance(exc, openai.APITimeoutError):
        return ProviderError(f"Request timed out: {exc}", provider, ProviderErrorKind.TIMEOUT)
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderError(
            f"Authentication failed: {exc}",
            provider,
            ProviderErrorKind.AUTH,
            status_code=exc.status_code,
        )
    if isinstance(exc, openai.RateLimitError):
        retry_after = exc.response.headers.get("retry-after") if exc.response else None
        return ProviderError(
            f"Rate limit or quota exceeded: {exc}",
            provider,
            ProviderErrorKind.QUOTA,
            status_code=exc.status_code,
            retry_after=parse_retry_after(retry_after),
        )
    if isinstance(exc, openai.APIStatusError):
        kind = ProviderErrorKind.QUOTA if exc.status_code == 402 else ProviderErrorKind.UNAVAILABLE
        return ProviderError(
            f"API error {exc.status_code}: {exc}", provider, kind, status_code=exc.status_code
        )
    if isinstance(exc, openai.APIResponseValidationError):
        return ProviderError(f"Malformed response: {exc}", provider, ProviderErrorKind.MALFORMED)
    if isinstance(exc, openai.APIConnectionError):
        return ProviderError(f"Connection failed: {exc}", provider, ProviderErrorKind.UNAVAILABLE)
    if isinstance(exc, (KeyError, IndexError, AttributeError, TypeError, ValueError)):
        return ProviderError(f"Malformed response: {exc}", provider, ProviderErrorKind.MALFORMED)
    return ProviderError(f"{provider} provider error: {exc}", provider, ProviderErrorKind.UNAVAILABLE)


class OpenAIProvider(BaseProvider):
    """
    OpenAIProvider wraps the OpenAI Chat Completions API via the official SDK.
    """

    def __init__(
        self, config: ProviderConfig, models: Optional[Sequence[ModelInfo]] = None
    ) -> None:
        super().__init__(config, models)
        self._client: Optional[AsyncOpenAI] = None

    @property
    def base_url(self) -> str:
        return self.config.base_url or DEFAULT_BASE_URLS.get(
            self.provider_id, DEFAULT_BASE_URLS[ProviderId.OPENAI]
        )

    def supports(self, feature: str) -> bool:
        if feature == "embed":
            return self.provider_id is ProviderId.OPENAI or "embedding_model" in self.config.extras
        return super().supports(feature)

    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if self.provider_id in KEYLESS_PROVIDERS:
                api_key = self.config.api_key or self.name
            else:
                api_key = self.require_api_key(ENV_VAR_MAPPING.get(self.provider_id))
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.base_url,
                max_retries=int(self.config.extras.get("max_retries", 2)),
            )
        return self._client

    def _build_kwargs(self, request: GenerateRequest) -> Dict[str, Any]:
        model = self.resolve_model(request)
        messages: List[Dict[str, Any]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.extend(
            {"role": m.get("role", "user"), "content": m.get("content") or ""}
            for m in request.messages
        )
        kwargs: Dict[str, Any] = {"model": model, "messages": messages}

        sampling = self.resolve_sampling(request)
        if sampling.max_tokens is not None:
            kwargs["max_tokens"] = sampling.max_tokens
        # Reasoning models reject sampling parameters.
        if "reasoner" not in model:
            optional = {
                "temperature": sampling.temperature,
                "top_p": sampling.top_p,
                "frequency_penalty": sampling.frequency_penalty,
                "presence_penalty": sampling.presence_penalty,
                "stop": list(sampling.stop_sequences) if sampling.stop_sequences else None,
            }
            kwargs.update({k: v for k, v in optional.items() if v is not None})
        return kwargs

    async def _generate(self, request: GenerateRequest) -> GenerateResponse:
        client = self.client()
        kwargs = self._build_kwargs(request)
        resp = await client.chat.completions.create(**kwargs)
        if not resp.choices:
            raise self._malformed("no choices in completion")
        choice = resp.choices[0]
        usage = None
        if resp.usage is not None:
            usage = Usage(
                prompt_tokens=resp.usage.prompt_tokens or 0,
                completion_tokens=resp.usage.completion_tokens or 0,
                total_tokens=resp.usage.total_tokens or 0,
            )
        return GenerateResponse(
            text=choice.message.content or "",
            model=resp.model or kwargs["model"],
            provider=self.provider_id,
            usage=usage,
            finish_reason=choice.finish_reason,
            raw=resp,
        )

    async def _stream(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]:
        client = self.client()
        kwargs = self._build_kwargs(request)
        stream = await client.chat.completions.create(stream=True, **kwargs)
        text = ""
        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = (choice.delta.content or "") if choice.delta else ""
            text += delta
            yield StreamChunk(
                delta=delta,
                text=text,
                done=choice.finish_reason is not None,
                model=chunk.model or kwargs["model"],
                provider=self.provider_id,
                finish_reason=choice.finish_reason,
            )

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        client = self.client()
        model = self.config.extras.get("embedding_model", DEFAULT_EMBEDDING_MODEL)
        resp = await client.embeddings.create(model=model, input=texts)
        return [list(item.embedding) for item in resp.data]

    def _map_error(self, exc: Exception) -> ProviderError:
        return map_openai_error(exc, self.name)
