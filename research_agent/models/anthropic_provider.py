"""
Anthropic provider implementation.

This provider wraps the Claude Messages API via the official `anthropic`
SDK's async client. It translates OpenAI-style chat messages into the
format expected by Claude (system prompt split out, roles restricted to
user/assistant) and uses the native token-counting endpoint.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import anthropic

from research_agent.errors import ProviderError, ProviderErrorKind
from research_agent.models.base import (
    BaseProvider,
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ProviderConfig,
    StreamChunk,
    Usage,
    parse_retry_after,
    split_system,
)
from research_agent.models.config_store import ENV_VAR_MAPPING

DEFAULT_MAX_TOKENS = 2048


def map_anthropic_error(exc: Exception, provider: str) -> ProviderError:
    """Translate an Anthropic SDK exception into the adapter error taxonomy."""
    if isinstance(exc, anthropic.APITimeoutError):
        return ProviderError(f"Request timed out: {exc}", provider, ProviderErrorKind.TIMEOUT)
    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return ProviderError(
            f"Authentication failed: {exc}",
            provider,
            ProviderErrorKind.AUTH,
            status_code=exc.status_code,
        )
    if isinstance(exc, anthropic.RateLimitError):
        retry_after = exc.response.headers.get("retry-after") if exc.response else None
        return ProviderError(
            f"Rate limit exceeded: {exc}",
            provider,
            ProviderErrorKind.QUOTA,
            status_code=exc.status_code,
            retry_after=parse_retry_after(retry_after),
        )
    if isinstance(exc, anthropic.APIStatusError):
        return ProviderError(
            f"API error {exc.status_code}: {exc}",
            provider,
            ProviderErrorKind.UNAVAILABLE,
            status_code=exc.status_code,
        )
    if isinstance(exc, anthropic.APIResponseValidationError):
        return ProviderError(f"Malformed response: {exc}", provider, ProviderErrorKind.MALFORMED)
    if isinstance(exc, anthropic.APIConnectionError):
        return ProviderError(f"Connection failed: {exc}", provider, ProviderErrorKind.UNAVAILABLE)
    if isinstance(exc, (KeyError, IndexError, AttributeError, TypeError, ValueError)):
        return ProviderError(f"Malformed response: {exc}", provider, ProviderErrorKind.MALFORMED)
    return ProviderError(f"Anthropic provider error: {exc}", provider, ProviderErrorKind.UNAVAILABLE)


class AnthropicProvider(BaseProvider):
    """
    AnthropicProvider wraps the Claude messages API via the official anthropic SDK.
    """

    features = frozenset({"chat", "stream", "count_tokens"})

    def __init__(
        self, config: ProviderConfig, models: Optional[Sequence[ModelInfo]] = None
    ) -> None:
        super().__init__(config, models)
        self._client: Optional[anthropic.AsyncAnthropic] = None

    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            api_key = self.require_api_key(ENV_VAR_MAPPING[self.provider_id])
            kwargs: Dict[str, Any] = {
                "api_key": api_key,
                "max_retries": int(self.config.extras.get("max_retries", 2)),
            }
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            self._client = anthropic.AsyncAnthropic(**kwargs)
        return self._client

    def _build_kwargs(self, request: GenerateRequest) -> Dict[str, Any]:
        system_prompt, converted = split_system(request.messages, request.system)
        sampling = self.resolve_sampling(request)
        kwargs: Dict[str, Any] = {
            "model": self.resolve_model(request),
            "messages": converted,
            "max_tokens": sampling.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        # Claude accepts temperature or top_p, not both.
        if sampling.temperature is not None:
            kwargs["temperature"] = sampling.temperature
        elif sampling.top_p is not None:
            kwargs["top_p"] = sampling.top_p
        if sampling.top_k is not None:
            kwargs["top_k"] = sampling.top_k
        if sampling.stop_sequences:
            kwargs["stop_sequences"] = list(sampling.stop_sequences)
        return kwargs

    @staticmethod
    def _usage(raw_usage: Any) -> Optional[Usage]:
        if raw_usage is None:
            return None
        prompt = getattr(raw_usage, "input_tokens", 0) or 0
        completion = getattr(raw_usage, "output_tokens", 0) or 0
        return Usage(prompt, completion, prompt + completion)

    async def _generate(self, request: GenerateRequest) -> GenerateResponse:
        client = self.client()
        kwargs = self._build_kwargs(request)
        resp = await client.messages.create(**kwargs)
        parts: List[str] = []
        for block in resp.content:
            if getattr(block, "type", "") == "text":
                parts.append(block.text)
        return GenerateResponse(
            text="\n".join(parts),
            model=resp.model or kwargs["model"],
            provider=self.provider_id,
            usage=self._usage(resp.usage),
            finish_reason=resp.stop_reason,
            raw=resp,
        )

    async def _stream(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]:
        client = self.client()
        kwargs = self._build_kwargs(request)
        text = ""
        async with client.messages.stream(**kwargs) as stream:
            async for delta in stream.text_stream:
                text += delta
                yield StreamChunk(
                    delta=delta,
                    text=text,
                    done=False,
                    model=kwargs["model"],
                    provider=self.provider_id,
                )
            final = await stream.get_final_message()
        yield StreamChunk(
            delta="",
            text=text,
            done=True,
            model=final.model or kwargs["model"],
            provider=self.provider_id,
            finish_reason=final.stop_reason,
            usage=self._usage(final.usage),
        )

    async def _count_tokens(self, request: GenerateRequest) -> int:
        client = self.client()
        kwargs = self._build_kwargs(request)
        count_kwargs = {k: kwargs[k] for k in ("model", "messages", "system") if k in kwargs}
        result = await client.messages.count_tokens(**count_kwargs)
        return int(result.input_tokens)

    def _map_error(self, exc: Exception) -> ProviderError:
        return map_anthropic_error(exc, self.name)
