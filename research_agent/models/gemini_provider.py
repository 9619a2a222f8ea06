"""Gemini provider wrapping the async surface of the google-genai SDK."""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from research_agent.errors import ProviderError, ProviderErrorKind
from research_agent.models.base import (
    BaseProvider,
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ProviderConfig,
    StreamChunk,
    Usage,
    split_system,
)
from research_agent.models.config_store import ENV_VAR_MAPPING

DEFAULT_EMBEDDING_MODEL = "text-embedding-004"


def map_gemini_error(exc: Exception, provider: str) -> ProviderError:
    """Translate a google-genai exception into the adapter error taxonomy."""
    if isinstance(exc, genai_errors.APIError):
        code = getattr(exc, "code", None)
        if code in (401, 403):
            kind = ProviderErrorKind.AUTH
        elif code == 429:
            kind = ProviderErrorKind.QUOTA
        elif code in (408, 504):
            kind = ProviderErrorKind.TIMEOUT
        else:
            kind = ProviderErrorKind.UNAVAILABLE
        return ProviderError(f"Gemini API error {code}: {exc}", provider, kind, status_code=code)
    if isinstance(exc, (KeyError, IndexError, AttributeError, TypeError, ValueError)):
        return ProviderError(f"Malformed response: {exc}", provider, ProviderErrorKind.MALFORMED)
    return ProviderError(f"Gemini provider error: {exc}", provider, ProviderErrorKind.UNAVAILABLE)


def _messages_to_contents(messages: List[Dict[str, Any]]) -> List[types.Content]:
    """Gemini uses "model" where OpenAI-style messages use "assistant"."""
    contents: List[types.Content] = []
    for msg in messages:
        role = "model" if msg["role"] == "assistant" else "user"
        contents.append(
            types.Content(role=role, parts=[types.Part.from_text(text=msg["content"])])
        )
    return contents


def _usage(metadata: Any) -> Optional[Usage]:
    if metadata is None:
        return None
    return Usage(
        prompt_tokens=metadata.prompt_token_count or 0,
        completion_tokens=metadata.candidates_token_count or 0,
        total_tokens=metadata.total_token_count or 0,
    )


def _finish_reason(response: Any) -> Optional[str]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates or candidates[0].finish_reason is None:
        return None
    reason = candidates[0].finish_reason
    return getattr(reason, "value", str(reason)).lower()


class GeminiProvider(BaseProvider):
    """LLM provider backed by Google Gemini (google-genai SDK)."""

    features = frozenset({"chat", "stream", "count_tokens", "embed"})

    def __init__(
        self, config: ProviderConfig, models: Optional[Sequence[ModelInfo]] = None
    ) -> None:
        super().__init__(config, models)
        self._client: Optional[genai.Client] = None

    def client(self) -> genai.Client:
        if self._client is None:
            api_key = self.require_api_key(ENV_VAR_MAPPING[self.provider_id])
            kwargs: Dict[str, Any] = {"api_key": api_key}
            if self.config.base_url:
                kwargs["http_options"] = types.HttpOptions(base_url=self.config.base_url)
            self._client = genai.Client(**kwargs)
        return self._client

    def _build(self, request: GenerateRequest):
        system_prompt, converted = split_system(request.messages, request.system)
        sampling = self.resolve_sampling(request)
        config_kwargs: Dict[str, Any] = {}
        if system_prompt:
            config_kwargs["system_instruction"] = system_prompt
        optional = {
            "temperature": sampling.temperature,
            "top_p": sampling.top_p,
            "top_k": sampling.top_k,
            "max_output_tokens": sampling.max_tokens,
            "presence_penalty": sampling.presence_penalty,
            "frequency_penalty": sampling.frequency_penalty,
            "stop_sequences": list(sampling.stop_sequences) if sampling.stop_sequences else None,
        }
        config_kwargs.update({k: v for k, v in optional.items() if v is not None})
        return (
            self.resolve_model(request),
            _messages_to_contents(converted),
            types.GenerateContentConfig(**config_kwargs),
        )

    async def _generate(self, request: GenerateRequest) -> GenerateResponse:
        client = self.client()
        model, contents, config = self._build(request)
        response = await client.aio.models.generate_content(
            model=model, contents=contents, config=config
        )
        return GenerateResponse(
            text=response.text or "",
            model=model,
            provider=self.provider_id,
            usage=_usage(response.usage_metadata),
            finish_reason=_finish_reason(response),
            raw=response,
        )

    async def _stream(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]:
        client = self.client()
        model, contents, config = self._build(request)
        stream = await client.aio.models.generate_content_stream(
            model=model, contents=contents, config=config
        )
        text = ""
        async for chunk in stream:
            delta = chunk.text or ""
            text += delta
            finish = _finish_reason(chunk)
            yield StreamChunk(
                delta=delta,
                text=text,
                done=finish is not None,
                model=model,
                provider=self.provider_id,
                finish_reason=finish,
                usage=_usage(chunk.usage_metadata),
            )

    async def _count_tokens(self, request: GenerateRequest) -> int:
        client = self.client()
        model, contents, _ = self._build(request)
        result = await client.aio.models.count_tokens(model=model, contents=contents)
        return int(result.total_tokens or 0)

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        client = self.client()
        model = self.config.extras.get("embedding_model", DEFAULT_EMBEDDING_MODEL)
        result = await client.aio.models.embed_content(model=model, contents=texts)
        return [list(e.values or []) for e in result.embeddings or []]

    def _map_error(self, exc: Exception) -> ProviderError:
        return map_gemini_error(exc, self.name)
