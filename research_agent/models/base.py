"""
Base types for model providers.

Defines the uniform request/response shapes every adapter speaks, the
closed set of provider identities, the per-call configuration snapshot,
and `BaseProvider`, the four-operation contract (generate, stream, count
tokens, embed) that each backend adapter implements.
"""

from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from research_agent.core.cancellation import CancellationToken, guarded
from research_agent.errors import (
    ConfigurationError,
    OperationCancelled,
    ProviderError,
    ProviderErrorKind,
    UnknownProviderError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderId(str, Enum):
    """Closed set of backends the router knows how to talk to."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    DEEPSEEK = "deepseek"
    QWEN = "qwen"
    GROQ = "groq"
    MISTRAL = "mistral"
    PERPLEXITY = "perplexity"
    TOGETHER = "together"
    FIREWORKS = "fireworks"
    OLLAMA = "ollama"

    @classmethod
    def parse(cls, value: "str | ProviderId") -> "ProviderId":
        if isinstance(value, ProviderId):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownProviderError(str(value), [p.value for p in cls]) from None


@dataclass(frozen=True)
class SamplingParams:
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_tokens: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stop_sequences: Optional[Tuple[str, ...]] = None

    def merged(self, other: Optional["SamplingParams"]) -> "SamplingParams":
        """Return a copy where every non-None field of `other` wins."""
        if other is None:
            return self
        updates = {
            f.name: getattr(other, f.name)
            for f in fields(other)
            if getattr(other, f.name) is not None
        }
        return replace(self, **updates)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "SamplingParams":
        data = data or {}
        stop = data.get("stop_sequences")
        return cls(
            temperature=data.get("temperature"),
            top_p=data.get("top_p"),
            top_k=data.get("top_k"),
            max_tokens=data.get("max_tokens"),
            frequency_penalty=data.get("frequency_penalty"),
            presence_penalty=data.get("presence_penalty"),
            stop_sequences=tuple(stop) if stop else None,
        )


@dataclass(frozen=True)
class ProviderConfig:
    """
    Immutable configuration snapshot handed to an adapter.

    Produced by `ProviderConfigStore.get_provider_config`; adapters never
    read credentials from anywhere else.
    """

    provider: ProviderId
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout_ms: int = 30000
    sampling: SamplingParams = field(default_factory=SamplingParams)
    extras: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelInfo:
    """
    ModelInfo stores metadata about a model served by a provider.
    """

    id: str
    provider: ProviderId
    display_name: str = ""
    context_length: int = 8192
    capabilities: Tuple[str, ...] = ("chat", "stream")


@dataclass(frozen=True)
class ActiveSelection:
    """The (provider, model) pair currently in effect for generation calls."""

    provider: ProviderId
    model: str

    def __str__(self) -> str:
        return f"{self.provider.value}/{self.model}"


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class GenerateRequest:
    """
    Uniform request shape.

    `messages` are OpenAI-style dicts with `role` ("system", "user" or
    "assistant") and `content`. `model` overrides the configured model and
    `sampling` overrides the configured sampling parameters field by field.
    """

    messages: List[Dict[str, Any]]
    model: Optional[str] = None
    system: Optional[str] = None
    sampling: Optional[SamplingParams] = None

    def with_model(self, model: Optional[str]) -> "GenerateRequest":
        return replace(self, model=model)

    def text(self) -> str:
        parts = [self.system or ""]
        parts.extend(str(m.get("content") or "") for m in self.messages)
        return "".join(parts)


@dataclass
class GenerateResponse:
    """
    Normalized response returned by providers.

    `fallback` is set by the router when the response was served by the
    default provider after the selected provider failed.
    """

    text: str
    model: str
    provider: ProviderId
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None
    fallback: bool = False
    fallback_from: Optional[ProviderId] = None
    raw: Any = None


@dataclass
class StreamChunk:
    delta: str
    text: str
    done: bool
    model: str
    provider: ProviderId
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None
    fallback: bool = False


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Seconds to wait from a Retry-After header.

    The header is either a number of seconds or an HTTP-date. Anything
    unparseable yields None.
    """
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def estimate_tokens(text: str) -> int:
    """Rough estimate used where a backend has no counting endpoint: ~4 chars per token."""
    return int(math.ceil(len(text) / 4))


def split_system(
    messages: Sequence[Dict[str, Any]], system: Optional[str] = None
) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Separate system messages from the conversation.

    Returns the concatenated system prompt and the remaining messages with
    unknown roles folded into "user".
    """
    system_parts: List[str] = [system] if system else []
    converted: List[Dict[str, Any]] = []
    for msg in messages:
        role = msg.get("role")
        content = msg.get("content") or ""
        if role == "system":
            system_parts.append(content)
        elif role == "assistant":
            converted.append({"role": "assistant", "content": content})
        else:
            converted.append({"role": "user", "content": content})
    return "\n".join(system_parts), converted


class BaseProvider(ABC):
    """
    Abstract base class for all LLM providers.

    Subclasses implement the `_generate` / `_stream` hooks plus `_map_error`,
    which turns SDK exceptions into `ProviderError`. The public operations
    wrap every network await with the configured timeout and the caller's
    cancellation token, so adapters surface only the fixed error taxonomy.
    """

    features: FrozenSet[str] = frozenset({"chat", "stream"})

    def __init__(
        self, config: ProviderConfig, models: Optional[Sequence[ModelInfo]] = None
    ) -> None:
        self.config = config
        self.models: List[ModelInfo] = list(models or [])

    @property
    def provider_id(self) -> ProviderId:
        return self.config.provider

    @property
    def name(self) -> str:
        return self.config.provider.value

    def supports(self, feature: str) -> bool:
        return feature in self.features

    def require_api_key(self, env_var: Optional[str] = None) -> str:
        if not self.config.api_key:
            hint = f" Set '{env_var}' or use '/api set {self.name} <key>'." if env_var else ""
            raise ConfigurationError(
                f"No API key configured for provider '{self.name}'.{hint}"
            )
        return self.config.api_key

    def resolve_model(self, request: GenerateRequest) -> str:
        return request.model or self.config.model

    def resolve_sampling(self, request: GenerateRequest) -> SamplingParams:
        return self.config.sampling.merged(request.sampling)

    async def list_models(self) -> List[ModelInfo]:
        return list(self.models)

    # ------------------------------------------------------------------
    # Public four-operation contract
    # ------------------------------------------------------------------

    async def generate(
        self, request: GenerateRequest, cancel: Optional[CancellationToken] = None
    ) -> GenerateResponse:
        return await self._call(self._generate(request), cancel)

    async def generate_stream(
        self, request: GenerateRequest, cancel: Optional[CancellationToken] = None
    ) -> AsyncIterator[StreamChunk]:
        iterator = self._stream(request).__aiter__()
        try:
            while True:
                try:
                    chunk = await self._call(iterator.__anext__(), cancel)
                except StopAsyncIteration:
                    return
                yield chunk
                if chunk.done:
                    return
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def count_tokens(
        self, request: GenerateRequest, cancel: Optional[CancellationToken] = None
    ) -> int:
        return await self._call(self._count_tokens(request), cancel)

    async def embed(
        self, texts: Sequence[str], cancel: Optional[CancellationToken] = None
    ) -> List[List[float]]:
        if not self.supports("embed"):
            raise ProviderError(
                f"Provider '{self.name}' does not support embeddings.",
                self.name,
                ProviderErrorKind.UNSUPPORTED,
            )
        return await self._call(self._embed(list(texts)), cancel)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _generate(self, request: GenerateRequest) -> GenerateResponse:
        raise NotImplementedError

    @abstractmethod
    def _stream(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]:
        raise NotImplementedError

    async def _count_tokens(self, request: GenerateRequest) -> int:
        return estimate_tokens(request.text())

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        raise NotImplementedError

    @abstractmethod
    def _map_error(self, exc: Exception) -> ProviderError:
        raise NotImplementedError

    # ------------------------------------------------------------------

    async def _call(
        self, awaitable: Awaitable[T], cancel: Optional[CancellationToken]
    ) -> T:
        timeout = self.config.timeout_ms / 1000 if self.config.timeout_ms > 0 else None
        try:
            return await guarded(asyncio.wait_for(awaitable, timeout), cancel)
        except (ProviderError, ConfigurationError, StopAsyncIteration):
            raise
        except OperationCancelled as exc:
            raise ProviderError(
                f"Request to '{self.name}' was cancelled.",
                self.name,
                ProviderErrorKind.CANCELLED,
            ) from exc
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                f"Request to '{self.name}' timed out after {self.config.timeout_ms} ms.",
                self.name,
                ProviderErrorKind.TIMEOUT,
            ) from exc
        except Exception as exc:  # noqa: BLE001
            try:
                mapped = self._map_error(exc)
            except Exception as map_exc:  # noqa: BLE001
                logger.warning("could not classify error from %s: %r", self.name, map_exc)
                mapped = ProviderError(
                    f"{self.name} provider error: {exc}", self.name, ProviderErrorKind.UNAVAILABLE
                )
            logger.debug("provider %s raised %s: %s", self.name, mapped.kind.value, exc)
            raise mapped from exc

    def _malformed(self, detail: str) -> ProviderError:
        return ProviderError(
            f"Malformed response from '{self.name}': {detail}",
            self.name,
            ProviderErrorKind.MALFORMED,
        )
