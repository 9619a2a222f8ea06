"""
Content routing.

The router is the single entry point for generate / stream / count tokens
/ embed. It holds one adapter per configured provider plus a designated
default, picks the adapter for the active selection on every call, and
retries at most once against the default adapter when the selected
provider fails with an auth or quota error.
"""

from __future__ import annotations

import logging
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from research_agent.core.cancellation import CancellationToken
from research_agent.errors import (
    AgentError,
    ConfigurationError,
    ProviderError,
    ProviderErrorKind,
    UnknownProviderError,
)
from research_agent.models.base import (
    ActiveSelection,
    BaseProvider,
    GenerateRequest,
    GenerateResponse,
    ProviderId,
    StreamChunk,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ContentRouter:
    """
    ContentRouter dispatches content requests to the adapter of the active
    provider. It abstracts away provider-specific API calls from the agent
    loop and owns the single-hop fallback policy.

    Only taxonomy errors (`ProviderError`, `ConfigurationError`) leave the
    router; anything else escaping an adapter is reported as a malformed
    response from that adapter.
    """

    def __init__(
        self,
        default_provider: Optional[ProviderId] = None,
        allow_fallback: bool = False,
    ) -> None:
        self._adapters: Dict[ProviderId, BaseProvider] = {}
        self.default_provider = default_provider
        self.allow_fallback = allow_fallback
        self.fallback_count = 0

    # ------------------------------------------------------------------
    # Adapter management
    # ------------------------------------------------------------------

    def register_adapter(self, adapter: BaseProvider, default: bool = False) -> None:
        self._adapters[adapter.provider_id] = adapter
        if default or self.default_provider is None:
            self.default_provider = adapter.provider_id

    def remove_adapter(self, provider: "str | ProviderId") -> bool:
        pid = ProviderId.parse(provider)
        removed = self._adapters.pop(pid, None) is not None
        if removed and self.default_provider is pid:
            self.default_provider = next(iter(self._adapters), None)
        return removed

    def has_adapter(self, provider: "str | ProviderId") -> bool:
        return ProviderId.parse(provider) in self._adapters

    def get_adapter(self, provider: "str | ProviderId") -> BaseProvider:
        pid = ProviderId.parse(provider)
        adapter = self._adapters.get(pid)
        if adapter is None:
            raise UnknownProviderError(pid.value, [p.value for p in self._adapters])
        return adapter

    def providers(self) -> List[ProviderId]:
        return list(self._adapters)

    @property
    def default_adapter(self) -> Optional[BaseProvider]:
        if self.default_provider is None:
            return None
        return self._adapters.get(self.default_provider)

    # ------------------------------------------------------------------
    # Content operations
    # ------------------------------------------------------------------

    async def generate(
        self,
        request: GenerateRequest,
        selection: Optional[ActiveSelection] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> GenerateResponse:
        """
        Forward a generation request to the selected provider.

        Args:
            request: Uniform request; `request.model` wins over the selection's model.
            selection: Active (provider, model) pair, or None for the default provider.
            cancel: Optional cancellation token threaded into the adapter.

        Returns:
            The adapter's response, marked with `fallback=True` when it was
            served by the default provider after a fallback hop.

        Raises:
            ProviderError: If the provider fails (after the optional fallback hop).
            ConfigurationError: If no adapter can serve the request.
        """
        adapter, model = self._resolve(selection)
        response, fallback_from = await self._dispatch(
            adapter,
            lambda target, hop: target.generate(
                request.with_model(None) if hop else _apply_model(request, model), cancel
            ),
        )
        if fallback_from is not None:
            response.fallback = True
            response.fallback_from = fallback_from
        return response

    async def generate_stream(
        self,
        request: GenerateRequest,
        selection: Optional[ActiveSelection] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a response chunk by chunk.

        Fallback only applies when the selected provider fails before
        producing its first chunk; once output has been yielded, failures
        propagate to the consumer.
        """
        adapter, model = self._resolve(selection)
        target = adapter
        stream = adapter.generate_stream(_apply_model(request, model), cancel)
        is_fallback = False
        try:
            try:
                first = await self._guard(adapter, stream.__anext__())
            except ProviderError as exc:
                fallback = self._fallback_target(adapter, exc)
                if fallback is None:
                    raise
                self._record_fallback(adapter, fallback, exc)
                await stream.aclose()
                target = fallback
                stream = fallback.generate_stream(request.with_model(None), cancel)
                is_fallback = True
                try:
                    first = await self._guard(fallback, stream.__anext__())
                except StopAsyncIteration:
                    return
                except AgentError as fallback_exc:
                    raise _annotate(exc, fallback, fallback_exc)
            except StopAsyncIteration:
                return

            first.fallback = is_fallback
            yield first
            while True:
                try:
                    chunk = await self._guard(target, stream.__anext__())
                except StopAsyncIteration:
                    return
                chunk.fallback = is_fallback
                yield chunk
        finally:
            await stream.aclose()

    async def count_tokens(
        self,
        request: GenerateRequest,
        selection: Optional[ActiveSelection] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> int:
        adapter, model = self._resolve(selection)
        count, _ = await self._dispatch(
            adapter,
            lambda target, hop: target.count_tokens(
                request.with_model(None) if hop else _apply_model(request, model), cancel
            ),
        )
        return count

    async def embed(
        self,
        texts: Sequence[str],
        selection: Optional[ActiveSelection] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[List[float]]:
        """Embed `texts`; providers without embeddings defer to the default provider."""
        adapter, _ = self._resolve(selection)
        if not adapter.supports("embed"):
            default = self.default_adapter
            if default is None or not default.supports("embed"):
                raise ConfigurationError(
                    f"Provider '{adapter.name}' does not support embeddings and no "
                    "embedding-capable default provider is configured."
                )
            logger.debug("embed: %s has no embeddings, using %s", adapter.name, default.name)
            adapter = default
        vectors, _ = await self._dispatch(
            adapter, lambda target, hop: target.embed(texts, cancel)
        )
        return vectors

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(
        self, selection: Optional[ActiveSelection]
    ) -> Tuple[BaseProvider, Optional[str]]:
        if selection is not None:
            adapter = self._adapters.get(selection.provider)
            if adapter is None:
                raise UnknownProviderError(
                    selection.provider.value, [p.value for p in self._adapters]
                )
            logger.debug("routing to selected provider %s", selection)
            return adapter, selection.model
        default = self.default_adapter
        if default is None:
            raise ConfigurationError(
                "No model provider is configured. Set a provider API key "
                "(for example OPENAI_API_KEY) or use '/api set <provider> <key>'."
            )
        logger.debug("routing to default provider %s", default.name)
        return default, None

    def _fallback_target(
        self, primary: BaseProvider, exc: ProviderError
    ) -> Optional[BaseProvider]:
        if not self.allow_fallback or not exc.retryable_by_fallback:
            return None
        default = self.default_adapter
        if default is None or default is primary:
            return None
        return default

    def _record_fallback(
        self, primary: BaseProvider, fallback: BaseProvider, exc: ProviderError
    ) -> None:
        self.fallback_count += 1
        logger.warning(
            "provider %s failed (%s); falling back to %s",
            primary.name,
            exc.kind.value,
            fallback.name,
        )

    async def _dispatch(
        self,
        adapter: BaseProvider,
        call: Callable[[BaseProvider, bool], Awaitable[T]],
    ) -> Tuple[T, Optional[ProviderId]]:
        try:
            return await self._guard(adapter, call(adapter, False)), None
        except ProviderError as exc:
            fallback = self._fallback_target(adapter, exc)
            if fallback is None:
                raise
            self._record_fallback(adapter, fallback, exc)
            try:
                result = await self._guard(fallback, call(fallback, True))
            except AgentError as fallback_exc:
                raise _annotate(exc, fallback, fallback_exc)
            return result, adapter.provider_id

    @staticmethod
    async def _guard(adapter: BaseProvider, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except (AgentError, StopAsyncIteration):
            raise
        except Exception as exc:  # noqa: BLE001
            raise ProviderError(
                f"Unexpected failure in provider '{adapter.name}': {exc}",
                adapter.name,
                ProviderErrorKind.MALFORMED,
            ) from exc


def _apply_model(request: GenerateRequest, model: Optional[str]) -> GenerateRequest:
    if request.model or not model:
        return request
    return request.with_model(model)


def _annotate(
    primary: ProviderError, fallback: BaseProvider, fallback_exc: AgentError
) -> ProviderError:
    primary.fallback_error = fallback_exc
    return primary.add_context(f"fallback to '{fallback.name}' also failed: {fallback_exc}")
