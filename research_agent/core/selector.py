"""
Model selection.

Tracks the active (provider, model) pair for the session and forwards
content calls to the Content Router with that selection attached.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, List, Optional, Sequence

from research_agent.core.cancellation import CancellationToken
from research_agent.core.router import ContentRouter
from research_agent.errors import AgentError, ConfigurationError, UnknownProviderError
from research_agent.models.base import (
    ActiveSelection,
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ProviderId,
    StreamChunk,
)

logger = logging.getLogger(__name__)


class ModelSelector:
    """
    Holds the active selection. `None` means "unselected": calls go to the
    router's default provider with its configured model.
    """

    def __init__(self, router: ContentRouter) -> None:
        self.router = router
        self._selection: Optional[ActiveSelection] = None

    async def select_model(self, provider: "str | ProviderId", model: str) -> ActiveSelection:
        """
        Switch the active selection.

        The provider must have a registered adapter and `model` must be one of
        the models that adapter enumerates. On any failure the previous
        selection is left untouched.
        """
        pid = ProviderId.parse(provider)
        if not self.router.has_adapter(pid):
            raise UnknownProviderError(pid.value, [p.value for p in self.router.providers()])
        models = await self.list_models_for_provider(pid)
        if not any(m.id == model for m in models):
            raise ConfigurationError(
                f"Model '{model}' is not available for provider '{pid.value}'. "
                f"Use '/model list {pid.value}' to see valid models."
            )
        selection = ActiveSelection(provider=pid, model=model)
        self._selection = selection
        logger.info("selected model %s", selection)
        return selection

    def get_current_model(self) -> Optional[ActiveSelection]:
        return self._selection

    def clear_selection(self) -> None:
        self._selection = None

    def forget_provider(self, provider: "str | ProviderId") -> None:
        """Drop the selection if it points at `provider`."""
        pid = ProviderId.parse(provider)
        if self._selection is not None and self._selection.provider is pid:
            logger.info("clearing selection %s: provider removed", self._selection)
            self._selection = None

    async def list_models_for_provider(self, provider: "str | ProviderId") -> List[ModelInfo]:
        adapter = self.router.get_adapter(provider)
        return await adapter.list_models()

    async def list_available_models(self) -> List[ModelInfo]:
        models: List[ModelInfo] = []
        for pid in self.router.providers():
            try:
                models.extend(await self.list_models_for_provider(pid))
            except AgentError as exc:
                logger.warning("could not list models for %s: %s", pid.value, exc)
        return models

    async def send_message(
        self, request: GenerateRequest, cancel: Optional[CancellationToken] = None
    ) -> GenerateResponse:
        return await self.router.generate(request, self._selection, cancel)

    def stream_message(
        self, request: GenerateRequest, cancel: Optional[CancellationToken] = None
    ) -> AsyncIterator[StreamChunk]:
        return self.router.generate_stream(request, self._selection, cancel)

    async def count_tokens(
        self, request: GenerateRequest, cancel: Optional[CancellationToken] = None
    ) -> int:
        return await self.router.count_tokens(request, self._selection, cancel)

    async def embed(
        self, texts: Sequence[str], cancel: Optional[CancellationToken] = None
    ) -> List[List[float]]:
        return await self.router.embed(texts, self._selection, cancel)
