"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from research_agent.core.router import ContentRouter
from research_agent.models.config_store import ProviderConfigStore
from research_agent.tools.cache import clear_caches
from tests.fakes import FakeProvider


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    monkeypatch.delenv("RESEARCH_AGENT_CREDENTIALS", raising=False)
    clear_caches()
    yield
    clear_caches()


@pytest.fixture
def store(tmp_path) -> ProviderConfigStore:
    return ProviderConfigStore(tmp_path / "providers.json", environ={})


@pytest.fixture
def router_with():
    """Build a router from fake adapters; the first one is the default."""

    def build(*adapters: FakeProvider, allow_fallback: bool = True) -> ContentRouter:
        router = ContentRouter(allow_fallback=allow_fallback)
        for adapter in adapters:
            router.register_adapter(adapter)
        return router

    return build
