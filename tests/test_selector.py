"""Tests for the model selector state machine."""

import pytest

from research_agent.core.selector import ModelSelector
from research_agent.errors import ConfigurationError, ProviderErrorKind, UnknownProviderError
from research_agent.models.base import ActiveSelection, ProviderId
from tests.fakes import FakeProvider, provider_error, user_request


class BrokenListing(FakeProvider):
    async def list_models(self):
        raise provider_error(self.name, ProviderErrorKind.UNAVAILABLE, "listing failed")


async def test_starts_unselected_and_uses_default(router_with):
    selector = ModelSelector(router_with(FakeProvider("openai", reply="default")))

    assert selector.get_current_model() is None
    response = await selector.send_message(user_request())
    assert response.text == "default"


async def test_select_model_switches_target(router_with):
    openai = FakeProvider("openai")
    anthropic = FakeProvider("anthropic", models=["claude-a"], reply="claude")
    selector = ModelSelector(router_with(openai, anthropic))

    selection = await selector.select_model("anthropic", "claude-a")

    assert selection == ActiveSelection(ProviderId.ANTHROPIC, "claude-a")
    assert selector.get_current_model() == selection
    response = await selector.send_message(user_request())
    assert response.text == "claude"
    assert response.model == "claude-a"
    assert openai.calls == []


async def test_unknown_model_keeps_previous_selection(router_with):
    selector = ModelSelector(router_with(FakeProvider("openai", models=["gpt-4o", "gpt-4o-mini"])))
    await selector.select_model("openai", "gpt-4o")

    with pytest.raises(ConfigurationError, match="/model list openai"):
        await selector.select_model("openai", "gpt-9")

    assert selector.get_current_model() == ActiveSelection(ProviderId.OPENAI, "gpt-4o")


async def test_provider_without_adapter_is_rejected(router_with):
    selector = ModelSelector(router_with(FakeProvider("openai")))

    with pytest.raises(UnknownProviderError):
        await selector.select_model("gemini", "gemini-1.5-flash")

    assert selector.get_current_model() is None


async def test_unknown_provider_name_is_rejected(router_with):
    selector = ModelSelector(router_with(FakeProvider("openai")))

    with pytest.raises(UnknownProviderError, match="Valid providers"):
        await selector.select_model("not-a-provider", "x")


async def test_failed_enumeration_keeps_previous_selection(router_with):
    selector = ModelSelector(
        router_with(FakeProvider("openai", models=["gpt-4o"]), BrokenListing("anthropic"))
    )
    await selector.select_model("openai", "gpt-4o")

    with pytest.raises(Exception):
        await selector.select_model("anthropic", "fake-model")

    assert selector.get_current_model().provider is ProviderId.OPENAI


async def test_list_available_models_skips_failing_adapter(router_with):
    selector = ModelSelector(
        router_with(FakeProvider("openai", models=["a", "b"]), BrokenListing("anthropic"))
    )

    models = await selector.list_available_models()

    assert [m.id for m in models] == ["a", "b"]


async def test_forget_provider_clears_matching_selection(router_with):
    selector = ModelSelector(router_with(FakeProvider("openai"), FakeProvider("anthropic")))
    await selector.select_model("anthropic", "fake-model")

    selector.forget_provider("openai")
    assert selector.get_current_model() is not None

    selector.forget_provider("anthropic")
    assert selector.get_current_model() is None


async def test_stream_message_uses_selection(router_with):
    selector = ModelSelector(
        router_with(FakeProvider("openai"), FakeProvider("anthropic", chunks=["x", "y"]))
    )
    await selector.select_model("anthropic", "fake-model")

    text = ""
    async for chunk in selector.stream_message(user_request()):
        text = chunk.text

    assert text == "xy"


async def test_clear_selection_returns_to_default(router_with):
    selector = ModelSelector(
        router_with(FakeProvider("openai", reply="default"), FakeProvider("anthropic", reply="claude"))
    )
    await selector.select_model("anthropic", "fake-model")

    selector.clear_selection()

    assert selector.get_current_model() is None
    assert (await selector.send_message(user_request())).text == "default"


async def test_count_tokens_and_embed_follow_selection(router_with):
    selector = ModelSelector(
        router_with(
            FakeProvider("openai", features={"chat", "stream", "embed"}),
            FakeProvider("gemini", features={"chat", "stream", "embed"}),
        )
    )
    await selector.select_model("gemini", "fake-model")

    assert await selector.embed(["abc"]) == [[3.0]]
    assert await selector.count_tokens(user_request("x" * 8)) == 2
