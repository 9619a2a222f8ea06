"""Tests for the provider adapters, catalog and shared model types."""

from types import SimpleNamespace

import anthropic
import httpx
import openai
import pytest
from google.genai import errors as genai_errors

from research_agent.errors import ConfigurationError, ProviderError, ProviderErrorKind
from research_agent.models.anthropic_provider import AnthropicProvider, map_anthropic_error
from research_agent.models.base import (
    ActiveSelection,
    GenerateRequest,
    ProviderConfig,
    ProviderId,
    SamplingParams,
    estimate_tokens,
    parse_retry_after,
    split_system,
)
from research_agent.models.catalog import catalog_for, detect_provider, token_limit
from research_agent.models.factory import ADAPTERS, build_adapter, create_provider
from research_agent.models.gemini_provider import GeminiProvider, map_gemini_error
from research_agent.models.openai_provider import OpenAIProvider, map_openai_error
from research_agent.models.perplexity_provider import PerplexityProvider
from tests.fakes import FakeProvider

REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat")


def response(status, headers=None):
    return httpx.Response(status, headers=headers or {}, request=REQUEST)


def config(provider, **kwargs):
    kwargs.setdefault("model", "m")
    return ProviderConfig(provider=ProviderId.parse(provider), **kwargs)


def test_provider_id_parse():
    assert ProviderId.parse(" OpenAI ") is ProviderId.OPENAI
    with pytest.raises(ConfigurationError, match="Valid providers"):
        ProviderId.parse("skynet")


def test_sampling_merge_keeps_unset_fields():
    base = SamplingParams(temperature=0.7, max_tokens=100)

    merged = base.merged(SamplingParams(temperature=0.1))

    assert merged == SamplingParams(temperature=0.1, max_tokens=100)
    assert base.merged(None) is base


def test_split_system_and_estimate():
    system, messages = split_system(
        [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
            {"role": "tool", "content": "data"},
            {"role": "assistant", "content": "ok"},
        ],
        system="top",
    )

    assert system == "top\nbe brief"
    assert [m["role"] for m in messages] == ["user", "user", "assistant"]
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcde") == 2


def test_catalog_detection_and_limits():
    assert detect_provider("gpt-4o") is ProviderId.OPENAI
    assert detect_provider("claude-something-new") is ProviderId.ANTHROPIC
    assert detect_provider("qwq-32b-preview") is ProviderId.QWEN
    assert detect_provider("who-knows") is None
    assert token_limit("gpt-3.5-turbo") == 16385
    assert token_limit("who-knows") == 4096


def test_catalog_extended_by_config():
    models = catalog_for(
        ProviderId.OLLAMA,
        {"phi": {"name": "phi3", "max_context_tokens": 4096}, "llama3.1": {"max_context_tokens": 1}},
    )

    by_id = {m.id: m for m in models}
    assert by_id["phi3"].context_length == 4096
    assert by_id["llama3.1"].context_length == 1


def test_every_provider_has_an_adapter():
    assert set(ADAPTERS) == set(ProviderId)
    assert isinstance(create_provider(config("perplexity")), PerplexityProvider)
    assert isinstance(create_provider(config("groq")), OpenAIProvider)
    assert isinstance(create_provider(config("anthropic")), AnthropicProvider)
    assert isinstance(create_provider(config("gemini")), GeminiProvider)


def test_build_adapter_applies_yaml_overrides(store):
    adapter = build_adapter(store, "ollama", {"base_url": "http://gpu:11434/v1", "timeout_ms": 5000})

    assert adapter.config.base_url == "http://gpu:11434/v1"
    assert adapter.config.timeout_ms == 5000
    assert adapter.base_url == "http://gpu:11434/v1"


def test_missing_key_fails_when_client_is_needed():
    adapter = create_provider(config("openai"))

    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        adapter.client()


def test_keyless_provider_builds_client():
    adapter = create_provider(config("ollama"))

    assert adapter.client() is adapter.client()


def test_embed_support_per_provider():
    assert create_provider(config("openai")).supports("embed")
    assert not create_provider(config("groq")).supports("embed")
    assert not create_provider(config("perplexity")).supports("embed")
    assert create_provider(config("gemini")).supports("embed")
    assert not create_provider(config("anthropic")).supports("embed")


async def test_embed_on_unsupported_adapter_is_typed_error():
    adapter = create_provider(config("anthropic", api_key="k"))

    with pytest.raises(ProviderError) as excinfo:
        await adapter.embed(["x"])

    assert excinfo.value.kind is ProviderErrorKind.UNSUPPORTED


def test_map_openai_errors():
    auth = map_openai_error(
        openai.AuthenticationError("bad key", response=response(401), body=None), "openai"
    )
    quota = map_openai_error(
        openai.RateLimitError("slow down", response=response(429, {"retry-after": "3"}), body=None),
        "openai",
    )
    timeout = map_openai_error(openai.APITimeoutError(request=REQUEST), "openai")
    server = map_openai_error(
        openai.InternalServerError("oops", response=response(500), body=None), "openai"
    )

    assert auth.kind is ProviderErrorKind.AUTH
    assert auth.status_code == 401
    assert quota.kind is ProviderErrorKind.QUOTA
    assert quota.retry_after == 3.0
    assert timeout.kind is ProviderErrorKind.TIMEOUT
    assert server.kind is ProviderErrorKind.UNAVAILABLE
    assert map_openai_error(KeyError("choices"), "openai").kind is ProviderErrorKind.MALFORMED


def test_map_anthropic_errors():
    auth = map_anthropic_error(
        anthropic.AuthenticationError("bad key", response=response(401), body=None), "anthropic"
    )
    quota = map_anthropic_error(
        anthropic.RateLimitError("slow down", response=response(429), body=None), "anthropic"
    )
    connection = map_anthropic_error(anthropic.APIConnectionError(request=REQUEST), "anthropic")

    assert auth.kind is ProviderErrorKind.AUTH
    assert quota.kind is ProviderErrorKind.QUOTA
    assert quota.retry_after is None
    assert connection.kind is ProviderErrorKind.UNAVAILABLE


@pytest.mark.parametrize(
    "code,kind",
    [
        (401, ProviderErrorKind.AUTH),
        (403, ProviderErrorKind.AUTH),
        (429, ProviderErrorKind.QUOTA),
        (400, ProviderErrorKind.UNAVAILABLE),
    ],
)
def test_map_gemini_client_errors(code, kind):
    exc = genai_errors.ClientError(code, {"error": {"code": code, "message": "nope", "status": "X"}})

    mapped = map_gemini_error(exc, "gemini")

    assert mapped.kind is kind
    assert mapped.status_code == code


async def test_sdk_error_is_mapped_at_adapter_boundary():
    adapter = create_provider(config("openai", api_key="k"))

    async def create(**kwargs):
        raise openai.RateLimitError("quota", response=response(429), body=None)

    adapter._client = SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=create))
    )

    with pytest.raises(ProviderError) as excinfo:
        await adapter.generate(GenerateRequest(messages=[{"role": "user", "content": "hi"}]))

    assert excinfo.value.kind is ProviderErrorKind.QUOTA
    assert excinfo.value.provider == "openai"


async def test_openai_generate_normalizes_response():
    adapter = create_provider(config("openai", api_key="k", model="gpt-4o-mini"))
    seen = {}

    async def create(**kwargs):
        seen.update(kwargs)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="hi there"), finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=3, completion_tokens=2, total_tokens=5),
            model="gpt-4o-mini-2024",
        )

    adapter._client = SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=create))
    )

    result = await adapter.generate(
        GenerateRequest(messages=[{"role": "user", "content": "hi"}], system="sys")
    )

    assert result.text == "hi there"
    assert result.model == "gpt-4o-mini-2024"
    assert result.usage.total_tokens == 5
    assert seen["messages"][0] == {"role": "system", "content": "sys"}


def test_reasoning_models_drop_sampling_parameters():
    adapter = create_provider(
        config("deepseek", sampling=SamplingParams(temperature=0.5, max_tokens=10))
    )

    kwargs = adapter._build_kwargs(
        GenerateRequest(messages=[{"role": "user", "content": "x"}], model="deepseek-reasoner")
    )

    assert "temperature" not in kwargs
    assert kwargs["max_tokens"] == 10


def test_anthropic_kwargs_split_system_and_prefer_temperature():
    adapter = create_provider(
        config("anthropic", sampling=SamplingParams(temperature=0.2, top_p=0.9))
    )

    kwargs = adapter._build_kwargs(
        GenerateRequest(
            messages=[{"role": "system", "content": "rules"}, {"role": "user", "content": "x"}]
        )
    )

    assert kwargs["system"] == "rules"
    assert kwargs["messages"] == [{"role": "user", "content": "x"}]
    assert kwargs["temperature"] == 0.2
    assert "top_p" not in kwargs
    assert kwargs["max_tokens"] == 2048


def test_perplexity_merges_roles_and_one_penalty():
    adapter = create_provider(
        config(
            "perplexity",
            sampling=SamplingParams(presence_penalty=0.1, frequency_penalty=0.2),
        )
    )

    kwargs = adapter._build_kwargs(
        GenerateRequest(
            messages=[
                {"role": "system", "content": "s"},
                {"role": "user", "content": "a"},
                {"role": "user", "content": "b"},
                {"role": "assistant", "content": "c"},
            ]
        )
    )

    assert kwargs["messages"] == [
        {"role": "system", "content": "s"},
        {"role": "user", "content": "a\n\nb"},
        {"role": "assistant", "content": "c"},
    ]
    assert "frequency_penalty" not in kwargs
    assert kwargs["presence_penalty"] == 0.1


def test_parse_retry_after_accepts_seconds_and_http_dates():
    assert parse_retry_after("3") == 3.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("soon-ish") is None
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0
    assert parse_retry_after("Fri, 01 Jan 2100 00:00:00 GMT") > 0


async def test_quota_error_with_http_date_still_falls_back(router_with):
    deepseek = create_provider(config("deepseek", api_key="k", model="deepseek-chat"))

    async def create(**kwargs):
        raise openai.RateLimitError(
            "quota",
            response=response(429, {"retry-after": "Wed, 21 Oct 2026 07:28:00 GMT"}),
            body=None,
        )

    deepseek._client = SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=create))
    )
    default = FakeProvider("openai", reply="rescued")
    router = router_with(default, deepseek)

    result = await router.generate(
        GenerateRequest(messages=[{"role": "user", "content": "hi"}]),
        ActiveSelection(ProviderId.DEEPSEEK, "deepseek-chat"),
    )

    assert result.text == "rescued"
    assert result.fallback_from is ProviderId.DEEPSEEK
    assert router.fallback_count == 1
