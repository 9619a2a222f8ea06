"""Tests for provider configuration resolution and persistence."""

import json
import os
import stat

import pytest

from research_agent.errors import ConfigurationError, UnknownProviderError
from research_agent.models.base import ProviderId
from research_agent.models.config_store import (
    DEFAULT_MODELS,
    DEFAULT_TIMEOUT_MS,
    ProviderConfigStore,
    mask_api_key,
)


def write_config(path, document):
    path.write_text(json.dumps(document), encoding="utf-8")


def test_missing_file_is_empty_config(store):
    assert store.list_configured_providers() == []
    assert store.resolve_default_provider() is None
    config = store.get_provider_config("openai")
    assert config.api_key is None
    assert config.model == DEFAULT_MODELS[ProviderId.OPENAI]
    assert config.timeout_ms == DEFAULT_TIMEOUT_MS
    assert config.sampling.temperature == 0.7
    assert config.sampling.max_tokens == 2048


def test_precedence_explicit_file_env_default(tmp_path):
    path = tmp_path / "providers.json"
    write_config(path, {"providers": {"openai": {"api_key": "B", "default_model": "gpt-4o"}}})
    store = ProviderConfigStore(path, environ={"OPENAI_API_KEY": "C"})

    assert store.get_provider_config("openai", {"api_key": "A"}).api_key == "A"
    assert store.get_provider_config("openai").api_key == "B"
    assert store.get_provider_config("openai").model == "gpt-4o"

    env_only = ProviderConfigStore(tmp_path / "absent.json", environ={"OPENAI_API_KEY": "C"})
    assert env_only.get_provider_config("openai").api_key == "C"
    assert env_only.get_provider_config("openai").model == DEFAULT_MODELS[ProviderId.OPENAI]


def test_none_override_is_treated_as_absent(tmp_path):
    path = tmp_path / "providers.json"
    write_config(path, {"providers": {"openai": {"base_url": "http://proxy"}}})
    store = ProviderConfigStore(path, environ={})

    assert store.get_provider_config("openai", {"base_url": None}).base_url == "http://proxy"


def test_file_sampling_overrides_builtin(tmp_path):
    path = tmp_path / "providers.json"
    write_config(path, {"providers": {}, "sampling": {"temperature": 0.2}})
    store = ProviderConfigStore(path, environ={})

    config = store.get_provider_config("anthropic", {"sampling": {"max_tokens": 64}})

    assert config.sampling.temperature == 0.2
    assert config.sampling.max_tokens == 64
    assert config.sampling.top_p == 1.0


def test_unknown_override_key_is_rejected(store):
    with pytest.raises(ConfigurationError, match="temprature"):
        store.get_provider_config("openai", {"temprature": 1})


def test_unknown_provider_is_rejected(store):
    with pytest.raises(UnknownProviderError):
        store.get_provider_config("skynet")


def test_malformed_file_raises(tmp_path):
    path = tmp_path / "providers.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="providers.json"):
        ProviderConfigStore(path, environ={}).load()


def test_api_key_source_reporting(tmp_path):
    path = tmp_path / "providers.json"
    write_config(path, {"providers": {"anthropic": {"api_key": "file-key"}}})
    store = ProviderConfigStore(path, environ={"OPENAI_API_KEY": "env-key"})

    assert store.get_api_key("anthropic") == ("file-key", "file")
    assert store.get_api_key("openai") == ("env-key", "env")
    assert store.get_api_key("gemini") == (None, None)


def test_configured_providers_file_order_then_env(tmp_path):
    path = tmp_path / "providers.json"
    write_config(
        path,
        {"providers": {"perplexity": {"api_key": "p"}, "anthropic": {"api_key": "a"}}},
    )
    store = ProviderConfigStore(path, environ={"OPENAI_API_KEY": "o", "ANTHROPIC_API_KEY": "x"})

    assert store.list_configured_providers() == [
        ProviderId.PERPLEXITY,
        ProviderId.ANTHROPIC,
        ProviderId.OPENAI,
    ]
    assert store.resolve_default_provider() is ProviderId.PERPLEXITY


def test_explicit_default_provider_wins(tmp_path):
    path = tmp_path / "providers.json"
    write_config(
        path,
        {
            "default_provider": "anthropic",
            "providers": {"openai": {"api_key": "o"}, "anthropic": {"api_key": "a"}},
        },
    )
    store = ProviderConfigStore(path, environ={})

    assert store.resolve_default_provider() is ProviderId.ANTHROPIC


def test_save_round_trip_and_permissions(store):
    store.set_provider_config("openai", api_key="sk-test", default_model="gpt-4o")
    store.set_default_provider("openai")
    store.save()

    data = json.loads(store.path.read_text(encoding="utf-8"))
    assert data["default_provider"] == "openai"
    assert data["providers"]["openai"]["api_key"] == "sk-test"
    assert "last_updated" in data["providers"]["openai"]
    if os.name == "posix":
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600

    reloaded = ProviderConfigStore(store.path, environ={})
    assert reloaded.get_provider_config("openai").model == "gpt-4o"


def test_save_creates_parent_directory(tmp_path):
    store = ProviderConfigStore(tmp_path / "nested" / "dir" / "providers.json", environ={})
    store.set_provider_config("gemini", api_key="g")
    store.save()

    assert store.path.exists()


def test_set_is_last_write_wins(store):
    store.set_provider_config("openai", api_key="one", base_url="http://a")
    store.set_provider_config("openai", api_key="two")

    config = store.get_provider_config("openai")
    assert config.api_key == "two"
    assert config.base_url == "http://a"


def test_unknown_provider_setting_is_rejected(store):
    with pytest.raises(ConfigurationError):
        store.set_provider_config("openai", colour="blue")


def test_remove_clears_default(store):
    store.set_provider_config("openai", api_key="o")
    store.set_default_provider("openai")

    assert store.remove_provider_config("openai")
    assert not store.remove_provider_config("openai")
    assert store.resolve_default_provider() is None


def test_credentials_path_from_environment(tmp_path, monkeypatch):
    target = tmp_path / "custom.json"
    monkeypatch.setenv("RESEARCH_AGENT_CREDENTIALS", str(target))

    assert ProviderConfigStore(environ={}).path == target


@pytest.mark.parametrize(
    "key,masked",
    [
        ("sk-1234567890abcd", "sk-1*********abcd"),
        ("short", "*****"),
        ("12345678", "********"),
    ],
)
def test_mask_api_key(key, masked):
    assert mask_api_key(key) == masked


def test_default_model_prefers_file_entry(store):
    assert store.get_default_model("gemini") == DEFAULT_MODELS[ProviderId.GEMINI]

    store.set_provider_config("gemini", default_model="gemini-2.5-pro")

    assert store.get_default_model("gemini") == "gemini-2.5-pro"


def test_explicit_zero_timeout_is_kept(tmp_path):
    path = tmp_path / "providers.json"
    write_config(path, {"providers": {"openai": {"timeout_ms": 5000}}})
    store = ProviderConfigStore(path, environ={})

    assert store.get_provider_config("openai").timeout_ms == 5000
    assert store.get_provider_config("openai", {"timeout_ms": 0}).timeout_ms == 0


@pytest.mark.parametrize("bad", ["soon", -1])
def test_bad_timeout_in_file_is_configuration_error(tmp_path, bad):
    path = tmp_path / "providers.json"
    write_config(path, {"providers": {"openai": {"timeout_ms": bad}}})
    store = ProviderConfigStore(path, environ={})

    with pytest.raises(ConfigurationError, match="timeout_ms"):
        store.get_provider_config("openai")
