"""Tests for the YAML config loader and the session builders."""

import logging

import pytest

import main
from research_agent.config import credentials_path, load_app_config, log_level
from research_agent.errors import ConfigurationError
from research_agent.models.base import ProviderId
from research_agent.models.config_store import ProviderConfigStore


def test_load_app_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("router:\n  allow_fallback: true\n", encoding="utf-8")

    assert load_app_config(str(path)) == {"router": {"allow_fallback": True}}
    assert load_app_config(None) == {}


def test_load_app_config_errors(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("key: [unclosed\n", encoding="utf-8")
    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="not found"):
        load_app_config(str(tmp_path / "missing.yaml"))
    with pytest.raises(ConfigurationError, match="not valid YAML"):
        load_app_config(str(bad))
    with pytest.raises(ConfigurationError, match="mapping"):
        load_app_config(str(listing))


def test_log_level_precedence(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    assert log_level({}) == logging.WARNING

    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert log_level({}) == logging.DEBUG
    assert log_level({"logging": {"level": "ERROR"}}) == logging.ERROR

    with pytest.raises(ConfigurationError):
        log_level({"logging": {"level": "chatty"}})


def test_credentials_path(tmp_path):
    assert credentials_path({}) is None
    assert credentials_path({"credentials_file": str(tmp_path / "c.json")}) == tmp_path / "c.json"


def test_build_content_router_from_keys_and_enabled_sections(tmp_path):
    store = ProviderConfigStore(
        tmp_path / "providers.json",
        environ={"OPENAI_API_KEY": "o-key", "GROQ_API_KEY": "g-key"},
    )
    cfg = {
        "router": {"allow_fallback": True, "default_provider": "ollama"},
        "providers": {
            "ollama": {"enabled": True, "base_url": "http://gpu:11434/v1"},
            "groq": {"enabled": False},
        },
    }

    router = main.build_content_router(cfg, store)

    assert router.providers() == [ProviderId.OPENAI, ProviderId.OLLAMA]
    assert router.default_provider is ProviderId.OLLAMA
    assert router.allow_fallback
    assert router.get_adapter("ollama").config.base_url == "http://gpu:11434/v1"


def test_build_tool_registry_only_enabled_tools(tmp_path):
    cfg = {
        "tools": {
            "read_file": {"enabled": True, "root_dir": str(tmp_path)},
            "write_file": {"enabled": False, "root_dir": str(tmp_path)},
            "web_fetch": {"enabled": True},
        }
    }

    registry = main.build_tool_registry(cfg)

    assert registry.tool_names() == ["read_file", "web_fetch"]


def test_parse_args_subcommands():
    args = main.parse_args(["ask", "what is RAG?", "--provider", "anthropic", "--stream"])

    assert args.command == "ask"
    assert args.provider == "anthropic"
    assert args.stream
