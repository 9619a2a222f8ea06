"""
Provider configuration store.

Resolves a `ProviderConfig` for each provider by merging, in strictly
decreasing priority:

1. explicit values passed at call time,
2. the persisted user configuration file (JSON),
3. the provider's credential environment variable,
4. built-in defaults.

Mutations only touch the in-memory document; `save()` writes it back. The
file is not locked, so concurrent external writers can clobber each other.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from research_agent.errors import ConfigurationError
from research_agent.models.base import ProviderConfig, ProviderId, SamplingParams

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIALS_FILE = Path.home() / ".research-agent" / "providers.json"
CREDENTIALS_FILE_ENV = "RESEARCH_AGENT_CREDENTIALS"

ENV_VAR_MAPPING: Dict[ProviderId, str] = {
    ProviderId.OPENAI: "OPENAI_API_KEY",
    ProviderId.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderId.GEMINI: "GEMINI_API_KEY",
    ProviderId.DEEPSEEK: "DEEPSEEK_API_KEY",
    ProviderId.QWEN: "QWEN_API_KEY",
    ProviderId.GROQ: "GROQ_API_KEY",
    ProviderId.MISTRAL: "MISTRAL_API_KEY",
    ProviderId.PERPLEXITY: "PERPLEXITY_API_KEY",
    ProviderId.TOGETHER: "TOGETHER_API_KEY",
    ProviderId.FIREWORKS: "FIREWORKS_API_KEY",
    ProviderId.OLLAMA: "OLLAMA_API_KEY",
}

DEFAULT_MODELS: Dict[ProviderId, str] = {
    ProviderId.OPENAI: "gpt-4o-mini",
    ProviderId.ANTHROPIC: "claude-3-5-haiku-20241022",
    ProviderId.GEMINI: "gemini-1.5-flash",
    ProviderId.DEEPSEEK: "deepseek-chat",
    ProviderId.QWEN: "qwen-turbo",
    ProviderId.GROQ: "llama-3.1-8b-instant",
    ProviderId.MISTRAL: "mistral-small-latest",
    ProviderId.PERPLEXITY: "sonar",
    ProviderId.TOGETHER: "meta-llama/Llama-3.3-70B-Instruct-Turbo",
    ProviderId.FIREWORKS: "accounts/fireworks/models/llama-v3p1-70b-instruct",
    ProviderId.OLLAMA: "llama3.1",
}

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_SAMPLING = SamplingParams(temperature=0.7, top_p=1.0, max_tokens=2048)

# Keys accepted in a provider entry of the persisted file.
PROVIDER_FIELDS = ("api_key", "base_url", "default_model", "timeout_ms", "extras")

# Explicit override keys accepted by get_provider_config().
OVERRIDE_FIELDS = ("api_key", "base_url", "model", "timeout_ms", "sampling", "extras")


def default_credentials_path() -> Path:
    env_path = os.getenv(CREDENTIALS_FILE_ENV)
    return Path(env_path).expanduser() if env_path else DEFAULT_CREDENTIALS_FILE


def _timeout_ms(provider: ProviderId, *layers: Any) -> int:
    """First layer that is set wins; 0 is a valid value (no timeout)."""
    value = next((v for v in layers if v is not None), DEFAULT_TIMEOUT_MS)
    try:
        timeout = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Invalid timeout_ms {value!r} for provider '{provider.value}'; expected milliseconds."
        ) from None
    if timeout < 0:
        raise ConfigurationError(
            f"Invalid timeout_ms {value!r} for provider '{provider.value}'; must not be negative."
        )
    return timeout


def mask_api_key(key: str) -> str:
    if len(key) <= 8:
        return "*" * len(key)
    return key[:4] + "*" * (len(key) - 8) + key[-4:]


class ProviderConfigStore:
    """
    Layered provider configuration backed by a single JSON document.

    The file is read lazily on first access; a missing file means an empty
    configuration. Construct one store per process and pass it around
    explicitly.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.path = Path(path) if path is not None else default_credentials_path()
        self._environ = environ
        self._document: Optional[Dict[str, Any]] = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> Dict[str, Any]:
        """Read the backing file (once). Absence is not an error."""
        if self._document is not None:
            return self._document
        document: Dict[str, Any] = {"providers": {}}
        if self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f) or {}
            except (OSError, json.JSONDecodeError) as exc:
                raise ConfigurationError(
                    f"Could not read provider config file '{self.path}': {exc}"
                ) from exc
            if not isinstance(data, dict):
                raise ConfigurationError(
                    f"Provider config file '{self.path}' must contain a JSON object."
                )
            document.update(data)
            if not isinstance(document.get("providers"), dict):
                document["providers"] = {}
        self._document = document
        return document

    def save(self) -> None:
        """Write the in-memory document to the backing file."""
        document = self.load()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, sort_keys=False)
            f.write("\n")
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            logger.debug("could not restrict permissions on %s", self.path)
        logger.info("saved provider configuration to %s", self.path)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _env(self, name: str) -> Optional[str]:
        environ = self._environ if self._environ is not None else os.environ
        return environ.get(name) or None

    def _entry(self, provider: ProviderId) -> Dict[str, Any]:
        entry = self.load()["providers"].get(provider.value)
        return entry if isinstance(entry, dict) else {}

    def env_api_key(self, provider: ProviderId) -> Optional[str]:
        env_var = ENV_VAR_MAPPING.get(provider)
        return self._env(env_var) if env_var else None

    def get_api_key(
        self, provider: "str | ProviderId"
    ) -> Tuple[Optional[str], Optional[str]]:
        """Return (key, source) where source is "file", "env" or None."""
        pid = ProviderId.parse(provider)
        file_key = self._entry(pid).get("api_key")
        if file_key:
            return file_key, "file"
        env_key = self.env_api_key(pid)
        if env_key:
            return env_key, "env"
        return None, None

    def get_provider_config(
        self,
        provider: "str | ProviderId",
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> ProviderConfig:
        """
        Build the effective configuration snapshot for `provider`.

        Args:
            provider: Provider id (enum or name).
            overrides: Explicit call-time values; keys from OVERRIDE_FIELDS.
                `None` values are treated as absent.

        Raises:
            UnknownProviderError: If the provider id is not recognised.
            ConfigurationError: If an override key is not recognised.
        """
        pid = ProviderId.parse(provider)
        explicit = {k: v for k, v in (overrides or {}).items() if v is not None}
        unknown = set(explicit) - set(OVERRIDE_FIELDS)
        if unknown:
            raise ConfigurationError(
                f"Unknown config override(s) for provider '{pid.value}': {', '.join(sorted(unknown))}"
            )
        entry = self._entry(pid)

        api_key = explicit.get("api_key") or entry.get("api_key") or self.env_api_key(pid)
        model = explicit.get("model") or entry.get("default_model") or DEFAULT_MODELS[pid]
        base_url = explicit.get("base_url") or entry.get("base_url")
        timeout_ms = _timeout_ms(pid, explicit.get("timeout_ms"), entry.get("timeout_ms"))

        sampling = DEFAULT_SAMPLING.merged(
            SamplingParams.from_mapping(self.load().get("sampling"))
        )
        override_sampling = explicit.get("sampling")
        if isinstance(override_sampling, Mapping):
            override_sampling = SamplingParams.from_mapping(override_sampling)
        sampling = sampling.merged(override_sampling)

        extras: Dict[str, Any] = dict(entry.get("extras") or {})
        extras.update(explicit.get("extras") or {})

        return ProviderConfig(
            provider=pid,
            model=model,
            api_key=api_key,
            base_url=base_url,
            timeout_ms=timeout_ms,
            sampling=sampling,
            extras=extras,
        )

    def list_configured_providers(self) -> List[ProviderId]:
        """Providers in the persisted file (file order), then those with an env credential."""
        providers: List[ProviderId] = []
        for name in self.load()["providers"]:
            try:
                pid = ProviderId.parse(name)
            except ConfigurationError:
                logger.warning("ignoring unknown provider '%s' in %s", name, self.path)
                continue
            if pid not in providers:
                providers.append(pid)
        for pid in ProviderId:
            if pid not in providers and self.env_api_key(pid):
                providers.append(pid)
        return providers

    def resolve_default_provider(self) -> Optional[ProviderId]:
        configured = self.load().get("default_provider")
        if configured:
            return ProviderId.parse(configured)
        providers = self.list_configured_providers()
        return providers[0] if providers else None

    def get_default_model(self, provider: "str | ProviderId") -> str:
        pid = ProviderId.parse(provider)
        return self._entry(pid).get("default_model") or DEFAULT_MODELS[pid]

    # ------------------------------------------------------------------
    # Mutations (in memory; call save() to persist)
    # ------------------------------------------------------------------

    def set_provider_config(self, provider: "str | ProviderId", **values: Any) -> None:
        pid = ProviderId.parse(provider)
        unknown = set(values) - set(PROVIDER_FIELDS)
        if unknown:
            raise ConfigurationError(
                f"Unknown provider setting(s) for '{pid.value}': {', '.join(sorted(unknown))}"
            )
        providers = self.load()["providers"]
        entry = dict(providers.get(pid.value) or {})
        entry.update(values)
        entry["last_updated"] = datetime.now(timezone.utc).isoformat()
        providers[pid.value] = entry

    def remove_provider_config(self, provider: "str | ProviderId") -> bool:
        pid = ProviderId.parse(provider)
        document = self.load()
        removed = document["providers"].pop(pid.value, None) is not None
        if document.get("default_provider") == pid.value:
            document.pop("default_provider")
        return removed

    def set_default_provider(self, provider: Optional["str | ProviderId"]) -> None:
        document = self.load()
        if provider is None:
            document.pop("default_provider", None)
            return
        document["default_provider"] = ProviderId.parse(provider).value
