"""
Slash commands for the interactive session.

`/model ...` inspects and switches the active model, `/api ...` manages
stored provider credentials. Each command maps onto one Config Store or
Model Selector operation; `/api set` and `/api remove` persist the store
and rebuild the router's adapter for that provider so the change applies
to the next request.
"""

from __future__ import annotations

import logging
import shlex
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from research_agent.core.selector import ModelSelector
from research_agent.errors import AgentError, ConfigurationError, UnknownProviderError
from research_agent.models.base import ProviderId
from research_agent.models.catalog import detect_provider, token_limit
from research_agent.models.config_store import ProviderConfigStore, mask_api_key
from research_agent.models.factory import build_adapter

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /model providers                  list providers with a registered adapter
  /model current                    show the active model
  /model list [provider]            list models (all providers, or one)
  /model select <provider> <model>  switch the active model
  /model select <model>             switch, guessing the provider from the model name
  /api set <provider> <key>         store an API key
  /api get <provider>               show the stored key (masked) and its source
  /api list                         show key status for every provider
  /api remove <provider>            delete the stored configuration for a provider
  /api default <provider>           make a provider the default
  /clear                            forget the conversation history
  /help                             show this help
  /exit                             leave the session"""


class CommandProcessor:
    def __init__(
        self,
        store: ProviderConfigStore,
        selector: ModelSelector,
        providers_cfg: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.store = store
        self.selector = selector
        self.router = selector.router
        self.providers_cfg = dict(providers_cfg or {})
        self._groups: Dict[str, Dict[str, Callable[[List[str]], Awaitable[str]]]] = {
            "model": {
                "providers": self.model_providers,
                "current": self.model_current,
                "list": self.model_list,
                "select": self.model_select,
            },
            "api": {
                "set": self.api_set,
                "get": self.api_get,
                "list": self.api_list,
                "remove": self.api_remove,
                "default": self.api_default,
            },
        }

    @staticmethod
    def is_command(line: str) -> bool:
        return line.strip().startswith("/")

    async def handle(self, line: str) -> str:
        """
        Run one command line and return the text to show the user.

        Errors from the core are rendered as text; they never escape.
        """
        try:
            parts = shlex.split(line.strip().lstrip("/"))
        except ValueError as exc:
            return f"Error: cannot parse command: {exc}"
        if not parts or parts[0] == "help":
            return HELP_TEXT
        group = self._groups.get(parts[0])
        if group is None:
            return f"Unknown command '/{parts[0]}'. Use /help to list commands."
        action = parts[1] if len(parts) > 1 else ""
        handler = group.get(action)
        if handler is None:
            usage = ", ".join(f"/{parts[0]} {name}" for name in group)
            return f"Usage: {usage}"
        try:
            return await handler(parts[2:])
        except AgentError as exc:
            return f"Error: {exc}"

    # ------------------------------------------------------------------
    # /model
    # ------------------------------------------------------------------

    async def model_providers(self, args: List[str]) -> str:
        providers = self.router.providers()
        if not providers:
            return "No providers configured. Use '/api set <provider> <key>'."
        lines = ["Configured providers:"]
        for pid in providers:
            _, source = self.store.get_api_key(pid)
            marker = " (default)" if pid is self.router.default_provider else ""
            lines.append(f"  {pid.value}{marker}  key: {source or 'none'}")
        return "\n".join(lines)

    async def model_current(self, args: List[str]) -> str:
        selection = self.selector.get_current_model()
        if selection is not None:
            return f"Current model: {selection} (context {token_limit(selection.model)} tokens)"
        default = self.router.default_adapter
        if default is None:
            return "No model selected and no default provider configured."
        return f"No model selected; using default {default.name}/{default.config.model}."

    async def model_list(self, args: List[str]) -> str:
        if args:
            models = await self.selector.list_models_for_provider(args[0])
        else:
            models = await self.selector.list_available_models()
        if not models:
            return "No models available."
        current = self.selector.get_current_model()
        lines = []
        for info in models:
            active = (
                current is not None
                and current.provider is info.provider
                and current.model == info.id
            )
            lines.append(
                f"{'*' if active else ' '} {info.provider.value}/{info.id}"
                f"  {info.display_name}  ({info.context_length} tokens)"
            )
        return "\n".join(lines)

    async def model_select(self, args: List[str]) -> str:
        if len(args) == 1:
            provider = detect_provider(args[0])
            if provider is None:
                raise ConfigurationError(
                    f"Cannot tell which provider serves '{args[0]}'. "
                    "Use '/model select <provider> <model>'."
                )
            args = [provider.value, args[0]]
        if len(args) != 2:
            return "Usage: /model select <provider> <model>"
        selection = await self.selector.select_model(args[0], args[1])
        return f"Switched to {selection}."

    # ------------------------------------------------------------------
    # /api
    # ------------------------------------------------------------------

    async def api_set(self, args: List[str]) -> str:
        if len(args) != 2:
            return "Usage: /api set <provider> <key>"
        pid = ProviderId.parse(args[0])
        self.store.set_provider_config(pid, api_key=args[1])
        self.store.save()
        self._refresh_adapter(pid)
        return f"API key for '{pid.value}' saved ({mask_api_key(args[1])})."

    async def api_get(self, args: List[str]) -> str:
        if len(args) != 1:
            return "Usage: /api get <provider>"
        pid = ProviderId.parse(args[0])
        key, source = self.store.get_api_key(pid)
        if not key:
            return f"No API key configured for '{pid.value}'."
        return f"{pid.value}: {mask_api_key(key)} (from {source})"

    async def api_list(self, args: List[str]) -> str:
        default = self.store.resolve_default_provider()
        lines = ["API keys:"]
        for pid in ProviderId:
            key, source = self.store.get_api_key(pid)
            status = f"{mask_api_key(key)} ({source})" if key else "not set"
            marker = " (default)" if pid is default else ""
            lines.append(f"  {pid.value}{marker}: {status}")
        return "\n".join(lines)

    async def api_remove(self, args: List[str]) -> str:
        if len(args) != 1:
            return "Usage: /api remove <provider>"
        pid = ProviderId.parse(args[0])
        removed = self.store.remove_provider_config(pid)
        if not removed:
            return f"No stored configuration for '{pid.value}'."
        self.store.save()
        if self.store.env_api_key(pid) or pid.value in self.providers_cfg:
            self._refresh_adapter(pid)
            return f"Removed stored configuration for '{pid.value}'; environment settings still apply."
        self.router.remove_adapter(pid)
        self.selector.forget_provider(pid)
        return f"Removed configuration for '{pid.value}'."

    async def api_default(self, args: List[str]) -> str:
        if len(args) != 1:
            return "Usage: /api default <provider>"
        pid = ProviderId.parse(args[0])
        if not self.router.has_adapter(pid):
            raise UnknownProviderError(pid.value, [p.value for p in self.router.providers()])
        self.store.set_default_provider(pid)
        self.store.save()
        self.router.default_provider = pid
        return f"Default provider set to '{pid.value}'."

    def _refresh_adapter(self, pid: ProviderId) -> None:
        adapter = build_adapter(self.store, pid, self.providers_cfg.get(pid.value))
        self.router.register_adapter(adapter)
        logger.info("refreshed adapter for %s", pid.value)
