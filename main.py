from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from research_agent.commands import HELP_TEXT, CommandProcessor
from research_agent.config import credentials_path, load_app_config, log_level
from research_agent.core.agent import AskAgent, ToolAgent
from research_agent.core.cancellation import CancellationToken
from research_agent.core.prompts import PromptManager
from research_agent.core.router import ContentRouter
from research_agent.core.selector import ModelSelector
from research_agent.errors import AgentError
from research_agent.models.base import ProviderId
from research_agent.models.config_store import ProviderConfigStore
from research_agent.models.factory import build_adapter
from research_agent.tools.base import Tool, ToolRegistry
from research_agent.tools.batch import BatchDownloadTool
from research_agent.tools.files import ReadFileTool, WriteFileTool
from research_agent.tools.shell import ShellCommandTool
from research_agent.tools.web import WebFetchTool, WebSearchTool

logger = logging.getLogger("research_agent.cli")

# config.yaml `tools:` key -> tool class
TOOL_CLASSES = {
    "shell": ShellCommandTool,
    "read_file": ReadFileTool,
    "write_file": WriteFileTool,
    "web_search": WebSearchTool,
    "web_fetch": WebFetchTool,
    "batch_download": BatchDownloadTool,
}


# --------------------------------------------------------------------------------------
# Router / tool registry builders
# --------------------------------------------------------------------------------------


def build_content_router(cfg: Dict[str, Any], store: ProviderConfigStore) -> ContentRouter:
    """
    Build the content router with one adapter per configured provider.

    A provider is configured when the credentials file or the environment
    holds a key for it, or when its config.yaml section sets `enabled: true`
    (for keyless backends such as a local Ollama). `enabled: false` in
    config.yaml turns a provider off even if a key exists.
    """
    router_cfg = cfg.get("router", {}) or {}
    providers_cfg = cfg.get("providers", {}) or {}
    router = ContentRouter(allow_fallback=bool(router_cfg.get("allow_fallback", False)))

    wanted: List[ProviderId] = store.list_configured_providers()
    for name, provider_cfg in providers_cfg.items():
        if (provider_cfg or {}).get("enabled", False):
            pid = ProviderId.parse(name)
            if pid not in wanted:
                wanted.append(pid)

    for pid in wanted:
        provider_cfg = providers_cfg.get(pid.value) or {}
        if provider_cfg.get("enabled") is False:
            logger.info("provider %s disabled in config", pid.value)
            continue
        router.register_adapter(build_adapter(store, pid, provider_cfg))

    default = router_cfg.get("default_provider") or store.resolve_default_provider()
    if default:
        pid = ProviderId.parse(default)
        if router.has_adapter(pid):
            router.default_provider = pid
        else:
            logger.warning(
                "default provider %s has no adapter; using %s", pid.value, router.default_provider
            )
    return router


def build_tool_registry(cfg: Dict[str, Any]) -> ToolRegistry:
    """
    Build the tool registry from config.yaml.

    Tools are registered only if they are enabled in the `tools:` section.
    Each tool class exposes `from_config(cfg)` taking its own section.
    """
    tools_cfg = cfg.get("tools", {}) or {}
    tools: List[Tool] = []
    for key, tool_cls in TOOL_CLASSES.items():
        tool_cfg = tools_cfg.get(key)
        if tool_cfg and tool_cfg.get("enabled", False):
            tools.append(tool_cls.from_config(tool_cfg))

    registry = ToolRegistry()
    registry.initialize(tools)
    return registry


def build_session(cfg: Dict[str, Any]) -> Tuple[ModelSelector, PromptManager, CommandProcessor]:
    store = ProviderConfigStore(credentials_path(cfg))
    router = build_content_router(cfg, store)
    selector = ModelSelector(router)
    prompts = PromptManager(cfg.get("prompts", {}))
    commands = CommandProcessor(store, selector, cfg.get("providers", {}))
    return selector, prompts, commands


# --------------------------------------------------------------------------------------
# Interactive chat loop
# --------------------------------------------------------------------------------------


def _fallback_note(agent: AskAgent) -> Optional[str]:
    response = agent.last_response
    if response is None or not response.fallback or response.fallback_from is None:
        return None
    return f"[{response.fallback_from.value} failed; answered by {response.provider.value}]"


async def _run_cancellable(coro_factory, token: CancellationToken):
    """Run one turn; Ctrl+C cancels the turn instead of ending the session."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted by user")
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        return await coro_factory()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def interactive_chat(
    mode: str,
    selector: ModelSelector,
    prompts: PromptManager,
    tools: ToolRegistry,
    commands: CommandProcessor,
    max_steps: int = 4,
    stream: bool = True,
) -> None:
    """
    Terminal chat loop.

    mode:
      - "ask":   Q&A mode with conversation history, no tools.
      - "agent": tool-using mode (files, web, shell, downloads).

    Lines starting with "/" are slash commands (see /help). The session
    keeps running until the user types /exit or /quit, or sends EOF.
    """
    ask_agent = AskAgent(selector, prompts, keep_history=True)
    tool_agent = ToolAgent(selector, prompts, tools, max_steps=max_steps)

    print(f"\n[Interactive chat started in {mode.upper()} mode]")
    print(await commands.handle("/model current"))
    print("Type /help for commands, /exit to end the session.\n")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You> ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("\n[Session ended]")
            break
        if not user_input:
            continue
        if user_input.lower() in {"/exit", "/quit"}:
            print("Bye")
            break
        if user_input.lower() == "/clear":
            ask_agent.reset()
            print("History cleared.")
            continue
        if commands.is_command(user_input):
            print(await commands.handle(user_input))
            continue

        token = CancellationToken()
        if mode == "ask" and stream:
            async def turn() -> None:
                print("Assistant> ", end="", flush=True)
                async for delta in ask_agent.ask_stream(user_input, token):
                    print(delta, end="", flush=True)
                print()

            await _run_cancellable(turn, token)
        elif mode == "ask":
            reply = await _run_cancellable(lambda: ask_agent.ask(user_input, token), token)
            note = _fallback_note(ask_agent)
            if note:
                print(note)
            print("Assistant> ", reply)
        else:
            reply = await _run_cancellable(lambda: tool_agent.run_task(user_input, token), token)
            print("Assistant> ", reply)


# --------------------------------------------------------------------------------------
# CLI
# --------------------------------------------------------------------------------------


def _add_model_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--provider",
        help="Provider name (e.g., openai, anthropic, gemini). Defaults to the configured default.",
    )
    parser.add_argument(
        "--model",
        help="Model id for the chosen provider (see '/model list').",
    )


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Multi-provider research agent (ask mode, agent mode, and interactive chat).",
        epilog=HELP_TEXT,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        help="Path to config.yaml. Optional; credentials can come from the environment.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ask_parser = subparsers.add_parser("ask", help="Single question (no tools).")
    _add_model_args(ask_parser)
    ask_parser.add_argument("--stream", action="store_true", help="Stream the answer.")
    ask_parser.add_argument("question", help="User question to send to the model.")

    agent_parser = subparsers.add_parser("agent", help="Run a single agent task (with tools).")
    _add_model_args(agent_parser)
    agent_parser.add_argument(
        "--max-steps",
        type=int,
        default=4,
        help="Maximum tool-calling steps for the agent.",
    )
    agent_parser.add_argument("task", help="Task description for the agent.")

    chat_parser = subparsers.add_parser("chat", help="Interactive chat session (ask or agent mode).")
    chat_parser.add_argument(
        "--mode",
        choices=["ask", "agent"],
        default="ask",
        help="Chat mode: 'ask' for normal Q&A, 'agent' for tool-using agent.",
    )
    _add_model_args(chat_parser)
    chat_parser.add_argument(
        "--max-steps",
        type=int,
        default=4,
        help="Maximum tool-calling steps in agent mode.",
    )
    chat_parser.add_argument(
        "--no-stream",
        action="store_true",
        help="Wait for complete answers instead of streaming them in ask mode.",
    )

    return parser.parse_args(argv)


# --------------------------------------------------------------------------------------
# main()
# --------------------------------------------------------------------------------------


async def run(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    selector, prompts, commands = build_session(config)
    tools = build_tool_registry(config)

    if args.provider or args.model:
        provider = args.provider or selector.router.default_provider
        if provider is None or not args.model:
            print(
                "Error: --model is required with --provider, and a provider must be configured.",
                file=sys.stderr,
            )
            return 2
        await selector.select_model(provider, args.model)

    if args.command == "chat":
        await interactive_chat(
            mode=args.mode,
            selector=selector,
            prompts=prompts,
            tools=tools,
            commands=commands,
            max_steps=args.max_steps,
            stream=not args.no_stream,
        )
        return 0

    if args.command == "ask":
        ask_agent = AskAgent(selector, prompts)
        if args.stream:
            async for delta in ask_agent.ask_stream(args.question):
                print(delta, end="", flush=True)
            print()
        else:
            print(await ask_agent.ask(args.question))
        return 0

    if args.command == "agent":
        tool_agent = ToolAgent(selector, prompts, tools, max_steps=args.max_steps)
        print(await tool_agent.run_task(args.task))
        return 0

    raise SystemExit(f"Unknown command: {args.command!r}")


def main() -> None:
    # Load environment variables from .env (if present)
    load_dotenv()

    args = parse_args(sys.argv[1:])

    try:
        config = load_app_config(args.config)
        logging.basicConfig(
            level=log_level(config),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        code = asyncio.run(run(args, config))
    except AgentError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 1
    except KeyboardInterrupt:
        code = 130
    raise SystemExit(code)


if __name__ == "__main__":
    main()
