"""
High-level agent implementations.

Defines:
- AskAgent: question-answering agent (no tools), optionally keeping the
  conversation history between turns.
- ToolAgent: tool-using agent that expects JSON responses from the model
  to decide whether to call tools or return a final answer.

Both talk to the model through the `ModelSelector`, so `/model select`
takes effect on the next turn. Errors from the core are reported as the
turn's answer instead of ending the session.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from research_agent.core.cancellation import CancellationToken
from research_agent.core.prompts import PromptManager
from research_agent.core.selector import ModelSelector
from research_agent.errors import AgentError
from research_agent.models.base import GenerateRequest, GenerateResponse
from research_agent.tools.base import ToolRegistry
from research_agent.tools.dispatch import ToolDispatcher

logger = logging.getLogger(__name__)

MAX_INVALID_JSON = 2


def format_error(exc: AgentError) -> str:
    return f"Error: {exc}"


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence (``` or ```json) if present."""
    raw = text.strip()
    if not raw.startswith("```"):
        return raw
    lines = raw.splitlines()[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


class AskAgent:
    """
    Q&A agent using the selected model without tools.
    """

    def __init__(
        self,
        selector: ModelSelector,
        prompts: PromptManager,
        keep_history: bool = False,
    ) -> None:
        self.selector = selector
        self.prompts = prompts
        self.keep_history = keep_history
        self.history: List[Dict[str, Any]] = []
        self.last_response: Optional[GenerateResponse] = None

    def _request(self, question: str) -> GenerateRequest:
        messages = [{"role": "system", "content": self.prompts.get_ask_system_prompt()}]
        messages.extend(self.history)
        messages.append({"role": "user", "content": question})
        return GenerateRequest(messages=messages)

    def _remember(self, question: str, answer: str) -> None:
        if self.keep_history:
            self.history.append({"role": "user", "content": question})
            self.history.append({"role": "assistant", "content": answer})

    async def ask(self, question: str, cancel: Optional[CancellationToken] = None) -> str:
        """
        Send a single question to the model and return the answer text.
        """
        try:
            response = await self.selector.send_message(self._request(question), cancel)
        except AgentError as exc:
            logger.warning("ask failed: %s", exc)
            return format_error(exc)
        self.last_response = response
        self._remember(question, response.text)
        return response.text

    async def ask_stream(
        self, question: str, cancel: Optional[CancellationToken] = None
    ) -> AsyncIterator[str]:
        """Yield the answer as text deltas; a failure is yielded as an error line."""
        text = ""
        try:
            async for chunk in self.selector.stream_message(self._request(question), cancel):
                text = chunk.text
                if chunk.delta:
                    yield chunk.delta
        except AgentError as exc:
            logger.warning("streamed ask failed: %s", exc)
            yield ("\n" if text else "") + format_error(exc)
            return
        self._remember(question, text)

    def reset(self) -> None:
        self.history.clear()
        self.last_response = None


class ToolAgent:
    """
    Tool-using agent.

    The model is expected to:
    - Receive a system prompt describing available tools and JSON format.
    - Return JSON either requesting a tool call or providing a final answer.

    JSON formats:

    1) Tool call:
       {
         "tool": "tool_name",
         "tool_input": { ... }
       }

    2) Final answer (no more tool calls):
       {
         "tool": null,
         "final_answer": "..."
       }
    """

    def __init__(
        self,
        selector: ModelSelector,
        prompts: PromptManager,
        tools: ToolRegistry,
        max_steps: int = 4,
    ) -> None:
        self.selector = selector
        self.prompts = prompts
        self.tools = tools
        self.dispatcher = ToolDispatcher(tools)
        self.max_steps = max_steps

    async def run_task(self, task: str, cancel: Optional[CancellationToken] = None) -> str:
        """
        Run a task using the tool-enabled agent loop.

        Conversation pattern (roles) is kept compatible with providers
        like Perplexity that require user/assistant alternation:

        - One system message at the top.
        - Then: user, assistant, user, assistant, ...
        """
        system_prompt = self.prompts.get_agent_system_prompt(self.tools.list_tools())
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": task},
        ]

        invalid_json_attempts = 0

        for step in range(self.max_steps):
            try:
                response = await self.selector.send_message(
                    GenerateRequest(messages=list(messages)), cancel
                )
            except AgentError as exc:
                logger.warning("agent step %d failed: %s", step, exc)
                return format_error(exc)

            messages.append({"role": "assistant", "content": response.text})
            raw = response.text.strip()

            try:
                parsed = json.loads(strip_code_fences(raw))
            except json.JSONDecodeError:
                invalid_json_attempts += 1
                if invalid_json_attempts >= MAX_INVALID_JSON:
                    return raw
                messages.append(
                    {
                        "role": "user",
                        "content": (
                            "Your previous message was not valid JSON. "
                            "Respond with JSON only, as described in the system prompt."
                        ),
                    }
                )
                continue

            if not isinstance(parsed, dict):
                return raw

            tool_name = parsed.get("tool")
            if tool_name is None:
                answer = parsed.get("final_answer") or parsed.get("error")
                return str(answer) if answer else raw

            outcome = await self.dispatcher.dispatch(
                str(tool_name), parsed.get("tool_input"), cancel
            )
            logger.debug("step %d: %s success=%s", step, outcome.tool_name, outcome.success)
            messages.append(self.dispatcher.to_message(outcome))

        return "Maximum tool-calling steps reached without a final answer."
