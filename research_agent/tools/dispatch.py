"""
Bridge between conversational tool calls and the tool registry.

The model asks for a tool by name with JSON arguments; the dispatcher
decodes those arguments, runs the tool through the registry and renders
the `ToolResult` back into text the model can read.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from research_agent.core.cancellation import CancellationToken
from research_agent.tools.base import ToolRegistry, ToolResult

logger = logging.getLogger(__name__)


@dataclass
class DispatchOutcome:
    tool_name: str
    success: bool
    content: str
    result: ToolResult


def render_result(name: str, result: ToolResult) -> str:
    if not result.success:
        return f"Error in tool '{name}': {result.error}"
    data = result.data
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


class ToolDispatcher:
    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def dispatch(
        self,
        name: str,
        arguments: Any = None,
        cancel: Optional[CancellationToken] = None,
    ) -> DispatchOutcome:
        params = _decode_arguments(arguments)
        if params is None:
            logger.info("undecodable arguments for tool %s: %r", name, arguments)
            result = ToolResult.fail(
                f"Invalid parameters for tool '{name}': arguments must be a JSON object."
            )
        else:
            result = await self.registry.execute_tool(name, params, cancel)
        return DispatchOutcome(
            tool_name=name,
            success=result.success,
            content=render_result(name, result),
            result=result,
        )

    @staticmethod
    def to_message(outcome: DispatchOutcome) -> Dict[str, str]:
        """Conversational message carrying a tool outcome back to the model."""
        status = "succeeded" if outcome.success else "failed"
        return {
            "role": "user",
            "content": f"Tool '{outcome.tool_name}' {status}. Result:\n{outcome.content}",
        }


def _decode_arguments(arguments: Any) -> Optional[Dict[str, Any]]:
    if arguments is None:
        return {}
    if isinstance(arguments, Mapping):
        return dict(arguments)
    if isinstance(arguments, (str, bytes)):
        if not arguments.strip():
            return {}
        try:
            decoded = json.loads(arguments)
        except ValueError:
            return None
        return dict(decoded) if isinstance(decoded, dict) else None
    return None
