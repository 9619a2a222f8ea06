"""
Base classes for tool plugins.

Tools are self-contained actions that the model can request via JSON
instructions. Each tool declares its input schema, validates parameters,
and performs the requested action asynchronously. Tools are registered in
a `ToolRegistry`, which owns the validate -> execute -> normalize pipeline
and always answers with a `ToolResult`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from research_agent.core.cancellation import CancellationToken, guarded
from research_agent.errors import (
    ConfigurationError,
    OperationCancelled,
    UnknownToolError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class ToolCategory(str, Enum):
    FILE = "file"
    SYSTEM = "system"
    WEB = "web"
    RESEARCH = "research"
    ANALYSIS = "analysis"
    WRITING = "writing"
    INTEGRATION = "integration"


class RegistryState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"


@dataclass
class ToolMetadata:
    timestamp: str
    tool_name: str
    version: str
    execution_time_ms: float


@dataclass
class ToolResult:
    """
    Normalized outcome of a tool invocation.

    Exactly one of `data` / `error` is meaningful: a successful result may
    carry data, a failed one must carry an error message.
    """

    success: bool
    data: Any = None
    error: Optional[str] = None
    metadata: Optional[ToolMetadata] = None

    def __post_init__(self) -> None:
        if self.data is not None and self.error is not None:
            raise ValueError("ToolResult cannot carry both data and an error.")
        if self.success and self.error is not None:
            raise ValueError("A successful ToolResult cannot carry an error.")
        if not self.success and not self.error:
            raise ValueError("A failed ToolResult requires an error message.")

    @classmethod
    def ok(cls, data: Any = None, metadata: Optional[ToolMetadata] = None) -> "ToolResult":
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: str, metadata: Optional[ToolMetadata] = None) -> "ToolResult":
        return cls(success=False, error=error, metadata=metadata)


_JSON_TYPES: Dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
    "array": (list, tuple),
    "object": dict,
}


def validate_required_params(params: Mapping[str, Any], required: Sequence[str]) -> bool:
    """True when every required key is present with a non-empty value."""
    for key in required:
        value = params.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            return False
    return True


@dataclass
class Tool:
    """
    Represents a tool that the agent can invoke.

    Subclasses pass their identity to `__init__` and implement `execute`.
    The default `validate` checks the required keys and the JSON types
    declared in `input_schema`.
    """

    name: str
    description: str
    category: ToolCategory = ToolCategory.SYSTEM
    version: str = "1.0.0"
    input_schema: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @property
    def required_params(self) -> List[str]:
        return list(self.input_schema.get("required", []))

    def validate(self, params: Mapping[str, Any]) -> bool:
        if not validate_required_params(params, self.required_params):
            return False
        properties = self.input_schema.get("properties", {})
        for key, value in params.items():
            expected = _JSON_TYPES.get(properties.get(key, {}).get("type", ""))
            if expected is None or value is None:
                continue
            if isinstance(value, bool) and expected is not bool:
                return False
            if not isinstance(value, expected):
                return False
        return True

    async def execute(
        self, params: Dict[str, Any], cancel: Optional[CancellationToken] = None
    ) -> Any:
        raise NotImplementedError

    def get_help(self) -> str:
        return self.format_help()

    def format_help(self) -> str:
        lines = [
            f"{self.name} (v{self.version}, {self.category.value})",
            f"  {self.description}",
        ]
        properties = self.input_schema.get("properties", {})
        if properties:
            lines.append("  Parameters:")
            required = set(self.required_params)
            for key, spec in properties.items():
                flag = "required" if key in required else "optional"
                text = f"    {key} ({spec.get('type', 'any')}, {flag})"
                if spec.get("description"):
                    text += f": {spec['description']}"
                lines.append(text)
        return "\n".join(lines)

    def to_tool_definition(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "Tool":
        raise NotImplementedError


class ToolRegistry:
    """
    Registers tools by name and executes them.

    `initialize` is the one bulk entry point; it moves the registry from
    UNINITIALIZED through INITIALIZING to INITIALIZED and is a no-op when
    called again. Names are unique: a duplicate is rejected while the
    registry is being populated and ignored once it is live.
    """

    def __init__(self) -> None:
        self.state = RegistryState.UNINITIALIZED
        self._tools: Dict[str, Tool] = {}
        self._by_category: Dict[ToolCategory, List[Tool]] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, tools: Iterable[Tool]) -> None:
        if self.state is RegistryState.INITIALIZED:
            logger.debug("tool registry already initialized")
            return
        if self.state is RegistryState.INITIALIZING:
            raise ConfigurationError("Tool registry initialization is already in progress.")
        self.state = RegistryState.INITIALIZING
        try:
            for tool in tools:
                self.register_tool(tool)
        except Exception:
            self.reset()
            raise
        self.state = RegistryState.INITIALIZED
        logger.info("tool registry initialized with %d tools", len(self._tools))

    def reset(self) -> None:
        self._tools.clear()
        self._by_category.clear()
        self.state = RegistryState.UNINITIALIZED

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_tool(self, tool: Tool) -> None:
        if tool.name in self._tools:
            if self.state is RegistryState.INITIALIZED:
                logger.debug("tool %s already registered, ignoring", tool.name)
                return
            raise ConfigurationError(f"Tool '{tool.name}' is already registered.")
        self._tools[tool.name] = tool
        self._by_category.setdefault(tool.category, []).append(tool)
        logger.debug("registered tool %s (%s)", tool.name, tool.category.value)

    def unregister_tool(self, name: str) -> bool:
        tool = self._tools.pop(name, None)
        if tool is None:
            return False
        siblings = [t for t in self._by_category.get(tool.category, []) if t is not tool]
        if siblings:
            self._by_category[tool.category] = siblings
        else:
            self._by_category.pop(tool.category, None)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_tool(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> List[Tool]:
        return list(self._tools.values())

    def tool_names(self) -> List[str]:
        return list(self._tools)

    def tools_by_category(self, category: "str | ToolCategory") -> List[Tool]:
        return list(self._by_category.get(ToolCategory(category), []))

    def get_tool_help(self, name: str) -> str:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool.get_help()

    def summary(self) -> Dict[str, Any]:
        return {
            "total": len(self._tools),
            "by_category": {
                category.value: len(tools) for category, tools in self._by_category.items()
            },
            "tools": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "category": tool.category.value,
                    "version": tool.version,
                }
                for tool in self._tools.values()
            ],
        }

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_tool(
        self,
        name: str,
        params: Optional[Mapping[str, Any]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ToolResult:
        """
        Run one tool invocation through validate -> execute -> normalize.

        Never raises: every failure (unknown name, invalid parameters,
        implementation error, cancellation) comes back as a failed
        `ToolResult` with metadata filled in.
        """
        started = time.perf_counter()
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("tool %s not found", name)
            return _stamp(ToolResult.fail(str(UnknownToolError(name))), name, "", started)

        if params is not None and not isinstance(params, Mapping):
            logger.info("tool %s rejected non-object parameters", name)
            return _stamp(
                ToolResult.fail(
                    f"Invalid parameters for tool '{name}': parameters must be an object."
                ),
                name,
                tool.version,
                started,
            )
        args = dict(params or {})
        error = _validation_error(tool, args)
        if error is not None:
            logger.info("tool %s rejected parameters: %s", name, error)
            return _stamp(ToolResult.fail(error), name, tool.version, started)

        logger.info("executing tool %s", name)
        try:
            outcome = await guarded(tool.execute(args, cancel), cancel)
        except OperationCancelled as exc:
            result = ToolResult.fail(f"Tool '{name}' was cancelled: {exc}")
        except Exception as exc:  # noqa: BLE001
            logger.warning("tool %s failed: %s", name, exc)
            result = ToolResult.fail(str(exc) or exc.__class__.__name__)
        else:
            result = outcome if isinstance(outcome, ToolResult) else ToolResult.ok(outcome)

        result = _stamp(result, name, tool.version, started)
        logger.info(
            "tool %s finished success=%s in %.1f ms",
            name,
            result.success,
            result.metadata.execution_time_ms if result.metadata else 0.0,
        )
        return result


def _validation_error(tool: Tool, params: Mapping[str, Any]) -> Optional[str]:
    prefix = f"Invalid parameters for tool '{tool.name}'"
    try:
        valid = tool.validate(params)
    except ValidationError as exc:
        return f"{prefix}: {exc}"
    except Exception as exc:  # noqa: BLE001
        logger.debug("validate() of %s raised %r", tool.name, exc)
        return prefix
    if not valid:
        required = ", ".join(tool.required_params)
        return f"{prefix}. Required: {required}." if required else prefix
    return None


def _stamp(result: ToolResult, name: str, version: str, started: float) -> ToolResult:
    result.metadata = ToolMetadata(
        timestamp=datetime.now(timezone.utc).isoformat(),
        tool_name=name,
        version=version,
        execution_time_ms=round((time.perf_counter() - started) * 1000, 3),
    )
    return result
