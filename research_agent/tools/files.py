"""
File tools for reading and writing files within a safe workspace.

These tools ensure that the agent can only access files inside a
configured root directory to prevent path traversal attacks. Disk I/O
runs in a worker thread so the event loop stays responsive.
"""

import asyncio
import os
from typing import Any, Dict, Optional

from research_agent.core.cancellation import CancellationToken
from research_agent.errors import ExecutionError
from research_agent.tools.base import Tool, ToolCategory


def resolve_in_root(root_dir: str, rel_path: str) -> str:
    """Absolute path of `rel_path` under `root_dir`; raises if it escapes the root."""
    abs_path = os.path.abspath(os.path.join(root_dir, rel_path))
    if os.path.commonpath([root_dir, abs_path]) != root_dir:
        raise ExecutionError(f"Access denied: '{rel_path}' is outside the workspace root.")
    return abs_path


class ReadFileTool(Tool):
    """
    ReadFileTool reads a text file from a safe directory.

    Tool input schema:
    {
        "path": "relative/path/to/file.txt",
        "max_chars": 8000
    }
    """

    def __init__(self, root_dir: str) -> None:
        super().__init__(
            name="read_file",
            description="Read a text file from the workspace directory.",
            category=ToolCategory.FILE,
            input_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Path relative to the workspace."},
                    "max_chars": {"type": "integer", "description": "Maximum characters to return."},
                },
                "required": ["path"],
            },
        )
        self.root_dir = os.path.abspath(root_dir)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "ReadFileTool":
        root_dir = cfg.get("root_dir", "workspace")
        os.makedirs(root_dir, exist_ok=True)
        return cls(root_dir=root_dir)

    async def execute(
        self, params: Dict[str, Any], cancel: Optional[CancellationToken] = None
    ) -> str:
        rel_path = params["path"]
        max_chars = int(params.get("max_chars", 8000))
        abs_path = resolve_in_root(self.root_dir, rel_path)
        if not os.path.isfile(abs_path):
            raise ExecutionError(f"File '{rel_path}' does not exist.")
        return await asyncio.to_thread(_read_text, abs_path, max_chars)


class WriteFileTool(Tool):
    """
    WriteFileTool writes text to a file within a safe directory.

    Tool input schema:
    {
        "path": "relative/path/to/file.txt",
        "content": "string content",
        "overwrite": false
    }
    """

    def __init__(self, root_dir: str) -> None:
        super().__init__(
            name="write_file",
            description="Write text content to a file in the workspace directory.",
            category=ToolCategory.FILE,
            input_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Path relative to the workspace."},
                    "content": {"type": "string"},
                    "overwrite": {"type": "boolean"},
                },
                "required": ["path"],
            },
        )
        self.root_dir = os.path.abspath(root_dir)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "WriteFileTool":
        root_dir = cfg.get("root_dir", "workspace")
        os.makedirs(root_dir, exist_ok=True)
        return cls(root_dir=root_dir)

    async def execute(
        self, params: Dict[str, Any], cancel: Optional[CancellationToken] = None
    ) -> str:
        rel_path = params["path"]
        content = params.get("content") or ""
        overwrite = bool(params.get("overwrite", False))
        abs_path = resolve_in_root(self.root_dir, rel_path)
        if os.path.exists(abs_path) and not overwrite:
            raise ExecutionError(f"File '{rel_path}' already exists and overwrite is false.")
        await asyncio.to_thread(_write_text, abs_path, content)
        return f"Wrote {len(content)} characters to '{rel_path}'."


def _read_text(path: str, max_chars: int) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read(max_chars)


def _write_text(path: str, content: str) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
