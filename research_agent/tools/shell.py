"""
Shell command tool.

Executes commands in a restricted fashion. Only whitelisted programs
may be invoked; the command line is split with shlex and run without a
shell, so separators, pipes and redirections are passed as plain
arguments. Commands run in a safe working directory. Use caution when
enabling this tool, as it can still pose security risks if misconfigured.
"""

import asyncio
import os
import shlex
from typing import Any, Dict, List, Optional

from research_agent.core.cancellation import CancellationToken
from research_agent.errors import ExecutionError, ValidationError
from research_agent.tools.base import Tool, ToolCategory


class ShellCommandTool(Tool):
    """
    Execute a shell command in a restricted environment.

    Tool input schema:
    {
        "command": "ls -la",
        "timeout": 10
    }
    """

    def __init__(self, allowed_commands: List[str], working_dir: str) -> None:
        super().__init__(
            name="shell_command",
            description="Execute a whitelisted shell command in the workspace directory.",
            category=ToolCategory.SYSTEM,
            input_schema={
                "type": "object",
                "properties": {
                    "command": {"type": "string"},
                    "timeout": {"type": "integer", "description": "Seconds before the command is killed."},
                },
                "required": ["command"],
            },
        )
        self.allowed_commands = allowed_commands
        self.working_dir = os.path.abspath(working_dir)
        os.makedirs(self.working_dir, exist_ok=True)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "ShellCommandTool":
        allowed_commands = cfg.get("allowed_commands", ["ls", "echo"])
        working_dir = cfg.get("working_dir", "workspace")
        return cls(allowed_commands=allowed_commands, working_dir=working_dir)

    def validate(self, params: Dict[str, Any]) -> bool:
        if not super().validate(params):
            return False
        try:
            parts = shlex.split(params["command"])
        except ValueError as exc:
            raise ValidationError(f"cannot parse command: {exc}") from exc
        if not parts:
            return False
        # An empty whitelist means no restriction.
        if self.allowed_commands and parts[0] not in self.allowed_commands:
            raise ValidationError(f"command '{parts[0]}' is not allowed")
        return True

    async def execute(
        self, params: Dict[str, Any], cancel: Optional[CancellationToken] = None
    ) -> str:
        argv = shlex.split(params["command"])
        timeout = int(params.get("timeout", 10))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.working_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ExecutionError(f"Cannot run '{argv[0]}': {exc}") from exc
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ExecutionError(f"Command timed out after {timeout} seconds.") from None
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        output = ""
        if stdout:
            output += f"STDOUT:\n{stdout.decode(errors='replace')}\n"
        if stderr:
            output += f"STDERR:\n{stderr.decode(errors='replace')}\n"
        output += f"Return code: {proc.returncode}"
        return output
