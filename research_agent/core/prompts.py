"""
Prompt management.

System prompts are read from the `prompts` section of config.yaml, with
built-in defaults for the research assistant. The agent prompt is
completed at run time with the help text of the registered tools.
"""

from typing import Dict, Iterable

from research_agent.tools.base import Tool

DEFAULT_ASK_PROMPT = (
    "You are a research assistant. Answer the user's question accurately and "
    "concisely, say when you are unsure, and never claim to have run tools or "
    "read files in this mode."
)

DEFAULT_AGENT_PROMPT = (
    "You are a research assistant that can call tools to search the web, fetch "
    "and download documents, read and write files in the workspace, and run a "
    "few restricted commands.\n\n"
    "Respond with JSON only, in one of two forms:\n\n"
    "1) To call a tool:\n"
    "{\n"
    '  "tool": "tool_name",\n'
    '  "tool_input": { ... }\n'
    "}\n\n"
    "2) To give the final answer:\n"
    "{\n"
    '  "tool": null,\n'
    '  "final_answer": "..."\n'
    "}\n\n"
    "Tool names and parameters must match the tool list below. If a tool "
    "reports an error, correct the call or explain the problem in your final answer."
)


class PromptManager:
    """
    Store and access system prompts used by ask mode and tool-enabled mode.
    """

    def __init__(self, prompts_cfg: Dict) -> None:
        self.prompts_cfg = prompts_cfg or {}

    def get_ask_system_prompt(self) -> str:
        return self.prompts_cfg.get("ask_system", DEFAULT_ASK_PROMPT)

    def get_agent_system_prompt(self, tools: Iterable[Tool] = ()) -> str:
        """
        Agent-mode system prompt followed by the help text of `tools`.

        Returns:
            The configured (or default) prompt with an "Available tools"
            section appended when any tools are given.
        """
        prompt = self.prompts_cfg.get("agent_system", DEFAULT_AGENT_PROMPT)
        help_blocks = [tool.get_help() for tool in tools]
        if not help_blocks:
            return prompt
        return prompt + "\n\nAvailable tools:\n" + "\n".join(help_blocks)
