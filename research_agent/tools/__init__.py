"""
Tool plugin system.

Tools implement capabilities the agent can request, such as web searches,
fetching and downloading documents, reading and writing files, and
executing limited shell commands. Tools are registered in the
`ToolRegistry`, invoked through the `ToolDispatcher`, and described to
the model in the system prompt.
"""

__all__ = [
    "base",
    "dispatch",
    "cache",
    "batch",
    "web",
    "files",
    "shell",
]
