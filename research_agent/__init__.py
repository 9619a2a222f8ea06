"""
Research agent package root.

This package provides configuration loading, the error taxonomy, the
provider adapters and their configuration store (`models`), routing,
model selection and the agent loop (`core`), the tool system (`tools`)
and the slash-command surface (`commands`).
"""

__all__ = [
    "commands",
    "config",
    "core",
    "errors",
    "models",
    "tools",
]
