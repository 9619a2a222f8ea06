"""
Core logic for the research agent.

This subpackage provides the content router, which directs requests to
the adapter of the active provider and applies the fallback policy, the
model selector holding the active (provider, model) pair, the agent
classes that coordinate interactions, prompt management, and the
cancellation token threaded through every call.
"""

__all__ = [
    "cancellation",
    "router",
    "selector",
    "agent",
    "prompts",
]
