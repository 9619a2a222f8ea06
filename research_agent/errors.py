"""
Error taxonomy shared by the router, the config store and the tool registry.

Every message names the failing component (provider id or tool name) and,
where one exists, a short remediation hint.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional


class AgentError(Exception):
    """Base class for all errors raised by the agent core."""


class ConfigurationError(AgentError):
    """Raised when a credential, model default or config file is missing or invalid."""


class UnknownProviderError(ConfigurationError):
    """Raised when a provider id is not known or has no registered adapter."""

    def __init__(self, provider: str, known: Optional[List[str]] = None) -> None:
        self.provider = provider
        self.known = list(known or [])
        message = f"Unknown provider '{provider}'."
        if self.known:
            message += f" Valid providers: {', '.join(self.known)}."
        message += " Use '/model providers' to list configured providers."
        super().__init__(message)


class ValidationError(AgentError):
    """Raised when tool parameters fail validation."""


class UnknownToolError(AgentError):
    """Raised when a tool name is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Tool '{name}' not found. Use the tool list to see valid names."
        )


class ExecutionError(AgentError):
    """Raised by a tool implementation that failed while executing."""


class OperationCancelled(AgentError):
    """Raised when a cancellation token fires while an operation is pending."""


class ProviderErrorKind(str, Enum):
    AUTH = "auth"
    QUOTA = "quota"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    UNAVAILABLE = "unavailable"
    CANCELLED = "cancelled"
    UNSUPPORTED = "unsupported"


# Only these kinds may trigger the single fallback hop.
FALLBACK_KINDS = frozenset({ProviderErrorKind.AUTH, ProviderErrorKind.QUOTA})


class ProviderError(AgentError):
    """
    Raised when a provider adapter fails to serve a request.

    Adapters translate SDK-specific exceptions into this type so that no
    backend exception class leaks past the adapter boundary.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        kind: ProviderErrorKind = ProviderErrorKind.UNAVAILABLE,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        self.message = message
        self.provider = provider
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after
        self.context: List[str] = []
        self.fallback_error: Optional[AgentError] = None
        super().__init__(message)

    @property
    def retryable_by_fallback(self) -> bool:
        return self.kind in FALLBACK_KINDS

    def add_context(self, note: str) -> "ProviderError":
        self.context.append(note)
        return self

    def __str__(self) -> str:
        text = f"[{self.provider}:{self.kind.value}] {self.message}"
        if self.context:
            text += "; " + "; ".join(self.context)
        return text
