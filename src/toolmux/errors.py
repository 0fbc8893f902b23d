"""
Exception hierarchy for toolmux.

All toolmux exceptions inherit from ToolmuxError, allowing callers to catch
every toolmux-specific exception with a single except clause.

Exception Categories:
    - ProviderError: A provider could not be admitted, or died while live
    - ToolError: Lookup, definition, or timeout problems for a single tool
    - ConfigError: The configuration file could not be loaded

Tool *execution* failures are deliberately absent from this module. A tool
call that was dispatched and failed on the provider side resolves to a value
(an "Error: ..." string, or {"success": False, "errorMessage": ...} for
dynamic tools) so the agent can read it and react in conversation.

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (provider, tool, timeout where applicable)
    - Errors are both human-readable and machine-parseable
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Provider errors: 1xxx
ERROR_PROVIDER_UNAVAILABLE = 1001
ERROR_PROVIDER_DUPLICATE = 1002
ERROR_PROVIDER_CRASHED = 1003
ERROR_PROVIDER_PROTOCOL = 1004

# Tool errors: 2xxx
ERROR_TOOL_UNKNOWN = 2001
ERROR_TOOL_TIMEOUT = 2002
ERROR_TOOL_DEFINITION = 2003

# Config errors: 3xxx
ERROR_CONFIG_INVALID = 3001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class ToolmuxError(Exception):
    """
    Base exception for all toolmux errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Provider Errors
# =============================================================================


@dataclass
class ProviderError(ToolmuxError):
    """
    Base class for provider lifecycle errors.

    Attributes:
        provider: Name of the provider involved
    """

    provider: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["provider"] = self.provider


@dataclass
class ProviderUnavailableError(ProviderError):
    """
    Raised when a provider fails to start, handshake, or pass its health check.

    A provider that raises this during bootstrap is never admitted to the store.
    """

    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Provider {self.provider} is unavailable: {self.reason}"
        if self.code == 0:
            self.code = ERROR_PROVIDER_UNAVAILABLE
        if not self.suggestion:
            self.suggestion = "Check the provider command or URL and that the provider is running"
        super().__post_init__()
        self.context["reason"] = self.reason


@dataclass
class DuplicateProviderError(ProviderError):
    """Raised when adding a provider under a name that is already registered."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Provider already registered: {self.provider}"
        if self.code == 0:
            self.code = ERROR_PROVIDER_DUPLICATE
        if not self.suggestion:
            self.suggestion = "Remove the existing provider first or choose another name"
        super().__post_init__()


@dataclass
class ProviderCrashedError(ProviderError):
    """
    Raised when a live provider's transport dies.

    Every in-flight call on the provider fails with this error, and the
    adapter stays dead until it is explicitly removed.
    """

    exit_code: int | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Provider {self.provider} exited unexpectedly (exit code {self.exit_code})"
        if self.code == 0:
            self.code = ERROR_PROVIDER_CRASHED
        if not self.suggestion:
            self.suggestion = "Remove the provider and add it again to restart it"
        super().__post_init__()
        self.context["exit_code"] = self.exit_code


@dataclass
class ProviderProtocolError(ProviderError):
    """Raised when a provider replies with something that is not valid protocol."""

    detail: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Protocol error from provider {self.provider}: {self.detail}"
        if self.code == 0:
            self.code = ERROR_PROVIDER_PROTOCOL
        super().__post_init__()
        self.context["detail"] = self.detail


# =============================================================================
# Tool Errors
# =============================================================================


@dataclass
class ToolError(ToolmuxError):
    """
    Base class for tool errors.

    Attributes:
        tool: Name of the tool involved
    """

    tool: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["tool"] = self.tool


@dataclass
class UnknownToolError(ToolError):
    """Raised when invoking a tool name that is not in the current registry."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown tool: {self.tool}"
        if self.code == 0:
            self.code = ERROR_TOOL_UNKNOWN
        if not self.suggestion:
            self.suggestion = "List the available tools; the provider may have been removed"
        super().__post_init__()


@dataclass
class ToolTimeoutError(ToolError):
    """Raised when a provider does not answer a tool call in time."""

    provider: str = ""
    timeout_seconds: float = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Tool {self.tool} timed out after {self.timeout_seconds}s"
        if self.code == 0:
            self.code = ERROR_TOOL_TIMEOUT
        super().__post_init__()
        self.context.update({
            "provider": self.provider,
            "timeout_seconds": self.timeout_seconds,
        })


@dataclass
class ToolDefinitionError(ToolError):
    """Raised when a dynamic tool cannot be compiled from its definition."""

    detail: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid definition for tool {self.tool}: {self.detail}"
        if self.code == 0:
            self.code = ERROR_TOOL_DEFINITION
        super().__post_init__()
        self.context["detail"] = self.detail


# =============================================================================
# Config Errors
# =============================================================================


@dataclass
class ConfigError(ToolmuxError):
    """Raised when the configuration file is missing or invalid."""

    path: str = ""
    detail: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration {self.path}: {self.detail}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context.update({"path": self.path, "detail": self.detail})
