"""
Comrade Custom Exceptions

Structured exception hierarchy for the Comrade bridge and tool engine.
All Comrade-specific exceptions inherit from ComradeError.

Exception hierarchy:
    ComradeError
    +-- ToolError                         (a single tool call could not run)
    |   +-- ToolNotFoundError             (no tool registered under that name)
    |   +-- InvalidParametersError        (parameters fail the tool's schema)
    |   +-- SecurityViolationError        (policy forbids the call)
    |   +-- UserDeniedError               (the user declined the call)
    |   +-- ExecutorFailureError          (the executor itself raised)
    +-- RegistryError                     (tool registration failure)
    |   +-- DuplicateToolError
    |   +-- InvalidToolDefinitionError
    +-- ProviderError                     (LLM provider failure)
        +-- TransportError                (network or HTTP level failure)
        |   +-- ProviderHTTPError         (non-2xx response)
        |   +-- StreamingNotAllowedError  (environment refused a stream)
        +-- MalformedProviderResponseError
"""

from __future__ import annotations


class ComradeError(Exception):
    """Base exception for all Comrade errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


# ─── Tool execution ─────────────────────────────────────────


class ToolError(ComradeError):
    """Base class for errors raised while handling one tool call.

    Every subclass carries a stable ``code`` that is copied into the
    failed ToolResult handed back to the model.
    """

    code = "TOOL_ERROR"

    def __init__(self, tool_name: str, message: str, details: dict | None = None):
        super().__init__(
            message,
            details={"tool_name": tool_name, "code": self.code, **(details or {})},
        )
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Raised when a call names a tool that is not registered."""

    code = "TOOL_NOT_FOUND"

    def __init__(self, tool_name: str, details: dict | None = None):
        super().__init__(tool_name, f"Tool '{tool_name}' not found", details=details)


class InvalidParametersError(ToolError):
    """Raised when call parameters fail schema validation.

    The message joins every validator error with ", ".
    """

    code = "INVALID_PARAMETERS"

    def __init__(self, tool_name: str, errors: list[str], details: dict | None = None):
        super().__init__(
            tool_name,
            f"Invalid parameters: {', '.join(errors)}",
            details={"errors": list(errors), **(details or {})},
        )
        self.errors = list(errors)


class SecurityViolationError(ToolError):
    """Raised when policy forbids a call (blocked, missing permission, host)."""

    code = "SECURITY_VIOLATION"

    def __init__(
        self,
        tool_name: str,
        reason: str,
        warnings: list[str] | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            tool_name,
            f"Security violation: {reason}",
            details={"reason": reason, "warnings": warnings or [], **(details or {})},
        )
        self.reason = reason
        self.warnings = warnings or []


class UserDeniedError(ToolError):
    """Raised when the user declines, dismisses or times out an approval."""

    code = "USER_DENIED"

    def __init__(self, tool_name: str, reason: str = "User denied tool execution", details: dict | None = None):
        super().__init__(tool_name, reason, details=details)
        self.reason = reason


class ExecutorFailureError(ToolError):
    """Raised when a tool executor fails or exceeds its time limit."""

    code = "EXECUTION_ERROR"

    def __init__(self, tool_name: str, message: str, details: dict | None = None):
        super().__init__(
            tool_name,
            f"Tool '{tool_name}' execution failed: {message}",
            details=details,
        )


# ─── Registry ───────────────────────────────────────────────


class RegistryError(ComradeError):
    """Base class for tool registration failures."""


class DuplicateToolError(RegistryError):
    """Raised when a tool name is registered twice."""

    def __init__(self, tool_name: str):
        super().__init__(
            f"Tool '{tool_name}' is already registered",
            details={"tool_name": tool_name},
        )
        self.tool_name = tool_name


class InvalidToolDefinitionError(RegistryError):
    """Raised when a tool definition is missing or has mistyped fields."""

    def __init__(self, tool_name: str, problem: str):
        super().__init__(
            f"Invalid tool definition '{tool_name}': {problem}",
            details={"tool_name": tool_name, "problem": problem},
        )
        self.tool_name = tool_name
        self.problem = problem


# ─── Providers ──────────────────────────────────────────────


class ProviderError(ComradeError):
    """Base exception for LLM provider errors."""

    def __init__(self, provider_name: str, message: str, details: dict | None = None):
        super().__init__(
            f"Provider '{provider_name}' error: {message}",
            details={"provider_name": provider_name, **(details or {})},
        )
        self.provider_name = provider_name


class TransportError(ProviderError):
    """Raised when the provider endpoint cannot be reached or read."""


class ProviderHTTPError(TransportError):
    """Raised when the provider answers with a non-2xx status."""

    def __init__(self, provider_name: str, status_code: int, body: str = "", details: dict | None = None):
        super().__init__(
            provider_name,
            f"HTTP {status_code}: {body[:200]}" if body else f"HTTP {status_code}",
            details={"status_code": status_code, **(details or {})},
        )
        self.status_code = status_code
        self.body = body


class StreamingNotAllowedError(TransportError):
    """Raised when the environment refuses a streaming request."""

    def __init__(self, provider_name: str, status_code: int):
        super().__init__(
            provider_name,
            f"streaming refused with HTTP {status_code}",
            details={"status_code": status_code},
        )
        self.status_code = status_code


class MalformedProviderResponseError(ProviderError):
    """Raised when a provider body cannot be decoded into a response."""
