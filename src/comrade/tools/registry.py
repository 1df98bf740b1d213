"""
Comrade Tool Registry

Central registry for all tools the model may call. Each tool is registered
with security metadata (ToolSecurity) that determines how the risk
assessor scores it and how the approval workflow gates it.

The registry also decides which tools a given ExecutionContext may see:
high-tier tools only appear at elevated security, restricted hosts only
see tools allowed there, and the caller must hold every permission a tool
requires.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from comrade.core.models import ChatToolCall, ExecutionContext, RiskTier, SecurityLevel
from comrade.exceptions import DuplicateToolError, InvalidToolDefinitionError
from comrade.tools.models import ToolCategory, ToolSecurity
from comrade.tools.validator import ParameterValidator, ValidationResult, check_schema

ToolExecutor = Callable[[dict[str, Any], ExecutionContext], Any] | Callable[
    [dict[str, Any], ExecutionContext], Awaitable[Any]
]


class ToolDefinition:
    """A tool the model may call, with its schema, security and executor.

    ``security`` may be given as a ToolSecurity or a plain dict; dicts are
    validated when the tool is registered. A tool without security metadata
    is rejected at registration, never defaulted to low risk.
    """

    def __init__(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any],
        executor: ToolExecutor,
        security: ToolSecurity | dict[str, Any] | None = None,
        category: ToolCategory = ToolCategory.GENERAL,
        version: str | None = None,
        examples: list[dict[str, Any]] | None = None,
    ):
        self.name = name
        self.description = description
        self.parameters = parameters
        self.executor = executor
        self.security = security
        self.category = category
        self.version = version
        self.examples = examples or []

    @property
    def risk_tier(self) -> RiskTier:
        return self.security.risk_tier

    @property
    def requires_approval(self) -> bool:
        return self.security.requires_approval

    def schema(self) -> dict[str, Any]:
        """Provider-neutral tool schema (name, description, parameters)."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def __repr__(self) -> str:
        tier = self.security.risk_tier.value if isinstance(self.security, ToolSecurity) else None
        return f"ToolDefinition(name={self.name!r}, tier={tier})"


class ToolRegistry:
    """Central registry for all available tools with security classification.

    Tools are registered at startup and queried per turn.
    """

    def __init__(self, validator: ParameterValidator | None = None) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._validator = validator or ParameterValidator()

    def register(self, tool: ToolDefinition) -> None:
        """Register a tool after checking its definition.

        Raises DuplicateToolError if the name is taken and
        InvalidToolDefinitionError if the definition is malformed. A failed
        registration leaves the registry unchanged.
        """
        name = getattr(tool, "name", None)
        if not isinstance(name, str) or not name.strip():
            raise InvalidToolDefinitionError(str(name), "name must be a non-empty string")
        if name in self._tools:
            raise DuplicateToolError(name)
        if not isinstance(tool.description, str) or not tool.description.strip():
            raise InvalidToolDefinitionError(name, "description must be a non-empty string")
        if not isinstance(tool.parameters, dict):
            raise InvalidToolDefinitionError(name, "parameters must be a JSON schema object")
        schema_problem = check_schema(tool.parameters)
        if schema_problem is not None:
            raise InvalidToolDefinitionError(name, f"parameters is not a valid JSON schema: {schema_problem}")
        if not callable(tool.executor):
            raise InvalidToolDefinitionError(name, "executor must be callable")

        if tool.security is None:
            raise InvalidToolDefinitionError(name, "security metadata is required")
        if isinstance(tool.security, dict):
            try:
                tool.security = ToolSecurity.model_validate(tool.security)
            except ValidationError as e:
                raise InvalidToolDefinitionError(name, f"invalid security metadata: {e.errors()[0]['msg']}") from e
        if not isinstance(tool.security, ToolSecurity):
            raise InvalidToolDefinitionError(name, "security metadata is required")
        if not isinstance(tool.security.risk_tier, RiskTier):
            raise InvalidToolDefinitionError(name, "risk tier must be one of low, medium, high")

        self._tools[name] = tool

    def unregister(self, name: str) -> bool:
        """Remove a tool. Returns False if it was not registered."""
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> ToolDefinition | None:
        """Look up a registered tool by name."""
        return self._tools.get(name)

    def get_all(self) -> list[ToolDefinition]:
        """Return all registered tools in registration order."""
        return list(self._tools.values())

    def by_category(self, category: ToolCategory | str) -> list[ToolDefinition]:
        return [t for t in self._tools.values() if t.category == category]

    def list_available(self, context: ExecutionContext) -> list[ToolDefinition]:
        """Return the tools visible to ``context``.

        Filters by:
        - risk tier: high-tier tools require elevated security
        - host: restricted hosts only see tools allowed there
        - permissions: every required permission must be held by the caller
        """
        result: list[ToolDefinition] = []
        for tool in self._tools.values():
            security = tool.security
            if security.risk_tier == RiskTier.HIGH and context.security_level != SecurityLevel.ELEVATED:
                continue
            if context.restricted_host and not security.allowed_in_restricted_host:
                continue
            if not security.required_permissions <= context.caller_permissions:
                continue
            result.append(tool)
        return result

    def validate_call(self, call: ChatToolCall) -> ValidationResult:
        """Check that a call names a known tool and carries valid parameters."""
        tool = self._tools.get(call.name)
        if tool is None:
            return ValidationResult(errors=[f"Tool '{call.name}' not found"])
        result = ValidationResult()
        if not call.id:
            result.errors.append("Tool call ID is required")
        if call.parse_error:
            result.errors.append(f"Malformed arguments: {call.parse_error}")
            return result
        checked = self._validator.validate(call.parameters, tool.parameters)
        result.errors.extend(checked.errors)
        result.warnings.extend(checked.warnings)
        return result

    def validate_parameters(self, tool: ToolDefinition, parameters: dict[str, Any]) -> ValidationResult:
        return self._validator.validate(parameters, tool.parameters)

    def get_schemas(self, tools: list[ToolDefinition] | None = None) -> list[dict[str, Any]]:
        """Get provider-neutral schemas for a set of tools.

        If tools is None, returns schemas for all registered tools.
        """
        source = tools if tools is not None else list(self._tools.values())
        return [t.schema() for t in source]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
