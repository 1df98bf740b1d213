"""
Comrade Security-Gated Tool Execution

Every tool call requested by a model is routed through the tool engine
before execution:

    Model (tool call) → ToolManager → validation → risk assessment → approval → executor

Components:
- ToolRegistry: Central registry for tools with security metadata
- ParameterValidator: JSON-schema subset checker that reports every violation
- ToolManager: Gate that validates, scores, approves and executes calls
- ToolDefinition: Tool schema + security metadata + executor
- Built-in tools: file read/write/list/delete, URL fetch
"""

from comrade.tools.manager import ExecutionRecord, ExecutionStats, SecurityStats, ToolManager
from comrade.tools.models import ToolCategory, ToolSecurity
from comrade.tools.registry import ToolDefinition, ToolRegistry
from comrade.tools.validator import ParameterValidator, ValidationResult

__all__ = [
    "ExecutionRecord",
    "ExecutionStats",
    "ParameterValidator",
    "SecurityStats",
    "ToolCategory",
    "ToolDefinition",
    "ToolManager",
    "ToolRegistry",
    "ToolSecurity",
    "ValidationResult",
]
