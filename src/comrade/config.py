"""
Comrade Settings

Process-wide settings with environment overrides. Per-agent settings live
in AgentConfig (comrade.providers.base); per-request overrides in
ChatOptions.

Environment variables:
    COMRADE_LOG_LEVEL           DEBUG, INFO, WARNING, ERROR (default INFO)
    COMRADE_LOG_JSON            1/true for JSON log lines
    COMRADE_SECURITY_LEVEL      restricted, normal, elevated (default normal)
    COMRADE_APPROVAL_TIMEOUT    seconds before an unanswered prompt is denied
    COMRADE_EXECUTION_TIMEOUT   hard executor time limit in seconds (unset: none)
    COMRADE_CONCURRENT_TOOLS    1/true to run low/medium tool calls concurrently
    COMRADE_WORKSPACE           root directory for the built-in file tools
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

from comrade.core.models import SecurityLevel
from comrade.safety.approval import DEFAULT_APPROVAL_TIMEOUT

_TRUE = {"1", "true", "yes", "on"}


class ComradeSettings(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    security_level: SecurityLevel = SecurityLevel.NORMAL
    approval_timeout: float | None = Field(default=DEFAULT_APPROVAL_TIMEOUT, gt=0)
    execution_timeout: float | None = Field(default=None, gt=0)
    concurrent_tool_execution: bool = False
    workspace_root: str = "."

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ComradeSettings:
        """Build settings from environment variables, ignoring unset ones."""
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        if "COMRADE_LOG_LEVEL" in env:
            values["log_level"] = env["COMRADE_LOG_LEVEL"].upper()
        if "COMRADE_LOG_JSON" in env:
            values["log_json"] = env["COMRADE_LOG_JSON"].lower() in _TRUE
        if "COMRADE_SECURITY_LEVEL" in env:
            values["security_level"] = env["COMRADE_SECURITY_LEVEL"].lower()
        if "COMRADE_APPROVAL_TIMEOUT" in env:
            values["approval_timeout"] = float(env["COMRADE_APPROVAL_TIMEOUT"])
        if "COMRADE_EXECUTION_TIMEOUT" in env:
            values["execution_timeout"] = float(env["COMRADE_EXECUTION_TIMEOUT"])
        if "COMRADE_CONCURRENT_TOOLS" in env:
            values["concurrent_tool_execution"] = env["COMRADE_CONCURRENT_TOOLS"].lower() in _TRUE
        if "COMRADE_WORKSPACE" in env:
            values["workspace_root"] = env["COMRADE_WORKSPACE"]
        return cls.model_validate(values)
