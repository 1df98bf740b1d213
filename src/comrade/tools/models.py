"""
Comrade Tool System Models

Pydantic models describing the security posture of a registered tool.
Every call to a tool is scored against this metadata, routed through the
approval workflow and recorded in the approval log.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from comrade.core.models import RiskTier


class ToolCategory(str, Enum):
    """Grouping used for listing and filtering tools."""
    FILESYSTEM = "filesystem"
    NETWORK = "network"
    SYSTEM = "system"
    GIT = "git"
    UI = "ui"
    ANALYSIS = "analysis"
    GENERAL = "general"


class ToolSecurity(BaseModel):
    """Security metadata attached to every registered tool.

    Immutable: a tool's declared tier and permissions cannot drift after
    registration.
    """
    model_config = ConfigDict(frozen=True)

    requires_approval: bool = False
    allowed_in_restricted_host: bool = True
    risk_tier: RiskTier = RiskTier.LOW
    required_permissions: frozenset[str] = Field(default_factory=frozenset)
