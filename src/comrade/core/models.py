"""
Comrade Core Data Models

All shared types used by the bridge and the tool engine. This module is
the foundation every other component imports from: it depends on nothing
inside the package beyond pydantic.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ─── Enums ───────────────────────────────────────────────────

class Role(str, Enum):
    """Author of a chat message."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class RiskTier(str, Enum):
    """Declared danger class of a tool. Ordered low < medium < high."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def escalate(self) -> RiskTier:
        """Return the next tier up, saturating at HIGH."""
        return _TIER_ORDER[min(self.rank + 1, len(_TIER_ORDER) - 1)]


_TIER_ORDER = [RiskTier.LOW, RiskTier.MEDIUM, RiskTier.HIGH]


class SecurityLevel(str, Enum):
    """Trust level of the calling context."""
    RESTRICTED = "restricted"
    NORMAL = "normal"
    ELEVATED = "elevated"


class FinishReason(str, Enum):
    """Normalized reason a model turn ended."""
    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    ERROR = "error"


class ApprovalDecision(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"


class ApprovalPath(str, Enum):
    """How an approval decision was reached."""
    AUTO_ALLOW = "auto_allow"
    SESSION_ALLOW = "session_allow"
    PROMPT = "prompt"
    BLOCKED = "blocked"


# ─── Conversation ────────────────────────────────────────────

class ChatToolCall(BaseModel):
    """A tool invocation requested by the model.

    ``parse_error`` is set when the streamed arguments never formed a valid
    JSON object. Such a call is answered with a failed result and is never
    executed.
    """
    id: str = Field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")
    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    parse_error: str | None = None


class ChatMessage(BaseModel):
    """One turn in a conversation. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    timestamp: datetime = Field(default_factory=_now)
    tool_calls: tuple[ChatToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None
    is_error: bool = False

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str = "", tool_calls: list[ChatToolCall] | None = None) -> ChatMessage:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls or ()))

    @classmethod
    def tool(cls, call: ChatToolCall, result: ToolResult) -> ChatMessage:
        """Build the message that carries a tool result back to the model."""
        return cls(
            role=Role.TOOL,
            content=result.to_content(),
            tool_call_id=call.id,
            name=call.name,
            is_error=not result.success,
        )


class ExecutionContext(BaseModel):
    """Per-turn identity and trust envelope. Never persisted."""
    model_config = ConfigDict(frozen=True)

    agent_id: str = "default"
    session_id: str = Field(default_factory=lambda: f"session-{uuid.uuid4().hex[:8]}")
    user_id: str | None = None
    caller_permissions: frozenset[str] = frozenset()
    security_level: SecurityLevel = SecurityLevel.NORMAL
    allow_dangerous: bool = False
    restricted_host: bool = False

    def snapshot(self) -> dict[str, Any]:
        """Audit-friendly view of the context."""
        return {
            "agent_id": self.agent_id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "security_level": self.security_level.value,
            "allow_dangerous": self.allow_dangerous,
            "restricted_host": self.restricted_host,
            "caller_permissions": sorted(self.caller_permissions),
        }


# ─── Tool results & assessments ──────────────────────────────

class ToolResultMetadata(BaseModel):
    execution_time_ms: float = 0.0
    tool_name: str = ""
    timestamp: datetime = Field(default_factory=_now)
    call_id: str | None = None
    error_code: str | None = None


class ToolResult(BaseModel):
    """Outcome of one tool call. Exactly one exists per call handled."""
    success: bool
    data: Any = None
    error: str | None = None
    metadata: ToolResultMetadata = Field(default_factory=ToolResultMetadata)

    @classmethod
    def ok(cls, data: Any = None, **metadata: Any) -> ToolResult:
        return cls(success=True, data=data, metadata=ToolResultMetadata(**metadata))

    @classmethod
    def failure(cls, error: str, **metadata: Any) -> ToolResult:
        return cls(success=False, error=error, metadata=ToolResultMetadata(**metadata))

    def to_content(self) -> str:
        """Render the result as the text the model receives."""
        if not self.success:
            return f"Error: {self.error or 'tool execution failed'}"
        if self.data is None:
            return ""
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, default=str)


class SecurityAssessment(BaseModel):
    """Risk scoring for a single tool call. Never cached."""
    risk_score: int = Field(default=0, ge=0, le=100)
    risk_factors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    block_execution: bool = False
    effective_tier: RiskTier = RiskTier.LOW


class ApprovalLogEntry(BaseModel):
    """One resolved approval. Appended, never edited."""
    id: str = Field(default_factory=lambda: f"apr-{uuid.uuid4().hex[:8]}")
    timestamp: datetime = Field(default_factory=_now)
    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)
    decision: ApprovalDecision
    path: ApprovalPath
    risk_score: int = 0
    risk_factors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    reason: str = ""

    @property
    def approved(self) -> bool:
        return self.decision == ApprovalDecision.APPROVED


# ─── Responses ───────────────────────────────────────────────

class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, prompt_tokens: int = 0, completion_tokens: int = 0) -> Usage:
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    def __add__(self, other: Usage) -> Usage:
        return Usage.of(
            self.prompt_tokens + other.prompt_tokens,
            self.completion_tokens + other.completion_tokens,
        )


class ChatResponse(BaseModel):
    """Normalized result of a chat turn, whatever the provider."""
    content: str = ""
    tool_calls: list[ChatToolCall] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)
    pending_tool_calls: list[ChatToolCall] = Field(default_factory=list)
    finish_reason: FinishReason = FinishReason.STOP
    usage: Usage = Field(default_factory=Usage)
    model: str = ""
    provider: str = ""


class StreamEventType(str, Enum):
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    DONE = "done"


class StreamEvent(BaseModel):
    """One item of a streamed turn. ``done`` carries the final response."""
    type: StreamEventType
    text: str = ""
    tool_call: ChatToolCall | None = None
    tool_result: ToolResult | None = None
    response: ChatResponse | None = None
