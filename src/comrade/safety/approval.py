"""
Comrade Approval Workflow

Decides whether a tool call may run. Every call takes exactly one path:

    BLOCKED        the assessment blocks execution; denied without prompting
    AUTO_ALLOW     the tool does not require approval
    SESSION_ALLOW  the user already chose "always allow" in this session
    PROMPT         the user is asked through the confirmation surface

Prompts are tiered by the assessment's effective tier. Low and medium
calls get one dialog; high-tier calls get a second confirmation step.
Anything other than an explicit allow (dismissal, timeout, a failing
surface, or no surface at all) is a denial. Each resolution appends one
entry to the approval log before returning.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from comrade.audit.approval_log import ApprovalLog
from comrade.core.models import (
    ApprovalDecision,
    ApprovalLogEntry,
    ApprovalPath,
    ExecutionContext,
    RiskTier,
    SecurityAssessment,
)
from comrade.observability.metrics import record_approval
from comrade.safety.risk import SecurityRiskAssessor

if TYPE_CHECKING:
    from comrade.tools.registry import ToolDefinition

logger = logging.getLogger(__name__)

ALLOW = "Allow"
ALLOW_HIGH_RISK = "Allow (High Risk)"
ALWAYS_ALLOW = "Always Allow for Session"
DENY = "Deny"
CONFIRM_HIGH_RISK = "Yes, I understand the risks"
CANCEL = "No, cancel"

DEFAULT_APPROVAL_TIMEOUT = 300.0


class ConfirmationRequest(BaseModel):
    """What the confirmation surface shows the user."""
    tool_name: str
    message: str
    detail: str = ""
    options: list[str]
    risk_tier: RiskTier
    risk_score: int = 0
    warnings: list[str] = Field(default_factory=list)
    step: int = 1


@runtime_checkable
class ConfirmationSurface(Protocol):
    """Shows a modal choice and returns the picked option, or None if dismissed."""

    async def confirm(self, request: ConfirmationRequest) -> str | None: ...


class CallbackConfirmationSurface:
    """Adapts a plain callable (sync or async) into a ConfirmationSurface."""

    def __init__(self, callback: Callable[[ConfirmationRequest], str | None | Awaitable[str | None]]):
        self._callback = callback

    async def confirm(self, request: ConfirmationRequest) -> str | None:
        result = self._callback(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result


@dataclass
class ApprovalOutcome:
    """Result of resolving one call through the workflow."""

    approved: bool
    path: ApprovalPath
    assessment: SecurityAssessment
    reason: str
    entry: ApprovalLogEntry


class ApprovalWorkflow:
    """Per-call approval state machine with session-scoped "always allow"."""

    def __init__(
        self,
        assessor: SecurityRiskAssessor,
        log: ApprovalLog | None = None,
        surface: ConfirmationSurface | None = None,
        timeout: float | None = DEFAULT_APPROVAL_TIMEOUT,
    ):
        self._assessor = assessor
        self._log = log if log is not None else ApprovalLog()
        self._surface = surface
        self._timeout = timeout
        self._session_approvals: dict[str, set[str]] = {}
        self._session_lock = threading.Lock()
        self._prompt_lock = asyncio.Lock()

    @property
    def log(self) -> ApprovalLog:
        return self._log

    @property
    def assessor(self) -> SecurityRiskAssessor:
        return self._assessor

    def set_surface(self, surface: ConfirmationSurface | None) -> None:
        self._surface = surface

    async def resolve(
        self,
        tool: ToolDefinition,
        parameters: dict[str, Any],
        context: ExecutionContext,
    ) -> ApprovalOutcome:
        """Assess a call and decide whether it may run."""
        assessment = self._assessor.assess(tool, parameters, context)

        if assessment.block_execution:
            reason = "; ".join(assessment.warnings) or "Execution blocked by security policy"
            return await self._finish(tool, parameters, context, assessment, False, ApprovalPath.BLOCKED, reason)

        if not tool.security.requires_approval:
            return await self._finish(
                tool, parameters, context, assessment, True, ApprovalPath.AUTO_ALLOW,
                "Tool does not require approval",
            )

        if self.is_session_approved(context.session_id, tool.name):
            return await self._finish(
                tool, parameters, context, assessment, True, ApprovalPath.SESSION_ALLOW,
                "Previously approved for this session",
            )

        async with self._prompt_lock:
            # another prompt may have granted "always allow" while we waited
            if self.is_session_approved(context.session_id, tool.name):
                return await self._finish(
                    tool, parameters, context, assessment, True, ApprovalPath.SESSION_ALLOW,
                    "Previously approved for this session",
                )
            approved, reason = await self._prompt(tool, parameters, context, assessment)

        return await self._finish(tool, parameters, context, assessment, approved, ApprovalPath.PROMPT, reason)

    # ─── Session approvals ───────────────────────────────────

    def is_session_approved(self, session_id: str, tool_name: str) -> bool:
        with self._session_lock:
            return tool_name in self._session_approvals.get(session_id, set())

    def session_approvals(self, session_id: str) -> set[str]:
        with self._session_lock:
            return set(self._session_approvals.get(session_id, set()))

    def grant_session_approval(self, session_id: str, tool_name: str) -> None:
        with self._session_lock:
            self._session_approvals.setdefault(session_id, set()).add(tool_name)

    def clear_session_approvals(self, session_id: str) -> None:
        """Forget every "always allow" choice made in one session."""
        with self._session_lock:
            self._session_approvals.pop(session_id, None)

    # ─── Internals ───────────────────────────────────────────

    async def _prompt(
        self,
        tool: ToolDefinition,
        parameters: dict[str, Any],
        context: ExecutionContext,
        assessment: SecurityAssessment,
    ) -> tuple[bool, str]:
        if self._surface is None:
            return False, "Tool call requires approval but no confirmation surface is available"

        tier = assessment.effective_tier
        high = tier == RiskTier.HIGH
        first = ConfirmationRequest(
            tool_name=tool.name,
            message=_prompt_message(tool, tier),
            detail=_prompt_detail(parameters, assessment),
            options=[ALLOW_HIGH_RISK if high else ALLOW, ALWAYS_ALLOW, DENY],
            risk_tier=tier,
            risk_score=assessment.risk_score,
            warnings=list(assessment.warnings),
        )
        choice = await self._ask(first)
        if choice not in first.options[:2]:
            return False, _denial_reason(choice)

        if high:
            second = ConfirmationRequest(
                tool_name=tool.name,
                message=f"Are you sure you want to run high-risk tool '{tool.name}'?",
                detail="This action may make irreversible changes.",
                options=[CONFIRM_HIGH_RISK, CANCEL],
                risk_tier=tier,
                risk_score=assessment.risk_score,
                warnings=list(assessment.warnings),
                step=2,
            )
            confirmation = await self._ask(second)
            if confirmation != CONFIRM_HIGH_RISK:
                return False, _denial_reason(confirmation)

        if choice == ALWAYS_ALLOW:
            self.grant_session_approval(context.session_id, tool.name)
            return True, "User approved for the rest of the session"
        return True, "User approved"

    async def _ask(self, request: ConfirmationRequest) -> str | None:
        try:
            if self._timeout is None:
                return await self._surface.confirm(request)
            return await asyncio.wait_for(self._surface.confirm(request), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Approval prompt timed out", extra={"tool_name": request.tool_name})
            return None
        except Exception:
            logger.exception("Confirmation surface failed", extra={"tool_name": request.tool_name})
            return None

    async def _finish(
        self,
        tool: ToolDefinition,
        parameters: dict[str, Any],
        context: ExecutionContext,
        assessment: SecurityAssessment,
        approved: bool,
        path: ApprovalPath,
        reason: str,
    ) -> ApprovalOutcome:
        entry = ApprovalLogEntry(
            tool_name=tool.name,
            parameters=dict(parameters),
            context=context.snapshot(),
            decision=ApprovalDecision.APPROVED if approved else ApprovalDecision.DENIED,
            path=path,
            risk_score=assessment.risk_score,
            risk_factors=list(assessment.risk_factors),
            warnings=list(assessment.warnings),
            reason=reason,
        )
        await self._log.append_async(entry)
        record_approval(tool_name=tool.name, approved=approved, path=path.value)
        logger.info(
            "Tool call %s", "approved" if approved else "denied",
            extra={
                "tool_name": tool.name,
                "session_id": context.session_id,
                "decision": entry.decision.value,
                "path": path.value,
                "risk_score": assessment.risk_score,
            },
        )
        return ApprovalOutcome(
            approved=approved,
            path=path,
            assessment=assessment,
            reason=reason,
            entry=entry,
        )


def _prompt_message(tool: ToolDefinition, tier: RiskTier) -> str:
    if tier == RiskTier.HIGH:
        return f"HIGH RISK: '{tool.name}' wants to run. {tool.description}"
    if tier == RiskTier.MEDIUM:
        return f"'{tool.name}' wants to run. Review before allowing. {tool.description}"
    return f"'{tool.name}' wants to run. {tool.description}"


def _prompt_detail(parameters: dict[str, Any], assessment: SecurityAssessment) -> str:
    lines = [f"Parameters: {_summarize_input(parameters)}", f"Risk score: {assessment.risk_score}/100"]
    if assessment.risk_factors:
        lines.append("Risk factors: " + ", ".join(assessment.risk_factors))
    if assessment.warnings:
        lines.append("Warnings: " + ", ".join(assessment.warnings))
    return "\n".join(lines)


def _denial_reason(choice: str | None) -> str:
    if choice is None:
        return "Approval dismissed or timed out"
    return f"User chose '{choice}'"


def _summarize_input(tool_input: dict[str, Any]) -> str:
    """Create a brief summary of tool input for display."""
    if not tool_input:
        return "(none)"
    parts = []
    for k, v in list(tool_input.items())[:3]:
        val_str = str(v)
        if len(val_str) > 50:
            val_str = val_str[:47] + "..."
        parts.append(f"{k}={val_str}")
    suffix = ", ..." if len(tool_input) > 3 else ""
    return ", ".join(parts) + suffix
