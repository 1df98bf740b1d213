"""
Comrade Tool Manager

The gate between a model's tool request and actual execution. Every call
goes through, in order:

1. Registry lookup         unknown tools raise ToolNotFoundError
2. Permission / host check missing permissions raise SecurityViolationError
3. Parameter validation    schema violations raise InvalidParametersError
4. Risk assessment and approval (ApprovalWorkflow)
5. Executor, timed with a monotonic clock

Executor exceptions never escape: they become a failed ToolResult with
code EXECUTION_ERROR. Sync executors run in a worker thread. execute_call()
additionally folds every ToolError, and any unexpected exception, into a
failed ToolResult, so a batch of N calls always yields N results.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from comrade.core.models import (
    ApprovalDecision,
    ApprovalLogEntry,
    ApprovalPath,
    ChatToolCall,
    ExecutionContext,
    RiskTier,
    SecurityLevel,
    ToolResult,
)
from comrade.exceptions import (
    ExecutorFailureError,
    InvalidParametersError,
    SecurityViolationError,
    ToolError,
    ToolNotFoundError,
    UserDeniedError,
)
from comrade.observability.metrics import record_tool_call, record_tool_duration
from comrade.observability.tracing import get_tracer
from comrade.safety.approval import ApprovalWorkflow
from comrade.tools.registry import ToolDefinition, ToolRegistry

logger = logging.getLogger(__name__)

MALFORMED_ARGUMENTS = "MALFORMED_ARGUMENTS"
EXECUTION_ERROR = ExecutorFailureError.code
HIGH_RISK_SCORE = 70


class _ExecutorTimedOut(Exception):
    """The execution deadline expired before the executor returned."""


class ExecutionRecord(BaseModel):
    """One line of the execution log."""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tool_name: str
    call_id: str | None = None
    session_id: str
    success: bool
    error_code: str | None = None
    execution_time_ms: float = 0.0


class ExecutionStats(BaseModel):
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    tool_usage: dict[str, int] = Field(default_factory=dict)
    average_execution_time_ms: float = 0.0
    last_execution_time: datetime | None = None


class SecurityStats(BaseModel):
    total_approval_requests: int = 0
    approved_requests: int = 0
    denied_requests: int = 0
    average_risk_score: float = 0.0
    high_risk_executions: int = 0


class ToolManager:
    """Executes tool calls behind validation, risk scoring and approval."""

    def __init__(
        self,
        registry: ToolRegistry,
        workflow: ApprovalWorkflow,
        execution_timeout: float | None = None,
        max_log_entries: int = 1000,
    ):
        self._registry = registry
        self._workflow = workflow
        self._execution_timeout = execution_timeout
        self._log: deque[ExecutionRecord] = deque(maxlen=max_log_entries)
        self._stats = ExecutionStats()
        self._total_time_ms = 0.0

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def workflow(self) -> ApprovalWorkflow:
        return self._workflow

    def list_available(self, context: ExecutionContext) -> list[ToolDefinition]:
        return self._registry.list_available(context)

    # ─── Execution ───────────────────────────────────────────

    async def execute_tool(
        self,
        name: str,
        parameters: dict[str, Any],
        context: ExecutionContext,
        call_id: str | None = None,
    ) -> ToolResult:
        """Run one tool call through the full gate.

        Raises ToolNotFoundError, SecurityViolationError,
        InvalidParametersError or UserDeniedError before the executor
        runs. Executor failures are returned as a failed ToolResult.
        """
        try:
            result = await self._execute(name, parameters, context, call_id)
        except ToolError as e:
            self._record(name, call_id, context, False, e.code, 0.0)
            raise
        self._record(
            name, call_id, context, result.success, result.metadata.error_code,
            result.metadata.execution_time_ms,
        )
        return result

    async def execute_call(self, call: ChatToolCall, context: ExecutionContext) -> ToolResult:
        """Run a model-issued call. Never raises for tool-level failures."""
        if call.parse_error:
            self._record(call.name, call.id, context, False, MALFORMED_ARGUMENTS, 0.0)
            logger.warning(
                "Skipping tool call with malformed arguments",
                extra={"tool_name": call.name, "call_id": call.id, "error_code": MALFORMED_ARGUMENTS},
            )
            return ToolResult.failure(
                f"Malformed tool arguments: {call.parse_error}",
                tool_name=call.name,
                call_id=call.id,
                error_code=MALFORMED_ARGUMENTS,
            )
        try:
            return await self.execute_tool(call.name, call.parameters, context, call_id=call.id)
        except ToolError as e:
            return ToolResult.failure(
                str(e),
                tool_name=call.name,
                call_id=call.id,
                error_code=e.code,
            )
        except Exception as e:
            logger.exception(
                "Unexpected error while handling tool call",
                extra={"tool_name": call.name, "call_id": call.id, "error_code": EXECUTION_ERROR},
            )
            self._record(call.name, call.id, context, False, EXECUTION_ERROR, 0.0)
            return ToolResult.failure(
                f"{type(e).__name__}: {e}",
                tool_name=call.name,
                call_id=call.id,
                error_code=EXECUTION_ERROR,
            )

    async def execute_many(
        self,
        calls: list[ChatToolCall],
        context: ExecutionContext,
        concurrent: bool = False,
    ) -> list[ToolResult]:
        """Run a batch of calls, returning one result per call in input order.

        Sequential by default. With ``concurrent=True`` low and medium tier
        calls run as independent tasks, while a high-tier call waits for
        every earlier call and blocks later calls until it finishes.
        """
        if not concurrent:
            return [await self.execute_call(call, context) for call in calls]

        outcomes: list[ToolResult | BaseException] = []
        pending: list[asyncio.Task] = []

        async def drain() -> None:
            if pending:
                outcomes.extend(await asyncio.gather(*pending, return_exceptions=True))
                pending.clear()

        for call in calls:
            if self._is_barrier(call, context):
                await drain()
                outcomes.extend(await asyncio.gather(self.execute_call(call, context), return_exceptions=True))
            else:
                pending.append(asyncio.create_task(self.execute_call(call, context)))
        await drain()

        return [
            outcome if isinstance(outcome, ToolResult) else self._batch_failure(call, outcome)
            for call, outcome in zip(calls, outcomes)
        ]

    def _batch_failure(self, call: ChatToolCall, error: BaseException) -> ToolResult:
        logger.error(
            "Tool call task failed: %s: %s", type(error).__name__, error,
            extra={"tool_name": call.name, "call_id": call.id, "error_code": EXECUTION_ERROR},
        )
        return ToolResult.failure(
            f"{type(error).__name__}: {error}",
            tool_name=call.name,
            call_id=call.id,
            error_code=EXECUTION_ERROR,
        )

    def _is_barrier(self, call: ChatToolCall, context: ExecutionContext) -> bool:
        tool = self._registry.get(call.name)
        if tool is None:
            return False
        tier = tool.security.risk_tier
        if context.security_level == SecurityLevel.RESTRICTED:
            tier = tier.escalate()
        return tier == RiskTier.HIGH

    async def _execute(
        self,
        name: str,
        parameters: dict[str, Any],
        context: ExecutionContext,
        call_id: str | None,
    ) -> ToolResult:
        tool = self._registry.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        missing = tool.security.required_permissions - context.caller_permissions
        if missing:
            raise SecurityViolationError(name, f"Missing required permissions: {', '.join(sorted(missing))}")
        if context.restricted_host and not tool.security.allowed_in_restricted_host:
            raise SecurityViolationError(name, "Tool is not allowed in a restricted host environment")

        validation = self._registry.validate_parameters(tool, parameters)
        if not validation.valid:
            raise InvalidParametersError(name, validation.errors)

        outcome = await self._workflow.resolve(tool, parameters, context)
        if outcome.path == ApprovalPath.BLOCKED:
            raise SecurityViolationError(name, outcome.reason, warnings=outcome.assessment.warnings)
        if not outcome.approved:
            raise UserDeniedError(name, outcome.reason)

        with get_tracer().start_as_current_span("comrade.tool_call") as span:
            span.set_attribute("comrade.tool_name", name)
            span.set_attribute("comrade.risk_score", outcome.assessment.risk_score)
            result = await self._run_executor(tool, parameters, context, call_id)
            span.set_attribute("comrade.success", result.success)
        return result

    async def _run_executor(
        self,
        tool: ToolDefinition,
        parameters: dict[str, Any],
        context: ExecutionContext,
        call_id: str | None,
    ) -> ToolResult:
        start = time.monotonic()
        try:
            value = await self._invoke(tool, parameters, context)
        except _ExecutorTimedOut:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.warning(
                "Tool executor timed out",
                extra={"tool_name": tool.name, "call_id": call_id, "duration_ms": round(elapsed_ms, 2)},
            )
            return ToolResult.failure(
                f"Tool execution timed out after {self._execution_timeout}s",
                execution_time_ms=elapsed_ms,
                tool_name=tool.name,
                call_id=call_id,
                error_code=EXECUTION_ERROR,
            )
        except Exception as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.warning(
                "Tool executor failed: %s: %s", type(e).__name__, e,
                extra={"tool_name": tool.name, "call_id": call_id, "duration_ms": round(elapsed_ms, 2)},
            )
            return ToolResult.failure(
                str(e) or type(e).__name__,
                execution_time_ms=elapsed_ms,
                tool_name=tool.name,
                call_id=call_id,
                error_code=EXECUTION_ERROR,
            )

        elapsed_ms = (time.monotonic() - start) * 1000
        record_tool_duration(tool_name=tool.name, duration_ms=elapsed_ms)
        if isinstance(value, ToolResult):
            metadata = value.metadata.model_copy(
                update={
                    "execution_time_ms": elapsed_ms,
                    "tool_name": tool.name,
                    "call_id": call_id,
                    "error_code": value.metadata.error_code or (None if value.success else EXECUTION_ERROR),
                }
            )
            return value.model_copy(update={"metadata": metadata})
        return ToolResult.ok(value, execution_time_ms=elapsed_ms, tool_name=tool.name, call_id=call_id)

    async def _invoke(self, tool: ToolDefinition, parameters: dict[str, Any], context: ExecutionContext) -> Any:
        if inspect.iscoroutinefunction(tool.executor):
            pending = tool.executor(parameters, context)
        else:
            pending = asyncio.to_thread(tool.executor, parameters, context)

        # only the deadline below counts as a timeout; a TimeoutError raised
        # by the executor itself is an ordinary executor failure
        try:
            async with asyncio.timeout(self._execution_timeout) as deadline:
                value = await pending
                if inspect.isawaitable(value):
                    value = await value
        except TimeoutError as e:
            if deadline.expired():
                raise _ExecutorTimedOut from e
            raise
        return value

    # ─── Statistics & audit ──────────────────────────────────

    def _record(
        self,
        tool_name: str,
        call_id: str | None,
        context: ExecutionContext,
        success: bool,
        error_code: str | None,
        execution_time_ms: float,
    ) -> None:
        record = ExecutionRecord(
            tool_name=tool_name,
            call_id=call_id,
            session_id=context.session_id,
            success=success,
            error_code=error_code,
            execution_time_ms=execution_time_ms,
        )
        self._log.append(record)

        stats = self._stats
        stats.total_executions += 1
        if success:
            stats.successful_executions += 1
        else:
            stats.failed_executions += 1
        stats.tool_usage[tool_name] = stats.tool_usage.get(tool_name, 0) + 1
        self._total_time_ms += execution_time_ms
        stats.average_execution_time_ms = self._total_time_ms / stats.total_executions
        stats.last_execution_time = record.timestamp

        record_tool_call(tool_name=tool_name, success=success, error_code=error_code)
        logger.info(
            "Tool call %s", "succeeded" if success else "failed",
            extra={
                "tool_name": tool_name,
                "call_id": call_id,
                "session_id": context.session_id,
                "error_code": error_code,
                "duration_ms": round(execution_time_ms, 2),
            },
        )

    def stats(self) -> ExecutionStats:
        return self._stats.model_copy(deep=True)

    def clear_stats(self) -> None:
        self._stats = ExecutionStats()
        self._total_time_ms = 0.0
        self._log.clear()

    def execution_log(self) -> list[ExecutionRecord]:
        return list(self._log)

    def approval_log(self) -> list[ApprovalLogEntry]:
        return self._workflow.log.entries()

    def approval_log_for_tool(self, tool_name: str) -> list[ApprovalLogEntry]:
        return self._workflow.log.entries(tool_name=tool_name)

    def clear_approval_log(self) -> None:
        self._workflow.log.clear()

    def security_stats(self) -> SecurityStats:
        """Aggregate the approval log into request and risk counters."""
        entries = self._workflow.log.entries()
        if not entries:
            return SecurityStats()
        approved = [e for e in entries if e.decision == ApprovalDecision.APPROVED]
        return SecurityStats(
            total_approval_requests=len(entries),
            approved_requests=len(approved),
            denied_requests=len(entries) - len(approved),
            average_risk_score=sum(e.risk_score for e in entries) / len(entries),
            high_risk_executions=sum(1 for e in approved if e.risk_score >= HIGH_RISK_SCORE),
        )

    def export_audit_data(self) -> dict[str, Any]:
        """Bundle execution log, approval log and statistics for export."""
        return {
            "execution_log": [r.model_dump(mode="json") for r in self._log],
            "approval_log": self._workflow.log.export(),
            "statistics": self.stats().model_dump(mode="json"),
            "security_statistics": self.security_stats().model_dump(mode="json"),
            "export_timestamp": datetime.now(timezone.utc).isoformat(),
        }
