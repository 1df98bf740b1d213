"""Tests for the approval workflow and the hash-chained approval log.

Verifies that:
- Each call takes exactly one path (blocked, auto, session, prompt)
- High-tier prompts need a second confirmation
- Dismissal, timeout, a failing surface or no surface all deny
- "Always Allow" persists per session until cleared
- Every decision is appended to a verifiable hash chain
"""

import asyncio

import pytest
from conftest import ScriptedSurface, make_tool

from comrade.audit.approval_log import ApprovalLog, HashedApproval
from comrade.core.models import (
    ApprovalDecision,
    ApprovalLogEntry,
    ApprovalPath,
    ExecutionContext,
    RiskTier,
    SecurityLevel,
)
from comrade.exceptions import UserDeniedError
from comrade.safety.approval import (
    ALLOW,
    ALLOW_HIGH_RISK,
    ALWAYS_ALLOW,
    CANCEL,
    CONFIRM_HIGH_RISK,
    DENY,
    ApprovalWorkflow,
    CallbackConfirmationSurface,
)
from comrade.tools.builtin.file_ops import create_file_tools
from comrade.tools.manager import ToolManager
from comrade.tools.registry import ToolRegistry


def _workflow(assessor, approval_log, surface=None, timeout=5.0) -> ApprovalWorkflow:
    return ApprovalWorkflow(assessor, approval_log, surface, timeout=timeout)


# ─── Paths ──────────────────────────────────────────────────


class TestApprovalPaths:
    @pytest.mark.asyncio
    async def test_auto_allow(self, assessor, approval_log, context):
        surface = ScriptedSurface()
        workflow = _workflow(assessor, approval_log, surface)
        outcome = await workflow.resolve(make_tool("read"), {}, context)
        assert outcome.approved
        assert outcome.path == ApprovalPath.AUTO_ALLOW
        assert surface.requests == []

    @pytest.mark.asyncio
    async def test_blocked_never_prompts(self, assessor, approval_log, restricted_context):
        surface = ScriptedSurface(ALLOW_HIGH_RISK, CONFIRM_HIGH_RISK)
        workflow = _workflow(assessor, approval_log, surface)
        tool = make_tool("nuke", tier=RiskTier.HIGH, requires_approval=True)
        outcome = await workflow.resolve(tool, {}, restricted_context)
        assert not outcome.approved
        assert outcome.path == ApprovalPath.BLOCKED
        assert "blocked in restricted mode" in outcome.reason
        assert surface.requests == []

    @pytest.mark.asyncio
    async def test_blocked_even_if_session_approved(self, assessor, approval_log, restricted_context):
        workflow = _workflow(assessor, approval_log, ScriptedSurface())
        tool = make_tool("nuke", tier=RiskTier.HIGH, requires_approval=True)
        workflow.grant_session_approval(restricted_context.session_id, "nuke")
        outcome = await workflow.resolve(tool, {}, restricted_context)
        assert outcome.path == ApprovalPath.BLOCKED

    @pytest.mark.asyncio
    async def test_prompt_allow(self, assessor, approval_log, context):
        surface = ScriptedSurface(ALLOW)
        workflow = _workflow(assessor, approval_log, surface)
        tool = make_tool("write", tier=RiskTier.MEDIUM, requires_approval=True)
        outcome = await workflow.resolve(tool, {"text": "hi"}, context)
        assert outcome.approved
        assert outcome.path == ApprovalPath.PROMPT
        assert surface.requests[0].options == [ALLOW, ALWAYS_ALLOW, DENY]
        assert surface.requests[0].risk_tier == RiskTier.MEDIUM
        assert "text=hi" in surface.requests[0].detail

    @pytest.mark.asyncio
    async def test_prompt_deny(self, assessor, approval_log, context):
        workflow = _workflow(assessor, approval_log, ScriptedSurface(DENY))
        tool = make_tool("write", tier=RiskTier.MEDIUM, requires_approval=True)
        outcome = await workflow.resolve(tool, {}, context)
        assert not outcome.approved
        assert outcome.path == ApprovalPath.PROMPT
        assert outcome.reason == "User chose 'Deny'"

    @pytest.mark.asyncio
    async def test_dismissal_denies(self, assessor, approval_log, context):
        workflow = _workflow(assessor, approval_log, ScriptedSurface(None))
        tool = make_tool("write", requires_approval=True)
        outcome = await workflow.resolve(tool, {}, context)
        assert not outcome.approved
        assert outcome.reason == "Approval dismissed or timed out"

    @pytest.mark.asyncio
    async def test_unknown_choice_denies(self, assessor, approval_log, context):
        workflow = _workflow(assessor, approval_log, ScriptedSurface("Sure, why not"))
        outcome = await workflow.resolve(make_tool("write", requires_approval=True), {}, context)
        assert not outcome.approved

    @pytest.mark.asyncio
    async def test_no_surface_denies(self, assessor, approval_log, context):
        workflow = _workflow(assessor, approval_log, surface=None)
        outcome = await workflow.resolve(make_tool("write", requires_approval=True), {}, context)
        assert not outcome.approved
        assert "no confirmation surface" in outcome.reason

    @pytest.mark.asyncio
    async def test_timeout_denies(self, assessor, approval_log, context):
        async def never(request):
            await asyncio.sleep(10)
            return ALLOW

        workflow = _workflow(assessor, approval_log, CallbackConfirmationSurface(never), timeout=0.05)
        outcome = await workflow.resolve(make_tool("write", requires_approval=True), {}, context)
        assert not outcome.approved
        assert outcome.reason == "Approval dismissed or timed out"

    @pytest.mark.asyncio
    async def test_failing_surface_denies(self, assessor, approval_log, context):
        def broken(request):
            raise RuntimeError("dialog crashed")

        workflow = _workflow(assessor, approval_log, CallbackConfirmationSurface(broken))
        outcome = await workflow.resolve(make_tool("write", requires_approval=True), {}, context)
        assert not outcome.approved


class TestHighRiskPrompt:
    @pytest.mark.asyncio
    async def test_two_step_confirmation(self, assessor, approval_log, elevated_context):
        surface = ScriptedSurface(ALLOW_HIGH_RISK, CONFIRM_HIGH_RISK)
        workflow = _workflow(assessor, approval_log, surface)
        tool = make_tool("delete", tier=RiskTier.HIGH, requires_approval=True)
        outcome = await workflow.resolve(tool, {}, elevated_context)
        assert outcome.approved
        assert [r.step for r in surface.requests] == [1, 2]
        assert surface.requests[0].options[0] == ALLOW_HIGH_RISK
        assert surface.requests[1].options == [CONFIRM_HIGH_RISK, CANCEL]

    @pytest.mark.asyncio
    async def test_cancel_at_second_step(self, assessor, approval_log, elevated_context):
        workflow = _workflow(assessor, approval_log, ScriptedSurface(ALLOW_HIGH_RISK, CANCEL))
        tool = make_tool("delete", tier=RiskTier.HIGH, requires_approval=True)
        outcome = await workflow.resolve(tool, {}, elevated_context)
        assert not outcome.approved
        assert not workflow.is_session_approved(elevated_context.session_id, "delete")

    @pytest.mark.asyncio
    async def test_restricted_escalates_medium_to_two_steps(self, assessor, approval_log):
        ctx = ExecutionContext(session_id="r", security_level=SecurityLevel.RESTRICTED)
        surface = ScriptedSurface(ALLOW_HIGH_RISK, CONFIRM_HIGH_RISK)
        workflow = _workflow(assessor, approval_log, surface)
        tool = make_tool("write", tier=RiskTier.MEDIUM, requires_approval=True)
        outcome = await workflow.resolve(tool, {}, ctx)
        assert outcome.approved
        assert len(surface.requests) == 2
        assert surface.requests[0].risk_tier == RiskTier.HIGH

    @pytest.mark.asyncio
    async def test_always_allow_needs_second_step_too(self, assessor, approval_log, elevated_context):
        surface = ScriptedSurface(ALWAYS_ALLOW, CONFIRM_HIGH_RISK)
        workflow = _workflow(assessor, approval_log, surface)
        tool = make_tool("delete", tier=RiskTier.HIGH, requires_approval=True)
        assert (await workflow.resolve(tool, {}, elevated_context)).approved
        assert workflow.is_session_approved(elevated_context.session_id, "delete")


class TestSessionApprovals:
    @pytest.mark.asyncio
    async def test_always_allow_skips_later_prompts(self, assessor, approval_log, context):
        surface = ScriptedSurface(ALWAYS_ALLOW)
        workflow = _workflow(assessor, approval_log, surface)
        tool = make_tool("write", tier=RiskTier.MEDIUM, requires_approval=True)

        first = await workflow.resolve(tool, {}, context)
        second = await workflow.resolve(tool, {}, context)
        assert first.path == ApprovalPath.PROMPT
        assert second.path == ApprovalPath.SESSION_ALLOW
        assert second.approved
        assert len(surface.requests) == 1

    @pytest.mark.asyncio
    async def test_session_scope(self, assessor, approval_log, context):
        surface = ScriptedSurface(ALWAYS_ALLOW, DENY)
        workflow = _workflow(assessor, approval_log, surface)
        tool = make_tool("write", requires_approval=True)
        await workflow.resolve(tool, {}, context)
        other = ExecutionContext(session_id="other")
        outcome = await workflow.resolve(tool, {}, other)
        assert outcome.path == ApprovalPath.PROMPT
        assert not outcome.approved

    @pytest.mark.asyncio
    async def test_clear_session(self, assessor, approval_log, context):
        workflow = _workflow(assessor, approval_log, ScriptedSurface(ALWAYS_ALLOW))
        tool = make_tool("write", requires_approval=True)
        await workflow.resolve(tool, {}, context)
        assert workflow.session_approvals(context.session_id) == {"write"}
        workflow.clear_session_approvals(context.session_id)
        assert not workflow.is_session_approved(context.session_id, "write")

    @pytest.mark.asyncio
    async def test_concurrent_prompts_are_serialized(self, assessor, approval_log, context):
        active = 0
        peak = 0

        async def slow(request):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return ALWAYS_ALLOW

        workflow = _workflow(assessor, approval_log, CallbackConfirmationSurface(slow))
        tool = make_tool("write", requires_approval=True)
        outcomes = await asyncio.gather(*(workflow.resolve(tool, {}, context) for _ in range(3)))
        assert peak == 1
        assert [o.path for o in outcomes].count(ApprovalPath.PROMPT) == 1
        assert all(o.approved for o in outcomes)


# ─── Audit entries ──────────────────────────────────────────


class TestApprovalLogEntries:
    @pytest.mark.asyncio
    async def test_one_entry_per_resolution(self, assessor, approval_log, context):
        workflow = _workflow(assessor, approval_log, ScriptedSurface(DENY))
        await workflow.resolve(make_tool("read"), {"text": "a"}, context)
        await workflow.resolve(make_tool("write", requires_approval=True), {}, context)
        entries = approval_log.entries()
        assert [e.path for e in entries] == [ApprovalPath.AUTO_ALLOW, ApprovalPath.PROMPT]
        assert [e.decision for e in entries] == [ApprovalDecision.APPROVED, ApprovalDecision.DENIED]
        assert entries[0].parameters == {"text": "a"}
        assert entries[0].context["session_id"] == context.session_id
        assert entries[0].risk_score == 10

    @pytest.mark.asyncio
    async def test_blocked_entry_has_warnings(self, assessor, approval_log, restricted_context):
        workflow = _workflow(assessor, approval_log)
        await workflow.resolve(make_tool("nuke", tier=RiskTier.HIGH), {}, restricted_context)
        entry = approval_log.entries()[0]
        assert entry.decision == ApprovalDecision.DENIED
        assert entry.path == ApprovalPath.BLOCKED
        assert "High-risk tools are blocked in restricted mode" in entry.warnings


def _entry(tool_name: str = "t", decision: ApprovalDecision = ApprovalDecision.APPROVED) -> ApprovalLogEntry:
    return ApprovalLogEntry(tool_name=tool_name, decision=decision, path=ApprovalPath.AUTO_ALLOW)


class TestApprovalLogChain:
    def test_genesis(self):
        log = ApprovalLog()
        assert log.head_hash == "0" * 64
        assert log.verify_integrity() == (True, "Empty log: no entries to verify")

    def test_chaining(self):
        log = ApprovalLog()
        first = log.append(_entry())
        second = log.append(_entry())
        assert first.previous_hash == ApprovalLog.GENESIS_HASH
        assert second.previous_hash == first.hash
        assert second.sequence == 1
        assert log.head_hash == second.hash

    def test_verify_intact(self):
        log = ApprovalLog()
        for _ in range(5):
            log.append(_entry())
        valid, message = log.verify_integrity()
        assert valid
        assert "5 entries" in message

    def test_detects_tampering(self):
        log = ApprovalLog()
        log.append(_entry())
        log.append(_entry())
        log._entries[0].entry.reason = "edited after the fact"
        valid, message = log.verify_integrity()
        assert not valid
        assert "Tampered entry at 0" in message

    def test_detects_broken_link(self):
        log = ApprovalLog()
        log.append(_entry())
        log.append(_entry())
        log._entries[1] = log._entries[1].model_copy(update={"previous_hash": "f" * 64})
        valid, message = log.verify_integrity()
        assert not valid
        assert "Chain broken at entry 1" in message

    def test_filters(self):
        log = ApprovalLog()
        log.append(_entry("a"))
        log.append(_entry("b", ApprovalDecision.DENIED))
        assert [e.tool_name for e in log.entries(tool_name="a")] == ["a"]
        assert [e.tool_name for e in log.entries(decision=ApprovalDecision.DENIED)] == ["b"]

    def test_clear_restarts_chain(self):
        log = ApprovalLog()
        log.append(_entry())
        log.clear()
        assert len(log) == 0
        assert log.head_hash == ApprovalLog.GENESIS_HASH
        assert log.append(_entry()).sequence == 0

    def test_export(self, tmp_path):
        log = ApprovalLog()
        log.append(_entry())
        data = log.export()
        assert data["total_entries"] == 1
        assert data["chain_head"] == log.head_hash
        log.export_json(tmp_path / "approvals.json")
        assert (tmp_path / "approvals.json").read_text().startswith("{")


class TestApprovalLogSubscribers:
    @pytest.mark.asyncio
    async def test_append_async_notifies(self):
        log = ApprovalLog()
        received: list[HashedApproval] = []

        async def callback(hashed: HashedApproval) -> None:
            received.append(hashed)

        log.subscribe(callback)
        await log.append_async(_entry())
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_subscriber_error_does_not_break_log(self):
        log = ApprovalLog()

        async def bad(hashed: HashedApproval) -> None:
            raise RuntimeError("subscriber crashed")

        log.subscribe(bad)
        await log.append_async(_entry())
        assert len(log) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        log = ApprovalLog()
        received = []

        async def callback(hashed):
            received.append(hashed)

        log.subscribe(callback)
        log.unsubscribe(callback)
        await log.append_async(_entry())
        assert received == []


class TestDeleteFileAtNormalLevel:
    @pytest.mark.asyncio
    async def test_denied_at_first_step(self, tmp_path, assessor, approval_log, context):
        (tmp_path / "notes.txt").write_text("keep me")
        registry = ToolRegistry()
        for tool in create_file_tools(tmp_path):
            registry.register(tool)
        surface = ScriptedSurface(DENY)
        manager = ToolManager(registry, _workflow(assessor, approval_log, surface))

        with pytest.raises(UserDeniedError):
            await manager.execute_tool("delete_file", {"path": "notes.txt"}, context)

        request = surface.requests[0]
        assert request.risk_score >= 70
        assert request.risk_tier == RiskTier.HIGH
        assert request.options[0] == ALLOW_HIGH_RISK
        assert ALWAYS_ALLOW in request.options and DENY in request.options
        assert len(surface.requests) == 1
        entries = approval_log.entries()
        assert len(entries) == 1
        assert entries[0].tool_name == "delete_file"
        assert entries[0].decision == ApprovalDecision.DENIED
        assert entries[0].risk_score >= 70
        assert (tmp_path / "notes.txt").exists()

    @pytest.mark.asyncio
    async def test_runs_after_both_steps(self, tmp_path, assessor, approval_log, context):
        (tmp_path / "notes.txt").write_text("delete me")
        registry = ToolRegistry()
        for tool in create_file_tools(tmp_path):
            registry.register(tool)
        surface = ScriptedSurface(ALLOW_HIGH_RISK, CONFIRM_HIGH_RISK)
        manager = ToolManager(registry, _workflow(assessor, approval_log, surface))

        result = await manager.execute_tool("delete_file", {"path": "notes.txt"}, context)

        assert result.success
        assert [r.step for r in surface.requests] == [1, 2]
        assert surface.requests[1].options == [CONFIRM_HIGH_RISK, CANCEL]
        assert not (tmp_path / "notes.txt").exists()
        assert [e.decision for e in approval_log.entries()] == [ApprovalDecision.APPROVED]
