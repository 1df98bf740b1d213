"""Shared test fixtures for the Comrade test suite."""

import pytest

from comrade.audit.approval_log import ApprovalLog
from comrade.core.models import ExecutionContext, RiskTier, SecurityLevel
from comrade.safety.approval import ApprovalWorkflow, CallbackConfirmationSurface
from comrade.safety.risk import SecurityRiskAssessor
from comrade.tools.manager import ToolManager
from comrade.tools.models import ToolSecurity
from comrade.tools.registry import ToolDefinition, ToolRegistry

ALL_PERMISSIONS = frozenset({"filesystem.read", "filesystem.write", "network.request"})


def make_tool(
    name: str,
    tier: RiskTier = RiskTier.LOW,
    requires_approval: bool = False,
    executor=None,
    parameters: dict | None = None,
    permissions: frozenset[str] = frozenset(),
    allowed_in_restricted_host: bool = True,
) -> ToolDefinition:
    """Helper to create test tools."""
    return ToolDefinition(
        name=name,
        description=f"Test tool: {name}",
        parameters=parameters
        or {
            "type": "object",
            "properties": {"text": {"type": "string"}},
        },
        executor=executor or (lambda params, ctx: f"result from {name}"),
        security=ToolSecurity(
            risk_tier=tier,
            requires_approval=requires_approval,
            required_permissions=permissions,
            allowed_in_restricted_host=allowed_in_restricted_host,
        ),
    )


class ScriptedSurface(CallbackConfirmationSurface):
    """Confirmation surface that answers from a list and records every request."""

    def __init__(self, *answers: str | None):
        self.answers = list(answers)
        self.requests = []
        super().__init__(self._answer)

    def _answer(self, request):
        self.requests.append(request)
        return self.answers.pop(0) if self.answers else None


@pytest.fixture
def context():
    return ExecutionContext(
        agent_id="test-agent",
        session_id="session-test",
        caller_permissions=ALL_PERMISSIONS,
    )


@pytest.fixture
def elevated_context():
    return ExecutionContext(
        agent_id="test-agent",
        session_id="session-test",
        caller_permissions=ALL_PERMISSIONS,
        security_level=SecurityLevel.ELEVATED,
    )


@pytest.fixture
def restricted_context():
    return ExecutionContext(
        agent_id="test-agent",
        session_id="session-test",
        caller_permissions=ALL_PERMISSIONS,
        security_level=SecurityLevel.RESTRICTED,
    )


@pytest.fixture
def registry():
    return ToolRegistry()


@pytest.fixture
def assessor():
    return SecurityRiskAssessor()


@pytest.fixture
def approval_log():
    return ApprovalLog()


@pytest.fixture
def make_manager(registry, assessor, approval_log):
    """Factory: ToolManager over the shared registry with an optional surface."""

    def _make(surface=None, execution_timeout=None) -> ToolManager:
        workflow = ApprovalWorkflow(assessor, approval_log, surface, timeout=5)
        return ToolManager(registry, workflow, execution_timeout=execution_timeout)

    return _make
