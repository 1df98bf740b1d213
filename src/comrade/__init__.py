"""
Comrade: Safety-Gated Tool Execution for Chat Agents

Usage:
    from comrade import AgentConfig, ChatMessage, Comrade

    async with Comrade() as comrade:
        comrade.add_agent(AgentConfig(agent_id="openai", provider="openai"))
        response = await comrade.send("openai", [ChatMessage.user("List the workspace files")])

    # Streaming, with a text callback:
    await comrade.stream("openai", messages, on_chunk=print)

    # Interactive approval for medium/high risk tools:
    comrade = Comrade(surface=CallbackConfirmationSurface(my_dialog))
"""

__version__ = "0.1.0"

import uuid
from collections.abc import AsyncIterator

import httpx

from comrade.audit.approval_log import ApprovalLog, HashedApproval
from comrade.bridge import ChatBridge, ChunkCallback
from comrade.config import ComradeSettings
from comrade.core.models import (
    ApprovalDecision,
    ApprovalLogEntry,
    ApprovalPath,
    ChatMessage,
    ChatResponse,
    ChatToolCall,
    ExecutionContext,
    FinishReason,
    RiskTier,
    Role,
    SecurityAssessment,
    SecurityLevel,
    StreamEvent,
    StreamEventType,
    ToolResult,
    Usage,
)
from comrade.exceptions import (
    ComradeError,
    ProviderError,
    RegistryError,
    ToolError,
)
from comrade.logging import configure_logging
from comrade.providers import AgentConfig, ChatOptions, ProviderKind
from comrade.safety.approval import (
    ApprovalWorkflow,
    CallbackConfirmationSurface,
    ConfirmationRequest,
    ConfirmationSurface,
)
from comrade.safety.risk import SecurityRiskAssessor
from comrade.secrets import EnvSecretStore, InMemorySecretStore, SecretStore
from comrade.tools import ToolCategory, ToolDefinition, ToolManager, ToolRegistry, ToolSecurity
from comrade.tools.builtin import BUILTIN_PERMISSIONS, register_all_builtins

__all__ = [
    # Main API
    "Comrade",
    "__version__",
    # Models
    "ApprovalDecision",
    "ApprovalLogEntry",
    "ApprovalPath",
    "ChatMessage",
    "ChatResponse",
    "ChatToolCall",
    "ExecutionContext",
    "FinishReason",
    "RiskTier",
    "Role",
    "SecurityAssessment",
    "SecurityLevel",
    "StreamEvent",
    "StreamEventType",
    "ToolResult",
    "Usage",
    # Tools
    "ToolCategory",
    "ToolDefinition",
    "ToolManager",
    "ToolRegistry",
    "ToolSecurity",
    # Safety
    "ApprovalWorkflow",
    "CallbackConfirmationSurface",
    "ConfirmationRequest",
    "ConfirmationSurface",
    "SecurityRiskAssessor",
    # Audit
    "ApprovalLog",
    "HashedApproval",
    # Providers
    "AgentConfig",
    "ChatBridge",
    "ChatOptions",
    "ProviderKind",
    # Secrets & config
    "ComradeSettings",
    "EnvSecretStore",
    "InMemorySecretStore",
    "SecretStore",
    # Errors
    "ComradeError",
    "ProviderError",
    "RegistryError",
    "ToolError",
]


class Comrade:
    """Owns one registry, assessor, approval log, tool manager and bridge.

    Wiring:
    1. ToolRegistry holds tool definitions (built-ins registered by default)
    2. SecurityRiskAssessor scores each call
    3. ApprovalWorkflow decides auto-allow / session-allow / prompt / block
       and appends every decision to the hash-chained ApprovalLog
    4. ToolManager validates and runs approved calls
    5. ChatBridge talks to the provider and runs requested tools once

    One Comrade instance is one session: "Always Allow" grants last until
    end_session() or aclose().
    """

    def __init__(
        self,
        settings: ComradeSettings | None = None,
        secrets: SecretStore | None = None,
        surface: ConfirmationSurface | None = None,
        builtin_tools: bool = True,
        permissions: frozenset[str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        configure_logs: bool = True,
    ):
        """Initialize Comrade.

        Args:
            settings: Process settings. If None, read from COMRADE_* env vars.
            secrets: API key store. Defaults to EnvSecretStore.
            surface: Confirmation surface for tools that need approval.
                Without one, such calls are denied.
            builtin_tools: Register the file and fetch_url tools.
            permissions: Caller permissions for every turn. Defaults to the
                permissions the built-in tools need.
            http_client: Shared httpx client for providers and fetch_url.
            configure_logs: Apply the settings' log level and format.
        """
        self.settings = settings or ComradeSettings.from_env()
        if configure_logs:
            configure_logging(self.settings.log_level, json_output=self.settings.log_json)

        self.registry = ToolRegistry()
        self.assessor = SecurityRiskAssessor()
        self.approval_log = ApprovalLog()
        self.workflow = ApprovalWorkflow(
            self.assessor,
            self.approval_log,
            surface,
            timeout=self.settings.approval_timeout,
        )
        self.tools = ToolManager(
            self.registry,
            self.workflow,
            execution_timeout=self.settings.execution_timeout,
        )
        self.bridge = ChatBridge(secrets or EnvSecretStore(), self.tools, http_client)

        if builtin_tools:
            register_all_builtins(self.registry, self.settings.workspace_root, http_client)

        self.permissions = BUILTIN_PERMISSIONS if permissions is None else frozenset(permissions)
        self.session_id = f"session-{uuid.uuid4().hex[:8]}"
        self._agents: dict[str, AgentConfig] = {}

    # ─── Agents ──────────────────────────────────────────────

    def add_agent(self, config: AgentConfig) -> None:
        self._agents[config.agent_id] = config

    def get_agent(self, agent: AgentConfig | str) -> AgentConfig:
        if isinstance(agent, AgentConfig):
            return agent
        try:
            return self._agents[agent]
        except KeyError:
            raise ComradeError(f"Unknown agent: {agent}") from None

    @property
    def agents(self) -> list[AgentConfig]:
        return list(self._agents.values())

    def context(self, agent_id: str = "default", **overrides) -> ExecutionContext:
        """Execution context for one turn in the current session."""
        values = {
            "agent_id": agent_id,
            "session_id": self.session_id,
            "caller_permissions": self.permissions,
            "security_level": self.settings.security_level,
        }
        values.update(overrides)
        return ExecutionContext(**values)

    def _options(self, options: ChatOptions | None) -> ChatOptions:
        if options is not None:
            return options
        return ChatOptions(concurrent_tool_execution=self.settings.concurrent_tool_execution)

    # ─── Chat ────────────────────────────────────────────────

    async def send(
        self,
        agent: AgentConfig | str,
        messages: list[ChatMessage],
        options: ChatOptions | None = None,
        context: ExecutionContext | None = None,
    ) -> ChatResponse:
        config = self.get_agent(agent)
        return await self.bridge.send(
            config,
            messages,
            context or self.context(config.agent_id),
            self._options(options),
        )

    async def stream(
        self,
        agent: AgentConfig | str,
        messages: list[ChatMessage],
        on_chunk: ChunkCallback,
        options: ChatOptions | None = None,
        context: ExecutionContext | None = None,
    ) -> ChatResponse:
        config = self.get_agent(agent)
        return await self.bridge.stream(
            config,
            messages,
            on_chunk,
            context or self.context(config.agent_id),
            self._options(options),
        )

    def events(
        self,
        agent: AgentConfig | str,
        messages: list[ChatMessage],
        options: ChatOptions | None = None,
        context: ExecutionContext | None = None,
    ) -> AsyncIterator[StreamEvent]:
        config = self.get_agent(agent)
        return self.bridge.events(
            config,
            messages,
            context or self.context(config.agent_id),
            self._options(options),
        )

    # ─── Session ─────────────────────────────────────────────

    def list_tools(self, context: ExecutionContext | None = None) -> list[ToolDefinition]:
        return self.tools.list_available(context or self.context())

    def end_session(self) -> None:
        """Drop session approvals and rate history, then start a new session."""
        self.workflow.clear_session_approvals(self.session_id)
        self.assessor.clear_history(self.session_id)
        self.session_id = f"session-{uuid.uuid4().hex[:8]}"

    async def aclose(self) -> None:
        self.end_session()
        await self.bridge.aclose()

    async def __aenter__(self) -> "Comrade":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
