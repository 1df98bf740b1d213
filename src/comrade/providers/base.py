"""
Comrade Provider Adapters: base interface

Each adapter translates between the internal chat model (ChatMessage,
ChatToolCall, ChatResponse) and one provider's wire format. Adapters are
pure translators: they build request bodies and parse response bodies and
stream records, while the ChatBridge owns the HTTP transport.

Key design decisions:
- No retries: a failed request surfaces immediately as TransportError
- Finish reasons are normalized to stop / tool_calls / length / error
- Tool-call arguments that never parse are kept as calls with parse_error
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from comrade.core.models import (
    ChatMessage,
    ChatResponse,
    ChatToolCall,
    FinishReason,
    StreamEvent,
    StreamEventType,
    Usage,
)
from comrade.providers.streaming import NDJSONDecoder, SSEDecoder, ToolCallAccumulator

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    """Closed set of supported wire protocols."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


class AgentConfig(BaseModel):
    """Configuration for one configured model endpoint."""
    agent_id: str = "default"
    provider: ProviderKind = ProviderKind.OPENAI
    model: str = ""
    base_url: str | None = None
    timeout_seconds: float = 60.0
    supports_streaming: bool = True
    max_tokens: int = 4096
    temperature: float | None = None


class ChatOptions(BaseModel):
    """Per-request overrides."""
    system_prompt: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    stop: list[str] | None = None
    tools_enabled: bool = True
    concurrent_tool_execution: bool = False


@dataclass
class ProviderRequest:
    """A fully built HTTP request for one provider call."""

    url: str
    headers: dict[str, str]
    body: dict[str, Any]


FINISH_REASON_MAP: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "tool_calls": FinishReason.TOOL_CALLS,
    "tool_use": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "length": FinishReason.LENGTH,
    "max_tokens": FinishReason.LENGTH,
    "content_filter": FinishReason.ERROR,
    "refusal": FinishReason.ERROR,
    "error": FinishReason.ERROR,
}


def normalize_finish_reason(raw: str | None, has_tool_calls: bool = False) -> FinishReason:
    """Map a provider finish reason onto the closed FinishReason set.

    Parsed tool calls always win; unknown values map to STOP.
    """
    if has_tool_calls:
        return FinishReason.TOOL_CALLS
    if raw is None:
        return FinishReason.STOP
    reason = FINISH_REASON_MAP.get(raw.lower())
    if reason is None:
        logger.debug("Unknown finish reason %r mapped to stop", raw)
        return FinishReason.STOP
    # a tool_calls finish with nothing parsed has nothing to execute
    return FinishReason.STOP if reason == FinishReason.TOOL_CALLS else reason


@dataclass
class StreamState:
    """Mutable accumulation of one streamed response."""

    text: list[str] = field(default_factory=list)
    tool_calls: list[ChatToolCall] = field(default_factory=list)
    pending: ToolCallAccumulator = field(default_factory=ToolCallAccumulator)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    finish_raw: str | None = None
    model: str = ""
    done: bool = False

    def emit_text(self, text: str) -> list[StreamEvent]:
        if not text:
            return []
        self.text.append(text)
        return [StreamEvent(type=StreamEventType.TEXT, text=text)]

    def emit_calls(self, calls: list[ChatToolCall]) -> list[StreamEvent]:
        self.tool_calls.extend(calls)
        return [StreamEvent(type=StreamEventType.TOOL_CALL, tool_call=c) for c in calls]


class ProviderAdapter(ABC):
    """Abstract translator for one provider wire format."""

    kind: ProviderKind
    DEFAULT_MODEL = ""
    DEFAULT_BASE_URL = ""
    requires_api_key = True
    stream_format = "sse"

    def __init__(self, config: AgentConfig):
        self._config = config

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def model(self) -> str:
        return self._config.model or self.DEFAULT_MODEL

    @property
    def base_url(self) -> str:
        return (self._config.base_url or self.DEFAULT_BASE_URL).rstrip("/")

    @abstractmethod
    def endpoint(self) -> str:
        """Full URL of the chat endpoint."""
        ...

    @abstractmethod
    def headers(self, api_key: str | None) -> dict[str, str]:
        ...

    @abstractmethod
    def build_body(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
        options: ChatOptions,
        stream: bool,
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    def parse_response(self, body: dict[str, Any]) -> ChatResponse:
        """Parse a buffered response body. Raises MalformedProviderResponseError."""
        ...

    @abstractmethod
    def parse_stream_record(self, record: Any, state: StreamState) -> list[StreamEvent]:
        """Fold one decoded stream record into ``state``, returning events to emit."""
        ...

    def build_request(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
        options: ChatOptions,
        stream: bool,
        api_key: str | None = None,
    ) -> ProviderRequest:
        return ProviderRequest(
            url=self.endpoint(),
            headers=self.headers(api_key),
            body=self.build_body(messages, tools, options, stream),
        )

    def new_decoder(self) -> SSEDecoder | NDJSONDecoder:
        return SSEDecoder() if self.stream_format == "sse" else NDJSONDecoder()

    def finish_stream(self, state: StreamState) -> list[StreamEvent]:
        """Flush tool calls still open when the stream ends."""
        return state.emit_calls(state.pending.finish_all())

    def stream_response(self, state: StreamState) -> ChatResponse:
        return ChatResponse(
            content="".join(state.text),
            tool_calls=list(state.tool_calls),
            finish_reason=normalize_finish_reason(state.finish_raw, bool(state.tool_calls)),
            usage=Usage.of(state.prompt_tokens, state.completion_tokens),
            model=state.model or self.model,
            provider=self.name,
        )

    def _max_tokens(self, options: ChatOptions) -> int:
        return options.max_tokens or self._config.max_tokens

    def _temperature(self, options: ChatOptions) -> float | None:
        return options.temperature if options.temperature is not None else self._config.temperature
