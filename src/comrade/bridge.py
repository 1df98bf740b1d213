"""
Comrade Chat Protocol Bridge

Sends a conversation to the configured provider and returns one
normalized ChatResponse, whatever the wire format. When the model asks
for tools, the bridge runs them through the ToolManager, appends the
assistant turn and the tool results to a copy of the history, and issues
exactly one follow-up request. It never loops further: tool calls in the
follow-up come back as ``pending_tool_calls``.

Modes:
- send():   buffered request/response
- events(): async iterator of StreamEvent (text, tool_call, tool_result, done)
- stream(): events() with a text callback, returning the final response

Transport rules:
- zero retries; network failures raise TransportError
- non-2xx responses raise ProviderHTTPError
- a stream refused by the environment (405/406/415/501, or an agent
  configured without streaming) falls back to a buffered request
- a JSON body returned to a stream request is parsed as buffered
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing

import httpx

from comrade.core.models import (
    ChatMessage,
    ChatResponse,
    ChatToolCall,
    ExecutionContext,
    FinishReason,
    StreamEvent,
    StreamEventType,
    ToolResult,
)
from comrade.exceptions import (
    ComradeError,
    MalformedProviderResponseError,
    ProviderError,
    ProviderHTTPError,
    StreamingNotAllowedError,
    TransportError,
)
from comrade.observability.metrics import measure_provider_request, record_provider_request
from comrade.observability.tracing import get_tracer
from comrade.providers import AgentConfig, ChatOptions, ProviderAdapter, ProviderRequest, StreamState, create_adapter
from comrade.secrets import SecretStore
from comrade.tools.manager import ToolManager

logger = logging.getLogger(__name__)

STREAM_REJECTED_STATUSES = frozenset({405, 406, 415, 501})

ChunkCallback = Callable[[str], None] | Callable[[str], Awaitable[None]]


class ChatBridge:
    """Provider-neutral chat front end with tool execution."""

    def __init__(
        self,
        secrets: SecretStore,
        tool_manager: ToolManager | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._secrets = secrets
        self._tool_manager = tool_manager
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    @property
    def tool_manager(self) -> ToolManager | None:
        return self._tool_manager

    async def aclose(self) -> None:
        """Close the HTTP client if the bridge created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # ─── Public API ──────────────────────────────────────────

    async def send(
        self,
        agent: AgentConfig,
        messages: list[ChatMessage],
        context: ExecutionContext | None = None,
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        """Buffered chat turn, including one tool round trip if requested."""
        adapter = create_adapter(agent)
        context = context or ExecutionContext(agent_id=agent.agent_id)
        options = options or ChatOptions()
        api_key = await self._api_key(adapter)
        tools = self._tool_schemas(context, options)

        with get_tracer().start_as_current_span("comrade.chat_turn") as span:
            span.set_attribute("comrade.provider", adapter.name)
            span.set_attribute("comrade.streaming", False)

            first = await self._request(adapter, adapter.build_request(messages, tools, options, False, api_key))
            if not self._should_execute(first):
                return first

            results = await self._run_tools(first.tool_calls, context, options)
            history = _follow_up_history(messages, first, results)
            follow = await self._request(adapter, adapter.build_request(history, tools, options, False, api_key))
            span.set_attribute("comrade.tool_calls", len(results))
            return _merge(first, results, follow)

    async def events(
        self,
        agent: AgentConfig,
        messages: list[ChatMessage],
        context: ExecutionContext | None = None,
        options: ChatOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Streamed chat turn as an async iterator of events.

        The last event is always ``done`` and carries the final response.
        Closing the iterator early abandons the turn and closes the
        underlying HTTP stream.
        """
        adapter = create_adapter(agent)
        context = context or ExecutionContext(agent_id=agent.agent_id)
        options = options or ChatOptions()
        api_key = await self._api_key(adapter)
        tools = self._tool_schemas(context, options)

        first: ChatResponse | None = None
        async for event in self._stream_request(adapter, messages, tools, options, api_key):
            if event.type == StreamEventType.DONE:
                first = event.response
            else:
                yield event

        if self._should_execute(first):
            results = await self._run_tools(first.tool_calls, context, options)
            for result in results:
                yield StreamEvent(type=StreamEventType.TOOL_RESULT, tool_result=result)

            history = _follow_up_history(messages, first, results)
            follow: ChatResponse | None = None
            async for event in self._stream_request(adapter, history, tools, options, api_key):
                if event.type == StreamEventType.DONE:
                    follow = event.response
                else:
                    yield event
            first = _merge(first, results, follow)

        yield StreamEvent(type=StreamEventType.DONE, response=first)

    async def stream(
        self,
        agent: AgentConfig,
        messages: list[ChatMessage],
        on_chunk: ChunkCallback,
        context: ExecutionContext | None = None,
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        """Streamed chat turn; ``on_chunk`` receives each text fragment."""
        final: ChatResponse | None = None
        async with aclosing(self.events(agent, messages, context, options)) as events:
            async for event in events:
                if event.type == StreamEventType.TEXT:
                    outcome = on_chunk(event.text)
                    if inspect.isawaitable(outcome):
                        await outcome
                elif event.type == StreamEventType.DONE:
                    final = event.response
        return final

    async def validate_connection(self, agent: AgentConfig) -> bool:
        """Send one minimal buffered request and report whether it succeeded."""
        adapter = create_adapter(agent)
        try:
            api_key = await self._api_key(adapter)
            request = adapter.build_request(
                [ChatMessage.user("ping")], [], ChatOptions(max_tokens=1), False, api_key
            )
            await self._request(adapter, request)
        except ComradeError as e:
            logger.warning("Connection check failed: %s", e, extra={"provider": adapter.name})
            return False
        return True

    # ─── Tools ───────────────────────────────────────────────

    def _tool_schemas(self, context: ExecutionContext, options: ChatOptions) -> list[dict]:
        if self._tool_manager is None or not options.tools_enabled:
            return []
        manager = self._tool_manager
        return manager.registry.get_schemas(manager.list_available(context))

    def _should_execute(self, response: ChatResponse | None) -> bool:
        return (
            response is not None
            and self._tool_manager is not None
            and response.finish_reason == FinishReason.TOOL_CALLS
            and bool(response.tool_calls)
        )

    async def _run_tools(
        self,
        calls: list[ChatToolCall],
        context: ExecutionContext,
        options: ChatOptions,
    ) -> list[ToolResult]:
        return await self._tool_manager.execute_many(
            calls, context, concurrent=options.concurrent_tool_execution
        )

    # ─── Transport ───────────────────────────────────────────

    async def _api_key(self, adapter: ProviderAdapter) -> str | None:
        if not adapter.requires_api_key:
            return None
        key = await self._secrets.get(adapter.config.agent_id)
        # custom base URLs (local OpenAI-compatible servers) may not need a key
        if not key and adapter.config.base_url is None:
            raise ProviderError(adapter.name, f"No API key configured for agent '{adapter.config.agent_id}'")
        return key

    async def _request(self, adapter: ProviderAdapter, request: ProviderRequest) -> ChatResponse:
        start = time.monotonic()
        with measure_provider_request(adapter.name):
            try:
                response = await self.client.post(
                    request.url,
                    headers=request.headers,
                    json=request.body,
                    timeout=adapter.config.timeout_seconds,
                )
            except httpx.HTTPError as e:
                record_provider_request(provider=adapter.name, streaming=False, success=False)
                raise TransportError(adapter.name, f"{type(e).__name__}: {e}") from e

        self._log_response(adapter, response.status_code, start, streaming=False)
        if not response.is_success:
            record_provider_request(provider=adapter.name, streaming=False, success=False)
            raise ProviderHTTPError(adapter.name, response.status_code, response.text)
        record_provider_request(provider=adapter.name, streaming=False, success=True)
        return _parse_body(adapter, response.content)

    async def _stream_request(
        self,
        adapter: ProviderAdapter,
        messages: list[ChatMessage],
        tools: list[dict],
        options: ChatOptions,
        api_key: str | None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one request, falling back to buffered when streaming is refused."""
        if adapter.config.supports_streaming:
            request = adapter.build_request(messages, tools, options, True, api_key)
            try:
                async for event in self._open_stream(adapter, request):
                    yield event
                return
            except StreamingNotAllowedError as e:
                logger.info(
                    "Streaming rejected, falling back to a buffered request",
                    extra={"provider": adapter.name, "model": adapter.model, "status_code": e.status_code},
                )

        response = await self._request(adapter, adapter.build_request(messages, tools, options, False, api_key))
        for event in _replay(response):
            yield event

    async def _open_stream(self, adapter: ProviderAdapter, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        start = time.monotonic()
        try:
            async with self.client.stream(
                "POST",
                request.url,
                headers=request.headers,
                json=request.body,
                timeout=adapter.config.timeout_seconds,
            ) as response:
                self._log_response(adapter, response.status_code, start, streaming=True)
                if response.status_code in STREAM_REJECTED_STATUSES:
                    raise StreamingNotAllowedError(adapter.name, response.status_code)
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    record_provider_request(provider=adapter.name, streaming=True, success=False)
                    raise ProviderHTTPError(adapter.name, response.status_code, body)

                if "application/json" in response.headers.get("content-type", ""):
                    parsed = _parse_body(adapter, await response.aread())
                    record_provider_request(provider=adapter.name, streaming=True, success=True)
                    for event in _replay(parsed):
                        yield event
                    return

                state = StreamState()
                decoder = adapter.new_decoder()
                async for line in response.aiter_lines():
                    for record in decoder.feed(line):
                        for event in adapter.parse_stream_record(record, state):
                            yield event
                for record in decoder.close():
                    for event in adapter.parse_stream_record(record, state):
                        yield event
                for event in adapter.finish_stream(state):
                    yield event
                record_provider_request(provider=adapter.name, streaming=True, success=True)
                yield StreamEvent(type=StreamEventType.DONE, response=adapter.stream_response(state))
        except httpx.HTTPError as e:
            record_provider_request(provider=adapter.name, streaming=True, success=False)
            raise TransportError(adapter.name, f"{type(e).__name__}: {e}") from e

    @staticmethod
    def _log_response(adapter: ProviderAdapter, status_code: int, start: float, streaming: bool) -> None:
        logger.info(
            "Provider %s request answered",
            "stream" if streaming else "buffered",
            extra={
                "provider": adapter.name,
                "model": adapter.model,
                "status_code": status_code,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
            },
        )


def _parse_body(adapter: ProviderAdapter, raw: bytes) -> ChatResponse:
    try:
        body = json.loads(raw)
    except ValueError as e:
        raise MalformedProviderResponseError(adapter.name, "response body is not valid JSON") from e
    if not isinstance(body, dict):
        raise MalformedProviderResponseError(adapter.name, "response body is not a JSON object")
    return adapter.parse_response(body)


def _replay(response: ChatResponse) -> list[StreamEvent]:
    """Express a buffered response as the events a stream would have produced."""
    events: list[StreamEvent] = []
    if response.content:
        events.append(StreamEvent(type=StreamEventType.TEXT, text=response.content))
    events.extend(StreamEvent(type=StreamEventType.TOOL_CALL, tool_call=c) for c in response.tool_calls)
    events.append(StreamEvent(type=StreamEventType.DONE, response=response))
    return events


def _follow_up_history(
    messages: list[ChatMessage],
    first: ChatResponse,
    results: list[ToolResult],
) -> list[ChatMessage]:
    return [
        *messages,
        ChatMessage.assistant(first.content, first.tool_calls),
        *(ChatMessage.tool(call, result) for call, result in zip(first.tool_calls, results)),
    ]


def _merge(first: ChatResponse, results: list[ToolResult], follow: ChatResponse | None) -> ChatResponse:
    if follow is None:
        return first.model_copy(update={"tool_results": results})
    return ChatResponse(
        content=first.content + follow.content,
        tool_calls=first.tool_calls,
        tool_results=results,
        pending_tool_calls=follow.tool_calls,
        finish_reason=follow.finish_reason,
        usage=first.usage + follow.usage,
        model=follow.model or first.model,
        provider=first.provider,
    )
