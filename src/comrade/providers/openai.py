"""
Comrade OpenAI Adapter

Translates to and from the OpenAI chat-completions wire format
(``POST {base}/chat/completions``). Also works with OpenAI-compatible
APIs (Azure, Together, Groq, LM Studio) via base_url.

Tool calls travel as ``tool_calls[].function`` with JSON-encoded string
arguments; when streamed, the argument string arrives in fragments keyed
by ``index`` and the stream ends with ``data: [DONE]``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from comrade.core.models import ChatMessage, ChatResponse, ChatToolCall, Role, StreamEvent, Usage
from comrade.exceptions import MalformedProviderResponseError
from comrade.providers.base import (
    ChatOptions,
    ProviderAdapter,
    ProviderKind,
    StreamState,
    normalize_finish_reason,
)
from comrade.providers.streaming import SSEEvent, new_call_id, parse_arguments

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class OpenAIAdapter(ProviderAdapter):
    """OpenAI and OpenAI-compatible chat completions."""

    kind = ProviderKind.OPENAI
    DEFAULT_MODEL = "gpt-4o"
    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def headers(self, api_key: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def build_body(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
        options: ChatOptions,
        stream: bool,
    ) -> dict[str, Any]:
        oai_messages: list[dict[str, Any]] = []
        if options.system_prompt:
            oai_messages.append({"role": "system", "content": options.system_prompt})
        oai_messages.extend(self._convert_message(m) for m in messages)

        body: dict[str, Any] = {
            "model": self.model,
            "messages": oai_messages,
            "max_tokens": self._max_tokens(options),
            "stream": stream,
        }
        temperature = self._temperature(options)
        if temperature is not None:
            body["temperature"] = temperature
        if options.stop:
            body["stop"] = options.stop
        if tools:
            body["tools"] = self._convert_tools(tools)
        if stream:
            body["stream_options"] = {"include_usage": True}
        return body

    @staticmethod
    def _convert_message(msg: ChatMessage) -> dict[str, Any]:
        if msg.role == Role.TOOL:
            return {"role": "tool", "tool_call_id": msg.tool_call_id or "", "content": msg.content}
        if msg.role == Role.ASSISTANT and msg.tool_calls:
            return {
                "role": "assistant",
                "content": msg.content or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.parameters)},
                    }
                    for call in msg.tool_calls
                ],
            }
        return {"role": msg.role.value, "content": msg.content}

    @staticmethod
    def _convert_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "parameters": t.get("parameters", {"type": "object", "properties": {}}),
                },
            }
            for t in tools
        ]

    def parse_response(self, body: dict[str, Any]) -> ChatResponse:
        choices = body.get("choices")
        if not isinstance(choices, list) or not choices:
            raise MalformedProviderResponseError(self.name, "response has no choices")
        choice = choices[0]
        message = choice.get("message") or {}

        tool_calls: list[ChatToolCall] = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function") or {}
            parameters, error = parse_arguments(function.get("arguments"))
            tool_calls.append(
                ChatToolCall(
                    id=raw.get("id") or new_call_id(),
                    name=function.get("name", ""),
                    parameters=parameters,
                    parse_error=error,
                )
            )

        usage = body.get("usage") or {}
        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=normalize_finish_reason(choice.get("finish_reason"), bool(tool_calls)),
            usage=Usage.of(usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0)),
            model=body.get("model", self.model),
            provider=self.name,
        )

    def parse_stream_record(self, record: SSEEvent, state: StreamState) -> list[StreamEvent]:
        data = record.data.strip()
        if not data:
            return []
        if data == DONE_SENTINEL:
            state.done = True
            return self.finish_stream(state)
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Skipping undecodable stream record", extra={"provider": self.name})
            return []
        if not isinstance(chunk, dict):
            return []

        if chunk.get("model"):
            state.model = chunk["model"]
        usage = chunk.get("usage")
        if usage:
            state.prompt_tokens = usage.get("prompt_tokens", state.prompt_tokens)
            state.completion_tokens = usage.get("completion_tokens", state.completion_tokens)

        events: list[StreamEvent] = []
        for choice in chunk.get("choices") or []:
            delta = choice.get("delta") or {}
            events.extend(state.emit_text(delta.get("content") or ""))
            for fragment in delta.get("tool_calls") or []:
                function = fragment.get("function") or {}
                state.pending.update(
                    fragment.get("index", 0),
                    id=fragment.get("id"),
                    name=function.get("name"),
                    fragment=function.get("arguments"),
                )
            if choice.get("finish_reason"):
                state.finish_raw = choice["finish_reason"]
                events.extend(self.finish_stream(state))
        return events
