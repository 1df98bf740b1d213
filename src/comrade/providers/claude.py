"""
Comrade Anthropic Adapter

Translates to and from the Anthropic Messages API
(``POST {base}/v1/messages``).

Differences from the OpenAI shape that this adapter absorbs:
- the system prompt is a top-level ``system`` field, not a message
- assistant turns are lists of ``text`` / ``tool_use`` content blocks
- tool results go back as a user message of ``tool_result`` blocks
- streams are typed SSE records; tool input arrives as ``input_json_delta``
  fragments and is complete at ``content_block_stop``
"""

from __future__ import annotations

import json
import logging
from typing import Any

from comrade.core.models import ChatMessage, ChatResponse, ChatToolCall, Role, StreamEvent, Usage
from comrade.exceptions import MalformedProviderResponseError, TransportError
from comrade.providers.base import (
    ChatOptions,
    ProviderAdapter,
    ProviderKind,
    StreamState,
    normalize_finish_reason,
)
from comrade.providers.streaming import SSEEvent, new_call_id

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(ProviderAdapter):
    """Anthropic Messages API with tool use."""

    kind = ProviderKind.ANTHROPIC
    DEFAULT_MODEL = "claude-sonnet-4-20250514"
    DEFAULT_BASE_URL = "https://api.anthropic.com"

    def endpoint(self) -> str:
        return f"{self.base_url}/v1/messages"

    def headers(self, api_key: str | None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        if api_key:
            headers["x-api-key"] = api_key
        return headers

    def build_body(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
        options: ChatOptions,
        stream: bool,
    ) -> dict[str, Any]:
        system_parts = [options.system_prompt] if options.system_prompt else []
        system_parts.extend(m.content for m in messages if m.role == Role.SYSTEM and m.content)

        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self._max_tokens(options),
            "messages": self._convert_messages([m for m in messages if m.role != Role.SYSTEM]),
            "stream": stream,
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)
        temperature = self._temperature(options)
        if temperature is not None:
            body["temperature"] = temperature
        if options.stop:
            body["stop_sequences"] = options.stop
        if tools:
            body["tools"] = [
                {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "input_schema": t.get("parameters", {"type": "object", "properties": {}}),
                }
                for t in tools
            ]
        return body

    @staticmethod
    def _convert_messages(messages: list[ChatMessage]) -> list[dict[str, Any]]:
        converted: list[dict[str, Any]] = []
        for msg in messages:
            if msg.role == Role.TOOL:
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id or "",
                    "content": msg.content,
                }
                if msg.is_error:
                    block["is_error"] = True
                # consecutive results share one user turn
                previous = converted[-1] if converted else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif msg.role == Role.ASSISTANT and msg.tool_calls:
                blocks: list[dict[str, Any]] = []
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})
                blocks.extend(
                    {"type": "tool_use", "id": call.id, "name": call.name, "input": call.parameters}
                    for call in msg.tool_calls
                )
                converted.append({"role": "assistant", "content": blocks})
            else:
                converted.append({"role": msg.role.value, "content": msg.content})
        return converted

    def parse_response(self, body: dict[str, Any]) -> ChatResponse:
        content = body.get("content")
        if not isinstance(content, list):
            raise MalformedProviderResponseError(self.name, "response has no content blocks")

        text_parts: list[str] = []
        tool_calls: list[ChatToolCall] = []
        for block in content:
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                raw_input = block.get("input")
                tool_calls.append(
                    ChatToolCall(
                        id=block.get("id") or new_call_id(),
                        name=block.get("name", ""),
                        parameters=raw_input if isinstance(raw_input, dict) else {},
                        parse_error=None if isinstance(raw_input, dict) else "tool input must be a JSON object",
                    )
                )

        usage = body.get("usage") or {}
        return ChatResponse(
            content="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=normalize_finish_reason(body.get("stop_reason"), bool(tool_calls)),
            usage=Usage.of(usage.get("input_tokens", 0), usage.get("output_tokens", 0)),
            model=body.get("model", self.model),
            provider=self.name,
        )

    def parse_stream_record(self, record: SSEEvent, state: StreamState) -> list[StreamEvent]:
        if not record.data.strip():
            return []
        try:
            data = json.loads(record.data)
        except json.JSONDecodeError:
            logger.warning("Skipping undecodable stream record", extra={"provider": self.name})
            return []
        if not isinstance(data, dict):
            return []

        event_type = data.get("type") or record.event
        if event_type == "message_start":
            message = data.get("message") or {}
            state.model = message.get("model", state.model)
            usage = message.get("usage") or {}
            state.prompt_tokens = usage.get("input_tokens", state.prompt_tokens)
            state.completion_tokens = usage.get("output_tokens", state.completion_tokens)
            return []

        if event_type == "content_block_start":
            block = data.get("content_block") or {}
            if block.get("type") == "tool_use":
                state.pending.update(data.get("index", 0), id=block.get("id"), name=block.get("name"))
                return []
            return state.emit_text(block.get("text", ""))

        if event_type == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta":
                return state.emit_text(delta.get("text", ""))
            if delta.get("type") == "input_json_delta":
                state.pending.update(data.get("index", 0), fragment=delta.get("partial_json", ""))
            return []

        if event_type == "content_block_stop":
            call = state.pending.finish(data.get("index", 0))
            return state.emit_calls([call]) if call is not None else []

        if event_type == "message_delta":
            delta = data.get("delta") or {}
            if delta.get("stop_reason"):
                state.finish_raw = delta["stop_reason"]
            usage = data.get("usage") or {}
            state.completion_tokens = usage.get("output_tokens", state.completion_tokens)
            return []

        if event_type == "message_stop":
            state.done = True
            return self.finish_stream(state)

        if event_type == "error":
            error = data.get("error") or {}
            raise TransportError(self.name, f"stream error: {error.get('type', 'error')}: {error.get('message', '')}")

        return []
