"""
Comrade Ollama Adapter

Translates to and from the Ollama local chat API (``POST {base}/api/chat``).
No API key needed: runs against a local Ollama instance.

Default URL: http://localhost:11434
Override with the OLLAMA_BASE_URL environment variable.

Ollama streams newline-delimited JSON objects and finishes with
``"done": true``. Tool calls arrive whole, with object arguments and no
ids, so ids are synthesized here.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from comrade.core.models import ChatMessage, ChatResponse, ChatToolCall, Role, StreamEvent, Usage
from comrade.exceptions import MalformedProviderResponseError, TransportError
from comrade.providers.base import (
    AgentConfig,
    ChatOptions,
    ProviderAdapter,
    ProviderKind,
    StreamState,
    normalize_finish_reason,
)
from comrade.providers.streaming import new_call_id, parse_arguments

logger = logging.getLogger(__name__)


class OllamaAdapter(ProviderAdapter):
    """Local Ollama models through the native chat endpoint."""

    kind = ProviderKind.OLLAMA
    DEFAULT_MODEL = "llama3.1"
    DEFAULT_BASE_URL = "http://localhost:11434"
    requires_api_key = False
    stream_format = "ndjson"

    def __init__(self, config: AgentConfig):
        if not config.base_url:
            config = config.model_copy(
                update={"base_url": os.environ.get("OLLAMA_BASE_URL", self.DEFAULT_BASE_URL)}
            )
        super().__init__(config)

    def endpoint(self) -> str:
        return f"{self.base_url}/api/chat"

    def headers(self, api_key: str | None) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def build_body(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
        options: ChatOptions,
        stream: bool,
    ) -> dict[str, Any]:
        ollama_messages: list[dict[str, Any]] = []
        if options.system_prompt:
            ollama_messages.append({"role": "system", "content": options.system_prompt})
        for msg in messages:
            converted: dict[str, Any] = {"role": msg.role.value, "content": msg.content}
            if msg.role == Role.ASSISTANT and msg.tool_calls:
                converted["tool_calls"] = [
                    {"function": {"name": call.name, "arguments": call.parameters}}
                    for call in msg.tool_calls
                ]
            if msg.role == Role.TOOL and msg.name:
                converted["tool_name"] = msg.name
            ollama_messages.append(converted)

        model_options: dict[str, Any] = {"num_predict": self._max_tokens(options)}
        temperature = self._temperature(options)
        if temperature is not None:
            model_options["temperature"] = temperature
        if options.stop:
            model_options["stop"] = options.stop

        body: dict[str, Any] = {
            "model": self.model,
            "messages": ollama_messages,
            "stream": stream,
            "options": model_options,
        }
        if tools:
            body["tools"] = [
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
        return body

    def _tool_calls(self, message: dict[str, Any]) -> list[ChatToolCall]:
        calls: list[ChatToolCall] = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function") or {}
            parameters, error = parse_arguments(function.get("arguments"))
            calls.append(
                ChatToolCall(
                    id=raw.get("id") or new_call_id(),
                    name=function.get("name", ""),
                    parameters=parameters,
                    parse_error=error,
                )
            )
        return calls

    def parse_response(self, body: dict[str, Any]) -> ChatResponse:
        if "error" in body:
            raise TransportError(self.name, str(body["error"]))
        message = body.get("message")
        if not isinstance(message, dict):
            raise MalformedProviderResponseError(self.name, "response has no message")

        tool_calls = self._tool_calls(message)
        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=normalize_finish_reason(body.get("done_reason"), bool(tool_calls)),
            usage=Usage.of(body.get("prompt_eval_count", 0), body.get("eval_count", 0)),
            model=body.get("model", self.model),
            provider=self.name,
        )

    def parse_stream_record(self, record: str, state: StreamState) -> list[StreamEvent]:
        try:
            chunk = json.loads(record)
        except json.JSONDecodeError:
            logger.warning("Skipping undecodable stream record", extra={"provider": self.name})
            return []
        if not isinstance(chunk, dict):
            return []
        if "error" in chunk:
            raise TransportError(self.name, f"stream error: {chunk['error']}")

        if chunk.get("model"):
            state.model = chunk["model"]
        message = chunk.get("message") or {}
        events = state.emit_text(message.get("content") or "")
        events.extend(state.emit_calls(self._tool_calls(message)))

        if chunk.get("done"):
            state.done = True
            state.finish_raw = chunk.get("done_reason") or "stop"
            state.prompt_tokens = chunk.get("prompt_eval_count", state.prompt_tokens)
            state.completion_tokens = chunk.get("eval_count", state.completion_tokens)
        return events
