"""
Comrade Stream Decoding

Turns the lines of a streamed provider response into records, and
reassembles tool calls whose JSON arguments arrive in fragments.

Line splitting across arbitrary network chunk boundaries is done by
httpx (Response.aiter_lines); the decoders here only see whole lines.

- SSEDecoder:    ``event:`` / ``data:`` records separated by blank lines
                 (OpenAI, Anthropic)
- NDJSONDecoder: one JSON object per line (Ollama)
- ToolCallAccumulator: per-index argument buffers, finalized into
                 ChatToolCall once complete
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

from comrade.core.models import ChatToolCall


@dataclass
class SSEEvent:
    """One server-sent event record."""

    event: str | None
    data: str


class SSEDecoder:
    """Incremental server-sent-events decoder fed one line at a time."""

    def __init__(self) -> None:
        self._event: str | None = None
        self._data: list[str] = []

    def feed(self, line: str) -> list[SSEEvent]:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return []

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return []

    def close(self) -> list[SSEEvent]:
        """Flush a final record that was not followed by a blank line."""
        return self._dispatch()

    def _dispatch(self) -> list[SSEEvent]:
        if not self._data and self._event is None:
            return []
        record = SSEEvent(event=self._event, data="\n".join(self._data))
        self._event = None
        self._data = []
        return [record]


class NDJSONDecoder:
    """Newline-delimited JSON: every non-blank line is one record."""

    def feed(self, line: str) -> list[str]:
        line = line.strip()
        return [line] if line else []

    def close(self) -> list[str]:
        return []


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def parse_arguments(raw: str | dict | None) -> tuple[dict[str, Any], str | None]:
    """Decode tool arguments. Returns (parameters, parse_error)."""
    if raw is None:
        return {}, None
    if isinstance(raw, dict):
        return raw, None
    text = raw.strip()
    if not text:
        return {}, None
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        return {}, f"arguments are not valid JSON ({e.msg} at position {e.pos})"
    if not isinstance(value, dict):
        return {}, "arguments must be a JSON object"
    return value, None


@dataclass
class _PartialCall:
    id: str | None = None
    name: str = ""
    fragments: list[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Collects streamed tool-call fragments keyed by provider index.

    A call is emitted only when finished; an argument buffer that never
    parses yields a ChatToolCall carrying ``parse_error``.
    """

    def __init__(self) -> None:
        self._calls: dict[Any, _PartialCall] = {}

    def update(self, key: Any, *, id: str | None = None, name: str | None = None, fragment: str | None = None) -> None:
        partial = self._calls.setdefault(key, _PartialCall())
        if id:
            partial.id = id
        if name:
            partial.name = name
        if fragment:
            partial.fragments.append(fragment)

    def __contains__(self, key: Any) -> bool:
        return key in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    def finish(self, key: Any) -> ChatToolCall | None:
        partial = self._calls.pop(key, None)
        if partial is None:
            return None
        return self._build(partial)

    def finish_all(self) -> list[ChatToolCall]:
        """Finalize every open call in the order it was first seen."""
        calls = [self._build(p) for p in self._calls.values()]
        self._calls.clear()
        return calls

    def _build(self, partial: _PartialCall) -> ChatToolCall:
        parameters, error = parse_arguments("".join(partial.fragments))
        return ChatToolCall(
            id=partial.id or new_call_id(),
            name=partial.name,
            parameters=parameters,
            parse_error=error,
        )
