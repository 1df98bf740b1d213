"""
Comrade Approval Log

Append-only, tamper-evident record of every approval decision. Each entry
is linked to the previous one via a SHA-256 hash, so editing any stored
entry breaks the chain and is caught by verify_integrity().

Features:
- Append-only: entries are never modified once written
- Tamper-evident: any modification breaks the hash chain
- Queryable: filter by tool, session or decision
- Exportable: JSON export for external audit
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from comrade.core.models import ApprovalDecision, ApprovalLogEntry

logger = logging.getLogger(__name__)


class HashedApproval(BaseModel):
    """An approval log entry with hash chaining."""

    entry: ApprovalLogEntry
    hash: str = Field(..., description="SHA-256 hash of this entry + previous hash")
    previous_hash: str = Field(..., description="Hash of the previous entry")
    sequence: int = Field(0, description="Sequential entry number")


def _entry_digest(entry: ApprovalLogEntry, previous_hash: str, sequence: int) -> str:
    content = json.dumps(
        {
            "entry": entry.model_dump(mode="json"),
            "previous_hash": previous_hash,
            "sequence": sequence,
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(content.encode()).hexdigest()


class ApprovalLog:
    """Hash-chained log of approval decisions."""

    GENESIS_HASH = "0" * 64

    def __init__(self) -> None:
        self._entries: list[HashedApproval] = []
        self._current_hash: str = self.GENESIS_HASH
        self._subscribers: list[Callable[[HashedApproval], Awaitable[None]]] = []

    def subscribe(self, callback: Callable[[HashedApproval], Awaitable[None]]) -> None:
        """Register an async callback for new entries."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[HashedApproval], Awaitable[None]]) -> None:
        self._subscribers = [s for s in self._subscribers if s is not callback]

    def append(self, entry: ApprovalLogEntry) -> HashedApproval:
        """Append an entry, chaining it to the current head."""
        sequence = len(self._entries)
        entry_hash = _entry_digest(entry, self._current_hash, sequence)
        hashed = HashedApproval(
            entry=entry,
            hash=entry_hash,
            previous_hash=self._current_hash,
            sequence=sequence,
        )
        self._entries.append(hashed)
        self._current_hash = entry_hash
        return hashed

    async def append_async(self, entry: ApprovalLogEntry) -> HashedApproval:
        """Append an entry and notify subscribers.

        Subscriber failures are logged; they never undo or block the append.
        """
        hashed = self.append(entry)
        for callback in self._subscribers:
            try:
                await callback(hashed)
            except Exception:
                logger.exception("Approval log subscriber failed", extra={"tool_name": entry.tool_name})
        return hashed

    def verify_integrity(self) -> tuple[bool, str]:
        """Verify the entire chain is intact. Returns (is_valid, message)."""
        if not self._entries:
            return True, "Empty log: no entries to verify"

        expected_prev = self.GENESIS_HASH
        for i, hashed in enumerate(self._entries):
            if hashed.previous_hash != expected_prev:
                return False, (
                    f"Chain broken at entry {i}: "
                    f"expected previous_hash={expected_prev[:16]}..., "
                    f"got {hashed.previous_hash[:16]}..."
                )
            recomputed = _entry_digest(hashed.entry, hashed.previous_hash, hashed.sequence)
            if recomputed != hashed.hash:
                return False, (
                    f"Tampered entry at {i}: "
                    f"stored hash={hashed.hash[:16]}..., "
                    f"recomputed={recomputed[:16]}..."
                )
            expected_prev = hashed.hash

        return True, f"All {len(self._entries)} entries verified, chain intact"

    def entries(
        self,
        tool_name: str | None = None,
        session_id: str | None = None,
        decision: ApprovalDecision | None = None,
    ) -> list[ApprovalLogEntry]:
        """Query entries with optional filters, oldest first."""
        results = [h.entry for h in self._entries]
        if tool_name:
            results = [e for e in results if e.tool_name == tool_name]
        if session_id:
            results = [e for e in results if e.context.get("session_id") == session_id]
        if decision:
            results = [e for e in results if e.decision == decision]
        return results

    def hashed_entries(self) -> list[HashedApproval]:
        return list(self._entries)

    def clear(self) -> None:
        """Drop every entry and restart the chain from genesis."""
        self._entries.clear()
        self._current_hash = self.GENESIS_HASH

    def export(self) -> dict[str, Any]:
        return {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "total_entries": len(self._entries),
            "chain_head": self._current_hash,
            "entries": [
                {
                    "sequence": h.sequence,
                    "hash": h.hash,
                    "previous_hash": h.previous_hash,
                    "entry": h.entry.model_dump(mode="json"),
                }
                for h in self._entries
            ],
        }

    def export_json(self, path: str | Path) -> None:
        """Export the full log as JSON for external audit."""
        Path(path).write_text(json.dumps(self.export(), indent=2, default=str))

    @property
    def head_hash(self) -> str:
        return self._current_hash

    def __len__(self) -> int:
        return len(self._entries)
