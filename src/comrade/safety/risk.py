"""
Comrade Security Risk Assessor

Scores every requested tool call before it can run. The score is additive
and capped at 100:

    base tier          low 10 / medium 40 / high 70
    restricted context +20, escalates the effective tier one step
    parameter patterns destructive commands, system control, code
                       execution, traversal, sensitive words
    path parameters    absolute path, sensitive file names
    URL parameters     plain http, shorteners, private hosts, unparsable
    permissions        high-risk permission requirements
    rate               more than 5 calls of one tool in 60 s per session

In a restricted context a high-tier tool is blocked outright, whatever the
score. Assessment performs no I/O; the only state it touches is the
per-session rate window.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import re
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from comrade.core.models import ExecutionContext, RiskTier, SecurityAssessment, SecurityLevel

if TYPE_CHECKING:
    from comrade.tools.registry import ToolDefinition

logger = logging.getLogger(__name__)

MAX_RISK_SCORE = 100

TIER_BASE_SCORES: dict[RiskTier, tuple[int, str]] = {
    RiskTier.LOW: (10, "Low-risk tool category"),
    RiskTier.MEDIUM: (40, "Medium-risk tool category"),
    RiskTier.HIGH: (70, "High-risk tool category"),
}

RESTRICTED_CONTEXT_SCORE = 20

PARAMETER_PATTERNS: list[tuple[re.Pattern[str], str, int]] = [
    (re.compile(r"rm\s+-rf|del\s+/[sq]|format\s+c:"), "Destructive file operations", 30),
    (re.compile(r"shutdown|reboot|halt"), "System control commands", 25),
    (re.compile(r"__import__|eval\(|exec\("), "Code execution patterns", 20),
    (re.compile(r"\.\./|\.\.\\"), "Directory traversal patterns", 15),
    (re.compile(r"password|secret|token|key|credential"), "Sensitive data patterns", 10),
]

PATH_KEYS = frozenset({"path", "file", "filename", "directory", "dir"})
URL_KEYS = frozenset({"url", "uri", "endpoint", "href"})

SENSITIVE_FILE_MARKERS = (
    ".env",
    ".git",
    ".ssh",
    "config",
    "settings",
    "credentials",
    "secrets",
    "keys",
    "package.json",
    "node_modules",
)

URL_SHORTENERS = frozenset({"bit.ly", "tinyurl.com", "goo.gl", "t.co", "short.link", "ow.ly", "is.gd"})

HIGH_RISK_PERMISSIONS = frozenset({
    "filesystem.write",
    "system.execute",
    "network.request",
    "git.write",
    "host.commands",
})

RATE_WINDOW_SECONDS = 60.0
RATE_LIMIT = 5

_WINDOWS_ABSOLUTE = re.compile(r"^[a-zA-Z]:[\\/]")


def is_path_key(key: str) -> bool:
    key = key.lower()
    return key in PATH_KEYS or key.endswith("_path")


def is_url_key(key: str) -> bool:
    key = key.lower()
    return key in URL_KEYS or key.endswith("_url")


class RateWindow:
    """Sliding-window invocation counter keyed by (session_id, tool_name).

    Kept as append + prune: each hit appends a timestamp and drops entries
    older than the window before counting. Keys whose window has emptied
    are dropped, so idle sessions and tools do not accumulate.
    """

    def __init__(
        self,
        window_seconds: float = RATE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._window = window_seconds
        self._clock = clock
        self._hits: dict[tuple[str, str], deque[float]] = {}
        self._lock = threading.Lock()

    def hit(self, session_id: str, tool_name: str) -> int:
        """Record one invocation and return the count inside the window."""
        now = self._clock()
        with self._lock:
            self._sweep(now)
            hits = self._hits.setdefault((session_id, tool_name), deque())
            hits.append(now)
            return len(hits)

    def count(self, session_id: str, tool_name: str) -> int:
        """Count invocations inside the window without recording one."""
        now = self._clock()
        with self._lock:
            key = (session_id, tool_name)
            hits = self._hits.get(key)
            if hits is None:
                return 0
            self._prune(hits, now)
            if not hits:
                del self._hits[key]
            return len(hits)

    def clear(self, session_id: str | None = None) -> None:
        with self._lock:
            if session_id is None:
                self._hits.clear()
            else:
                for key in [k for k in self._hits if k[0] == session_id]:
                    del self._hits[key]

    def _prune(self, hits: deque[float], now: float) -> None:
        while hits and now - hits[0] > self._window:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        for key in list(self._hits):
            hits = self._hits[key]
            self._prune(hits, now)
            if not hits:
                del self._hits[key]

    def __len__(self) -> int:
        """Number of (session, tool) keys currently tracked."""
        with self._lock:
            return len(self._hits)


class SecurityRiskAssessor:
    """Computes a SecurityAssessment for a tool call.

    Owns the rate window; everything else is a pure function of the tool,
    its parameters and the execution context.
    """

    def __init__(self, rate_window: RateWindow | None = None, rate_limit: int = RATE_LIMIT):
        self._rate_window = rate_window if rate_window is not None else RateWindow()
        self._rate_limit = rate_limit

    @property
    def rate_window(self) -> RateWindow:
        return self._rate_window

    def assess(
        self,
        tool: ToolDefinition,
        parameters: dict[str, Any],
        context: ExecutionContext,
        record: bool = True,
    ) -> SecurityAssessment:
        """Score a call. ``record=False`` previews without touching the rate window."""
        score = 0
        factors: list[str] = []
        warnings: list[str] = []
        block = False

        tier = tool.security.risk_tier
        base, label = TIER_BASE_SCORES[tier]
        score += base
        factors.append(label)

        effective_tier = tier
        if context.security_level == SecurityLevel.RESTRICTED:
            score += RESTRICTED_CONTEXT_SCORE
            factors.append("Restricted security context")
            effective_tier = tier.escalate()
            if tier == RiskTier.HIGH:
                block = True
                warnings.append("High-risk tools are blocked in restricted mode")

        score += self._assess_parameters(parameters, factors, warnings)

        if tool.security.required_permissions & HIGH_RISK_PERMISSIONS:
            score += 15
            factors.append("High-risk permissions required")

        if record:
            calls = self._rate_window.hit(context.session_id, tool.name)
        else:
            calls = self._rate_window.count(context.session_id, tool.name) + 1
        if calls > self._rate_limit:
            score += 10
            factors.append("Rapid successive executions detected")
            warnings.append("Multiple rapid executions of this tool detected")

        assessment = SecurityAssessment(
            risk_score=min(score, MAX_RISK_SCORE),
            risk_factors=factors,
            warnings=warnings,
            block_execution=block,
            effective_tier=effective_tier,
        )
        logger.debug(
            "Assessed tool call",
            extra={
                "tool_name": tool.name,
                "session_id": context.session_id,
                "risk_score": assessment.risk_score,
                "risk_tier": effective_tier.value,
            },
        )
        return assessment

    def clear_history(self, session_id: str | None = None) -> None:
        """Reset the rate window, for one session or all of them."""
        self._rate_window.clear(session_id)

    def _assess_parameters(self, parameters: dict[str, Any], factors: list[str], warnings: list[str]) -> int:
        if not isinstance(parameters, dict):
            return 0

        score = 0
        serialized = json.dumps(parameters, default=str).lower()
        for pattern, label, pattern_score in PARAMETER_PATTERNS:
            if pattern.search(serialized):
                warnings.append(label)
                factors.append(label)
                score += pattern_score

        paths = [v for k, v in parameters.items() if is_path_key(k) and isinstance(v, str)]
        urls = [v for k, v in parameters.items() if is_url_key(k) and isinstance(v, str)]
        score += self._assess_paths(paths, factors, warnings)
        score += self._assess_urls(urls, factors, warnings)
        return score

    def _assess_paths(self, paths: list[str], factors: list[str], warnings: list[str]) -> int:
        score = 0
        if any(p.startswith("/") or _WINDOWS_ABSOLUTE.match(p) for p in paths):
            warnings.append("Absolute file path detected")
            factors.append("Absolute file path usage")
            score += 15
        if any(marker in p.lower() for p in paths for marker in SENSITIVE_FILE_MARKERS):
            warnings.append("Access to sensitive files detected")
            factors.append("Sensitive file access")
            score += 10
        return score

    def _assess_urls(self, urls: list[str], factors: list[str], warnings: list[str]) -> int:
        score = 0
        insecure = shortener = private = invalid = False
        for raw in urls:
            try:
                parsed = urlparse(raw.strip())
                host = (parsed.hostname or "").lower()
            except ValueError:
                invalid = True
                continue
            if not parsed.scheme or not host:
                invalid = True
                continue
            if parsed.scheme != "https":
                insecure = True
            if any(host == s or host.endswith("." + s) for s in URL_SHORTENERS):
                shortener = True
            if _is_private_host(host):
                private = True

        if insecure:
            warnings.append("Non-HTTPS URL detected")
            factors.append("Insecure protocol")
            score += 10
        if shortener:
            warnings.append("URL shortener detected")
            factors.append("URL shortener usage")
            score += 15
        if private:
            warnings.append("Local/private network access detected")
            factors.append("Local network access")
            score += 5
        if invalid:
            warnings.append("Invalid URL format")
            factors.append("Invalid URL format")
            score += 5
        return score


def _is_private_host(host: str) -> bool:
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_private or address.is_link_local
