"""URL fetch tool: GET a web page or API endpoint over httpx.

Risk: MEDIUM. Requires approval because it reaches external services;
the risk assessor adds points for plain http, shorteners and private hosts.
"""

from __future__ import annotations

from typing import Any

import httpx

from comrade.core.models import ExecutionContext, RiskTier
from comrade.tools.models import ToolCategory, ToolSecurity
from comrade.tools.registry import ToolDefinition

DEFAULT_MAX_CHARS = 32_768
USER_AGENT = "Comrade/0.1 (coding agent)"


def create_fetch_tool(client: httpx.AsyncClient | None = None, timeout: float = 15.0) -> ToolDefinition:
    """Build the fetch_url tool. ``client`` is injectable for tests."""

    async def fetch_url(parameters: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
        max_chars = parameters.get("max_chars", DEFAULT_MAX_CHARS)
        headers = {"User-Agent": USER_AGENT}
        if client is not None:
            response = await client.get(parameters["url"], headers=headers, timeout=timeout)
        else:
            async with httpx.AsyncClient(follow_redirects=True) as own_client:
                response = await own_client.get(parameters["url"], headers=headers, timeout=timeout)

        text = response.text
        return {
            "status_code": response.status_code,
            "content_type": response.headers.get("content-type", ""),
            "content": text[:max_chars],
            "truncated": len(text) > max_chars,
        }

    return ToolDefinition(
        name="fetch_url",
        description="Fetch a URL with HTTP GET and return the status code and response body.",
        parameters={
            "type": "object",
            "properties": {
                "url": {"type": "string", "minLength": 1, "description": "Absolute http(s) URL"},
                "max_chars": {"type": "integer", "minimum": 1, "maximum": 1_000_000},
            },
            "required": ["url"],
        },
        executor=fetch_url,
        security=ToolSecurity(
            requires_approval=True,
            risk_tier=RiskTier.MEDIUM,
            required_permissions=frozenset({"network.request"}),
        ),
        category=ToolCategory.NETWORK,
    )
