"""
Comrade Built-in Tools

Tools with security profiles that are registered when Comrade is created
with builtin_tools=True: workspace file operations, URL fetching and
shell commands.
"""

from __future__ import annotations

from pathlib import Path

import httpx

from comrade.tools.builtin.command_exec import check_command, create_command_tool
from comrade.tools.builtin.fetch_url import create_fetch_tool
from comrade.tools.builtin.file_ops import Workspace, create_file_tools
from comrade.tools.registry import ToolDefinition, ToolRegistry

BUILTIN_PERMISSIONS = frozenset({"filesystem.read", "filesystem.write", "network.request", "system.execute"})


def builtin_tools(
    workspace_root: str | Path = ".",
    http_client: httpx.AsyncClient | None = None,
) -> list[ToolDefinition]:
    return [
        *create_file_tools(workspace_root),
        create_fetch_tool(http_client),
        create_command_tool(workspace_root),
    ]


def register_all_builtins(
    registry: ToolRegistry,
    workspace_root: str | Path = ".",
    http_client: httpx.AsyncClient | None = None,
) -> None:
    """Register all built-in tools with the given registry."""
    for tool in builtin_tools(workspace_root, http_client):
        registry.register(tool)


__all__ = [
    "BUILTIN_PERMISSIONS",
    "Workspace",
    "builtin_tools",
    "check_command",
    "create_command_tool",
    "create_fetch_tool",
    "create_file_tools",
    "register_all_builtins",
]
