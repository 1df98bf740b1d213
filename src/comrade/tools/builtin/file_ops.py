"""File operation tools, confined to a workspace directory.

Four tools with different security profiles:
- read_file:   LOW risk, no approval (read-only)
- list_files:  LOW risk, no approval (read-only)
- write_file:  MEDIUM risk, approval, not allowed in restricted hosts
- delete_file: HIGH risk, approval (irreversible)

Every path is resolved against the workspace root; a path that resolves
outside it is refused before any file is touched.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from comrade.core.models import ExecutionContext, RiskTier
from comrade.tools.models import ToolCategory, ToolSecurity
from comrade.tools.registry import ToolDefinition

MAX_READ_BYTES = 1_048_576
DEFAULT_MAX_LINES = 200
MAX_LISTED_ENTRIES = 500


class Workspace:
    """Resolves tool-supplied paths inside a fixed root directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def resolve(self, path: str) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        resolved = candidate.resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise PermissionError(f"Path '{path}' is outside the workspace")
        return resolved

    def relative(self, path: Path) -> str:
        return str(path.relative_to(self.root)) or "."


def create_file_tools(root: str | Path) -> list[ToolDefinition]:
    """Build the file tools bound to one workspace root."""
    workspace = Workspace(root)

    def read_file(parameters: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
        target = workspace.resolve(parameters["path"])
        if not target.is_file():
            raise FileNotFoundError(f"File not found: {parameters['path']}")
        size = target.stat().st_size
        if size > MAX_READ_BYTES:
            raise ValueError(f"File too large ({size} bytes). Max {MAX_READ_BYTES}.")

        max_lines = parameters.get("max_lines", DEFAULT_MAX_LINES)
        lines = target.read_text(encoding="utf-8", errors="replace").splitlines()
        return {
            "path": workspace.relative(target),
            "content": "\n".join(lines[:max_lines]),
            "truncated": len(lines) > max_lines,
            "total_lines": len(lines),
        }

    def write_file(parameters: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
        target = workspace.resolve(parameters["path"])
        content = parameters["content"]
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return {"path": workspace.relative(target), "bytes_written": len(content.encode("utf-8"))}

    def list_files(parameters: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
        target = workspace.resolve(parameters.get("path", "."))
        if not target.is_dir():
            raise NotADirectoryError(f"Not a directory: {parameters.get('path', '.')}")
        pattern = parameters.get("pattern", "*")
        entries = sorted(target.glob(pattern))[:MAX_LISTED_ENTRIES]
        return {
            "path": workspace.relative(target),
            "entries": [
                {"name": workspace.relative(e), "type": "directory" if e.is_dir() else "file"}
                for e in entries
            ],
        }

    def delete_file(parameters: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
        target = workspace.resolve(parameters["path"])
        if target == workspace.root:
            raise PermissionError("Refusing to delete the workspace root")
        if not target.is_file():
            raise FileNotFoundError(f"File not found: {parameters['path']}")
        target.unlink()
        return {"path": workspace.relative(target), "deleted": True}

    return [
        ToolDefinition(
            name="read_file",
            description="Read a text file from the workspace. Returns its content and line counts.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "minLength": 1, "description": "Path relative to the workspace"},
                    "max_lines": {"type": "integer", "minimum": 1, "maximum": 5000},
                },
                "required": ["path"],
            },
            executor=read_file,
            security=ToolSecurity(
                risk_tier=RiskTier.LOW,
                required_permissions=frozenset({"filesystem.read"}),
            ),
            category=ToolCategory.FILESYSTEM,
        ),
        ToolDefinition(
            name="list_files",
            description="List files and directories in a workspace directory, optionally filtered by a glob.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Directory relative to the workspace"},
                    "pattern": {"type": "string", "description": "Glob pattern, e.g. '*.py'"},
                },
            },
            executor=list_files,
            security=ToolSecurity(
                risk_tier=RiskTier.LOW,
                required_permissions=frozenset({"filesystem.read"}),
            ),
            category=ToolCategory.FILESYSTEM,
        ),
        ToolDefinition(
            name="write_file",
            description="Write text to a file in the workspace, creating parent directories if needed.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "minLength": 1},
                    "content": {"type": "string"},
                },
                "required": ["path", "content"],
            },
            executor=write_file,
            security=ToolSecurity(
                requires_approval=True,
                allowed_in_restricted_host=False,
                risk_tier=RiskTier.MEDIUM,
                required_permissions=frozenset({"filesystem.write"}),
            ),
            category=ToolCategory.FILESYSTEM,
        ),
        ToolDefinition(
            name="delete_file",
            description="Permanently delete a file from the workspace.",
            parameters={
                "type": "object",
                "properties": {"path": {"type": "string", "minLength": 1}},
                "required": ["path"],
            },
            executor=delete_file,
            security=ToolSecurity(
                requires_approval=True,
                allowed_in_restricted_host=False,
                risk_tier=RiskTier.HIGH,
                required_permissions=frozenset({"filesystem.write"}),
            ),
            category=ToolCategory.FILESYSTEM,
        ),
    ]
