"""Shell command tool: run a development command inside the workspace.

Risk: HIGH. Requires two-step approval and the ``system.execute``
permission, and is never offered in a restricted host.

Before anything is spawned the command line is checked against a deny
list of destructive patterns, piping into a shell is refused, and every
command in a chain must start with a known development program. The
process runs with ``asyncio.create_subprocess_shell`` in the workspace
(or a directory inside it) and is killed when its timeout expires.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Any

from comrade.core.models import ExecutionContext, RiskTier
from comrade.tools.builtin.file_ops import Workspace
from comrade.tools.models import ToolCategory, ToolSecurity
from comrade.tools.registry import ToolDefinition

DEFAULT_TIMEOUT_MS = 30_000
MAX_TIMEOUT_MS = 300_000
MAX_OUTPUT_BYTES = 1_048_576

DANGEROUS_COMMANDS = (
    "rm -rf /",
    "rm -rf *",
    "format",
    "del /s /q",
    "shutdown",
    "reboot",
    "halt",
    "poweroff",
    "init 0",
    "init 6",
    "dd if=",
    "mkfs",
    "fdisk",
    "parted",
    "chmod 777",
    "chown -R",
    "sudo rm",
    "sudo dd",
    "sudo mkfs",
    "sudo fdisk",
    "curl | sh",
    "wget | sh",
    "curl | bash",
    "wget | bash",
)

ALLOWED_PROGRAMS = frozenset({
    "ls", "dir", "pwd", "cd", "cat", "type", "echo", "grep", "find", "which", "where",
    "git", "npm", "yarn", "node", "python", "python3", "pip", "pip3", "mvn", "gradle", "make",
    "docker", "kubectl",
    "ps", "top", "htop", "df", "du", "free", "uptime", "whoami", "id",
    "curl", "wget", "ping", "nslookup", "dig", "netstat", "ss",
    "test", "jest", "mocha", "vitest", "pytest", "junit",
    "tsc", "eslint", "prettier", "black", "flake8", "mypy",
})

_PIPE_TO_SHELL = re.compile(r"\|\s*(sh|bash)\b")
_CHAIN_SPLIT = re.compile(r"[;&|]+")


def check_command(command: str) -> str | None:
    """Return why ``command`` may not run, or None when it is allowed."""
    lowered = command.lower().strip()
    if not lowered:
        return "Command is empty"
    for dangerous in DANGEROUS_COMMANDS:
        if dangerous.lower() in lowered:
            return f"Contains dangerous pattern: {dangerous}"
    if _PIPE_TO_SHELL.search(lowered):
        return "Pipe to shell execution is not allowed"
    for part in _CHAIN_SPLIT.split(lowered):
        part = part.strip()
        if part and part.split()[0] not in ALLOWED_PROGRAMS:
            return f"Command not in allowed list: {part.split()[0]}"
    return None


def _decode(data: bytes) -> tuple[str, bool]:
    truncated = len(data) > MAX_OUTPUT_BYTES
    return data[:MAX_OUTPUT_BYTES].decode("utf-8", errors="replace"), truncated


def create_command_tool(root: str | Path) -> ToolDefinition:
    """Build the execute_command tool bound to one workspace root."""
    workspace = Workspace(root)

    async def execute_command(parameters: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
        command = parameters["command"]
        reason = check_command(command)
        if reason is not None:
            raise PermissionError(f"Command blocked for safety: {reason}")

        cwd = workspace.resolve(parameters.get("working_directory", "."))
        if not cwd.is_dir():
            raise NotADirectoryError(f"Not a directory: {parameters.get('working_directory')}")
        timeout_ms = parameters.get("timeout_ms", DEFAULT_TIMEOUT_MS)

        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_ms / 1000)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise TimeoutError(f"Command timed out after {timeout_ms}ms") from None
        except asyncio.CancelledError:
            proc.kill()
            raise

        out, out_truncated = _decode(stdout)
        err, err_truncated = _decode(stderr)
        if proc.returncode != 0:
            raise RuntimeError(f"Command failed with exit code {proc.returncode}: {err.strip() or out.strip()}")
        return {
            "command": command,
            "working_directory": workspace.relative(cwd),
            "exit_code": proc.returncode,
            "output": out or err or "Command executed successfully",
            "stderr": err,
            "truncated": out_truncated or err_truncated,
        }

    return ToolDefinition(
        name="execute_command",
        description=(
            "Run a development shell command (git, pytest, npm, ls, ...) in the workspace "
            "and return its output. Destructive commands are refused."
        ),
        parameters={
            "type": "object",
            "properties": {
                "command": {"type": "string", "minLength": 1, "description": "The command line to run"},
                "working_directory": {"type": "string", "description": "Directory relative to the workspace"},
                "timeout_ms": {"type": "integer", "minimum": 1, "maximum": MAX_TIMEOUT_MS},
            },
            "required": ["command"],
        },
        executor=execute_command,
        security=ToolSecurity(
            requires_approval=True,
            allowed_in_restricted_host=False,
            risk_tier=RiskTier.HIGH,
            required_permissions=frozenset({"system.execute"}),
        ),
        category=ToolCategory.SYSTEM,
    )
