"""
Comrade Secret Store

API keys are looked up per agent through a SecretStore. Keys are never
logged, never written to the approval log and never echoed in errors.

Two implementations ship:
- InMemorySecretStore: process-local dict, for tests and embedding hosts
- EnvSecretStore: COMRADE_<AGENT_ID>_API_KEY, then a per-agent alias such
  as OPENAI_API_KEY
"""

from __future__ import annotations

import os
import re
from typing import Protocol, runtime_checkable

DEFAULT_ENV_ALIASES = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@runtime_checkable
class SecretStore(Protocol):
    """Keyed secret lookup by agent id."""

    async def get(self, agent_id: str) -> str | None: ...

    async def store(self, agent_id: str, secret: str) -> None: ...

    async def delete(self, agent_id: str) -> None: ...


class InMemorySecretStore:
    def __init__(self, secrets: dict[str, str] | None = None):
        self._secrets = dict(secrets or {})

    async def get(self, agent_id: str) -> str | None:
        return self._secrets.get(agent_id)

    async def store(self, agent_id: str, secret: str) -> None:
        self._secrets[agent_id] = secret

    async def delete(self, agent_id: str) -> None:
        self._secrets.pop(agent_id, None)


def env_var_for(agent_id: str) -> str:
    """Environment variable that holds an agent's key."""
    return f"COMRADE_{re.sub(r'[^A-Za-z0-9]', '_', agent_id).upper()}_API_KEY"


class EnvSecretStore:
    """Reads keys from the process environment.

    ``store``/``delete`` keep an in-memory override on this instance and
    never write to ``os.environ``. A deleted key stays hidden even when the
    environment still defines it.
    """

    def __init__(self, aliases: dict[str, str] | None = None):
        self._aliases = {**DEFAULT_ENV_ALIASES, **(aliases or {})}
        self._overrides: dict[str, str | None] = {}

    async def get(self, agent_id: str) -> str | None:
        if agent_id in self._overrides:
            return self._overrides[agent_id]
        value = os.environ.get(env_var_for(agent_id))
        if value:
            return value
        alias = self._aliases.get(agent_id)
        return os.environ.get(alias) if alias else None

    async def store(self, agent_id: str, secret: str) -> None:
        self._overrides[agent_id] = secret

    async def delete(self, agent_id: str) -> None:
        self._overrides[agent_id] = None
