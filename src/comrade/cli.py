"""
Comrade CLI

Command-line interface for chatting with a tool-enabled agent.

Commands:
    comrade chat "message"                  One chat turn with tools
    comrade chat --stream "message"         Stream the reply as it arrives
    comrade chat --provider ollama "msg"    Use a local Ollama model
    comrade tools                           List tools available to the session
    comrade status                          Show version, settings and keys

Usage:
    pip install comrade
    OPENAI_API_KEY=... comrade chat "Summarize README.md"
"""

from __future__ import annotations

import asyncio
import importlib
import os

import click

from comrade import __version__
from comrade.config import ComradeSettings
from comrade.core.models import ChatMessage, ChatResponse, SecurityLevel
from comrade.exceptions import ComradeError
from comrade.providers import AgentConfig, ChatOptions, ProviderKind
from comrade.safety.approval import ConfirmationRequest
from comrade.secrets import DEFAULT_ENV_ALIASES, EnvSecretStore, env_var_for

_PROVIDERS = [k.value for k in ProviderKind]
_SECURITY_LEVELS = [level.value for level in SecurityLevel]


class ConsoleConfirmationSurface:
    """Asks for tool approval on the terminal."""

    async def confirm(self, request: ConfirmationRequest) -> str | None:
        return await asyncio.to_thread(self._ask, request)

    @staticmethod
    def _ask(request: ConfirmationRequest) -> str | None:
        click.echo()
        click.secho(f"  {request.message}", bold=True)
        if request.detail:
            click.echo(f"  {request.detail}")
        for warning in request.warnings:
            click.secho(f"  ! {warning}", fg="yellow")
        for index, option in enumerate(request.options, start=1):
            click.echo(f"    {index}. {option}")
        choice = click.prompt(
            "  Choice",
            type=click.IntRange(1, len(request.options)),
            default=len(request.options),
        )
        return request.options[choice - 1]


@click.group()
@click.version_option(version=__version__, prog_name="comrade")
def cli() -> None:
    """Comrade: safety-gated tool execution for chat agents."""
    pass


@cli.command()
@click.argument("message")
@click.option("--provider", type=click.Choice(_PROVIDERS), default="openai", show_default=True)
@click.option("--model", default="", help="Model name (provider default if empty)")
@click.option("--base-url", default=None, help="Override the provider endpoint")
@click.option("--system", "system_prompt", default=None, help="System prompt")
@click.option("--stream/--no-stream", default=False, help="Stream the reply")
@click.option("--security-level", type=click.Choice(_SECURITY_LEVELS), default=None)
@click.option("--concurrent", is_flag=True, help="Run low/medium tool calls concurrently")
@click.option("--no-tools", is_flag=True, help="Do not offer tools to the model")
@click.option("--workspace", default=None, help="Root directory for the file tools")
@click.option("--json-output", is_flag=True, help="Output the final response as JSON")
def chat(
    message: str,
    provider: str,
    model: str,
    base_url: str | None,
    system_prompt: str | None,
    stream: bool,
    security_level: str | None,
    concurrent: bool,
    no_tools: bool,
    workspace: str | None,
    json_output: bool,
) -> None:
    """Send MESSAGE to an agent and print the reply."""
    settings = _settings(security_level, workspace)
    agent = AgentConfig(agent_id=provider, provider=provider, model=model, base_url=base_url)
    options = ChatOptions(
        system_prompt=system_prompt,
        tools_enabled=not no_tools,
        concurrent_tool_execution=concurrent or settings.concurrent_tool_execution,
    )
    try:
        response = asyncio.run(_chat(settings, agent, message, options, stream and not json_output))
    except ComradeError as e:
        raise click.ClickException(str(e)) from e

    if json_output:
        click.echo(response.model_dump_json(indent=2))
        return
    if not stream:
        click.echo(response.content)
    _print_summary(response)


async def _chat(
    settings: ComradeSettings,
    agent: AgentConfig,
    message: str,
    options: ChatOptions,
    stream: bool,
) -> ChatResponse:
    from comrade import Comrade

    async with Comrade(settings=settings, surface=ConsoleConfirmationSurface()) as comrade:
        comrade.add_agent(agent)
        messages = [ChatMessage.user(message)]
        if not stream:
            return await comrade.send(agent.agent_id, messages, options)
        response = await comrade.stream(
            agent.agent_id,
            messages,
            on_chunk=lambda text: click.echo(text, nl=False),
            options=options,
        )
        click.echo()
        return response


@cli.command()
@click.option("--security-level", type=click.Choice(_SECURITY_LEVELS), default=None)
@click.option("--workspace", default=None, help="Root directory for the file tools")
def tools(security_level: str | None, workspace: str | None) -> None:
    """List the tools available at the given security level."""
    from comrade import Comrade

    comrade = Comrade(settings=_settings(security_level, workspace))
    available = comrade.list_tools()
    _print_header(f"Tools ({comrade.settings.security_level.value})")
    if not available:
        click.echo("  No tools available.")
        return
    for tool in available:
        approval = "approval" if tool.requires_approval else "auto"
        click.echo(f"  {tool.name:16s} [{tool.risk_tier.value:6s}] [{approval:8s}] {tool.description}")


@cli.command()
def status() -> None:
    """Show Comrade version, settings and provider keys."""
    import sys

    settings = ComradeSettings.from_env()

    _print_header("Comrade Status")
    click.echo(f"  Version: {__version__}")
    click.echo(f"  Python: {sys.version.split()[0]}")

    click.echo("\n  Settings:")
    for key, value in settings.model_dump(mode="json").items():
        click.echo(f"    {key:28s} {value}")

    deps = {
        "httpx": "HTTP transport",
        "pydantic": "Models",
        "opentelemetry.sdk": "Tracing export",
    }
    click.echo("\n  Dependencies:")
    for module, label in deps.items():
        try:
            mod = importlib.import_module(module)
            version = getattr(mod, "__version__", "installed")
            click.echo(f"    {label:24s} {module:20s} {version}")
        except ImportError:
            click.echo(f"    {label:24s} {module:20s} NOT INSTALLED")

    click.echo("\n  Provider keys:")
    for agent_id, alias in DEFAULT_ENV_ALIASES.items():
        present = bool(os.environ.get(env_var_for(agent_id)) or os.environ.get(alias))
        click.echo(f"    {agent_id:12s} {'configured' if present else 'NOT SET'}")


def _settings(security_level: str | None, workspace: str | None) -> ComradeSettings:
    settings = ComradeSettings.from_env()
    updates: dict[str, object] = {}
    if security_level:
        updates["security_level"] = SecurityLevel(security_level)
    if workspace:
        updates["workspace_root"] = workspace
    return settings.model_copy(update=updates) if updates else settings


def _print_summary(response: ChatResponse) -> None:
    for call, result in zip(response.tool_calls, response.tool_results):
        outcome = "ok" if result.success else f"failed: {result.error}"
        click.secho(f"  [tool] {call.name} {outcome}", fg="green" if result.success else "red", err=True)
    for call in response.pending_tool_calls:
        click.secho(f"  [pending] {call.name}", fg="yellow", err=True)
    usage = response.usage
    click.echo(
        f"  [{response.provider}/{response.model}] {response.finish_reason.value}, "
        f"{usage.prompt_tokens}+{usage.completion_tokens} tokens",
        err=True,
    )


def _print_header(title: str) -> None:
    """Print a formatted header."""
    click.echo(f"\n  {'=' * 60}")
    click.echo(f"  {title}")
    click.echo(f"  {'=' * 60}\n")


if __name__ == "__main__":
    cli()
