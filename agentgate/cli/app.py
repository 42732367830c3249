"""
Main CLI application for agentgate.

Usage:
    agentgate chat PROMPT --agent FILE [--thread ID] [--file URL] [--user ID] [--no-stream]
    agentgate threads list|show
    agentgate pricing quote BRAND MODEL --usage JSON
    agentgate config show|validate
    agentgate version
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from agentgate.config import GatewayConfig, load_config, validate_config
from agentgate.types import GatewayError

__version__ = "0.1.0"

app = typer.Typer(name="agentgate", help="agentgate - multi-provider streaming LLM gateway")
threads_app = typer.Typer(help="Thread history")
pricing_app = typer.Typer(help="Usage pricing")
config_app = typer.Typer(help="Configuration management")

app.add_typer(threads_app, name="threads")
app.add_typer(pricing_app, name="pricing")
app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "agentgate.yaml",
        Path.cwd() / "agentgate.yml",
        Path.home() / ".config" / "agentgate" / "config.yaml",
        Path.home() / ".agentgate" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _load(config: Path | None, profile: str | None = None) -> GatewayConfig:
    return load_config(config or _get_config_path(), profile=profile)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    prompt: str = typer.Argument(..., help="User prompt"),
    agent: Path = typer.Option(..., "--agent", "-a", help="Agent YAML file"),
    thread: Optional[str] = typer.Option(None, "--thread", help="Resume thread ID"),
    files: List[str] = typer.Option([], "--file", help="Attachment URL (repeatable)"),
    user: str = typer.Option("local", "--user", help="Caller user id"),
    token: str = typer.Option("", "--token", envvar="AGENTGATE_USER_TOKEN", help="Caller token"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Wait for the full response"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show progress and debug logs"),
):
    """Run one exchange against an agent."""
    from agentgate.agent import InboundRequest, load_agent
    from agentgate.cli.output import OutputFormatter
    from agentgate.gateway import Gateway
    from agentgate.types import UserIdentity

    cfg = _load(config, profile)
    _setup_logging("DEBUG" if verbose else cfg.logging.level)
    formatter = OutputFormatter(console, show_updates=verbose)

    async def _run() -> bool:
        agent_cfg = load_agent(agent)
        request = InboundRequest(
            prompt=prompt,
            identity=UserIdentity(user_id=user, token=token),
            thread_id=thread,
            files=list(files),
            stream=False if no_stream else None,
        )
        async with Gateway.open(cfg) as gw:
            if no_stream:
                response = await gw.respond(request, agent_cfg)
                formatter.format_response(response)
                return bool(response.get("success"))
            ok = True
            async for event in gw.stream(request, agent_cfg):
                formatter.render_event(event)
                if event.type == "error":
                    ok = False
            return ok

    try:
        ok = asyncio.run(_run())
    except GatewayError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e}")
        raise typer.Exit(1)
    if not ok:
        raise typer.Exit(1)


@threads_app.command("list")
def threads_list(
    user: Optional[str] = typer.Option(None, "--user", help="Only this user's threads"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file"),
):
    """List threads."""

    async def _run():
        from agentgate.cli.output import OutputFormatter
        from agentgate.session.store import SqliteThreadStore

        cfg = _load(config)
        async with SqliteThreadStore(cfg.store.threads_db) as store:
            threads = await store.list_threads(user)
        OutputFormatter(console).format_thread_list(threads)

    asyncio.run(_run())


@threads_app.command("show")
def threads_show(
    thread_id: str = typer.Argument(..., help="Thread ID"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file"),
):
    """Show a thread's exchanges."""

    async def _run():
        from agentgate.cli.output import OutputFormatter
        from agentgate.session.store import SqliteThreadStore

        cfg = _load(config)
        async with SqliteThreadStore(cfg.store.threads_db) as store:
            thread = await store.get_thread(thread_id)
        if thread is None:
            console.print(f"[red]Thread not found:[/red] {thread_id}")
            raise typer.Exit(1)
        OutputFormatter(console).format_thread(thread)

    asyncio.run(_run())


@pricing_app.command("quote")
def pricing_quote(
    brand: str = typer.Argument(..., help="Provider brand"),
    model: str = typer.Argument(..., help="Model name"),
    usage: str = typer.Option(..., "--usage", help="Raw usage counters as JSON"),
    own_credentials: bool = typer.Option(False, "--own-credentials", help="Caller supplied the API key"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file"),
):
    """Price a raw usage object the way an exchange would be billed."""
    from agentgate.cli.output import OutputFormatter
    from agentgate.usage.ledger import UsageLedger
    from agentgate.usage.pricing import PricingTable

    try:
        raw = json.loads(usage)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid usage JSON:[/red] {e}")
        raise typer.Exit(1)
    if not isinstance(raw, dict):
        console.print("[red]Usage must be a JSON object[/red]")
        raise typer.Exit(1)

    cfg = _load(config)
    ledger = UsageLedger(PricingTable.from_dict(cfg.pricing))
    record = ledger.record(raw, brand.lower(), model, own_credentials=own_credentials)
    OutputFormatter(console).format_usage(record)


@config_app.command("show")
def config_show(
    config: Optional[Path] = typer.Option(None, "--config", help="Config file"),
):
    """Show effective config."""
    from agentgate.cli.output import OutputFormatter

    cfg = _load(config)
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate(
    config: Optional[Path] = typer.Option(None, "--config", help="Config file"),
):
    """Validate config and show any problems."""
    config_path = config or _get_config_path()
    try:
        cfg = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    problems = validate_config(cfg)
    if problems:
        console.print("[red]Config has problems:[/red]")
        for p in problems:
            console.print(f"  - {p}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  Providers: {', '.join(sorted(cfg.providers))}")
    console.print(f"  Max tool rounds: {cfg.orchestrator.max_tool_rounds}")
    console.print(f"  Thread store: {cfg.store.threads_db}")


@app.command()
def version():
    """Show version."""
    console.print(f"agentgate v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
