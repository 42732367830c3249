"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from agentgate.session.events import (
    EVENT_CONNECTION,
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_TEXT,
    EVENT_UPDATES,
    ClientEvent,
)
from agentgate.usage.ledger import UsageRecord

ROLE_COLORS = {
    "user": "blue",
    "assistant": "green",
    "tool": "cyan",
    "system": "dim",
}


class OutputFormatter:
    """Rich-based output formatting for the agentgate CLI."""

    def __init__(self, console: Console | None = None, *, show_updates: bool = False) -> None:
        self.console = console or Console()
        self.show_updates = show_updates

    # ------------------------------------------------------------------
    # Client events
    # ------------------------------------------------------------------

    def render_event(self, event: ClientEvent) -> None:
        """Render one client event as it streams in."""
        if event.type == EVENT_TEXT:
            self.console.print(event.payload.get("text", ""), end="", markup=False, highlight=False)
        elif event.type == EVENT_UPDATES:
            if self.show_updates:
                status = (event.payload.get("text") or {}).get("status", "")
                self.console.print(f"[dim]… {status}[/dim]")
        elif event.type == EVENT_CONNECTION:
            if self.show_updates:
                self.console.print(f"[dim]{event.payload.get('message', 'Connected')}[/dim]")
        elif event.type == EVENT_DONE:
            self.console.print()
            self.console.print(f"[dim]thread: {event.thread_id}[/dim]")
        elif event.type == EVENT_ERROR:
            self.console.print()
            self.console.print(
                f"[red]Error ({event.payload.get('code', '?')}):[/red] {event.payload.get('message', '')}"
            )

    def format_response(self, response: dict) -> None:
        """Render a synchronous (non-streaming) response."""
        if not response.get("success"):
            self.console.print(f"[red]Error ({response.get('code', '?')}):[/red] {response.get('error', '')}")
            return
        self.console.print(response.get("message", ""), markup=False, highlight=False)
        usage = response.get("usage") or {}
        self.console.print(
            f"[dim]thread: {response.get('thread_id')}  "
            f"tokens: {usage.get('total_tokens', 0)}  cost: {usage.get('total_cost', 0.0)}[/dim]"
        )

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def format_thread_list(self, threads: list[dict]) -> None:
        if not threads:
            self.console.print("[dim]No threads found.[/dim]")
            return

        table = Table(title="Threads")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("User", no_wrap=True)
        table.add_column("Created", no_wrap=True)
        table.add_column("Exchanges", justify="right")
        table.add_column("Title")

        for t in threads:
            table.add_row(
                t.get("id", "?"),
                t.get("user_id", "?"),
                t.get("created_at", "?"),
                str(t.get("exchanges", 0)),
                t.get("name", ""),
            )

        self.console.print(table)

    def format_thread(self, thread: dict) -> None:
        self.console.print(Panel(
            f"[bold]{thread.get('name') or '(untitled)'}[/bold]\n"
            f"[dim]User:[/dim] {thread.get('user_id')}\n"
            f"[dim]Created:[/dim] {thread.get('created_at')}",
            title=f"Thread: {thread.get('id')}",
        ))
        for n, exchange in enumerate(thread.get("exchanges") or [], start=1):
            cost = sum((u.get("costs") or {}).get("total_cost", 0.0) for u in exchange.get("usage") or [])
            self.console.print(f"[bold]Exchange {n}[/bold] [dim]{exchange.get('created_at')}  cost: {round(cost, 4)}[/dim]")
            for m in exchange.get("messages") or []:
                role = m.get("role", "?")
                color = ROLE_COLORS.get(role, "white")
                content = m.get("content") or ""
                if m.get("tool_calls"):
                    names = ", ".join(tc.get("name", "?") for tc in m["tool_calls"])
                    content = f"{content} -> {names}".strip()
                self.console.print(f"  [{color}]{role:>9s}[/{color}]  {content[:200]}")

    # ------------------------------------------------------------------
    # Usage and config
    # ------------------------------------------------------------------

    def format_usage(self, record: UsageRecord) -> None:
        data = record.to_dict()
        table = Table(title=f"Usage: {record.brand}/{record.model}")
        table.add_column("Field", style="cyan")
        table.add_column("Value", justify="right")
        for key, value in data["breakdown"].items():
            table.add_row(key, str(value))
        for key, value in data["pricing"].items():
            table.add_row(key, str(value))
        for key, value in data["costs"].items():
            table.add_row(key, str(value))
        self.console.print(table)

    def format_config(self, config: dict) -> None:
        text = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(text, "json", theme="monokai"))
