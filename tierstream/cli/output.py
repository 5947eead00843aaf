"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
import sys
from typing import TextIO

from rich.console import Console
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from tierstream.config import Credentials, ProviderConfig
from tierstream.llm.events import (
    DebateStartEvent,
    DebateSynthesisStartEvent,
    DebateTurnDeltaEvent,
    DebateTurnEndEvent,
    DebateTurnStartEvent,
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    ReroutingEvent,
    StreamEvent,
    ToolCallEvent,
    ToolResultEvent,
    UsageEvent,
)
from tierstream.sse import encode_json_line, is_client_visible

PHASE_COLORS = {
    "opening": "cyan",
    "challenge": "magenta",
}


class EventRenderer:
    """
    Rich-based live rendering of canonical events.

    Implements the sink interface, so it can be handed straight to the
    round loop or the debate engine.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self.usage: UsageEvent | None = None
        self.actual_model: str | None = None
        self.errors: list[ErrorEvent] = []

    def emit(self, event: StreamEvent) -> None:
        if isinstance(event, DeltaEvent):
            self.console.print(event.content, end="", markup=False, highlight=False)
        elif isinstance(event, DebateTurnDeltaEvent):
            self.console.print(event.content, end="", markup=False, highlight=False)
        elif isinstance(event, ReroutingEvent):
            self.console.print(
                f"\n[yellow]{event.provider_label} is unavailable, "
                f"switching to {event.to_model}[/yellow]"
            )
        elif isinstance(event, ToolCallEvent):
            self.console.print(f"\n[dim]-> {event.name}[/dim]")
        elif isinstance(event, ToolResultEvent):
            line = Text(f"  [{event.name}] ")
            line.append("OK" if event.success else "FAILED", style="green" if event.success else "red")
            line.append(f": {event.preview}")
            self.console.print(line)
        elif isinstance(event, UsageEvent):
            self.usage = event
        elif isinstance(event, ErrorEvent):
            self.errors.append(event)
            line = Text(f"\nError ({event.code}): ", style="red")
            line.append(event.message)
            self.console.print(line)
        elif isinstance(event, DebateStartEvent):
            self.console.print(Rule("Debate"))
        elif isinstance(event, DebateTurnStartEvent):
            color = PHASE_COLORS.get(event.phase, "white")
            self.console.print(
                f"\n[bold {color}]{event.model}[/bold {color}] [dim]({event.phase})[/dim]"
            )
        elif isinstance(event, DebateTurnEndEvent):
            self.console.print()
        elif isinstance(event, DebateSynthesisStartEvent):
            self.console.print(Rule("Verdict"))
        elif isinstance(event, DoneEvent):
            self.actual_model = event.actual_model
            self.console.print()
            self._footer()

    def _footer(self) -> None:
        parts = []
        if self.actual_model:
            parts.append(self.actual_model)
        if self.usage is not None:
            parts.append(f"{self.usage.tokens_in} in / {self.usage.tokens_out} out")
        if parts:
            self.console.print(Text(" | ".join(parts), style="dim"))


class JsonLinesRenderer:
    """Writes each client-visible event as one JSON line."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout
        self.errors: list[dict] = []

    def emit(self, event: StreamEvent) -> None:
        if not is_client_visible(event):
            return
        if isinstance(event, ErrorEvent):
            self.errors.append(event.to_dict())
        self.stream.write(encode_json_line(event) + "\n")
        self.stream.flush()


class OutputFormatter:
    """Static tables and dumps for the non-streaming commands."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_models(self, providers: ProviderConfig, credentials: Credentials) -> None:
        table = Table(title="Model Routes", show_lines=True)
        table.add_column("Model", style="cyan", no_wrap=True)
        table.add_column("Vendor", no_wrap=True)
        table.add_column("Native model")
        table.add_column("Credential")
        table.add_column("Auto-route", justify="right")

        for model, route in providers.routes.items():
            configured = route.credential_key in credentials
            cred = Text(
                route.credential_key,
                style="green" if configured else "red",
            )
            rank = (
                str(providers.auto_route.index(model) + 1)
                if model in providers.auto_route
                else "-"
            )
            table.add_row(model, route.vendor, route.native_model, cred, rank)

        self.console.print(table)
        agg = providers.aggregator
        state = "[green]set[/green]" if agg.credential_key in credentials else "[red]missing[/red]"
        self.console.print(f"Aggregator: {agg.base_url} ({agg.credential_key}: {state})")

    def format_config(self, config: dict) -> None:
        text = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(text, "json", theme="monokai"))
