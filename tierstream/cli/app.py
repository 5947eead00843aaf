"""
Main CLI application for tierstream.

Usage:
    tierstream chat PROMPT [--model NAME] [--system TEXT] [--json]
    tierstream debate PROMPT [--json]
    tierstream models
    tierstream config show|validate
    tierstream version
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from tierstream import __version__
from tierstream.config import (
    DEFAULT_AUTO_ROUTE,
    ConfigError,
    Credentials,
    RelayConfig,
    find_config_path,
    load_config,
)

app = typer.Typer(name="tierstream", help="Multi-tier LLM streaming with fallback and debate")
config_app = typer.Typer(help="Configuration management")

app.add_typer(config_app, name="config")

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load(config_path: Path | None) -> tuple[RelayConfig, Credentials]:
    try:
        cfg = load_config(config_path or find_config_path())
    except ConfigError as e:
        err_console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)
    credentials = Credentials.from_env(cfg.providers.credential_keys())
    return cfg, credentials


def _make_renderer(as_json: bool):
    from tierstream.cli.output import EventRenderer, JsonLinesRenderer

    return JsonLinesRenderer() if as_json else EventRenderer(console)


async def _with_interrupt(run) -> None:
    """Run *run(cancel)* with Ctrl-C wired to the cancellation event."""
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler unavailable; cancellation disabled")
    try:
        await run(cancel)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    prompt: str = typer.Argument(..., help="User message"),
    model: str = typer.Option(DEFAULT_AUTO_ROUTE[0], "--model", "-m", help="Requested model id"),
    system: Optional[str] = typer.Option(None, "--system", help="System prompt"),
    as_json: bool = typer.Option(False, "--json", help="Emit raw JSON event lines"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log tier attempts"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file path"),
):
    """Send one message through the round loop with tiered fallback."""
    from tierstream.llm.fallback import FallbackOrchestrator
    from tierstream.llm.types import Message
    from tierstream.orchestrator.core import RoundLoop
    from tierstream.tools.builtin import CurrentDateTimeTool
    from tierstream.tools.registry import ToolRegistry

    _setup_logging(verbose)
    cfg, credentials = _load(config)

    registry = ToolRegistry(tool_timeout=cfg.loop.tool_timeout_seconds)
    registry.register(CurrentDateTimeTool())
    loop = RoundLoop(
        FallbackOrchestrator(cfg.providers, credentials),
        registry,
        max_rounds=cfg.loop.max_rounds,
    )

    conversation = []
    if system:
        conversation.append(Message.system(system))
    conversation.append(Message.user(prompt))
    renderer = _make_renderer(as_json)

    async def _run(cancel: asyncio.Event) -> None:
        await loop.run(model, conversation, renderer, cancel=cancel)

    asyncio.run(_with_interrupt(_run))
    if renderer.errors:
        raise typer.Exit(1)


@app.command()
def debate(
    prompt: str = typer.Argument(..., help="Question to debate"),
    as_json: bool = typer.Option(False, "--json", help="Emit raw JSON event lines"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log tier attempts"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file path"),
):
    """Run the three-model debate and stream its verdict."""
    from tierstream.llm.errors import StreamCancelled
    from tierstream.llm.fallback import FallbackOrchestrator
    from tierstream.llm.types import Message
    from tierstream.orchestrator.debate import DebateEngine

    _setup_logging(verbose)
    cfg, credentials = _load(config)

    engine = DebateEngine(FallbackOrchestrator(cfg.providers, credentials), cfg.debate)
    renderer = _make_renderer(as_json)

    async def _run(cancel: asyncio.Event) -> None:
        await engine.run_debate([Message.user(prompt)], renderer, cancel=cancel)

    try:
        asyncio.run(_with_interrupt(_run))
    except StreamCancelled:
        err_console.print("[yellow]Debate cancelled.[/yellow]")
        raise typer.Exit(130)


@app.command()
def models(
    config: Optional[Path] = typer.Option(None, "--config", help="Config file path"),
):
    """List model routes and which credentials are configured."""
    from tierstream.cli.output import OutputFormatter

    cfg, credentials = _load(config)
    OutputFormatter(console).format_models(cfg.providers, credentials)


@config_app.command("show")
def config_show(
    config: Optional[Path] = typer.Option(None, "--config", help="Config file path"),
):
    """Show effective config."""
    from tierstream.cli.output import OutputFormatter

    cfg, _ = _load(config)
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate(
    config: Optional[Path] = typer.Option(None, "--config", help="Config file path"),
):
    """Validate config and report missing credentials."""
    config_path = config or find_config_path()
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")

    credentials = Credentials.from_env(cfg.providers.credential_keys())
    missing = sorted(cfg.providers.credential_keys() - set(credentials))
    console.print(f"  Routes: {len(cfg.providers.routes)}")
    console.print(f"  Auto-route: {', '.join(cfg.providers.auto_route)}")
    if missing:
        console.print(f"  [yellow]Missing credentials:[/yellow] {', '.join(missing)}")
    unrouted = [m for m in cfg.providers.auto_route if cfg.providers.route_for(m) is None]
    if unrouted:
        console.print(f"  [yellow]Auto-route models without a direct route:[/yellow] {', '.join(unrouted)}")


@app.command()
def version():
    """Show version."""
    console.print(f"tierstream v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
