"""Command-line interface for gitapply."""

from __future__ import annotations

import asyncio
import io
import sys
from pathlib import Path
from typing import Iterable

import tomli_w
import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .agent import Agent, AgentError
from .config import DEFAULT_CONFIG_FILENAME, ConfigError, load_config
from .coordinator import CatchUpError
from .methods import MethodError
from .models import TagStatus, TickOutcome, TickResult, TickState, is_zero
from .repository import RepositoryError

app = typer.Typer(help="Apply changes from git repositories to this host")
console = Console()


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}")


def _load_agent(config: Path | None, log_level: str | None) -> Agent:
    config_obj = load_config(config)
    _configure_logging(log_level or config_obj.settings.log_level)
    return Agent(config_obj)


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print("[red]Permission denied.[/red] Re-run the command with elevated privileges (e.g. `sudo`).")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        message = escape(str(exc))
        console.print(f"[red]{message}[/red]")
        if "does not exist" in message:
            console.print("[yellow]Use 'gitapply init --config <path>' to create a configuration file.[/yellow]")
        elif "Expected to find" in message:
            console.print(
                "[yellow]Make sure you pointed to the directory containing the config file, or to the file itself.[/yellow]"
            )
        raise typer.Exit(code=1)
    if isinstance(exc, (AgentError, RepositoryError, CatchUpError, MethodError)):
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)
    raise exc


def _short(commit: str) -> str:
    return "" if is_zero(commit) else commit[:12]


def _format_results(results: Iterable[TickResult]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Target")
    table.add_column("Method")
    table.add_column("Outcome")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Changes", justify="right")
    table.add_column("Error", overflow="fold")

    outcome_styles = {
        TickOutcome.UP_TO_DATE: "green",
        TickOutcome.APPLIED: "green",
        TickOutcome.RECOVERED: "yellow",
        TickOutcome.FAILED: "red",
    }

    for result in results:
        style = outcome_styles.get(result.outcome, "white")
        table.add_row(
            result.target,
            result.method,
            f"[{style}]{result.outcome.value}[/{style}]",
            _short(result.from_commit),
            _short(result.to_commit),
            str(result.changes),
            escape(result.error or ""),
        )

    console.print(table)


def _format_status(statuses: Iterable[TagStatus]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Target")
    table.add_column("Method")
    table.add_column("Current")
    table.add_column("Progress")
    table.add_column("State")

    for status in statuses:
        style = "green" if status.state is TickState.CLEAN else "red"
        table.add_row(
            status.target,
            status.method,
            _short(status.current) or "-",
            _short(status.progress) or "-",
            f"[{style}]{status.state.value}[/{style}]",
        )

    console.print(table)


def _render_init_config(*, url: str, branch: str, target_path: str, destination: str) -> str:
    data = {
        "settings": {
            "clone_root": "./clones",
            "log_level": "INFO",
        },
        "targets": {
            "example": {
                "url": url,
                "branch": branch,
                "methods": {
                    "filetransfer": {
                        "target_path": target_path,
                        "destination": destination,
                        "glob": "**",
                        "interval": 60,
                        "jitter": 5,
                    }
                },
            }
        },
    }

    buffer = io.StringIO()
    buffer.write("# gitapply configuration\n\n")
    buffer.write(tomli_w.dumps(data))
    return buffer.getvalue()


@app.command()
def init(
    config: Path = typer.Option(
        Path(DEFAULT_CONFIG_FILENAME),
        "--config",
        "-c",
        help="Path to write the configuration file",
        dir_okay=False,
        writable=True,
    ),
    url: str = typer.Option(
        "https://example.com/org/deploy.git",
        "--url",
        help="Repository URL for the example target",
    ),
    branch: str = typer.Option("main", "--branch", help="Branch to track"),
    target_path: str = typer.Option("files", "--target-path", help="Repository subpath to apply"),
    destination: str = typer.Option("./deployed", "--destination", help="Directory files are placed in"),
    force: bool = typer.Option(False, "--force", help="Overwrite existing config if present"),
) -> None:
    """Create a starter gitapply configuration file."""

    if config.exists() and not force:
        console.print(f"[red]Configuration '{config}' already exists. Use --force to overwrite.[/red]")
        raise typer.Exit(code=1)

    config.parent.mkdir(parents=True, exist_ok=True)
    config.write_text(
        _render_init_config(url=url, branch=branch, target_path=target_path, destination=destination)
    )
    console.print(f"[green]Created '{config}'.[/green]")


@app.command()
def run(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to gitapply.toml"),
    target: list[str] = typer.Option(None, "--target", "-t", help="Limit to specific target(s)"),
    initial: bool = typer.Option(
        False,
        "--initial",
        help="Re-apply everything up to the recorded current commit before catching up",
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override settings.log_level"),
) -> None:
    """Run one tick for every method of the selected targets."""

    try:
        agent = _load_agent(config, log_level)
        results = asyncio.run(agent.run_once(target or None, initial=initial))
        _format_results(results)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    if any(result.outcome is TickOutcome.FAILED for result in results):
        console.print("[red]Some targets failed to apply. See the log output for details.[/red]")
        raise typer.Exit(code=1)


@app.command()
def watch(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to gitapply.toml"),
    target: list[str] = typer.Option(None, "--target", "-t", help="Limit to specific target(s)"),
    max_ticks: int | None = typer.Option(
        None,
        "--max-ticks",
        min=1,
        help="Stop after this many ticks per target method",
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override settings.log_level"),
) -> None:
    """Keep ticking every target method on its configured schedule."""

    try:
        agent = _load_agent(config, log_level)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    try:
        results = asyncio.run(agent.watch(target or None, max_ticks=max_ticks))
    except KeyboardInterrupt:
        console.print("[yellow]Stopped.[/yellow]")
        _format_results(agent.last_results.values())
        return
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    _format_results(results)


@app.command()
def status(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to gitapply.toml"),
    target: list[str] = typer.Option(None, "--target", "-t", help="Limit to specific target(s)"),
) -> None:
    """Show the applied and in-flight commits of every target method."""

    try:
        agent = _load_agent(config, "WARNING")
        statuses = agent.status(target or None)
        _format_status(statuses)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    if any(entry.state is TickState.INTERRUPTED for entry in statuses):
        console.print(
            "[yellow]Some methods were interrupted mid-apply. The next 'gitapply run' replays them.[/yellow]"
        )


@app.command()
def reset(
    target: str = typer.Argument(..., help="Target whose applied state should be forgotten"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to gitapply.toml"),
    method: list[str] = typer.Option(None, "--method", "-m", help="Limit to specific method(s)"),
) -> None:
    """Delete the state tags so the next run re-applies from an empty tree."""

    try:
        agent = _load_agent(config, "WARNING")
        forgotten = agent.reset(target, method or None)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    if not forgotten:
        console.print(f"[yellow]Target '{target}' has not been cloned yet; nothing to reset.[/yellow]")
        return
    console.print(f"[green]Reset {', '.join(forgotten)} on '{target}'.[/green]")


def main() -> None:
    """Entry point used for console_script bindings."""

    app()
