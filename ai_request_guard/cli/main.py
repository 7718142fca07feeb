"""
CLI interface for AI Request Guard.

Runs completions and transcriptions through the request orchestrator.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import typer
import yaml
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.table import Table

from ai_request_guard.config.loader import (
    ApiSettings,
    OrchestratorConfig,
    load_orchestrator_config,
)
from ai_request_guard.core.errors import ExhaustedError, RequestGuardError
from ai_request_guard.core.orchestrator import RequestOrchestrator
from ai_request_guard.core.usage import UsageStats
from ai_request_guard.sdk.completion import CompletionService, ModelRole
from ai_request_guard.sdk.openai_client import OpenAIChatClient

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _configure_logging(verbose: bool) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config(config_path: Optional[str]) -> OrchestratorConfig:
    if config_path is None:
        return OrchestratorConfig()
    return load_orchestrator_config(config_path)


def _print_advisory(message: str) -> None:
    console.print(f"[yellow]Notice:[/] {message}")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """AI Request Guard CLI."""
    if ctx.invoked_subcommand is None:
        console.print("AI Request Guard - Use --help to see available commands")


async def _run_ask(
    prompt: str,
    role: ModelRole,
    stream: bool,
    config: OrchestratorConfig,
) -> Tuple[str, UsageStats]:
    orchestrator = RequestOrchestrator(config)
    async with OpenAIChatClient(ApiSettings.from_env()) as client:
        service = CompletionService(orchestrator, client, advisory=_print_advisory)
        if stream:
            with Live(console=console, refresh_per_second=8) as live:
                text = await service.complete(
                    prompt, role, sink=lambda transcript: live.update(Markdown(transcript)),
                )
        else:
            text = await service.complete(prompt, role)
            console.print(Markdown(text))
    return text, orchestrator.stats()


async def _run_transcribe(audio: bytes, filename: str, config: OrchestratorConfig) -> Tuple[str, UsageStats]:
    orchestrator = RequestOrchestrator(config)
    async with OpenAIChatClient(ApiSettings.from_env()) as client:
        service = CompletionService(orchestrator, client, advisory=_print_advisory)
        text = await service.transcribe(audio, filename)
    return text, orchestrator.stats()


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="Symptoms or question to send"),
    role: str = typer.Option(
        ModelRole.DIAGNOSIS.value,
        "--role",
        "-r",
        help="Completion role: diagnosis, follow_up, summary or report",
    ),
    stream: bool = typer.Option(
        True,
        "--stream/--no-stream",
        help="Render the response as it streams in",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to orchestrator YAML config",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Send one completion request through the retry and fallback cascade."""
    _configure_logging(verbose)
    try:
        model_role = ModelRole(role)
        config = _load_config(config_path)
        _, stats = asyncio.run(_run_ask(prompt, model_role, stream, config))
    except ExhaustedError as e:
        console.print(f"[red]Request failed:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    except (RequestGuardError, ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    _display_usage_stats(stats)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def transcribe(
    audio_file: Path = typer.Argument(..., help="Audio file to transcribe"),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to orchestrator YAML config",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Transcribe an audio recording."""
    _configure_logging(verbose)
    try:
        if not audio_file.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_file}")
        config = _load_config(config_path)
        text, stats = asyncio.run(_run_transcribe(audio_file.read_bytes(), audio_file.name, config))
    except ExhaustedError as e:
        console.print(f"[red]Transcription failed:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    except (RequestGuardError, ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(text)
    _display_usage_stats(stats)
    sys.exit(EXIT_CODE_PASS)


@app.command("check-config")
def check_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to orchestrator YAML config",
    ),
):
    """Validate the orchestrator config and API credentials."""
    try:
        config = _load_config(config_path)
        ApiSettings.from_env().validate_api_key()
    except (ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    _display_config(config)
    console.print("[green]✓[/] API configuration appears valid")
    sys.exit(EXIT_CODE_PASS)


def _format_rate(rate: Optional[float]) -> str:
    """Format a success rate, tolerating an empty log."""
    return "N/A" if rate is None else f"{rate:.1f}%"


def _display_usage_stats(stats: UsageStats) -> None:
    """Display call outcome counts for the session."""
    table = Table(title="API Usage")
    table.add_column("Total", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Success rate", justify="right")
    table.add_row(
        str(stats.total),
        str(stats.succeeded),
        str(stats.failed),
        _format_rate(stats.success_rate_percent),
    )
    console.print(table)


def _display_config(config: OrchestratorConfig) -> None:
    """Display the effective orchestrator settings."""
    table = Table(title="Orchestrator Configuration")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("max_retries", str(config.retry.max_retries))
    table.add_row("retry delay", f"{config.retry.base_delay}s - {config.retry.max_delay}s")
    table.add_row("rate limit", f"{config.rate_limit.per_window} per {config.rate_limit.window}s")
    table.add_row("fallback targets", ", ".join(config.fallback_targets) or "-")
    table.add_row("usage log capacity", str(config.usage.log_capacity))
    for role, model in sorted(config.models.items()):
        table.add_row(f"model ({role})", model)
    console.print(table)


if __name__ == "__main__":
    app()
