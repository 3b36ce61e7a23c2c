"""Command-line interface for the call transcript extraction pipeline."""

import asyncio
import json
import re
import sys
import uuid
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from transcript_agents.config import get_settings
from transcript_agents.config.logging import configure_logging
from transcript_agents.models import CallMetadata, ExtractionResult, ProcessingOptions, Utterance

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="transcript-agents",
    help="Multi-unit extraction pipeline for freight brokerage call transcripts",
    add_completion=False,
)
console = Console()

SPEAKER_LINE = re.compile(r"^\s*([^:\n]{1,40}):\s*(.+)$")


def load_transcript(path: Path) -> tuple[str, list[Utterance]]:
    """Read a transcript file.

    JSON files may carry ``transcript`` and/or ``utterances``. Plain text
    files are split into utterances on ``Speaker: text`` lines.
    """
    content = path.read_text(encoding="utf-8")

    if path.suffix.lower() == ".json":
        data = json.loads(content)
        utterances = [Utterance.model_validate(u) for u in data.get("utterances", [])]
        transcript = data.get("transcript") or "\n".join(f"{u.speaker}: {u.text}" for u in utterances)
        return transcript, utterances

    utterances = []
    for line in content.splitlines():
        match = SPEAKER_LINE.match(line)
        if match:
            utterances.append(Utterance(speaker=match.group(1).strip(), text=match.group(2).strip()))
        elif utterances and line.strip():
            utterances[-1].text += " " + line.strip()
    return content, utterances


def _setup(verbose: bool) -> None:
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, json=settings.log_json)


@app.command()
def extract(
    transcript_path: Path = typer.Argument(
        ...,
        help="Transcript file (.txt with 'Speaker: text' lines, or .json)",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    organization_id: str = typer.Option("cli", "--org", help="Organization id for the call"),
    call_id: Optional[str] = typer.Option(None, "--call-id", help="Call id (default: random)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the result JSON here"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Run the multi-unit pipeline directly on a transcript, bypassing rollout routing."""
    from transcript_agents.production import build_services

    _setup(verbose)
    transcript, utterances = load_transcript(transcript_path)
    metadata = CallMetadata(call_id=call_id or uuid.uuid4().hex[:12], organization_id=organization_id)

    console.print(Panel.fit(
        "[bold blue]Transcript Extraction[/bold blue]\n"
        f"{transcript_path.name}: {len(utterances)} utterances",
        border_style="blue",
    ))

    try:
        services = build_services()
        result = asyncio.run(services.orchestrator.extract(transcript, metadata, utterances=utterances))
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        if verbose:
            console.print_exception()
        sys.exit(1)

    _display_extraction(result)
    if output is not None:
        output.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        console.print(f"\n[green]Result saved to:[/green] {output}")
    if not result.success:
        sys.exit(1)


@app.command()
def process(
    transcript_path: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True),
    organization_id: str = typer.Option(..., "--org", help="Organization id used for rollout routing"),
    call_id: Optional[str] = typer.Option(None, "--call-id"),
    user_id: Optional[str] = typer.Option(None, "--user"),
    output: Optional[Path] = typer.Option(None, "--output", "-o"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Process a call the way production does: rollout routing, fallback and comparison."""
    from transcript_agents.production import build_services

    _setup(verbose)
    transcript, utterances = load_transcript(transcript_path)

    async def run():
        services = build_services()
        await services.rollout.load_from_store()
        return await services.controller.process_call(
            call_id or uuid.uuid4().hex[:12],
            transcript,
            organization_id,
            ProcessingOptions(utterances=[u.model_dump() for u in utterances], user_id=user_id),
        )

    result = asyncio.run(run())

    status = "[green]success[/green]" if result.success else "[red]failed[/red]"
    console.print(f"\nMethod: [bold]{result.method.value}[/bold]  Status: {status}  "
                  f"Routing: {result.routing_reason}  Time: {result.execution_time_ms:.0f}ms")
    if result.fallback_used:
        console.print("[yellow]Legacy fallback was used[/yellow]")
    if result.comparison is not None:
        console.print(f"Agreement with legacy: {result.comparison.agreement_percentage:.0f}% "
                      f"({result.comparison.recommendation})")
    for error in result.errors:
        console.print(f"[red]-[/red] {error}")
    if result.new_output is not None:
        _display_extraction(result.new_output)

    if output is not None:
        output.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        console.print(f"\n[green]Result saved to:[/green] {output}")
    if not result.success:
        sys.exit(1)


@app.command("rollout-plan")
def rollout_plan() -> None:
    """Show the standard four-phase rollout."""
    from transcript_agents.production.rollout import STANDARD_PHASES

    table = Table(title="Standard Rollout")
    table.add_column("Phase")
    table.add_column("Traffic", justify="right")
    table.add_column("Comparison")
    table.add_column("Fallback")
    table.add_column("Min success", justify="right")
    table.add_column("Max latency", justify="right")
    table.add_column("Max errors", justify="right")

    for phase in STANDARD_PHASES:
        targets = phase["targets"]
        features = phase["features"]
        table.add_row(
            phase["name"],
            f"{phase['percentage']}%",
            "yes" if features.comparison_mode else "no",
            "yes" if features.fallback_enabled else "no",
            f"{targets.min_success_rate:.0%}",
            f"{targets.max_latency_ms:.0f}ms",
            f"{targets.max_error_rate:.0%}",
        )
    console.print(table)


@app.command("rollout-status")
def rollout_status() -> None:
    """Show rollout phases persisted in the data directory."""
    from transcript_agents.production import GradualRolloutController
    from transcript_agents.storage import JsonFileStore

    settings = get_settings()
    controller = GradualRolloutController(settings, store=JsonFileStore(settings.storage_data_dir))
    asyncio.run(controller.load_from_store())
    status = controller.get_status()

    if not status.phases:
        console.print("[yellow]No rollout phases registered[/yellow]")
        return

    table = Table(title=f"Rollout ({status.percentage:.0f}% on new pipeline)")
    table.add_column("ID", style="dim")
    table.add_column("Phase")
    table.add_column("Traffic", justify="right")
    table.add_column("Status")
    for phase in status.phases:
        table.add_row(phase.id, phase.name, f"{phase.percentage:g}%", phase.status.value)
    console.print(table)
    for recommendation in status.recommendations:
        console.print(f"[cyan]*[/cyan] {recommendation}")


@app.command()
def info() -> None:
    """Display system information and configuration."""
    from transcript_agents import __version__
    from transcript_agents.agents.units import DEFAULT_UNIT_TYPES
    from transcript_agents.llm import get_llm_settings

    settings = get_settings()
    llm = get_llm_settings()

    console.print(Panel.fit("[bold blue]Transcript Extraction Pipeline[/bold blue]", border_style="blue"))

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Version", __version__)
    table.add_row("LLM Model", llm.model_name)
    table.add_row("Ollama URL", llm.ollama_base_url)
    table.add_row("Units", ", ".join(t.name for t in DEFAULT_UNIT_TYPES))
    table.add_row("Max retries", str(settings.orchestrator_max_retries))
    table.add_row("Default unit timeout", f"{settings.orchestrator_default_timeout_seconds:g}s")
    table.add_row("Result cache",
                  f"{settings.cache_max_entries} entries, {settings.cache_ttl_seconds:g}s TTL"
                  if settings.cache_enabled else "disabled")
    table.add_row("Circuit breaker", f"opens after {settings.recovery_failure_threshold} failures")
    table.add_row("Rollback thresholds",
                  f"errors > {settings.rollout_critical_error_rate:.0%}, "
                  f"success < {settings.rollout_critical_success_rate:.0%}")
    table.add_row("Data directory", settings.storage_data_dir)

    console.print(table)


def _display_extraction(result: ExtractionResult) -> None:
    console.print("\n[bold]Extraction Summary[/bold]")
    console.print("-" * 40)

    if result.classification is not None:
        console.print(f"Call type: [bold]{result.classification.primary_type.value}[/bold] "
                      f"({result.classification.confidence.value:.0%})")
    if result.aborted:
        console.print(f"[red]Aborted:[/red] {result.abort_reason}")

    table = Table()
    table.add_column("Unit")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    for entry in result.execution_log:
        color = {"completed": "green", "failed": "red", "skipped": "yellow"}.get(entry.status.value, "white")
        table.add_row(entry.unit_name, f"[{color}]{entry.status.value}[/{color}]", str(entry.attempts))
    console.print(table)

    console.print(f"Tokens: {result.resource_cost}  Time: {result.execution_time_ms:.0f}ms")
    if result.requires_human_review:
        console.print("[yellow]Requires human review[/yellow]")
    for warning in result.warnings:
        console.print(f"[dim]- {warning}[/dim]")


if __name__ == "__main__":
    app()
