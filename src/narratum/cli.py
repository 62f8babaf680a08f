"""Narratum CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from narratum.models.narrative import IntentType
from narratum.observability import close_file_logging, configure_logging, get_logger

if TYPE_CHECKING:
    from narratum.pipeline import PipelineConfig, PipelineResult

app = typer.Typer(
    name="narratum",
    help="Narratum: validated narrative generation pipeline.",
    no_args_is_help=True,
)
console = Console()
log = get_logger(__name__)


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_dir: Annotated[
        Path | None,
        typer.Option(
            "--log-dir",
            help="Also write every log event as JSON lines to LOG_DIR/narratum.jsonl.",
            envvar="NARRATUM_LOG_DIR",
        ),
    ] = None,
) -> None:
    """Narratum: validated narrative generation pipeline."""
    configure_logging(verbosity=verbose, log_to_file=log_dir is not None, log_dir=log_dir)


@app.command()
def version() -> None:
    """Show version information."""
    from narratum import __version__

    console.print(f"Narratum v{__version__}")


def _load_config(config_path: Path | None) -> PipelineConfig:
    from narratum.pipeline import PipelineConfig, PipelineConfigError, load_pipeline_config

    if config_path is None:
        try:
            return PipelineConfig().with_env_overrides()
        except PipelineConfigError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1) from None
    try:
        return load_pipeline_config(config_path)
    except PipelineConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def _print_result(result: PipelineResult) -> None:
    table = Table(title=f"Run {result.run_id}")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for stage in result.stages:
        colour = "green" if stage.succeeded else "red"
        table.add_row(
            stage.name,
            f"[{colour}]{stage.status.value}[/{colour}]",
            f"{stage.duration_seconds * 1000:.1f} ms",
            escape(stage.error or ""),
        )
    console.print(table)

    if result.succeeded and result.output is not None:
        console.print(Panel(escape(result.output.text), title="Narrative", border_style="green"))
        for warning in result.output.warnings:
            console.print(f"[yellow]warning:[/yellow] {escape(warning)}")
    else:
        console.print(f"[red]Failed:[/red] {escape(result.failure_reason or '')}")
    console.print(
        f"retries: {result.retry_count}, duration: {result.duration_seconds * 1000:.1f} ms"
    )


@app.command()
def run(
    intent: Annotated[
        IntentType,
        typer.Argument(help="Kind of request to generate."),
    ] = IntentType.CONTINUE_NARRATIVE,
    description: Annotated[
        str,
        typer.Option("--description", "-m", help="Free-text detail of the request."),
    ] = "",
    world: Annotated[str, typer.Option("--world", help="World name.")] = "Demo world",
    character: Annotated[
        list[str] | None,
        typer.Option("--character", help="A living character (repeatable)."),
    ] = None,
    dead: Annotated[
        list[str] | None,
        typer.Option("--dead", help="A dead character (repeatable)."),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Pipeline config YAML file."),
    ] = None,
    response: Annotated[
        str | None,
        typer.Option("--response", help="Text the mock generator answers with."),
    ] = None,
    failure_rate: Annotated[
        float,
        typer.Option("--failure-rate", min=0.0, max=1.0, help="Mock failure probability."),
    ] = 0.0,
    delay: Annotated[
        float,
        typer.Option("--delay", min=0.0, help="Mock generator latency in seconds."),
    ] = 0.0,
    seed: Annotated[int | None, typer.Option("--seed", help="Mock RNG seed.")] = None,
    audit: Annotated[
        bool,
        typer.Option("--audit/--no-audit", help="Print the audit report of the run."),
    ] = False,
) -> None:
    """Run one request through the pipeline against the mock generator."""
    from narratum.llm import MockGeneratorConfig, MockTextGenerator
    from narratum.llm.mock import DEFAULT_MOCK_RESPONSE
    from narratum.memory import Fact, FactType, Memorandum, MemoryLevel
    from narratum.models import EntityContext, NarrativeIntent, VitalStatus, WorldSnapshot
    from narratum.pipeline import PipelineOrchestrator

    config = _load_config(config_path)
    generator = MockTextGenerator(
        MockGeneratorConfig(
            simulated_delay=delay,
            default_response=response if response is not None else DEFAULT_MOCK_RESPONSE,
            failure_rate=failure_rate,
            seed=seed,
        )
    )

    living = [EntityContext(name) for name in character or []]
    deceased = [EntityContext(name, status=VitalStatus.DEAD) for name in dead or []]
    memorandum = Memorandum.create_empty(world, world).add_facts(
        MemoryLevel.WORLD,
        [Fact.create(f"{e.name} is dead", FactType.CHARACTER_STATE, [e.name]) for e in deceased],
    )
    snapshot = WorldSnapshot(
        world_name=world, memorandum=memorandum, entities=(*living, *deceased)
    )

    orchestrator = PipelineOrchestrator(generator, config=config)
    try:
        result = asyncio.run(
            orchestrator.run(snapshot, NarrativeIntent(intent, description=description))
        )
    finally:
        close_file_logging()

    _print_result(result)
    if audit:
        console.print(escape(orchestrator.get_audit_report(result.run_id).to_text()))
    log.info("cli_run_finished", run_id=result.run_id, status=result.status.value)
    if not result.succeeded:
        raise typer.Exit(1)


@app.command("check-config")
def check_config(
    config_path: Annotated[Path, typer.Argument(help="Pipeline config YAML file.")],
) -> None:
    """Load a config file and print the effective settings."""
    config = _load_config(config_path)
    table = Table(title=str(config_path))
    table.add_column("Setting")
    table.add_column("Value")
    for field in dataclasses.fields(config):
        table.add_row(field.name, str(getattr(config, field.name)))
    console.print(table)
