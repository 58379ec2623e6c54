"""CLI commands for eduvid using Typer and Rich.

Implements the CLI commands:
- generate: Run the pipeline for a topic
- resume: Continue a failed or cancelled run
- status: Show one persisted run
- list: List persisted runs
- validate: Check a pipeline configuration without running it
- presets: Show the built-in presets

The CLI is only an observer of the pipeline: progress comes from the
event bus, results from the returned Run State.
"""

import asyncio
import contextlib
import logging
import signal
from pathlib import Path
from typing import Any, Optional, Sequence

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from eduvid import validate_dependencies
from eduvid.config import load_pipeline_definition, settings
from eduvid.defaults import PRESET_DESCRIPTIONS, PRESETS
from eduvid.orchestrator.branches import parse_selection
from eduvid.orchestrator.errors import ConfigurationError
from eduvid.orchestrator.events import EventBus, PipelineEvent
from eduvid.orchestrator.pipeline import Orchestrator
from eduvid.orchestrator.registry import build_registry
from eduvid.orchestrator.state import RunState, can_resume, get_resume_point
from eduvid.orchestrator.store import RunStateStore
from eduvid.schemas.pipeline import PipelineDefinition
from eduvid.services.file_manager import FileManager

app = typer.Typer(name="eduvid", help="Multi-agent educational video generation pipeline")
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_definition(
    config: Optional[Path], preset: Optional[str], overrides: Optional[dict] = None
) -> PipelineDefinition:
    """Load the merged definition or exit with every validation error listed."""
    try:
        return load_pipeline_definition(config, preset=preset, overrides=overrides, settings=settings)
    except ConfigurationError as e:
        console.print("[red]Configuration is invalid:[/red]")
        for message in e.errors:
            console.print(f"  [red]✗[/red] {message}")
        raise typer.Exit(code=1)


class ProgressReporter:
    """Event observer that renders pipeline progress on the console."""

    def __init__(self, status=None):
        self.status = status

    def __call__(self, event: PipelineEvent) -> None:
        prefix = f"[dim]branch {event.branch}[/dim] " if event.branch is not None else ""
        if event.type == "stage:start":
            name = event.data.get("name", event.stage_id)
            if self.status is not None:
                self.status.update(f"[bold green]{prefix}{name}...")
            else:
                console.print(f"{prefix}[bold]{name}[/bold]...")
        elif event.type == "stage:complete":
            console.print(
                f"{prefix}[green]✓[/green] {event.stage_id} "
                f"({event.data.get('duration', 0):.1f}s)"
            )
        elif event.type == "stage:retry":
            console.print(
                f"{prefix}[yellow]↻ {event.stage_id} attempt {event.data.get('attempt')} "
                f"failed, retrying:[/yellow] {event.data.get('error')}"
            )
        elif event.type == "stage:error":
            console.print(f"{prefix}[red]✗ {event.stage_id}:[/red] {event.data.get('error')}")
        elif event.type == "branch:start":
            console.print(f"\n[bold blue]Branch {event.branch}:[/bold blue] {event.data.get('title')}")
        elif event.type == "branch:failed":
            console.print(f"{prefix}[red]Branch abandoned[/red]")
        elif event.type == "critique:complete":
            scores = (event.data.get("critique") or {}).get("scores") or {}
            console.print(f"{prefix}[cyan]Critique score:[/cyan] {scores.get('overall', '?')}/10")


async def _prompt_selection(candidates: Sequence[dict[str, Any]]) -> list[int]:
    """Show every candidate and ask which ones to produce."""
    table = Table(show_header=True, header_style="bold blue", title="Generated Ideas")
    table.add_column("#", style="dim")
    table.add_column("Title")
    table.add_column("Difficulty")
    table.add_column("Duration")
    for number, idea in enumerate(candidates, start=1):
        table.add_row(
            str(number),
            f"[bold]{idea.get('title', 'Untitled')}[/bold]\n{idea.get('description', '')}",
            str(idea.get("difficulty", "")),
            f"{idea.get('estimated_duration', '?')}s",
        )
    console.print(table)

    while True:
        answer = await asyncio.to_thread(
            Prompt.ask, 'Select ideas (e.g. "1,3,5" or "all")', default="1"
        )
        try:
            return parse_selection(answer, len(candidates))
        except ValueError as e:
            console.print(f"[red]Invalid selection:[/red] {e}")


async def _run_with_reporting(
    orchestrator: Orchestrator, interactive: bool, previous: Optional[RunState], topic: str
) -> RunState:
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        # Ctrl-C stops the run before its next stage instead of killing it
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)

    status_ctx = contextlib.nullcontext() if interactive else console.status("[bold green]Starting pipeline...")
    try:
        with status_ctx as status:
            unsubscribe = orchestrator.events.subscribe(ProgressReporter(status))
            try:
                if previous is not None:
                    return await orchestrator.resume(previous)
                return await orchestrator.run(topic)
            finally:
                unsubscribe()
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)


def _report_outcome(state: RunState) -> None:
    console.print()
    if state.status == "completed":
        console.print(f"[green]✓ Pipeline complete![/green] {len(state.artifacts)} video(s):")
        for artifact in state.artifacts:
            console.print(f"  {artifact.branch}. {artifact.title}: [green]{artifact.final_video}[/green]")
    else:
        color = "yellow" if state.status == "cancelled" else "red"
        console.print(f"[{color}]✗ Pipeline {state.status}[/{color}]")
        for error in state.errors:
            where = f"branch {error.branch} / {error.stage}" if error.branch is not None else error.stage
            console.print(f"  [{color}]{where}:[/{color}] {error.message}")
        console.print(f"[yellow]You can retry with:[/yellow] python -m eduvid resume {state.run_id}")
    console.print(f"[dim]Run state: {state.run_id}[/dim]")


def _exit_code(state: RunState) -> int:
    if state.status == "completed":
        return 0
    if state.status == "cancelled":
        return 130
    return 1


def _build_orchestrator(
    definition: PipelineDefinition, interactive: bool, checkpoint: bool = True
) -> Orchestrator:
    files = FileManager(settings.storage.working_dir)
    registry = build_registry(definition, files)
    return Orchestrator(
        definition,
        registry,
        settings=settings,
        files=files,
        events=EventBus(),
        selector=_prompt_selection if interactive else None,
        checkpoint=checkpoint,
    )


@app.command()
def generate(
    topic: str = typer.Argument(..., help="Topic to build educational videos about"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Pipeline YAML/JSON document"),
    preset: Optional[str] = typer.Option(None, "--preset", "-p", help="Preset name (see 'presets')"),
    duration: Optional[float] = typer.Option(None, "--duration", "-d", help="Video duration in seconds"),
    output_dir: Optional[str] = typer.Option(None, "--output-dir", "-o", help="Directory for final videos"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Choose which ideas to produce"),
    parallel: bool = typer.Option(False, "--parallel", help="Run branches concurrently"),
    no_critique: bool = typer.Option(False, "--no-critique", help="Skip the quality critique stage"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Generate educational videos for a topic.

    Runs ideation, then scene planning, animation, narration and assembly
    for each selected idea.
    """
    _configure_logging(verbose)

    # Fail-fast dependency validation
    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    overrides: dict[str, Any] = {}
    if duration is not None:
        overrides["video"] = {"duration": duration}
    if output_dir:
        overrides["output_dir"] = output_dir
    if parallel:
        overrides["parallel_branches"] = True
    if no_critique:
        overrides["enable_critique"] = False

    definition = _load_definition(config, preset, overrides)
    orchestrator = _build_orchestrator(definition, interactive)

    console.print(f"[green]Topic:[/green] {topic}")
    console.print(
        f"[green]Video:[/green] {definition.video.duration:g}s, {definition.video.fps} fps, "
        f"{definition.video.resolution.width}x{definition.video.resolution.height}"
    )
    console.print()

    state = asyncio.run(_run_with_reporting(orchestrator, interactive, None, topic))
    _report_outcome(state)
    raise typer.Exit(code=_exit_code(state))


@app.command()
def resume(
    run: str = typer.Argument(..., help="Run id, run directory or workflow_state.json path"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Pipeline YAML/JSON document"),
    preset: Optional[str] = typer.Option(None, "--preset", "-p", help="Preset name"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Choose which ideas to produce"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Resume a failed or cancelled run.

    Starts a new run that reuses the previous run's ideas when it has them.
    """
    _configure_logging(verbose)

    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    store = RunStateStore(settings.storage.working_dir)
    try:
        previous = store.load(run)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if previous.status == "completed":
        console.print("[green]Run already completed![/green]")
        for artifact in previous.artifacts:
            console.print(f"[green]Output:[/green] {artifact.final_video}")
        return

    if not can_resume(previous):
        console.print(f"[red]Error:[/red] Run status '{previous.status}' cannot be resumed")
        raise typer.Exit(code=1)

    definition = _load_definition(config, preset)
    orchestrator = _build_orchestrator(definition, interactive)

    console.print(f"[yellow]Resuming run:[/yellow] {previous.run_id}")
    console.print(f"[yellow]Topic:[/yellow] {previous.topic}")
    console.print(
        f"[yellow]Starting from:[/yellow] {get_resume_point(previous, definition.ideation_stage)}"
    )
    console.print()

    state = asyncio.run(_run_with_reporting(orchestrator, interactive, previous, previous.topic))
    _report_outcome(state)
    raise typer.Exit(code=_exit_code(state))


@app.command()
def status(
    run: str = typer.Argument(..., help="Run id, run directory or workflow_state.json path"),
):
    """Show detailed information about one run."""
    store = RunStateStore(settings.storage.working_dir)
    try:
        state = store.load(run)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    status_color = _get_status_color(state.status)
    topic_display = state.topic if len(state.topic) <= 80 else state.topic[:77] + "..."

    info_lines = [
        f"[bold]ID:[/bold] {state.run_id}",
        f"[bold]Pipeline:[/bold] {state.pipeline_id}",
        f"[bold]Topic:[/bold] {topic_display}",
        f"[bold]Status:[/bold] [{status_color}]{state.status}[/{status_color}]",
        f"[bold]Current Stage:[/bold] {state.current_stage or '-'}",
        f"[bold]Started:[/bold] {state.start_time.strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    if state.resumed_from:
        info_lines.append(f"[bold]Resumed From:[/bold] {state.resumed_from}")
    if state.duration_seconds is not None:
        info_lines.append(f"[bold]Duration:[/bold] {_format_duration(state.duration_seconds)}")
    for artifact in state.artifacts:
        info_lines.append(
            f"[bold]Output {artifact.branch}:[/bold] [green]{artifact.final_video}[/green] ({artifact.title})"
        )
    for error in state.errors:
        where = f"branch {error.branch} / {error.stage}" if error.branch is not None else error.stage
        info_lines.append(f"[bold]Error ({where}):[/bold] [red]{error.message}[/red]")

    console.print(Panel("\n".join(info_lines), title="[bold]Run Status[/bold]", border_style="blue"))

    if state.stage_outputs:
        table = Table(show_header=True, header_style="bold blue", title="Recorded Outputs")
        table.add_column("Stage")
        table.add_column("Outputs")
        for key in sorted(state.stage_outputs):
            table.add_row(key, ", ".join(sorted(state.stage_outputs[key])))
        console.print(table)


@app.command(name="list")
def list_runs():
    """List all persisted runs, newest first."""
    runs = RunStateStore(settings.storage.working_dir).list_runs()
    if not runs:
        console.print("[yellow]No runs found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Topic")
    table.add_column("Status")
    table.add_column("Videos")
    table.add_column("Started")

    for state in runs:
        topic_display = state.topic if len(state.topic) <= 50 else state.topic[:47] + "..."
        status_color = _get_status_color(state.status)
        table.add_row(
            state.run_id[:8] + "...",
            topic_display,
            f"[{status_color}]{state.status}[/{status_color}]",
            str(len(state.artifacts)),
            state.start_time.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def validate(
    config: Optional[Path] = typer.Argument(None, help="Pipeline YAML/JSON document"),
    preset: Optional[str] = typer.Option(None, "--preset", "-p", help="Preset name"),
):
    """Validate a pipeline configuration without running anything."""
    definition = _load_definition(config, preset)

    table = Table(show_header=True, header_style="bold blue", title=definition.name)
    table.add_column("Stage")
    table.add_column("Capability")
    table.add_column("Inputs")
    table.add_column("Outputs")
    table.add_column("Timeout")
    table.add_column("Retry")
    for stage in definition.stages:
        table.add_row(
            stage.id,
            stage.capability if not stage.is_inline else "[dim]inline[/dim]",
            ", ".join(stage.inputs),
            ", ".join(stage.outputs),
            f"{stage.timeout:g}s",
            "yes" if stage.retry_on_failure else "no",
        )
    console.print(table)
    console.print(f"[green]✓ Configuration is valid[/green] ({len(definition.stages)} stages)")


@app.command()
def presets():
    """Show the built-in presets."""
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Preset")
    table.add_column("Description")
    table.add_column("Duration")
    table.add_column("FPS")
    table.add_column("Resolution")
    for name, preset in PRESETS.items():
        video = preset["video"]
        resolution = video["resolution"]
        table.add_row(
            name,
            PRESET_DESCRIPTIONS.get(name, ""),
            f"{video['duration']}s",
            str(video["fps"]),
            f"{resolution['width']}x{resolution['height']}",
        )
    console.print(table)


def _format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    mins = int(seconds // 60)
    secs = seconds % 60
    return f"{mins}m {secs:.1f}s"


def _get_status_color(status: str) -> str:
    """Get Rich color for a run status.

    Color coding:
    - completed: green
    - failed: red
    - cancelled: yellow
    - running: cyan
    """
    return {
        "completed": "green",
        "failed": "red",
        "cancelled": "yellow",
        "running": "cyan",
    }.get(status, "white")
