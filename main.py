#!/usr/bin/env python3
"""
Workflow Finalization CLI

Turns recorded browser sessions into reusable workflow templates.
"""

import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console

from config import SEGMENTER_CHOICES, ModelConfig, get_config, update_config
from utils.logger import WorkflowLogger
from utils.tracking import CostTracker, Timer
from utils.llm import LLMClient

load_dotenv()

# Create Typer app
app = typer.Typer(
    name="workflow-finalize",
    help="Turn recorded browser sessions into reusable workflow templates",
    rich_markup_mode="rich",
)

console = Console()


def _load_events_file(path: Path) -> tuple[list[dict], str | None]:
    """Read captured events from a JSON list or a ``{"events": [...]}`` document."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        return data, None
    if isinstance(data, dict) and isinstance(data.get("events"), list):
        return data["events"], data.get("sessionId")
    raise ValueError("Expected a JSON list of events or an object with an 'events' list")


def _open_database(db: Optional[Path]):
    from storage.database import WorkflowDatabase

    return WorkflowDatabase(db or get_config().db_path)


@app.command()
def finalize(
    events_file: Annotated[
        Path,
        typer.Argument(help="JSON file with captured events"),
    ],
    session_id: Annotated[
        Optional[str],
        typer.Option("-s", "--session-id", help="Session id (defaults to the file's sessionId or name)"),
    ] = None,
    segmenter: Annotated[
        Optional[str],
        typer.Option("--segmenter", help=f"Segmentation strategy: {' | '.join(SEGMENTER_CHOICES)}"),
    ] = None,
    model: Annotated[
        Optional[str],
        typer.Option("-m", "--model", help="Model for every pipeline stage"),
    ] = None,
    cost_optimized: Annotated[
        bool,
        typer.Option("--cost-optimized", help="Use cost-optimized model configuration"),
    ] = False,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="SQLite database path"),
    ] = None,
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Also write the result as JSON to this path"),
    ] = None,
) -> None:
    """Run the finalization pipeline over a recorded session."""
    from analyzer.errors import WorkflowPipelineError
    from analyzer.pipeline import FinalizationPipeline
    from analyzer.schema import CapturedEvent
    from recorder.session_store import SessionStore

    if not events_file.exists():
        console.print(f"[red]✗[/red] Events file not found: {events_file}")
        raise typer.Exit(1)

    if segmenter and segmenter not in SEGMENTER_CHOICES:
        console.print(f"[red]✗[/red] Unknown segmenter: {segmenter}")
        console.print(f"Choose one of: {', '.join(SEGMENTER_CHOICES)}")
        raise typer.Exit(1)

    try:
        raw_events, file_session_id = _load_events_file(events_file)
        events = [CapturedEvent.from_dict(e) for e in raw_events]
    except (ValueError, KeyError, TypeError) as e:
        console.print(f"[red]✗[/red] Could not read events: {e}")
        raise typer.Exit(1)

    # Create model configuration
    if model:
        model_config = ModelConfig.all_same(model)
    elif cost_optimized:
        model_config = ModelConfig.cost_optimized()
    else:
        model_config = get_config().models

    cfg = update_config(models=model_config)
    if segmenter:
        cfg = update_config(segmenter=segmenter)
    session = session_id or file_session_id or events_file.stem

    # Initialize logger and tracking
    logger = WorkflowLogger("finalize", logs_dir=cfg.logs_dir)
    cost_tracker = CostTracker()
    llm_client = LLMClient(cost_tracker, logger)
    timer = Timer("Finalization")

    try:
        timer.start()

        logger.header("Workflow Finalization")
        logger.info(f"Events: [cyan]{events_file}[/cyan] ({len(events)} events)")
        logger.info(f"Session: [cyan]{session}[/cyan]")
        logger.info(f"Segmenter: [cyan]{cfg.segmenter}[/cyan]")
        logger.info(f"Canonicalization Model: [cyan]{model_config.canonicalization}[/cyan]")
        logger.info(f"Synthesis Model: [cyan]{model_config.synthesis}[/cyan]")

        store = SessionStore()
        for event in events:
            store.add_event(session, event)

        database = _open_database(db)
        pipeline = FinalizationPipeline.from_config(cfg, llm_client, database, logger=logger)

        try:
            result = pipeline.finalize_session(store, session)
        except WorkflowPipelineError as e:
            logger.error(f"Finalization failed: {e}")
            raise typer.Exit(1)

        timer.stop()

        if output:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
            logger.success(f"Result saved: [cyan]{output}[/cyan]")

        logger.header("Finalization Summary")

        if result.templates:
            logger.table(
                "Templates",
                ["ID", "Name", "Inputs", "Outputs", "Steps"],
                [
                    [
                        t.id,
                        t.name,
                        ", ".join(t.inputs) or "-",
                        ", ".join(t.outputs) or "-",
                        str(len(t.steps)),
                    ]
                    for t in result.templates
                ],
            )
            logger.print()

        # Cost breakdown by phase
        if cost_tracker.phase_stats:
            logger.table(
                "Cost by Phase",
                ["Phase", "Model", "Calls", "Input", "Output", "Cost"],
                cost_tracker.get_phase_summary(),
            )
            logger.print()

        summary_data = {
            "Status": "[green]Completed[/green]",
            "Screens": str(len(result.screens)),
            "Templates": str(len(result.templates)),
            "Instances": str(len(result.instances)),
            "Duration": timer.elapsed_str,
            **cost_tracker.get_summary(),
            "Database": str(database.path),
            "Log File": str(logger.log_file),
        }
        logger.summary("Finalization Complete", summary_data)

    finally:
        logger.close()


@app.command()
def segment(
    events_file: Annotated[
        Path,
        typer.Argument(help="JSON file with events that already carry screenId"),
    ],
) -> None:
    """Preview heuristic segmentation without calling any model."""
    from analyzer.schema import CapturedEvent
    from analyzer.segmenter import HeuristicSegmenter

    if not events_file.exists():
        console.print(f"[red]✗[/red] Events file not found: {events_file}")
        raise typer.Exit(1)

    raw_events, _ = _load_events_file(events_file)
    events = [CapturedEvent.from_dict(e) for e in raw_events]
    missing = sum(1 for e in events if not e.screen_id)
    if missing:
        console.print(f"[yellow]⚠[/yellow] {missing} events have no screenId")

    instances = HeuristicSegmenter().segment(events, [])
    if not instances:
        console.print("[yellow]No workflow instances detected.[/yellow]")
        return

    console.print(f"\n[bold]Detected {len(instances)} workflow instances:[/bold]\n")
    for idx, inst in enumerate(instances, start=1):
        status = "[green]complete[/green]" if inst.succeeded else "[yellow]incomplete[/yellow]"
        console.print(f"  [cyan]{idx}.[/cyan] {inst.goal}")
        console.print(
            f"     Events {inst.start_event_index}-{inst.end_event_index} "
            f"({len(inst)} steps, {status})"
        )


@app.command()
def templates(
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="SQLite database path"),
    ] = None,
) -> None:
    """List stored workflow templates."""
    database = _open_database(db)
    pairs = database.list_templates_with_instances()

    if not pairs:
        console.print("[yellow]No templates found.[/yellow]")
        return

    console.print(f"\n[bold]Templates in {database.path}:[/bold]\n")
    for template, instances in pairs:
        console.print(f"  [cyan]📄 {template.id}[/cyan]")
        console.print(f"     Name: [bold]{template.name}[/bold]")
        desc = template.description[:60] + "..." if len(template.description) > 60 else template.description
        console.print(f"     Description: {desc}")
        inputs = ", ".join(template.inputs) or "none"
        console.print(f"     Inputs: [dim]{inputs}[/dim]")
        console.print(f"     Steps: {len(template.steps)}  Instances: {len(instances)}")
        console.print()


@app.command()
def screens(
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="SQLite database path"),
    ] = None,
) -> None:
    """List canonical screens."""
    database = _open_database(db)
    all_screens = database.list_screens()

    if not all_screens:
        console.print("[yellow]No screens found.[/yellow]")
        return

    console.print(f"\n[bold]Canonical screens ({len(all_screens)}):[/bold]\n")
    for screen in all_screens:
        console.print(f"  [cyan]{screen.id}[/cyan] [bold]{screen.label}[/bold]")
        console.print(f"     {screen.description}")
        console.print(f"     Patterns: [dim]{', '.join(screen.url_patterns)}[/dim]")


@app.command()
def show(
    template_id: Annotated[
        str,
        typer.Argument(help="Template id (e.g. tmpl_1a2b3c4d)"),
    ],
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="SQLite database path"),
    ] = None,
    export: Annotated[
        Optional[Path],
        typer.Option("--export", help="Write the template as Markdown to this path"),
    ] = None,
) -> None:
    """Show details of a workflow template."""
    from rich.markdown import Markdown
    from rich.panel import Panel

    database = _open_database(db)
    template = database.get_template(template_id)
    if template is None:
        console.print(f"[red]✗[/red] Template not found: {template_id}")
        raise typer.Exit(1)

    instances = database.list_instances(template_id)

    console.print(f"\n[bold blue]# {template.name}[/bold blue]")
    console.print(f"\n[dim]ID:[/dim] {template.id}")
    console.print(f"[dim]Description:[/dim] {template.description}")
    console.print(f"[dim]Instances:[/dim] {len(instances)}")

    for title, params in (("Inputs", template.inputs), ("Outputs", template.outputs)):
        if not params:
            continue
        console.print(f"\n[bold]## {title} ({len(params)})[/bold]")
        for name, param in params.items():
            console.print(f"\n  [cyan]{name}[/cyan] ([dim]{param.param_type.value}[/dim])")
            console.print(f"    Description: {param.description}")
            if param.default is not None:
                console.print(f"    Default: [green]{param.default}[/green]")
            console.print(f"    Required: {'Yes' if param.required else 'No'}")
            if param.observed_values:
                observed = ", ".join(str(v) for v in param.observed_values)
                console.print(f"    Observed: [dim]{observed}[/dim]")

    markdown = template.to_markdown()
    console.print(f"\n[bold]## Steps[/bold]\n")
    console.print(Panel(Markdown(markdown.split("---\n", 2)[-1]), border_style="dim"))

    if export:
        export.parent.mkdir(parents=True, exist_ok=True)
        export.write_text(markdown, encoding="utf-8")
        console.print(f"\n[green]✓[/green] Exported: [cyan]{export}[/cyan]")


@app.command()
def reset(
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="SQLite database path"),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("-y", "--yes", help="Skip confirmation"),
    ] = False,
) -> None:
    """Delete all screens, templates and instances."""
    database = _open_database(db)

    if not yes:
        typer.confirm(f"Clear all data in {database.path}?", abort=True)

    database.clear_all()
    console.print(f"[green]✓[/green] Database reset: [cyan]{database.path}[/cyan]")


def main() -> None:
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
