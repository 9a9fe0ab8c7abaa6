"""Host Syndication CLI"""

from __future__ import annotations
import os
import logging
import signal
import threading
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table as RichTable

from .config import SyndicationSettings, load_settings
from .exceptions import SyndicationError
from .models import Pipeline, PipelineId, PipelineSpec
from .runner import Scheduler, build_controllers

logger = logging.getLogger(__name__)
console = Console()

app = typer.Typer(
    help="Host Syndication - keep replica host tables in sync and repair them when they drift."
)


def env_default(name: str, default: str | None = None) -> str | None:
    """Get environment variable with SYNDICATION_ prefix."""
    return os.environ.get(f"SYNDICATION_{name}", default)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _settings(config: Optional[Path]) -> SyndicationSettings:
    try:
        return load_settings(config)
    except SyndicationError as e:
        console.print(f"❌ {e}", style="red")
        raise typer.Exit(1)


ConfigOption = typer.Option(
    env_default("CONFIG"), "--config", "-c",
    help="Properties file with key=value settings; env SYNDICATION_CONFIG")
VerboseOption = typer.Option(False, help="Enable verbose logging")


@app.command()
def create(
    namespace: str = typer.Argument(..., help="Pipeline namespace"),
    name: str = typer.Argument(..., help="Pipeline name"),
    insights_only: bool = typer.Option(False, help="Only replicate hosts with an insights_id"),
    validation_threshold: Optional[int] = typer.Option(
        None, min=0, max=100, help="Steady-state mismatch percentage override"),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Declare a new pipeline."""
    _setup_logging(verbose)
    controllers = build_controllers(_settings(config))
    pipeline = Pipeline(
        namespace=namespace,
        name=name,
        spec=PipelineSpec(insights_only=insights_only, validation_threshold=validation_threshold),
    )
    try:
        controllers.store.create(pipeline)
    except SyndicationError as e:
        console.print(f"❌ Error: {e}", style="red")
        raise typer.Exit(1)
    console.print(f"✓ Created pipeline {pipeline.id}")


@app.command()
def delete(
    namespace: str = typer.Argument(..., help="Pipeline namespace"),
    name: str = typer.Argument(..., help="Pipeline name"),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Request deletion of a pipeline; teardown happens on the next reconciliation."""
    _setup_logging(verbose)
    controllers = build_controllers(_settings(config))
    pipeline_id = PipelineId(namespace, name)
    if not controllers.store.request_deletion(pipeline_id):
        console.print(f"❌ Pipeline {pipeline_id} not found", style="red")
        raise typer.Exit(1)
    console.print(f"✓ Deletion of {pipeline_id} requested")


@app.command()
def status(
    namespace: Optional[str] = typer.Option(None, help="Only show this namespace"),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Show pipelines and their status."""
    _setup_logging(verbose)
    controllers = build_controllers(_settings(config))
    pipelines = controllers.store.list(namespace)
    if not pipelines:
        console.print("No pipelines found")
        return

    rich_table = RichTable(title="Syndication pipelines")
    rich_table.add_column("Pipeline", style="cyan")
    rich_table.add_column("State", style="green")
    rich_table.add_column("Valid")
    rich_table.add_column("Hosts", justify="right", style="yellow")
    rich_table.add_column("Failures", justify="right")
    rich_table.add_column("Table", style="blue")
    rich_table.add_column("Active table", style="blue")

    for pipeline in pipelines:
        s = pipeline.status
        state = s.state.value + (" (deleting)" if pipeline.is_deleting else "")
        rich_table.add_row(
            str(pipeline.id),
            state,
            s.valid.value,
            str(s.host_count),
            str(s.validation_failed_count),
            s.table_name or "",
            s.active_table_name or "",
        )
    console.print(rich_table)


@app.command()
def reconcile(
    namespace: str = typer.Argument(..., help="Pipeline namespace"),
    name: str = typer.Argument(..., help="Pipeline name"),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Run one lifecycle pass followed by one validation pass."""
    _setup_logging(verbose)
    controllers = build_controllers(_settings(config))
    pipeline_id = PipelineId(namespace, name)

    for reconciler in controllers.reconcilers:
        try:
            result = reconciler.reconcile(pipeline_id)
        except SyndicationError as e:
            console.print(f"❌ {reconciler.name}: {escape(str(e))}", style="red")
            raise typer.Exit(1)
        if result.requeue_after:
            console.print(f"✓ {reconciler.name}: requeue after {result.requeue_after}s")
        else:
            console.print(f"✓ {reconciler.name}: done")

    pipeline = controllers.store.get(pipeline_id)
    if pipeline is None:
        console.print(f"Pipeline {pipeline_id} no longer exists")
    else:
        console.print(
            f"State: {pipeline.status.state.value}, valid: {pipeline.status.valid.value}, "
            f"hosts: {pipeline.status.host_count}")


@app.command()
def run(
    resync_interval: float = typer.Option(30.0, help="Seconds between periodic reconciliations"),
    workers: int = typer.Option(4, min=1, help="Pipelines reconciled concurrently"),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Reconcile all pipelines until interrupted."""
    _setup_logging(verbose)
    controllers = build_controllers(_settings(config))
    scheduler = Scheduler(
        controllers.store, controllers.reconcilers,
        resync_interval=resync_interval, workers=workers)

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    try:
        scheduler.run_forever(stop)
    except KeyboardInterrupt:
        stop.set()
    console.print("Stopped")


if __name__ == "__main__":
    app()
