"""
Stitch CLI - inspect and drive the scheduling engine from a terminal.

Usage:
    stitch simulate -n 12                 # In-memory run across the three tubes
    stitch init-path u1 path-1 A B C D    # Create a durable learning path
    stitch show u1 path-1                 # Print the queue
    stitch complete u1 A -c 20 -a 1500    # Record a completion
    stitch history u1 A                   # Repositioning history
"""

from __future__ import annotations

import random
import sys
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stitch_engine.config import get_settings
from stitch_engine.db import create_db_engine
from stitch_engine.engine import StitchEngine
from stitch_engine.errors import StitchEngineError
from stitch_engine.models import PerformanceData, TubeId
from stitch_engine.population import SurprisePolicy

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="stitch",
    help="Stitch scheduling engine - position-based spaced repetition",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()


class CLIContext:
    """Lazily builds the durable engine for commands that need one."""

    def __init__(self, database_url: str | None = None):
        self.settings = get_settings()
        self.database_url = database_url or self.settings.database_url
        self._engine: StitchEngine | None = None

    @property
    def engine(self) -> StitchEngine:
        if self._engine is None:
            db_engine = create_db_engine(self.database_url, echo=self.settings.database_echo)
            self._engine = StitchEngine.from_settings(self.settings, db_engine=db_engine)
        return self._engine


@app.callback()
def main_callback(
    ctx: typer.Context,
    database: Annotated[
        str | None, typer.Option("--db", help="SQLAlchemy URL (default: STITCH_DATABASE_URL)")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
):
    """Position-based spaced repetition with three rotating tubes."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else get_settings().log_level)
    ctx.obj = CLIContext(database)


def _queue_table(title: str, queue: list[dict]) -> Table:
    table = Table(title=title)
    table.add_column("Position", justify="right", style="cyan")
    table.add_column("Stitch")
    for entry in queue:
        table.add_row(str(entry["position"]), entry["id"])
    return table


def _fail(error: StitchEngineError) -> None:
    console.print(f"[red]{error.code}: {error}[/]")
    raise typer.Exit(1)


# =============================================================================
# Simulation
# =============================================================================


@app.command()
def simulate(
    completions: Annotated[int, typer.Option("--completions", "-n", help="Stitches to complete")] = 9,
    stitches: Annotated[int, typer.Option("--stitches", "-s", help="Stitches per tube")] = 6,
    accuracy: Annotated[float, typer.Option("--accuracy", help="Chance of a correct answer")] = 0.85,
    response_ms: Annotated[float, typer.Option("--response-ms", help="Typical response time")] = 2500.0,
    seed: Annotated[int, typer.Option("--seed", help="Random seed")] = 7,
):
    """Run completions against an in-memory engine and show how the tubes move."""
    rng = random.Random(seed)
    settings = get_settings()
    engine = StitchEngine.from_settings(settings)
    engine.surprise = SurprisePolicy(rate=settings.surprise_rate, rng=rng)

    user_id = "simulated"
    engine.initialize_user(
        user_id,
        seeds={tube: [f"{tube.value}-{i:02d}" for i in range(1, stitches + 1)] for tube in TubeId},
    )

    table = Table(title=f"Simulated completions (seed {seed})")
    table.add_column("#", justify="right")
    table.add_column("Tube")
    table.add_column("Stitch")
    table.add_column("Correct", justify="right")
    table.add_column("Avg ms", justify="right")
    table.add_column("Skip", justify="right", style="green")
    table.add_column("Next live")

    for i in range(1, completions + 1):
        answers = [rng.random() < accuracy for _ in range(settings.questions_per_stitch)]
        performance = PerformanceData(
            correct_count=sum(answers),
            total_count=len(answers),
            average_response_time=response_ms * rng.uniform(0.7, 1.3),
        )
        try:
            outcome = engine.complete_active_stitch(user_id, performance)
        except StitchEngineError as e:
            _fail(e)

        table.add_row(
            str(i),
            outcome.tube_id.value,
            outcome.reposition.stitch_id,
            f"{performance.correct_count}/{performance.total_count}",
            f"{performance.average_response_time:.0f}",
            str(outcome.reposition.skip_number),
            outcome.rotation.active_tube.value,
        )

    console.print(table)
    for tube in TubeId:
        console.print(_queue_table(tube.value, engine.tubes.get_queue(user_id, tube)))


# =============================================================================
# Durable Learning Paths
# =============================================================================


@app.command("init-path")
def init_path(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id")],
    path_id: Annotated[str, typer.Argument(help="Learning path id")],
    stitch_ids: Annotated[list[str], typer.Argument(help="Stitch ids in initial order")],
):
    """Create (or reset) a learning path."""
    engine = ctx.obj.engine
    try:
        engine.initialize_learning_path(user_id, path_id, stitch_ids)
        queue = engine.get_stitch_queue(user_id, path_id)
    except StitchEngineError as e:
        _fail(e)

    console.print(f"[green]✓ Initialised {path_id} for {user_id} with {len(queue)} stitches[/]")
    console.print(_queue_table(path_id, queue))


@app.command()
def show(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id")],
    path_id: Annotated[str, typer.Argument(help="Learning path id")],
):
    """Print a learning path queue."""
    try:
        queue = ctx.obj.engine.get_stitch_queue(user_id, path_id)
    except StitchEngineError as e:
        _fail(e)

    if not queue:
        console.print("[yellow]Queue is empty[/]")
        return
    console.print(_queue_table(f"{path_id} ({user_id})", queue))


@app.command()
def complete(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id")],
    stitch_id: Annotated[str, typer.Argument(help="Completed stitch id")],
    correct: Annotated[int, typer.Option("--correct", "-c", help="Correct answers")] = 20,
    total: Annotated[int, typer.Option("--total", "-t", help="Questions asked")] = 20,
    avg_ms: Annotated[float, typer.Option("--avg-ms", "-a", help="Average response time (ms)")] = 3000.0,
    path_id: Annotated[str | None, typer.Option("--path", "-p", help="Learning path id")] = None,
):
    """Record a completion and reposition the stitch."""
    engine = ctx.obj.engine
    try:
        performance = PerformanceData(correct, total, avg_ms)
        result = engine.reposition_stitch(user_id, stitch_id, performance, path_id=path_id)
    except StitchEngineError as e:
        _fail(e)

    console.print(
        Panel(
            f"[bold]{result.stitch_id}[/]: position {result.previous_position} → "
            f"[green]{result.new_position}[/] (skip {result.skip_number})",
            title="Repositioned",
        )
    )


@app.command()
def history(
    ctx: typer.Context,
    user_id: Annotated[str, typer.Argument(help="Learner id")],
    stitch_id: Annotated[str, typer.Argument(help="Stitch id")],
    limit: Annotated[int | None, typer.Option("--limit", "-l", help="Most recent N entries")] = None,
):
    """Show a stitch's repositioning history, most recent first."""
    try:
        entries = ctx.obj.engine.get_repositioning_history(user_id, stitch_id, limit)
    except StitchEngineError as e:
        _fail(e)

    if not entries:
        console.print(f"[yellow]No repositioning history for {stitch_id}[/]")
        return

    table = Table(title=f"History: {stitch_id}")
    table.add_column("When")
    table.add_column("From", justify="right")
    table.add_column("To", justify="right", style="green")
    table.add_column("Skip", justify="right")
    for entry in entries:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            str(entry.previous_position),
            str(entry.new_position),
            str(entry.skip_number),
        )
    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
