"""CLI entry point for the therapy scheduler."""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .exceptions import SchedulingError
from .exporters import export_json, export_sessions_csv, load_json, load_sessions
from .scheduling import (
    Algorithm,
    BulkReschedulingCoordinator,
    BulkReschedulingOperation,
    ConfigLoader,
    ConflictDetector,
    FreezeRequest,
    InMemorySessionStore,
    OptimizationEngine,
    PerformanceMode,
    Session,
    Subscription,
    SubscriptionFreezePlanner,
    analyze_schedule,
)

app = typer.Typer(
    name="therapy-scheduler",
    help="Optimize therapy session schedules and resolve conflicts",
    add_completion=False,
)
console = Console()

ConfigDir = Annotated[
    Path,
    typer.Option("-c", "--config", help="Directory with constraints.json, rooms.csv, availability.json"),
]
OutputPath = Annotated[
    Optional[Path],
    typer.Option("-o", "--output", help="Write the result to this JSON file"),
]


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Show debug logging"),
    ] = False,
) -> None:
    """Therapy session scheduling tools."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load_config(config_dir: Path) -> ConfigLoader:
    if not config_dir.is_dir():
        console.print(f"[bold red]Error:[/bold red] Config directory not found: {config_dir}")
        raise typer.Exit(1)
    try:
        return ConfigLoader(config_dir)
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _load_sessions(path: Path) -> list[Session]:
    if not path.exists():
        console.print(f"[bold red]Error:[/bold red] File not found: {path}")
        raise typer.Exit(1)
    try:
        return load_sessions(path)
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _store(config: ConfigLoader, sessions: list[Session], subscriptions=()) -> InMemorySessionStore:
    return InMemorySessionStore(
        sessions,
        config.availability.get_all(),
        config.rooms.get_all_rooms(),
        subscriptions,
    )


def _write(result, output: Path | None) -> None:
    if output:
        output_path = output if output.suffix == ".json" else output.with_suffix(".json")
        export_json(result, output_path)
        console.print(f"\n[bold green]✓[/bold green] Exported to: {output_path}")


@app.command()
def conflicts(
    sessions_file: Annotated[Path, typer.Argument(help="Sessions JSON file")],
    config_dir: ConfigDir = Path("config"),
    candidate: Annotated[
        Optional[Path],
        typer.Option("--candidate", help="JSON file with one session to check against the schedule"),
    ] = None,
    output: OutputPath = None,
) -> None:
    """Check a schedule, or one candidate session, for conflicts."""
    config = _load_config(config_dir)
    sessions = _load_sessions(sessions_file)
    detector = ConflictDetector(config.constraints)
    availabilities = config.availability.get_all()
    rooms = config.rooms.get_all_rooms()

    try:
        if candidate is not None:
            session = Session.from_dict(load_json(candidate))
            reports = [detector.detect_conflicts(session, sessions, availabilities, rooms)]
        else:
            reports = detector.detect_batch_conflicts(sessions, availabilities, rooms)
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    reports = [r for r in reports if r.conflicts]
    if not reports:
        console.print("[bold green]✓ No conflicts found[/bold green]")
    else:
        table = Table(title="Conflicts")
        table.add_column("Session")
        table.add_column("Kind")
        table.add_column("Severity")
        table.add_column("Message")
        for report in reports:
            for conflict in report.conflicts:
                style = "red" if conflict.is_blocking else "yellow"
                table.add_row(
                    report.session_id,
                    conflict.kind.value,
                    f"[{style}]{conflict.severity.value}[/{style}]",
                    conflict.message,
                )
        console.print(table)
        for report in reports:
            if report.alternatives:
                console.print(f"\n[bold]Alternatives for {report.session_id}:[/bold]")
                for slot in report.alternatives:
                    data = slot.to_dict()
                    console.print(
                        f"  {data['date']} {data['start_time']}-{data['end_time']} "
                        f"({data['therapist_id']}, room {data['room_id']})"
                    )

    _write([r.to_dict() for r in reports], output)
    if any(r.has_blocking for r in reports):
        raise typer.Exit(2)


@app.command()
def optimize(
    sessions_file: Annotated[Path, typer.Argument(help="Sessions JSON file")],
    config_dir: ConfigDir = Path("config"),
    algorithm: Annotated[
        Algorithm,
        typer.Option("-a", "--algorithm", help="Search strategy"),
    ] = Algorithm.HYBRID,
    mode: Annotated[
        PerformanceMode,
        typer.Option("-m", "--mode", help="Performance mode"),
    ] = PerformanceMode.STANDARD,
    time_budget: Annotated[
        Optional[float],
        typer.Option("--time-budget", help="Deadline in seconds"),
    ] = None,
    tolerance: Annotated[
        Optional[float],
        typer.Option("--tolerance", help="Largest unresolved fraction reported as success"),
    ] = None,
    seed: Annotated[Optional[int], typer.Option("--seed", help="Random seed")] = None,
    output: OutputPath = None,
    csv_output: Annotated[
        Optional[Path],
        typer.Option("--csv", help="Write the proposed schedule to this CSV file"),
    ] = None,
) -> None:
    """Propose an optimized schedule. Nothing is changed in the input."""
    config = _load_config(config_dir)
    sessions = _load_sessions(sessions_file)
    engine = OptimizationEngine(config.constraints, config.algorithms)

    with console.status(f"[bold green]Optimizing with {algorithm.value}..."):
        try:
            result = engine.generate_optimal_schedule(
                sessions,
                config.availability.get_all(),
                config.rooms.get_all_rooms(),
                algorithm=algorithm,
                mode=mode,
                time_budget_seconds=time_budget,
                unresolved_tolerance=tolerance,
                seed=seed,
            )
        except SchedulingError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(1)

    meta = result.metadata
    console.print(f"\n[bold]Optimization Results ({algorithm.value}):[/bold]")
    console.print(f"  Placed sessions: {len(result.assignments)}")
    console.print(f"  Moved sessions: {len(result.changed_assignments)}")
    console.print(f"  Unresolved sessions: {len(result.unresolved)}")
    console.print(f"  Quality score: {result.quality_score:.4f}")
    console.print(
        f"  Iterations: {meta.iterations}, generations: {meta.generations}, "
        f"backtracks: {meta.backtracks}"
    )
    console.print(f"  Converged: {meta.converged}, elapsed: {meta.elapsed_seconds:.2f}s")
    if meta.degradation_applied:
        console.print("  [yellow]Degradation applied[/yellow]")

    comparison = result.metrics_after.get("comparison", {})
    if comparison:
        console.print(
            f"  Efficiency score: {result.metrics_before['overall_score']} → "
            f"{result.metrics_after['overall_score']} "
            f"({comparison['improvement_percentage']:+.2f}%)"
        )

    for item in result.unresolved[:10]:
        console.print(f"  [yellow]- {item.session_id}: {item.message}[/yellow]")
    if len(result.unresolved) > 10:
        console.print(f"  [yellow]... and {len(result.unresolved) - 10} more[/yellow]")

    _write(result, output)
    if csv_output:
        export_sessions_csv(result.apply(sessions), csv_output)
        console.print(f"[bold green]✓[/bold green] Schedule exported to: {csv_output}")
    if not result.success:
        raise typer.Exit(2)


@app.command()
def bulk(
    operation_file: Annotated[Path, typer.Argument(help="Bulk operation JSON file")],
    sessions_file: Annotated[Path, typer.Argument(help="Sessions JSON file")],
    config_dir: ConfigDir = Path("config"),
    output: OutputPath = None,
    sessions_output: Annotated[
        Optional[Path],
        typer.Option("--sessions-output", help="Write the updated sessions to this JSON file"),
    ] = None,
) -> None:
    """Apply a bulk rescheduling operation to a sessions file."""
    config = _load_config(config_dir)
    sessions = _load_sessions(sessions_file)
    store = _store(config, sessions)
    coordinator = BulkReschedulingCoordinator(store, OptimizationEngine(config.constraints))

    try:
        operation = BulkReschedulingOperation.from_dict(load_json(operation_file))
        with console.status("[bold green]Rescheduling..."):
            result = asyncio.run(coordinator.process_bulk_operation(operation))
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    progress = result.progress
    console.print(f"\n[bold]Bulk Operation {result.operation_id}:[/bold] {result.status.value}")
    console.print(f"  Processed: {progress.processed}/{progress.total}")
    console.print(f"  Successful: {progress.successful}")
    console.print(f"  Failed: {progress.failed}")

    table = Table(title="Sessions")
    table.add_column("Session")
    table.add_column("Result")
    table.add_column("New placement")
    table.add_column("Message")
    for item in result.items:
        new = item.new.to_dict() if item.new else None
        table.add_row(
            item.session_id,
            "[green]moved[/green]" if item.success else "[red]failed[/red]",
            f"{new['date']} {new['start_time']}-{new['end_time']} {new['therapist_id']}" if new else "",
            item.message,
        )
    console.print(table)

    _write(result, output)
    if sessions_output:
        export_json([s.to_dict() for s in store.sessions.values()], sessions_output)
        console.print(f"[bold green]✓[/bold green] Sessions exported to: {sessions_output}")
    if not result.success:
        raise typer.Exit(2)


@app.command()
def freeze(
    request_file: Annotated[Path, typer.Argument(help="Freeze request JSON file")],
    sessions_file: Annotated[Path, typer.Argument(help="Sessions JSON file")],
    subscriptions_file: Annotated[Path, typer.Argument(help="Subscriptions JSON file")],
    config_dir: ConfigDir = Path("config"),
    preview: Annotated[
        bool,
        typer.Option("--preview", help="Only show the impact analysis"),
    ] = False,
    output: OutputPath = None,
) -> None:
    """Freeze a subscription and move or drop the sessions inside the freeze."""
    config = _load_config(config_dir)
    sessions = _load_sessions(sessions_file)
    try:
        subscriptions = [Subscription.from_dict(s) for s in load_json(subscriptions_file)]
        request = FreezeRequest.from_dict(load_json(request_file))
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    if preview:
        request.preview_only = True

    store = _store(config, sessions, subscriptions)
    coordinator = BulkReschedulingCoordinator(store, OptimizationEngine(config.constraints))
    planner = SubscriptionFreezePlanner(store, coordinator)
    try:
        with console.status("[bold green]Planning freeze..."):
            result = asyncio.run(planner.freeze_subscription(request))
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    impact = result.impact
    console.print(f"\n[bold]Freeze for subscription {impact.subscription_id}:[/bold]")
    console.print(f"  Strategy: {impact.strategy.value}")
    console.print(f"  Freeze days: {impact.freeze_days} ({impact.calculation_method})")
    console.print(f"  Affected sessions: {len(impact.affected_sessions)}")
    console.print(
        f"  Program end: {impact.original_end_date.isoformat()} → {impact.new_end_date.isoformat()}"
    )
    if impact.cost_adjustment:
        console.print(f"  Cost adjustment: {impact.cost_adjustment:.2f}")
    status = "[green]" if result.success else "[yellow]"
    console.print(f"\n{status}{result.message}[/]")

    _write(result, output)
    if not result.success:
        raise typer.Exit(2)


@app.command()
def analyze(
    sessions_file: Annotated[Path, typer.Argument(help="Sessions JSON file")],
    output: OutputPath = None,
) -> None:
    """Show efficiency metrics of a schedule."""
    metrics = analyze_schedule(_load_sessions(sessions_file))

    console.print(f"\n[bold]Schedule Analysis:[/bold] {sessions_file.name}")
    console.print(f"  Sessions: {metrics['total_sessions']}")
    console.print(f"  Therapists: {metrics['unique_therapists']}")
    console.print(f"  Students: {metrics['unique_students']}")
    console.print(f"  Average utilization: {metrics['average_utilization']}%")
    console.print(f"  Idle gaps: {metrics['gap_metrics']['total_gap_minutes']:.0f} min")
    console.print(f"  Peak hours: {', '.join(metrics['peak_hours']) or '-'}")
    console.print(
        f"  Overall score: {metrics['overall_score']} ({metrics['efficiency_rating']})"
    )

    if metrics["therapist_utilization"]:
        table = Table(title="Therapist utilization")
        table.add_column("Therapist")
        table.add_column("Utilization %", justify="right")
        for therapist_id, value in sorted(
            metrics["therapist_utilization"].items(), key=lambda x: -x[1]
        ):
            table.add_row(therapist_id, f"{value:.1f}")
        console.print(table)

    _write(metrics, output)


@app.command("check-config")
def check_config(config_dir: ConfigDir = Path("config")) -> None:
    """Validate a configuration directory."""
    config = _load_config(config_dir)
    constraints = config.constraints

    console.print(f"\n[bold]Configuration:[/bold] {config_dir}")
    console.print(f"  Rooms: {len(config.rooms.get_all_rooms())}")
    console.print(f"  Active rooms: {len(config.rooms.get_active_rooms())}")
    console.print(f"  Therapists with availability: {len(config.availability.get_therapist_ids())}")
    console.print(f"  Availability windows: {len(config.availability.get_all())}")
    console.print(f"  Max sessions per day: {constraints.therapist.max_sessions_per_day}")
    console.print(f"  Student preferences: {len(constraints.student.preferences)}")
    console.print(
        f"  Room reassignment: {constraints.facility.allow_room_reassignment}, "
        f"therapist reassignment: {constraints.facility.allow_therapist_reassignment}"
    )
    console.print("[bold green]✓ Configuration is valid[/bold green]")


if __name__ == "__main__":
    app()
