"""graphctl command line.

Usage:
    graphctl validate topology/          # Validate declarations and print the order
    graphctl plan topology/              # Show the ChangeSet against recorded state
    graphctl apply topology/ -p my-proj  # Plan and apply
    graphctl state list                  # List recorded resources
    graphctl state show GlobalAddress/lb-ip

Exit codes: 0 converged, 1 planning error, 2 partially failed, 3 cancelled,
4 configuration error.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

import click
from google.auth.exceptions import DefaultCredentialsError

from .config import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_STATE_DIR,
    Config,
    ConfigurationError,
)
from .diff import ChangeSet, OperationKind
from .engine import Engine, ExitCode, exit_code_for
from .errors import PlanningError, StateConflictError
from .executor import ExecutionReport, OperationStatus
from .gcp_client import create_provider_client
from .main import setup_logging
from .models import ResourceId
from .spec_loader import load_topology
from .state import FileStateStore, InMemoryStateStore

PLAN_SYMBOLS = {
    OperationKind.CREATE: ("+", "green"),
    OperationKind.UPDATE: ("~", "yellow"),
    OperationKind.DELETE: ("-", "red"),
    OperationKind.NOOP: (" ", None),
}

STATUS_COLORS = {
    OperationStatus.SUCCEEDED: "green",
    OperationStatus.FAILED: "red",
    OperationStatus.SKIPPED: "yellow",
}

topology_argument = click.argument(
    "topology", type=click.Path(exists=True, path_type=Path), envvar="GRAPHCTL_TOPOLOGY"
)
state_dir_option = click.option(
    "--state-dir",
    type=click.Path(path_type=Path),
    default=DEFAULT_STATE_DIR,
    envvar="GRAPHCTL_STATE_DIR",
    show_default=True,
    help="Directory of the state store",
)
json_option = click.option("--json", "as_json", is_flag=True, help="Print JSON instead of text")


def _fail(message: str, code: ExitCode) -> None:
    click.secho(message, fg="red", err=True)
    sys.exit(int(code))


def _print_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


def _load(topology: Path) -> list:
    try:
        return load_topology(topology)
    except PlanningError as e:
        _fail(f"Error: {e}", ExitCode.PLANNING_ERROR)
        raise


def render_plan(changeset: ChangeSet) -> None:
    """Print a ChangeSet as text."""
    counts = changeset.summary()
    for op in changeset.operations:
        if op.kind == OperationKind.NOOP:
            continue
        symbol, color = PLAN_SYMBOLS[op.kind]
        if op.replace:
            symbol = "-/+"
        click.secho(f"  {symbol} {op.target}  ({op.reason})", fg=color)
    click.echo(
        f"\nPlan: {counts['Create']} to create, {counts['Update']} to update, "
        f"{counts['Delete']} to delete ({counts['Replace']} replacements), "
        f"{counts['NoOp']} unchanged."
    )


def render_report(report: ExecutionReport) -> None:
    """Print an ExecutionReport as text."""
    for result in report.results:
        if result.kind == OperationKind.NOOP and result.status == OperationStatus.SUCCEEDED:
            continue
        line = f"  {result.status.value:<9} {result.kind.value:<6} {result.target}"
        if result.error:
            line += f"  {result.error_type}: {result.error}"
        elif result.reason and result.status == OperationStatus.SKIPPED:
            line += f"  ({result.reason})"
        click.secho(line, fg=STATUS_COLORS.get(result.status))
    counts = report.summary()
    click.echo(
        f"\n{report.status.value}: {counts['Succeeded']} succeeded, "
        f"{counts['Failed']} failed, {counts['Skipped']} skipped."
    )


@click.group()
@click.version_option(version="0.1.0", prog_name="graphctl")
@click.option("--verbose", "-v", is_flag=True, help="Log progress to stderr")
@click.option("--log-json", is_flag=True, help="Log structured JSON to stdout")
def cli(verbose: bool, log_json: bool) -> None:
    """graphctl - declarative reconciliation for serverless load balancer topologies."""
    level = logging.INFO if verbose else logging.WARNING
    if log_json:
        setup_logging(level)
    else:
        logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


@cli.command()
@topology_argument
@json_option
def validate(topology: Path, as_json: bool) -> None:
    """Validate declarations and print the resolved order."""
    specs = _load(topology)
    engine = Engine(InMemoryStateStore(), {}, audit_logging=False)
    try:
        graph, order = engine.resolve(specs)
    except PlanningError as e:
        _fail(f"Error: {e}", ExitCode.PLANNING_ERROR)
        return

    if as_json:
        _print_json(
            {
                "order": [str(rid) for rid in order],
                "edges": [
                    {
                        "source": str(edge.source),
                        "target": str(edge.target),
                        "kind": edge.kind.value,
                        "attribute": edge.attribute,
                    }
                    for edge in graph.edges
                ],
            }
        )
        return

    for index, rid in enumerate(order, start=1):
        deps = ", ".join(str(d) for d in graph.dependencies(rid))
        click.echo(f"{index:>3}. {rid}" + (f"  <- {deps}" if deps else ""))
    click.secho(f"\n{len(order)} resources valid.", fg="green")


@cli.command()
@topology_argument
@state_dir_option
@json_option
def plan(topology: Path, state_dir: Path, as_json: bool) -> None:
    """Show the operations needed to converge."""
    specs = _load(topology)
    engine = Engine(FileStateStore(state_dir), {})
    try:
        changeset = engine.plan(specs)
    except PlanningError as e:
        _fail(f"Error: {e}", ExitCode.PLANNING_ERROR)
        return

    if as_json:
        _print_json(changeset.to_dict())
    else:
        render_plan(changeset)


@cli.command()
@topology_argument
@state_dir_option
@json_option
@click.option("--project", "-p", envvar="GRAPHCTL_PROJECT", required=True, help="Target project id")
@click.option(
    "--max-concurrency",
    type=int,
    default=DEFAULT_MAX_CONCURRENCY,
    envvar="GRAPHCTL_MAX_CONCURRENCY",
    show_default=True,
    help="Operations applied concurrently",
)
@click.option(
    "--max-attempts",
    type=int,
    default=DEFAULT_MAX_ATTEMPTS,
    envvar="GRAPHCTL_MAX_ATTEMPTS",
    show_default=True,
    help="Attempts per operation for retryable errors",
)
def apply(
    topology: Path,
    state_dir: Path,
    as_json: bool,
    project: str,
    max_concurrency: int,
    max_attempts: int,
) -> None:
    """Plan and apply the topology."""
    try:
        config = Config(
            project=project,
            state_dir=state_dir,
            topology_path=topology,
            max_concurrency=max_concurrency,
            max_attempts=max_attempts,
        )
    except ConfigurationError as e:
        _fail(str(e), ExitCode.CONFIGURATION_ERROR)
        return

    specs = _load(topology)

    try:
        client = create_provider_client(config)
    except DefaultCredentialsError as e:
        _fail(f"No application default credentials: {e}", ExitCode.CONFIGURATION_ERROR)
        return

    engine = Engine.from_config(config, client)

    try:
        report = asyncio.run(_apply_with_signals(engine, specs))
    except PlanningError as e:
        _fail(f"Error: {e}", ExitCode.PLANNING_ERROR)
        return

    if as_json:
        _print_json(report.to_dict())
    else:
        render_report(report)
    sys.exit(int(exit_code_for(report.status)))


async def _apply_with_signals(engine: Engine, specs: list) -> ExecutionReport:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, cancel_event.set)
    try:
        return await engine.apply(specs, cancel_event)
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)


@cli.group()
def state() -> None:
    """Inspect recorded state."""
    pass


@state.command("list")
@state_dir_option
@json_option
def state_list(state_dir: Path, as_json: bool) -> None:
    """List recorded resources."""
    try:
        states = FileStateStore(state_dir).list()
    except StateConflictError as e:
        raise click.ClickException(str(e)) from e
    if as_json:
        _print_json(
            [
                {"id": str(s.id), "generation": s.generation, "updated_at": s.updated_at.isoformat()}
                for s in states
            ]
        )
        return
    if not states:
        click.echo("No recorded resources.")
        return
    for s in states:
        click.echo(f"{str(s.id):<50} gen {s.generation:<4} {s.updated_at.isoformat()}")


@state.command("show")
@click.argument("resource_id")
@state_dir_option
def state_show(resource_id: str, state_dir: Path) -> None:
    """Show the recorded state of one resource (Type/name)."""
    try:
        rid = ResourceId.parse(resource_id)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="RESOURCE_ID") from e

    try:
        observed = FileStateStore(state_dir).get(rid)
    except StateConflictError as e:
        raise click.ClickException(str(e)) from e
    if observed is None:
        raise click.ClickException(f"No recorded state for {rid}")
    click.echo(observed.model_dump_json(indent=2))


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
