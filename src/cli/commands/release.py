"""Release commands.

This module provides commands for starting a release from a release file,
inspecting an attempt, listing a target's history and recovering attempts
left behind by a crashed process.
"""

import threading
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from src.release.config import load_release_request
from src.release.models import (
    AttemptState,
    Outcome,
    ReleaseAttempt,
    StageStatus,
)
from src.release.orchestrator import ReleaseRun, TransitionListener

from ..context import get_cli_context
from ..shared.console import CLIConsole, with_error_handling

release_app = typer.Typer(
    help="Build, publish, deploy and verify releases",
    no_args_is_help=True,
)

EXIT_CODES = {
    Outcome.SUCCEEDED: 0,
    Outcome.FAILED: 1,
    Outcome.ROLLED_BACK: 2,
}

_OUTCOME_STYLE = {
    Outcome.SUCCEEDED: "green",
    Outcome.ROLLED_BACK: "yellow",
    Outcome.FAILED: "red",
}


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _state_label(attempt: ReleaseAttempt) -> str:
    if attempt.outcome is None:
        return f"[cyan]{attempt.state.value}[/cyan]"
    style = _OUTCOME_STYLE[attempt.outcome]
    return f"[{style}]{attempt.outcome.value}[/{style}]"


def render_attempt(console: CLIConsole, attempt: ReleaseAttempt) -> None:
    """Print an attempt summary and its stage results."""
    console.print_header(
        f"Attempt {attempt.attempt_id}: {attempt.namespace}/{attempt.name}"
    )
    console.print(f"  State:      {_state_label(attempt)}")
    console.print(f"  Descriptor: v{attempt.descriptor_version}")
    console.print(f"  Started:    {attempt.started_at:%Y-%m-%d %H:%M:%S}")
    if attempt.finished_at:
        console.print(f"  Finished:   {attempt.finished_at:%Y-%m-%d %H:%M:%S}")
    if attempt.failure_reason:
        console.print(f"  Reason:     [red]{attempt.failure_reason}[/red]")
    if attempt.rollback_target is not None:
        console.print(f"  Rolled back to attempt {attempt.rollback_target}")

    if not attempt.stages:
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Stage")
    table.add_column("Component")
    table.add_column("Status")
    table.add_column("Kind")
    table.add_column("Diagnostic")

    for index, stage in enumerate(attempt.stages, 1):
        status = (
            "[green]ok[/green]"
            if stage.status is StageStatus.SUCCEEDED
            else "[red]failed[/red]"
        )
        first_line = stage.diagnostic.splitlines()[0] if stage.diagnostic else ""
        table.add_row(
            str(index),
            stage.stage.value,
            stage.component or "",
            status,
            stage.error_kind or "",
            first_line[:80],
        )

    console.print()
    console.print(table)


def _progress_printer(console: CLIConsole) -> TransitionListener:
    """Listener printing each new state and stage result once."""
    seen = {"state": AttemptState.PENDING, "stages": 0}
    lock = threading.Lock()

    def on_transition(attempt: ReleaseAttempt) -> None:
        with lock:
            for stage in attempt.stages[seen["stages"] :]:
                target = f" {stage.component}" if stage.component else ""
                if stage.status is StageStatus.SUCCEEDED:
                    console.ok(f"{stage.stage.value}{target}: {stage.diagnostic}")
                else:
                    kind = f" ({stage.error_kind})" if stage.error_kind else ""
                    console.error(f"{stage.stage.value}{target}{kind}")
            seen["stages"] = len(attempt.stages)

            if attempt.state is not seen["state"] and not attempt.state.is_terminal:
                console.info(f"[bold]{attempt.state.value}[/bold]")
            seen["state"] = attempt.state

    return on_transition


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@release_app.command()
@with_error_handling
def start(
    ctx: typer.Context,
    release_file: Annotated[
        Path,
        typer.Argument(help="Release file (YAML with a top-level 'release:' key)"),
    ],
) -> None:
    """Start a release and follow it until it finishes.

    Press Ctrl-C to cancel the attempt; it is recorded as Failed (Cancelled)
    and nothing is rolled back.
    """
    cli = get_cli_context(ctx)
    console = cli.console

    request = load_release_request(release_file, cli.config)
    orchestrator = cli.orchestrator(_progress_printer(console))

    try:
        run = orchestrator.start(request)
        console.info(
            f"Attempt [bold]{run.attempt_id}[/bold] started for "
            f"{request.namespace}/{request.name}"
        )

        try:
            attempt = _wait(run)
        except KeyboardInterrupt:
            console.warn("Cancelling release attempt...")
            run.cancel()
            attempt = run.result()
    finally:
        orchestrator.shutdown()

    render_attempt(console, attempt)
    code = EXIT_CODES[attempt.outcome] if attempt.outcome is not None else 1
    if code:
        raise typer.Exit(code)


def _wait(run: ReleaseRun) -> ReleaseAttempt:
    # Short timeouts keep the main thread responsive to Ctrl-C
    while True:
        try:
            return run.result(timeout=0.5)
        except FutureTimeout:
            continue


@release_app.command()
@with_error_handling
def inspect(
    ctx: typer.Context,
    attempt_id: Annotated[int, typer.Argument(help="Attempt id")],
) -> None:
    """Show the state and stage diagnostics of an attempt."""
    cli = get_cli_context(ctx)
    attempt = cli.orchestrator().inspect(attempt_id)
    render_attempt(cli.console, attempt)

    failed = [s for s in attempt.stages if s.status is StageStatus.FAILED]
    if failed and failed[-1].diagnostic:
        cli.console.print_subheader("Last failure")
        cli.console.print(failed[-1].diagnostic)


@release_app.command()
@with_error_handling
def history(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Release name")],
    namespace: Annotated[
        str,
        typer.Option(
            "--namespace",
            "-n",
            help="Kubernetes namespace",
        ),
    ] = "default",
    limit: Annotated[
        int,
        typer.Option(
            "--max",
            "-m",
            help="Maximum number of attempts to show",
        ),
    ] = 20,
) -> None:
    """Show the recorded attempts for a release, newest last."""
    cli = get_cli_context(ctx)
    console = cli.console
    entries = cli.orchestrator().history(name, namespace)

    if not entries:
        console.info(f"No recorded attempts for {namespace}/{name}")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Attempt", justify="right")
    table.add_column("Started")
    table.add_column("Descriptor", justify="right")
    table.add_column("Outcome")
    table.add_column("Reason")
    table.add_column("Rollback target", justify="right")
    table.add_column("Last good")

    for entry in entries[-limit:]:
        attempt = entry.attempt
        table.add_row(
            str(attempt.attempt_id),
            f"{attempt.started_at:%Y-%m-%d %H:%M:%S}",
            f"v{attempt.descriptor_version}",
            _state_label(attempt),
            attempt.failure_reason or "",
            str(attempt.rollback_target) if attempt.rollback_target is not None else "",
            "✓" if entry.rollback_candidate else "",
        )

    console.print_header(f"Release history: {namespace}/{name}")
    console.print(table)


@release_app.command()
@with_error_handling
def recover(ctx: typer.Context) -> None:
    """Record attempts orphaned by a crashed orchestrator as Failed."""
    cli = get_cli_context(ctx)
    orchestrator = cli.orchestrator()
    try:
        with cli.console.status("Checking for interrupted attempts..."):
            recovered = orchestrator.recover()
    finally:
        orchestrator.shutdown()

    if not recovered:
        cli.console.ok("No interrupted attempts found")
        return

    for attempt in recovered:
        cli.console.warn(
            f"Attempt {attempt.attempt_id} ({attempt.namespace}/{attempt.name}) "
            f"recorded as Failed: {attempt.failure_reason}"
        )
    cli.console.ok(f"Recovered {len(recovered)} attempt(s)")
