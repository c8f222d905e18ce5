"""Main CLI application module.

This module provides the main entry point for the release orchestrator CLI
(``relctl``).

Command Groups:
- release: Build, publish, deploy and verify releases
"""

from pathlib import Path
from typing import Annotated

import typer

from .commands import release_app
from .context import CLIContext, build_cli_context
from .shared.console import console

# Create the main CLI application
app = typer.Typer(
    help="🚀 Release Orchestrator CLI - build, publish, deploy and verify releases",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.callback()
def configure(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Orchestrator configuration file (default: orchestrator.yaml)",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Log at DEBUG level",
        ),
    ] = False,
) -> None:
    """Load configuration and set up logging for every command."""
    if isinstance(ctx.obj, CLIContext):
        return
    try:
        ctx.obj = build_cli_context(config, verbose=verbose)
    except ValueError as e:
        console.handle_error("Invalid configuration", str(e))


# Register command groups
app.add_typer(release_app, name="release")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
