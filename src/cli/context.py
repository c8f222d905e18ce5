"""CLI context and dependency container."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import click
import typer

from src.cli.shared.console import CLIConsole, console
from src.release.config import (
    CONFIG_PATH,
    OrchestratorConfig,
    configure_logging,
    load_config,
    load_env,
)
from src.release.factory import build_orchestrator
from src.release.orchestrator import ReleaseOrchestrator, TransitionListener
from src.utils.paths import get_project_root

OrchestratorFactory = Callable[[TransitionListener | None], ReleaseOrchestrator]


@dataclass(frozen=True)
class CLIContext:
    """Runtime dependencies for CLI commands."""

    console: CLIConsole
    project_root: Path
    config: OrchestratorConfig
    orchestrator_factory: OrchestratorFactory = field(repr=False)

    def orchestrator(
        self, listener: TransitionListener | None = None
    ) -> ReleaseOrchestrator:
        return self.orchestrator_factory(listener)


def build_cli_context(
    config_path: Path | None = None, *, verbose: bool = False
) -> CLIContext:
    """Build a fresh CLIContext.

    Loads ``.env`` and the orchestrator configuration from the project root
    and configures logging.

    Raises:
        ValueError: If the configuration cannot be loaded
    """
    project_root = get_project_root()
    load_env(project_root)
    config = load_config(config_path or project_root / CONFIG_PATH)

    log_settings = config.logging
    if verbose:
        log_settings = log_settings.model_copy(update={"level": "DEBUG"})
    configure_logging(log_settings, project_root)

    def factory(listener: TransitionListener | None) -> ReleaseOrchestrator:
        return build_orchestrator(config, project_root, listener=listener)

    return CLIContext(
        console=console,
        project_root=project_root,
        config=config,
        orchestrator_factory=factory,
    )


def get_cli_context(ctx: typer.Context | None = None) -> CLIContext:
    """Return the CLIContext from Typer, falling back to a new instance."""
    context = ctx or click.get_current_context(silent=True)
    if context and isinstance(context.obj, CLIContext):
        return context.obj
    return build_cli_context()
