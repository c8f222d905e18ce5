"""Tests for the CLI dependency container."""

import dataclasses
from pathlib import Path
from unittest.mock import MagicMock, patch

import click
import pytest
from typer.testing import CliRunner

from src.cli import app
from src.cli.context import CLIContext, build_cli_context, get_cli_context
from src.cli.shared.console import CLIConsole
from src.release.config import OrchestratorConfig


def _context(tmp_path: Path, factory: MagicMock | None = None) -> CLIContext:
    return CLIContext(
        console=CLIConsole(),
        project_root=tmp_path,
        config=OrchestratorConfig(),
        orchestrator_factory=factory or MagicMock(),
    )


def test_context_is_frozen(tmp_path: Path) -> None:
    context = _context(tmp_path)

    with pytest.raises(dataclasses.FrozenInstanceError):
        context.project_root = Path("/elsewhere")  # type: ignore[misc]


def test_orchestrator_passes_listener_to_factory(tmp_path: Path) -> None:
    factory = MagicMock()
    listener = MagicMock()

    result = _context(tmp_path, factory).orchestrator(listener)

    factory.assert_called_once_with(listener)
    assert result is factory.return_value


def test_get_cli_context_prefers_ctx_obj(tmp_path: Path) -> None:
    context = _context(tmp_path)
    ctx = click.Context(click.Command("release"), obj=context)

    assert get_cli_context(ctx) is context


def test_get_cli_context_builds_when_missing() -> None:
    ctx = click.Context(click.Command("release"))

    with patch("src.cli.context.build_cli_context") as build:
        result = get_cli_context(ctx)

    assert result is build.return_value


class TestBuildCliContext:
    @pytest.fixture(autouse=True)
    def _no_logging_changes(self):
        with patch("src.cli.context.configure_logging") as configure:
            yield configure

    def test_reads_config_from_project_root(
        self, tmp_path: Path, _no_logging_changes: MagicMock
    ) -> None:
        (tmp_path / "orchestrator.yaml").write_text(
            "config:\n  registry: ghcr.io/acme\n  logging:\n    level: WARNING\n"
        )

        with patch("src.cli.context.get_project_root", return_value=tmp_path):
            context = build_cli_context()

        assert context.project_root == tmp_path
        assert context.config.registry == "ghcr.io/acme"
        settings = _no_logging_changes.call_args[0][0]
        assert settings.level == "WARNING"

    def test_verbose_forces_debug_logging(
        self, tmp_path: Path, _no_logging_changes: MagicMock
    ) -> None:
        with patch("src.cli.context.get_project_root", return_value=tmp_path):
            build_cli_context(verbose=True)

        settings = _no_logging_changes.call_args[0][0]
        assert settings.level == "DEBUG"

    def test_explicit_config_path(self, tmp_path: Path) -> None:
        config_file = tmp_path / "staging.yaml"
        config_file.write_text("config:\n  chart: infra/helm/staging\n")

        with patch("src.cli.context.get_project_root", return_value=tmp_path):
            context = build_cli_context(config_file)

        assert context.config.chart == "infra/helm/staging"

    def test_factory_builds_orchestrator_over_project_state(self, tmp_path: Path) -> None:
        with (
            patch("src.cli.context.get_project_root", return_value=tmp_path),
            patch("src.cli.context.build_orchestrator") as build,
        ):
            context = build_cli_context()
            context.orchestrator()

        build.assert_called_once_with(context.config, tmp_path, listener=None)


def test_invalid_config_is_reported_before_the_command_runs(tmp_path: Path) -> None:
    config_file = tmp_path / "orchestrator.yaml"
    config_file.write_text("config:\n  max_parallel_builds: 0\n")

    with (
        patch("src.cli.context.get_project_root", return_value=tmp_path),
        patch("src.cli.context.build_orchestrator") as build,
    ):
        result = CliRunner().invoke(app, ["--config", str(config_file), "release", "recover"])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
    build.assert_not_called()
