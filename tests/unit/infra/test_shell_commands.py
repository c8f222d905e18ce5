"""Tests for the docker, Helm and git command wrappers."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from src.infra.shell_commands import (
    CommandResult,
    CommandRunner,
    DockerCommands,
    GitCommands,
    HelmCommands,
)


class TestCommandRunner:
    def test_missing_executable_is_failed_result(self, tmp_path: Path) -> None:
        with patch("subprocess.run", side_effect=FileNotFoundError("docker")):
            result = CommandRunner(tmp_path).run(["docker", "version"])

        assert not result.success
        assert result.returncode == 127

    def test_output_joins_stdout_and_stderr(self) -> None:
        result = CommandResult(success=False, stdout="step 1", stderr="boom")

        assert result.output == "step 1\nboom"


class TestDockerCommands:
    @pytest.fixture
    def mock_runner(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def docker(self, mock_runner: MagicMock) -> DockerCommands:
        return DockerCommands(mock_runner)

    def test_build_image_tags_and_uses_context_dockerfile(
        self, docker: DockerCommands, mock_runner: MagicMock
    ) -> None:
        docker.build_image(Path("/src/frontend"), "ghcr.io/acme/shop-frontend:v1")

        cmd = mock_runner.run.call_args[0][0]
        assert cmd[:4] == ["docker", "build", "-t", "ghcr.io/acme/shop-frontend:v1"]
        assert "/src/frontend/Dockerfile" in cmd
        assert cmd[-1] == "/src/frontend"

    def test_login_passes_password_on_stdin(
        self, docker: DockerCommands, mock_runner: MagicMock
    ) -> None:
        docker.login("ghcr.io", "ci", "s3cret")

        cmd = mock_runner.run.call_args[0][0]
        assert "s3cret" not in cmd
        assert "--password-stdin" in cmd
        assert mock_runner.run.call_args.kwargs["input_text"] == "s3cret"

    def test_repo_digest(self, docker: DockerCommands, mock_runner: MagicMock) -> None:
        mock_runner.run.return_value = CommandResult(
            success=True, stdout="ghcr.io/acme/shop-frontend@sha256:abc\n"
        )

        assert docker.repo_digest("ghcr.io/acme/shop-frontend:v1") == (
            "ghcr.io/acme/shop-frontend@sha256:abc"
        )

    def test_repo_digest_unknown(
        self, docker: DockerCommands, mock_runner: MagicMock
    ) -> None:
        mock_runner.run.return_value = CommandResult(success=False, returncode=1)

        assert docker.repo_digest("shop-frontend:v1") is None


class TestHelmCommands:
    @pytest.fixture
    def mock_runner(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def helm(self, mock_runner: MagicMock) -> HelmCommands:
        return HelmCommands(mock_runner)

    def test_upgrade_install_command(
        self, helm: HelmCommands, mock_runner: MagicMock
    ) -> None:
        mock_runner.run.return_value = CommandResult(success=True)

        helm.upgrade_install(
            "shop",
            "infra/helm/app",
            "shop-prod",
            value_files=[Path("/tmp/values.yaml")],
            timeout="5m",
        )

        cmd = mock_runner.run.call_args[0][0]
        assert cmd[:5] == ["helm", "upgrade", "--install", "shop", "infra/helm/app"]
        assert "--create-namespace" in cmd
        assert "--wait" not in cmd
        assert cmd[cmd.index("--timeout") + 1] == "5m"
        assert cmd[cmd.index("-f") + 1] == "/tmp/values.yaml"

    def test_upgrade_install_streams_when_callback_given(
        self, helm: HelmCommands, mock_runner: MagicMock
    ) -> None:
        helm.upgrade_install("shop", "infra/helm/app", "shop-prod", on_output=print)

        mock_runner.run_streaming.assert_called_once()
        mock_runner.run.assert_not_called()

    def test_status_parses_json(self, helm: HelmCommands, mock_runner: MagicMock) -> None:
        mock_runner.run.return_value = CommandResult(
            success=True,
            stdout=json.dumps(
                {
                    "name": "shop",
                    "namespace": "shop-prod",
                    "info": {"status": "deployed"},
                    "version": 4,
                }
            ),
        )

        release = helm.status("shop", "shop-prod")

        assert release is not None
        assert (release.status, release.revision) == ("deployed", "4")

    def test_status_of_missing_release(
        self, helm: HelmCommands, mock_runner: MagicMock
    ) -> None:
        mock_runner.run.return_value = CommandResult(
            success=False, stderr="Error: release: not found", returncode=1
        )

        assert helm.status("shop", "shop-prod") is None

    def test_get_values_null_is_empty(
        self, helm: HelmCommands, mock_runner: MagicMock
    ) -> None:
        mock_runner.run.return_value = CommandResult(success=True, stdout="null\n")

        assert helm.get_values("shop", "shop-prod") == {}

    def test_get_values_of_missing_release(
        self, helm: HelmCommands, mock_runner: MagicMock
    ) -> None:
        mock_runner.run.return_value = CommandResult(success=False, returncode=1)

        assert helm.get_values("shop", "shop-prod") is None


class TestGitCommands:
    @pytest.fixture
    def mock_runner(self) -> MagicMock:
        return MagicMock()

    def test_clean_repository(self, mock_runner: MagicMock) -> None:
        mock_runner.run.side_effect = [
            CommandResult(success=True, stdout=""),
            CommandResult(success=True, stdout="a1b2c3d\n"),
        ]

        status = GitCommands(mock_runner).get_status(Path("/src/frontend"))

        assert status.is_git_repo and status.is_clean
        assert status.short_sha == "a1b2c3d"
        assert mock_runner.run.call_args.kwargs["cwd"] == Path("/src/frontend")

    def test_dirty_repository(self, mock_runner: MagicMock) -> None:
        mock_runner.run.side_effect = [
            CommandResult(success=True, stdout=" M index.html\n"),
            CommandResult(success=True, stdout="a1b2c3d\n"),
        ]

        status = GitCommands(mock_runner).get_status(Path("/src/frontend"))

        assert not status.is_clean

    def test_not_a_repository(self, mock_runner: MagicMock) -> None:
        mock_runner.run.return_value = CommandResult(
            success=False, stderr="fatal: not a git repository", returncode=128
        )

        status = GitCommands(mock_runner).get_status(Path("/tmp/export"))

        assert not status.is_git_repo
        assert status.short_sha is None
