"""Shell command abstractions for the external release tooling.

This package provides a clean, well-documented interface for the shell
commands used during a release. It is organized into specialized modules
for each tool:

- docker: image build, registry login, push
- helm: release install/upgrade and status queries
- git: repository state for content-based tags

Usage:
    from src.infra.shell_commands import ShellCommands

    commands = ShellCommands(project_root=Path("."))
    status = commands.git.get_status(Path("frontend"))
    if status.is_clean:
        print(f"Tagging build as git-{status.short_sha}")
"""

from pathlib import Path

from .docker import DockerCommands
from .git import GitCommands
from .helm import HelmCommands
from .runner import CommandRunner
from .types import CommandResult, GitStatus, HelmRelease


class ShellCommands:
    """Unified interface for all shell command operations.

    Attributes:
        docker: Docker-related commands
        helm: Helm-related commands
        git: Git repository commands
    """

    def __init__(self, project_root: Path) -> None:
        """Initialize the shell commands executor.

        Args:
            project_root: Path to the project root directory.
                         Commands will be executed from this directory by default.
        """
        self._project_root = Path(project_root)
        self._runner = CommandRunner(self._project_root)

        self.docker = DockerCommands(self._runner)
        self.helm = HelmCommands(self._runner)
        self.git = GitCommands(self._runner)

    @property
    def project_root(self) -> Path:
        """Get the project root path."""
        return self._project_root


__all__ = [
    "ShellCommands",
    "CommandResult",
    "GitStatus",
    "HelmRelease",
    "DockerCommands",
    "HelmCommands",
    "GitCommands",
    "CommandRunner",
]
