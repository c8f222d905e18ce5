"""Git command abstractions.

This module provides commands for Git repository operations,
used for deriving content-based image tags for a component source.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from .types import GitStatus

if TYPE_CHECKING:
    from .runner import CommandRunner


class GitCommands:
    """Git-related shell commands."""

    def __init__(self, runner: CommandRunner) -> None:
        """Initialize Git commands.

        Args:
            runner: Command runner for executing shell commands
        """
        self._runner = runner

    def get_status(self, path: Path) -> GitStatus:
        """Get the git status of a directory.

        Only changes under ``path`` count towards cleanliness, so a dirty
        backend does not force a content hash for a clean frontend.

        Args:
            path: Directory to inspect (usually a component build context)

        Returns:
            GitStatus with repository state information

        Example:
            >>> status = git.get_status(Path("frontend"))
            >>> if status.is_clean:
            ...     print(f"Clean tree at {status.short_sha}")
        """
        status_result = self._runner.run(
            ["git", "status", "--porcelain", "--", "."], cwd=path
        )
        if not status_result.success:
            return GitStatus(is_git_repo=False, is_clean=False, short_sha=None)

        is_clean = not bool(status_result.stdout.strip())

        sha_result = self._runner.run(
            ["git", "rev-parse", "--short=7", "HEAD"], cwd=path
        )
        short_sha = sha_result.stdout.strip() if sha_result.success else None

        return GitStatus(is_git_repo=True, is_clean=is_clean, short_sha=short_sha)
