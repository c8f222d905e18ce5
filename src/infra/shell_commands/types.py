"""Data types for shell command results.

This module contains the dataclasses shared by the shell command modules.
"""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["CommandResult", "GitStatus", "HelmRelease"]


@dataclass
class CommandResult:
    """Result of a command execution."""

    success: bool
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, for diagnostics and error matching."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


@dataclass
class HelmRelease:
    """Information about a Helm release.

    Attributes:
        name: Release name
        namespace: Kubernetes namespace
        status: Release status (deployed, failed, pending-install, ...)
        revision: Release revision number
    """

    name: str
    namespace: str
    status: str
    revision: str


@dataclass
class GitStatus:
    """Git repository status information.

    Attributes:
        is_git_repo: Whether the directory is inside a git repository
        is_clean: Whether the directory has no uncommitted changes
        short_sha: Short commit SHA (7 chars) of HEAD, or None if not available
    """

    is_git_repo: bool
    is_clean: bool
    short_sha: str | None
