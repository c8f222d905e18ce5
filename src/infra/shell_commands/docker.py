"""Docker command abstractions.

This module provides commands for Docker image operations: building
images from a build context, registry login, and pushing.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from .types import CommandResult

if TYPE_CHECKING:
    from .runner import CommandRunner


class DockerCommands:
    """Docker-related shell commands.

    Provides operations for:
    - Image management (build, push, check existence, digest lookup)
    - Registry authentication
    """

    def __init__(self, runner: CommandRunner) -> None:
        """Initialize Docker commands.

        Args:
            runner: Command runner for executing shell commands
        """
        self._runner = runner

    # =========================================================================
    # Image Management
    # =========================================================================

    def build_image(
        self,
        context: Path,
        image_ref: str,
        *,
        dockerfile: str = "Dockerfile",
    ) -> CommandResult:
        """Build an image from a build context.

        Args:
            context: Build context directory
            image_ref: Full reference to tag the result with
                      (e.g., "ghcr.io/acme/shop-frontend:git-abc1234")
            dockerfile: Dockerfile name relative to the context

        Returns:
            CommandResult with build status and output
        """
        return self._runner.run(
            [
                "docker",
                "build",
                "-t",
                image_ref,
                "-f",
                str(context / dockerfile),
                str(context),
            ]
        )

    def push_image(self, image_ref: str) -> CommandResult:
        """Push a Docker image to a remote registry.

        Args:
            image_ref: Full image reference including registry
                      (e.g., "registry.example.com/app:v1")

        Returns:
            CommandResult with push status
        """
        return self._runner.run(["docker", "push", image_ref])

    def repo_digest(self, image_ref: str) -> str | None:
        """Return the registry digest of a pushed image, if known."""
        result = self._runner.run(
            [
                "docker",
                "inspect",
                "--format",
                "{{index .RepoDigests 0}}",
                image_ref,
            ]
        )
        digest = result.stdout.strip()
        return digest if result.success and digest else None

    # =========================================================================
    # Registry Authentication
    # =========================================================================

    def login(self, registry: str, username: str, password: str) -> CommandResult:
        """Log in to a container registry.

        The password is passed on stdin so it never appears in the process
        list or in logged command lines.

        Args:
            registry: Registry host (e.g., "ghcr.io")
            username: Registry user
            password: Registry password or token

        Returns:
            CommandResult with login status
        """
        return self._runner.run(
            ["docker", "login", registry, "--username", username, "--password-stdin"],
            input_text=password,
        )
