"""Helm command abstractions.

This module provides commands for Helm release management:
installs and upgrades, plus the read-only queries needed to decide
whether a release is already converged.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .types import CommandResult, HelmRelease

if TYPE_CHECKING:
    from .runner import CommandRunner


class HelmCommands:
    """Helm-related shell commands.

    Provides operations for:
    - Release management (install, upgrade)
    - Status queries (release status, user-supplied values)
    """

    def __init__(self, runner: CommandRunner) -> None:
        """Initialize Helm commands.

        Args:
            runner: Command runner for executing shell commands
        """
        self._runner = runner

    # =========================================================================
    # Release Management
    # =========================================================================

    def upgrade_install(
        self,
        release_name: str,
        chart: str,
        namespace: str,
        *,
        value_files: list[Path] | None = None,
        timeout: str = "10m",
        wait: bool = False,
        create_namespace: bool = True,
        on_output: Callable[[str], None] | None = None,
    ) -> CommandResult:
        """Deploy or upgrade a Helm release.

        Uses `helm upgrade --install` to idempotently deploy a chart.
        If the release doesn't exist, it will be installed. If it exists,
        it will be upgraded.

        Args:
            release_name: Name for the Helm release (e.g., "shop")
            chart: Chart reference (local path, repo/chart or oci:// URL)
            namespace: Kubernetes namespace for deployment
            value_files: Optional list of values.yaml override files
            timeout: Maximum time Helm may spend on the operation
            wait: Whether Helm itself should wait for resources to be ready.
                  Readiness is normally left to the health verifier.
            create_namespace: Whether to create namespace if it doesn't exist
            on_output: Optional callback for real-time output streaming.

        Returns:
            CommandResult with deployment status

        Example:
            >>> helm.upgrade_install(
            ...     "shop",
            ...     "./infra/helm/shop",
            ...     "shop-prod",
            ...     value_files=[Path("./overrides.yaml")],
            ... )
        """
        cmd = [
            "helm",
            "upgrade",
            "--install",
            release_name,
            chart,
            "--namespace",
            namespace,
        ]

        if create_namespace:
            cmd.append("--create-namespace")
        if wait:
            cmd.append("--wait")
        cmd.extend(["--timeout", timeout])

        for vf in value_files or []:
            cmd.extend(["-f", str(vf)])

        if on_output:
            return self._runner.run_streaming(cmd, on_output=on_output)
        return self._runner.run(cmd, capture_output=True)

    # =========================================================================
    # Status Queries
    # =========================================================================

    def status(self, release_name: str, namespace: str) -> HelmRelease | None:
        """Get the status of a release.

        Args:
            release_name: Name of the release
            namespace: Kubernetes namespace

        Returns:
            HelmRelease, or None if the release does not exist
        """
        cmd = ["helm", "status", release_name, "-n", namespace, "-o", "json"]

        result = self._runner.run(cmd)
        if not result.success or not result.stdout:
            return None

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            return None

        return HelmRelease(
            name=data.get("name", release_name),
            namespace=data.get("namespace", namespace),
            status=data.get("info", {}).get("status", ""),
            revision=str(data.get("version", "")),
        )

    def get_values(self, release_name: str, namespace: str) -> dict[str, Any] | None:
        """Get the user-supplied values of the deployed release revision.

        Args:
            release_name: Name of the release
            namespace: Kubernetes namespace

        Returns:
            Values dictionary, or None if the release does not exist
        """
        cmd = ["helm", "get", "values", release_name, "-n", namespace, "-o", "json"]

        result = self._runner.run(cmd)
        if not result.success:
            return None

        try:
            values = json.loads(result.stdout or "null")
        except json.JSONDecodeError:
            return None

        # `helm get values` prints null for a release installed without values
        return values if isinstance(values, dict) else {}
