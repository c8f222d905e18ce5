"""Deployment driver: applies a release descriptor to the cluster.

The Helm driver renders a descriptor into chart values (one image block per
component, an ingress block mapping path prefixes to components, then the
descriptor's dotted overrides) and installs it with
``helm upgrade --install``.

Apply is convergent: when the release is already deployed with exactly the
rendered values, no Helm call is made.
"""

from __future__ import annotations

import json
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml  # type: ignore[import-untyped]
from loguru import logger

from .constants import DEFAULT_CONSTANTS, ReleaseConstants
from .errors import DeployError, DeployErrorKind
from .models import ReleaseDescriptor

if TYPE_CHECKING:
    from src.infra.k8s import KubernetesControllerSync
    from src.infra.shell_commands import ShellCommands

INGRESS_HOST_KEY = "ingress.host"


@dataclass(frozen=True)
class DeployHandle:
    """What the health verifier needs to observe an applied release.

    Attributes:
        release_name: Helm release name
        namespace: Target namespace
        descriptor_version: Version of the applied descriptor
        workloads: Component name to Deployment name
        probe_urls: Component name to probe URL (routed components only)
        changed: False when the apply was a no-op
        revision: Helm revision after the apply, if known
    """

    release_name: str
    namespace: str
    descriptor_version: int
    workloads: dict[str, str]
    probe_urls: dict[str, str] = field(default_factory=dict)
    changed: bool = True
    revision: str | None = None


class DeploymentDriver(ABC):
    """Applies descriptors to a cluster."""

    @abstractmethod
    def apply(self, descriptor: ReleaseDescriptor) -> DeployHandle:
        """Converge the cluster onto a descriptor.

        Raises:
            DeployError: ConfigRejected, QuotaExceeded or SecretMissing
        """
        ...


def workload_name(descriptor: ReleaseDescriptor, component: str) -> str:
    """Deployment name the chart gives a component."""
    return f"{descriptor.name}-{component}"


def set_dotted(values: dict[str, Any], key: str, value: Any) -> None:
    """Set ``a.b.c`` in a nested dictionary, creating levels as needed."""
    parts = key.split(".")
    node = values
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def render_values(descriptor: ReleaseDescriptor) -> dict[str, Any]:
    """Render a descriptor into Helm values.

    Example:
        A descriptor with a frontend image and the default routes renders to::

            frontend: {image: {repository: ghcr.io/acme/shop-frontend, tag: v1}}
            ingress:
              enabled: true
              paths: [{path: /, pathType: Prefix, component: frontend}, ...]
    """
    values: dict[str, Any] = {}

    for component, image in sorted(descriptor.images.items()):
        values[component] = {
            "image": {"repository": image.repository_path, "tag": image.tag}
        }

    if descriptor.routes:
        values["ingress"] = {
            "enabled": True,
            "paths": [
                {"path": rule.path, "pathType": "Prefix", "component": rule.component}
                for rule in descriptor.routes
            ],
        }

    for key, value in sorted(descriptor.overrides.items()):
        set_dotted(values, key, value)

    # Normalize to what Helm hands back from `get values -o json`
    normalized: dict[str, Any] = json.loads(json.dumps(values, default=str))
    return normalized


class HelmDeploymentDriver(DeploymentDriver):
    """Deployment driver backed by Helm and the Kubernetes API."""

    def __init__(
        self,
        commands: ShellCommands,
        cluster: KubernetesControllerSync,
        *,
        probe_base_url: str | None = None,
        constants: ReleaseConstants | None = None,
    ) -> None:
        """Initialize the Helm driver.

        Args:
            commands: Shell command executor
            cluster: Cluster query facade (secret presence)
            probe_base_url: Base URL for health probes; defaults to
                            ``http://<ingress.host>`` when the descriptor sets one
            constants: Optional release constants
        """
        self.commands = commands
        self.cluster = cluster
        self.probe_base_url = probe_base_url
        self.constants = constants or DEFAULT_CONSTANTS

    def apply(self, descriptor: ReleaseDescriptor) -> DeployHandle:
        self._check_secrets(descriptor)

        values = render_values(descriptor)
        release = descriptor.name
        namespace = descriptor.namespace

        current = self.commands.helm.status(release, namespace)
        if current is not None and current.status == "deployed":
            deployed_values = self.commands.helm.get_values(release, namespace)
            if deployed_values == values:
                logger.info(
                    f"Release {namespace}/{release} already converged "
                    f"(revision {current.revision}), skipping apply"
                )
                return self._handle(descriptor, changed=False, revision=current.revision)

        self._upgrade_install(descriptor, values)

        status = self.commands.helm.status(release, namespace)
        return self._handle(
            descriptor, changed=True, revision=status.revision if status else None
        )

    # =========================================================================
    # Steps
    # =========================================================================

    def _check_secrets(self, descriptor: ReleaseDescriptor) -> None:
        """Fail if a required credential object is absent.

        Missing secrets are reported verbatim and never created here.
        """
        for secret in descriptor.required_secrets:
            if not self.cluster.secret_exists(secret, descriptor.namespace):
                raise DeployError(
                    DeployErrorKind.SECRET_MISSING,
                    f"Secret '{secret}' is missing from namespace "
                    f"'{descriptor.namespace}'",
                    details="Create the secret in the target namespace, then retry.\n"
                    f"  kubectl -n {descriptor.namespace} get secrets",
                )

    def _upgrade_install(
        self, descriptor: ReleaseDescriptor, values: dict[str, Any]
    ) -> None:
        release = descriptor.name
        namespace = descriptor.namespace

        def log_helm_output(line: str) -> None:
            line = line.strip()
            if line:
                logger.debug(f"helm: {line}")

        with tempfile.NamedTemporaryFile(
            "w", suffix=".yaml", prefix="release-values-", delete=False
        ) as f:
            yaml.safe_dump(values, f, default_flow_style=False)
            values_file = Path(f.name)

        try:
            logger.info(
                f"Applying {namespace}/{release} v{descriptor.version} "
                f"with chart {descriptor.chart}"
            )
            result = self.commands.helm.upgrade_install(
                release_name=release,
                chart=descriptor.chart,
                namespace=namespace,
                value_files=[values_file],
                timeout=self.constants.HELM_TIMEOUT,
                wait=False,
                on_output=log_helm_output,
            )
        finally:
            values_file.unlink(missing_ok=True)

        if not result.success:
            output = result.output.strip()
            lowered = output.lower()
            if any(m in lowered for m in self.constants.DEPLOY_QUOTA_MARKERS):
                kind = DeployErrorKind.QUOTA_EXCEEDED
            elif "secret" in lowered and "not found" in lowered:
                kind = DeployErrorKind.SECRET_MISSING
            else:
                kind = DeployErrorKind.CONFIG_REJECTED
            raise DeployError(
                kind,
                f"Helm apply of {namespace}/{release} failed ({kind.value})",
                details=output or None,
            )

    def _handle(
        self, descriptor: ReleaseDescriptor, *, changed: bool, revision: str | None
    ) -> DeployHandle:
        return DeployHandle(
            release_name=descriptor.name,
            namespace=descriptor.namespace,
            descriptor_version=descriptor.version,
            workloads={c: workload_name(descriptor, c) for c in descriptor.components},
            probe_urls=self._probe_urls(descriptor),
            changed=changed,
            revision=revision,
        )

    def _probe_urls(self, descriptor: ReleaseDescriptor) -> dict[str, str]:
        """Probe URL per routed component, when a probe endpoint is known."""
        base = self.probe_base_url
        if not base and (host := descriptor.overrides.get(INGRESS_HOST_KEY)):
            base = f"http://{host}"
        if not base or not descriptor.routes:
            return {}

        urls: dict[str, str] = {}
        for rule in descriptor.routes:
            if rule.component in urls or rule.component not in descriptor.images:
                continue
            path = descriptor.probes.get(rule.component, rule.path)
            urls[rule.component] = base.rstrip("/") + path
        return urls
