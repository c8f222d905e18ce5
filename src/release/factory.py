"""Wiring of the production orchestrator."""

from __future__ import annotations

from pathlib import Path

from src.infra.k8s import KubernetesControllerSync, get_k8s_controller_sync
from src.infra.shell_commands import ShellCommands

from .builder import ArtifactBuilder
from .config import OrchestratorConfig, registry_credentials
from .constants import StatePaths
from .descriptors import DescriptorStore
from .driver import HelmDeploymentDriver
from .health import HealthVerifier
from .ledger import HistoryLedger
from .locks import TargetLocks
from .orchestrator import ReleaseOrchestrator, TransitionListener
from .publisher import RegistryPublisher


def build_orchestrator(
    config: OrchestratorConfig,
    project_root: Path,
    *,
    commands: ShellCommands | None = None,
    cluster: KubernetesControllerSync | None = None,
    listener: TransitionListener | None = None,
) -> ReleaseOrchestrator:
    """Build an orchestrator backed by docker, Helm and the Kubernetes API.

    Args:
        config: Orchestrator configuration
        project_root: Root that relative sources and the state dir resolve against
        commands: Shell command executor (created if omitted)
        cluster: Cluster query facade (kr8s-backed if omitted)
        listener: Optional transition listener

    Returns:
        Configured ReleaseOrchestrator
    """
    commands = commands or ShellCommands(project_root)
    cluster = cluster or get_k8s_controller_sync()
    paths = StatePaths(config.resolve_state_dir(project_root))

    return ReleaseOrchestrator(
        builder=ArtifactBuilder(commands),
        publisher=RegistryPublisher(commands, retry_policy=config.publish_retry),
        driver=HelmDeploymentDriver(
            commands, cluster, probe_base_url=config.probe_base_url
        ),
        verifier=HealthVerifier(cluster),
        descriptors=DescriptorStore(paths.descriptors),
        ledger=HistoryLedger(paths),
        locks=TargetLocks(paths.locks),
        health_policy=config.health,
        credentials=registry_credentials(),
        max_parallel_builds=config.max_parallel_builds,
        listener=listener,
    )
