"""Release pipeline: build, publish, deploy, verify and roll back.

Example:
    from src.release import build_orchestrator, load_config, load_release_request

    config = load_config()
    orchestrator = build_orchestrator(config, project_root)
    attempt = orchestrator.run(load_release_request(Path("release.yaml"), config))
"""

from .builder import ArtifactBuilder
from .cancellation import CancelToken
from .config import (
    OrchestratorConfig,
    configure_logging,
    load_config,
    load_env,
    load_release_request,
    registry_credentials,
)
from .descriptors import DescriptorStore
from .driver import DeployHandle, DeploymentDriver, HelmDeploymentDriver, render_values
from .errors import (
    AttemptNotFoundError,
    BuildError,
    ConflictError,
    DeployError,
    InputError,
    PublishError,
    ReleaseCancelled,
    ReleaseError,
)
from .factory import build_orchestrator
from .health import HealthVerifier, HttpProber, Verification
from .ledger import HistoryLedger
from .locks import TargetLocks
from .models import (
    AttemptState,
    HealthPolicy,
    ImageReference,
    LedgerEntry,
    Outcome,
    ReleaseAttempt,
    ReleaseDescriptor,
    ReleaseRequest,
    RetryPolicy,
    RoutingRule,
    StageResult,
)
from .orchestrator import ReleaseOrchestrator, ReleaseRun
from .publisher import Acknowledged, RegistryCredentials, RegistryPublisher

__all__ = [
    "Acknowledged",
    "ArtifactBuilder",
    "AttemptNotFoundError",
    "AttemptState",
    "BuildError",
    "CancelToken",
    "ConflictError",
    "DeployError",
    "DeployHandle",
    "DeploymentDriver",
    "DescriptorStore",
    "HealthPolicy",
    "HealthVerifier",
    "HelmDeploymentDriver",
    "HistoryLedger",
    "HttpProber",
    "ImageReference",
    "InputError",
    "LedgerEntry",
    "OrchestratorConfig",
    "Outcome",
    "PublishError",
    "RegistryCredentials",
    "RegistryPublisher",
    "ReleaseAttempt",
    "ReleaseCancelled",
    "ReleaseDescriptor",
    "ReleaseError",
    "ReleaseOrchestrator",
    "ReleaseRequest",
    "ReleaseRun",
    "RetryPolicy",
    "RoutingRule",
    "StageResult",
    "TargetLocks",
    "Verification",
    "build_orchestrator",
    "configure_logging",
    "load_config",
    "load_env",
    "load_release_request",
    "registry_credentials",
    "render_values",
]
