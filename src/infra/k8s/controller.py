"""Abstract Kubernetes controller interface.

Defines the read-only contract the release tooling needs from the cluster:
namespace and secret presence, and per-deployment replica readiness.
Implementations are async; ``KubernetesControllerSync`` adapts them for
the synchronous release pipeline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from .utils import run_sync

# =============================================================================
# Data Types
# =============================================================================


@dataclass
class DeploymentStatus:
    """Replica readiness of a Kubernetes Deployment.

    Attributes:
        name: Deployment name
        desired_replicas: ``spec.replicas``
        ready_replicas: ``status.readyReplicas`` (0 when absent)
        last_transition: Most recent condition transition time
        failure_reason: Set when the rollout has terminally failed
                        (e.g. ``ProgressDeadlineExceeded``)
    """

    name: str
    desired_replicas: int
    ready_replicas: int
    last_transition: datetime | None = None
    failure_reason: str | None = None


# =============================================================================
# Abstract Controller
# =============================================================================


class KubernetesController(ABC):
    """Abstract base class for cluster queries.

    Example:
        from src.infra.k8s import get_k8s_controller_sync

        controller = get_k8s_controller_sync()
        status = controller.get_deployment_status("shop-frontend", "shop-prod")
    """

    @abstractmethod
    async def secret_exists(self, name: str, namespace: str) -> bool:
        """Check if a Secret exists in a namespace.

        Args:
            name: Secret name
            namespace: Namespace to look in

        Returns:
            True if the secret exists, False otherwise
        """
        ...

    @abstractmethod
    async def get_deployment_status(
        self, name: str, namespace: str
    ) -> DeploymentStatus | None:
        """Get replica readiness for a Deployment.

        Args:
            name: Deployment name
            namespace: Namespace of the deployment

        Returns:
            DeploymentStatus, or None if the deployment does not exist (yet)
        """
        ...


class KubernetesControllerSync:
    """Blocking facade over an async KubernetesController."""

    def __init__(self, controller: KubernetesController) -> None:
        self._controller = controller

    def secret_exists(self, name: str, namespace: str) -> bool:
        return run_sync(self._controller.secret_exists(name, namespace))

    def get_deployment_status(
        self, name: str, namespace: str
    ) -> DeploymentStatus | None:
        return run_sync(self._controller.get_deployment_status(name, namespace))
