"""Kubernetes infrastructure abstraction layer.

This module provides the read-only cluster queries used by the release
pipeline, backed by the kr8s library.

Example:
    from src.infra.k8s import get_k8s_controller_sync

    controller = get_k8s_controller_sync()
    if not controller.secret_exists("backend-db", "shop-prod"):
        ...
"""

from .controller import (
    DeploymentStatus,
    KubernetesController,
    KubernetesControllerSync,
)
from .helpers import get_k8s_controller, get_k8s_controller_sync
from .utils import run_sync

__all__ = [
    "KubernetesController",
    "KubernetesControllerSync",
    "DeploymentStatus",
    "get_k8s_controller",
    "get_k8s_controller_sync",
    "run_sync",
]
