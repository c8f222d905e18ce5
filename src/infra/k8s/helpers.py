from __future__ import annotations

from cachetools.func import lru_cache  # type: ignore

from src.infra.k8s.controller import KubernetesController, KubernetesControllerSync


@lru_cache(maxsize=1)
def get_k8s_controller() -> KubernetesController:
    """Get the process-wide KubernetesController."""
    from src.infra.k8s.kr8s_controller import Kr8sController

    return Kr8sController()


@lru_cache(maxsize=1)
def get_k8s_controller_sync() -> KubernetesControllerSync:
    """Get a synchronous wrapper for the KubernetesController."""
    return KubernetesControllerSync(get_k8s_controller())
