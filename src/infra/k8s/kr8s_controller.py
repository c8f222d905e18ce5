"""Kr8s-based implementation of KubernetesController.

Uses the kr8s library for native async Kubernetes reads.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import kr8s
from kr8s.asyncio.objects import Deployment, Secret
from loguru import logger

from .controller import DeploymentStatus, KubernetesController


class Kr8sController(KubernetesController):
    """Kubernetes controller using the kr8s library.

    Note: The kr8s API client is NOT cached because it's tied to the event loop
    that was running when created. run_sync() creates a fresh loop per call.
    """

    async def _get_api(self) -> Any:  # Returns kr8s._api.Api
        return await kr8s.asyncio.api()

    async def secret_exists(self, name: str, namespace: str) -> bool:
        try:
            api = await self._get_api()
            await Secret.get(name, namespace=namespace, api=api)
            return True
        except kr8s.NotFoundError:
            return False

    async def get_deployment_status(
        self, name: str, namespace: str
    ) -> DeploymentStatus | None:
        try:
            api = await self._get_api()
            deployment = await Deployment.get(name, namespace=namespace, api=api)
        except kr8s.NotFoundError:
            logger.debug(f"Deployment {namespace}/{name} not found")
            return None

        spec = deployment.spec
        status = deployment.status
        conditions = status.get("conditions", []) or []

        last_transition = None
        failure_reason = None
        for condition in conditions:
            if ts := condition.get("lastTransitionTime"):
                try:
                    parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
                except ValueError:
                    parsed = None
                if parsed and (last_transition is None or parsed > last_transition):
                    last_transition = parsed
            if (
                condition.get("type") == "Progressing"
                and condition.get("status") == "False"
                and condition.get("reason") == "ProgressDeadlineExceeded"
            ):
                failure_reason = condition.get("message") or "ProgressDeadlineExceeded"

        return DeploymentStatus(
            name=name,
            desired_replicas=int(spec.get("replicas", 1)),
            ready_replicas=int(status.get("readyReplicas", 0) or 0),
            last_transition=last_transition,
            failure_reason=failure_reason,
        )
