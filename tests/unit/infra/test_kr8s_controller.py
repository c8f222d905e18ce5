"""Tests for the kr8s-backed cluster queries."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import kr8s
import pytest

from src.infra.k8s.controller import KubernetesControllerSync
from src.infra.k8s.kr8s_controller import Kr8sController


def _deployment(spec: dict, status: dict) -> SimpleNamespace:
    return SimpleNamespace(spec=spec, status=status)


@pytest.fixture
def controller() -> KubernetesControllerSync:
    with patch.object(Kr8sController, "_get_api", AsyncMock(return_value=object())):
        yield KubernetesControllerSync(Kr8sController())


class TestDeploymentStatus:
    def test_ready_replicas(self, controller: KubernetesControllerSync) -> None:
        deployment = _deployment(
            {"replicas": 3},
            {
                "readyReplicas": 2,
                "conditions": [
                    {
                        "type": "Available",
                        "status": "True",
                        "lastTransitionTime": "2026-03-01T10:00:00Z",
                    },
                    {
                        "type": "Progressing",
                        "status": "True",
                        "lastTransitionTime": "2026-03-01T10:05:00Z",
                    },
                ],
            },
        )
        with patch(
            "src.infra.k8s.kr8s_controller.Deployment.get",
            AsyncMock(return_value=deployment),
        ):
            status = controller.get_deployment_status("shop-backend", "shop-prod")

        assert status is not None
        assert (status.desired_replicas, status.ready_replicas) == (3, 2)
        assert status.failure_reason is None
        assert status.last_transition is not None
        assert status.last_transition.minute == 5

    def test_missing_ready_count_is_zero(
        self, controller: KubernetesControllerSync
    ) -> None:
        with patch(
            "src.infra.k8s.kr8s_controller.Deployment.get",
            AsyncMock(return_value=_deployment({"replicas": 2}, {})),
        ):
            status = controller.get_deployment_status("shop-backend", "shop-prod")

        assert status is not None
        assert status.ready_replicas == 0

    def test_progress_deadline_exceeded_is_failure(
        self, controller: KubernetesControllerSync
    ) -> None:
        deployment = _deployment(
            {"replicas": 2},
            {
                "conditions": [
                    {
                        "type": "Progressing",
                        "status": "False",
                        "reason": "ProgressDeadlineExceeded",
                        "message": 'ReplicaSet "shop-backend-7d9" has timed out progressing.',
                    }
                ]
            },
        )
        with patch(
            "src.infra.k8s.kr8s_controller.Deployment.get",
            AsyncMock(return_value=deployment),
        ):
            status = controller.get_deployment_status("shop-backend", "shop-prod")

        assert status is not None
        assert status.failure_reason is not None
        assert "timed out progressing" in status.failure_reason

    def test_missing_deployment(self, controller: KubernetesControllerSync) -> None:
        with patch(
            "src.infra.k8s.kr8s_controller.Deployment.get",
            AsyncMock(side_effect=kr8s.NotFoundError("not found")),
        ):
            assert controller.get_deployment_status("shop-backend", "shop-prod") is None


class TestSecrets:
    def test_secret_exists(self, controller: KubernetesControllerSync) -> None:
        with patch(
            "src.infra.k8s.kr8s_controller.Secret.get", AsyncMock(return_value=object())
        ):
            assert controller.secret_exists("backend-db", "shop-prod") is True

    def test_secret_missing(self, controller: KubernetesControllerSync) -> None:
        with patch(
            "src.infra.k8s.kr8s_controller.Secret.get",
            AsyncMock(side_effect=kr8s.NotFoundError("not found")),
        ):
            assert controller.secret_exists("backend-db", "shop-prod") is False
