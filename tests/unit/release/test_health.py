"""Unit tests for the health verifier."""

from __future__ import annotations

import threading

import httpx
import pytest

from src.infra.k8s import DeploymentStatus
from src.release.cancellation import CancelToken
from src.release.driver import DeployHandle
from src.release.errors import ReleaseCancelled
from src.release.health import HealthVerifier, HttpProber
from src.release.models import HealthPolicy, HealthResult
from tests.fakes import FakeClock, FakeCluster, FakeProber

POLICY = HealthPolicy(
    deadline_seconds=60, poll_interval_seconds=5, stability_window=2, probe_timeout_seconds=1
)


def _handle(probe: bool = True) -> DeployHandle:
    return DeployHandle(
        release_name="shop",
        namespace="shop-prod",
        descriptor_version=1,
        workloads={"backend": "shop-backend"},
        probe_urls={"backend": "http://shop.example.com/api/health"} if probe else {},
    )


class TestHealthVerifier:
    @pytest.fixture
    def cluster(self) -> FakeCluster:
        return FakeCluster()

    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    def _verifier(
        self, cluster: FakeCluster, clock: FakeClock, prober: FakeProber
    ) -> HealthVerifier:
        return HealthVerifier(cluster, prober, clock=clock, sleep=clock.sleep)

    def test_stability_window_then_probe(
        self, cluster: FakeCluster, clock: FakeClock
    ) -> None:
        """Ready counts [1, 2, 2, 2] of 2 with a window of 2, probe passing on poll 4."""
        cluster.script("shop-backend", ready=[1, 2, 2, 2])
        prober = FakeProber([False, True])

        result = self._verifier(cluster, clock, prober).verify(_handle(), POLICY)

        assert result.result is HealthResult.HEALTHY
        assert result.polls == 4
        # Window reached on poll 3 (probe fails), probe passes on poll 4
        assert len(prober.calls) == 2
        assert clock.sleeps == [5, 5, 5]

    def test_unstable_readiness_resets_window(
        self, cluster: FakeCluster, clock: FakeClock
    ) -> None:
        cluster.script("shop-backend", ready=[2, 1, 2, 2])

        result = self._verifier(cluster, clock, FakeProber()).verify(_handle(), POLICY)

        assert result.healthy
        assert result.polls == 4

    def test_unrouted_component_needs_no_probe(
        self, cluster: FakeCluster, clock: FakeClock
    ) -> None:
        cluster.script("shop-backend", ready=[2])
        prober = FakeProber([False])

        result = self._verifier(cluster, clock, prober).verify(_handle(probe=False), POLICY)

        assert result.healthy
        assert result.polls == 2
        assert prober.calls == []

    def test_never_ready_times_out(self, cluster: FakeCluster, clock: FakeClock) -> None:
        cluster.script("shop-backend", ready=[0])

        result = self._verifier(cluster, clock, FakeProber()).verify(_handle(), POLICY)

        assert result.result is HealthResult.TIMED_OUT
        assert "backend" in result.detail
        assert clock.now == pytest.approx(60)

    def test_failing_probe_times_out(self, cluster: FakeCluster, clock: FakeClock) -> None:
        cluster.script("shop-backend", ready=[2])

        result = self._verifier(cluster, clock, FakeProber([False])).verify(
            _handle(), POLICY
        )

        assert result.result is HealthResult.TIMED_OUT

    def test_missing_deployment_is_not_ready(
        self, cluster: FakeCluster, clock: FakeClock
    ) -> None:
        result = self._verifier(cluster, clock, FakeProber()).verify(_handle(), POLICY)

        assert result.result is HealthResult.TIMED_OUT
        assert result.states["backend"].found is False
        assert not result.states["backend"].converged

    def test_workload_scaled_to_zero_is_healthy(
        self, cluster: FakeCluster, clock: FakeClock
    ) -> None:
        cluster.script("shop-backend", ready=[0], desired=0)

        result = self._verifier(cluster, clock, FakeProber()).verify(
            _handle(probe=False), POLICY
        )

        assert result.result is HealthResult.HEALTHY
        assert result.polls == 2
        assert result.states["backend"].converged

    def test_rollout_failure_is_unhealthy_immediately(
        self, cluster: FakeCluster, clock: FakeClock
    ) -> None:
        cluster.statuses["shop-backend"] = [
            DeploymentStatus(
                name="shop-backend",
                desired_replicas=2,
                ready_replicas=0,
                failure_reason="ProgressDeadlineExceeded",
            )
        ]

        result = self._verifier(cluster, clock, FakeProber()).verify(_handle(), POLICY)

        assert result.result is HealthResult.UNHEALTHY
        assert result.polls == 1
        assert "ProgressDeadlineExceeded" in result.detail

    def test_all_components_must_be_healthy(
        self, cluster: FakeCluster, clock: FakeClock
    ) -> None:
        cluster.script("shop-frontend", ready=[2])
        cluster.script("shop-backend", ready=[0])
        handle = DeployHandle(
            release_name="shop",
            namespace="shop-prod",
            descriptor_version=1,
            workloads={"frontend": "shop-frontend", "backend": "shop-backend"},
        )

        result = self._verifier(cluster, clock, FakeProber()).verify(handle, POLICY)

        assert result.result is HealthResult.TIMED_OUT
        assert "frontend" not in result.detail

    def test_cancelled_token_raises(self, cluster: FakeCluster, clock: FakeClock) -> None:
        cluster.script("shop-backend", ready=[0])
        token = CancelToken()
        token.cancel()

        with pytest.raises(ReleaseCancelled):
            self._verifier(cluster, clock, FakeProber()).verify(_handle(), POLICY, token)

    def test_cancel_interrupts_wait(self, cluster: FakeCluster) -> None:
        cluster.script("shop-backend", ready=[0])
        token = CancelToken()
        verifier = HealthVerifier(cluster, FakeProber())
        slow = HealthPolicy(deadline_seconds=600, poll_interval_seconds=300)
        timer = threading.Timer(0.1, token.cancel)
        timer.start()

        try:
            with pytest.raises(ReleaseCancelled):
                verifier.verify(_handle(), slow, token)
        finally:
            timer.cancel()


class TestHttpProber:
    def test_success_status(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            httpx, "get", lambda url, **kwargs: httpx.Response(204, request=httpx.Request("GET", url))
        )

        assert HttpProber().probe("http://shop.example.com/", 1) is True

    def test_server_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            httpx, "get", lambda url, **kwargs: httpx.Response(503, request=httpx.Request("GET", url))
        )

        assert HttpProber().probe("http://shop.example.com/", 1) is False

    def test_connection_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def refuse(url: str, **kwargs: object) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(httpx, "get", refuse)

        assert HttpProber().probe("http://shop.example.com/", 1) is False
