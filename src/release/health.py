"""Health verifier: passive, deadline-bounded readiness polling.

A component is Healthy once its ready replica count has matched the desired
count for ``stability_window`` consecutive polls and, if the component is
routed, its probe URL has answered successfully at least once after that
window was reached. The overall verdict is Healthy when every component
is Healthy before the deadline, Unhealthy as soon as the cluster reports a
terminal rollout failure, and TimedOut otherwise.

The verifier only reads cluster state; it never mutates workloads.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import httpx
from loguru import logger

from .errors import ReleaseCancelled
from .models import HealthPolicy, HealthResult, WorkloadState

if TYPE_CHECKING:
    from src.infra.k8s import DeploymentStatus

    from .cancellation import CancelToken
    from .driver import DeployHandle


class ClusterObserver(Protocol):
    def get_deployment_status(
        self, name: str, namespace: str
    ) -> DeploymentStatus | None: ...


class Prober(Protocol):
    def probe(self, url: str, timeout: float) -> bool: ...


class HttpProber:
    """Synthetic GET against a component's probe path."""

    def probe(self, url: str, timeout: float) -> bool:
        try:
            response = httpx.get(url, timeout=timeout, follow_redirects=False)
        except httpx.HTTPError as e:
            logger.debug(f"Probe {url} failed: {e}")
            return False
        ok = 200 <= response.status_code < 400
        logger.debug(f"Probe {url} -> {response.status_code}")
        return ok


@dataclass
class _ComponentProgress:
    streak: int = 0
    healthy: bool = False


@dataclass
class Verification:
    """Result of a verification run.

    Attributes:
        result: Overall verdict
        polls: Number of polls performed
        states: Last observed WorkloadState per component
        detail: Human-readable summary for stage diagnostics
    """

    result: HealthResult
    polls: int
    states: dict[str, WorkloadState] = field(default_factory=dict)
    detail: str = ""

    @property
    def healthy(self) -> bool:
        return self.result is HealthResult.HEALTHY


class HealthVerifier:
    """Polls workload readiness and probes until healthy or out of time."""

    def __init__(
        self,
        cluster: ClusterObserver,
        prober: Prober | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        """Initialize the verifier.

        Args:
            cluster: Source of deployment readiness
            prober: Endpoint prober (HTTP by default)
            clock: Monotonic clock used for the deadline
            sleep: Sleep override; by default the verifier sleeps on the
                   cancel token so cancellation interrupts the wait
        """
        self.cluster = cluster
        self.prober = prober or HttpProber()
        self._clock = clock
        self._sleep = sleep

    def verify(
        self,
        handle: DeployHandle,
        policy: HealthPolicy,
        cancel: CancelToken | None = None,
    ) -> Verification:
        """Block until the applied release is healthy, unhealthy or timed out.

        Args:
            handle: Handle returned by the deployment driver
            policy: Deadline, poll interval and stability window
            cancel: Optional cancellation token

        Returns:
            Verification with the overall verdict

        Raises:
            ReleaseCancelled: If the token is cancelled while waiting
        """
        deadline = self._clock() + policy.deadline_seconds
        progress = {component: _ComponentProgress() for component in handle.workloads}
        states: dict[str, WorkloadState] = {}
        polls = 0

        logger.info(
            f"Verifying {handle.namespace}/{handle.release_name}: "
            f"{', '.join(sorted(progress))} (window={policy.stability_window}, "
            f"deadline={policy.deadline_seconds:.0f}s)"
        )

        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            polls += 1

            for component, tracker in progress.items():
                if tracker.healthy:
                    continue

                state = self._observe(handle, component)
                states[component] = state

                if state.failure_reason:
                    detail = f"{component}: {state.failure_reason}"
                    logger.warning(f"Rollout failed for {detail}")
                    return Verification(HealthResult.UNHEALTHY, polls, states, detail)

                tracker.streak = tracker.streak + 1 if state.converged else 0
                logger.debug(
                    f"Poll {polls} {component}: ready "
                    f"{state.ready_replicas}/{state.desired_replicas}, "
                    f"streak {tracker.streak}"
                )

                if tracker.streak >= policy.stability_window:
                    url = handle.probe_urls.get(component)
                    if url is None or self.prober.probe(
                        url, policy.probe_timeout_seconds
                    ):
                        tracker.healthy = True
                        logger.info(f"{component} healthy after {polls} poll(s)")

            if all(t.healthy for t in progress.values()):
                return Verification(
                    HealthResult.HEALTHY, polls, states, f"healthy after {polls} poll(s)"
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                pending = sorted(c for c, t in progress.items() if not t.healthy)
                detail = f"not healthy before deadline: {', '.join(pending)}"
                logger.warning(f"Verification timed out ({detail})")
                return Verification(HealthResult.TIMED_OUT, polls, states, detail)

            self._pause(min(policy.poll_interval_seconds, remaining), cancel)

    def _observe(self, handle: DeployHandle, component: str) -> WorkloadState:
        status = self.cluster.get_deployment_status(
            handle.workloads[component], handle.namespace
        )
        if status is None:
            return WorkloadState(
                component=component, desired_replicas=0, ready_replicas=0, found=False
            )
        return WorkloadState(
            component=component,
            desired_replicas=status.desired_replicas,
            ready_replicas=status.ready_replicas,
            last_transition=status.last_transition,
            failure_reason=status.failure_reason,
        )

    def _pause(self, seconds: float, cancel: CancelToken | None) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            if cancel.wait(seconds):
                raise ReleaseCancelled()
        else:
            time.sleep(seconds)
