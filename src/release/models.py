"""Data model for release descriptors, attempts and ledger entries.

Records that are persisted (descriptors, attempts, ledger entries) are
pydantic models so they round-trip through the JSON state files without
hand-written serializers.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_CONSTANTS


def utcnow() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Enumerations
# =============================================================================


class AttemptState(str, Enum):
    """States of the release state machine."""

    PENDING = "Pending"
    BUILDING = "Building"
    PUBLISHING = "Publishing"
    DEPLOYING = "Deploying"
    VERIFYING = "Verifying"
    ROLLING_BACK = "RollingBack"
    SUCCEEDED = "Succeeded"
    ROLLED_BACK = "RolledBack"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            AttemptState.SUCCEEDED,
            AttemptState.ROLLED_BACK,
            AttemptState.FAILED,
        )


class Outcome(str, Enum):
    """Terminal outcome of a release attempt."""

    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    ROLLED_BACK = "RolledBack"


class Stage(str, Enum):
    BUILD = "Build"
    PUBLISH = "Publish"
    DEPLOY = "Deploy"
    VERIFY = "Verify"
    ROLLBACK = "Rollback"
    CANCEL = "Cancel"


class StageStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class HealthResult(str, Enum):
    """Overall verdict of the health verifier."""

    HEALTHY = "Healthy"
    UNHEALTHY = "Unhealthy"
    TIMED_OUT = "TimedOut"


# =============================================================================
# Images and descriptors
# =============================================================================


class ImageReference(BaseModel):
    """Registry address, repository and tag of a container image."""

    model_config = ConfigDict(frozen=True)

    registry: str = ""
    repository: str
    tag: str

    @property
    def repository_path(self) -> str:
        """Repository including the registry prefix, without the tag."""
        if self.registry:
            return f"{self.registry}/{self.repository}"
        return self.repository

    @property
    def ref(self) -> str:
        """Full ``registry/repository:tag`` reference."""
        return f"{self.repository_path}:{self.tag}"

    def __str__(self) -> str:
        return self.ref


class RoutingRule(BaseModel):
    """Maps an external path prefix to the component serving it."""

    model_config = ConfigDict(frozen=True)

    path: str
    component: str

    @field_validator("path")
    @classmethod
    def _path_is_absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"route path must start with '/': {value!r}")
        return value


def default_routes() -> list[RoutingRule]:
    return [
        RoutingRule(path="/", component="frontend"),
        RoutingRule(path="/api", component="backend"),
    ]


class ReleaseDescriptor(BaseModel):
    """Declarative target state for one deployable unit.

    Descriptors are immutable; the descriptor store assigns ``version`` and a
    changed target state is registered as a new version.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str
    version: int = 0
    chart: str
    images: dict[str, ImageReference]
    overrides: dict[str, Any] = Field(default_factory=dict)
    routes: list[RoutingRule] = Field(default_factory=list)
    probes: dict[str, str] = Field(default_factory=dict)
    required_secrets: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def target(self) -> tuple[str, str]:
        return (self.name, self.namespace)

    @property
    def components(self) -> list[str]:
        return sorted(self.images)


# =============================================================================
# Requests
# =============================================================================


class ComponentRequest(BaseModel):
    """Build input for one component of a release request."""

    source: str
    tag: str | None = None
    repository: str | None = None
    probe_path: str | None = None


class ReleaseRequest(BaseModel):
    """What an operator submits to start a release."""

    name: str
    namespace: str
    chart: str
    registry: str = ""
    components: dict[str, ComponentRequest]
    overrides: dict[str, Any] = Field(default_factory=dict)
    routes: list[RoutingRule] = Field(default_factory=default_routes)
    required_secrets: list[str] = Field(default_factory=list)

    @property
    def target(self) -> tuple[str, str]:
        return (self.name, self.namespace)

    def repository_for(self, component: str) -> str:
        """Repository name of a component's image (``<release>-<component>``)."""
        return self.components[component].repository or f"{self.name}-{component}"


# =============================================================================
# Attempts and ledger
# =============================================================================


class StageResult(BaseModel):
    """Outcome of one pipeline step, recorded before the state advances."""

    model_config = ConfigDict(frozen=True)

    stage: Stage
    status: StageStatus
    state: AttemptState
    component: str | None = None
    diagnostic: str = ""
    error_kind: str | None = None
    recorded_at: datetime = Field(default_factory=utcnow)


class ReleaseAttempt(BaseModel):
    """One execution of the build/publish/deploy/verify pipeline."""

    attempt_id: int
    name: str
    namespace: str
    descriptor_version: int
    state: AttemptState = AttemptState.PENDING
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    outcome: Outcome | None = None
    failure_reason: str | None = None
    rollback_target: int | None = None
    stages: list[StageResult] = Field(default_factory=list)

    @property
    def target(self) -> tuple[str, str]:
        return (self.name, self.namespace)

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not None


class LedgerEntry(BaseModel):
    """A terminal attempt as stored in the history ledger."""

    model_config = ConfigDict(frozen=True)

    attempt: ReleaseAttempt
    rollback_candidate: bool

    @classmethod
    def from_attempt(cls, attempt: ReleaseAttempt) -> LedgerEntry:
        return cls(
            attempt=attempt.model_copy(deep=True),
            rollback_candidate=attempt.outcome == Outcome.SUCCEEDED,
        )


class WorkloadState(BaseModel):
    """The verifier's view of a deployed component.

    ``found`` is False while the cluster has no workload for the component;
    such a state never converges. A workload scaled to zero converges at 0/0.
    """

    component: str
    desired_replicas: int
    ready_replicas: int
    found: bool = True
    last_transition: datetime | None = None
    failure_reason: str | None = None

    @property
    def converged(self) -> bool:
        return self.found and self.ready_replicas == self.desired_replicas


# =============================================================================
# Policies
# =============================================================================


class HealthPolicy(BaseModel):
    """Polling policy of the health verifier."""

    deadline_seconds: float = DEFAULT_CONSTANTS.HEALTH_DEADLINE_SECONDS
    poll_interval_seconds: float = DEFAULT_CONSTANTS.HEALTH_POLL_INTERVAL_SECONDS
    stability_window: int = Field(
        default=DEFAULT_CONSTANTS.HEALTH_STABILITY_WINDOW, ge=1
    )
    probe_timeout_seconds: float = DEFAULT_CONSTANTS.PROBE_TIMEOUT_SECONDS


class RetryPolicy(BaseModel):
    """Capped exponential backoff for transient publish failures."""

    max_attempts: int = Field(default=DEFAULT_CONSTANTS.PUBLISH_MAX_ATTEMPTS, ge=1)
    base_delay_seconds: float = DEFAULT_CONSTANTS.PUBLISH_BASE_DELAY_SECONDS
    factor: float = DEFAULT_CONSTANTS.PUBLISH_BACKOFF_FACTOR
    max_delay_seconds: float = DEFAULT_CONSTANTS.PUBLISH_MAX_DELAY_SECONDS
