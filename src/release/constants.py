"""Release constants and state-directory layout.

This module centralizes the magic strings, defaults and on-disk paths
used throughout the release pipeline.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ReleaseConstants:
    """Constants for the release pipeline.

    All attributes are immutable; tests and callers share DEFAULT_CONSTANTS.
    """

    # Health verification
    HEALTH_DEADLINE_SECONDS: float = 300.0
    HEALTH_POLL_INTERVAL_SECONDS: float = 2.0
    HEALTH_STABILITY_WINDOW: int = 3
    PROBE_TIMEOUT_SECONDS: float = 5.0

    # Registry publish retries
    PUBLISH_MAX_ATTEMPTS: int = 5
    PUBLISH_BASE_DELAY_SECONDS: float = 1.0
    PUBLISH_BACKOFF_FACTOR: float = 2.0
    PUBLISH_MAX_DELAY_SECONDS: float = 30.0

    # Helm
    HELM_TIMEOUT: str = "10m"
    DEFAULT_CHART: str = "infra/helm/app"

    # Build
    DOCKERFILE_NAME: str = "Dockerfile"
    MAX_PARALLEL_BUILDS: int = 4

    # Failure reasons that are not error kinds
    REASON_CANCELLED: str = "Cancelled"
    REASON_INTERRUPTED: str = "Interrupted"

    # Docker tag grammar: no registry-reserved characters (':', '/', '@')
    TAG_PATTERN: re.Pattern[str] = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")

    # Registry URL validation pattern
    # Matches: host.com/path, host:port/path, localhost:5000
    REGISTRY_PATTERN: re.Pattern[str] = re.compile(
        r"^[a-zA-Z0-9][-a-zA-Z0-9.]*[a-zA-Z0-9](:[0-9]+)?(/[a-zA-Z0-9._-]+)*$"
    )

    # RFC 1123 label, used for release names and namespaces
    K8S_NAME_PATTERN: re.Pattern[str] = re.compile(r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$")

    # Build output fragments that indicate the builder ran out of resources
    RESOURCE_EXHAUSTED_MARKERS: tuple[str, ...] = (
        "no space left on device",
        "out of memory",
        "cannot allocate memory",
        "signal: killed",
        "exit code: 137",
    )

    # Push/login output fragments
    AUTH_REJECTED_MARKERS: tuple[str, ...] = (
        "unauthorized",
        "denied",
        "authentication required",
        "incorrect username or password",
    )
    QUOTA_EXCEEDED_MARKERS: tuple[str, ...] = (
        "quota",
        "storage limit",
    )

    # Deploy output fragments
    DEPLOY_QUOTA_MARKERS: tuple[str, ...] = ("exceeded quota", "forbidden: exceeded")

    # State directory layout
    DESCRIPTORS_DIR: str = "descriptors"
    ATTEMPTS_DIR: str = "attempts"
    LOCKS_DIR: str = "locks"
    LEDGER_FILE: str = "ledger.jsonl"
    ID_LOCK_FILE: str = ".attempt-ids.lock"


DEFAULT_CONSTANTS = ReleaseConstants()


class StatePaths:
    """Path resolver for the persisted release state.

    Everything the orchestrator must survive a restart with lives below a
    single state directory.
    """

    def __init__(self, state_dir: Path) -> None:
        """Initialize state paths.

        Args:
            state_dir: Root directory of the persisted state
        """
        self.root = state_dir
        self._constants = DEFAULT_CONSTANTS

        self.descriptors = self.root / self._constants.DESCRIPTORS_DIR
        self.attempts = self.root / self._constants.ATTEMPTS_DIR
        self.locks = self.root / self._constants.LOCKS_DIR

    @property
    def ledger(self) -> Path:
        """Get path to the append-only ledger file."""
        return self.root / self._constants.LEDGER_FILE

    @property
    def id_lock(self) -> Path:
        """Get path to the lock serializing attempt id allocation."""
        return self.root / self._constants.ID_LOCK_FILE

    def descriptor_dir(self, name: str, namespace: str) -> Path:
        return self.descriptors / namespace / name

    def attempt_journal(self, attempt_id: int) -> Path:
        return self.attempts / f"{attempt_id}.json"

    def lock_file(self, name: str, namespace: str) -> Path:
        return self.locks / f"{namespace}__{name}.lock"
