"""Error taxonomy of the release pipeline.

Every error carries a short ``message`` and optional operator-facing
``details`` (recovery hints), which the CLI renders as a details panel.
Stage errors additionally carry a machine-readable ``kind`` that ends up in
the attempt's stage results.
"""

from __future__ import annotations

from enum import Enum


class ReleaseError(Exception):
    """Base class for all release errors."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(message)


class InputError(ReleaseError):
    """Malformed request or descriptor; rejected before any side effect."""


class ConflictError(ReleaseError):
    """A release attempt is already active for the target."""

    def __init__(self, name: str, namespace: str, active_attempt: int | None = None):
        self.name = name
        self.namespace = namespace
        self.active_attempt = active_attempt
        holder = f" (attempt {active_attempt})" if active_attempt is not None else ""
        super().__init__(
            f"A release of '{name}' to namespace '{namespace}' is already in progress{holder}",
            details="Wait for it to finish or cancel it, then retry.\n"
            "Inspect it with: relctl release inspect <attempt-id>",
        )


class AttemptNotFoundError(ReleaseError):
    """No active or recorded attempt has the requested id."""

    def __init__(self, attempt_id: int):
        self.attempt_id = attempt_id
        super().__init__(f"Release attempt {attempt_id} not found")


class ReleaseCancelled(ReleaseError):
    """Cancellation of the active attempt was observed."""

    def __init__(self, message: str = "Release cancelled"):
        super().__init__(message)


# =============================================================================
# Stage errors
# =============================================================================


class BuildErrorKind(str, Enum):
    SOURCE_UNAVAILABLE = "SourceUnavailable"
    BUILD_SCRIPT_FAILED = "BuildScriptFailed"
    RESOURCE_EXHAUSTED = "ResourceExhausted"


class PublishErrorKind(str, Enum):
    AUTH_REJECTED = "AuthRejected"
    NETWORK_UNAVAILABLE = "NetworkUnavailable"
    QUOTA_EXCEEDED = "QuotaExceeded"


class DeployErrorKind(str, Enum):
    CONFIG_REJECTED = "ConfigRejected"
    QUOTA_EXCEEDED = "QuotaExceeded"
    SECRET_MISSING = "SecretMissing"


class StageError(ReleaseError):
    """An error that fails a pipeline stage."""

    kind: Enum

    def __init__(self, kind: Enum, message: str, details: str | None = None):
        self.kind = kind
        super().__init__(message, details)


class BuildError(StageError):
    """Image build failed. Never retried."""

    kind: BuildErrorKind

    def __init__(self, kind: BuildErrorKind, message: str, details: str | None = None):
        super().__init__(kind, message, details)


class PublishError(StageError):
    """Image publish failed."""

    kind: PublishErrorKind

    def __init__(
        self, kind: PublishErrorKind, message: str, details: str | None = None
    ):
        super().__init__(kind, message, details)

    @property
    def transient(self) -> bool:
        """Only network failures are worth retrying."""
        return self.kind is PublishErrorKind.NETWORK_UNAVAILABLE


class DeployError(StageError):
    """Applying a descriptor to the cluster failed. Never retried."""

    kind: DeployErrorKind

    def __init__(self, kind: DeployErrorKind, message: str, details: str | None = None):
        super().__init__(kind, message, details)
