"""Release orchestrator: the state machine behind a release attempt.

An attempt moves through::

    Pending -> Building -> Publishing -> Deploying -> Verifying -> Succeeded
                                             |            |
                                             +------------+-> RollingBack -> RolledBack
                                                          |         |
                                                          +---------+-> Failed

Every stage outcome is recorded on the attempt (and journaled) before the
state advances, and every path ends in a terminal attempt appended to the
history ledger. Attempts for distinct targets run in parallel; a second
request for a target with an active attempt is rejected with ConflictError.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from loguru import logger

from .builder import ArtifactBuilder
from .cancellation import CancelToken
from .constants import DEFAULT_CONSTANTS, ReleaseConstants
from .errors import (
    AttemptNotFoundError,
    BuildError,
    DeployError,
    InputError,
    PublishError,
    ReleaseCancelled,
    StageError,
)
from .models import (
    AttemptState,
    HealthPolicy,
    ImageReference,
    LedgerEntry,
    Outcome,
    ReleaseAttempt,
    ReleaseDescriptor,
    ReleaseRequest,
    Stage,
    StageResult,
    StageStatus,
    utcnow,
)

if TYPE_CHECKING:
    from .descriptors import DescriptorStore
    from .driver import DeploymentDriver
    from .health import HealthVerifier
    from .ledger import HistoryLedger
    from .locks import TargetLocks
    from .publisher import Acknowledged, RegistryCredentials, RegistryPublisher

TransitionListener = Callable[[ReleaseAttempt], None]

_STAGE_FOR_STATE = {
    AttemptState.PENDING: Stage.BUILD,
    AttemptState.BUILDING: Stage.BUILD,
    AttemptState.PUBLISHING: Stage.PUBLISH,
    AttemptState.DEPLOYING: Stage.DEPLOY,
    AttemptState.VERIFYING: Stage.VERIFY,
    AttemptState.ROLLING_BACK: Stage.ROLLBACK,
}

_TERMINAL_STATE = {
    Outcome.SUCCEEDED: AttemptState.SUCCEEDED,
    Outcome.ROLLED_BACK: AttemptState.ROLLED_BACK,
    Outcome.FAILED: AttemptState.FAILED,
}


@dataclass
class _ActiveAttempt:
    attempt: ReleaseAttempt
    descriptor: ReleaseDescriptor
    request: ReleaseRequest
    cancel: CancelToken
    lock: threading.Lock = field(default_factory=threading.Lock)


@dataclass
class ReleaseRun:
    """Handle on an attempt running in the background."""

    attempt_id: int
    future: Future[ReleaseAttempt]
    cancel_token: CancelToken

    def result(self, timeout: float | None = None) -> ReleaseAttempt:
        """Wait for the attempt to finish and return it."""
        return self.future.result(timeout)

    def cancel(self) -> None:
        self.cancel_token.cancel()

    @property
    def done(self) -> bool:
        return self.future.done()


class ReleaseOrchestrator:
    """Coordinates builder, publisher, driver and verifier for each attempt."""

    def __init__(
        self,
        builder: ArtifactBuilder,
        publisher: RegistryPublisher,
        driver: DeploymentDriver,
        verifier: HealthVerifier,
        *,
        descriptors: DescriptorStore,
        ledger: HistoryLedger,
        locks: TargetLocks,
        health_policy: HealthPolicy | None = None,
        credentials: RegistryCredentials | None = None,
        max_parallel_builds: int | None = None,
        max_parallel_releases: int = 8,
        listener: TransitionListener | None = None,
        constants: ReleaseConstants | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            builder: Artifact builder
            publisher: Registry publisher
            driver: Deployment driver
            verifier: Health verifier
            descriptors: Descriptor store
            ledger: History ledger
            locks: Per-target lock registry
            health_policy: Verification policy (defaults apply if omitted)
            credentials: Registry login used for every publish
            max_parallel_builds: Concurrent component builds/publishes per attempt
            max_parallel_releases: Concurrent attempts across targets
            listener: Called with a snapshot of the attempt after each transition
            constants: Optional release constants
        """
        self.builder = builder
        self.publisher = publisher
        self.driver = driver
        self.verifier = verifier
        self.descriptors = descriptors
        self.ledger = ledger
        self.locks = locks
        self.health_policy = health_policy or HealthPolicy()
        self.credentials = credentials
        self.constants = constants or DEFAULT_CONSTANTS
        self.max_parallel_builds = (
            max_parallel_builds or self.constants.MAX_PARALLEL_BUILDS
        )
        self.listener = listener

        self._active: dict[int, _ActiveAttempt] = {}
        self._active_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_parallel_releases, thread_name_prefix="release"
        )

    # =========================================================================
    # Public Interface
    # =========================================================================

    def start(
        self, request: ReleaseRequest, cancel: CancelToken | None = None
    ) -> ReleaseRun:
        """Accept a release request and run it in the background.

        Validation happens synchronously and before any side effect.

        Args:
            request: The release to run
            cancel: Token the caller may cancel the attempt with; a fresh one
                    is created when omitted

        Raises:
            InputError: If the request is malformed
            ConflictError: If the target already has an active attempt
        """
        draft = self.prepare(request)

        attempt_id = self.ledger.next_attempt_id()
        try:
            self.locks.acquire(request.name, request.namespace, attempt_id)
        except BaseException:
            self.ledger.discard_journal(attempt_id)
            raise
        try:
            descriptor = self.descriptors.register(draft)
            attempt = ReleaseAttempt(
                attempt_id=attempt_id,
                name=descriptor.name,
                namespace=descriptor.namespace,
                descriptor_version=descriptor.version,
            )
            active = _ActiveAttempt(
                attempt=attempt,
                descriptor=descriptor,
                request=request,
                cancel=cancel if cancel is not None else CancelToken(),
            )
            with self._active_lock:
                self._active[attempt_id] = active
            self._journal(active)
            future = self._executor.submit(self._execute, active)
        except BaseException:
            with self._active_lock:
                self._active.pop(attempt_id, None)
            self.ledger.discard_journal(attempt_id)
            self.locks.release(request.name, request.namespace)
            raise

        logger.info(
            f"Accepted attempt {attempt_id} for {descriptor.namespace}/{descriptor.name} "
            f"(descriptor v{descriptor.version})"
        )
        return ReleaseRun(attempt_id=attempt_id, future=future, cancel_token=active.cancel)

    def run(
        self, request: ReleaseRequest, cancel: CancelToken | None = None
    ) -> ReleaseAttempt:
        """Run a release request to completion."""
        return self.start(request, cancel).result()

    def inspect(self, attempt_id: int) -> ReleaseAttempt:
        """Current state and stage diagnostics of an attempt.

        Raises:
            AttemptNotFoundError: If no such attempt is active or recorded
        """
        with self._active_lock:
            active = self._active.get(attempt_id)
        if active is not None:
            with active.lock:
                return active.attempt.model_copy(deep=True)

        entry = self.ledger.get(attempt_id)
        if entry is not None:
            return entry.attempt.model_copy(deep=True)

        journaled = self.ledger.read_journal(attempt_id)
        if journaled is not None:
            return journaled

        raise AttemptNotFoundError(attempt_id)

    def history(self, name: str, namespace: str) -> list[LedgerEntry]:
        """Ledger entries for a target, oldest first."""
        return self.ledger.entries(name, namespace)

    def active_attempts(self) -> list[ReleaseAttempt]:
        with self._active_lock:
            actives = list(self._active.values())
        snapshots = []
        for active in actives:
            with active.lock:
                snapshots.append(active.attempt.model_copy(deep=True))
        return snapshots

    def cancel(self, attempt_id: int) -> bool:
        """Request cancellation of an active attempt.

        Returns:
            True if the attempt was active in this process
        """
        with self._active_lock:
            active = self._active.get(attempt_id)
        if active is None:
            return False
        logger.info(f"Cancellation requested for attempt {attempt_id}")
        active.cancel.cancel()
        return True

    def recover(self) -> list[ReleaseAttempt]:
        """Finalize attempts left active by a process that no longer runs.

        Returns:
            The attempts recorded as Failed/Interrupted
        """
        recovered = []
        with self._active_lock:
            own = set(self._active)

        for attempt in self.ledger.journaled_attempts():
            if attempt.attempt_id in own:
                continue
            if self.ledger.get(attempt.attempt_id) is not None:
                # Recorded, but the process exited before dropping the journal
                self.locks.release_stale(attempt.name, attempt.namespace, attempt.attempt_id)
                self.ledger.discard_journal(attempt.attempt_id)
                logger.info(
                    f"Discarded leftover journal of recorded attempt {attempt.attempt_id}"
                )
                continue
            stale = self.locks.release_stale(
                attempt.name, attempt.namespace, attempt.attempt_id
            )
            holder = self.locks.holder(attempt.name, attempt.namespace)
            if not stale and holder == attempt.attempt_id:
                # Still running in another process
                continue

            attempt.stages.append(
                StageResult(
                    stage=_STAGE_FOR_STATE.get(attempt.state, Stage.BUILD),
                    status=StageStatus.FAILED,
                    state=attempt.state,
                    diagnostic="The orchestrator process exited before the attempt finished",
                    error_kind=self.constants.REASON_INTERRUPTED,
                )
            )
            attempt.state = AttemptState.FAILED
            attempt.outcome = Outcome.FAILED
            attempt.failure_reason = self.constants.REASON_INTERRUPTED
            attempt.finished_at = utcnow()
            self.ledger.append(attempt)
            logger.warning(
                f"Recovered interrupted attempt {attempt.attempt_id} for "
                f"{attempt.namespace}/{attempt.name} as Failed"
            )
            recovered.append(attempt)
        return recovered

    def shutdown(self, wait: bool = True) -> None:
        if not wait:
            with self._active_lock:
                for active in self._active.values():
                    active.cancel.cancel()
        self._executor.shutdown(wait=True)

    # =========================================================================
    # Request validation
    # =========================================================================

    def prepare(self, request: ReleaseRequest) -> ReleaseDescriptor:
        """Validate a request and derive its (unversioned) descriptor.

        Raises:
            InputError: On any malformed field or unresolvable source
        """
        c = self.constants
        problems: list[str] = []

        if not c.K8S_NAME_PATTERN.match(request.name):
            problems.append(f"invalid release name '{request.name}'")
        if not c.K8S_NAME_PATTERN.match(request.namespace):
            problems.append(f"invalid namespace '{request.namespace}'")
        if not request.chart:
            problems.append("no chart given")
        if request.registry and not c.REGISTRY_PATTERN.match(request.registry):
            problems.append(f"invalid registry URL '{request.registry}'")
        if not request.components:
            problems.append("no components given")

        images: dict[str, ImageReference] = {}
        probes: dict[str, str] = {}
        for component, spec in sorted(request.components.items()):
            if not c.K8S_NAME_PATTERN.match(component):
                problems.append(f"invalid component name '{component}'")
                continue
            try:
                self.builder.resolve_source(spec.source)
                tag = spec.tag or self.builder.generate_content_tag(spec.source)
                self.builder.validate_tag(tag)
            except BuildError as e:
                problems.append(f"{component}: {e.message}")
                continue
            images[component] = ImageReference(
                registry=request.registry,
                repository=request.repository_for(component),
                tag=tag,
            )
            if spec.probe_path:
                if not spec.probe_path.startswith("/"):
                    problems.append(f"{component}: probe path must start with '/'")
                probes[component] = spec.probe_path

        for rule in request.routes:
            if rule.component not in request.components:
                problems.append(
                    f"route '{rule.path}' targets unknown component '{rule.component}'"
                )

        if problems:
            raise InputError(
                f"Release request for '{request.name}' is invalid",
                details="\n".join(f"  • {p}" for p in problems),
            )

        return ReleaseDescriptor(
            name=request.name,
            namespace=request.namespace,
            chart=request.chart,
            images=images,
            overrides=dict(request.overrides),
            routes=list(request.routes),
            probes=probes,
            required_secrets=list(request.required_secrets),
        )

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _execute(self, active: _ActiveAttempt) -> ReleaseAttempt:
        attempt = active.attempt
        try:
            self._pipeline(active)
        except ReleaseCancelled:
            logger.warning(f"Attempt {attempt.attempt_id} cancelled in {attempt.state.value}")
            self._record(
                active,
                Stage.CANCEL,
                StageStatus.FAILED,
                diagnostic=f"Cancelled by operator during {attempt.state.value}",
                error_kind=self.constants.REASON_CANCELLED,
            )
            self._finalize(active, Outcome.FAILED, self.constants.REASON_CANCELLED)
        except Exception as e:
            logger.exception(f"Attempt {attempt.attempt_id} failed unexpectedly")
            self._record(
                active,
                _STAGE_FOR_STATE.get(attempt.state, Stage.BUILD),
                StageStatus.FAILED,
                diagnostic=f"{type(e).__name__}: {e}",
                error_kind=type(e).__name__,
            )
            self._finalize(active, Outcome.FAILED, type(e).__name__)
        finally:
            with self._active_lock:
                self._active.pop(attempt.attempt_id, None)
            self.locks.release(attempt.name, attempt.namespace)

        return attempt.model_copy(deep=True)

    def _pipeline(self, active: _ActiveAttempt) -> None:
        descriptor = active.descriptor
        token = active.cancel

        self._advance(active, AttemptState.BUILDING)
        try:
            self._build_all(active)
        except BuildError as e:
            self._finalize(active, Outcome.FAILED, e.kind.value)
            return

        token.raise_if_cancelled()
        self._advance(active, AttemptState.PUBLISHING)
        try:
            self._publish_all(active)
        except PublishError as e:
            self._finalize(active, Outcome.FAILED, e.kind.value)
            return

        token.raise_if_cancelled()
        self._advance(active, AttemptState.DEPLOYING)
        try:
            handle = self.driver.apply(descriptor)
        except DeployError as e:
            self._record_error(active, Stage.DEPLOY, e)
            self._roll_back_or_fail(active, e.kind.value)
            return
        self._record(
            active,
            Stage.DEPLOY,
            StageStatus.SUCCEEDED,
            diagnostic=(
                f"applied descriptor v{descriptor.version}"
                + (f" (revision {handle.revision})" if handle.revision else "")
                if handle.changed
                else "already converged, nothing applied"
            ),
        )

        token.raise_if_cancelled()
        self._advance(active, AttemptState.VERIFYING)
        verification = self.verifier.verify(handle, self.health_policy, token)
        if verification.healthy:
            self._record(
                active, Stage.VERIFY, StageStatus.SUCCEEDED, diagnostic=verification.detail
            )
            self._finalize(active, Outcome.SUCCEEDED)
            return

        self._record(
            active,
            Stage.VERIFY,
            StageStatus.FAILED,
            diagnostic=verification.detail,
            error_kind=verification.result.value,
        )
        self._roll_back_or_fail(active, verification.result.value)

    def _build_all(self, active: _ActiveAttempt) -> None:
        descriptor = active.descriptor
        sources = {c: spec.source for c, spec in active.request.components.items()}

        def build(component: str) -> ImageReference:
            image = descriptor.images[component]
            return self.builder.build(
                sources[component], image.repository, image.tag, registry=image.registry
            )

        self._fan_out(active, Stage.BUILD, build, describe=lambda img: f"built {img}")

    def _publish_all(self, active: _ActiveAttempt) -> None:
        images = active.descriptor.images

        def publish(component: str) -> Acknowledged:
            return self.publisher.publish(
                images[component], self.credentials, cancel=active.cancel
            )

        def describe(ack: Acknowledged) -> str:
            text = f"published {ack.image} after {ack.attempts} attempt(s)"
            return f"{text}, digest {ack.digest}" if ack.digest else text

        self._fan_out(active, Stage.PUBLISH, publish, describe=describe)

    def _fan_out(
        self,
        active: _ActiveAttempt,
        stage: Stage,
        work: Callable[[str], object],
        *,
        describe: Callable[[Any], str],
    ) -> None:
        """Run ``work`` for every component concurrently and record each result.

        Waits for all components before raising the first stage error, so
        every component's outcome is in the attempt's diagnostics.
        """
        components = active.descriptor.components
        workers = max(1, min(len(components), self.max_parallel_builds))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=stage.value.lower()
        ) as pool:
            futures = {c: pool.submit(work, c) for c in components}

        first_error: StageError | None = None
        cancelled = False
        unexpected: Exception | None = None
        for component in components:
            try:
                result = futures[component].result()
            except ReleaseCancelled:
                cancelled = True
            except StageError as e:
                self._record_error(active, stage, e, component=component)
                first_error = first_error or e
            except Exception as e:
                unexpected = unexpected or e
            else:
                self._record(
                    active,
                    stage,
                    StageStatus.SUCCEEDED,
                    component=component,
                    diagnostic=describe(result),
                )

        if unexpected is not None:
            raise unexpected
        if first_error is not None:
            raise first_error
        if cancelled:
            raise ReleaseCancelled()

    def _roll_back_or_fail(self, active: _ActiveAttempt, reason: str) -> None:
        attempt = active.attempt
        target = self.ledger.select_rollback_target(
            attempt.name, attempt.namespace, attempt.attempt_id
        )
        if target is None:
            logger.warning(
                f"Attempt {attempt.attempt_id}: no prior successful release of "
                f"{attempt.namespace}/{attempt.name}, nothing to roll back to"
            )
            self._finalize(active, Outcome.FAILED, reason)
            return

        prior = self.descriptors.get(
            attempt.name, attempt.namespace, target.attempt.descriptor_version
        )
        with active.lock:
            attempt.rollback_target = target.attempt.attempt_id
        self._advance(active, AttemptState.ROLLING_BACK)
        active.cancel.raise_if_cancelled()

        try:
            handle = self.driver.apply(prior)
        except DeployError as e:
            self._record_error(active, Stage.ROLLBACK, e)
            self._finalize(active, Outcome.FAILED, f"RollbackFailed: {e.kind.value}")
            return
        self._record(
            active,
            Stage.ROLLBACK,
            StageStatus.SUCCEEDED,
            diagnostic=(
                f"re-applied descriptor v{prior.version} "
                f"from attempt {target.attempt.attempt_id}"
            ),
        )

        verification = self.verifier.verify(handle, self.health_policy, active.cancel)
        if verification.healthy:
            self._record(
                active,
                Stage.VERIFY,
                StageStatus.SUCCEEDED,
                diagnostic=f"rollback {verification.detail}",
            )
            self._finalize(active, Outcome.ROLLED_BACK, reason)
            return

        self._record(
            active,
            Stage.VERIFY,
            StageStatus.FAILED,
            diagnostic=f"rollback {verification.detail}",
            error_kind=verification.result.value,
        )
        self._finalize(
            active, Outcome.FAILED, f"RollbackFailed: {verification.result.value}"
        )

    # =========================================================================
    # Attempt bookkeeping
    # =========================================================================

    def _advance(self, active: _ActiveAttempt, state: AttemptState) -> None:
        with active.lock:
            previous = active.attempt.state
            active.attempt.state = state
        logger.info(
            f"Attempt {active.attempt.attempt_id}: {previous.value} -> {state.value}"
        )
        self._journal(active)

    def _record(
        self,
        active: _ActiveAttempt,
        stage: Stage,
        status: StageStatus,
        *,
        component: str | None = None,
        diagnostic: str = "",
        error_kind: str | None = None,
    ) -> None:
        result = StageResult(
            stage=stage,
            status=status,
            state=active.attempt.state,
            component=component,
            diagnostic=diagnostic,
            error_kind=error_kind,
        )
        with active.lock:
            active.attempt.stages.append(result)
        self._journal(active)

    def _record_error(
        self,
        active: _ActiveAttempt,
        stage: Stage,
        error: StageError,
        *,
        component: str | None = None,
    ) -> None:
        diagnostic = error.message
        if error.details:
            diagnostic = f"{diagnostic}\n{error.details}"
        kind = error.kind.value if isinstance(error.kind, Enum) else str(error.kind)
        self._record(
            active,
            stage,
            StageStatus.FAILED,
            component=component,
            diagnostic=diagnostic,
            error_kind=kind,
        )

    def _finalize(
        self, active: _ActiveAttempt, outcome: Outcome, reason: str | None = None
    ) -> None:
        attempt = active.attempt
        with active.lock:
            attempt.state = _TERMINAL_STATE[outcome]
            attempt.outcome = outcome
            attempt.failure_reason = reason
            attempt.finished_at = utcnow()
        self.ledger.append(attempt)
        log = logger.info if outcome is Outcome.SUCCEEDED else logger.warning
        log(
            f"Attempt {attempt.attempt_id} for {attempt.namespace}/{attempt.name} "
            f"finished: {outcome.value}" + (f" ({reason})" if reason else "")
        )
        if self.listener is not None:
            self.listener(attempt.model_copy(deep=True))

    def _journal(self, active: _ActiveAttempt) -> None:
        with active.lock:
            snapshot = active.attempt.model_copy(deep=True)
        if snapshot.is_terminal:
            return
        self.ledger.journal(snapshot)
        if self.listener is not None:
            self.listener(snapshot)


__all__ = ["ReleaseOrchestrator", "ReleaseRun", "TransitionListener"]
