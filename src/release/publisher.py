"""Registry publisher: uploads built images and reports reachability.

Transient (network) failures are retried with capped exponential backoff
using tenacity; authentication and quota failures fail immediately.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger
from pydantic import BaseModel, SecretStr
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .constants import DEFAULT_CONSTANTS, ReleaseConstants
from .errors import PublishError, PublishErrorKind
from .models import ImageReference, RetryPolicy

if TYPE_CHECKING:
    from src.infra.shell_commands import CommandResult, ShellCommands

    from .cancellation import CancelToken


class RegistryCredentials(BaseModel):
    """Login for a container registry."""

    username: str
    password: SecretStr


@dataclass(frozen=True)
class Acknowledged:
    """Successful publish of an image.

    Attributes:
        image: The published image
        attempts: Number of push attempts it took
        digest: Registry digest reported after the push, if any
    """

    image: ImageReference
    attempts: int
    digest: str | None = None


def is_transient(error: BaseException) -> bool:
    """Only retry publish errors that are classified as transient."""
    return isinstance(error, PublishError) and error.transient


def _log_retry_attempt(retry_state: RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    next_wait = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f"Publish attempt {retry_state.attempt_number} failed "
        f"({exception}); retrying in {next_wait:.1f}s"
    )


class RegistryPublisher:
    """Pushes images to their registry.

    Publishing is idempotent: pushing a tag whose content the registry
    already holds is a no-op success on the registry side.
    """

    def __init__(
        self,
        commands: ShellCommands,
        retry_policy: RetryPolicy | None = None,
        constants: ReleaseConstants | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the publisher.

        Args:
            commands: Shell command executor
            retry_policy: Backoff policy for transient failures
            constants: Optional release constants
            sleep: Sleep function used between retries
        """
        self.commands = commands
        self.retry_policy = retry_policy or RetryPolicy()
        self.constants = constants or DEFAULT_CONSTANTS
        self._sleep = sleep

    def publish(
        self,
        image: ImageReference,
        credentials: RegistryCredentials | None = None,
        cancel: CancelToken | None = None,
    ) -> Acknowledged:
        """Publish an image, retrying transient failures.

        Args:
            image: Image to push
            credentials: Optional registry login, performed before each push
            cancel: Optional cancellation token, checked before each attempt

        Returns:
            Acknowledged with the number of attempts used

        Raises:
            PublishError: AuthRejected or QuotaExceeded immediately, or
                NetworkUnavailable once the retry budget is exhausted
            ReleaseCancelled: If the token is cancelled between attempts
        """
        policy = self.retry_policy
        retrying = Retrying(
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(
                multiplier=policy.base_delay_seconds,
                exp_base=policy.factor,
                max=policy.max_delay_seconds,
            ),
            sleep=self._sleep,
            before_sleep=_log_retry_attempt,
            reraise=True,
        )

        attempts = 0
        for attempt in retrying:
            with attempt:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                attempts = attempt.retry_state.attempt_number
                self._push_once(image, credentials)

        digest = self.commands.docker.repo_digest(image.ref)
        logger.info(f"Published {image.ref} after {attempts} attempt(s)")
        return Acknowledged(image=image, attempts=attempts, digest=digest)

    def _push_once(
        self, image: ImageReference, credentials: RegistryCredentials | None
    ) -> None:
        if credentials is not None and image.registry:
            registry_host = image.registry.split("/", 1)[0]
            login = self.commands.docker.login(
                registry_host,
                credentials.username,
                credentials.password.get_secret_value(),
            )
            if not login.success:
                raise self._classify(image, login, action="Login")

        result = self.commands.docker.push_image(image.ref)
        if not result.success:
            raise self._classify(image, result, action="Push")

    def _classify(
        self, image: ImageReference, result: CommandResult, *, action: str
    ) -> PublishError:
        output = result.output.strip()
        lowered = output.lower()

        if any(m in lowered for m in self.constants.AUTH_REJECTED_MARKERS):
            kind = PublishErrorKind.AUTH_REJECTED
        elif any(m in lowered for m in self.constants.QUOTA_EXCEEDED_MARKERS):
            kind = PublishErrorKind.QUOTA_EXCEEDED
        else:
            kind = PublishErrorKind.NETWORK_UNAVAILABLE

        return PublishError(
            kind,
            f"{action} of {image.ref} failed ({kind.value})",
            details=output or None,
        )
