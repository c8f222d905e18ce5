"""Unit tests for the registry publisher."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from pydantic import SecretStr

from src.infra.shell_commands import CommandResult
from src.release.cancellation import CancelToken
from src.release.errors import PublishError, PublishErrorKind, ReleaseCancelled
from src.release.models import ImageReference, RetryPolicy
from src.release.publisher import RegistryCredentials, RegistryPublisher

IMAGE = ImageReference(registry="ghcr.io/acme", repository="shop-frontend", tag="v1")

NETWORK_DOWN = CommandResult(
    success=False,
    stderr="Get https://ghcr.io/v2/: dial tcp: lookup ghcr.io: no such host",
    returncode=1,
)
PUSHED = CommandResult(success=True, stdout="v1: digest: sha256:abc size: 1234")


class TestRegistryPublisher:
    """Tests for RegistryPublisher.publish."""

    @pytest.fixture
    def mock_commands(self) -> MagicMock:
        commands = MagicMock()
        commands.docker.push_image.return_value = PUSHED
        commands.docker.login.return_value = CommandResult(success=True)
        commands.docker.repo_digest.return_value = "ghcr.io/acme/shop-frontend@sha256:abc"
        return commands

    @pytest.fixture
    def sleeps(self) -> list[float]:
        return []

    @pytest.fixture
    def publisher(self, mock_commands: MagicMock, sleeps: list[float]) -> RegistryPublisher:
        return RegistryPublisher(
            mock_commands,
            retry_policy=RetryPolicy(
                max_attempts=4, base_delay_seconds=1, factor=2, max_delay_seconds=30
            ),
            sleep=sleeps.append,
        )

    def test_publish_acknowledges_with_digest(
        self, publisher: RegistryPublisher, mock_commands: MagicMock
    ) -> None:
        ack = publisher.publish(IMAGE)

        assert ack.attempts == 1
        assert ack.digest == "ghcr.io/acme/shop-frontend@sha256:abc"
        mock_commands.docker.push_image.assert_called_once_with(IMAGE.ref)

    def test_transient_failures_retried_with_backoff(
        self,
        publisher: RegistryPublisher,
        mock_commands: MagicMock,
        sleeps: list[float],
    ) -> None:
        """Two network failures then success: three attempts, delays 1s then 2s."""
        mock_commands.docker.push_image.side_effect = [NETWORK_DOWN, NETWORK_DOWN, PUSHED]

        ack = publisher.publish(IMAGE)

        assert ack.attempts == 3
        assert sleeps == [1.0, 2.0]
        assert mock_commands.docker.push_image.call_count == 3

    def test_backoff_delay_is_capped(
        self, mock_commands: MagicMock, sleeps: list[float]
    ) -> None:
        publisher = RegistryPublisher(
            mock_commands,
            retry_policy=RetryPolicy(
                max_attempts=5, base_delay_seconds=1, factor=10, max_delay_seconds=15
            ),
            sleep=sleeps.append,
        )
        mock_commands.docker.push_image.side_effect = [NETWORK_DOWN] * 4 + [PUSHED]

        publisher.publish(IMAGE)

        assert sleeps == [1.0, 10.0, 15.0, 15.0]

    def test_retry_budget_exhausted_raises_network_unavailable(
        self,
        publisher: RegistryPublisher,
        mock_commands: MagicMock,
        sleeps: list[float],
    ) -> None:
        mock_commands.docker.push_image.return_value = NETWORK_DOWN

        with pytest.raises(PublishError) as exc_info:
            publisher.publish(IMAGE)

        assert exc_info.value.kind is PublishErrorKind.NETWORK_UNAVAILABLE
        assert mock_commands.docker.push_image.call_count == 4
        assert len(sleeps) == 3

    def test_auth_rejected_is_not_retried(
        self,
        publisher: RegistryPublisher,
        mock_commands: MagicMock,
        sleeps: list[float],
    ) -> None:
        mock_commands.docker.push_image.return_value = CommandResult(
            success=False,
            stderr="unauthorized: authentication required",
            returncode=1,
        )

        with pytest.raises(PublishError) as exc_info:
            publisher.publish(IMAGE)

        assert exc_info.value.kind is PublishErrorKind.AUTH_REJECTED
        assert mock_commands.docker.push_image.call_count == 1
        assert sleeps == []

    def test_quota_exceeded_is_not_retried(
        self, publisher: RegistryPublisher, mock_commands: MagicMock
    ) -> None:
        mock_commands.docker.push_image.return_value = CommandResult(
            success=False,
            stderr="toomanyrequests: storage quota exceeded for organization",
            returncode=1,
        )

        with pytest.raises(PublishError) as exc_info:
            publisher.publish(IMAGE)

        assert exc_info.value.kind is PublishErrorKind.QUOTA_EXCEEDED
        assert mock_commands.docker.push_image.call_count == 1

    def test_credentials_log_in_to_registry_host(
        self, publisher: RegistryPublisher, mock_commands: MagicMock
    ) -> None:
        credentials = RegistryCredentials(username="ci", password=SecretStr("s3cret"))

        publisher.publish(IMAGE, credentials)

        mock_commands.docker.login.assert_called_once_with("ghcr.io", "ci", "s3cret")

    def test_rejected_login_fails_without_push(
        self, publisher: RegistryPublisher, mock_commands: MagicMock
    ) -> None:
        mock_commands.docker.login.return_value = CommandResult(
            success=False,
            stderr="Error response from daemon: denied: incorrect username or password",
            returncode=1,
        )
        credentials = RegistryCredentials(username="ci", password=SecretStr("wrong"))

        with pytest.raises(PublishError) as exc_info:
            publisher.publish(IMAGE, credentials)

        assert exc_info.value.kind is PublishErrorKind.AUTH_REJECTED
        mock_commands.docker.push_image.assert_not_called()

    def test_cancelled_token_stops_before_push(
        self, publisher: RegistryPublisher, mock_commands: MagicMock
    ) -> None:
        token = CancelToken()
        token.cancel()

        with pytest.raises(ReleaseCancelled):
            publisher.publish(IMAGE, cancel=token)

        mock_commands.docker.push_image.assert_not_called()
