"""Orchestrator configuration and release request loading.

Both files are YAML with environment variable placeholders:

- ``${VAR_NAME}`` - required variable (raises error if missing)
- ``${VAR_NAME:-default}`` - optional with default value
- ``${VAR_NAME:?error_message}`` - required with custom error message

``orchestrator.yaml`` keeps its settings under a top-level ``config:`` key;
a release file keeps its request under a top-level ``release:`` key.
"""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, SecretStr, ValidationError

from .constants import DEFAULT_CONSTANTS
from .errors import InputError
from .models import HealthPolicy, ReleaseRequest, RetryPolicy
from .publisher import RegistryCredentials

CONFIG_PATH = Path("orchestrator.yaml")
DEFAULT_STATE_DIR = Path(".release-state")

REGISTRY_USERNAME_ENV = "REGISTRY_USERNAME"
REGISTRY_PASSWORD_ENV = "REGISTRY_PASSWORD"

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


# =============================================================================
# Models
# =============================================================================


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Path | None = None
    rotation: str = "10 MB"
    retention: str = "7 days"


class OrchestratorConfig(BaseModel):
    """Settings of the release orchestrator.

    Attributes:
        state_dir: Root of descriptors, ledger, journals and lock files
        chart: Default chart for requests that do not name one
        registry: Default registry for requests that do not name one
        probe_base_url: Base URL health probes are sent to
        max_parallel_builds: Concurrent component builds per attempt
        health: Health verification policy
        publish_retry: Backoff policy for transient publish failures
        logging: Log level and optional log file
    """

    state_dir: Path = DEFAULT_STATE_DIR
    chart: str = DEFAULT_CONSTANTS.DEFAULT_CHART
    registry: str = ""
    probe_base_url: str | None = None
    max_parallel_builds: int = Field(default=DEFAULT_CONSTANTS.MAX_PARALLEL_BUILDS, ge=1)
    health: HealthPolicy = Field(default_factory=HealthPolicy)
    publish_retry: RetryPolicy = Field(default_factory=RetryPolicy)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def resolve_state_dir(self, project_root: Path) -> Path:
        if self.state_dir.is_absolute():
            return self.state_dir
        return project_root / self.state_dir


# =============================================================================
# Substitution
# =============================================================================


def substitute_env_vars(text: str) -> str:
    """Substitute environment variable placeholders in text.

    Raises:
        ValueError: If a required variable is not set
    """

    def replacer(match: re.Match[str]) -> str:
        var_expr = match.group(1)

        # ${VAR:-default}
        if ":-" in var_expr:
            var_name, default = var_expr.split(":-", 1)
            return os.getenv(var_name, default)

        # ${VAR:?message}
        if ":?" in var_expr:
            var_name, error_msg = var_expr.split(":?", 1)
            value = os.getenv(var_name)
            if value is None:
                raise ValueError(f"Required environment variable {var_name}: {error_msg}")
            return value

        # ${VAR}
        value = os.getenv(var_expr)
        if value is None:
            raise ValueError(f"Required environment variable {var_expr} not set")
        return value

    return _PLACEHOLDER.sub(replacer, text)


def _load_section(file_path: Path, section: str) -> dict[str, Any]:
    content = substitute_env_vars(file_path.read_text(encoding="utf-8"))
    try:
        loaded = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML: {e}") from e

    if not isinstance(loaded, dict) or section not in loaded:
        raise ValueError(f"Invalid YAML structure: missing '{section}' key")
    data = loaded[section] or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML structure: '{section}' must be a mapping")
    return data


# =============================================================================
# Loaders
# =============================================================================


def load_env(project_root: Path) -> None:
    """Load ``.env`` from the project root without overriding the environment."""
    env_file = project_root / ".env"
    if env_file.exists():
        load_dotenv(env_file, override=False)
        logger.debug(f"Loaded environment from {env_file}")


def load_config(file_path: Path = CONFIG_PATH) -> OrchestratorConfig:
    """Load the orchestrator configuration.

    Args:
        file_path: Path to the YAML file (default: orchestrator.yaml)

    Returns:
        Validated configuration; defaults if the file does not exist

    Raises:
        ValueError: If required environment variables are missing, the YAML is
                    malformed or the settings fail validation
    """
    if not file_path.exists():
        logger.debug(f"No configuration at {file_path}, using defaults")
        return OrchestratorConfig()

    logger.info(f"Loading configuration from {file_path}")
    data = _load_section(file_path, "config")
    try:
        return OrchestratorConfig(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration: {e}") from e


def load_release_request(
    file_path: Path, config: OrchestratorConfig | None = None
) -> ReleaseRequest:
    """Load a release request file.

    ``chart`` and ``registry`` fall back to the orchestrator configuration.

    Raises:
        InputError: If the file is missing, malformed or fails validation
    """
    config = config or OrchestratorConfig()
    if not file_path.exists():
        raise InputError(f"Release file not found: {file_path}")

    try:
        data = _load_section(file_path, "release")
    except ValueError as e:
        raise InputError(f"Cannot read release file {file_path}", details=str(e)) from e

    data.setdefault("chart", config.chart)
    data.setdefault("registry", config.registry)
    try:
        return ReleaseRequest(**data)
    except ValidationError as e:
        raise InputError(
            f"Invalid release file {file_path}",
            details="\n".join(
                f"  • {'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ),
        ) from e


def registry_credentials() -> RegistryCredentials | None:
    """Registry login from the environment, if both variables are set."""
    username = os.getenv(REGISTRY_USERNAME_ENV)
    password = os.getenv(REGISTRY_PASSWORD_ENV)
    if not username or not password:
        return None
    return RegistryCredentials(username=username, password=SecretStr(password))


def configure_logging(settings: LoggingConfig, project_root: Path | None = None) -> None:
    """Route loguru output to stderr and, optionally, a rotating file."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.level.upper(),
        format="<green>{time:HH:mm:ss}</green> <level>{level: <8}</level> {message}",
    )
    if settings.file is not None:
        log_file = settings.file
        if not log_file.is_absolute() and project_root is not None:
            log_file = project_root / log_file
        logger.add(
            log_file,
            level="DEBUG",
            rotation=settings.rotation,
            retention=settings.retention,
            enqueue=True,
        )
