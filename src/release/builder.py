"""Artifact builder: turns a component source directory into a tagged image.

This module handles the build half of the image lifecycle:
- Validating the build context and tag before anything runs
- Generating content-based tags (git SHA or content hash)
- Building images with ``docker build``

Publishing is the registry publisher's job; the builder never pushes.
"""

from __future__ import annotations

import hashlib
import time
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from .constants import DEFAULT_CONSTANTS, ReleaseConstants
from .errors import BuildError, BuildErrorKind
from .models import ImageReference

if TYPE_CHECKING:
    from src.infra.shell_commands import ShellCommands


# Directories that never influence an image's content
EXCLUDED_DIRS = {
    ".git",
    "__pycache__",
    ".pytest_cache",
    ".venv",
    "venv",
    "node_modules",
    ".next",
    "dist",
}


class ArtifactBuilder:
    """Builds container images for release components.

    Build failures are assumed deterministic given fixed inputs, so nothing
    here retries.
    """

    def __init__(
        self,
        commands: ShellCommands,
        constants: ReleaseConstants | None = None,
    ) -> None:
        """Initialize the artifact builder.

        Args:
            commands: Shell command executor
            constants: Optional release constants (uses defaults if not provided)
        """
        self.commands = commands
        self.constants = constants or DEFAULT_CONSTANTS

    def build(
        self,
        source_ref: str | Path,
        image_name: str,
        tag: str,
        *,
        registry: str = "",
    ) -> ImageReference:
        """Build an image from a source directory.

        Args:
            source_ref: Build context directory containing a Dockerfile
            image_name: Repository name of the image (e.g., "shop-frontend")
            tag: Image tag; must satisfy the Docker tag grammar
            registry: Registry prefix recorded on the reference

        Returns:
            ImageReference of the built image

        Raises:
            BuildError: SourceUnavailable, BuildScriptFailed or ResourceExhausted
        """
        self.validate_tag(tag)
        context = self.resolve_source(source_ref)
        image = ImageReference(registry=registry, repository=image_name, tag=tag)

        logger.info(f"Building {image.ref} from {context}")
        result = self.commands.docker.build_image(
            context, image.ref, dockerfile=self.constants.DOCKERFILE_NAME
        )
        if not result.success:
            output = result.output
            lowered = output.lower()
            kind = BuildErrorKind.BUILD_SCRIPT_FAILED
            if any(m in lowered for m in self.constants.RESOURCE_EXHAUSTED_MARKERS):
                kind = BuildErrorKind.RESOURCE_EXHAUSTED
            logger.warning(f"Build of {image.ref} failed ({kind.value})")
            raise BuildError(
                kind,
                f"Build of {image.ref} failed (exit code {result.returncode})",
                details=_tail(output),
            )

        logger.info(f"Built {image.ref}")
        return image

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_tag(self, tag: str) -> None:
        """Reject empty tags and tags with registry-reserved characters."""
        if not tag or not self.constants.TAG_PATTERN.match(tag):
            raise BuildError(
                BuildErrorKind.SOURCE_UNAVAILABLE,
                f"Invalid image tag: '{tag}'",
                details="Tags must be 1-128 characters of letters, digits, '_', '.'"
                " or '-', and must not start with '.' or '-'.",
            )

    def resolve_source(self, source_ref: str | Path) -> Path:
        """Resolve a source reference to a buildable context directory."""
        context = Path(source_ref)
        if not context.is_absolute():
            context = (self.commands.project_root / context).resolve()

        if not context.is_dir():
            raise BuildError(
                BuildErrorKind.SOURCE_UNAVAILABLE,
                f"Source directory not found: {context}",
            )
        if not (context / self.constants.DOCKERFILE_NAME).is_file():
            raise BuildError(
                BuildErrorKind.SOURCE_UNAVAILABLE,
                f"No {self.constants.DOCKERFILE_NAME} in {context}",
            )
        return context

    # =========================================================================
    # Content-based tags
    # =========================================================================

    def generate_content_tag(self, source_ref: str | Path) -> str:
        """Generate a content-based tag for a component image.

        Priority:
        1. Git commit SHA (only if the source directory is clean)
        2. Hash of the files in the source directory
        3. Timestamp fallback

        Returns:
            Tag string (e.g., "git-a1b2c3d", "hash-123456789abc", "ts-1234567890")
        """
        context = self.resolve_source(source_ref)

        git_status = self.commands.git.get_status(context)
        if git_status.is_git_repo and git_status.is_clean and git_status.short_sha:
            return f"git-{git_status.short_sha}"
        if git_status.is_git_repo:
            logger.debug(f"Uncommitted changes in {context}, using content hash")

        content_hash = compute_source_hash(context)
        if content_hash:
            return f"hash-{content_hash}"

        return f"ts-{int(time.time())}"


def compute_source_hash(context: Path) -> str | None:
    """Hash every file of a build context, in a stable order.

    Both the relative path and the content of each file feed the hash, so a
    rename changes the tag too.

    Returns:
        12-character hex hash, or None if the directory holds no files
    """
    hasher = hashlib.sha256()
    files_hashed = 0

    for path in sorted(context.rglob("*")):
        relative = path.relative_to(context)
        if any(part in EXCLUDED_DIRS for part in relative.parts):
            continue
        if not path.is_file():
            continue
        hasher.update(relative.as_posix().encode())
        hasher.update(path.read_bytes())
        files_hashed += 1

    if files_hashed == 0:
        return None
    return hasher.hexdigest()[:12]


def _tail(output: str, lines: int = 20) -> str:
    return "\n".join(output.strip().splitlines()[-lines:])
