"""Release descriptor store.

Descriptors are write-once: registering a descriptor assigns it the next
version for its target and stores it under
``descriptors/<namespace>/<name>/v<NNNN>.json``. An existing version is
never rewritten. Without a state directory the store is memory-only.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from .errors import InputError
from .models import ReleaseDescriptor

_VERSION_FILE_PREFIX = "v"


class DescriptorStore:
    """Versioned, durable storage of release descriptors."""

    def __init__(self, root: Path | None = None) -> None:
        """Initialize the store.

        Args:
            root: Directory holding descriptor files; None keeps them in memory
        """
        self._root = root
        self._lock = threading.Lock()
        self._descriptors: dict[tuple[str, str], dict[int, ReleaseDescriptor]] = {}
        if self._root is not None:
            self._load()

    def register(self, descriptor: ReleaseDescriptor) -> ReleaseDescriptor:
        """Store a descriptor as the next version of its target.

        Args:
            descriptor: Descriptor to store; its ``version`` is ignored

        Returns:
            The stored descriptor with its assigned version
        """
        with self._lock:
            on_disk = self._load_target(descriptor.name, descriptor.namespace)
            versions = self._descriptors.setdefault(descriptor.target, {})
            version = max(max(versions, default=0), on_disk) + 1
            stored = descriptor.model_copy(update={"version": version})
            if self._root is not None:
                self._write(stored)
            versions[version] = stored

        logger.info(
            f"Registered descriptor {stored.namespace}/{stored.name} v{version}"
        )
        return stored

    def get(self, name: str, namespace: str, version: int) -> ReleaseDescriptor:
        """Get a specific descriptor version.

        Raises:
            InputError: If the version is unknown
        """
        with self._lock:
            if version not in self._descriptors.get((name, namespace), {}):
                self._load_target(name, namespace)
        try:
            return self._descriptors[(name, namespace)][version]
        except KeyError:
            raise InputError(
                f"No descriptor v{version} for '{name}' in namespace '{namespace}'"
            ) from None

    # =========================================================================
    # Persistence
    # =========================================================================

    def _path_for(self, descriptor: ReleaseDescriptor) -> Path:
        if self._root is None:
            raise RuntimeError("Descriptor files need a store directory")
        return (
            self._root
            / descriptor.namespace
            / descriptor.name
            / f"{_VERSION_FILE_PREFIX}{descriptor.version:04d}.json"
        )

    def _write(self, descriptor: ReleaseDescriptor) -> None:
        path = self._path_for(descriptor)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Mode "x" refuses to overwrite an existing version
        with open(path, "x", encoding="utf-8") as f:
            f.write(descriptor.model_dump_json(indent=2))

    def _load(self) -> None:
        if self._root is None or not self._root.exists():
            return

        for path in sorted(self._root.glob(f"*/*/{_VERSION_FILE_PREFIX}*.json")):
            self._read(path)

    def _load_target(self, name: str, namespace: str) -> int:
        """Pick up versions of a target written by another process.

        Returns:
            The highest version with a file on disk, readable or not
        """
        if self._root is None:
            return 0
        known = self._descriptors.get((name, namespace), {})
        highest = 0
        for path in (self._root / namespace / name).glob(f"{_VERSION_FILE_PREFIX}*.json"):
            number = path.stem[len(_VERSION_FILE_PREFIX) :]
            if not number.isdigit():
                continue
            highest = max(highest, int(number))
            if int(number) not in known:
                self._read(path)
        return highest

    def _read(self, path: Path) -> None:
        try:
            descriptor = ReleaseDescriptor.model_validate(
                json.loads(path.read_text(encoding="utf-8"))
            )
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Skipping unreadable descriptor {path}: {e}")
            return
        self._descriptors.setdefault(descriptor.target, {})[descriptor.version] = descriptor
