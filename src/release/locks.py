"""Per-target exclusive locks.

A target is a ``(name, namespace)`` pair. Within a process, holders are
tracked in a dictionary guarded by a mutex; across processes, a lock file
created with ``O_EXCL`` holds the owner's pid and attempt id. A lock file
whose pid is no longer alive is stale and gets reclaimed.

A second request for a locked target is rejected with ConflictError,
never queued.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path

from loguru import logger

from .errors import ConflictError

Target = tuple[str, str]


class TargetLocks:
    """Registry of exclusive per-target locks."""

    def __init__(self, lock_dir: Path | None = None) -> None:
        """Initialize the lock registry.

        Args:
            lock_dir: Directory for cross-process lock files; None for
                      in-process locking only
        """
        self._lock_dir = lock_dir
        self._mutex = threading.Lock()
        self._holders: dict[Target, int] = {}
        if self._lock_dir is not None:
            self._lock_dir.mkdir(parents=True, exist_ok=True)

    def acquire(self, name: str, namespace: str, attempt_id: int) -> None:
        """Acquire the lock for a target.

        Raises:
            ConflictError: If another attempt holds the lock
        """
        target = (name, namespace)
        with self._mutex:
            if target in self._holders:
                raise ConflictError(name, namespace, self._holders[target])
            if self._lock_dir is not None:
                self._create_lock_file(target, attempt_id)
            self._holders[target] = attempt_id
        logger.debug(f"Lock acquired for {namespace}/{name} by attempt {attempt_id}")

    def release(self, name: str, namespace: str) -> None:
        target = (name, namespace)
        with self._mutex:
            self._holders.pop(target, None)
            if self._lock_dir is not None:
                self._lock_path(target).unlink(missing_ok=True)
        logger.debug(f"Lock released for {namespace}/{name}")

    def holder(self, name: str, namespace: str) -> int | None:
        """Attempt id holding the target, in this process or another."""
        target = (name, namespace)
        with self._mutex:
            if target in self._holders:
                return self._holders[target]
        if self._lock_dir is None:
            return None
        owner = self._read_lock_file(self._lock_path(target))
        return owner.get("attempt_id") if owner else None

    def release_stale(self, name: str, namespace: str, attempt_id: int) -> bool:
        """Remove a lock file left behind by a crashed process.

        Only removes the file if it still names ``attempt_id`` and its owner
        pid is gone.

        Returns:
            True if a stale lock file was removed
        """
        if self._lock_dir is None:
            return False
        path = self._lock_path((name, namespace))
        owner = self._read_lock_file(path)
        if not owner or owner.get("attempt_id") != attempt_id:
            return False
        if _pid_alive(owner.get("pid")):
            return False
        path.unlink(missing_ok=True)
        logger.warning(f"Removed stale lock for {namespace}/{name} (attempt {attempt_id})")
        return True

    # =========================================================================
    # Lock files
    # =========================================================================

    def _lock_path(self, target: Target) -> Path:
        if self._lock_dir is None:
            raise RuntimeError("Lock files need a lock directory")
        name, namespace = target
        return self._lock_dir / f"{namespace}__{name}.lock"

    def _create_lock_file(self, target: Target, attempt_id: int) -> None:
        path = self._lock_path(target)
        payload = json.dumps({"pid": os.getpid(), "attempt_id": attempt_id})

        for _ in range(3):
            try:
                fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                owner = self._read_lock_file(path)
                if owner is None:
                    # Released between our open and read
                    continue
                if not owner or _pid_alive(owner.get("pid")):
                    raise ConflictError(
                        target[0], target[1], owner.get("attempt_id")
                    ) from None
                logger.warning(f"Reclaiming stale lock file {path}")
                path.unlink(missing_ok=True)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(payload)
            return

        raise ConflictError(target[0], target[1])

    @staticmethod
    def _read_lock_file(path: Path) -> dict | None:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            # Unreadable (possibly still being written) lock files count as held
            return {}


def _pid_alive(pid: object) -> bool:
    if not isinstance(pid, int) or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
