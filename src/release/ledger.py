"""History ledger: the append-only record of release attempts.

Terminal attempts are appended as JSON lines to ``ledger.jsonl`` and
fsync'd before the append returns, so rollback candidate selection after a
crash sees exactly what was acknowledged. A torn trailing line left by a
crash mid-write is skipped on load.

Active attempts are journaled separately (``attempts/<id>.json``,
rewritten atomically on each transition) so they can be inspected from
another process and recovered after a crash.

Several processes may share one state directory. Attempt ids are
allocated under an advisory file lock by reserving the attempt's journal
file, and every read picks up lines other processes appended since the
last one.
"""

from __future__ import annotations

import fcntl
import json
import os
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from .constants import StatePaths
from .models import LedgerEntry, Outcome, ReleaseAttempt


class HistoryLedger:
    """Append-only ledger of terminal release attempts.

    Reads return a snapshot copy taken under the append lock; callers never
    see a half-applied append.
    """

    def __init__(self, paths: StatePaths | None = None) -> None:
        """Initialize the ledger.

        Args:
            paths: State directory layout; None keeps the ledger in memory
        """
        self._paths = paths
        self._lock = threading.Lock()
        self._entries: list[LedgerEntry] = []
        self._recorded: set[int] = set()
        self._next_id = 1
        # Byte offset of the first ledger line not yet read
        self._offset = 0
        self._lineno = 0

        if self._paths is not None:
            self._paths.root.mkdir(parents=True, exist_ok=True)
            self._paths.attempts.mkdir(parents=True, exist_ok=True)
            with self._lock:
                self._refresh()
                self._next_id = max(self._next_id, self._max_journaled_id() + 1)
            logger.debug(f"Loaded {len(self._entries)} ledger entries")

    # =========================================================================
    # Attempt ids
    # =========================================================================

    def next_attempt_id(self) -> int:
        """Allocate the next monotonic attempt id.

        With a state directory the id is reserved by creating its (empty)
        journal file, so no other process sharing the directory can be
        handed the same id. The caller owns the reservation and must either
        journal the attempt or discard it.
        """
        with self._lock:
            if self._paths is None:
                attempt_id = self._next_id
                self._next_id += 1
                return attempt_id

            with self._id_lock():
                self._refresh()
                attempt_id = max(self._next_id, self._max_journaled_id() + 1)
                while not self._reserve(attempt_id):
                    attempt_id += 1
                self._next_id = attempt_id + 1
                return attempt_id

    # =========================================================================
    # Writes
    # =========================================================================

    def append(self, attempt: ReleaseAttempt) -> LedgerEntry:
        """Append a terminal attempt.

        Args:
            attempt: Attempt with an outcome set

        Returns:
            The stored ledger entry

        Raises:
            ValueError: If the attempt is not terminal or already recorded
        """
        if not attempt.is_terminal:
            raise ValueError(f"Attempt {attempt.attempt_id} is not terminal")

        entry = LedgerEntry.from_attempt(attempt)
        with self._lock:
            if self._paths is not None:
                with self._id_lock():
                    self._refresh()
                    self._check_unrecorded(attempt.attempt_id)
                    self._write_line(self._paths.ledger, entry)
                    self._refresh()
            else:
                self._check_unrecorded(attempt.attempt_id)
                self._add(entry)

        self.discard_journal(attempt.attempt_id)
        logger.info(
            f"Ledger: attempt {attempt.attempt_id} for "
            f"{attempt.namespace}/{attempt.name} recorded as {entry.attempt.outcome.value}"
        )
        return entry

    def journal(self, attempt: ReleaseAttempt) -> None:
        """Persist the current state of an active attempt."""
        if self._paths is None:
            return
        path = self._paths.attempt_journal(attempt.attempt_id)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(attempt.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)

    def discard_journal(self, attempt_id: int) -> None:
        if self._paths is None:
            return
        self._paths.attempt_journal(attempt_id).unlink(missing_ok=True)

    # =========================================================================
    # Reads
    # =========================================================================

    def entries(
        self, name: str | None = None, namespace: str | None = None
    ) -> list[LedgerEntry]:
        """Snapshot of ledger entries ordered by attempt id.

        Args:
            name: Optional release name filter
            namespace: Optional namespace filter
        """
        with self._lock:
            self._refresh()
            snapshot = list(self._entries)
        return sorted(
            (
                e
                for e in snapshot
                if (name is None or e.attempt.name == name)
                and (namespace is None or e.attempt.namespace == namespace)
            ),
            key=lambda e: e.attempt.attempt_id,
        )

    def get(self, attempt_id: int) -> LedgerEntry | None:
        for entry in self.entries():
            if entry.attempt.attempt_id == attempt_id:
                return entry
        return None

    def select_rollback_target(
        self, name: str, namespace: str, before_attempt_id: int
    ) -> LedgerEntry | None:
        """Pick the last known good attempt for a target.

        Returns:
            The highest-id Succeeded entry strictly older than
            ``before_attempt_id``, or None if there is none
        """
        candidates = [
            e
            for e in self.entries(name, namespace)
            if e.rollback_candidate and e.attempt.attempt_id < before_attempt_id
        ]
        return candidates[-1] if candidates else None

    def journaled_attempts(self) -> list[ReleaseAttempt]:
        """Active attempts currently journaled on disk.

        Reserved journals that have not been written yet are left out.
        """
        if self._paths is None:
            return []
        attempts = []
        for path in sorted(self._paths.attempts.glob("*.json")):
            attempt = _read_attempt(path)
            if attempt is not None:
                attempts.append(attempt)
        return attempts

    def read_journal(self, attempt_id: int) -> ReleaseAttempt | None:
        if self._paths is None:
            return None
        path = self._paths.attempt_journal(attempt_id)
        return _read_attempt(path) if path.exists() else None

    # =========================================================================
    # Persistence
    # =========================================================================

    @contextmanager
    def _id_lock(self) -> Generator[None, None, None]:
        """Hold the cross-process lock over id allocation and appends."""
        if self._paths is None:
            yield
            return
        lock_path = self._paths.id_lock
        lock_path.touch(exist_ok=True)
        lock_fd = os.open(str(lock_path), os.O_RDWR)
        try:
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
            os.close(lock_fd)

    def _reserve(self, attempt_id: int) -> bool:
        if self._paths is None:
            return True
        try:
            fd = os.open(
                str(self._paths.attempt_journal(attempt_id)),
                os.O_CREAT | os.O_EXCL | os.O_WRONLY,
                0o644,
            )
        except FileExistsError:
            return False
        os.close(fd)
        return True

    def _max_journaled_id(self) -> int:
        if self._paths is None:
            return 0
        ids = [int(p.stem) for p in self._paths.attempts.glob("*.json") if p.stem.isdigit()]
        return max(ids, default=0)

    def _check_unrecorded(self, attempt_id: int) -> None:
        if attempt_id in self._recorded:
            raise ValueError(f"Attempt {attempt_id} is already recorded")

    def _add(self, entry: LedgerEntry) -> None:
        attempt_id = entry.attempt.attempt_id
        if attempt_id in self._recorded:
            logger.warning(f"Skipping duplicate ledger entry for attempt {attempt_id}")
            return
        self._entries.append(entry)
        self._recorded.add(attempt_id)
        self._next_id = max(self._next_id, attempt_id + 1)

    @staticmethod
    def _write_line(path: Path, entry: LedgerEntry) -> None:
        with open(path, "a+b") as f:
            # Terminate a torn line so the new entry starts on its own line
            if f.tell() > 0:
                f.seek(-1, os.SEEK_END)
                if f.read(1) != b"\n":
                    f.write(b"\n")
            f.write(entry.model_dump_json().encode("utf-8") + b"\n")
            f.flush()
            os.fsync(f.fileno())

    def _refresh(self) -> None:
        """Read complete lines appended since the last read."""
        if self._paths is None or not self._paths.ledger.exists():
            return
        with open(self._paths.ledger, "rb") as f:
            f.seek(self._offset)
            data = f.read()

        # A trailing line without a newline is still being written, or torn
        end = data.rfind(b"\n")
        if end < 0:
            return
        self._offset += end + 1

        for raw in data[: end + 1].splitlines():
            self._lineno += 1
            if not raw.strip():
                continue
            try:
                entry = LedgerEntry.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(
                    f"Skipping unreadable ledger line {self._lineno}: {e.error_count()} error(s)"
                )
                continue
            # Candidate flag is derived, never trusted from disk
            self._add(
                entry.model_copy(
                    update={"rollback_candidate": entry.attempt.outcome == Outcome.SUCCEEDED}
                )
            )


def _read_attempt(path: Path) -> ReleaseAttempt | None:
    try:
        text = path.read_text(encoding="utf-8")
        if not text:
            return None
        return ReleaseAttempt.model_validate(json.loads(text))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Skipping unreadable attempt journal {path}: {e}")
        return None
