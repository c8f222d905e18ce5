"""Cooperative cancellation of an in-flight release attempt."""

from __future__ import annotations

import threading

from .errors import ReleaseCancelled


class CancelToken:
    """A one-shot cancellation flag shared between the operator and a pipeline.

    The pipeline checks the token between steps and sleeps on it while
    polling, so a cancel request interrupts a health wait immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ReleaseCancelled()
