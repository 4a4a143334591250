"""Cooperative cancellation for long running exports."""

import threading
from typing import Optional

from exceptions import ExportAborted


class CancellationToken:
    """Cooperative cancellation flag shared between an export and its caller.

    Long-running loops call ``raise_if_cancelled`` at each iteration; the caller
    trips the token from any thread with ``cancel``.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: Optional[str] = None) -> None:
        if self._event.is_set():
            raise ExportAborted(stage)


def check_cancelled(token: Optional[CancellationToken], stage: Optional[str] = None) -> None:
    """``raise_if_cancelled`` for an optional token."""
    if token is not None:
        token.raise_if_cancelled(stage)
