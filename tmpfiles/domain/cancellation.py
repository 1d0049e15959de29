"""
Cancellation Token

Cooperative cancellation signal threaded through every store call.
"""

import threading
from typing import Optional

from .errors import OperationCancelledError


class CancellationToken:
    """
    Thread-safe cancellation flag.

    The caller keeps the token and calls ``cancel()``; store implementations
    call ``raise_if_cancelled()`` between chunks so long transfers stop early.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(f"Operation cancelled: {self.reason}")


def check_cancelled(cancel: Optional[CancellationToken]) -> None:
    """Raise OperationCancelledError if ``cancel`` is set; no-op for None."""
    if cancel is not None:
        cancel.raise_if_cancelled()
