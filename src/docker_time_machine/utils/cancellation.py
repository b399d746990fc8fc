"""Cooperative cancellation for the synchronous build pipeline."""

from __future__ import annotations

import threading


class OperationCancelledError(RuntimeError):
    """Raised when a blocking operation observes a cancelled token."""


class CancellationToken:
    """Cooperative cancellation token backed by ``threading.Event``.

    The pipeline is single-threaded; the token is set from a signal handler or
    another thread and observed between and inside blocking collaborator calls.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("operation cancelled")


def raise_if_cancelled(token: CancellationToken | None) -> None:
    """Raise ``OperationCancelledError`` when ``token`` is set; ``None`` never cancels."""
    if token is not None:
        token.raise_if_cancelled()


__all__ = [
    "CancellationToken",
    "OperationCancelledError",
    "raise_if_cancelled",
]
