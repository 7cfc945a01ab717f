"""Invocation context threaded through every pipeline operation.

A Context bundles the settings, the package manager registry and a
cancellation token. There is no process-wide "current" package manager:
callers pass the context (and any manager override) explicitly.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ukbuild.errors import OperationCancelledError

if TYPE_CHECKING:
    from ukbuild.config import Settings
    from ukbuild.packmanager.router import Registry


class CancelToken:
    """Cooperative cancellation flag shared by an invocation."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, what: str | None = None) -> None:
        """Raise OperationCancelledError if cancellation was requested.

        Args:
            what: Optional description of the operation about to start.
        """
        if self._event.is_set():
            message = f"cancelled before {what}" if what else "operation cancelled"
            raise OperationCancelledError(message)


@dataclass
class Context:
    """Everything an orchestration entry point needs besides its options."""

    settings: Settings
    registry: Registry
    cancel: CancelToken = field(default_factory=CancelToken)

    def check(self, what: str | None = None) -> None:
        self.cancel.raise_if_cancelled(what)


__all__ = ["CancelToken", "Context"]
