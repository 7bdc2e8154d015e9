"""
Cooperative cancellation for long-running scans.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from pyremember.errors import OperationCancelledError


@dataclass
class Cancellation:
    """
    Caller-owned cancellation signal and/or deadline.

    Attributes:
        event: Set by the caller to request a stop
        deadline: time.monotonic() value after which the operation stops
    """
    event: Optional[threading.Event] = None
    deadline: Optional[float] = None

    @classmethod
    def with_timeout(cls, seconds: float, event: Optional[threading.Event] = None) -> "Cancellation":
        """Cancellation that expires `seconds` from now."""
        return cls(event=event, deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        """Request cancellation (creates the event if needed)."""
        if self.event is None:
            self.event = threading.Event()
        self.event.set()

    @property
    def cancelled(self) -> bool:
        if self.event is not None and self.event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self, op: str, scope: Optional[Any] = None) -> None:
        """
        Raise if cancellation was requested or the deadline passed.

        Raises:
            OperationCancelledError
        """
        if self.event is not None and self.event.is_set():
            raise OperationCancelledError(op, "cancelled by caller", scope)
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise OperationCancelledError(op, "deadline exceeded", scope)


def check_cancelled(cancellation: Optional[Cancellation], op: str, scope: Optional[Any] = None) -> None:
    """No-op when no cancellation was supplied."""
    if cancellation is not None:
        cancellation.check(op, scope)
