"""
Operation context for calls into the cryptographic provider.

Carries an optional deadline and a cancellation flag. The flag is a
``threading.Event`` so it can be set from any thread, including the one
serving a client disconnect.
"""

import threading
import time
from typing import Optional

from hibe_revocation.errors import Cancelled


class OperationContext:
    """
    Cancellation handle with an optional deadline.

    Example:
        >>> ctx = OperationContext.with_timeout(5.0)
        >>> ctx.raise_if_cancelled()
        >>> ctx.cancel()
        >>> ctx.cancelled
        True
    """

    def __init__(self, deadline: Optional[float] = None):
        """
        Args:
            deadline: Absolute ``time.monotonic()`` value after which the
                context counts as cancelled, or None for no deadline.
        """
        self._deadline = deadline
        self._event = threading.Event()
        self._reason = "operation cancelled"

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> "OperationContext":
        if not seconds or seconds <= 0:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    @classmethod
    def background(cls) -> "OperationContext":
        return cls()

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def cancel(self, reason: str = "operation cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = "deadline exceeded"
            return True
        return False

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled(self._reason)
