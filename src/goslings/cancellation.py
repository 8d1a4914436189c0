"""Cancellation tokens for long-running acquisition and renewal.

Acquisition may block on network round-trips and on out-of-band user
interaction (typing a device code, finishing a browser login). Every such
operation accepts a :class:`CancellationToken` and checks it between
fallback attempts and at each network boundary.

Example::

    cancel = CancellationToken.with_timeout(120)
    threading.Timer(5, cancel.cancel).start()
    manager.authenticate(params, cancel)   # raises OperationCancelledError
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from goslings.exceptions import DeadlineExceededError, OperationCancelledError


class CancellationToken:
    """A thread-safe cancel flag with an optional monotonic deadline.

    Args:
        deadline: Absolute :func:`time.monotonic` value after which the
            token counts as cancelled, or ``None`` for no deadline.
    """

    def __init__(self, deadline: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> CancellationToken:
        """Create a token that expires *seconds* from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        """Cancel the token. Idempotent."""
        self._event.set()

    @property
    def expired(self) -> bool:
        """Whether the deadline (if any) has passed."""
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        """Whether the token was cancelled explicitly or ran past its deadline."""
        return self._event.is_set() or self.expired

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, clamped at zero; ``None`` without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        """Raise if the token is cancelled.

        Raises:
            OperationCancelledError: After an explicit :meth:`cancel`.
            DeadlineExceededError: When the deadline has passed.
        """
        if self._event.is_set():
            raise OperationCancelledError()
        if self.expired:
            raise DeadlineExceededError()

