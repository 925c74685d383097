from __future__ import annotations

import threading
import time

from israel_drugs.tools.errors import SearchCancelled


class CancellationToken:
    """Request-scoped cancellation signal with an optional deadline.

    One token is created per top-level request and threaded through every
    upstream call of that request. Tokens are never shared between requests.
    """

    def __init__(self, *, deadline_seconds: float | None = None) -> None:
        self._event = threading.Event()
        self._reason: str | None = None
        self._deadline = time.monotonic() + deadline_seconds if deadline_seconds is not None else None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = self._reason or "deadline exceeded"
            self._event.set()
            return True
        return False

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def bound_timeout(self, timeout_seconds: float) -> float:
        remaining = self.remaining()
        if remaining is None:
            return timeout_seconds
        return max(min(timeout_seconds, remaining), 0.001)

    def raise_if_cancelled(self, *, stage: str | None = None) -> None:
        if not self.cancelled:
            return
        raise SearchCancelled(
            f"Search aborted: {self._reason or 'cancelled'}",
            details={"stage": stage, "reason": self._reason},
        )


def check_cancelled(cancel: CancellationToken | None, *, stage: str | None = None) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled(stage=stage)
