"""Cooperative cancellation for engine requests.

Brief:
  A CancelToken is shared by every task a request starts. Waiting code polls
  it via wait_all(); when the token fires, pending futures are cancelled,
  running ones are abandoned and ResolutionCancelled is raised.
"""

from __future__ import annotations

import concurrent.futures
import threading
import time
from typing import Dict, Optional, Set, Union

from .errors import ResolutionCancelled

_POLL_SECONDS = 0.05


class CancelToken:
    """Brief: Cancellation flag with an optional deadline.

    Inputs:
      - timeout: Seconds from now after which the token counts as cancelled.

    Example:
      >>> token = CancelToken()
      >>> token.cancelled
      False
      >>> token.cancel()
      >>> token.cancelled
      True
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline = None if timeout is None else time.monotonic() + float(timeout)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ResolutionCancelled("resolution cancelled")


class RunDeadline:
    """Brief: Budget that starts when a pooled task begins running.

    Time a task spends queued behind other work is not charged to it; a
    queued task is bounded only by the request cancel token.
    """

    def __init__(self, budget_ms: int) -> None:
        self.budget_ms = int(budget_ms)
        self._at: Optional[float] = None

    def start(self) -> None:
        self._at = time.monotonic() + self.budget_ms / 1000.0

    @property
    def at(self) -> Optional[float]:
        return self._at


def wait_all(
    deadlines: Dict[concurrent.futures.Future, Union[None, float, RunDeadline]],
    cancel: CancelToken,
) -> Set[concurrent.futures.Future]:
    """Brief: Wait for futures while honouring per-future deadlines and cancel.

    Inputs:
      - deadlines: Future -> absolute time.monotonic() deadline, a
        RunDeadline that starts counting once the task runs, or None.
      - cancel: Request cancel token.

    Outputs:
      - set: Futures whose deadline passed before they completed (they are
        cancelled if still pending and otherwise abandoned).

    Raises:
      - ResolutionCancelled: When cancel fires before every future settles.
    """

    pending = set(deadlines)
    timed_out: Set[concurrent.futures.Future] = set()

    while pending:
        if cancel.cancelled:
            for fut in pending:
                fut.cancel()
            raise ResolutionCancelled("resolution cancelled")

        now = time.monotonic()
        for fut in list(pending):
            deadline = deadlines[fut]
            if isinstance(deadline, RunDeadline):
                deadline = deadline.at
            if deadline is not None and now >= deadline and not fut.done():
                fut.cancel()
                timed_out.add(fut)
                pending.discard(fut)
        if not pending:
            break

        wait_for = _POLL_SECONDS
        remaining = cancel.remaining()
        if remaining is not None:
            wait_for = min(wait_for, remaining)
        _, pending = concurrent.futures.wait(
            pending, timeout=wait_for, return_when=concurrent.futures.FIRST_COMPLETED
        )
        pending = set(pending)

    return timed_out
