"""
Single-use completion signal shared between a blocked caller and an HTTP handler.

A CompletionSlot holds at most one pending signal. The waiting side calls
``arm()`` and blocks on the returned Waiter; the handler side calls ``fire()``,
which takes the pending signal out of the slot and sets it. Firing a slot whose
signal was already taken means two handlers raced for the same completion;
that is a logic error, never a condition to retry.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

log = logging.getLogger("tracklabel.signals")


class SignalInvariantError(RuntimeError):
    """Completion signal armed twice or consumed twice."""


class Waiter:
    """Receiving end of one completion signal."""

    def __init__(self, name: str):
        self.name = name
        self._event = threading.Event()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def is_set(self) -> bool:
        return self._event.is_set()

    def _set(self) -> None:
        self._event.set()


class CompletionSlot:
    """Lock-guarded slot holding the one pending Waiter."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._pending: Optional[Waiter] = None
        self._armed = False

    def arm(self) -> Waiter:
        """Create the signal. A slot can be armed only once."""
        with self._lock:
            if self._armed:
                raise SignalInvariantError(f"{self.name} signal armed twice")
            self._armed = True
            self._pending = Waiter(self.name)
            return self._pending

    def fire(self) -> None:
        """Take the pending signal and set it. Raises if it was already taken."""
        with self._lock:
            waiter = self._pending
            if waiter is None:
                raise SignalInvariantError(f"{self.name} race lost")
            self._pending = None
        log.debug("Firing %s signal", self.name)
        waiter._set()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None
