"""
Cancellation and timeout for the three blocking steps of a run.

Only reading the source, fetching the store snapshot and the final
replace-all write can wait on the outside world; each of them calls
``checkpoint`` first and passes ``remaining()`` on as its own timeout.
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from catalog_import.errors import ImportCancelled


class RunContext:
    def __init__(self, timeout: Optional[float] = None, *, cancel_event: Optional[threading.Event] = None) -> None:
        self.timeout = timeout
        self.cancel_event = cancel_event or threading.Event()
        self._started = time.monotonic()

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        if self.timeout is None:
            return None
        return max(0.0, self.timeout - (time.monotonic() - self._started))

    def checkpoint(self, stage: str) -> None:
        if self.cancelled:
            raise ImportCancelled(f"Import cancelled before {stage}")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise ImportCancelled(f"Import timed out before {stage} (limit {self.timeout}s)")


def ensure_context(context: Optional[RunContext]) -> RunContext:
    return context if context is not None else RunContext()
