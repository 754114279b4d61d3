"""
grmm/inference/telemetry.py

Message counters for belief propagation.

Each inferencer owns a MessageCounter unless one is passed in. Passing the
same counter to several inferencers gives a running total across all of
them; the counter is lock-protected, so inferencers on different threads
may share it.
"""

from __future__ import annotations

import threading


class MessageCounter:
    """Thread-safe count of messages sent."""

    def __init__(self):
        self._lock = threading.Lock()
        self._total = 0

    def increment(self, n: int = 1) -> None:
        with self._lock:
            self._total += n

    @property
    def total(self) -> int:
        with self._lock:
            return self._total

    def reset(self) -> None:
        with self._lock:
            self._total = 0

    # A counter is a shared sink: copies of an inferencer keep reporting to it.
    def __copy__(self) -> "MessageCounter":
        return self

    def __deepcopy__(self, memo) -> "MessageCounter":
        return self

    def __repr__(self) -> str:
        return f"MessageCounter(total={self.total})"
