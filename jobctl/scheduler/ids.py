from __future__ import annotations

import threading


class NodeIdSequence:
    """Process-wide source of node ids: starts at 1, never repeats."""

    def __init__(self, start: int = 1) -> None:
        self._lock = threading.Lock()
        self._next = start

    def next_id(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
            return value


DEFAULT_ID_SEQUENCE = NodeIdSequence()
