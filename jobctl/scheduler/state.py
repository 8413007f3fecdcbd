"""
Node state and the lock that guards it.

NodeState is a plain value. StateGuard is the only owner of the live state:
every read and write goes through one of its accessors and serializes on the
same lock, so a reporter thread polling a node never sees a torn update.
"""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from jobctl.scheduler.status import NodeStatus


@dataclass(slots=True)
class NodeState:
    status: NodeStatus = NodeStatus.NONE
    log: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None
    retry_count: int = 0
    done_count: int = 0
    error: BaseException | None = None


class StateGuard:
    def __init__(self) -> None:
        # RLock: signal handlers may re-enter on the thread that holds it
        self._lock = threading.RLock()
        self._state = NodeState()

    # --- status -----------------------------------------------------------------------------------

    def read_status(self) -> NodeStatus:
        with self._lock:
            return self._state.status

    def update_status(self, status: NodeStatus) -> bool:
        """
        Write a new status unless the current one is terminal.

        Returns True when the write was applied. NONE is never accepted here,
        clear() is the only way back to it.
        """
        with self._lock:
            if status == NodeStatus.NONE or self._state.status.is_terminal:
                return False
            self._state.status = status
            return True

    def transition(
        self,
        expected: NodeStatus,
        status: NodeStatus,
        *,
        on_match: Callable[[], None] | None = None,
    ) -> bool:
        """
        Compare-and-set: move to `status` only if the current status is `expected`.

        `on_match` runs under the lock before the write, so the check, the side
        effect and the write are one atomic step for every other accessor.
        """
        with self._lock:
            if self._state.status != expected:
                return False
            if on_match is not None:
                on_match()
            self._state.status = status
            return True

    # --- attempt fields ---------------------------------------------------------------------------

    def mark_started(self, started_at: datetime, log: str) -> None:
        with self._lock:
            self._state.started_at = started_at
            self._state.log = log

    def mark_finished(self, finished_at: datetime) -> None:
        with self._lock:
            self._state.finished_at = finished_at

    def record_error(self, error: BaseException | None) -> None:
        with self._lock:
            self._state.error = error

    def read_error(self) -> BaseException | None:
        with self._lock:
            return self._state.error

    def read_log(self) -> str:
        with self._lock:
            return self._state.log

    # --- counters ---------------------------------------------------------------------------------

    def inc_retry_count(self) -> None:
        with self._lock:
            self._state.retry_count += 1

    def inc_done_count(self) -> None:
        with self._lock:
            self._state.done_count += 1

    def read_retry_count(self) -> int:
        with self._lock:
            return self._state.retry_count

    def read_done_count(self) -> int:
        with self._lock:
            return self._state.done_count

    # --- whole state ------------------------------------------------------------------------------

    def snapshot(self) -> NodeState:
        with self._lock:
            return dataclasses.replace(self._state)

    def clear(self) -> None:
        """Back to NONE for a new attempt; retry/done counters survive."""
        with self._lock:
            self._state = NodeState(
                retry_count=self._state.retry_count,
                done_count=self._state.done_count,
            )

    def reset(self) -> None:
        with self._lock:
            self._state = NodeState()
