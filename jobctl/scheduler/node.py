from __future__ import annotations

from datetime import datetime
from pathlib import Path

from structlog.typing import FilteringBoundLogger

from jobctl.logger import get_logger
from jobctl.scheduler.errors import NodeError, SetupError
from jobctl.scheduler.ids import DEFAULT_ID_SEQUENCE, NodeIdSequence
from jobctl.scheduler.pipeline import AttemptIO, build_log_path
from jobctl.scheduler.process import (
    CancelToken,
    ProcessHandle,
    run_step_process,
    signal_name,
    signal_process_group,
)
from jobctl.scheduler.state import NodeState, StateGuard
from jobctl.scheduler.status import NodeStatus
from jobctl.scheduler.step import Step


class Node:
    """
    One schedulable unit: an immutable step, its guarded state and the
    handles of the attempt that is currently set up.

    The executing thread drives init → setup → execute → teardown; any other
    thread may read status/counters or call cancel()/signal() at any time.
    """

    def __init__(self, step: Step, *, log_event: FilteringBoundLogger | None = None) -> None:
        self.step = step
        self._id = 0
        self._guard = StateGuard()

        # хэндлы текущей попытки, живут от setup() до teardown()
        self._io: AttemptIO | None = None
        self._token: CancelToken | None = None
        self._handle: ProcessHandle | None = None

        self.log_event = (log_event or get_logger("node.event")).bind(step=step.name)

    def __repr__(self) -> str:
        return f"Node(id={self._id}, step={self.step.name!r}, status={self.read_status().label!r})"

    @property
    def name(self) -> str:
        return self.step.name

    @property
    def id(self) -> int:
        return self._id

    def init(self, ids: NodeIdSequence = DEFAULT_ID_SEQUENCE) -> None:
        """Assign the node id on first call; later calls keep it."""
        if self._id != 0:
            return
        self._id = ids.next_id()
        self.log_event = self.log_event.bind(node_id=self._id)

    # --- lifecycle --------------------------------------------------------------------------------

    def setup(self, log_dir: str | Path | None, request_id: str) -> SetupError | None:
        """Open the sinks of a new attempt. On failure the node is marked failed."""
        if self._io is not None:
            self.log_event.warning("node.setup_without_teardown")
            self.teardown()

        started_at = datetime.now()
        log_path = (
            build_log_path(log_dir, self.step.name, started_at, request_id)
            if log_dir is not None
            else None
        )
        self._guard.mark_started(started_at, str(log_path) if log_path is not None else "")

        error = self._open_attempt(AttemptIO(), CancelToken(), log_path)
        if error is not None:
            self._guard.record_error(error)
            self._guard.update_status(NodeStatus.ERROR)
            self.log_event.error("node.setup_error", error=str(error))
        return error

    def _open_attempt(
        self, io: AttemptIO, token: CancelToken, log_path: Path | None
    ) -> SetupError | None:
        self._io = io
        self._token = token
        self._handle = None
        try:
            if log_path is not None:
                io.open_log(log_path)
            io.open_stdout(self.step)
            io.write_script(self.step)
            io.open_output(self.step)
        except SetupError as exc:
            return exc
        return None

    def execute(self) -> NodeError | None:
        """Run the step's process and block until it exits or is cancelled."""
        io, token = self._io, self._token
        if io is None or token is None:
            io, token = AttemptIO(), CancelToken()
            error = self._open_attempt(io, token, None)
            if error is not None:
                self._guard.record_error(error)
                return error

        error = run_step_process(
            self.step, io, token, self.log_event, on_started=self._set_handle
        )
        self._guard.record_error(error)
        return error

    def _set_handle(self, handle: ProcessHandle) -> None:
        self._handle = handle

    def teardown(self) -> OSError | None:
        """Release the attempt's handles; returns the last close failure, if any."""
        io = self._io
        self._io = None
        self._token = None
        self._handle = None
        if io is None:
            return None
        return io.close(self.log_event)

    # --- cancellation -----------------------------------------------------------------------------

    def cancel(self) -> None:
        """Trip the attempt's cancel token; a running node becomes canceled."""
        token = self._token
        if self._guard.transition(NodeStatus.RUNNING, NodeStatus.CANCEL):
            self.log_event.info("node.cancel")
        if token is not None:
            token.cancel()

    def signal(self, sig: int) -> None:
        """Deliver `sig` to the process group of a running node and mark it canceled."""

        def _send() -> None:
            handle = self._handle
            if handle is None:
                # процесс ещё не запущен: отменяем через токен
                token = self._token
                if token is not None:
                    token.cancel()
                return
            self.log_event.info("node.signal", signal=signal_name(sig))
            # доставка может не пройти (процесс уже вышел), статус всё равно CANCEL
            signal_process_group(handle, sig, self.log_event)

        self._guard.transition(NodeStatus.RUNNING, NodeStatus.CANCEL, on_match=_send)

    # --- state accessors --------------------------------------------------------------------------

    def read_status(self) -> NodeStatus:
        return self._guard.read_status()

    def update_status(self, status: NodeStatus) -> bool:
        return self._guard.update_status(status)

    def read_error(self) -> BaseException | None:
        return self._guard.read_error()

    def read_log(self) -> str:
        return self._guard.read_log()

    def mark_finished(self, finished_at: datetime | None = None) -> None:
        self._guard.mark_finished(finished_at or datetime.now())

    def state(self) -> NodeState:
        return self._guard.snapshot()

    def clear_state(self) -> None:
        self._guard.clear()

    def reset_state(self) -> None:
        self._guard.reset()

    # --- counters ---------------------------------------------------------------------------------

    def inc_retry_count(self) -> None:
        self._guard.inc_retry_count()

    def inc_done_count(self) -> None:
        self._guard.inc_done_count()

    def read_retry_count(self) -> int:
        return self._guard.read_retry_count()

    def read_done_count(self) -> int:
        return self._guard.read_done_count()
