from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypedDict

from structlog.typing import FilteringBoundLogger

from jobctl.scheduler.errors import ExecutionError, NodeCancelledError, NodeError, SpawnError
from jobctl.scheduler.pipeline import AttemptIO
from jobctl.scheduler.step import Step
from jobctl.scheduler.stream import start_pump
from jobctl.utils import expand_env, split_command


# how often a blocked execute() looks at its cancel token
CANCEL_POLL_INTERVAL_SEC = 0.05

# output variables land in os.environ, shared by every node of the process
_environ_lock = threading.Lock()


@dataclass(slots=True, frozen=True)
class ProcessCommand:
    """External process start specification."""

    exe: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] | None = None

    @classmethod
    def from_step(cls, step: Step, script_path: Path | None = None) -> ProcessCommand:
        """Resolve the command at call time so env published by earlier nodes is seen."""
        if step.command_line:
            exe, args = split_command(expand_env(step.command_line))
        else:
            exe, args = step.command, list(step.args)
        if script_path is not None:
            args = [*args, str(script_path)]

        env = os.environ.copy()
        env.update(step.env)
        return cls(
            exe=exe,
            args=args,
            cwd=str(step.dir) if step.dir is not None else None,
            env=env,
        )


class PopenKwargs(TypedDict, total=False):
    stdin: int | None
    stdout: int | None
    stderr: int | None
    cwd: str | Path | None
    env: Mapping[str, str] | None
    start_new_session: bool


class CancelToken:
    """One-shot trigger, created per attempt; tripping it kills the running process group."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(slots=True)
class ProcessHandle:
    process: subprocess.Popen[bytes]
    started_monotonic: float
    pumps: list[threading.Thread] = field(default_factory=list)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def uptime_seconds(self) -> float:
        return max(0.0, time.monotonic() - self.started_monotonic)


def signal_name(sig: int) -> str:
    try:
        return signal.Signals(sig).name
    except ValueError:
        # real-time signals past SIGRTMIN have no enum member
        return str(sig)


def signal_process_group(
    handle: ProcessHandle, sig: int, log_event: FilteringBoundLogger
) -> bool:
    """Send `sig` to the whole group led by the process. Failures are logged, never raised."""
    try:
        os.killpg(handle.pid, sig)
    except OSError as exc:
        log_event.warning(
            "signal.error", pid=handle.pid, signal=signal_name(sig), error=repr(exc)
        )
        return False
    log_event.info("signal.sent", pid=handle.pid, signal=signal_name(sig))
    return True


def start_process(
    name: str,
    command: ProcessCommand,
    io: AttemptIO,
    log_event: FilteringBoundLogger,
) -> ProcessHandle:
    """Spawn the process in a new session and start the stream pumps."""
    stdout_sinks = io.stdout_sinks()
    stderr_sinks = io.stderr_sinks()

    popen_kwargs: PopenKwargs = {
        "cwd": command.cwd,
        "env": command.env,
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.PIPE if stdout_sinks else None,
        "stderr": subprocess.PIPE if stderr_sinks else None,
        "start_new_session": True,
    }

    try:
        process = subprocess.Popen([command.exe, *command.args], **popen_kwargs)
    except (OSError, subprocess.SubprocessError, ValueError) as exc:
        log_event.error("proc.start_error", exe=command.exe, args=command.args, error=repr(exc))
        raise SpawnError(command.exe, exc) from exc

    handle = ProcessHandle(process=process, started_monotonic=time.monotonic())
    if process.stdout is not None:
        handle.pumps.append(
            start_pump(
                log_event,
                process_name=name,
                stream_name="stdout",
                reader=process.stdout,
                sinks=stdout_sinks,
            )
        )
    if process.stderr is not None:
        handle.pumps.append(
            start_pump(
                log_event,
                process_name=name,
                stream_name="stderr",
                reader=process.stderr,
                sinks=stderr_sinks,
            )
        )

    log_event.info(
        "proc.started", pid=process.pid, cwd=command.cwd, exe=command.exe, args=command.args
    )
    return handle


def wait_or_cancel(
    handle: ProcessHandle, token: CancelToken, log_event: FilteringBoundLogger
) -> int:
    """Block until the process exits; kill its group once the token is tripped."""
    killed = False
    while True:
        try:
            returncode = handle.process.wait(timeout=CANCEL_POLL_INTERVAL_SEC)
            break
        except subprocess.TimeoutExpired:
            if token.cancelled and not killed:
                log_event.info("proc.cancel", pid=handle.pid)
                signal_process_group(handle, signal.SIGKILL, log_event)
                killed = True

    for pump in handle.pumps:
        pump.join()

    log_event.info(
        "proc.exit",
        pid=handle.pid,
        returncode=returncode,
        uptime_s=round(handle.uptime_seconds, 3),
    )
    return returncode


def publish_output(name: str, value: str) -> None:
    with _environ_lock:
        os.environ[name] = value


def _spawn_and_wait(
    name: str,
    command: ProcessCommand,
    io: AttemptIO,
    token: CancelToken,
    log_event: FilteringBoundLogger,
    on_started: Callable[[ProcessHandle], None] | None,
) -> NodeError | None:
    try:
        handle = start_process(name, command, io, log_event)
    except SpawnError as exc:
        return exc
    if on_started is not None:
        on_started(handle)
    returncode = wait_or_cancel(handle, token, log_event)
    return ExecutionError(returncode) if returncode != 0 else None


def run_step_process(
    step: Step,
    io: AttemptIO,
    token: CancelToken,
    log_event: FilteringBoundLogger,
    *,
    on_started: Callable[[ProcessHandle], None] | None = None,
) -> NodeError | None:
    """
    Run the step to completion and return its terminal error (None on clean exit).

    `on_started` receives the live handle before the wait begins, so other
    threads can signal the process group.
    """
    if token.cancelled:
        log_event.info("proc.cancelled_before_start")
        return NodeCancelledError()

    try:
        command = ProcessCommand.from_step(step, io.script_path)
    except ValueError as exc:
        # shlex: unbalanced quotes after expansion
        log_event.error("proc.command_error", command=step.display_command, error=repr(exc))
        error: NodeError | None = SpawnError(step.display_command, exc)
    else:
        error = _spawn_and_wait(step.name, command, io, token, log_event, on_started)

    if io.output is not None and step.output:
        value = io.output.collect().strip()
        publish_output(step.output, value)
        log_event.info("proc.output", variable=step.output, length=len(value))

    return error
