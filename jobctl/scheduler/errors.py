from __future__ import annotations


class NodeError(Exception):
    """Base class for failures recorded on a node."""


class SetupError(NodeError):
    """A log, stdout or script file could not be prepared; no process was started."""

    def __init__(self, what: str, path: str, cause: BaseException) -> None:
        super().__init__(f"{what} setup failed ({path}): {cause}")
        self.what = what
        self.path = path
        self.__cause__ = cause


class ExecutionError(NodeError):
    """The process exited with a non-zero status."""

    def __init__(self, returncode: int) -> None:
        if returncode < 0:
            message = f"signal: killed by signal {-returncode}"
        else:
            message = f"exit status {returncode}"
        super().__init__(message)
        self.returncode = returncode


class SpawnError(NodeError):
    """The process could not be started."""

    def __init__(self, command: str, cause: BaseException) -> None:
        super().__init__(f"failed to start {command!r}: {cause}")
        self.command = command
        self.__cause__ = cause


class NodeCancelledError(NodeError):
    """Cancellation arrived before the process was spawned."""

    def __init__(self) -> None:
        super().__init__("canceled before start")
