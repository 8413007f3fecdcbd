from __future__ import annotations

import contextlib
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from structlog.typing import FilteringBoundLogger

from jobctl.scheduler.errors import SetupError
from jobctl.scheduler.step import Step
from jobctl.scheduler.stream import LockedSink, OutputCapture, Writer
from jobctl.utils import open_or_create_file, trunc_string, valid_filename


SCRIPT_PREFIX = "jobctl_script-"
REQUEST_ID_LEN = 8


def build_log_path(log_dir: str | Path, name: str, started_at: datetime, request_id: str) -> Path:
    """`<name>.<YYYYMMDD.HH:MM:SS.mmm>.<request id prefix>.log` under `log_dir`."""
    timestamp = started_at.strftime("%Y%m%d.%H:%M:%S.") + f"{started_at.microsecond // 1000:03d}"
    filename = (
        f"{valid_filename(name, '_')}.{timestamp}.{trunc_string(request_id, REQUEST_ID_LEN)}.log"
    )
    return Path(log_dir) / filename


@dataclass(slots=True)
class AttemptIO:
    """File handles of one attempt. Owned by a single node, released by close()."""

    log_path: Path | None = None
    log_writer: BinaryIO | None = None
    stdout_writer: BinaryIO | None = None
    output: OutputCapture | None = None
    script_path: Path | None = None
    _sinks: dict[str, LockedSink] = field(default_factory=dict, repr=False)

    # --- setup ------------------------------------------------------------------------------------

    def open_log(self, path: Path) -> None:
        try:
            self.log_writer = open_or_create_file(path)
        except OSError as exc:
            raise SetupError("log", str(path), exc) from exc
        self.log_path = path

    def open_stdout(self, step: Step) -> None:
        path = step.stdout_path()
        if path is None:
            return
        try:
            self.stdout_writer = open_or_create_file(path)
        except OSError as exc:
            raise SetupError("stdout", str(path), exc) from exc

    def open_output(self, step: Step) -> None:
        if not step.output or self.output is not None:
            return
        try:
            self.output = OutputCapture()
        except OSError as exc:
            raise SetupError("output", step.output, exc) from exc

    def write_script(self, step: Step) -> None:
        if not step.script:
            return
        directory = str(step.dir) if step.dir is not None else None
        try:
            fd, name = tempfile.mkstemp(prefix=SCRIPT_PREFIX, dir=directory)
        except OSError as exc:
            raise SetupError("script", directory or tempfile.gettempdir(), exc) from exc
        self.script_path = Path(name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(step.script)
                fh.flush()
                os.fsync(fh.fileno())
        except OSError as exc:
            raise SetupError("script", name, exc) from exc

    # --- sinks ------------------------------------------------------------------------------------

    def _sink(self, name: str, writer: Writer) -> LockedSink:
        sink = self._sinks.get(name)
        if sink is None:
            sink = LockedSink(name, writer)
            self._sinks[name] = sink
        return sink

    def stdout_sinks(self) -> list[LockedSink]:
        sinks: list[LockedSink] = []
        if self.log_writer is not None:
            sinks.append(self._sink("log", self.log_writer))
        if self.stdout_writer is not None:
            sinks.append(self._sink("stdout", self.stdout_writer))
        if self.output is not None:
            sinks.append(self._sink("output", self.output))
        return sinks

    def stderr_sinks(self) -> list[LockedSink]:
        if self.log_writer is None:
            return []
        return [self._sink("log", self.log_writer)]

    # --- teardown ---------------------------------------------------------------------------------

    def close(self, log_event: FilteringBoundLogger) -> OSError | None:
        """
        Flush and close everything that was opened.

        Every step runs even if an earlier one failed; the last failure is returned.
        """
        last_error: OSError | None = None

        def _attempt(what: str, action: Callable[[], object]) -> None:
            nonlocal last_error
            try:
                action()
            except OSError as exc:
                last_error = exc
                log_event.warning("io.close_error", what=what, error=repr(exc))

        if self.log_writer is not None:
            _attempt("log.flush", self.log_writer.flush)
            _attempt("log.close", self.log_writer.close)
        if self.stdout_writer is not None:
            _attempt("stdout.flush", self.stdout_writer.flush)
            _attempt("stdout.close", self.stdout_writer.close)
        if self.output is not None:
            _attempt("output.close", self.output.close)
        if self.script_path is not None:
            script_path = self.script_path

            def _remove_script() -> None:
                with contextlib.suppress(FileNotFoundError):
                    os.remove(script_path)

            _attempt("script.remove", _remove_script)

        self._sinks.clear()
        return last_error
