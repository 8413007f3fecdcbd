"""
Threaded stream plumbing for child processes.

- LockedSink: a binary writer that several pump threads may share
- OutputCapture: OS pipe that collects a process's stdout for an output variable
- start_pump(): copy a child stream into its sinks on a background thread
"""

from __future__ import annotations

import os
import threading
from collections.abc import Sequence
from typing import BinaryIO, Protocol

from structlog.typing import FilteringBoundLogger


CHUNK_SIZE = 64 * 1024


class Writer(Protocol):
    def write(self, data: bytes, /) -> object: ...

    def flush(self) -> None: ...


class LockedSink:
    def __init__(self, name: str, writer: Writer) -> None:
        self.name = name
        self._writer = writer
        self._lock = threading.Lock()

    def write(self, data: bytes) -> None:
        with self._lock:
            self._writer.write(data)


class OutputCapture:
    """
    Pipe whose write end is teed into the child's stdout.

    The read end is drained on its own thread while the child runs, so an
    output larger than the pipe buffer cannot stall the writer.
    """

    def __init__(self) -> None:
        read_fd, write_fd = os.pipe()
        self._reader: BinaryIO = os.fdopen(read_fd, "rb")
        self._writer: BinaryIO | None = os.fdopen(write_fd, "wb")
        self._chunks: list[bytes] = []
        self._drain = threading.Thread(target=self._drain_loop, name="output:drain", daemon=True)
        self._drain.start()

    def _drain_loop(self) -> None:
        while True:
            chunk = self._reader.read1(CHUNK_SIZE)  # type: ignore[attr-defined]
            if not chunk:
                return
            self._chunks.append(chunk)

    def write(self, data: bytes) -> None:
        if self._writer is None:
            raise ValueError("output capture writer is closed")
        self._writer.write(data)

    def flush(self) -> None:
        if self._writer is not None:
            self._writer.flush()

    def close_writer(self) -> None:
        if self._writer is not None:
            writer, self._writer = self._writer, None
            writer.close()

    def collect(self) -> str:
        """Close the write end, wait for the drain to hit EOF, return everything read."""
        self.close_writer()
        self._drain.join()
        return b"".join(self._chunks).decode(errors="replace")

    def close(self) -> None:
        self.close_writer()
        self._drain.join()
        self._reader.close()


def pump_stream(
    log_event: FilteringBoundLogger,
    *,
    process_name: str,
    stream_name: str,
    reader: BinaryIO,
    sinks: Sequence[LockedSink],
) -> None:
    """Copy `reader` into every sink until EOF. A failing sink is dropped, the rest keep going."""
    live = list(sinks)
    try:
        while True:
            chunk = reader.read1(CHUNK_SIZE)  # type: ignore[attr-defined]
            if not chunk:
                break
            for sink in list(live):
                try:
                    sink.write(chunk)
                except (OSError, ValueError) as exc:
                    live.remove(sink)
                    log_event.warning(
                        "proc.out_error",
                        process=process_name,
                        stream=stream_name,
                        sink=sink.name,
                        error=repr(exc),
                    )
    except OSError as exc:
        log_event.warning(
            "proc.out_error", process=process_name, stream=stream_name, error=repr(exc)
        )
    finally:
        reader.close()


def start_pump(
    log_event: FilteringBoundLogger,
    *,
    process_name: str,
    stream_name: str,
    reader: BinaryIO,
    sinks: Sequence[LockedSink],
) -> threading.Thread:
    thread = threading.Thread(
        target=pump_stream,
        args=(log_event,),
        kwargs={
            "process_name": process_name,
            "stream_name": stream_name,
            "reader": reader,
            "sinks": sinks,
        },
        name=f"pump:{process_name}:{stream_name}",
        daemon=True,
    )
    thread.start()
    return thread
