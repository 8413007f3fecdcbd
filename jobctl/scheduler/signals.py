"""
Signal handlers installation utilities.

- Installs SIGINT/SIGTERM handlers using the provided callback.
- Uses contextlib.suppress(ValueError) because signal.signal() only works
  in the main thread of the main interpreter.
"""

from __future__ import annotations

import contextlib
import signal
from collections.abc import Callable
from types import FrameType
from typing import Any


Handlers = dict[signal.Signals, Any]


def install_signal_handlers(
    on_signal: Callable[[signal.Signals], None],
    *,
    signals: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM),
) -> Handlers:
    """Register OS signal handlers that call `on_signal(signal)`; returns the previous ones."""

    def _handler(signum: int, _frame: FrameType | None) -> None:
        on_signal(signal.Signals(signum))

    previous: Handlers = {}
    for sig in signals:
        with contextlib.suppress(ValueError):
            previous[sig] = signal.signal(sig, _handler)
    return previous


def restore_signal_handlers(previous: Handlers) -> None:
    for sig, handler in previous.items():
        with contextlib.suppress(ValueError, TypeError):
            signal.signal(sig, handler)
