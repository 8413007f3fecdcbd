"""
Small helpers shared by the scheduler.

- expand_env(): $VAR / ${VAR} expansion against the current environment
- split_command(): split a command line into (command, args)
- valid_filename(): replace characters that are not allowed in file names
- trunc_string(): cut a string to a maximum length
- open_or_create_file(): open for append, creating the file if needed
"""

from __future__ import annotations

import os
import re
import shlex
from collections.abc import Mapping
from pathlib import Path
from typing import BinaryIO


_ENV_REF_RX = re.compile(r"\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|\$(?P<plain>[A-Za-z_][A-Za-z0-9_]*)")
_FILENAME_RX = re.compile(r'[<>:"/\\|?*]')


def expand_env(text: str, environ: Mapping[str, str] | None = None) -> str:
    """Expand environment references; unknown names expand to an empty string."""
    env = os.environ if environ is None else environ

    def _sub(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("plain")
        return env.get(name, "")

    return _ENV_REF_RX.sub(_sub, text)


def split_command(command_line: str) -> tuple[str, list[str]]:
    parts = shlex.split(command_line)
    if not parts:
        return "", []
    return parts[0], parts[1:]


def valid_filename(name: str, replacement: str = "_") -> str:
    return _FILENAME_RX.sub(replacement, name)


def trunc_string(value: str, max_len: int) -> str:
    return value[:max_len]


def open_or_create_file(path: str | Path) -> BinaryIO:
    """Open `path` for buffered appending; missing parent directories are an error."""
    return open(path, "ab")  # noqa: SIM115
