from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from jobctl.scheduler.backoff import RetryPolicy
from jobctl.utils import expand_env


class Condition(BaseModel):
    """Precondition: `condition` after env expansion must equal `expected`."""

    model_config = ConfigDict(frozen=True)

    condition: str
    expected: str = ""

    def evaluate(self, environ: Mapping[str, str] | None = None) -> bool:
        return expand_env(self.condition, environ) == self.expected


class Step(BaseModel):
    """Immutable description of what a node runs."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    description: str = Field(default="")

    # either a pre-split command + args ...
    command: str = Field(default="")
    args: list[str] = Field(default_factory=list)
    # ... or an unsplit command line, expanded and split at execution time
    command_line: str = Field(default="")

    dir: Path | None = Field(default=None)
    env: dict[str, str] = Field(default_factory=dict)
    script: str = Field(default="")
    stdout: str = Field(default="")
    output: str = Field(default="")
    preconditions: list[Condition] = Field(default_factory=list)
    mail_on_error: bool = Field(default=False)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)

    @model_validator(mode="after")
    def _check_command(self) -> Step:
        if self.command and self.command_line:
            raise ValueError(f"step {self.name!r}: set either command or command_line, not both")
        if not self.command and not self.command_line:
            raise ValueError(f"step {self.name!r}: command or command_line is required")
        return self

    @property
    def display_command(self) -> str:
        if self.command_line:
            return self.command_line
        return " ".join([self.command, *self.args])

    def stdout_path(self) -> Path | None:
        if not self.stdout:
            return None
        path = Path(self.stdout)
        if not path.is_absolute() and self.dir is not None:
            path = self.dir / path
        return path
