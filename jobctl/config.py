from __future__ import annotations

import os
from functools import cache
from pathlib import Path
from typing import ClassVar

import yaml
from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from jobctl.scheduler.step import Step


class MissingConfigError(RuntimeError):
    """Raised on the first access to a critical config value when it is missing."""


class Paths(BaseModel):
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".jobctl" / "logs")


class SmtpSettings(BaseModel):
    """
    SMTP connection. The password is optional at construction time and
    validated lazily on access, like every other secret.
    """

    host: str = Field(default="localhost")
    port: int = Field(default=25)
    username: str = Field(default="")
    password_raw: SecretStr | None = Field(default=None)
    starttls: bool = Field(default=False)
    timeout_sec: float = Field(default=10.0)

    @property
    def password(self) -> SecretStr:
        if self.password_raw is None:
            raise MissingConfigError("Missing SMTP password. Set JOBCTL_SMTP_PASSWORD.")
        return self.password_raw


class MailOn(BaseModel):
    failure: bool = Field(default=False)
    success: bool = Field(default=False)


class MailConfig(BaseModel):
    sender: str = Field(default="")
    recipient: str = Field(default="")
    prefix: str = Field(default="")


class AppConfig(BaseSettings):
    """
    Application settings plus the steps of one job.

    Source of truth:
      1) YAML file (structured config, steps included)
      2) Env overrides for log dir and SMTP (flat JOBCTL_* names),
         merged explicitly in from_yaml().
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="JOBCTL_",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    name: str = Field(default="jobctl")
    params: str = Field(default="")
    paths: Paths = Field(default_factory=Paths)
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    mail_on: MailOn = Field(default_factory=MailOn)
    error_mail: MailConfig = Field(default_factory=MailConfig)
    info_mail: MailConfig = Field(default_factory=MailConfig)
    steps: list[Step] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_step_names(self) -> AppConfig:
        seen: set[str] = set()
        for step in self.steps:
            if step.name in seen:
                raise ValueError(f"Duplicate step name: {step.name!r}")
            seen.add(step.name)
        return self

    def step(self, name: str) -> Step:
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(name)

    # ---------- YAML loader with explicit env merge ----------
    @classmethod
    def from_yaml(cls, path: Path | None = None) -> AppConfig:
        """
        Load config from YAML, then overlay flat env values.
        Search order if path is not provided:
          ./jobctl.yaml
          ~/.jobctl/config.yaml
        """
        candidates: list[Path] = []
        if path is not None:
            candidates.append(path)
        else:
            candidates.extend([Path("jobctl.yaml"), Path.home() / ".jobctl" / "config.yaml"])

        raw: dict[str, object] = {}
        for p in candidates:
            if p.exists():
                text = p.read_text(encoding="utf-8")
                loaded = yaml.safe_load(text) or {}
                if not isinstance(loaded, dict):
                    raise ValueError(f"YAML at {p} must define a mapping at the root")
                raw = loaded
                break

        cfg = cls.model_validate(raw)

        # ---- explicit env merge (no pydantic alias magic) ----
        def _get_env(*names: str) -> str | None:
            for n in names:
                v = os.getenv(n)
                if v is not None and v != "":
                    return v
            return None

        log_dir = _get_env("JOBCTL_LOG_DIR")
        if log_dir is not None:
            cfg.paths.log_dir = Path(log_dir).expanduser()

        host = _get_env("JOBCTL_SMTP_HOST")
        if host is not None:
            cfg.smtp.host = host

        port = _get_env("JOBCTL_SMTP_PORT")
        if port is not None:
            cfg.smtp.port = int(port)

        user = _get_env("JOBCTL_SMTP_USER", "JOBCTL_SMTP_USERNAME")
        if user is not None:
            cfg.smtp.username = user

        password = _get_env("JOBCTL_SMTP_PASSWORD")
        if password is not None:
            cfg.smtp.password_raw = SecretStr(password)

        return cfg


@cache
def get_settings() -> AppConfig:
    # Read from YAML by default; callers can still pass a path to from_yaml() directly if needed.
    return AppConfig.from_yaml()


__all__ = [
    "AppConfig",
    "MailConfig",
    "MailOn",
    "MissingConfigError",
    "Paths",
    "SmtpSettings",
    "get_settings",
]
