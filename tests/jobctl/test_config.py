from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from jobctl.config import AppConfig, MissingConfigError
from jobctl.scheduler.step import Step


# ---- Env cleanup ----
@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    keys = [
        "JOBCTL_LOG_DIR",
        "JOBCTL_SMTP_HOST",
        "JOBCTL_SMTP_PORT",
        "JOBCTL_SMTP_USER",
        "JOBCTL_SMTP_USERNAME",
        "JOBCTL_SMTP_PASSWORD",
    ]
    for k in keys:
        monkeypatch.delenv(k, raising=False)


def _write_yaml(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


# ---- 1) YAML with steps ----
def test_yaml_steps(tmp_path: Path) -> None:
    cfg = AppConfig.from_yaml(
        _write_yaml(
            tmp_path / "jobctl.yaml",
            """\
name: nightly
paths:
  log_dir: /var/log/jobctl
steps:
  - name: extract
    command: python
    args: ["-u", "extract.py"]
    dir: /srv/etl
    env:
      MODE: full
    output: EXTRACTED
  - name: load
    command_line: load.sh $EXTRACTED
    mail_on_error: true
    retry_policy:
      limit: 2
      interval_sec: 5
    preconditions:
      - condition: "$MODE"
        expected: full
""",
        )
    )
    assert cfg.name == "nightly"
    assert cfg.paths.log_dir == Path("/var/log/jobctl")
    extract = cfg.step("extract")
    assert extract.args == ["-u", "extract.py"]
    assert extract.dir == Path("/srv/etl")
    assert extract.env == {"MODE": "full"}
    load = cfg.step("load")
    assert load.command_line == "load.sh $EXTRACTED"
    assert load.mail_on_error is True
    assert load.retry_policy.limit == 2
    assert load.preconditions[0].expected == "full"


# ---- 2) No file → defaults ----
def test_defaults_without_file(tmp_path: Path) -> None:
    cfg = AppConfig.from_yaml(tmp_path / "missing.yaml")
    assert cfg.steps == []
    assert cfg.mail_on.failure is False
    assert cfg.smtp.port == 25


# ---- 3) Duplicate step names are rejected ----
def test_duplicate_step_names(tmp_path: Path) -> None:
    path = _write_yaml(
        tmp_path / "jobctl.yaml",
        "steps:\n  - {name: a, command: 'true'}\n  - {name: a, command: 'false'}\n",
    )
    with pytest.raises(ValidationError) as ei:
        AppConfig.from_yaml(path)
    assert "duplicate step name" in str(ei.value).lower()


# ---- 4) Root must be a mapping ----
def test_yaml_root_must_be_mapping(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        AppConfig.from_yaml(_write_yaml(tmp_path / "jobctl.yaml", "- a\n- b\n"))


# ---- 5) Env overlay ----
def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JOBCTL_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("JOBCTL_SMTP_HOST", "mail.example.org")
    monkeypatch.setenv("JOBCTL_SMTP_PORT", "2525")
    monkeypatch.setenv("JOBCTL_SMTP_USER", "robot")
    monkeypatch.setenv("JOBCTL_SMTP_PASSWORD", "s3cret")
    cfg = AppConfig.from_yaml(tmp_path / "missing.yaml")
    assert cfg.paths.log_dir == tmp_path / "logs"
    assert cfg.smtp.host == "mail.example.org"
    assert cfg.smtp.port == 2525
    assert cfg.smtp.username == "robot"
    assert cfg.smtp.password.get_secret_value() == "s3cret"


# ---- 6) Lazy secret: SMTP password missing raises on access ----
def test_missing_smtp_password_raises(tmp_path: Path) -> None:
    cfg = AppConfig.from_yaml(tmp_path / "missing.yaml")
    with pytest.raises(MissingConfigError) as ei:
        _ = cfg.smtp.password
    assert "smtp password" in str(ei.value).lower()


# ---- 7) Step validation ----
def test_step_requires_a_command() -> None:
    with pytest.raises(ValidationError):
        Step(name="empty")


def test_step_rejects_command_and_command_line() -> None:
    with pytest.raises(ValidationError):
        Step(name="both", command="ls", command_line="ls -la")


def test_step_is_immutable() -> None:
    step = Step(name="s", command="true")
    with pytest.raises(ValidationError):
        step.command = "false"  # type: ignore[misc]


def test_stdout_path_relative_to_dir(tmp_path: Path) -> None:
    step = Step(name="s", command="true", dir=tmp_path, stdout="out.txt")
    assert step.stdout_path() == tmp_path / "out.txt"
    absolute = Step(name="s", command="true", dir=tmp_path, stdout="/tmp/abs.txt")
    assert absolute.stdout_path() == Path("/tmp/abs.txt")
    assert Step(name="s", command="true").stdout_path() is None


def test_unknown_step_raises_key_error() -> None:
    cfg = AppConfig.model_validate({"steps": [{"name": "a", "command": "true"}]})
    with pytest.raises(KeyError):
        cfg.step("b")
