from __future__ import annotations

import signal
import smtplib
import threading
from datetime import datetime
from pathlib import Path

import typer

from jobctl.config import AppConfig, MissingConfigError, get_settings
from jobctl.logger import configure_logging, get_logger
from jobctl.mail import SmtpMailer
from jobctl.models import RunStatus
from jobctl.reporter import Reporter
from jobctl.scheduler.attempt import run_with_retries
from jobctl.scheduler.node import Node
from jobctl.scheduler.signals import install_signal_handlers, restore_signal_handlers
from jobctl.scheduler.status import NodeStatus


app = typer.Typer(help="Run a single configured job step with logs, retries and reports")

JOIN_INTERVAL_SEC = 0.2

EXIT_CODES: dict[NodeStatus, int] = {
    NodeStatus.SUCCESS: 0,
    NodeStatus.SKIPPED: 0,
    NodeStatus.ERROR: 1,
    NodeStatus.CANCEL: 2,
}


def _load_cfg(path: Path | None) -> AppConfig:
    return AppConfig.from_yaml(path) if path is not None else get_settings()


def _mail_configured(cfg: AppConfig) -> bool:
    return any(
        [
            cfg.mail_on.failure,
            cfg.mail_on.success,
            any(step.mail_on_error for step in cfg.steps),
        ]
    )


@app.command("list-steps")
def list_steps(config: Path | None = typer.Option(None, "--config", "-c")) -> None:
    cfg = _load_cfg(config)
    for step in cfg.steps:
        typer.echo(f"{step.name}\t{step.display_command}")


@app.command("run-step")
def run_step(
    step_name: str,
    config: Path | None = typer.Option(None, "--config", "-c"),
    request_id: str | None = typer.Option(None, "--request-id"),
    log_dir: Path | None = typer.Option(None, "--log-dir"),
    log_level: str = typer.Option("INFO", "--log-level"),
    json_logs: bool = typer.Option(False, "--json-logs"),
) -> None:
    run_id = configure_logging(log_level, json_logs=json_logs)
    log_event = get_logger("cli")

    cfg = _load_cfg(config)
    try:
        step = cfg.step(step_name)
    except KeyError:
        typer.echo(f"unknown step: {step_name}", err=True)
        raise typer.Exit(code=2) from None

    request_id = request_id or run_id
    target_dir = log_dir or cfg.paths.log_dir
    target_dir.mkdir(parents=True, exist_ok=True)

    node = Node(step)
    stop_event = threading.Event()

    def _on_signal(received: signal.Signals) -> None:
        log_event.warning("signal.received", signal=received.name)
        stop_event.set()
        node.signal(received)

    started_at = datetime.now()
    worker = threading.Thread(
        target=run_with_retries,
        args=(node,),
        kwargs={"log_dir": target_dir, "request_id": request_id, "stop_event": stop_event},
        name=f"node:{step.name}",
    )

    previous = install_signal_handlers(_on_signal)
    try:
        worker.start()
        while worker.is_alive():
            worker.join(JOIN_INTERVAL_SEC)
    finally:
        restore_signal_handlers(previous)
    finished_at = datetime.now()

    run = RunStatus.from_nodes(
        cfg.name, [node], started_at=started_at, finished_at=finished_at, params=cfg.params
    )
    mailer = SmtpMailer(cfg.smtp) if _mail_configured(cfg) else None
    reporter = Reporter(cfg, mailer)
    reporter.report_summary(run, node.read_error())
    try:
        reporter.report_step(run, node)
        reporter.report_mail(run)
    except (smtplib.SMTPException, OSError, MissingConfigError) as exc:
        log_event.error("mail.send_error", error=repr(exc))

    status = node.read_status()
    raise typer.Exit(code=EXIT_CODES.get(status, 1))


def run() -> None:
    app()


if __name__ == "__main__":
    run()
