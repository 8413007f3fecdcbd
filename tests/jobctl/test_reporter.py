from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from structlog.testing import capture_logs

from jobctl.config import AppConfig, MailConfig, MailOn, SmtpSettings
from jobctl.mail import SmtpMailer
from jobctl.models import NodeSnapshot, RunStatus
from jobctl.reporter import Reporter, render_html, render_summary, render_table
from jobctl.scheduler.node import Node
from jobctl.scheduler.status import NodeStatus, RunState
from jobctl.scheduler.step import Step


class FakeMailer:
    def __init__(self) -> None:
        self.sent: list[tuple[str, list[str], str, str]] = []

    def send_mail(self, sender: str, recipients: Sequence[str], subject: str, body: str) -> None:
        self.sent.append((sender, list(recipients), subject, body))


def _config(**kwargs: object) -> AppConfig:
    return AppConfig(
        name="nightly",
        error_mail=MailConfig(sender="jobs@example.com", recipient="ops@example.com", prefix="[ERR]"),
        info_mail=MailConfig(sender="jobs@example.com", recipient="team@example.com", prefix="[OK]"),
        **kwargs,  # type: ignore[arg-type]
    )


def _node(name: str, status: NodeStatus, *, mail_on_error: bool = False) -> Node:
    node = Node(Step(name=name, command="echo", args=[name], mail_on_error=mail_on_error))
    if status != NodeStatus.NONE:
        node.update_status(status)
    return node


def _run(*nodes: Node) -> RunStatus:
    return RunStatus.from_nodes(
        "nightly",
        nodes,
        started_at=datetime(2024, 5, 1, 10, 0, 0),
        finished_at=datetime(2024, 5, 1, 10, 5, 0),
        params="A=1",
    )


# ---- 1) Overall run state ----
def test_run_state_from_nodes() -> None:
    assert _run(_node("a", NodeStatus.SUCCESS), _node("b", NodeStatus.SKIPPED)).state == RunState.SUCCESS
    assert _run(_node("a", NodeStatus.SUCCESS), _node("b", NodeStatus.ERROR)).state == RunState.ERROR
    assert _run(_node("a", NodeStatus.ERROR), _node("b", NodeStatus.CANCEL)).state == RunState.CANCEL
    assert _run(_node("a", NodeStatus.RUNNING)).state == RunState.RUNNING
    assert _run(_node("a", NodeStatus.NONE)).state == RunState.NONE
    assert str(_run(_node("a", NodeStatus.ERROR))) == "failed"


def test_snapshot_times_and_command() -> None:
    node = _node("a", NodeStatus.NONE)
    snapshot = NodeSnapshot.from_node(node)
    assert snapshot.started_at == "-"
    assert snapshot.command == "echo a"
    assert snapshot.status_text == "not started"


# ---- 2) Text tables ----
def test_render_table_lists_every_node() -> None:
    run = _run(_node("extract", NodeStatus.SUCCESS), _node("load", NodeStatus.ERROR))
    text = render_table(run.nodes)
    assert "extract" in text
    assert "load" in text
    assert "failed" in text
    assert "echo extract" in text


def test_render_summary_includes_error() -> None:
    run = _run(_node("a", NodeStatus.ERROR))
    text = render_summary(run, RuntimeError("disk full"))
    assert "nightly" in text
    assert "2024-05-01 10:00:00" in text
    assert "disk full" in text


# ---- 3) HTML body ----
def test_render_html_highlights_failures_and_escapes() -> None:
    run = _run(_node("<ok>", NodeStatus.SUCCESS), _node("bad", NodeStatus.ERROR))
    body = render_html(run.nodes)
    assert "&lt;ok&gt;" in body
    assert "<ok>" not in body
    assert body.count("color: #D01117") == 1
    assert "#D01117;font-weight:bold;\">failed</td>" in body


# ---- 4) Mail decisions ----
def test_report_mail_on_failure_uses_error_mail() -> None:
    mailer = FakeMailer()
    reporter = Reporter(_config(mail_on=MailOn(failure=True)), mailer)
    reporter.report_mail(_run(_node("a", NodeStatus.ERROR)))

    assert len(mailer.sent) == 1
    sender, recipients, subject, body = mailer.sent[0]
    assert sender == "jobs@example.com"
    assert recipients == ["ops@example.com"]
    assert subject == "[ERR] nightly (failed)"
    assert "<table" in body


def test_report_mail_on_success_uses_info_mail() -> None:
    mailer = FakeMailer()
    reporter = Reporter(_config(mail_on=MailOn(success=True)), mailer)
    reporter.report_mail(_run(_node("a", NodeStatus.SUCCESS)))

    assert [m[1] for m in mailer.sent] == [["team@example.com"]]
    assert mailer.sent[0][2] == "[OK] nightly (finished)"


def test_report_mail_respects_switches() -> None:
    mailer = FakeMailer()
    reporter = Reporter(_config(mail_on=MailOn(failure=False, success=False)), mailer)
    reporter.report_mail(_run(_node("a", NodeStatus.ERROR)))
    reporter.report_mail(_run(_node("b", NodeStatus.SUCCESS)))
    assert mailer.sent == []


def test_report_step_mails_only_when_step_asks() -> None:
    mailer = FakeMailer()
    reporter = Reporter(_config(), mailer)
    quiet = _node("quiet", NodeStatus.ERROR)
    loud = _node("loud", NodeStatus.ERROR, mail_on_error=True)

    reporter.report_step(_run(quiet), quiet)
    assert mailer.sent == []

    reporter.report_step(_run(loud), loud)
    assert len(mailer.sent) == 1
    assert mailer.sent[0][1] == ["ops@example.com"]


def test_no_mailer_logs_and_skips() -> None:
    with capture_logs() as logs:
        reporter = Reporter(_config(mail_on=MailOn(failure=True)))
        reporter.report_mail(_run(_node("a", NodeStatus.ERROR)))

    assert any(entry["event"] == "mail.disabled" for entry in logs)


def test_report_summary_logs_tables() -> None:
    with capture_logs() as logs:
        reporter = Reporter(_config())
        reporter.report_summary(_run(_node("a", NodeStatus.SUCCESS)))

    summary = [entry for entry in logs if entry["event"] == "run.summary"]
    assert len(summary) == 1
    assert "Details ->" in summary[0]["report"]


# ---- 5) SMTP message ----
def test_smtp_message_is_html() -> None:
    mailer = SmtpMailer(SmtpSettings())
    message = mailer.build_message("a@example.com", ["b@example.com", "c@example.com"], "subj", "<b>hi</b>")
    assert message["To"] == "b@example.com, c@example.com"
    assert message["Subject"] == "subj"
    assert message.get_content_subtype() == "html"
