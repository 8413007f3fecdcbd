from __future__ import annotations

import html
import io

from rich import box
from rich.console import Console
from rich.table import Table
from structlog.typing import FilteringBoundLogger

from jobctl.config import AppConfig, MailConfig
from jobctl.logger import get_logger
from jobctl.mail import Mailer
from jobctl.models import NodeSnapshot, RunStatus
from jobctl.scheduler.node import Node
from jobctl.scheduler.status import NodeStatus, RunState


RENDER_WIDTH = 200
_CELL = '<td align="center" style="padding: 10px;{style}">{value}</td>'
_ERROR_STYLE = " color: #D01117;font-weight:bold;"


class Reporter:
    """Turns finished node state into log tables and notification mail."""

    def __init__(
        self,
        config: AppConfig,
        mailer: Mailer | None = None,
        log_event: FilteringBoundLogger | None = None,
    ) -> None:
        self._config = config
        self._mailer = mailer
        self.log_event = log_event or get_logger("reporter")

    def report_step(self, run: RunStatus, node: Node) -> None:
        status = node.read_status()
        if status != NodeStatus.NONE:
            self.log_event.info("step.report", step=node.name, status=status.label)
        if status == NodeStatus.ERROR and node.step.mail_on_error:
            self._send(self._config.error_mail, run)

    def report_summary(self, run: RunStatus, error: BaseException | None = None) -> None:
        text = "\n".join(
            [
                "",
                "Summary ->",
                render_summary(run, error),
                "Details ->",
                render_table(run.nodes),
            ]
        )
        self.log_event.info("run.summary", report=text)

    def report_mail(self, run: RunStatus) -> None:
        mail_on = self._config.mail_on
        if run.state in (RunState.ERROR, RunState.CANCEL) and mail_on.failure:
            self._send(self._config.error_mail, run)
        elif run.state == RunState.SUCCESS and mail_on.success:
            self._send(self._config.info_mail, run)

    def _send(self, mail: MailConfig, run: RunStatus) -> None:
        if self._mailer is None:
            self.log_event.warning("mail.disabled", run=run.name, state=run.state.value)
            return
        subject = f"{mail.prefix} {run.name} ({run})".strip()
        self._mailer.send_mail(mail.sender, [mail.recipient], subject, render_html(run.nodes))


def _render(table: Table) -> str:
    buffer = io.StringIO()
    console = Console(file=buffer, width=RENDER_WIDTH, color_system=None, force_terminal=False)
    console.print(table)
    return buffer.getvalue()


def render_summary(run: RunStatus, error: BaseException | None = None) -> str:
    table = Table(box=box.ASCII)
    for column in ("Name", "Started At", "Finished At", "Status", "Params", "Error"):
        table.add_column(column)
    table.add_row(
        run.name,
        run.started_at,
        run.finished_at,
        run.state.value,
        run.params,
        str(error) if error is not None else "",
    )
    return _render(table)


def render_table(nodes: list[NodeSnapshot]) -> str:
    table = Table(box=box.ASCII)
    table.add_column("#", justify="right")
    for column in ("Step", "Started At", "Finished At", "Status", "Command", "Error"):
        table.add_column(column)
    for i, node in enumerate(nodes, start=1):
        table.add_row(
            str(i),
            node.name,
            node.started_at,
            node.finished_at,
            node.status_text,
            node.command,
            node.error,
        )
    return _render(table)


def render_html(nodes: list[NodeSnapshot]) -> str:
    parts = [
        '<table border="1" style="border-collapse: collapse;">',
        "<thead><tr>",
        *(
            f'<th align="center" style="padding: 10px;">{title}</th>'
            for title in ("Name", "Started At", "Finished At", "Status", "Error")
        ),
        "</tr></thead>",
        "<tbody>",
    ]
    for node in nodes:
        status_style = _ERROR_STYLE if node.status == NodeStatus.ERROR else ""
        parts.append("<tr>")
        parts.append(_CELL.format(style="", value=html.escape(node.name)))
        parts.append(_CELL.format(style="", value=html.escape(node.started_at)))
        parts.append(_CELL.format(style="", value=html.escape(node.finished_at)))
        parts.append(_CELL.format(style=status_style, value=html.escape(node.status_text)))
        parts.append(_CELL.format(style="", value=html.escape(node.error)))
        parts.append("</tr>")
    parts.append("</tbody></table>")
    return "".join(parts)
