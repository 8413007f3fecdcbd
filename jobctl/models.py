from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from jobctl.scheduler.node import Node
from jobctl.scheduler.status import NodeStatus, RunState


# В моделях только снимки состояния для отчётов, без ссылок на живые ноды.

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_time(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime(TIME_FORMAT)


@dataclass(frozen=True)
class NodeSnapshot:
    name: str
    status: NodeStatus
    started_at: str
    finished_at: str
    command: str
    error: str
    log: str
    retry_count: int
    done_count: int

    @property
    def status_text(self) -> str:
        return self.status.label

    @classmethod
    def from_node(cls, node: Node) -> NodeSnapshot:
        state = node.state()
        return cls(
            name=node.name,
            status=state.status,
            started_at=format_time(state.started_at),
            finished_at=format_time(state.finished_at),
            command=node.step.display_command,
            error=str(state.error) if state.error is not None else "",
            log=state.log,
            retry_count=state.retry_count,
            done_count=state.done_count,
        )


@dataclass(frozen=True)
class RunStatus:
    name: str
    state: RunState
    started_at: str
    finished_at: str
    params: str = ""
    nodes: list[NodeSnapshot] = field(default_factory=list)

    def __str__(self) -> str:
        return self.state.value

    @classmethod
    def from_nodes(
        cls,
        name: str,
        nodes: Iterable[Node],
        *,
        started_at: datetime | None,
        finished_at: datetime | None,
        params: str = "",
    ) -> RunStatus:
        snapshots = [NodeSnapshot.from_node(node) for node in nodes]
        return cls(
            name=name,
            state=_overall_state(snapshots),
            started_at=format_time(started_at),
            finished_at=format_time(finished_at),
            params=params,
            nodes=snapshots,
        )


def _overall_state(nodes: list[NodeSnapshot]) -> RunState:
    statuses = {node.status for node in nodes}
    if NodeStatus.RUNNING in statuses:
        return RunState.RUNNING
    if NodeStatus.CANCEL in statuses:
        return RunState.CANCEL
    if NodeStatus.ERROR in statuses:
        return RunState.ERROR
    if statuses and statuses <= {NodeStatus.SUCCESS, NodeStatus.SKIPPED}:
        return RunState.SUCCESS
    return RunState.NONE
