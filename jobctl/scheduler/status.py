from __future__ import annotations

from enum import IntEnum, StrEnum


class NodeStatus(IntEnum):
    """Состояние ноды внутри одной попытки выполнения"""

    NONE = 0
    RUNNING = 1
    ERROR = 2
    CANCEL = 3
    SUCCESS = 4
    SKIPPED = 5

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def __str__(self) -> str:
        return self.label


_LABELS: dict[NodeStatus, str] = {
    NodeStatus.NONE: "not started",
    NodeStatus.RUNNING: "running",
    NodeStatus.ERROR: "failed",
    NodeStatus.CANCEL: "canceled",
    NodeStatus.SUCCESS: "finished",
    NodeStatus.SKIPPED: "skipped",
}

TERMINAL_STATUSES: frozenset[NodeStatus] = frozenset(
    {NodeStatus.ERROR, NodeStatus.CANCEL, NodeStatus.SUCCESS, NodeStatus.SKIPPED}
)


class RunState(StrEnum):
    """Итоговое состояние запуска целиком (для отчётов)"""

    NONE = "not started"
    RUNNING = "running"
    ERROR = "failed"
    CANCEL = "canceled"
    SUCCESS = "finished"

    @classmethod
    def from_node_status(cls, status: NodeStatus) -> RunState:
        if status == NodeStatus.RUNNING:
            return cls.RUNNING
        if status == NodeStatus.ERROR:
            return cls.ERROR
        if status == NodeStatus.CANCEL:
            return cls.CANCEL
        if status in (NodeStatus.SUCCESS, NodeStatus.SKIPPED):
            return cls.SUCCESS
        return cls.NONE
