"""
Public API of the single-node execution engine.
"""

from __future__ import annotations

from .attempt import run_attempt, run_with_retries
from .backoff import RetryPolicy
from .errors import ExecutionError, NodeCancelledError, NodeError, SetupError, SpawnError
from .ids import NodeIdSequence
from .node import Node
from .state import NodeState
from .status import NodeStatus, RunState
from .step import Condition, Step


__all__ = [
    "Condition",
    "ExecutionError",
    "Node",
    "NodeCancelledError",
    "NodeError",
    "NodeIdSequence",
    "NodeState",
    "NodeStatus",
    "RetryPolicy",
    "RunState",
    "SetupError",
    "SpawnError",
    "Step",
    "run_attempt",
    "run_with_retries",
]
