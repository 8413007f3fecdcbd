"""
Drivers for running one node.

run_attempt() performs a single setup/execute/teardown cycle and applies the
resulting status. run_with_retries() repeats it according to the step's retry
policy. Neither knows anything about other nodes; ordering and fan-out are the
caller's business.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

from jobctl.scheduler.backoff import BackoffState
from jobctl.scheduler.errors import NodeCancelledError
from jobctl.scheduler.ids import DEFAULT_ID_SEQUENCE, NodeIdSequence
from jobctl.scheduler.node import Node
from jobctl.scheduler.status import NodeStatus


def preconditions_met(node: Node, environ: Mapping[str, str] | None = None) -> bool:
    for condition in node.step.preconditions:
        if not condition.evaluate(environ):
            node.log_event.info(
                "node.precondition_unmet",
                condition=condition.condition,
                expected=condition.expected,
            )
            return False
    return True


def run_attempt(
    node: Node,
    *,
    log_dir: str | Path | None,
    request_id: str,
    ids: NodeIdSequence = DEFAULT_ID_SEQUENCE,
    environ: Mapping[str, str] | None = None,
) -> NodeStatus:
    node.init(ids)

    if not preconditions_met(node, environ):
        node.update_status(NodeStatus.SKIPPED)
        return node.read_status()

    try:
        if node.setup(log_dir, request_id) is None:
            node.update_status(NodeStatus.RUNNING)
            error = node.execute()
            # отклоняется, если cancel()/signal() уже выставили CANCEL
            if isinstance(error, NodeCancelledError):
                node.update_status(NodeStatus.CANCEL)
            else:
                node.update_status(NodeStatus.ERROR if error is not None else NodeStatus.SUCCESS)
            node.inc_done_count()
    finally:
        if node.read_status() == NodeStatus.RUNNING:
            # execute() raised
            node.update_status(NodeStatus.ERROR)
        node.mark_finished(datetime.now())
        teardown_error = node.teardown()
        if teardown_error is not None:
            node.log_event.warning("node.teardown_error", error=repr(teardown_error))

    status = node.read_status()
    error = node.read_error()
    node.log_event.info(
        "node.finished",
        status=status.label,
        error=str(error) if error is not None else None,
        log=node.read_log(),
    )
    return status


def run_with_retries(
    node: Node,
    *,
    log_dir: str | Path | None,
    request_id: str,
    ids: NodeIdSequence = DEFAULT_ID_SEQUENCE,
    stop_event: threading.Event | None = None,
) -> NodeStatus:
    """Run until the node stops failing, the retry limit is hit, or `stop_event` is set."""
    stop_event = stop_event or threading.Event()
    backoff_state = BackoffState(node.step.retry_policy)

    status = run_attempt(node, log_dir=log_dir, request_id=request_id, ids=ids)
    while status == NodeStatus.ERROR and backoff_state.can_retry(node.read_retry_count()):
        backoff_state.register_retry()
        delay = backoff_state.next_delay_with_jitter()
        node.log_event.warning(
            "node.retry", attempt=backoff_state.attempt, delay_s=round(delay, 3)
        )
        if stop_event.wait(delay):
            node.log_event.info("node.retry_aborted")
            break

        node.inc_retry_count()
        node.clear_state()
        status = run_attempt(node, log_dir=log_dir, request_id=request_id, ids=ids)

    return status
