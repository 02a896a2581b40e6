# nodes.py
from __future__ import annotations

from typing import Any, Dict, FrozenSet

from .errors import InvalidTransition
from .model import Node, NodeState

# Legal moves. FAILED -> WAITING never appears here: a retry is decided
# inside fail() so an observer only ever sees FAILED when it is final.
_ALLOWED: Dict[NodeState, FrozenSet[NodeState]] = {
    NodeState.CREATED: frozenset({NodeState.WAITING}),
    NodeState.WAITING: frozenset({NodeState.RUNNING, NodeState.FAILED}),
    NodeState.RUNNING: frozenset({NodeState.COMPLETE, NodeState.FAILED, NodeState.ABORTED, NodeState.WAITING}),
    NodeState.COMPLETE: frozenset(),
    NodeState.FAILED: frozenset(),
    NodeState.ABORTED: frozenset(),
}


class NodeStateMachine:
    """Per-node state transitions, retry accounting and the journal write."""

    def __init__(self, retry_limit: int = 0, journal=None):
        self.retry_limit = retry_limit
        self.journal = journal

    def _set(self, node: Node, new: NodeState) -> None:
        if new not in _ALLOWED[node.state]:
            raise InvalidTransition(f"node {node.id}", node.state.value, new.value)
        node.state = new
        if self.journal is not None:
            self.journal.record_node(node)

    def start(self, node: Node) -> None:
        """CREATED -> WAITING; a no-op for nodes restored past CREATED."""
        if node.state is NodeState.CREATED:
            self._set(node, NodeState.WAITING)

    def submitted(self, node: Node, handle: Any) -> None:
        if node.job is not None:
            raise InvalidTransition(f"node {node.id} already has job {node.job!r}", node.state.value, "running")
        self._set(node, NodeState.RUNNING)
        node.job = handle

    def complete(self, node: Node) -> None:
        self._set(node, NodeState.COMPLETE)
        node.job = None

    def fail(self, node: Node) -> bool:
        """
        Record one failed attempt.

        Returns True when the node went back to WAITING for another try,
        False when it is now terminally FAILED.
        """
        if node.state not in (NodeState.RUNNING, NodeState.WAITING):
            raise InvalidTransition(f"node {node.id}", node.state.value, NodeState.FAILED.value)
        node.failures += 1
        node.job = None
        if node.failures <= self.retry_limit:
            if node.state is NodeState.RUNNING:
                self._set(node, NodeState.WAITING)
            elif self.journal is not None:
                self.journal.record_node(node)
            return True
        self._set(node, NodeState.FAILED)
        return False

    def fail_permanently(self, node: Node) -> None:
        """A dependency can never be satisfied; the node will not run."""
        if node.state is NodeState.CREATED:
            self._set(node, NodeState.WAITING)
        self._set(node, NodeState.FAILED)

    def abort(self, node: Node) -> None:
        self._set(node, NodeState.ABORTED)
        node.job = None

    def attempts_left(self, node: Node) -> int:
        return max(0, self.retry_limit + 1 - node.failures)
