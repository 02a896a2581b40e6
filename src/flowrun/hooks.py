# hooks.py
"""
Hook dispatch registry.

Every lifecycle transition of the DAG, of a node and of a file is bracketed by
a dispatch call. Extension modules subclass `Hook` and override only the events
they care about; every default returns SUCCESS.

Return SUCCESS unless something fatal happened. Any other result stops the
dispatch at that hook and, for every event except `node_check` and
`dag_loop`, aborts the run.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .model import BatchTask, File, JobResult, Node
from .ui.console import get_console


class HookResult(IntEnum):
    SUCCESS = 0
    FAILURE = 1


EVENTS = (
    "create", "destroy",
    "dag_init", "dag_check", "dag_clean", "dag_start", "dag_loop",
    "dag_end", "dag_fail", "dag_abort",
    "node_create", "node_check", "node_submit", "node_end",
    "node_success", "node_fail", "node_abort",
    "batch_submit", "batch_retrieve",
    "file_create", "file_expect", "file_exist", "file_complete",
    "file_clean", "file_deleted",
)


class Hook:
    """Base class for extension modules. Override any subset of events."""

    name: Optional[str] = None

    @property
    def module_name(self) -> str:
        return self.name or type(self).__name__

    # -- lifetime --
    def create(self, args: Dict[str, Any]) -> HookResult:
        return HookResult.SUCCESS

    def destroy(self, dag) -> HookResult:
        return HookResult.SUCCESS

    # -- dag --
    def dag_init(self) -> HookResult:
        return HookResult.SUCCESS

    def dag_check(self, dag) -> HookResult:
        return HookResult.SUCCESS

    def dag_clean(self, dag) -> HookResult:
        return HookResult.SUCCESS

    def dag_start(self, dag) -> HookResult:
        return HookResult.SUCCESS

    def dag_loop(self, dag) -> HookResult:
        """SUCCESS keeps the loop alive even with nothing submitted. FAILURE ends
        the run as soon as no jobs are outstanding, ready nodes included."""
        return HookResult.SUCCESS

    def dag_end(self, dag) -> HookResult:
        return HookResult.SUCCESS

    def dag_fail(self, dag) -> HookResult:
        return HookResult.SUCCESS

    def dag_abort(self, dag) -> HookResult:
        return HookResult.SUCCESS

    # -- node --
    def node_create(self, node: Node, queue: str) -> HookResult:
        return HookResult.SUCCESS

    def node_check(self, node: Node, queue: str) -> HookResult:
        """FAILURE vetoes submission for this loop iteration only."""
        return HookResult.SUCCESS

    def node_submit(self, node: Node, task: BatchTask) -> HookResult:
        return HookResult.SUCCESS

    def node_end(self, node: Node, result: JobResult) -> HookResult:
        return HookResult.SUCCESS

    def node_success(self, node: Node, result: JobResult) -> HookResult:
        return HookResult.SUCCESS

    def node_fail(self, node: Node, result: JobResult) -> HookResult:
        return HookResult.SUCCESS

    def node_abort(self, node: Node) -> HookResult:
        return HookResult.SUCCESS

    # -- batch --
    def batch_submit(self, queue: str, task: BatchTask) -> HookResult:
        return HookResult.SUCCESS

    def batch_retrieve(self, queue: str, result: JobResult) -> HookResult:
        return HookResult.SUCCESS

    # -- file --
    def file_create(self, f: File) -> HookResult:
        return HookResult.SUCCESS

    def file_expect(self, f: File) -> HookResult:
        return HookResult.SUCCESS

    def file_exist(self, f: File) -> HookResult:
        return HookResult.SUCCESS

    def file_complete(self, f: File) -> HookResult:
        return HookResult.SUCCESS

    def file_clean(self, f: File) -> HookResult:
        return HookResult.SUCCESS

    def file_deleted(self, f: File) -> HookResult:
        return HookResult.SUCCESS


@dataclass(frozen=True)
class DispatchResult:
    event: str
    ok: bool = True
    hook: Optional[str] = None
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


def _succeeded(rc: Any) -> bool:
    # None: the callback forgot to return. Booleans read naturally.
    if rc is None or rc is True:
        return True
    if rc is False:
        return False
    return rc == HookResult.SUCCESS


class HookRegistry:
    """Ordered, append-only list of hooks; sealed once the run starts."""

    def __init__(self, hooks: Iterable[Hook] = ()):
        self._hooks: List[Hook] = []
        self._sealed = False
        for h in hooks:
            self.register(h)

    def register(self, hook: Hook) -> None:
        if self._sealed:
            raise RuntimeError("hooks cannot be registered after the run has started")
        if not isinstance(hook, Hook):
            raise TypeError(f"expected a Hook, got {type(hook).__name__}")
        self._hooks.append(hook)

    def seal(self) -> None:
        self._sealed = True

    @property
    def hooks(self) -> Tuple[Hook, ...]:
        return tuple(self._hooks)

    def __len__(self) -> int:
        return len(self._hooks)

    def _dispatch(self, event: str, call: Callable[[Hook], Any]) -> DispatchResult:
        for hook in self._hooks:
            try:
                rc = call(hook)
            except Exception as e:
                get_console().print_warning(f"hook {hook.module_name} raised during {event}: {e}")
                return DispatchResult(event=event, ok=False, hook=hook.module_name, error=str(e))
            if not _succeeded(rc):
                return DispatchResult(event=event, ok=False, hook=hook.module_name)
        return DispatchResult(event=event)

    # -- lifetime --
    def dispatch_create(self, args: Dict[str, Any]) -> DispatchResult:
        return self._dispatch("create", lambda h: h.create(args))

    def dispatch_destroy(self, dag) -> DispatchResult:
        return self._dispatch("destroy", lambda h: h.destroy(dag))

    # -- dag --
    def dispatch_dag_init(self) -> DispatchResult:
        return self._dispatch("dag_init", lambda h: h.dag_init())

    def dispatch_dag_check(self, dag) -> DispatchResult:
        return self._dispatch("dag_check", lambda h: h.dag_check(dag))

    def dispatch_dag_clean(self, dag) -> DispatchResult:
        return self._dispatch("dag_clean", lambda h: h.dag_clean(dag))

    def dispatch_dag_start(self, dag) -> DispatchResult:
        return self._dispatch("dag_start", lambda h: h.dag_start(dag))

    def dispatch_dag_loop(self, dag) -> DispatchResult:
        return self._dispatch("dag_loop", lambda h: h.dag_loop(dag))

    def dispatch_dag_end(self, dag) -> DispatchResult:
        return self._dispatch("dag_end", lambda h: h.dag_end(dag))

    def dispatch_dag_fail(self, dag) -> DispatchResult:
        return self._dispatch("dag_fail", lambda h: h.dag_fail(dag))

    def dispatch_dag_abort(self, dag) -> DispatchResult:
        return self._dispatch("dag_abort", lambda h: h.dag_abort(dag))

    # -- node --
    def dispatch_node_create(self, node: Node, queue: str) -> DispatchResult:
        return self._dispatch("node_create", lambda h: h.node_create(node, queue))

    def dispatch_node_check(self, node: Node, queue: str) -> DispatchResult:
        return self._dispatch("node_check", lambda h: h.node_check(node, queue))

    def dispatch_node_submit(self, node: Node, task: BatchTask) -> DispatchResult:
        return self._dispatch("node_submit", lambda h: h.node_submit(node, task))

    def dispatch_node_end(self, node: Node, result: JobResult) -> DispatchResult:
        return self._dispatch("node_end", lambda h: h.node_end(node, result))

    def dispatch_node_success(self, node: Node, result: JobResult) -> DispatchResult:
        return self._dispatch("node_success", lambda h: h.node_success(node, result))

    def dispatch_node_fail(self, node: Node, result: JobResult) -> DispatchResult:
        return self._dispatch("node_fail", lambda h: h.node_fail(node, result))

    def dispatch_node_abort(self, node: Node) -> DispatchResult:
        return self._dispatch("node_abort", lambda h: h.node_abort(node))

    # -- batch --
    def dispatch_batch_submit(self, queue: str, task: BatchTask) -> DispatchResult:
        return self._dispatch("batch_submit", lambda h: h.batch_submit(queue, task))

    def dispatch_batch_retrieve(self, queue: str, result: JobResult) -> DispatchResult:
        return self._dispatch("batch_retrieve", lambda h: h.batch_retrieve(queue, result))

    # -- file --
    def dispatch_file_create(self, f: File) -> DispatchResult:
        return self._dispatch("file_create", lambda h: h.file_create(f))

    def dispatch_file_expect(self, f: File) -> DispatchResult:
        return self._dispatch("file_expect", lambda h: h.file_expect(f))

    def dispatch_file_exist(self, f: File) -> DispatchResult:
        return self._dispatch("file_exist", lambda h: h.file_exist(f))

    def dispatch_file_complete(self, f: File) -> DispatchResult:
        return self._dispatch("file_complete", lambda h: h.file_complete(f))

    def dispatch_file_clean(self, f: File) -> DispatchResult:
        return self._dispatch("file_clean", lambda h: h.file_clean(f))

    def dispatch_file_deleted(self, f: File) -> DispatchResult:
        return self._dispatch("file_deleted", lambda h: h.file_deleted(f))
