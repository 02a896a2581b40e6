# engine.py
from __future__ import annotations

import signal
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .backends.base import Backend
from .backends.local import LocalBackend
from .config import EngineConfig
from .dag import Dag
from .errors import BackendBusy, FlowError, HookAbort, SubmitError
from .files import FileTracker
from .hooks import DispatchResult, HookRegistry
from .journal import RunJournal
from .model import BatchTask, JobResult, Node, NodeState
from .nodes import NodeStateMachine
from .ui.console import get_console

END = "end"
FAIL = "fail"
ABORT = "abort"


@dataclass
class RunSummary:
    status: str                                   # end | fail | abort
    nodes: Dict[int, str] = field(default_factory=dict)
    failures: Dict[int, int] = field(default_factory=dict)
    deleted: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == END

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


class Engine:
    """
    The dispatch loop.

    One thread drives everything: find ready nodes, let hooks veto, submit,
    poll backends for completions, advance node and file state, collect
    garbage. The only place it waits is the bounded backend poll.
    """

    def __init__(
        self,
        dag: Dag,
        backends: Dict[str, Backend],
        hooks: Optional[HookRegistry] = None,
        config: Optional[EngineConfig] = None,
        journal: Optional[RunJournal] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not backends:
            raise ValueError("at least one backend is required")
        self.dag = dag
        self.backends = backends
        self.hooks = hooks if hooks is not None else HookRegistry()
        self.config = config or EngineConfig()
        self.journal = journal
        self.clock = clock

        self.nodes = NodeStateMachine(self.config.retry_limit, journal)
        self.files = FileTracker(dag, self.hooks, self.config.workdir, journal)

        self._jobs: Dict[Tuple[str, Any], Node] = {}   # (queue, handle) -> node
        self._created: Set[int] = set()
        self._deleted: List[str] = []
        self._abort_reason: Optional[str] = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def request_abort(self, reason: str = "interrupted") -> None:
        """Safe to call from a signal handler; honoured at the next iteration."""
        self._abort_reason = reason

    def queue_for(self, node: Node) -> str:
        queue = node.queue or self.config.default_queue
        if queue not in self.backends:
            raise FlowError(
                kind="ConfigError",
                message=f"node {node.id} is bound to queue '{queue}' but no such backend is configured",
                details={"node": node.id, "configured": sorted(self.backends)},
            )
        return queue

    def _require(self, rc: DispatchResult, target: Optional[str] = None) -> None:
        if not rc:
            raise HookAbort(rc.event, rc.hook or "?", target=target)

    def outstanding(self) -> int:
        return len(self._jobs)

    def _settled(self) -> bool:
        return not self.dag.nodes_in(NodeState.CREATED, NodeState.WAITING, NodeState.RUNNING)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def prepare(self) -> None:
        """Validate, announce files, move nodes to WAITING. Fatal on error."""
        self.hooks.seal()
        self.dag.validate()
        self._require(self.hooks.dispatch_dag_check(self.dag))
        self.files.initialize()
        for _, node in sorted(self.dag.nodes.items()):
            self.nodes.start(node)
            if node.state is NodeState.COMPLETE:
                # restored from the journal
                self.files.release_inputs(node)
        self._require(self.hooks.dispatch_dag_start(self.dag))

    def run(self, *, install_signals: bool = False) -> RunSummary:
        console = get_console()
        try:
            self.prepare()
        except HookAbort as e:
            console.print_error("Hook failure", str(e))
            return self.summary(self._abort(str(e)))

        previous = self._install_signals() if install_signals else {}
        try:
            try:
                status = self._loop()
            except HookAbort as e:
                console.print_error("Hook failure", str(e))
                status = self._abort(str(e))
            except KeyboardInterrupt:
                status = self._abort("interrupted")
            except Exception:
                self._abort("engine error")
                raise

            if status != ABORT:
                if self.config.gc == "on_demand":
                    self.collect_garbage()
                status = self._finish(status)
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

        return self.summary(status)

    def summary(self, status: str) -> RunSummary:
        reason = self._abort_reason if status == ABORT else None
        if status == FAIL:
            failed = [n.id for n in self.dag.nodes_in(NodeState.FAILED)]
            stuck = [n.id for n in self.dag.nodes_in(NodeState.WAITING)]
            reason = f"failed nodes: {failed}" + (f"; unable to run: {stuck}" if stuck else "")
        return RunSummary(
            status=status,
            nodes={nid: n.state.value for nid, n in sorted(self.dag.nodes.items())},
            failures={nid: n.failures for nid, n in sorted(self.dag.nodes.items()) if n.failures},
            deleted=list(self._deleted),
            reason=reason,
        )

    def _install_signals(self) -> Dict[int, Any]:
        if threading.current_thread() is not threading.main_thread():
            return {}

        def handler(signum, frame):
            get_console().print_info(f"\nReceived signal {signum}, aborting run...")
            self.request_abort(f"signal {signum}")

        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.getsignal(signum)
            signal.signal(signum, handler)
        return previous

    def _loop(self) -> str:
        idle_since: Optional[float] = None

        while True:
            if self._abort_reason is not None:
                return self._abort(self._abort_reason)

            keep_looping = bool(self.hooks.dispatch_dag_loop(self.dag))
            if not keep_looping and self.outstanding() == 0:
                break

            submitted = self._submit_ready()
            completed = self._poll(self.config.poll_interval)

            if self._settled():
                break

            if submitted or completed or self.outstanding():
                idle_since = None
                continue

            # nothing running and nothing could start: vetoed or unsatisfiable
            if not keep_looping:
                break
            now = self.clock()
            if idle_since is None:
                idle_since = now
            elif now - idle_since >= self.config.stall_timeout:
                get_console().print_warning("no progress possible; giving up on waiting nodes")
                break
            if self.config.poll_interval > 0:
                time.sleep(self.config.poll_interval)

        if self.dag.nodes_in(NodeState.FAILED, NodeState.WAITING, NodeState.CREATED):
            return FAIL
        return END

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _submit_ready(self) -> int:
        console = get_console()
        busy: Set[str] = set()
        count = 0

        # snapshot; submissions below do not change readiness of others
        for node in self.dag.nodes_ready():
            queue = self.queue_for(node)
            if queue in busy:
                continue
            backend = self.backends[queue]

            task = BatchTask.from_node(node, cwd=str(Path(self.config.workdir).resolve()))
            if not backend.can_submit(task):
                console.print_node_deferred(node.id, f"{queue} backend full")
                busy.add(queue)
                continue

            if not self.hooks.dispatch_node_check(node, queue):
                console.print_node_deferred(node.id, "vetoed by node_check")
                continue

            if node.id not in self._created:
                self._require(self.hooks.dispatch_node_create(node, queue), f"node {node.id}")
                self._created.add(node.id)

            # a retry re-expects whatever the last attempt left behind
            self.files.expect_outputs(node)

            self._require(self.hooks.dispatch_node_submit(node, task), f"node {node.id}")
            self._require(self.hooks.dispatch_batch_submit(queue, task), f"node {node.id}")

            try:
                handle = backend.submit(task)
            except BackendBusy as e:
                console.print_node_deferred(node.id, str(e))
                busy.add(queue)
                continue
            except SubmitError as e:
                self._attempt_failed(node, e.message, exit_code=None)
                continue

            self.nodes.submitted(node, handle)
            self._jobs[(queue, handle)] = node
            console.print_node_submitted(node.id, queue, task.command)
            count += 1

        return count

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _poll(self, timeout: float) -> int:
        active = [(q, b) for q, b in sorted(self.backends.items()) if b.outstanding()]
        if not active:
            return 0

        results: List[Tuple[str, JobResult]] = []
        for queue, backend in active:
            results.extend((queue, r) for r in backend.poll(0.0))
        if not results and timeout > 0:
            share = timeout / len(active)
            for queue, backend in active:
                results.extend((queue, r) for r in backend.poll(share))
                if results:
                    break

        handled = 0
        for queue, result in results:
            node = self._jobs.pop((queue, result.handle), None)
            if node is None:
                # cancelled or unknown job
                continue
            self._require(self.hooks.dispatch_batch_retrieve(queue, result), f"node {node.id}")
            self._job_finished(node, result)
            handled += 1
        return handled

    def _job_finished(self, node: Node, result: JobResult) -> None:
        console = get_console()
        self._require(self.hooks.dispatch_node_end(node, result), f"node {node.id}")

        missing: List[str] = []
        if result.ok:
            missing = self.files.verify_outputs(node)

        if result.ok and not missing:
            self._require(self.hooks.dispatch_node_success(node, result), f"node {node.id}")
            self.nodes.complete(node)
            console.print_node_complete(node.id)
            self.files.release_inputs(node)
        else:
            self._require(self.hooks.dispatch_node_fail(node, result), f"node {node.id}")
            if missing:
                reason = f"expected outputs missing: {missing}"
            elif not result.exited_normally:
                reason = f"killed by signal {result.exit_status}"
            else:
                reason = result.output or f"exit status {result.exit_status}"
            self._attempt_failed(node, reason, exit_code=result.exit_status)

        if self.config.gc == "ref_count":
            self.collect_garbage()

    def _attempt_failed(self, node: Node, reason: str, exit_code: Optional[int]) -> None:
        retry = self.nodes.fail(node)
        get_console().print_node_failed(
            node.id,
            reason,
            exit_code=exit_code,
            attempt=node.failures,
            will_retry=retry,
        )
        if not retry:
            self._propagate_failure(node)

    def _propagate_failure(self, node: Node) -> None:
        """Dependents of a dead node can never run."""
        self.files.release_inputs(node)
        for dep in self.dag.descendants(node):
            if dep.state in (NodeState.CREATED, NodeState.WAITING):
                self.nodes.fail_permanently(dep)
                get_console().print_debug(f"node {dep.id} will not run: depends on failed node {node.id}")
                self.files.release_inputs(dep)

    def collect_garbage(self) -> List[str]:
        deleted = [f.path for f in self.files.sweep()]
        self._deleted.extend(deleted)
        return deleted

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def _finish(self, status: str) -> str:
        if status == END:
            rc = self.hooks.dispatch_dag_end(self.dag)
            if not rc:
                self._abort_reason = f"hook '{rc.hook}' failed on dag_end"
                return self._abort(self._abort_reason)
            return END

        rc = self.hooks.dispatch_dag_fail(self.dag)
        if not rc:
            get_console().print_warning(f"hook '{rc.hook}' failed on dag_fail")
        return FAIL

    def _abort(self, reason: str) -> str:
        """
        Stop everything: tell hooks, cancel what is running, mark it ABORTED.
        Cancellation is best effort; jobs that cannot be cancelled are
        abandoned, never waited on.
        """
        console = get_console()
        self._abort_reason = reason

        rc = self.hooks.dispatch_dag_abort(self.dag)
        if not rc:
            console.print_warning(f"hook '{rc.hook}' failed on dag_abort")

        for node in self.dag.nodes_in(NodeState.RUNNING):
            queue = self.queue_for(node)
            handle = node.job
            self._jobs.pop((queue, handle), None)
            try:
                cancelled = self.backends[queue].cancel(handle)
            except Exception as e:
                console.print_warning(f"cancel of node {node.id} failed: {e}")
                cancelled = False

            rc = self.hooks.dispatch_node_abort(node)
            if not rc:
                console.print_warning(f"hook '{rc.hook}' failed on node_abort for node {node.id}")
            self.nodes.abort(node)
            console.print_node_aborted(node.id, cancelled)

        return ABORT


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def build_backends(config: EngineConfig) -> Dict[str, Backend]:
    backends: Dict[str, Backend] = {
        "local": LocalBackend(slots=config.local_slots, workdir=config.workdir),
    }
    if config.redis_url:
        from .backends.redis_queue import RedisQueueBackend

        backends["remote"] = RedisQueueBackend(config.redis_url, config.queue_name)
    return backends


def run_workflow(
    load_dag: Callable[[], Dag],
    *,
    config: Optional[EngineConfig] = None,
    hooks: Optional[HookRegistry] = None,
    backends: Optional[Dict[str, Backend]] = None,
    resume: bool = False,
    install_signals: bool = False,
) -> RunSummary:
    """
    Full lifecycle of one run:

      create -> dag_init -> (load) -> dag_check -> dag_start
        -> loop -> dag_end | dag_fail | dag_abort -> destroy

    `load_dag` is called after dag_init so hooks can prepare the
    environment before the workflow is read.
    """
    config = config or EngineConfig()
    hooks = hooks if hooks is not None else HookRegistry()

    rc = hooks.dispatch_create(dict(config.hook_args))
    if not rc:
        raise HookAbort(rc.event, rc.hook or "?")
    # once create succeeded, destroy is always sent; dag is None if loading failed
    dag: Optional[Dag] = None
    try:
        rc = hooks.dispatch_dag_init()
        if not rc:
            raise HookAbort(rc.event, rc.hook or "?")

        dag = load_dag()

        journal = RunJournal(config.journal_path) if config.journal_path else None
        own_backends = backends is None
        backends = backends if backends is not None else build_backends(config)
        try:
            engine = Engine(dag, backends, hooks, config, journal)
            if journal is not None:
                if resume:
                    restored = journal.restore(dag, engine.files.exists)
                    get_console().print_info(f"Resuming: {len(restored)} node(s) already complete")
                else:
                    journal.reset()
            summary = engine.run(install_signals=install_signals)
        finally:
            if own_backends:
                for b in backends.values():
                    b.close()
            if journal is not None:
                journal.close()
    finally:
        rc = hooks.dispatch_destroy(dag)
        if not rc:
            get_console().print_warning(f"hook '{rc.hook}' failed on destroy")
    return summary


def clean_workflow(
    load_dag: Callable[[], Dag],
    *,
    config: Optional[EngineConfig] = None,
    hooks: Optional[HookRegistry] = None,
) -> List[str]:
    """Clean mode: dag_clean, then remove every produced file and the journal."""
    config = config or EngineConfig()
    hooks = hooks if hooks is not None else HookRegistry()

    rc = hooks.dispatch_create(dict(config.hook_args))
    if not rc:
        raise HookAbort(rc.event, rc.hook or "?")
    dag: Optional[Dag] = None
    try:
        dag = load_dag()
        dag.validate()
        hooks.seal()

        rc = hooks.dispatch_dag_clean(dag)
        if not rc:
            raise HookAbort(rc.event, rc.hook or "?")

        tracker = FileTracker(dag, hooks, config.workdir)
        removed = [f.path for f in tracker.clean_outputs()]

        if config.journal_path:
            journal_file = Path(config.journal_path)
            if journal_file.exists():
                journal_file.unlink()
    finally:
        rc = hooks.dispatch_destroy(dag)
        if not rc:
            get_console().print_warning(f"hook '{rc.hook}' failed on destroy")
    return removed
