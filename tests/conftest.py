# tests/conftest.py
"""
Shared fixtures for the flowrun test-suite.

FakeBackend completes jobs synchronously on poll() with scripted exit
statuses and writes the outputs of successful jobs, so engine tests are
deterministic and never spawn processes. FakeRedis implements the handful of
list/key commands the remote queue uses.
"""
from __future__ import annotations

import itertools
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from flowrun.backends.base import Backend
from flowrun.config import EngineConfig
from flowrun.errors import BackendBusy, BackendUnavailable, SubmitError
from flowrun.hooks import Hook, HookResult
from flowrun.model import BatchTask, JobResult
from flowrun.ui.console import Console, set_console


class FakeBackend(Backend):
    name = "fake"

    def __init__(
        self,
        script: Optional[Dict[int, List[int]]] = None,
        *,
        slots: Optional[int] = None,
        hold: Iterable[int] = (),
        skip_outputs: Iterable[str] = (),
        refuse: Iterable[int] = (),
        reverse: bool = False,
        outages: int = 0,
    ):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.slots = slots
        self.hold = set(hold)
        self.skip_outputs = set(skip_outputs)
        self.refuse = set(refuse)
        self.reverse = reverse
        self.outages = outages
        self.pending: Dict[int, BatchTask] = {}
        self.submitted: List[BatchTask] = []
        self.cancelled: List[int] = []
        self.busy_refusals = 0
        self._ids = itertools.count(1)

    def can_submit(self, task: BatchTask) -> bool:
        if self.slots is not None and len(self.pending) >= self.slots:
            self.busy_refusals += 1
            return False
        return True

    def submit(self, task: BatchTask) -> int:
        if self.outages:
            self.outages -= 1
            raise BackendUnavailable("connection refused", node=task.node_id)
        if task.node_id in self.refuse:
            raise SubmitError("refused", node=task.node_id)
        if self.slots is not None and len(self.pending) >= self.slots:
            self.busy_refusals += 1
            raise BackendBusy("full", node=task.node_id)
        assert all(t.node_id != task.node_id for t in self.pending.values()), "two jobs for one node"
        handle = next(self._ids)
        self.pending[handle] = task
        self.submitted.append(task)
        return handle

    def poll(self, timeout: float = 0.0) -> List[JobResult]:
        done: List[JobResult] = []
        for handle, task in sorted(self.pending.items()):
            if task.node_id in self.hold:
                continue
            statuses = self.script.get(task.node_id, [])
            status = statuses.pop(0) if statuses else 0
            if status == 0:
                for out in task.outputs:
                    if out not in self.skip_outputs:
                        (Path(task.cwd or ".") / out).write_text(f"node {task.node_id}\n")
            done.append(JobResult(handle=handle, exit_status=status))
        for r in done:
            del self.pending[r.handle]
        if self.reverse:
            done.reverse()
        return done

    def cancel(self, handle) -> bool:
        if self.pending.pop(handle, None) is None:
            return False
        self.cancelled.append(handle)
        return True

    def outstanding(self) -> int:
        return len(self.pending)

    def submissions_for(self, node_id: int) -> int:
        return sum(1 for t in self.submitted if t.node_id == node_id)


class RecordingHook(Hook):
    """Records every event it sees as (event, target) pairs."""

    def __init__(self, name: str = "recorder"):
        self.name = name
        self.events: List[tuple] = []

    def _rec(self, event, target=None):
        self.events.append((event, target))
        return HookResult.SUCCESS

    def names(self) -> List[str]:
        return [e for e, _ in self.events]

    def create(self, args):
        return self._rec("create", dict(args))

    def destroy(self, dag):
        return self._rec("destroy")

    def dag_init(self):
        return self._rec("dag_init")

    def dag_check(self, dag):
        return self._rec("dag_check")

    def dag_clean(self, dag):
        return self._rec("dag_clean")

    def dag_start(self, dag):
        return self._rec("dag_start")

    def dag_loop(self, dag):
        return self._rec("dag_loop")

    def dag_end(self, dag):
        return self._rec("dag_end")

    def dag_fail(self, dag):
        return self._rec("dag_fail")

    def dag_abort(self, dag):
        return self._rec("dag_abort")

    def node_create(self, node, queue):
        return self._rec("node_create", node.id)

    def node_check(self, node, queue):
        return self._rec("node_check", node.id)

    def node_submit(self, node, task):
        return self._rec("node_submit", node.id)

    def node_end(self, node, result):
        return self._rec("node_end", node.id)

    def node_success(self, node, result):
        return self._rec("node_success", node.id)

    def node_fail(self, node, result):
        return self._rec("node_fail", node.id)

    def node_abort(self, node):
        return self._rec("node_abort", node.id)

    def batch_submit(self, queue, task):
        return self._rec("batch_submit", task.node_id)

    def batch_retrieve(self, queue, result):
        return self._rec("batch_retrieve", result.handle)

    def file_create(self, f):
        return self._rec("file_create", f.path)

    def file_expect(self, f):
        return self._rec("file_expect", f.path)

    def file_exist(self, f):
        return self._rec("file_exist", f.path)

    def file_complete(self, f):
        return self._rec("file_complete", f.path)

    def file_clean(self, f):
        return self._rec("file_clean", f.path)

    def file_deleted(self, f):
        return self._rec("file_deleted", f.path)


class FakeRedis:
    """In-memory stand-in for the few redis commands the queue uses."""

    def __init__(self):
        self.kv: Dict[str, str] = {}
        self.lists: Dict[str, List[str]] = defaultdict(list)

    def set(self, key, value, ex=None):
        self.kv[key] = value
        return True

    def get(self, key):
        return self.kv.get(key)

    def exists(self, *keys):
        return sum(1 for k in keys if k in self.kv or self.lists.get(k))

    def delete(self, *keys):
        n = 0
        for k in keys:
            if self.kv.pop(k, None) is not None:
                n += 1
            if self.lists.pop(k, None) is not None:
                n += 1
        return n

    def rpush(self, key, *values):
        self.lists[key].extend(values)
        return len(self.lists[key])

    def lpop(self, key):
        lst = self.lists.get(key)
        return lst.pop(0) if lst else None

    def blpop(self, keys, timeout=0):
        for k in keys:
            lst = self.lists.get(k)
            if lst:
                return k, lst.pop(0)
        return None

    def lrem(self, key, count, value):
        lst = self.lists.get(key, [])
        kept = [x for x in lst if x != value]
        removed = len(lst) - len(kept)
        self.lists[key] = kept
        return removed


@pytest.fixture(autouse=True)
def fresh_console():
    set_console(Console())
    yield
    set_console(Console())


@pytest.fixture
def fast_config(tmp_path) -> EngineConfig:
    return EngineConfig(workdir=str(tmp_path), poll_interval=0.0, stall_timeout=0.0)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
