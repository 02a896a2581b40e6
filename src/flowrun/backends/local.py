# backends/local.py
from __future__ import annotations

import itertools
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import BackendBusy, SubmitError
from ..model import BatchTask, JobResult
from ..ui.console import get_console
from .base import Backend

# how long a cancelled process gets between SIGTERM and SIGKILL
TERMINATE_GRACE = 5.0
# granularity of the bounded wait inside poll()
POLL_TICK = 0.05


@dataclass
class _Running:
    proc: subprocess.Popen
    task: BatchTask
    cores: int


class LocalBackend(Backend):
    """Runs each task as a shell command on this machine."""

    name = "local"

    def __init__(self, slots: int = 1, workdir: str | Path = "."):
        self.slots = max(1, slots)
        self.workdir = Path(workdir)
        self._ids = itertools.count(1)
        self._running: Dict[int, _Running] = {}

    def _cores_in_use(self) -> int:
        return sum(r.cores for r in self._running.values())

    def can_submit(self, task: BatchTask) -> bool:
        cores = max(1, task.resources.cores)
        # an oversized task may still run alone
        return not self._running or self._cores_in_use() + cores <= self.slots

    def submit(self, task: BatchTask) -> int:
        cores = max(1, task.resources.cores)
        if not self.can_submit(task):
            raise BackendBusy(
                f"local backend full ({self._cores_in_use()}/{self.slots} cores)",
                node=task.node_id,
            )

        cwd = (self.workdir / (task.cwd or ".")).resolve()
        if not cwd.exists():
            raise SubmitError(f"working directory not found: {cwd}", node=task.node_id)

        env = os.environ.copy()
        env.update(task.env or {})

        try:
            proc = subprocess.Popen(
                task.command,
                shell=True,
                cwd=str(cwd),
                env=env,
                text=True,
            )
        except OSError as e:
            raise SubmitError(f"could not start process: {e}", node=task.node_id) from e

        handle = next(self._ids)
        self._running[handle] = _Running(proc=proc, task=task, cores=cores)
        get_console().print_debug(f"local job {handle} pid={proc.pid} node={task.node_id}")
        return handle

    def _collect(self) -> List[JobResult]:
        done: List[JobResult] = []
        for handle in sorted(self._running):
            rc = self._running[handle].proc.poll()
            if rc is None:
                continue
            del self._running[handle]
            if rc < 0:
                # killed by signal -rc
                done.append(JobResult(handle=handle, exit_status=-rc, exited_normally=False))
            else:
                done.append(JobResult(handle=handle, exit_status=rc))
        return done

    def poll(self, timeout: float = 0.0) -> List[JobResult]:
        deadline = time.monotonic() + max(0.0, timeout)
        while True:
            done = self._collect()
            if done or not self._running or time.monotonic() >= deadline:
                return done
            time.sleep(min(POLL_TICK, max(0.0, deadline - time.monotonic())))

    def cancel(self, handle: int) -> bool:
        running: Optional[_Running] = self._running.pop(handle, None)
        if running is None:
            return False
        proc = running.proc
        if proc.poll() is not None:
            return True
        proc.terminate()
        try:
            proc.wait(timeout=TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            proc.kill()
            try:
                proc.wait(timeout=TERMINATE_GRACE)
            except subprocess.TimeoutExpired:
                return False
        return True

    def outstanding(self) -> int:
        return len(self._running)

    def close(self) -> None:
        for handle in list(self._running):
            self.cancel(handle)
