# backends/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List

from ..model import BatchTask, JobResult


class Backend(ABC):
    """
    The only thing the engine knows about an execution resource.

    submit() hands over one task and returns an opaque handle.
    poll() returns the jobs that finished since the last call; it may wait
    at most `timeout` seconds and must never block longer.
    cancel() is best effort; False means the job could not be stopped and
    is simply abandoned.
    """

    name: str = "backend"

    def can_submit(self, task: BatchTask) -> bool:
        """Whether submit(task) would be accepted right now. The engine asks
        before dispatching node_submit and batch_submit."""
        return True

    @abstractmethod
    def submit(self, task: BatchTask) -> Any:
        """Raise SubmitError when the task cannot be queued, BackendBusy or
        BackendUnavailable when it should simply be tried again later."""

    @abstractmethod
    def poll(self, timeout: float = 0.0) -> List[JobResult]:
        ...

    @abstractmethod
    def cancel(self, handle: Any) -> bool:
        ...

    @abstractmethod
    def outstanding(self) -> int:
        """Jobs submitted and not yet reported by poll()."""

    def close(self) -> None:
        pass
