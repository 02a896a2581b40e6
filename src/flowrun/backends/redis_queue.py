# backends/redis_queue.py
from __future__ import annotations

import json
import uuid
from typing import Any, Dict, List, Optional, Set

import redis

from ..config import DEFAULT_QUEUE_NAME
from ..errors import BackendUnavailable, SubmitError
from ..model import BatchTask, JobResult
from ..ui.console import get_console
from .base import Backend

# Keys
#   <queue>                 list of job ids, FIFO (rpush / blpop)
#   flowrun:job:<id>        JSON payload: task + where to report
#   flowrun:results:<run>   list of JSON results for one engine run
#   flowrun:cancel:<id>     set when the engine gives up on a job
CANCEL_TTL = 24 * 3600


def job_key(job_id: str) -> str:
    return f"flowrun:job:{job_id}"


def results_key(run_id: str) -> str:
    return f"flowrun:results:{run_id}"


def cancel_key(job_id: str) -> str:
    return f"flowrun:cancel:{job_id}"


class RedisQueueBackend(Backend):
    """
    Remote queue: tasks go onto a Redis list, `flowrun worker` processes
    pick them up and push results back. Workers must see the same
    filesystem as the engine.
    """

    name = "remote"

    def __init__(
        self,
        url: Optional[str] = None,
        queue_name: str = DEFAULT_QUEUE_NAME,
        *,
        client: Optional[redis.Redis] = None,
        run_id: Optional[str] = None,
    ):
        if client is None:
            if not url:
                raise ValueError("RedisQueueBackend needs a redis url or a client")
            client = redis.Redis.from_url(url, decode_responses=True)
        self.r = client
        self.queue_name = queue_name
        self.run_id = run_id or uuid.uuid4().hex
        self._outstanding: Set[str] = set()

    @property
    def results_key(self) -> str:
        return results_key(self.run_id)

    def submit(self, task: BatchTask) -> str:
        job_id = uuid.uuid4().hex
        payload = {
            "job_id": job_id,
            "run_id": self.run_id,
            "results_key": self.results_key,
            "task": task.to_dict(),
        }
        try:
            self.r.set(job_key(job_id), json.dumps(payload))
            self.r.rpush(self.queue_name, job_id)   # FIFO: push right
        except (redis.ConnectionError, redis.TimeoutError) as e:
            raise BackendUnavailable(f"redis unreachable: {e}", node=task.node_id) from e
        except redis.RedisError as e:
            raise SubmitError(f"redis submit failed: {e}", node=task.node_id) from e
        self._outstanding.add(job_id)
        return job_id

    def _decode(self, raw: str) -> Optional[JobResult]:
        try:
            data: Dict[str, Any] = json.loads(raw)
            job_id = data["job_id"]
        except (ValueError, KeyError, TypeError):
            get_console().print_warning(f"ignoring malformed result: {raw[:200]}")
            return None
        if job_id not in self._outstanding:
            # cancelled or from another engine instance
            return None
        self._outstanding.discard(job_id)
        return JobResult(
            handle=job_id,
            exit_status=int(data.get("exit_status", 1)),
            exited_normally=bool(data.get("exited_normally", True)),
            output=data.get("output", "") or "",
        )

    def poll(self, timeout: float = 0.0) -> List[JobResult]:
        if not self._outstanding:
            return []
        raw_items: List[str] = []
        try:
            if timeout > 0:
                # BLPOP with timeout 0 blocks forever; only wait when asked to
                item = self.r.blpop([self.results_key], timeout=timeout)
                if item:
                    _key, raw = item
                    raw_items.append(raw)
            while True:
                raw = self.r.lpop(self.results_key)
                if raw is None:
                    break
                raw_items.append(raw)
        except redis.RedisError as e:
            # transient; outstanding jobs are picked up on the next poll
            get_console().print_warning(f"redis poll failed: {e}")

        done: List[JobResult] = []
        for raw in raw_items:
            result = self._decode(raw)
            if result is not None:
                done.append(result)
        return done

    def cancel(self, handle: str) -> bool:
        if handle not in self._outstanding:
            return False
        self._outstanding.discard(handle)
        try:
            removed = self.r.lrem(self.queue_name, 0, handle)
            self.r.set(cancel_key(handle), "1", ex=CANCEL_TTL)
            if removed:
                self.r.delete(job_key(handle))
        except redis.RedisError as e:
            get_console().print_warning(f"redis cancel failed for {handle}: {e}")
            return False
        # a job already claimed by a worker is only flagged
        return bool(removed)

    def outstanding(self) -> int:
        return len(self._outstanding)

    def close(self) -> None:
        try:
            self.r.delete(self.results_key)
        except redis.RedisError as e:
            get_console().print_debug(f"could not drop {self.results_key}: {e}")
