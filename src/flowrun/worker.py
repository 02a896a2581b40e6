# worker.py
from __future__ import annotations

import json
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import redis

from .backends.redis_queue import cancel_key, job_key
from .config import DEFAULT_QUEUE_NAME
from .model import BatchTask
from .ui.console import get_console

# seconds between cancel-flag checks while a command runs
CANCEL_CHECK_INTERVAL = 1.0
# keep the tail of the output only
OUTPUT_TAIL = 4000


@dataclass
class ExecutionResult:
    """Result of executing one queued job."""
    job_id: str
    exit_status: int
    exited_normally: bool
    output: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "exit_status": self.exit_status,
            "exited_normally": self.exited_normally,
            "output": self.output,
        }


class Worker:
    """Pulls jobs off the Redis queue and runs them."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        worker_id: str = "worker",
        queue_name: str = DEFAULT_QUEUE_NAME,
        poll_interval: int = 5,
        workdir: Optional[str] = None,
        *,
        client: Optional[redis.Redis] = None,
        install_signals: bool = True,
    ):
        """
        Initialize worker.

        Args:
            redis_url: Redis connection URL (ignored if client is given)
            worker_id: Unique identifier for this worker instance
            queue_name: List the engine pushes job ids onto
            poll_interval: Seconds to block waiting for a job
            workdir: Overrides the task cwd root (for differently mounted storage)
        """
        self.r = client if client is not None else redis.Redis.from_url(redis_url, decode_responses=True)
        self.redis_url = redis_url or "<client>"
        self.worker_id = worker_id
        self.queue_name = queue_name
        self.poll_interval = poll_interval
        self.workdir = Path(workdir) if workdir else None
        self.running = True

        if install_signals:
            # Setup signal handlers for graceful shutdown
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        console = get_console()
        console.print_info(f"\nReceived signal {signum}, shutting down gracefully...")
        self.running = False

    def run(self, max_jobs: Optional[int] = None) -> int:
        """Run the worker loop. Returns the number of jobs executed."""
        console = get_console()
        console.print_worker_started(
            worker_id=self.worker_id,
            redis_url=self.redis_url,
            queue=self.queue_name,
        )

        executed = 0
        while self.running:
            if max_jobs is not None and executed >= max_jobs:
                break
            try:
                if self.run_once():
                    executed += 1
            except redis.RedisError as e:
                console.print_error(
                    "Redis error",
                    str(e),
                    suggestion="Check Redis connectivity and retry.",
                )
                # Wait before retrying on connection errors
                time.sleep(self.poll_interval)

        console.print_info("Worker stopped.")
        return executed

    def run_once(self) -> bool:
        """Claim and execute at most one job. True if a job ran."""
        item = self.r.blpop([self.queue_name], timeout=self.poll_interval)
        if not item:
            return False
        _q, job_id = item

        raw = self.r.get(job_key(job_id))
        if raw is None:
            # cancelled before we got to it
            return False
        payload = json.loads(raw)

        if self.r.exists(cancel_key(job_id)):
            self.r.delete(job_key(job_id))
            return False

        task = BatchTask.from_dict(payload["task"])
        console = get_console()
        console.print_job_claimed(job_id=job_id, node_id=task.node_id)

        start_time = time.time()
        result = self.execute(job_id, task)
        duration = time.time() - start_time

        self.r.rpush(payload["results_key"], json.dumps(result.to_dict()))
        self.r.delete(job_key(job_id))

        console.print_execution_complete(
            status="ok" if result.exit_status == 0 and result.exited_normally else "failed",
            duration=duration,
        )
        return True

    def execute(self, job_id: str, task: BatchTask) -> ExecutionResult:
        root = self.workdir if self.workdir is not None else Path(".")
        cwd = (root / (task.cwd or ".")).resolve()

        env = os.environ.copy()
        env.update(task.env or {})

        try:
            proc = subprocess.Popen(
                task.command,
                shell=True,
                cwd=str(cwd),
                env=env,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            return ExecutionResult(job_id=job_id, exit_status=127, exited_normally=True, output=str(e))

        output = ""
        while True:
            try:
                output, _ = proc.communicate(timeout=CANCEL_CHECK_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if self.r.exists(cancel_key(job_id)):
                    proc.kill()
                    output, _ = proc.communicate()
                    break

        rc = proc.returncode
        return ExecutionResult(
            job_id=job_id,
            exit_status=-rc if rc < 0 else rc,
            exited_normally=rc >= 0,
            output=(output or "")[-OUTPUT_TAIL:],
        )


def run_worker(
    redis_url: str,
    worker_id: str,
    queue_name: str = DEFAULT_QUEUE_NAME,
    poll_interval: int = 5,
    workdir: Optional[str] = None,
) -> None:
    """
    Run the flowrun worker loop.

    Args:
        redis_url: Redis connection URL
        worker_id: Unique identifier for this worker instance
        queue_name: Queue to consume
        poll_interval: Seconds to block waiting for a job
        workdir: Root directory for task working directories
    """
    worker = Worker(redis_url, worker_id, queue_name, poll_interval, workdir)
    worker.run()
