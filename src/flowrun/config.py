# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

GC_MODES = ("none", "ref_count", "on_demand")
QUEUES = ("local", "remote")

DEFAULT_QUEUE_NAME = "flowrun:queue"


@dataclass(frozen=True)
class EngineConfig:
    """
    Knobs for one run.

    Defaults are safe for a laptop: local execution only, ref-count GC,
    no journal.
    """
    retry_limit: int = 0
    poll_interval: float = 1.0          # seconds; bound on each backend poll
    max_local_jobs: int = 0             # 0 -> cpu count
    default_queue: str = "local"
    gc: str = "ref_count"
    workdir: str = "."
    journal_path: Optional[str] = None
    redis_url: Optional[str] = None
    queue_name: str = DEFAULT_QUEUE_NAME
    stall_timeout: float = 30.0
    hook_args: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.gc not in GC_MODES:
            raise ValueError(f"gc must be one of {GC_MODES}, got {self.gc!r}")
        if self.default_queue not in QUEUES:
            raise ValueError(f"default_queue must be one of {QUEUES}, got {self.default_queue!r}")
        if self.retry_limit < 0:
            raise ValueError("retry_limit must be >= 0")
        if self.poll_interval < 0:
            raise ValueError("poll_interval must be >= 0")

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EngineConfig":
        """Read FLOWRUN_* variables; anything unset keeps its default."""
        env = os.environ if environ is None else environ
        kwargs: Dict[str, Any] = {}

        if "FLOWRUN_RETRY_LIMIT" in env:
            kwargs["retry_limit"] = int(env["FLOWRUN_RETRY_LIMIT"])
        if "FLOWRUN_POLL_INTERVAL" in env:
            kwargs["poll_interval"] = float(env["FLOWRUN_POLL_INTERVAL"])
        if "FLOWRUN_LOCAL_JOBS" in env:
            kwargs["max_local_jobs"] = int(env["FLOWRUN_LOCAL_JOBS"])
        if "FLOWRUN_DEFAULT_QUEUE" in env:
            kwargs["default_queue"] = env["FLOWRUN_DEFAULT_QUEUE"]
        if "FLOWRUN_GC" in env:
            kwargs["gc"] = env["FLOWRUN_GC"]
        if "FLOWRUN_WORKDIR" in env:
            kwargs["workdir"] = env["FLOWRUN_WORKDIR"]
        if "FLOWRUN_JOURNAL" in env:
            kwargs["journal_path"] = env["FLOWRUN_JOURNAL"] or None
        if "FLOWRUN_REDIS_URL" in env:
            kwargs["redis_url"] = env["FLOWRUN_REDIS_URL"] or None
        if "FLOWRUN_QUEUE_NAME" in env:
            kwargs["queue_name"] = env["FLOWRUN_QUEUE_NAME"]
        if "FLOWRUN_STALL_TIMEOUT" in env:
            kwargs["stall_timeout"] = float(env["FLOWRUN_STALL_TIMEOUT"])

        return cls(**kwargs)

    def override(self, **changes: Any) -> "EngineConfig":
        """Apply CLI overrides, ignoring options the user did not pass."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @property
    def local_slots(self) -> int:
        if self.max_local_jobs > 0:
            return self.max_local_jobs
        c = os.cpu_count() or 2
        return max(1, c - 1)
