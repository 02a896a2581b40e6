# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class FlowError(Exception):
    """
    Structured engine error with enough context for:
      - clean CLI output
      - journal / hook inspection
      - debugging without full tracebacks
    """
    kind: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class DagBuildError(FlowError):
    """Malformed graph: duplicate ids, dangling references, cycles."""

    def __init__(self, message: str, **details):
        super().__init__(kind="DagBuildError", message=message, details=details)


class WorkflowLoadError(FlowError):
    def __init__(self, message: str, **details):
        super().__init__(kind="WorkflowLoadError", message=message, details=details)


class HookAbort(FlowError):
    """A hook callback returned failure; the run must abort."""

    def __init__(self, event: str, hook: str, target: str | None = None):
        details = {"event": event, "hook": hook}
        if target is not None:
            details["target"] = target
        super().__init__(kind="HookAbort", message=f"hook '{hook}' failed on {event}", details=details)
        self.event = event
        self.hook = hook


class InvalidTransition(FlowError):
    def __init__(self, what: str, current: str, requested: str):
        super().__init__(
            kind="InvalidTransition",
            message=f"{what}: {current} -> {requested} is not allowed",
            details={"from": current, "to": requested},
        )


class SubmitError(FlowError):
    """Backend refused or failed a submission. Counts as a failed attempt."""

    def __init__(self, message: str, **details):
        super().__init__(kind="SubmitError", message=message, details=details)


class BackendBusy(SubmitError):
    """Backend is at capacity; try again later without spending retries."""


class BackendUnavailable(BackendBusy):
    """Backend cannot be reached right now. Deferred like BackendBusy; the
    stall timeout bounds how long the engine keeps trying."""
