# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class NodeState(str, Enum):
    CREATED = "created"
    WAITING = "waiting"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (NodeState.COMPLETE, NodeState.FAILED, NodeState.ABORTED)


class FileState(str, Enum):
    CREATE = "create"
    EXPECT = "expect"
    EXIST = "exist"
    COMPLETE = "complete"
    CLEAN = "clean"
    DELETED = "deleted"

    @property
    def available(self) -> bool:
        """True when a consumer may read the file."""
        return self in (FileState.EXIST, FileState.COMPLETE)


@dataclass(frozen=True)
class Resources:
    """Resource request of a single task."""
    cores: int = 1
    memory: Optional[int] = None   # MB
    disk: Optional[int] = None     # MB


@dataclass(eq=False)
class File:
    """
    A file in the workflow.

    `producer` is None for source inputs supplied from outside the run.
    Identity is the path; equality is object identity so files can live in sets.
    """
    path: str
    producer: Optional["Node"] = None
    consumers: Set["Node"] = field(default_factory=set)
    deliverable: bool = False
    state: FileState = FileState.CREATE

    @property
    def is_source(self) -> bool:
        return self.producer is None

    @property
    def is_deliverable(self) -> bool:
        # a produced file nobody reads is a final target
        return self.deliverable or not self.consumers

    @property
    def collectable(self) -> bool:
        return self.producer is not None and not self.is_deliverable

    def __repr__(self) -> str:
        return f"File({self.path!r}, {self.state.value})"


@dataclass(eq=False)
class Node:
    """A single task: command + the files it reads and writes."""
    id: int
    command: str
    inputs: List[File] = field(default_factory=list)
    outputs: List[File] = field(default_factory=list)
    state: NodeState = NodeState.CREATED
    failures: int = 0
    resources: Resources = field(default_factory=Resources)
    queue: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)

    # handle of the single outstanding backend job, if any
    job: Any = None

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"Node({self.id}, {self.state.value})"


@dataclass
class BatchTask:
    """
    What actually goes to a backend.

    Built fresh for every submission so hooks (wrappers, path translation)
    can rewrite it without touching the node.
    """
    node_id: int
    command: str
    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    resources: Resources = field(default_factory=Resources)
    cwd: Optional[str] = None

    @classmethod
    def from_node(cls, node: Node, cwd: Optional[str] = None) -> "BatchTask":
        return cls(
            node_id=node.id,
            command=node.command,
            inputs=[f.path for f in node.inputs],
            outputs=[f.path for f in node.outputs],
            env=dict(node.env),
            resources=node.resources,
            cwd=cwd,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "command": self.command,
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "env": dict(self.env),
            "resources": {
                "cores": self.resources.cores,
                "memory": self.resources.memory,
                "disk": self.resources.disk,
            },
            "cwd": self.cwd,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchTask":
        res = data.get("resources") or {}
        return cls(
            node_id=int(data["node_id"]),
            command=data["command"],
            inputs=list(data.get("inputs", [])),
            outputs=list(data.get("outputs", [])),
            env=dict(data.get("env", {})),
            resources=Resources(
                cores=int(res.get("cores", 1)),
                memory=res.get("memory"),
                disk=res.get("disk"),
            ),
            cwd=data.get("cwd"),
        )


@dataclass(frozen=True)
class JobResult:
    """One completion reported by a backend poll."""
    handle: Any
    exit_status: int
    exited_normally: bool = True
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exited_normally and self.exit_status == 0
