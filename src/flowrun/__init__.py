__version__ = "0.1.0"

from .dsl import rule, wf, build_dag, load_workflow
from .dag import Dag
from .model import BatchTask, File, FileState, JobResult, Node, NodeState, Resources
from .hooks import Hook, HookRegistry, HookResult
from .config import EngineConfig
from .engine import Engine, RunSummary, run_workflow, clean_workflow

__all__ = [
    "rule",
    "wf",
    "build_dag",
    "load_workflow",
    "Dag",
    "BatchTask",
    "File",
    "FileState",
    "JobResult",
    "Node",
    "NodeState",
    "Resources",
    "Hook",
    "HookRegistry",
    "HookResult",
    "EngineConfig",
    "Engine",
    "RunSummary",
    "run_workflow",
    "clean_workflow",
]
