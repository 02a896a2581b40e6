# dsl.py
from __future__ import annotations

import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .dag import Dag
from .errors import WorkflowLoadError
from .model import Resources


# ---------------------------------------------------------------------
# Rule helper
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Rule:
    """One task of a workflow before it becomes a DAG node."""
    command: str
    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    deliver: List[str] = field(default_factory=list)
    queue: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    resources: Resources = field(default_factory=Resources)
    node_id: Optional[int] = None


def rule(
    command: str,
    *,
    inputs: Optional[Sequence[str]] = None,
    outputs: Optional[Sequence[str]] = None,
    deliver: Optional[Sequence[str]] = None,
    local: bool = False,
    queue: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    cores: int = 1,
    memory: Optional[int] = None,
    disk: Optional[int] = None,
    node_id: Optional[int] = None,
) -> Rule:
    """
    Describe a task.

    Example:
        rule("sort in.txt > sorted.txt", inputs=["in.txt"], outputs=["sorted.txt"])

    `deliver` names outputs that are final results and must survive garbage
    collection. `local=True` pins the task to this machine.
    """
    if not command or not command.strip():
        raise ValueError("rule() needs a command")
    outputs = list(outputs or [])
    deliver = list(deliver or [])
    stray = [d for d in deliver if d not in outputs]
    if stray:
        raise ValueError(f"deliver lists files the rule does not produce: {stray}")
    if local and queue not in (None, "local"):
        raise ValueError("local=True conflicts with queue=" + repr(queue))

    return Rule(
        command=command,
        inputs=list(inputs or []),
        outputs=outputs,
        deliver=deliver,
        queue="local" if local else queue,
        # force values to str for the environment
        env={k: str(v) for k, v in (env or {}).items()},
        resources=Resources(cores=cores, memory=memory, disk=disk),
        node_id=node_id,
    )


def wf(*rules: Rule) -> List[Rule]:
    """
    Workflow definition helper.

        from flowrun import wf, rule

        def workflow():
            return wf(
                rule(...),
                rule(...),
            )
    """
    return list(rules)


def build_dag(rules: Iterable[Rule], deliverables: Iterable[str] = ()) -> Dag:
    """Turn rules into a validated DAG. Ids default to definition order, from 1."""
    dag = Dag()
    next_id = 1
    for r in rules:
        nid = r.node_id if r.node_id is not None else next_id
        next_id = max(next_id, nid) + 1
        dag.add_node(
            nid,
            r.command,
            inputs=r.inputs,
            outputs=r.outputs,
            resources=r.resources,
            queue=r.queue,
            env=r.env,
        )
        for path in r.deliver:
            dag.add_file(path, deliverable=True)

    for path in deliverables:
        if path not in dag.files:
            raise WorkflowLoadError(f"deliverable '{path}' is not part of the workflow", file=path)
        dag.add_file(path, deliverable=True)

    dag.validate()
    return dag


# ---------------------------------------------------------------------
# Workflow loading (local file)
# ---------------------------------------------------------------------

def load_rules(path: str | Path) -> tuple[List[Rule], List[str]]:
    """
    Run a workflow file and collect its rules.

    The file must define either:
      - workflow() -> List[Rule]
      - RULES = [Rule, ...]
    and may define DELIVERABLES = ["file", ...].
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowLoadError(f"workflow file not found: {wf_path}", path=str(wf_path))
    if wf_path.suffix != ".py":
        raise WorkflowLoadError(f"workflow must be a .py file, got: {wf_path.name}", path=str(wf_path))

    module_name = f"flowrun_workflow_{wf_path.stem}"
    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=module_name)
    except Exception as e:
        raise WorkflowLoadError(f"error while executing workflow file: {e}", path=str(wf_path)) from e

    rules = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            rules = globals_dict["workflow"]()
        except Exception as e:
            raise WorkflowLoadError(f"error while building workflow: {e}", path=str(wf_path)) from e
    elif "RULES" in globals_dict:
        rules = globals_dict["RULES"]

    if not isinstance(rules, list) or not all(isinstance(r, Rule) for r in rules):
        raise WorkflowLoadError(
            "workflow must return/define a List[Rule]: define workflow() -> List[Rule] or RULES = [Rule, ...]",
            path=str(wf_path),
        )

    deliverables = list(globals_dict.get("DELIVERABLES", []) or [])
    return rules, deliverables


def load_workflow(path: str | Path) -> Dag:
    rules, deliverables = load_rules(path)
    return build_dag(rules, deliverables)


def dump_workflow(dag: Dag, path: str | Path, rename=None) -> None:
    """
    Write `dag` back out as a workflow file.

    `rename(filename) -> str` maps every file name; commands get the same
    substitution for names that changed.
    """
    rename = rename or (lambda name: name)
    lines = [
        "# generated by flowrun",
        "from flowrun import rule, wf",
        "",
        "",
        "def workflow():",
        "    return wf(",
    ]
    for nid, node in sorted(dag.nodes.items()):
        command = node.command
        for f in node.inputs + node.outputs:
            new = rename(f.path)
            if new != f.path:
                command = command.replace(f.path, new)
        args = [
            repr(command),
            f"inputs={[rename(f.path) for f in node.inputs]!r}",
            f"outputs={[rename(f.path) for f in node.outputs]!r}",
        ]
        deliver = [rename(f.path) for f in node.outputs if f.deliverable]
        if deliver:
            args.append(f"deliver={deliver!r}")
        if node.queue:
            args.append(f"queue={node.queue!r}")
        if node.env:
            args.append(f"env={node.env!r}")
        if node.resources.cores != 1:
            args.append(f"cores={node.resources.cores}")
        if node.resources.memory is not None:
            args.append(f"memory={node.resources.memory}")
        if node.resources.disk is not None:
            args.append(f"disk={node.resources.disk}")
        args.append(f"node_id={nid}")
        lines.append("        rule(" + ", ".join(args) + "),")
    lines.append("    )")
    lines.append("")
    Path(path).write_text("\n".join(lines), encoding="utf-8")
