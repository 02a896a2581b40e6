# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .errors import DagBuildError
from .model import File, FileState, Node, NodeState, Resources


class Dag:
    """
    The graph of nodes and files.

    Pure data plus queries. State changes go through the node state machine
    and the file tracker; this class never moves a node or a file by itself.
    """

    def __init__(self) -> None:
        self.nodes: Dict[int, Node] = {}
        self.files: Dict[str, File] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_file(self, path: str, *, deliverable: bool = False) -> File:
        """Register a file, or return the already-registered one."""
        if not path:
            raise DagBuildError("empty file name")
        f = self.files.get(path)
        if f is None:
            f = File(path=path, deliverable=deliverable)
            self.files[path] = f
        elif deliverable:
            f.deliverable = True
        return f

    def add_node(
        self,
        node_id: int,
        command: str,
        inputs: Iterable[str] = (),
        outputs: Iterable[str] = (),
        *,
        resources: Optional[Resources] = None,
        queue: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> Node:
        if node_id in self.nodes:
            raise DagBuildError(f"duplicate node id {node_id}", node=node_id)

        node = Node(
            id=node_id,
            command=command,
            resources=resources or Resources(),
            queue=queue,
            env=dict(env or {}),
        )

        for path in outputs:
            f = self.add_file(path)
            if f.producer is not None:
                raise DagBuildError(
                    f"file '{path}' is produced by both node {f.producer.id} and node {node_id}",
                    file=path,
                )
            f.producer = node
            node.outputs.append(f)

        out_paths = {f.path for f in node.outputs}
        for path in inputs:
            if path in out_paths:
                raise DagBuildError(f"node {node_id} reads its own output '{path}'", node=node_id, file=path)
            f = self.add_file(path)
            if f not in node.inputs:
                node.inputs.append(f)
                f.consumers.add(node)

        self.nodes[node_id] = node
        return node

    def validate(self) -> None:
        """
        Check cross-references and acyclicity.

        Raises DagBuildError; called once before the run starts.
        """
        for node in self.nodes.values():
            for f in node.inputs:
                if self.files.get(f.path) is not f:
                    raise DagBuildError(f"node {node.id} references unknown input '{f.path}'", node=node.id)
                if node not in f.consumers:
                    raise DagBuildError(f"file '{f.path}' does not list node {node.id} as consumer", node=node.id)
            for f in node.outputs:
                if self.files.get(f.path) is not f:
                    raise DagBuildError(f"node {node.id} references unknown output '{f.path}'", node=node.id)
                if f.producer is not node:
                    raise DagBuildError(f"file '{f.path}' is not produced by node {node.id}", node=node.id)

        for f in self.files.values():
            if f.producer is not None and self.nodes.get(f.producer.id) is not f.producer:
                raise DagBuildError(f"file '{f.path}' has a dangling producer", file=f.path)
            for c in f.consumers:
                if self.nodes.get(c.id) is not c or f not in c.inputs:
                    raise DagBuildError(f"file '{f.path}' has a dangling consumer {c.id}", file=f.path)

        # raises on cycles
        self.topological_levels()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def node_inputs(self, node: Node) -> List[File]:
        return list(node.inputs)

    def node_outputs(self, node: Node) -> List[File]:
        return list(node.outputs)

    def file_producer(self, f: File) -> Optional[Node]:
        return f.producer

    def file_consumers(self, f: File) -> Set[Node]:
        return set(f.consumers)

    def parents(self, node: Node) -> Set[Node]:
        return {f.producer for f in node.inputs if f.producer is not None}

    def children(self, node: Node) -> Set[Node]:
        out: Set[Node] = set()
        for f in node.outputs:
            out.update(f.consumers)
        return out

    def descendants(self, node: Node) -> List[Node]:
        """Every node that transitively reads one of `node`'s outputs, by id."""
        seen: Set[int] = set()
        q = deque(self.children(node))
        while q:
            n = q.popleft()
            if n.id in seen:
                continue
            seen.add(n.id)
            q.extend(self.children(n))
        return [self.nodes[i] for i in sorted(seen)]

    def nodes_ready(self) -> List[Node]:
        """WAITING nodes whose inputs are all EXIST/COMPLETE, in ascending id."""
        return [
            n
            for _, n in sorted(self.nodes.items())
            if n.state is NodeState.WAITING and all(f.state.available for f in n.inputs)
        ]

    def nodes_in(self, *states: NodeState) -> List[Node]:
        return [n for _, n in sorted(self.nodes.items()) if n.state in states]

    def input_files(self) -> List[File]:
        """Files no node produces: they must exist before the run."""
        return [f for _, f in sorted(self.files.items()) if f.producer is None]

    def output_files(self) -> List[File]:
        return [f for _, f in sorted(self.files.items()) if f.producer is not None]

    # ------------------------------------------------------------------
    # Topology / analysis
    # ------------------------------------------------------------------

    def _adjacency(self) -> Tuple[Dict[int, Set[int]], Dict[int, int]]:
        adj: Dict[int, Set[int]] = {i: set() for i in self.nodes}   # parent -> children
        indeg: Dict[int, int] = {i: 0 for i in self.nodes}
        for node in self.nodes.values():
            for parent in self.parents(node):
                if node.id not in adj[parent.id]:
                    adj[parent.id].add(node.id)
                    indeg[node.id] += 1
        return adj, indeg

    def topological_levels(self) -> List[List[int]]:
        """
        Group node ids into levels; every node sits one level below its
        deepest parent. Each level could run in parallel.
        """
        adj, indeg = self._adjacency()
        q = deque(sorted(n for n, d in indeg.items() if d == 0))

        levels: List[List[int]] = []
        processed = 0

        while q:
            level_size = len(q)
            level: List[int] = []

            for _ in range(level_size):
                node = q.popleft()
                level.append(node)
                processed += 1

                for child in sorted(adj[node]):
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        q.append(child)

            levels.append(sorted(level))

        if processed != len(indeg):
            remaining = sorted(n for n, d in indeg.items() if d > 0)
            raise DagBuildError(f"workflow has a cycle; stuck nodes: {remaining}", nodes=remaining)

        return levels

    def depth(self) -> int:
        return len(self.topological_levels())

    def width_uniform_task(self) -> int:
        """Most nodes runnable at once if every task takes the same time."""
        levels = self.topological_levels()
        return max((len(level) for level in levels), default=0)

    def width_guaranteed_max(self) -> int:
        """
        Widest level whether tasks start as soon as possible or as late as
        possible without stretching the critical path.
        """
        levels = self.topological_levels()
        if not levels:
            return 0
        asap = {nid: i for i, level in enumerate(levels) for nid in level}

        adj, _ = self._adjacency()
        alap: Dict[int, int] = {}
        last = len(levels) - 1
        for level in reversed(levels):
            for nid in level:
                kids = adj[nid]
                alap[nid] = min((alap[k] for k in kids), default=last + 1) - 1

        def widest(placement: Dict[int, int]) -> int:
            counts: Dict[int, int] = {}
            for lvl in placement.values():
                counts[lvl] = counts.get(lvl, 0) + 1
            return max(counts.values())

        return max(widest(asap), widest(alap))

    def summary(self) -> Dict[str, int]:
        return {
            "num_of_tasks": len(self.nodes),
            "depth": self.depth(),
            "width_uniform_task": self.width_uniform_task(),
            "width_guaranteed_max": self.width_guaranteed_max(),
        }

    def state_counts(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in NodeState}
        for n in self.nodes.values():
            counts[n.state.value] += 1
        return counts

    def file_state_counts(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in FileState}
        for f in self.files.values():
            counts[f.state.value] += 1
        return counts
