# journal.py
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Set, Tuple

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .dag import Dag
from .model import File, FileState, Node, NodeState


class Base(DeclarativeBase):
    pass


class NodeRecord(Base):
    __tablename__ = "node_states"
    node_id: Mapped[int] = mapped_column(sa.Integer, primary_key=True)
    command: Mapped[str] = mapped_column(sa.Text, nullable=False)
    state: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    failures: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)


class FileRecord(Base):
    __tablename__ = "file_states"
    path: Mapped[str] = mapped_column(sa.Text, primary_key=True)
    state: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class RunJournal:
    """
    Every committed node/file transition, kept in SQLite so an interrupted
    run can pick up where it stopped.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = sa.create_engine(f"sqlite:///{self.path}")
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(self.engine, class_=Session, expire_on_commit=False)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_node(self, node: Node) -> None:
        with self.Session() as s, s.begin():
            s.merge(NodeRecord(
                node_id=node.id,
                command=node.command,
                state=node.state.value,
                failures=node.failures,
                updated_at=now_utc(),
            ))

    def record_file(self, f: File) -> None:
        with self.Session() as s, s.begin():
            s.merge(FileRecord(path=f.path, state=f.state.value, updated_at=now_utc()))

    def reset(self) -> None:
        with self.Session() as s, s.begin():
            s.execute(sa.delete(NodeRecord))
            s.execute(sa.delete(FileRecord))

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self) -> Tuple[Dict[int, NodeRecord], Dict[str, FileRecord]]:
        with self.Session() as s:
            nodes = {r.node_id: r for r in s.scalars(sa.select(NodeRecord))}
            files = {r.path: r for r in s.scalars(sa.select(FileRecord))}
        return nodes, files

    def restore(self, dag: Dag, exists: Callable[[File], bool]) -> Set[int]:
        """
        Bring a freshly built DAG back to the recorded state.

        A node recorded COMPLETE stays complete when its command is unchanged,
        all its parents stay complete, and each output is either on disk or
        was garbage-collected after all its consumers completed. Everything
        else starts over from CREATED. Returns the ids restored as complete.
        """
        node_rows, file_rows = self.load()

        done: Set[int] = {
            nid
            for nid, node in dag.nodes.items()
            if nid in node_rows
            and node_rows[nid].state == NodeState.COMPLETE.value
            and node_rows[nid].command == node.command
        }

        def collected(f: File) -> bool:
            row = file_rows.get(f.path)
            return (
                row is not None
                and row.state in (FileState.CLEAN.value, FileState.DELETED.value)
                and all(c.id in done for c in f.consumers)
            )

        changed = True
        while changed:
            changed = False
            for nid in sorted(done):
                node = dag.nodes[nid]
                parents_ok = all(p.id in done for p in dag.parents(node))
                outputs_ok = all(exists(f) or collected(f) for f in node.outputs)
                if not (parents_ok and outputs_ok):
                    done.discard(nid)
                    changed = True

        for nid in sorted(done):
            node = dag.nodes[nid]
            node.state = NodeState.COMPLETE
            for f in node.outputs:
                if exists(f):
                    # still needed by a node that has to run again
                    released = not f.is_deliverable and all(c.id in done for c in f.consumers)
                    f.state = FileState.COMPLETE if released else FileState.EXIST
                else:
                    f.state = FileState.DELETED

        return done
