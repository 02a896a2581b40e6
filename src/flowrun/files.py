# files.py
from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Callable, Dict, FrozenSet, List

from .dag import Dag
from .errors import DagBuildError, HookAbort, InvalidTransition
from .hooks import DispatchResult, HookRegistry
from .model import File, FileState, Node
from .ui.console import get_console

# ---------------------------------------------------------------------
# File lifecycle
# ---------------------------------------------------------------------
#   CREATE -> EXPECT -> EXIST -> COMPLETE -> CLEAN -> DELETED
#
# Source files (no producer) that are on disk at load jump straight to EXIST.
# A node retry re-expects its outputs; that is the only backwards move.
# ---------------------------------------------------------------------

_FORWARD: Dict[FileState, FrozenSet[FileState]] = {
    FileState.CREATE: frozenset({FileState.EXPECT, FileState.EXIST}),
    FileState.EXPECT: frozenset({FileState.EXIST}),
    FileState.EXIST: frozenset({FileState.COMPLETE}),
    FileState.COMPLETE: frozenset({FileState.CLEAN}),
    FileState.CLEAN: frozenset({FileState.DELETED}),
    FileState.DELETED: frozenset(),
}


class FileTracker:
    """
    Owns every file state change and the garbage-collection sweep.

    Each transition dispatches its hook first and commits only if every hook
    succeeded; a failing hook raises HookAbort and leaves the state untouched.
    """

    def __init__(
        self,
        dag: Dag,
        hooks: HookRegistry,
        root: str | Path = ".",
        journal=None,
    ):
        self.dag = dag
        self.hooks = hooks
        self.root = Path(root)
        self.journal = journal

    # ------------------------------------------------------------------
    # Backing store
    # ------------------------------------------------------------------

    def location(self, f: File) -> Path:
        return self.root / f.path

    def exists(self, f: File) -> bool:
        return self.location(f).exists()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _move(
        self,
        f: File,
        new: FileState,
        dispatch: Callable[[File], DispatchResult],
    ) -> None:
        rc = dispatch(f)
        if not rc:
            raise HookAbort(rc.event, rc.hook or "?", target=f.path)
        f.state = new
        if self.journal is not None:
            self.journal.record_file(f)

    def _advance(self, f: File, new: FileState, dispatch: Callable[[File], DispatchResult]) -> None:
        if new not in _FORWARD[f.state]:
            raise InvalidTransition(f"file {f.path}", f.state.value, new.value)
        self._move(f, new, dispatch)

    def initialize(self, *, require_sources: bool = True) -> None:
        """
        Announce every file and settle source inputs.

        Missing source inputs are a build error: nothing in the run can
        produce them.
        """
        missing: List[str] = []
        for _, f in sorted(self.dag.files.items()):
            if f.state is not FileState.CREATE:
                # restored from a journal
                continue
            rc = self.hooks.dispatch_file_create(f)
            if not rc:
                raise HookAbort(rc.event, rc.hook or "?", target=f.path)
            if f.is_source:
                if self.exists(f):
                    self.mark_exist(f)
                else:
                    missing.append(f.path)

        if missing and require_sources:
            raise DagBuildError(f"required input files do not exist: {missing}", files=missing)

    def expect(self, f: File) -> None:
        if f.state is FileState.EXPECT:
            return
        if f.state is FileState.CREATE:
            self._advance(f, FileState.EXPECT, self.hooks.dispatch_file_expect)
        else:
            self.invalidate(f)

    def invalidate(self, f: File) -> None:
        """Forget an output so its producer can run again."""
        if f.is_source:
            raise InvalidTransition(f"file {f.path}", f.state.value, FileState.EXPECT.value)
        self._move(f, FileState.EXPECT, self.hooks.dispatch_file_expect)

    def mark_exist(self, f: File) -> None:
        self._advance(f, FileState.EXIST, self.hooks.dispatch_file_exist)

    def expect_outputs(self, node: Node) -> None:
        for f in node.outputs:
            self.expect(f)

    def verify_outputs(self, node: Node) -> List[str]:
        """
        Check a finished node's outputs on the backing store.

        Present files move to EXIST; the paths still missing are returned and
        stay EXPECT.
        """
        missing = [f.path for f in node.outputs if not self.exists(f)]
        if missing:
            return missing
        for f in node.outputs:
            self.verify(f)
        return []

    def verify(self, f: File) -> bool:
        """EXPECT -> EXIST if the file is on the backing store."""
        if not self.exists(f):
            return False
        if f.state is not FileState.EXIST:
            self.mark_exist(f)
        return True

    # ------------------------------------------------------------------
    # Reference counting / garbage collection
    # ------------------------------------------------------------------

    @staticmethod
    def refcount(f: File) -> int:
        """Consumers that may still read the file."""
        return sum(1 for c in f.consumers if not c.state.terminal)

    def release_inputs(self, node: Node) -> List[File]:
        """
        Called once `node` is finished for good. Inputs nobody else needs
        move EXIST -> COMPLETE; deliverables stay EXIST.
        """
        released: List[File] = []
        for f in node.inputs:
            if f.state is FileState.EXIST and not f.is_deliverable and self.refcount(f) == 0:
                self._advance(f, FileState.COMPLETE, self.hooks.dispatch_file_complete)
                released.append(f)
        return released

    def sweep(self) -> List[File]:
        """
        Garbage-collect intermediate files nobody needs any more.

        Safe to call at any time and any number of times; DELETED files are
        skipped. Returns the files deleted by this pass.
        """
        deleted: List[File] = []
        for _, f in sorted(self.dag.files.items()):
            if f.state is FileState.DELETED or not f.collectable:
                continue
            if self.refcount(f) != 0:
                continue

            if f.state is FileState.EXIST:
                self._advance(f, FileState.COMPLETE, self.hooks.dispatch_file_complete)
            if f.state is FileState.COMPLETE:
                self._advance(f, FileState.CLEAN, self.hooks.dispatch_file_clean)
            if f.state is FileState.CLEAN and self._remove(f):
                self._advance(f, FileState.DELETED, self.hooks.dispatch_file_deleted)
                get_console().print_file_deleted(f.path)
                deleted.append(f)
        return deleted

    def _remove(self, f: File) -> bool:
        """Delete from disk; a failure is reported and retried next sweep."""
        p = self.location(f)
        try:
            if p.is_dir() and not p.is_symlink():
                shutil.rmtree(p)
            else:
                os.remove(p)
        except FileNotFoundError:
            return True
        except OSError as e:
            get_console().print_file_delete_failed(f.path, str(e))
            return False
        return True

    def clean_outputs(self) -> List[File]:
        """
        Clean mode: remove every produced file regardless of state.

        Source inputs are never touched.
        """
        removed: List[File] = []
        for f in self.dag.output_files():
            if f.state is FileState.DELETED:
                continue
            self._move(f, FileState.CLEAN, self.hooks.dispatch_file_clean)
            if self._remove(f):
                self._move(f, FileState.DELETED, self.hooks.dispatch_file_deleted)
                get_console().print_file_deleted(f.path)
                removed.append(f)
        return removed

    def pending_deletions(self) -> List[str]:
        return [f.path for _, f in sorted(self.dag.files.items()) if f.state is FileState.CLEAN]
