# bundle.py
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple

from .dag import Dag
from .dsl import dump_workflow

# upper bound on counter suffixes tried for one name
MAX_RENAME_ATTEMPTS = 10_000


@dataclass
class NameTranslator:
    """
    Maps workflow file names to names that are safe inside a bundle.

    Relative names are kept. Absolute names are reduced to their base name;
    when that clashes with a name already taken, a counter is appended
    (data.txt -> data.txt1 -> data.txt2 ...) until neither table has it.

    forward: original name -> bundle name
    reverse: bundle name   -> original name
    """
    forward: Dict[str, str] = field(default_factory=dict)
    reverse: Dict[str, str] = field(default_factory=dict)

    def _taken(self, name: str) -> bool:
        return name in self.forward or name in self.reverse

    def translate(self, filename: str) -> str:
        known = self.forward.get(filename)
        if known is not None:
            return known

        absolute = os.path.isabs(filename)
        base = os.path.basename(filename.rstrip("/")) if absolute else filename

        for counter in range(MAX_RENAME_ATTEMPTS):
            candidate = f"{base}{counter}" if counter else base
            if self._taken(candidate):
                continue
            self.forward[filename] = candidate
            self.reverse[candidate] = filename
            return candidate

        raise RuntimeError(f"could not find a free bundle name for {filename!r}")

    __call__ = translate


def bundle_workflow(
    dag: Dag,
    bundle_dir: str | Path,
    *,
    workflow_name: str = "workflow.py",
    source_root: str | Path = ".",
    translator: NameTranslator | None = None,
) -> List[Tuple[str, str]]:
    """
    Copy the workflow's input files into `bundle_dir` under collision-free
    relative names and write a rewritten workflow file next to them.

    Returns (original, bundled) name pairs for the inputs.
    """
    tr = translator if translator is not None else NameTranslator()
    out_dir = Path(bundle_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    root = Path(source_root)

    pairs: List[Tuple[str, str]] = []
    for f in dag.input_files():
        new_name = tr.translate(f.path)
        src = root / f.path
        dest = out_dir / new_name
        dest.parent.mkdir(parents=True, exist_ok=True)
        if src.is_dir():
            shutil.copytree(src, dest, dirs_exist_ok=True)
        elif src.exists():
            shutil.copy2(src, dest)
        pairs.append((f.path, new_name))

    dump_workflow(dag, out_dir / workflow_name, rename=tr.translate)
    return pairs
