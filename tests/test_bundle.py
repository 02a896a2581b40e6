# tests/test_bundle.py

import pytest

from flowrun import build_dag, load_workflow, rule, wf
from flowrun import bundle as bundle_mod
from flowrun.bundle import NameTranslator, bundle_workflow


def test_relative_names_are_kept():
    tr = NameTranslator()
    assert tr.translate("data/in.txt") == "data/in.txt"
    assert tr.forward == {"data/in.txt": "data/in.txt"}
    assert tr.reverse == {"data/in.txt": "data/in.txt"}


def test_absolute_names_collapse_to_basename_with_counter():
    tr = NameTranslator()
    assert tr("/a/data.txt") == "data.txt"
    assert tr("/b/data.txt") == "data.txt1"
    assert tr("/c/data.txt") == "data.txt2"
    # stable on repeat
    assert tr("/b/data.txt") == "data.txt1"
    assert tr.reverse["data.txt1"] == "/b/data.txt"


def test_relative_name_clashing_with_bundled_absolute():
    tr = NameTranslator()
    tr("/a/data.txt")
    assert tr("data.txt") == "data.txt1"


def test_translator_gives_up_after_bounded_attempts(monkeypatch):
    monkeypatch.setattr(bundle_mod, "MAX_RENAME_ATTEMPTS", 3)
    tr = NameTranslator()
    for d in "abc":
        tr(f"/{d}/x")
    with pytest.raises(RuntimeError):
        tr("/d/x")


def test_bundle_copies_inputs_and_rewrites_workflow(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "in.txt").write_text("payload")
    (tmp_path / "local.cfg").write_text("cfg")
    absolute = str(src / "in.txt")

    dag = build_dag(wf(
        rule(f"cat {absolute} local.cfg > out.txt", inputs=[absolute, "local.cfg"], outputs=["out.txt"]),
    ))
    out = tmp_path / "bundle"

    pairs = bundle_workflow(dag, out, source_root=tmp_path)

    assert dict(pairs) == {absolute: "in.txt", "local.cfg": "local.cfg"}
    assert (out / "in.txt").read_text() == "payload"
    assert (out / "local.cfg").read_text() == "cfg"

    bundled = load_workflow(out / "workflow.py")
    node = bundled.nodes[1]
    assert node.command == "cat in.txt local.cfg > out.txt"
    assert sorted(f.path for f in node.inputs) == ["in.txt", "local.cfg"]
    assert [f.path for f in node.outputs] == ["out.txt"]
