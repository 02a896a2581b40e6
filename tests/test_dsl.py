# tests/test_dsl.py

import textwrap

import pytest

from flowrun import build_dag, load_workflow, rule, wf
from flowrun.dsl import dump_workflow, load_rules
from flowrun.errors import DagBuildError, WorkflowLoadError


def write(tmp_path, name, body):
    path = tmp_path / name
    path.write_text(textwrap.dedent(body))
    return path


def test_rule_validates_deliverables():
    with pytest.raises(ValueError):
        rule("x", outputs=["a"], deliver=["b"])


def test_rule_rejects_empty_command():
    with pytest.raises(ValueError):
        rule("   ")


def test_local_pins_queue():
    assert rule("x", local=True).queue == "local"
    with pytest.raises(ValueError):
        rule("x", local=True, queue="remote")


def test_ids_follow_definition_order():
    dag = build_dag(wf(rule("a", outputs=["a"]), rule("b", outputs=["b"]), rule("c", outputs=["c"], node_id=10), rule("d")))
    assert sorted(dag.nodes) == [1, 2, 10, 11]


def test_build_dag_reports_bad_graphs():
    with pytest.raises(DagBuildError):
        build_dag(wf(rule("a", outputs=["x"]), rule("b", outputs=["x"])))


def test_unknown_deliverable_rejected():
    with pytest.raises(WorkflowLoadError):
        build_dag([rule("a", outputs=["x"])], deliverables=["nope"])


def test_load_workflow_function(tmp_path):
    path = write(tmp_path, "demo_workflow.py", """
        from flowrun import rule, wf

        def workflow():
            return wf(
                rule("sort in.txt > sorted.txt", inputs=["in.txt"], outputs=["sorted.txt"]),
                rule("uniq sorted.txt > uniq.txt", inputs=["sorted.txt"], outputs=["uniq.txt"], cores=2),
            )
    """)
    dag = load_workflow(path)
    assert [n.command for _, n in sorted(dag.nodes.items())] == ["sort in.txt > sorted.txt", "uniq sorted.txt > uniq.txt"]
    assert dag.nodes[2].resources.cores == 2
    assert [f.path for f in dag.input_files()] == ["in.txt"]


def test_load_rules_list_and_deliverables(tmp_path):
    path = write(tmp_path, "list_workflow.py", """
        from flowrun import rule

        RULES = [
            rule("gen", outputs=["a", "b"]),
            rule("use", inputs=["a"], outputs=["c"]),
        ]
        DELIVERABLES = ["a"]
    """)
    rules, deliverables = load_rules(path)
    assert len(rules) == 2
    assert deliverables == ["a"]
    assert load_workflow(path).files["a"].deliverable


def test_load_errors(tmp_path):
    with pytest.raises(WorkflowLoadError):
        load_workflow(tmp_path / "missing.py")
    with pytest.raises(WorkflowLoadError):
        load_workflow(write(tmp_path, "wf.txt", "RULES = []"))
    with pytest.raises(WorkflowLoadError):
        load_workflow(write(tmp_path, "broken.py", "raise RuntimeError('boom')"))
    with pytest.raises(WorkflowLoadError):
        load_workflow(write(tmp_path, "wrong.py", "RULES = ['not a rule']"))


def test_error_inside_workflow_function_is_a_load_error(tmp_path):
    path = write(tmp_path, "bad_workflow.py", """
        from flowrun import rule

        def workflow():
            return [rule("")]
    """)
    with pytest.raises(WorkflowLoadError) as exc:
        load_workflow(path)
    assert "rule() needs a command" in exc.value.message


def test_dump_workflow_round_trips_attributes(tmp_path):
    dag = build_dag(wf(
        rule("gen", outputs=["a"], deliver=["a"], env={"N": 3}, memory=512),
        rule("use", inputs=["a"], outputs=["b"], queue="remote", cores=4),
    ))
    path = tmp_path / "dumped.py"
    dump_workflow(dag, path)

    again = load_workflow(path)
    assert again.files["a"].deliverable
    assert again.nodes[1].env == {"N": "3"}
    assert again.nodes[1].resources.memory == 512
    assert again.nodes[2].queue == "remote"
    assert again.nodes[2].resources.cores == 4
