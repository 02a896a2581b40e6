# tests/test_local_backend.py

import time

import pytest

from flowrun import build_dag, rule, wf
from flowrun.backends.local import LocalBackend
from flowrun.config import EngineConfig
from flowrun.engine import run_workflow
from flowrun.errors import BackendBusy, SubmitError
from flowrun.model import BatchTask, Resources


def wait_for(backend, deadline=10.0):
    end = time.monotonic() + deadline
    results = []
    while not results and time.monotonic() < end:
        results = backend.poll(timeout=0.5)
    return results


def test_runs_command_in_workdir(tmp_path):
    backend = LocalBackend(slots=2, workdir=tmp_path)
    handle = backend.submit(BatchTask(node_id=1, command="echo hello > out.txt"))

    [result] = wait_for(backend)

    assert result.handle == handle
    assert result.ok
    assert (tmp_path / "out.txt").read_text() == "hello\n"
    assert backend.outstanding() == 0


def test_reports_exit_status(tmp_path):
    backend = LocalBackend(workdir=tmp_path)
    backend.submit(BatchTask(node_id=1, command="exit 3"))

    [result] = wait_for(backend)

    assert result.exit_status == 3
    assert result.exited_normally
    assert not result.ok


def test_signal_death_is_not_a_normal_exit(tmp_path):
    backend = LocalBackend(workdir=tmp_path)
    backend.submit(BatchTask(node_id=1, command="kill -9 $$"))

    [result] = wait_for(backend)

    assert not result.exited_normally
    assert result.exit_status == 9


def test_task_env_is_passed(tmp_path):
    backend = LocalBackend(workdir=tmp_path)
    backend.submit(BatchTask(node_id=1, command='printf "%s" "$GREETING" > env.txt', env={"GREETING": "hi"}))
    wait_for(backend)
    assert (tmp_path / "env.txt").read_text() == "hi"


def test_full_backend_is_busy(tmp_path):
    backend = LocalBackend(slots=1, workdir=tmp_path)
    handle = backend.submit(BatchTask(node_id=1, command="sleep 30"))
    try:
        assert not backend.can_submit(BatchTask(node_id=2, command="true"))
        with pytest.raises(BackendBusy):
            backend.submit(BatchTask(node_id=2, command="true"))
    finally:
        assert backend.cancel(handle) is True
    assert backend.outstanding() == 0
    assert backend.poll() == []
    assert backend.can_submit(BatchTask(node_id=2, command="true"))


def test_oversized_task_runs_alone(tmp_path):
    backend = LocalBackend(slots=1, workdir=tmp_path)
    backend.submit(BatchTask(node_id=1, command="true", resources=Resources(cores=4)))
    assert backend.outstanding() == 1
    wait_for(backend)


def test_missing_cwd_is_submit_error(tmp_path):
    backend = LocalBackend(workdir=tmp_path)
    with pytest.raises(SubmitError):
        backend.submit(BatchTask(node_id=1, command="true", cwd="does-not-exist"))


def test_cancel_unknown_handle(tmp_path):
    assert LocalBackend(workdir=tmp_path).cancel(42) is False


def test_poll_timeout_is_bounded(tmp_path):
    backend = LocalBackend(workdir=tmp_path)
    handle = backend.submit(BatchTask(node_id=1, command="sleep 30"))
    start = time.monotonic()
    assert backend.poll(timeout=0.2) == []
    assert time.monotonic() - start < 5
    backend.cancel(handle)


def test_end_to_end_with_real_commands(tmp_path):
    (tmp_path / "in.txt").write_text("hello\n")
    config = EngineConfig(workdir=str(tmp_path), poll_interval=0.1, max_local_jobs=2)

    summary = run_workflow(
        lambda: build_dag(wf(
            rule("cp in.txt tmp.dat", inputs=["in.txt"], outputs=["tmp.dat"]),
            rule("tr a-z A-Z < tmp.dat > out.txt", inputs=["tmp.dat"], outputs=["out.txt"]),
        )),
        config=config,
    )

    assert summary.ok
    assert (tmp_path / "out.txt").read_text() == "HELLO\n"
    assert not (tmp_path / "tmp.dat").exists()
    assert (tmp_path / "in.txt").exists()
