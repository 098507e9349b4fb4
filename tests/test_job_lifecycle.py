"""
End-to-end launch/poll tests. LocalChannel gives the same contract as the SSH
channel, so these run real detached processes on this machine.
"""

import json
import os
import signal
import time

import pytest

from src.jobs.launcher import JobLauncher, build_detached_script
from src.jobs.models import FailureKind, JobState
from src.jobs.poller import StatusPoller
from src.remote.errors import JobLaunchError
from src.remote.local import LocalChannel


@pytest.fixture
def channel():
    return LocalChannel()


@pytest.fixture
def job_dir(tmp_path):
    return str(tmp_path / "job1")


def _wait_terminal(poller, job_dir, timeout=10.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        status = poller.status(job_dir)
        if status.state.terminal:
            return status
        time.sleep(0.1)
    raise AssertionError(f"job in {job_dir} did not finish within {timeout}s")


def test_detached_script_records_exit_through_rename():
    script = build_detached_script("/tmp/jobs/x", "echo hi")
    assert "trap _record_exit EXIT" in script
    assert "mv -f /tmp/jobs/x/exit_code.tmp /tmp/jobs/x/exit_code" in script
    assert "> /tmp/jobs/x/output.log 2>&1" in script


def test_start_returns_quickly_and_job_completes(channel, job_dir):
    launcher = JobLauncher(channel)
    poller = StatusPoller(channel)

    t0 = time.monotonic()
    handle = launcher.start(job_dir, "sleep 2 && exit 0", {"tool": "test", "designName": "counter"})
    # Two short shell round trips; the job itself runs detached.
    assert time.monotonic() - t0 < 0.2
    assert handle.job_dir == job_dir
    assert handle.job_id == "job1"

    time.sleep(0.5)
    running = poller.status(job_dir)
    assert running.state is JobState.RUNNING
    assert running.meta.design_name == "counter"
    assert running.poll_after_sec == 5

    time.sleep(2.5)
    done = _wait_terminal(poller, job_dir)
    assert done.state is JobState.COMPLETED
    assert done.exit_code == 0
    with open(os.path.join(job_dir, "exit_code")) as f:
        assert f.read().strip() == "0"
    assert not os.path.exists(os.path.join(job_dir, "exit_code.tmp"))


def test_layout_on_disk(channel, job_dir):
    JobLauncher(channel, clock=lambda: 1700000000.0).start(job_dir, "true", {"tool": "design-chip", "pdk": "sky130"})
    _wait_terminal(StatusPoller(channel), job_dir)

    with open(os.path.join(job_dir, "meta.json")) as f:
        meta = json.load(f)
    assert meta["tool"] == "design-chip"
    assert meta["pdk"] == "sky130"
    assert meta["startTime"] == 1700000000000
    assert meta["status"] == "running"
    assert os.path.isdir(os.path.join(job_dir, "output"))
    with open(os.path.join(job_dir, "pid")) as f:
        assert f.read().strip().isdigit()


def test_nonzero_exit_is_failed_with_code(channel, job_dir):
    JobLauncher(channel).start(job_dir, "echo 'ERROR: bad netlist'; exit 7")
    status = _wait_terminal(StatusPoller(channel), job_dir)
    assert status.state is JobState.FAILED
    assert status.failure_kind is FailureKind.NONZERO_EXIT
    assert status.exit_code == 7
    assert "7" in status.output
    assert "ERROR: bad netlist" in status.output


def test_killed_job_is_failed(channel, job_dir):
    JobLauncher(channel).start(job_dir, "echo started; sleep 30")
    poller = StatusPoller(channel)
    time.sleep(0.3)
    assert poller.status(job_dir).state is JobState.RUNNING

    with open(os.path.join(job_dir, "pid")) as f:
        pid = int(f.read().strip())
    os.kill(pid, signal.SIGKILL)

    status = _wait_terminal(poller, job_dir, timeout=5)
    assert status.state is JobState.FAILED
    assert status.failure_kind is FailureKind.PROCESS_DIED
    assert "Process died unexpectedly" in status.output
    assert not os.path.exists(os.path.join(job_dir, "exit_code"))


def test_stats_and_artifact_on_success(channel, job_dir):
    command = (
        "printf 'Cells: 1234\\nArea: 56789\\nWNS: -0.05\\nDuration: 12.3s\\nFlow completed\\n'; "
        f"touch {job_dir}/output/chip.gds"
    )
    JobLauncher(channel).start(job_dir, command)
    status = _wait_terminal(StatusPoller(channel), job_dir)
    assert status.state is JobState.COMPLETED
    assert status.stats == {
        "cells": "1234",
        "area": "56789",
        "wns": "-0.05",
        "duration": "12.3s",
        "status": "completed",
    }
    assert status.artifact_present is True
    assert "Flow completed" in status.output


def test_polling_is_idempotent_and_monotonic(channel, job_dir):
    JobLauncher(channel).start(job_dir, "echo 'Cells: 5'")
    poller = StatusPoller(channel)
    first = _wait_terminal(poller, job_dir)
    second = poller.status(job_dir)
    assert (first.state, first.stats) == (second.state, second.stats)
    assert second.elapsed_sec >= first.elapsed_sec

    # Removing the marker afterwards must not revive the job.
    os.remove(os.path.join(job_dir, "exit_code"))
    assert poller.status(job_dir).state is JobState.COMPLETED


def test_status_survives_a_new_poller(channel, job_dir):
    JobLauncher(channel).start(job_dir, "exit 3")
    _wait_terminal(StatusPoller(channel), job_dir)
    fresh = StatusPoller(channel).status(job_dir)
    assert fresh.state is JobState.FAILED
    assert fresh.exit_code == 3


def test_metadata_is_write_once(channel, job_dir):
    launcher = JobLauncher(channel)
    launcher.start(job_dir, "true")
    with pytest.raises(JobLaunchError):
        launcher.start(job_dir, "true")


def test_unknown_job_dir_is_failed(channel, tmp_path):
    status = StatusPoller(channel).status(str(tmp_path / "never-started"))
    assert status.state is JobState.FAILED
    assert "No job metadata or pid found" in status.output


def test_launch_that_never_recorded_a_pid_fails(channel, job_dir):
    # Metadata written, spawn never happened (e.g. the launch connection dropped).
    os.makedirs(os.path.join(job_dir, "output"))
    with open(os.path.join(job_dir, "meta.json"), "w") as f:
        json.dump({"tool": "design-chip", "startTime": 0, "status": "running"}, f)

    status = StatusPoller(channel).status(job_dir)
    assert status.state is JobState.FAILED
    assert status.failure_kind is FailureKind.PROCESS_DIED
    assert "never recorded a pid" in status.output
