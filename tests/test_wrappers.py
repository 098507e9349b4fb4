import json

import pytest

from src.jobs.models import FailureKind, JobHandle, JobMetadata, JobState, JobStatus
from src.jobs.service import set_job_service
from src.remote.errors import RemoteConnectionError
from src.tools import wrappers


class FakeArtifacts:
    def __init__(self, gds=None, layout=None, png=None):
        self.gds = gds
        self.layout = layout
        self.png = png

    def gds_base64(self, job_dir):
        return self.gds

    def layout_3d(self, job_dir):
        return self.layout

    def layout_png_base64(self, job_dir):
        return self.png


class FakeService:
    def __init__(self, statuses=(), artifacts=None):
        self.statuses = list(statuses)
        self.artifacts = artifacts or FakeArtifacts()
        self.started = []

    def start_design(self, verilog, top_module=None, pdk="sky130", freq_mhz=100, clock_port="clk", signoff=False):
        self.started.append((top_module, pdk, freq_mhz, signoff))
        return JobHandle(job_id="abc", job_dir="/tmp/mcp_jobs/abc")

    def start_demo(self, design, freq_mhz=100, pdk="sky130"):
        if design != "uart_tx":
            raise ValueError(f"Unknown demo design '{design}'")
        return JobHandle(job_id="demo", job_dir="/tmp/mcp_jobs/demo_uart_tx_x")

    def status(self, job):
        if isinstance(self.statuses[0], Exception):
            raise self.statuses[0]
        return self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]


@pytest.fixture
def use_service():
    def _install(service):
        set_job_service(service)
        return service
    yield _install
    set_job_service(None)


META = JobMetadata(tool="design-chip", design_name="counter", pdk="sky130", freq="100", start_time_ms=0)


def test_design_chip_returns_job_dir(use_service):
    service = use_service(FakeService())
    msg = wrappers.design_chip.invoke({"verilog": "module counter; endmodule", "pdk": "gf180mcu"})
    assert "Job directory: /tmp/mcp_jobs/abc" in msg
    assert "Design: counter" in msg
    assert service.started == [(None, "gf180mcu", 100, False)]


def test_design_chip_rejects_unknown_pdk(use_service):
    service = use_service(FakeService())
    msg = wrappers.design_chip_signoff.invoke({"verilog": "module x; endmodule", "pdk": "tsmc5"})
    assert msg.startswith("Error: Unsupported PDK")
    assert service.started == []


def test_run_demo_design_unknown(use_service):
    use_service(FakeService())
    assert wrappers.run_demo_design.invoke({"design": "z80"}).startswith("Error:")
    assert "demo_uart_tx_x" in wrappers.run_demo_design.invoke({"design": "uart_tx"})


def test_get_job_status_running(use_service):
    use_service(FakeService([JobStatus(state=JobState.RUNNING, elapsed_sec=12, poll_after_sec=10)]))
    msg = wrappers.get_job_status.invoke({"job_dir": "/tmp/mcp_jobs/abc"})
    assert msg.startswith("Job is still running. Elapsed: 12s")
    assert "~10s" in msg


def test_get_job_status_failed(use_service):
    status = JobStatus(state=JobState.FAILED, elapsed_sec=3, output="Exit code 2.\nERROR: x",
                       exit_code=2, failure_kind=FailureKind.NONZERO_EXIT)
    use_service(FakeService([status]))
    msg = wrappers.get_job_status.invoke({"job_dir": "/tmp/mcp_jobs/abc"})
    assert msg == "Job FAILED after 3s.\n\nExit code 2.\nERROR: x"


def test_get_job_status_completed_card(use_service):
    status = JobStatus(state=JobState.COMPLETED, elapsed_sec=40, stats={"cells": "255", "area": "900"},
                       artifact_present=True, exit_code=0, meta=META)
    use_service(FakeService([status]))
    msg = wrappers.get_job_status.invoke({"job_dir": "/tmp/mcp_jobs/abc"})
    card = json.loads(msg[msg.index("{"):])
    assert card["designName"] == "counter"
    assert card["pdk"] == "Sky130 130nm"
    assert card["cells"] == "255"
    assert card["wns"] == "N/A"
    assert card["duration"] == "40s"
    assert card["hasGds"] is True


def test_get_job_status_transport_error(use_service):
    use_service(FakeService([RemoteConnectionError("host unreachable")]))
    assert wrappers.get_job_status.invoke({"job_dir": "/x"}) == "Error: host unreachable"


def test_wait_for_job_follows_backoff(use_service, monkeypatch):
    slept = []
    monkeypatch.setattr(wrappers.time, "sleep", lambda s: slept.append(s))
    use_service(FakeService([
        JobStatus(state=JobState.RUNNING, elapsed_sec=1, poll_after_sec=5),
        JobStatus(state=JobState.COMPLETED, elapsed_sec=6, exit_code=0, meta=META),
    ]))
    data = json.loads(wrappers.wait_for_job.invoke({"job_dir": "/tmp/mcp_jobs/abc", "max_wait_sec": 60}))
    assert data["state"] == "completed"
    assert data["timed_out"] is False
    assert slept == [5]


def test_estimate_ppa_tool():
    msg = wrappers.estimate_ppa.invoke({"cells": 1000})
    assert msg.startswith("PPA Estimate (sky130, 1000 cells @ 100 MHz)")


def test_download_gdsii(use_service):
    use_service(FakeService(artifacts=FakeArtifacts(gds="QUJD" * 40)))
    data = json.loads(wrappers.download_gdsii.invoke({"job_dir": "/j", "filename": "counter"}))
    assert data["filename"] == "counter.gds"
    assert data["dataUrl"].startswith("data:application/octet-stream;base64,QUJD")

    use_service(FakeService())
    assert wrappers.download_gdsii.invoke({"job_dir": "/j"}) == "No GDSII file found in /j"


def test_view_chip_3d_without_image(use_service):
    layout = {"die": {"w": 100, "h": 50}, "layers": [{"polygons": [1, 2]}, {"polygons": [3]}]}
    use_service(FakeService(artifacts=FakeArtifacts(layout=layout)))
    msg = wrappers.view_chip_3d.invoke({"job_dir": "/j"})
    assert msg.startswith("Chip Layout: 100.0 x 50.0 um die, 2 layers, 3 polygons")
    assert "Image rendering failed" in msg


def test_mcp_tool_list():
    names = [t.name for t in wrappers.mcp_tools]
    assert names[:4] == ["design_chip", "design_chip_signoff", "run_demo_design", "get_job_status"]
    assert len(names) == len(set(names))
