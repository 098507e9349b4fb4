import logging
import posixpath
from typing import Optional

from src import config
from src.eda import flows
from src.jobs.artifacts import ArtifactFetcher
from src.jobs.launcher import JobLauncher, OUTPUT_DIRNAME, new_job_dir, new_job_id
from src.jobs.models import JobHandle, JobStatus
from src.jobs.poller import StatusPoller

logger = logging.getLogger(__name__)

INPUT_FILENAME = "input.v"


class JobService:
    """
    Upward interface used by the tool layer: start a flow, get a handle back
    immediately, poll it later. Also hosts the short blocking helpers that share
    the same channels (synthesis only, simulation, FPGA synthesis).
    """

    def __init__(self, channel, transfer, jobs_root: str = config.JOBS_ROOT,
                 launcher: Optional[JobLauncher] = None, poller: Optional[StatusPoller] = None):
        self.channel = channel
        self.transfer = transfer
        self.jobs_root = jobs_root
        self.launcher = launcher or JobLauncher(channel)
        self.poller = poller or StatusPoller(channel)
        self.artifacts = ArtifactFetcher(channel)

    # Background jobs

    def start(self, job_dir: str, command: str, **metadata) -> JobHandle:
        return self.launcher.start(job_dir, command, metadata)

    def status(self, job: "JobHandle | str") -> JobStatus:
        job_dir = job.job_dir if isinstance(job, JobHandle) else job
        return self.poller.status(job_dir)

    def start_design(self, verilog: str, top_module: Optional[str] = None, pdk: str = "sky130",
                     freq_mhz: float = 100, clock_port: str = "clk", signoff: bool = False) -> JobHandle:
        top = top_module or flows.extract_top_module(verilog)
        job_dir = new_job_dir(self.jobs_root)
        input_path = self.transfer.upload(job_dir, INPUT_FILENAME, verilog)
        logger.debug("Uploaded %s for %s", input_path, top)
        opts = flows.design_flow_options(
            input_path=input_path,
            top_module=top,
            output_dir=posixpath.join(job_dir, OUTPUT_DIRNAME),
            pdk=pdk,
            freq_mhz=freq_mhz,
            clock_port=clock_port,
            signoff=signoff,
        )
        return self.start(
            job_dir,
            flows.flow_command(opts),
            designName=top,
            pdk=pdk,
            freq=f"{freq_mhz:g}",
            tool="design-chip-signoff" if signoff else "design-chip",
        )

    def start_demo(self, design: str, freq_mhz: float = 100, pdk: str = "sky130") -> JobHandle:
        job_dir = new_job_dir(self.jobs_root, prefix=f"demo_{design}_")
        opts = flows.demo_flow_options(design, posixpath.join(job_dir, OUTPUT_DIRNAME), pdk, freq_mhz)
        return self.start(
            job_dir,
            flows.flow_command(opts),
            designName=f"{opts.top_module} (demo)",
            pdk=pdk,
            freq=f"{freq_mhz:g}",
            tool="run-demo-design",
        )

    # Blocking helpers

    def synthesize(self, verilog: str, top_module: Optional[str] = None, pdk: str = "sky130",
                   timeout: float = config.DEFAULT_COMMAND_TIMEOUT_SEC) -> str:
        top = top_module or flows.extract_top_module(verilog)
        job_dir = new_job_dir(self.jobs_root)
        input_path = self.transfer.upload(job_dir, INPUT_FILENAME, verilog)
        opts = flows.synth_only_options(input_path, top, posixpath.join(job_dir, OUTPUT_DIRNAME), pdk)
        return self.channel.execute(f"{flows.flow_command(opts)} 2>&1", timeout=timeout)

    def simulate(self, verilog: str, testbench: str, timeout: float = 30) -> str:
        job_dir = posixpath.join(config.SIM_ROOT, new_job_id())
        self.transfer.upload(job_dir, "design.v", verilog)
        self.transfer.upload(job_dir, "tb.v", testbench)
        return self.channel.execute(flows.simulate_command(job_dir), timeout=timeout)

    def fpga_synthesize(self, verilog: str, top_module: Optional[str] = None, fpga: str = "ice40",
                        timeout: float = 60) -> str:
        top = top_module or flows.extract_top_module(verilog)
        job_dir = posixpath.join(config.FPGA_ROOT, new_job_id())
        self.transfer.upload(job_dir, "design.v", verilog)
        output = self.channel.execute(flows.fpga_synth_command(job_dir, top, fpga), timeout=timeout)
        return flows.summarize_fpga_output(output, fpga)


_SERVICE: Optional[JobService] = None


def get_job_service() -> JobService:
    """Process-wide service built from config; tests replace it via set_job_service()."""
    global _SERVICE
    if _SERVICE is None:
        from src.remote.factory import ChannelFactory

        channel, transfer = ChannelFactory.create()
        _SERVICE = JobService(channel, transfer)
    return _SERVICE


def set_job_service(service: Optional[JobService]) -> None:
    global _SERVICE
    _SERVICE = service
