import json
import time
from typing import Optional

from langchain_core.tools import tool

from src.eda import flows
from src.jobs.artifacts import summarize_layout
from src.jobs.models import JobState
from src.jobs.service import get_job_service
from src.remote.errors import RemoteError


def _error(exc: Exception) -> str:
    return f"Error: {exc}"


def _started_message(kind: str, top: str, pdk: str, freq_mhz: float, job_dir: str) -> str:
    return (
        f"{kind} started. Design: {top}, PDK: {pdk}, Freq: {freq_mhz:g} MHz\n"
        f"Job directory: {job_dir}\n\n"
        f'Use get_job_status with job_dir="{job_dir}" to check progress and get results.'
    )


@tool
def design_chip(verilog: str, top_module: Optional[str] = None, pdk: str = "sky130",
                freq_mhz: float = 100, clock_port: str = "clk") -> str:
    """
    Starts the full RTL-to-GDSII flow (synthesis + place & route) as a background job.
    Returns immediately with a job directory. Use get_job_status to poll for results.
    Args:
        verilog: Complete Verilog source code for the design.
        top_module: Top-level module name. Auto-detected from the Verilog if omitted.
        pdk: Process design kit: sky130 (130nm), gf180mcu (180nm), asap7 (7nm predictive).
        freq_mhz: Target clock frequency in MHz.
        clock_port: Name of the clock port in the design.
    """
    if pdk not in flows.PDKS:
        return f"Error: Unsupported PDK '{pdk}'. Supported: {', '.join(flows.PDKS)}"
    try:
        handle = get_job_service().start_design(verilog, top_module, pdk, freq_mhz, clock_port)
    except RemoteError as exc:
        return _error(exc)
    top = top_module or flows.extract_top_module(verilog)
    return _started_message("Job", top, pdk, freq_mhz, handle.job_dir)


@tool
def design_chip_signoff(verilog: str, top_module: Optional[str] = None, pdk: str = "sky130",
                        freq_mhz: float = 100, clock_port: str = "clk") -> str:
    """
    Starts the full RTL-to-GDSII flow WITH signoff verification (DRC + LVS) as a background job.
    Returns immediately with a job directory. Use get_job_status to poll for results.
    Args:
        verilog: Complete Verilog source code for the design.
        top_module: Top-level module name. Auto-detected from the Verilog if omitted.
        pdk: Process design kit (sky130, gf180mcu, asap7).
        freq_mhz: Target clock frequency in MHz.
        clock_port: Name of the clock port.
    """
    if pdk not in flows.PDKS:
        return f"Error: Unsupported PDK '{pdk}'. Supported: {', '.join(flows.PDKS)}"
    try:
        handle = get_job_service().start_design(verilog, top_module, pdk, freq_mhz, clock_port, signoff=True)
    except RemoteError as exc:
        return _error(exc)
    top = top_module or flows.extract_top_module(verilog)
    return _started_message("Signoff job", top, pdk, freq_mhz, handle.job_dir)


@tool
def run_demo_design(design: str, freq_mhz: float = 100, pdk: str = "sky130") -> str:
    """
    Starts a pre-validated demo design as a background job.
    Available designs: picorv32 (RISC-V CPU, ~14K cells), uart_tx (~100 cells), alu_8bit (~255 cells).
    Args:
        design: Which demo design to run.
        freq_mhz: Target clock frequency in MHz.
        pdk: Process design kit (sky130, gf180mcu, asap7).
    """
    try:
        handle = get_job_service().start_demo(design, freq_mhz, pdk)
    except (RemoteError, ValueError) as exc:
        return _error(exc)
    return _started_message("Demo job", design, pdk, freq_mhz, handle.job_dir)


@tool
def get_job_status(job_dir: str) -> str:
    """
    Checks a background chip design job started by design_chip, design_chip_signoff or run_demo_design.
    Returns results when complete, elapsed time while running, or the captured error output if it failed.
    Args:
        job_dir: The job directory returned when the job was started.
    """
    try:
        status = get_job_service().status(job_dir)
    except RemoteError as exc:
        return _error(exc)

    if status.state is JobState.RUNNING:
        return (
            f"Job is still running. Elapsed: {status.elapsed_sec}s\n"
            f"Job directory: {job_dir}\n\n"
            f"Call get_job_status again in ~{status.poll_after_sec}s to check progress."
        )

    if status.state is JobState.FAILED:
        return f"Job FAILED after {status.elapsed_sec}s.\n\n{status.output or 'No output available.'}"

    meta = status.meta
    design_name = meta.design_name if meta and meta.design_name else "unknown"
    pdk = meta.pdk if meta and meta.pdk else "unknown"
    stats = status.stats
    card = {
        "designName": design_name,
        "pdk": flows.PDK_LABELS.get(pdk, pdk),
        "cells": stats.get("cells") or stats.get("instances") or "N/A",
        "area": stats.get("area", "N/A"),
        "wns": stats.get("wns", "N/A"),
        "duration": stats.get("duration", f"{status.elapsed_sec}s"),
        "hasGds": status.artifact_present,
        "jobDir": job_dir,
        "filename": design_name.replace(" (demo)", ""),
    }
    return (
        f"Job COMPLETED in {status.elapsed_sec}s.\n"
        f"Design: {card['designName']} | PDK: {card['pdk']} | Cells: {card['cells']} | "
        f"Area: {card['area']} | WNS: {card['wns']} | GDS: {'yes' if card['hasGds'] else 'no'}\n\n"
        f"{json.dumps(card, indent=2)}"
    )


@tool
def synthesize(verilog: str, top_module: Optional[str] = None, pdk: str = "sky130") -> str:
    """
    Synthesizes Verilog to a gate-level netlist (Yosys) and waits for the result.
    Faster than design_chip since it skips place & route.
    Args:
        verilog: Complete Verilog source code.
        top_module: Top-level module name. Auto-detected if omitted.
        pdk: Process design kit (sky130, gf180mcu, asap7).
    """
    try:
        return get_job_service().synthesize(verilog, top_module, pdk)
    except RemoteError as exc:
        return _error(exc)


@tool
def simulate(verilog: str, testbench: str) -> str:
    """
    Simulates a Verilog design with a testbench using Icarus Verilog.
    The testbench should use $finish to end simulation.
    Args:
        verilog: Complete Verilog source code for the design under test.
        testbench: Testbench that instantiates the design, drives inputs and checks outputs with $display.
    """
    try:
        return get_job_service().simulate(verilog, testbench)
    except RemoteError as exc:
        return _error(exc)


@tool
def fpga_synthesize(verilog: str, top_module: Optional[str] = None, fpga: str = "ice40") -> str:
    """
    Synthesizes Verilog for an FPGA with Yosys and reports resource utilization (LUTs, flip-flops, BRAMs).
    Args:
        verilog: Complete Verilog source code.
        top_module: Top-level module name. Auto-detected if omitted.
        fpga: FPGA target: ice40 (Lattice iCE40), ecp5 (Lattice ECP5), xilinx (Xilinx 7-series).
    """
    try:
        return get_job_service().fpga_synthesize(verilog, top_module, fpga)
    except (RemoteError, ValueError) as exc:
        return _error(exc)


@tool
def estimate_ppa(cells: int, pdk: str = "sky130", freq_mhz: float = 100) -> str:
    """
    Quick power-performance-area estimate from a cell count. Runs no tools and returns instantly.
    Args:
        cells: Estimated number of standard cells.
        pdk: Process design kit (sky130, gf180mcu, asap7).
        freq_mhz: Target clock frequency in MHz.
    """
    return flows.format_ppa(flows.estimate_ppa(cells, pdk, freq_mhz))


@tool
def download_gdsii(job_dir: str, filename: str = "design") -> str:
    """
    Returns the GDSII layout of a completed job as a base64 data URL.
    Args:
        job_dir: The job directory of a completed design_chip run.
        filename: Base filename for the downloaded .gds file.
    """
    b64 = get_job_service().artifacts.gds_base64(job_dir)
    if not b64:
        return f"No GDSII file found in {job_dir}"
    return json.dumps({
        "message": f"GDSII file ready: {filename}.gds",
        "filename": f"{filename}.gds",
        "dataUrl": f"data:application/octet-stream;base64,{b64}",
    })


@tool
def view_chip_3d(job_dir: str) -> str:
    """
    Extracts the chip layout of a completed job with KLayout and renders it to an image.
    Call this AFTER get_job_status reports completion.
    Args:
        job_dir: The job directory of a completed design_chip run.
    """
    fetcher = get_job_service().artifacts
    layout = fetcher.layout_3d(job_dir)
    if not layout:
        return "No GDSII file found. Run design_chip first."
    info = summarize_layout(layout)
    summary = (
        f"Chip Layout: {info['die_w']:.1f} x {info['die_h']:.1f} um die, "
        f"{info['layers']} layers, {info['polygons']} polygons"
    )
    png = fetcher.layout_png_base64(job_dir)
    if not png:
        return summary + "\n(Image rendering failed -- PIL may not be installed on the execution host)"
    return json.dumps({"summary": summary, "image_base64": png, **info})


@tool
def wait_for_job(job_dir: str, max_wait_sec: int = 120) -> str:
    """
    Polls a background job until it finishes or max_wait_sec passes, following the recommended backoff.
    Args:
        job_dir: The job directory returned when the job was started.
        max_wait_sec: Upper bound on the total wait (capped at 600 seconds).
    """
    max_wait_sec = max(1, min(int(max_wait_sec), 600))
    deadline = time.time() + max_wait_sec
    service = get_job_service()
    while True:
        try:
            status = service.status(job_dir)
        except RemoteError as exc:
            return _error(exc)
        remaining = deadline - time.time()
        if status.state.terminal or remaining <= 0:
            data = status.to_dict()
            data["timed_out"] = not status.state.terminal
            return json.dumps(data)
        time.sleep(max(1, min(status.poll_after_sec or 1, remaining)))


# Tools exposed over MCP, in listing order
mcp_tools = [
    design_chip,
    design_chip_signoff,
    run_demo_design,
    get_job_status,
    wait_for_job,
    synthesize,
    simulate,
    fpga_synthesize,
    estimate_ppa,
    download_gdsii,
    view_chip_3d,
]
