"""
Command lines for the external toolchain, and the small pure helpers that go
with them. Flags are passed through; nothing here interprets tool output.
"""

import math
import re
import shlex
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from src.config import DEMO_DESIGNS, ZYPHAR_BIN

PDKS = ("sky130", "gf180mcu", "asap7")
FPGA_TARGETS = ("ice40", "ecp5", "xilinx")

PDK_LABELS = {
    "sky130": "Sky130 130nm",
    "gf180mcu": "GF180MCU 180nm",
    "asap7": "ASAP7 7nm",
}

# (cell area um2, power mW per cell at 100 MHz, gate delay ns)
PPA_PARAMS: Dict[str, Tuple[float, float, float]] = {
    "sky130": (2.0, 0.01, 0.1),
    "gf180mcu": (1.6, 0.008, 0.085),
    "asap7": (0.5, 0.003, 0.05),
}

_MODULE_RE = re.compile(r"module\s+([a-zA-Z_][a-zA-Z0-9_]*)")


def extract_top_module(verilog: str) -> str:
    match = _MODULE_RE.search(verilog or "")
    return match.group(1) if match else "top"


def _path_arg(path: str) -> str:
    # Demo sources live under ~/, which must stay expandable.
    if path.startswith("~/"):
        return "~/" + shlex.quote(path[2:])
    return shlex.quote(path)


@dataclass
class FlowOptions:
    input_path: str
    top_module: str
    output_dir: str
    pdk: str = "sky130"
    freq_mhz: Optional[float] = None
    clock_port: Optional[str] = None
    gds: bool = True
    signoff: bool = False
    detailed_route: bool = False
    skip_pnr: bool = False
    no_pdn: bool = False
    utilization: Optional[float] = None


def flow_command(opts: FlowOptions, binary: str = ZYPHAR_BIN) -> str:
    parts = [
        binary, "flow",
        "-i", _path_arg(opts.input_path),
        "--top", shlex.quote(opts.top_module),
        "--pdk", shlex.quote(opts.pdk),
    ]
    if opts.freq_mhz is not None:
        parts += ["--freq", f"{opts.freq_mhz:g}"]
    if opts.clock_port:
        parts += ["--clock", shlex.quote(opts.clock_port)]
    if opts.skip_pnr:
        parts.append("--skip-pnr")
    if opts.no_pdn:
        parts.append("--no-pdn")
    if opts.utilization is not None:
        parts += ["--util", f"{opts.utilization:g}"]
    parts += ["--output", _path_arg(opts.output_dir)]
    if opts.signoff:
        parts.append("--signoff")
    if opts.gds:
        parts.append("--gds")
    if opts.detailed_route:
        parts.append("--detailed-route")
    return " ".join(parts)


def design_flow_options(input_path: str, top_module: str, output_dir: str, pdk: str,
                        freq_mhz: float, clock_port: str, signoff: bool = False) -> FlowOptions:
    """Full RTL-to-GDSII; signoff adds DRC + LVS and detailed routing."""
    return FlowOptions(
        input_path=input_path,
        top_module=top_module,
        output_dir=output_dir,
        pdk=pdk,
        freq_mhz=freq_mhz,
        clock_port=clock_port,
        gds=True,
        signoff=signoff,
        detailed_route=signoff,
        no_pdn=True,
        utilization=0.45,
    )


def demo_flow_options(design: str, output_dir: str, pdk: str, freq_mhz: float) -> FlowOptions:
    if design not in DEMO_DESIGNS:
        raise ValueError(f"Unknown demo design '{design}'. Available: {', '.join(DEMO_DESIGNS)}")
    path, top = DEMO_DESIGNS[design]
    return FlowOptions(input_path=path, top_module=top, output_dir=output_dir, pdk=pdk, freq_mhz=freq_mhz)


def synth_only_options(input_path: str, top_module: str, output_dir: str, pdk: str) -> FlowOptions:
    return FlowOptions(
        input_path=input_path,
        top_module=top_module,
        output_dir=output_dir,
        pdk=pdk,
        gds=False,
        skip_pnr=True,
        no_pdn=True,
    )


def simulate_command(job_dir: str, sim_timeout_sec: int = 10) -> str:
    d = shlex.quote(job_dir)
    return f"cd {d} && iverilog -o sim.vvp design.v tb.v 2>&1 && timeout {int(sim_timeout_sec)} vvp sim.vvp 2>&1"


def fpga_synth_command(job_dir: str, top_module: str, fpga: str) -> str:
    if fpga not in FPGA_TARGETS:
        raise ValueError(f"Unsupported FPGA target '{fpga}'. Supported: {', '.join(FPGA_TARGETS)}")
    out_json = f"{job_dir}/out.json"
    script = f"read_verilog {job_dir}/design.v; synth_{fpga} -top {top_module} -json {out_json}; stat"
    return f"yosys -p {shlex.quote(script)} 2>&1"


def summarize_fpga_output(output: str, fpga: str) -> str:
    """Keep the yosys `stat` section, or only the error lines if synthesis failed."""
    errors = [line for line in output.splitlines() if re.search(r"ERROR|error:", line)]
    if errors:
        return f"FPGA Synthesis FAILED ({fpga.upper()})\n" + "\n".join(errors)
    idx = output.find("Printing statistics.")
    stats = output[idx:] if idx >= 0 else output[-500:]
    return f"FPGA Synthesis Results ({fpga.upper()})\n{stats.strip()}"


def estimate_ppa(cells: int, pdk: str = "sky130", freq_mhz: float = 100.0) -> Dict[str, object]:
    """Back-of-envelope power/performance/area from a cell count. No tools run."""
    cell_area, power_per_cell, gate_delay = PPA_PARAMS.get(pdk, PPA_PARAMS["sky130"])
    area = cells * cell_area
    levels = max(1, math.floor(math.pow(cells, 0.3))) if cells > 0 else 1
    crit_delay = levels * gate_delay
    max_freq = 1000 / crit_delay if crit_delay > 0 else 1000
    power = cells * power_per_cell * (freq_mhz / 100)
    feasible = freq_mhz > 0 and (1000 / freq_mhz) > crit_delay
    return {
        "pdk": pdk,
        "cells": cells,
        "freq_mhz": freq_mhz,
        "area_um2": round(area),
        "power_mw": round(power, 2),
        "max_freq_mhz": round(max_freq),
        "logic_levels": levels,
        "timing_feasible": feasible,
    }


def format_ppa(est: Dict[str, object]) -> str:
    feasible = "YES" if est["timing_feasible"] else "NO -- reduce frequency or optimize design"
    return (
        f"PPA Estimate ({est['pdk']}, {est['cells']} cells @ {est['freq_mhz']:g} MHz)\n"
        f"Area: {est['area_um2']} um2\n"
        f"Power: {est['power_mw']:.2f} mW\n"
        f"Max Frequency: {est['max_freq_mhz']} MHz\n"
        f"Logic Levels: {est['logic_levels']}\n"
        f"Timing Feasible: {feasible}"
    )
