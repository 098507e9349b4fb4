import os
from dotenv import load_dotenv

load_dotenv()

# Remote execution host. Leave REMOTE_HOST empty to run jobs on this machine.
REMOTE_HOST = os.environ.get("REMOTE_HOST", "")
REMOTE_PORT = int(os.environ.get("REMOTE_PORT", "22"))
REMOTE_USER = os.environ.get("REMOTE_USER", "ubuntu")

# Joined with "&&" in front of every remote command (PATH exports, cd into the toolchain checkout).
REMOTE_ENV_PREFIX = os.environ.get(
    "REMOTE_ENV_PREFIX",
    "export PATH=$HOME/.cargo/bin:$PATH && export ORFS_PATH=/tmp/OpenROAD-flow-scripts && cd ~/Zyphar-new",
)
# Prefix for local execution (REMOTE_HOST empty); REMOTE_ENV_PREFIX only applies over SSH.
LOCAL_ENV_PREFIX = os.environ.get("LOCAL_ENV_PREFIX", "")

JOBS_ROOT = os.environ.get("JOBS_ROOT", "/tmp/mcp_jobs")
SIM_ROOT = os.environ.get("SIM_ROOT", "/tmp/mcp_sim")
FPGA_ROOT = os.environ.get("FPGA_ROOT", "/tmp/mcp_fpga")

ZYPHAR_BIN = os.environ.get("ZYPHAR_BIN", "./target/release/zyphar")
KLAYOUT_EXTRACT_SCRIPT = os.environ.get("KLAYOUT_EXTRACT_SCRIPT", "/tmp/extract_3d.py")
RENDER_LAYOUT_SCRIPT = os.environ.get("RENDER_LAYOUT_SCRIPT", "/tmp/render_layout.py")

CONNECT_TIMEOUT_SEC = float(os.environ.get("CONNECT_TIMEOUT_SEC", "15"))
DEFAULT_COMMAND_TIMEOUT_SEC = float(os.environ.get("DEFAULT_COMMAND_TIMEOUT_SEC", "1800"))
LAUNCH_TIMEOUT_SEC = float(os.environ.get("LAUNCH_TIMEOUT_SEC", "15"))
POLL_TIMEOUT_SEC = float(os.environ.get("POLL_TIMEOUT_SEC", "10"))
LOG_READ_TIMEOUT_SEC = float(os.environ.get("LOG_READ_TIMEOUT_SEC", "30"))
TRANSFER_TIMEOUT_SEC = float(os.environ.get("TRANSFER_TIMEOUT_SEC", "30"))

DEMO_DESIGNS = {
    "picorv32": ("/tmp/OpenROAD-flow-scripts/flow/designs/src/picorv32/picorv32.v", "picorv32"),
    "uart_tx": ("~/Zyphar-new/test_designs/uart_tx.v", "uart_tx"),
    "alu_8bit": ("~/Zyphar-new/test_designs/alu_8bit.v", "alu_8bit"),
}


def is_remote() -> bool:
    return bool(REMOTE_HOST)
