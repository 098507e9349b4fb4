"""
Job Launcher - starts a command on the execution host so that it outlives the
connection that launched it.

Remote layout of a job directory:

    meta.json    metadata, written once at launch
    pid          pid of the detached supervisor shell, written once
    output.log   combined stdout+stderr of the command
    exit_code    numeric exit status, appears only after the command ends
    output/      artifacts produced by the toolchain
"""

import json
import logging
import posixpath
import re
import secrets
import shlex
import time
from typing import Callable, Dict, Optional

from src.config import LAUNCH_TIMEOUT_SEC
from src.jobs.models import JobHandle, JobMetadata, JobState
from src.remote.errors import JobLaunchError

logger = logging.getLogger(__name__)

META_FILENAME = "meta.json"
PID_FILENAME = "pid"
EXIT_CODE_FILENAME = "exit_code"
LOG_FILENAME = "output.log"
OUTPUT_DIRNAME = "output"

_META_OK = "__META_OK__"
_JOB_EXISTS = "__JOB_EXISTS__"
_PID_RE = re.compile(r"__PID__:(\d+)")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def new_job_id(now: Optional[float] = None) -> str:
    """Creation-time identifier: base-36 milliseconds plus 4 random base-36 chars."""
    millis = int((time.time() if now is None else now) * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return _base36(millis) + suffix


def new_job_dir(root: str, prefix: str = "") -> str:
    return posixpath.join(root, f"{prefix}{new_job_id()}")


def shell_path(path: str) -> str:
    """Quote a path for the remote shell, keeping a leading ~/ expandable."""
    if path.startswith("~/"):
        return '"$HOME"/' + shlex.quote(path[2:])
    return shlex.quote(path)


def job_file(job_dir: str, name: str) -> str:
    return shell_path(posixpath.join(job_dir, name))


def build_detached_script(job_dir: str, command: str) -> str:
    """
    Script run by the detached bash. The EXIT trap records the exit status of the
    subshell through a rename, so the poller never reads a half-written marker.
    """
    tmp_marker = job_file(job_dir, EXIT_CODE_FILENAME + ".tmp")
    marker = job_file(job_dir, EXIT_CODE_FILENAME)
    log = job_file(job_dir, LOG_FILENAME)
    return (
        f"_record_exit() {{ rc=$?; printf '%s\\n' \"$rc\" > {tmp_marker} && mv -f {tmp_marker} {marker}; }}\n"
        "trap _record_exit EXIT\n"
        f"( {command}\n"
        f") > {log} 2>&1\n"
    )


class JobLauncher:
    def __init__(self, channel, timeout: float = LAUNCH_TIMEOUT_SEC, clock: Callable[[], float] = time.time):
        self.channel = channel
        self.timeout = timeout
        self.clock = clock

    def start(self, job_dir: str, command: str, metadata: Optional[Dict[str, str]] = None) -> JobHandle:
        """
        Create the job directory, persist metadata and start `command` detached.

        Returns as soon as the pid is recorded; the command keeps running on the
        host regardless of what happens to this process or its connection.
        """
        job_dir = job_dir.rstrip("/") or job_dir
        job_id = posixpath.basename(job_dir) or "unknown"
        meta = self._build_metadata(metadata or {})

        self._write_metadata(job_dir, meta)
        pid = self._spawn(job_dir, command)
        logger.info("Started job %s (pid %s) in %s", job_id, pid, job_dir)
        return JobHandle(job_id=job_id, job_dir=job_dir)

    def _build_metadata(self, metadata: Dict[str, str]) -> JobMetadata:
        return JobMetadata(
            tool=str(metadata.get("tool", "")),
            design_name=str(metadata.get("designName", metadata.get("design_name", ""))),
            pdk=str(metadata.get("pdk", "")),
            freq=str(metadata.get("freq", "")),
            start_time_ms=int(self.clock() * 1000),
            status=JobState.RUNNING.value,
        )

    def _write_metadata(self, job_dir: str, meta: JobMetadata) -> None:
        meta_path = job_file(job_dir, META_FILENAME)
        meta_json = shlex.quote(json.dumps(meta.to_json_dict()))
        cmd = (
            f"mkdir -p {job_file(job_dir, OUTPUT_DIRNAME)} && "
            f"if [ -e {meta_path} ]; then echo {_JOB_EXISTS}; "
            f"else printf '%s\\n' {meta_json} > {meta_path} && echo {_META_OK}; fi"
        )
        out = self.channel.execute(cmd, timeout=self.timeout)
        if _JOB_EXISTS in out:
            raise JobLaunchError(f"Job directory {job_dir} already holds a job")
        if _META_OK not in out:
            raise JobLaunchError(f"Could not create job directory {job_dir}: {out.strip()[-500:]}")

    def _spawn(self, job_dir: str, command: str) -> int:
        script = build_detached_script(job_dir, command)
        pid_path = job_file(job_dir, PID_FILENAME)
        cmd = (
            f"nohup bash -c {shlex.quote(script)} </dev/null >/dev/null 2>&1 & "
            f"_pid=$!; echo \"$_pid\" > {pid_path} && echo __PID__:$_pid"
        )
        out = self.channel.execute(cmd, timeout=self.timeout)
        match = _PID_RE.search(out)
        if not match:
            raise JobLaunchError(f"Detached launch in {job_dir} reported no pid: {out.strip()[-500:]}")
        return int(match.group(1))
