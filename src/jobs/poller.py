"""
Status Poller - classifies a launched job as running, completed or failed.

The exit-code marker alone cannot tell "still running" from "killed before it
could write the marker" (OOM kill, early shell error), so a missing marker is
combined with a liveness probe of the recorded pid. Polling only reads remote
state and may be repeated freely; once a job is terminal it stays terminal.
"""

import dataclasses
import json
import logging
import re
import shlex
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional, Sequence, Tuple

from src.config import LAUNCH_TIMEOUT_SEC, LOG_READ_TIMEOUT_SEC, POLL_TIMEOUT_SEC
from src.jobs.launcher import (
    EXIT_CODE_FILENAME,
    LOG_FILENAME,
    META_FILENAME,
    OUTPUT_DIRNAME,
    PID_FILENAME,
    job_file,
)
from src.jobs.models import FailureKind, JobMetadata, JobState, JobStatus
from src.jobs.stats_parser import StatsParser

logger = logging.getLogger(__name__)

DIED_TAIL_LINES = 20
FAILED_TAIL_LINES = 30
DEFAULT_ARTIFACT_PATTERNS = ("*.gds",)

# Recommended client backoff while a job is running.
POLL_BACKOFF_START_SEC = 5
POLL_BACKOFF_MAX_SEC = 60

# A job with metadata but no pid is still launching only this long; after that the launch failed.
PID_GRACE_SEC = LAUNCH_TIMEOUT_SEC + 30
# Finished jobs remembered per poller (least recently polled are dropped first).
TERMINAL_CACHE_SIZE = 4096

_PROBE_RE = re.compile(r"^(DONE:.*|ALIVE|DEAD|NOPID)$")


def build_probe_command(job_dir: str) -> str:
    """
    One round trip that prints DONE:<marker>, ALIVE, DEAD or NOPID.

    Zombies count as dead. A dead pid re-checks the marker, in case the job
    finished between the first marker check and the liveness check.
    """
    marker = job_file(job_dir, EXIT_CODE_FILENAME)
    pid_path = job_file(job_dir, PID_FILENAME)
    return (
        f"if [ -f {marker} ]; then echo \"DONE:$(cat {marker})\"; exit 0; fi; "
        f"pid=$(cat {pid_path} 2>/dev/null | tr -d '[:space:]'); "
        "case \"$pid\" in ''|*[!0-9]*) echo NOPID; exit 0;; esac; "
        "if [ -r /proc/$pid/stat ]; then "
        "st=$(sed -n 's/^.*) \\(.\\).*$/\\1/p' /proc/$pid/stat); "
        "if [ \"$st\" != Z ]; then echo ALIVE; exit 0; fi; "
        "elif [ ! -d /proc/self ] && kill -0 \"$pid\" 2>/dev/null; then echo ALIVE; exit 0; fi; "
        f"if [ -f {marker} ]; then echo \"DONE:$(cat {marker})\"; else echo DEAD; fi"
    )


def parse_probe(output: str) -> Tuple[str, str]:
    """Returns (kind, marker_text) from the probe output, ignoring any preamble."""
    result = ("NOPID", "")
    for line in output.splitlines():
        line = line.strip()
        if _PROBE_RE.match(line):
            if line.startswith("DONE:"):
                result = ("DONE", line[len("DONE:"):].strip())
            else:
                result = (line, "")
    return result


class StatusPoller:
    def __init__(
        self,
        channel,
        parser: Optional[StatsParser] = None,
        artifact_patterns: Sequence[str] = DEFAULT_ARTIFACT_PATTERNS,
        timeout: float = POLL_TIMEOUT_SEC,
        log_timeout: float = LOG_READ_TIMEOUT_SEC,
        clock: Callable[[], float] = time.time,
        pid_grace_sec: float = PID_GRACE_SEC,
        cache_size: int = TERMINAL_CACHE_SIZE,
    ):
        self.channel = channel
        self.parser = parser or StatsParser()
        self.artifact_patterns = tuple(artifact_patterns)
        self.timeout = timeout
        self.log_timeout = log_timeout
        self.clock = clock
        self.pid_grace_sec = pid_grace_sec
        self.cache_size = max(1, cache_size)
        self._lock = threading.Lock()
        self._terminal: "OrderedDict[str, JobStatus]" = OrderedDict()
        self._poll_counts: "OrderedDict[str, int]" = OrderedDict()

    def status(self, job_dir: str) -> JobStatus:
        job_dir = job_dir.rstrip("/") or job_dir

        with self._lock:
            cached = self._terminal.get(job_dir)
            if cached is not None:
                self._terminal.move_to_end(job_dir)
        if cached is not None:
            elapsed = max(cached.elapsed_sec, self._elapsed(cached.meta))
            return dataclasses.replace(cached, elapsed_sec=elapsed, stats=dict(cached.stats))

        meta = self._read_metadata(job_dir)
        elapsed = self._elapsed(meta)
        kind, marker_text = parse_probe(self.channel.execute(build_probe_command(job_dir), timeout=self.timeout))

        starting = (
            kind == "NOPID"
            and meta is not None
            and meta.start_time_ms is not None
            and elapsed <= self.pid_grace_sec
        )
        if kind == "ALIVE" or starting:
            return JobStatus(
                state=JobState.RUNNING,
                elapsed_sec=elapsed,
                meta=meta,
                poll_after_sec=self._next_poll_after(job_dir),
            )

        if kind == "DONE":
            result = self._finished(job_dir, marker_text, elapsed, meta)
        elif kind == "DEAD":
            tail = self._tail_log(job_dir, DIED_TAIL_LINES)
            output = (
                f"Process died unexpectedly.\nLast log lines:\n{tail}"
                if tail
                else "Process died unexpectedly. No log available."
            )
            result = JobStatus(
                state=JobState.FAILED,
                elapsed_sec=elapsed,
                output=output,
                failure_kind=FailureKind.PROCESS_DIED,
                meta=meta,
            )
        elif meta is not None:
            result = JobStatus(
                state=JobState.FAILED,
                elapsed_sec=elapsed,
                output=f"Launch never recorded a pid in {job_dir} (metadata is {elapsed}s old).",
                failure_kind=FailureKind.PROCESS_DIED,
                meta=meta,
            )
        else:
            result = JobStatus(
                state=JobState.FAILED,
                elapsed_sec=elapsed,
                output=f"No job metadata or pid found in {job_dir}.",
                failure_kind=FailureKind.PROCESS_DIED,
            )

        logger.info("Job %s finished: %s", job_dir, result.state.value)
        with self._lock:
            self._terminal[job_dir] = result
            self._poll_counts.pop(job_dir, None)
            while len(self._terminal) > self.cache_size:
                self._terminal.popitem(last=False)
        return dataclasses.replace(result, stats=dict(result.stats))

    def _finished(self, job_dir: str, marker_text: str, elapsed: int, meta: Optional[JobMetadata]) -> JobStatus:
        try:
            exit_code = int(marker_text)
        except ValueError:
            tail = self._tail_log(job_dir, FAILED_TAIL_LINES)
            return JobStatus(
                state=JobState.FAILED,
                elapsed_sec=elapsed,
                output=f"Unreadable exit status {marker_text!r}.\n{tail}",
                failure_kind=FailureKind.BAD_EXIT_MARKER,
                meta=meta,
            )

        if exit_code != 0:
            tail = self._tail_log(job_dir, FAILED_TAIL_LINES)
            return JobStatus(
                state=JobState.FAILED,
                elapsed_sec=elapsed,
                output=f"Exit code {exit_code}.\n{tail}",
                exit_code=exit_code,
                failure_kind=FailureKind.NONZERO_EXIT,
                meta=meta,
            )

        log_text = self.channel.execute(
            f"cat {job_file(job_dir, LOG_FILENAME)} 2>/dev/null || true", timeout=self.log_timeout
        )
        return JobStatus(
            state=JobState.COMPLETED,
            elapsed_sec=elapsed,
            output=log_text,
            stats=self.parser.parse(log_text),
            artifact_present=self._has_artifact(job_dir),
            exit_code=0,
            meta=meta,
        )

    def _read_metadata(self, job_dir: str) -> Optional[JobMetadata]:
        raw = self.channel.execute(f"cat {job_file(job_dir, META_FILENAME)} 2>/dev/null || echo '{{}}'", timeout=self.timeout)
        start = raw.find("{")
        if start < 0:
            return None
        try:
            data = json.loads(raw[start:])
        except ValueError:
            logger.debug("Unreadable metadata in %s", job_dir)
            return None
        if not isinstance(data, dict) or not data:
            return None
        return JobMetadata.from_json_dict(data)

    def _elapsed(self, meta: Optional[JobMetadata]) -> int:
        now_ms = self.clock() * 1000
        start_ms = meta.start_time_ms if meta and meta.start_time_ms is not None else now_ms
        return max(0, int(round((now_ms - start_ms) / 1000)))

    def _tail_log(self, job_dir: str, lines: int) -> str:
        out = self.channel.execute(
            f"tail -n {int(lines)} {job_file(job_dir, LOG_FILENAME)} 2>/dev/null || true", timeout=self.timeout
        )
        return out.strip()

    def _has_artifact(self, job_dir: str) -> bool:
        if not self.artifact_patterns:
            return False
        names = " -o ".join(f"-name {shlex.quote(p)}" for p in self.artifact_patterns)
        out = self.channel.execute(
            f"find {job_file(job_dir, OUTPUT_DIRNAME)} \\( {names} \\) -type f 2>/dev/null | head -n 1",
            timeout=self.timeout,
        )
        return bool(out.strip())

    def _next_poll_after(self, job_dir: str) -> int:
        with self._lock:
            count = self._poll_counts.pop(job_dir, 0) + 1
            self._poll_counts[job_dir] = count
            while len(self._poll_counts) > self.cache_size:
                self._poll_counts.popitem(last=False)
        return min(POLL_BACKOFF_MAX_SEC, POLL_BACKOFF_START_SEC * (2 ** (count - 1)))
