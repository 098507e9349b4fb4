from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class JobState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not JobState.RUNNING


class FailureKind(str, Enum):
    PROCESS_DIED = "process_died"
    NONZERO_EXIT = "nonzero_exit"
    BAD_EXIT_MARKER = "bad_exit_marker"


@dataclass
class JobMetadata:
    """Contents of meta.json. Written once by the launcher."""
    tool: str = ""
    design_name: str = ""
    pdk: str = ""
    freq: str = ""
    start_time_ms: Optional[int] = None
    status: str = JobState.RUNNING.value

    def to_json_dict(self) -> Dict[str, Any]:
        return {
            "tool": self.tool,
            "designName": self.design_name,
            "pdk": self.pdk,
            "freq": self.freq,
            "startTime": self.start_time_ms,
            "status": self.status,
        }

    @classmethod
    def from_json_dict(cls, data: Dict[str, Any]) -> "JobMetadata":
        start = data.get("startTime")
        try:
            start_ms = int(start) if start is not None else None
        except (TypeError, ValueError):
            start_ms = None
        return cls(
            tool=str(data.get("tool", "")),
            design_name=str(data.get("designName", "")),
            pdk=str(data.get("pdk", "")),
            freq=str(data.get("freq", "")),
            start_time_ms=start_ms,
            status=str(data.get("status", JobState.RUNNING.value)),
        )


@dataclass(frozen=True)
class JobHandle:
    job_id: str
    job_dir: str


@dataclass
class JobStatus:
    state: JobState
    elapsed_sec: int
    output: str = ""
    stats: Dict[str, str] = field(default_factory=dict)
    artifact_present: bool = False
    exit_code: Optional[int] = None
    failure_kind: Optional[FailureKind] = None
    meta: Optional[JobMetadata] = None
    poll_after_sec: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["failure_kind"] = self.failure_kind.value if self.failure_kind else None
        data["meta"] = self.meta.to_json_dict() if self.meta else None
        return data
