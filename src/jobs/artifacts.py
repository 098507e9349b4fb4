import json
import logging
from typing import Any, Dict, Optional

from src.config import KLAYOUT_EXTRACT_SCRIPT, RENDER_LAYOUT_SCRIPT
from src.jobs.launcher import OUTPUT_DIRNAME, job_file, shell_path
from src.remote.errors import RemoteError

logger = logging.getLogger(__name__)

LAYOUT_JSON_NAME = "layout_3d.json"
LAYOUT_PNG_NAME = "layout.png"
# Shorter answers are error text, not an encoded file.
MIN_BASE64_LEN = 100


class ArtifactFetcher:
    """
    Retrieves artifacts of a completed job as opaque payloads.

    Auxiliary tools (KLayout extraction, PNG rendering) run on the execution
    host; their failures degrade to None instead of raising.
    """

    def __init__(self, channel, timeout: float = 30.0):
        self.channel = channel
        self.timeout = timeout

    def find_gds(self, job_dir: str) -> Optional[str]:
        out = self.channel.execute(
            f"find {job_file(job_dir, OUTPUT_DIRNAME)} -name '*.gds' -type f 2>/dev/null | head -n 1",
            timeout=self.timeout,
        )
        path = out.strip().splitlines()[-1] if out.strip() else ""
        return path or None

    def gds_base64(self, job_dir: str) -> Optional[str]:
        try:
            gds = self.find_gds(job_dir)
            if not gds:
                return None
            b64 = self.channel.execute(f"base64 {shell_path(gds)} | tr -d '\\n'", timeout=self.timeout).strip()
        except RemoteError as exc:
            logger.warning("GDS download from %s failed: %s", job_dir, exc)
            return None
        return b64 if len(b64) >= MIN_BASE64_LEN else None

    def layout_3d(self, job_dir: str) -> Optional[Dict[str, Any]]:
        json_path = f"{job_dir}/{OUTPUT_DIRNAME}/{LAYOUT_JSON_NAME}"
        try:
            gds = self.find_gds(job_dir)
            if not gds:
                return None
            result = self.channel.execute(
                f"GDS_PATH={shell_path(gds)} OUT_PATH={shell_path(json_path)} "
                f"klayout -b -r {shell_path(KLAYOUT_EXTRACT_SCRIPT)} 2>&1",
                timeout=self.timeout,
            )
            if "OK" not in result:
                logger.info("Layout extraction for %s did not report OK", job_dir)
                return None
            raw = self.channel.execute(f"cat {shell_path(json_path)}", timeout=self.timeout)
        except RemoteError as exc:
            logger.warning("Layout extraction for %s failed: %s", job_dir, exc)
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def layout_png_base64(self, job_dir: str) -> Optional[str]:
        """Render the extracted layout JSON to a PNG. Call after layout_3d()."""
        json_path = f"{job_dir}/{OUTPUT_DIRNAME}/{LAYOUT_JSON_NAME}"
        png_path = f"{job_dir}/{OUTPUT_DIRNAME}/{LAYOUT_PNG_NAME}"
        try:
            result = self.channel.execute(
                f"JSON_PATH={shell_path(json_path)} OUT_PATH={shell_path(png_path)} "
                f"python3 {shell_path(RENDER_LAYOUT_SCRIPT)} 2>&1",
                timeout=15,
            )
            if "OK" not in result:
                return None
            b64 = self.channel.execute(f"base64 {shell_path(png_path)} | tr -d '\\n'", timeout=15).strip()
        except RemoteError as exc:
            logger.warning("Layout render for %s failed: %s", job_dir, exc)
            return None
        return b64 if len(b64) >= MIN_BASE64_LEN else None


def summarize_layout(layout: Dict[str, Any]) -> Dict[str, Any]:
    die = layout.get("die") or {}
    layers = layout.get("layers") or []
    polygons = sum(len(layer.get("polygons") or []) for layer in layers)
    return {
        "die_w": float(die.get("w", 0.0)),
        "die_h": float(die.get("h", 0.0)),
        "layers": len(layers),
        "polygons": polygons,
    }
