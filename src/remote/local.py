import logging
import os
import subprocess

from src.config import DEFAULT_COMMAND_TIMEOUT_SEC
from src.remote.channel import join_env_prefix
from src.remote.errors import RemoteConnectionError, RemoteTimeoutError, TransferError

logger = logging.getLogger(__name__)


class LocalChannel:
    """
    Same contract as RemoteChannel, executed with the local bash.

    Used when no remote host is configured, and by the tests.
    """

    def __init__(self, env_prefix: str = "", shell: str = "bash"):
        self.env_prefix = env_prefix
        self.shell = shell

    def execute(self, command: str, timeout: float = DEFAULT_COMMAND_TIMEOUT_SEC) -> str:
        full_command = join_env_prefix(self.env_prefix, command)
        proc = None
        try:
            proc = subprocess.Popen(
                [self.shell, "-c", full_command],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
            stdout, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            partial = b""
            proc.kill()
            try:
                partial, _ = proc.communicate(timeout=1)
            except subprocess.TimeoutExpired:
                # A grandchild still holds the pipe open; give up on the partial output.
                pass
            logger.warning("Local command timed out after %ss: %s", timeout, command)
            raise RemoteTimeoutError(
                f"Command timed out after {timeout:g}s",
                timeout,
                (partial or b"").decode("utf-8", errors="replace"),
            )
        except OSError as exc:
            raise RemoteConnectionError(f"Could not start local shell: {exc}") from exc
        finally:
            if proc and proc.poll() is None:
                proc.kill()

        if proc.returncode != 0:
            logger.debug("Local command exited %s: %s", proc.returncode, command)
        return stdout.decode("utf-8", errors="replace")


class LocalFileTransfer:
    """Local counterpart of FileTransferChannel."""

    def upload(self, directory: str, filename: str, data) -> str:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        directory = os.path.abspath(os.path.expanduser(directory))
        path = os.path.join(directory, filename)
        try:
            os.makedirs(directory, exist_ok=True)
            with open(path, "wb") as f:
                f.write(payload)
            written = os.path.getsize(path)
        except OSError as exc:
            raise TransferError(f"Local write of {path} failed: {exc}") from exc
        if written != len(payload):
            raise TransferError(f"Short write for {path}: {written} of {len(payload)} bytes")
        return path
