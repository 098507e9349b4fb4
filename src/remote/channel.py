import logging
import time
from typing import List

import paramiko

from src.config import CONNECT_TIMEOUT_SEC, DEFAULT_COMMAND_TIMEOUT_SEC
from src.remote.credentials import SSHCredentials
from src.remote.errors import AuthError, RemoteConnectionError, RemoteError, RemoteTimeoutError

logger = logging.getLogger(__name__)

BUFFER_SIZE = 32768


def join_env_prefix(env_prefix: str, command: str) -> str:
    if not env_prefix:
        return command
    return f"{env_prefix} && {command}"


def connect_client(credentials: SSHCredentials, connect_timeout: float = CONNECT_TIMEOUT_SEC) -> paramiko.SSHClient:
    """Open an authenticated SSHClient. The caller owns it and must close it."""
    pkey = credentials.load_pkey()
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        client.connect(
            hostname=credentials.host,
            port=credentials.port,
            username=credentials.username,
            pkey=pkey,
            timeout=connect_timeout,
            banner_timeout=connect_timeout,
            auth_timeout=connect_timeout,
            allow_agent=False,
            look_for_keys=False,
        )
    except paramiko.AuthenticationException as exc:
        client.close()
        raise AuthError(f"SSH authentication to {credentials.host} failed: {exc}") from exc
    except (paramiko.SSHException, OSError) as exc:
        client.close()
        raise RemoteConnectionError(
            f"SSH connection failed: {exc}. Ensure the SSH_PRIVATE_KEY env var is set."
        ) from exc
    return client


class RemoteChannel:
    """
    Runs one shell command per call on the remote host over SSH.

    Every call opens and closes its own connection. A nonzero exit status is not
    raised; many EDA tools exit nonzero for expected outcomes (e.g. DRC violations).
    """

    def __init__(
        self,
        credentials: SSHCredentials,
        env_prefix: str = "",
        connect_timeout: float = CONNECT_TIMEOUT_SEC,
        poll_interval: float = 0.05,
    ):
        self.credentials = credentials
        self.env_prefix = env_prefix
        self.connect_timeout = connect_timeout
        self.poll_interval = poll_interval

    def execute(self, command: str, timeout: float = DEFAULT_COMMAND_TIMEOUT_SEC) -> str:
        full_command = join_env_prefix(self.env_prefix, command)
        client = connect_client(self.credentials, self.connect_timeout)
        try:
            transport = client.get_transport()
            if transport is None or not transport.is_active():
                raise RemoteConnectionError(f"SSH transport to {self.credentials.host} is not active")
            channel = transport.open_session(timeout=self.connect_timeout)
            channel.set_combine_stderr(True)
            channel.exec_command(full_command)
            output = self._collect(channel, command, timeout)
            exit_status = channel.recv_exit_status()
            if exit_status != 0:
                logger.debug("Remote command exited %s: %s", exit_status, command)
            return output
        except RemoteError:
            raise
        except (paramiko.SSHException, OSError) as exc:
            raise RemoteConnectionError(f"SSH channel error while running command: {exc}") from exc
        finally:
            client.close()

    def _collect(self, channel: paramiko.Channel, command: str, timeout: float) -> str:
        deadline = time.monotonic() + timeout
        chunks: List[bytes] = []
        while True:
            # Checked every pass: a command that never stops printing must still time out.
            if time.monotonic() >= deadline:
                channel.close()
                partial = b"".join(chunks).decode("utf-8", errors="replace")
                logger.warning("Remote command timed out after %ss: %s", timeout, command)
                raise RemoteTimeoutError(f"Command timed out after {timeout:g}s", timeout, partial)
            if channel.recv_ready():
                data = channel.recv(BUFFER_SIZE)
                if data:
                    chunks.append(data)
                    continue
            if channel.exit_status_ready() and not channel.recv_ready():
                break
            time.sleep(self.poll_interval)
        return b"".join(chunks).decode("utf-8", errors="replace")
