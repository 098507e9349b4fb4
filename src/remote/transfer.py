import logging
import posixpath
from typing import Union

import paramiko

from src.config import CONNECT_TIMEOUT_SEC, TRANSFER_TIMEOUT_SEC
from src.remote.channel import connect_client
from src.remote.credentials import SSHCredentials
from src.remote.errors import AuthError, RemoteConnectionError, TransferError

logger = logging.getLogger(__name__)


def _sftp_path(directory: str) -> str:
    # SFTP sessions start in the login directory, so "~/x" becomes the relative path "x".
    if directory == "~":
        return "."
    if directory.startswith("~/"):
        return directory[2:]
    return directory


def _ensure_remote_dir(sftp: paramiko.SFTPClient, directory: str) -> str:
    path = _sftp_path(directory)
    current = "/" if path.startswith("/") else ""
    for part in [p for p in path.split("/") if p and p != "."]:
        current = posixpath.join(current, part) if current else part
        try:
            sftp.stat(current)
        except IOError:
            sftp.mkdir(current)
    return sftp.normalize(path or ".")


class FileTransferChannel:
    """
    Binary-safe upload over SFTP.

    Shell-embedding file content (heredocs, echo) breaks on large or binary
    payloads, so uploads never go through RemoteChannel.
    """

    def __init__(
        self,
        credentials: SSHCredentials,
        connect_timeout: float = CONNECT_TIMEOUT_SEC,
        transfer_timeout: float = TRANSFER_TIMEOUT_SEC,
    ):
        self.credentials = credentials
        self.connect_timeout = connect_timeout
        self.transfer_timeout = transfer_timeout

    def upload(self, directory: str, filename: str, data: Union[bytes, str]) -> str:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        try:
            client = connect_client(self.credentials, self.connect_timeout)
        except AuthError:
            raise
        except RemoteConnectionError as exc:
            raise TransferError(f"SFTP connection failed: {exc}") from exc

        try:
            sftp = client.open_sftp()
            sftp.get_channel().settimeout(self.transfer_timeout)
            remote_dir = _ensure_remote_dir(sftp, directory)
            path = posixpath.join(remote_dir, filename)
            with sftp.open(path, "wb") as f:
                f.set_pipelined(True)
                f.write(payload)
            size = sftp.stat(path).st_size
            if size != len(payload):
                raise TransferError(f"Short write for {path}: {size} of {len(payload)} bytes")
            logger.debug("Uploaded %d bytes to %s", len(payload), path)
            return path
        except TransferError:
            raise
        except (paramiko.SSHException, OSError) as exc:
            raise TransferError(f"SFTP upload of {filename} to {directory} failed: {exc}") from exc
        finally:
            client.close()
