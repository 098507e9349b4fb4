import base64
import binascii
import io
import os
from dataclasses import dataclass
from typing import Mapping, Optional

import paramiko

from src.remote.errors import AuthError

_KEY_CLASSES = (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey)


@dataclass(frozen=True)
class SSHCredentials:
    host: str
    port: int
    username: str
    private_key: str

    def load_pkey(self) -> paramiko.PKey:
        """Parse the PEM/OpenSSH text into a paramiko key, trying each supported key type."""
        last_error: Optional[Exception] = None
        for key_cls in _KEY_CLASSES:
            try:
                return key_cls.from_private_key(io.StringIO(self.private_key))
            except (paramiko.SSHException, ValueError) as exc:
                last_error = exc
        raise AuthError(f"Unsupported or unreadable private key: {last_error}")


def resolve_private_key(env: Optional[Mapping[str, str]] = None) -> str:
    """
    Returns the private key text, looked up in this order:
    SSH_PRIVATE_KEY_B64 (base64 of the key file), SSH_PRIVATE_KEY (raw key),
    SSH_KEY_PATH (path to a key file).
    """
    env = os.environ if env is None else env

    b64 = env.get("SSH_PRIVATE_KEY_B64")
    if b64:
        try:
            return base64.b64decode(b64, validate=False).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise AuthError(f"SSH_PRIVATE_KEY_B64 is not valid base64: {exc}") from exc

    raw = env.get("SSH_PRIVATE_KEY")
    if raw:
        # Keys pasted into single-line env vars usually carry literal "\n".
        return raw.replace("\\n", "\n")

    key_path = env.get("SSH_KEY_PATH")
    if key_path:
        try:
            with open(os.path.expanduser(key_path), "r", encoding="utf-8") as f:
                return f.read()
        except OSError as exc:
            raise AuthError(f"Cannot read SSH key file {key_path}: {exc}") from exc

    raise AuthError("No SSH key configured. Set SSH_PRIVATE_KEY_B64, SSH_PRIVATE_KEY or SSH_KEY_PATH.")


def credentials_from_env(host: str, port: int, username: str, env: Optional[Mapping[str, str]] = None) -> SSHCredentials:
    return SSHCredentials(host=host, port=port, username=username, private_key=resolve_private_key(env))
