from typing import Mapping, Optional, Tuple

from src import config
from src.remote.channel import RemoteChannel
from src.remote.credentials import credentials_from_env
from src.remote.local import LocalChannel, LocalFileTransfer
from src.remote.transfer import FileTransferChannel


class ChannelFactory:
    @staticmethod
    def create(env: Optional[Mapping[str, str]] = None) -> Tuple[object, object]:
        """
        Returns (command_channel, file_transfer) for the configured execution host.
        With no REMOTE_HOST both run against this machine. Credentials are resolved
        once here and handed to each channel explicitly.
        """
        if not config.is_remote():
            return LocalChannel(env_prefix=config.LOCAL_ENV_PREFIX), LocalFileTransfer()

        credentials = credentials_from_env(
            host=config.REMOTE_HOST,
            port=config.REMOTE_PORT,
            username=config.REMOTE_USER,
            env=env,
        )
        channel = RemoteChannel(
            credentials,
            env_prefix=config.REMOTE_ENV_PREFIX,
            connect_timeout=config.CONNECT_TIMEOUT_SEC,
        )
        transfer = FileTransferChannel(
            credentials,
            connect_timeout=config.CONNECT_TIMEOUT_SEC,
            transfer_timeout=config.TRANSFER_TIMEOUT_SEC,
        )
        return channel, transfer
