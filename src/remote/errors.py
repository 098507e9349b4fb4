"""Error taxonomy for the remote transports and the job launcher.

Job-level failures (a tool exiting nonzero, a process that vanished) are not
exceptions; they are reported as a terminal FAILED state by the poller.
"""


class RemoteError(Exception):
    """Base class for every transport-level failure."""


class RemoteConnectionError(RemoteError, ConnectionError):
    """The channel could not be opened (network, handshake or auth)."""


class AuthError(RemoteConnectionError):
    """No usable credentials, or the host rejected them."""


class RemoteTimeoutError(RemoteError, TimeoutError):
    """The command did not finish within its budget; the channel was torn down."""

    def __init__(self, message: str, timeout: float, partial_output: str = ""):
        super().__init__(message)
        self.timeout = timeout
        self.partial_output = partial_output


class TransferError(RemoteError):
    """Upload failed. Nothing is resumed; retry the whole upload."""


class JobLaunchError(RemoteError):
    """Bookkeeping for a new job could not be completed."""
