"""Error taxonomy for carryzone.

Local store failures are fatal and never retried. Remote failures are
raised by remote data sources and absorbed by the sync engine, which
reports pass-level failures through SyncResult and the status stream.
"""

from typing import Optional


class CarryZoneError(Exception):
    """Base class for carryzone errors."""


class LocalStoreError(CarryZoneError):
    """Raised when the local SQLite store fails.

    Local durable storage is assumed always available, so there is no
    retry policy for this error.
    """


class RemoteError(CarryZoneError):
    """Raised when a remote data source call fails."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class RemoteNotFoundError(RemoteError):
    """The targeted pin does not exist on the remote side."""

    def __init__(self, pin_id: str):
        super().__init__(f"Pin {pin_id} not found on remote", retryable=False)
        self.pin_id = pin_id


class SyncError(CarryZoneError):
    """A sync pass failed as a whole."""

    retryable = True

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class DeviceOfflineError(SyncError):
    """The pass was aborted before any work because the device is offline."""

    def __init__(self):
        super().__init__("Device is offline")


class DownloadFailedError(SyncError):
    """Fetching the remote pin set failed. Uploads from the same pass are kept."""


class UploadPartialFailure(SyncError):
    """Some queue entries remained queued after failing this pass.

    Informational: a pass with a partial upload failure still succeeds.
    """

    def __init__(self, still_queued: int):
        super().__init__(f"{still_queued} operation(s) failed and remain queued")
        self.still_queued = still_queued
