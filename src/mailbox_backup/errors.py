"""Exception hierarchy shared by the backup engine."""

from __future__ import annotations


class BackupError(RuntimeError):
    """Base class for backup engine errors."""


class AuthError(BackupError):
    """Raised when an OAuth token cannot be obtained or refreshed. Fatal."""


class DataFolderError(BackupError):
    """Raised when the data folder root is missing or unusable. Fatal."""


class RemoteListingError(BackupError):
    """Raised when the remote listing keeps failing after retries. Fatal."""


class RemoteError(BackupError):
    """Raised by provider adapters for a failed remote call.

    Attributes:
        code: Provider or HTTP status code, 0 when not applicable.
    """

    def __init__(self, message: str, *, code: int = 0) -> None:
        super().__init__(message)
        self.code = code


class TransientRemoteError(RemoteError):
    """A remote failure worth retrying (timeouts, throttling, 5xx)."""


class PermanentRemoteError(RemoteError):
    """A remote failure that will not go away by retrying."""
