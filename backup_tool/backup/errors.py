"""
Failure conditions of a single backup run.

Every error raised by a pipeline stage derives from BackupError so the
executor can tell a reported failure apart from an unexpected crash.
"""


class BackupError(Exception):
    """Base class for all expected backup failures."""
    pass


class CommandFailed(BackupError):
    """Raised when a pre-backup command cannot be launched or exits non-zero."""

    def __init__(self, command: str, reason):
        self.command = command
        self.reason = reason
        super().__init__(f"Command '{command}' failed: {reason}")


class ArchiveFailed(BackupError):
    """Raised when the archive cannot be built."""
    pass


class StorageError(BackupError):
    """Base class for remote store failures."""
    pass


class RemoteConnectFailed(StorageError):
    """Raised when connecting, logging in or changing directory fails."""
    pass


class TooManyCollisions(StorageError):
    """Raised when no free remote file name is found within the probe limit."""
    pass


class UploadFailed(StorageError):
    """Raised when probing or transferring to the remote store fails."""
    pass


class PipelineCrashed(BackupError):
    """Raised in place of an unexpected exception escaping the pipeline."""
    pass
