"""
Error taxonomy for backup runs.

Fatal errors abort the run:
- DumpFailed, CompressionFailed, OutputMissing
- TransportUnreachable, DirectoryEnsureFailed, UploadFailed

Non-fatal errors are recorded per item and the batch continues:
- ListingFailed, DeleteFailed

UnrecognizedEntry is informational only.
"""


class BackupError(Exception):
    """Base class for errors raised during a backup run."""

    fatal = True

    @property
    def kind(self) -> str:
        return type(self).__name__


class DumpFailed(BackupError):
    """Raised when the database dump stage fails."""
    pass


class CompressionFailed(BackupError):
    """Raised when the compression stage fails."""
    pass


class OutputMissing(BackupError):
    """Raised when the dump reported success but produced no usable file."""
    pass


class TransportError(BackupError):
    """Raised when an operation on the remote transport fails."""
    pass


class TransportUnreachable(TransportError):
    """Raised when the transport session cannot be established."""
    pass


class DirectoryEnsureFailed(TransportError):
    """Raised when the remote directory cannot be created or verified."""
    pass


class UploadFailed(TransportError):
    """Raised when transferring an artifact to the remote store fails."""
    pass


class ListingFailed(BackupError):
    """Raised when a backup location cannot be listed."""

    fatal = False


class DeleteFailed(BackupError):
    """Raised when a single artifact cannot be deleted."""

    fatal = False


class UnrecognizedEntry(BackupError):
    """A directory entry that is not one of our artifacts."""

    fatal = False
