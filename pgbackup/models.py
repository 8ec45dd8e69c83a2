"""
Data model for backup runs.

Nothing here is persisted: the artifact filenames on disk and on the remote
store are the only state that survives a run.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, NamedTuple, Optional


class Location(Enum):
    """Where an artifact lives."""
    LOCAL = 'local'
    REMOTE = 'remote'


class RunState(Enum):
    """States of a single backup run."""
    IDLE = 'idle'
    DUMPING = 'dumping'
    UPLOADING = 'uploading'
    LOCAL_CLEANUP = 'local_cleanup'
    REMOTE_CLEANUP = 'remote_cleanup'
    DONE = 'done'
    ABORTED = 'aborted'


class RunStatus(Enum):
    """Final outcome of a backup run."""
    SUCCESS = 'success'
    FAILED = 'failed'


class DirectoryEntry(NamedTuple):
    """One file reported by a directory listing."""
    name: str
    modified_at: Optional[datetime] = None
    size_bytes: Optional[int] = None


@dataclass(frozen=True)
class Artifact:
    """One backup snapshot at a location."""

    prefix: str
    captured_at: datetime
    location: Location
    path: str
    size_bytes: Optional[int] = None
    modified_at: Optional[datetime] = None

    @property
    def name(self) -> str:
        from pgbackup.backup.naming import format_artifact_name
        return format_artifact_name(self.prefix, self.captured_at)

    @classmethod
    def from_name(
        cls,
        name: str,
        location: Location,
        path: str,
        size_bytes: Optional[int] = None,
        modified_at: Optional[datetime] = None
    ) -> Optional['Artifact']:
        """
        Build an Artifact from a filename.

        Args:
            name: Filename (without directory)
            location: Location of the file
            path: Location-specific path of the file
            size_bytes: File size, if known
            modified_at: Modification time reported by the listing, if known

        Returns:
            Artifact, or None if the name is not an artifact name
        """
        from pgbackup.backup.naming import parse_artifact_name

        parsed = parse_artifact_name(name)
        if not parsed:
            return None

        return cls(
            prefix=parsed.prefix,
            captured_at=parsed.captured_at,
            location=location,
            path=path,
            size_bytes=size_bytes,
            modified_at=modified_at
        )


@dataclass(frozen=True)
class RetentionPolicy:
    """How long artifacts are kept."""

    max_age_days: int

    def __post_init__(self):
        if isinstance(self.max_age_days, bool) or not isinstance(self.max_age_days, int):
            raise ValueError(f"max_age_days must be an integer, got {self.max_age_days!r}")
        if self.max_age_days < 1:
            raise ValueError(f"max_age_days must be at least 1, got {self.max_age_days}")

    @property
    def max_age(self) -> timedelta:
        return timedelta(days=self.max_age_days)


@dataclass
class BatchResult:
    """Outcome of one retention batch at a single location."""

    location: Location
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


@dataclass
class RunResult:
    """
    Outcome of one backup run.

    The run succeeds only if both the dump and the upload succeeded. Cleanup
    results are reported but never change the status.
    """

    dump_ok: bool = False
    upload_ok: bool = False
    local_cleanup_count: int = 0
    remote_cleanup_count: int = 0
    remote_cleanup_attempted: bool = False
    errors: List[str] = field(default_factory=list)
    failure: Optional[Exception] = None
    failed_state: Optional[RunState] = None
    artifact: Optional[Artifact] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def status(self) -> RunStatus:
        if self.dump_ok and self.upload_ok:
            return RunStatus.SUCCESS
        return RunStatus.FAILED

    @property
    def failure_reason(self) -> Optional[str]:
        if self.failure is None:
            return None
        return getattr(self.failure, 'kind', type(self.failure).__name__)

    def exit_code(self) -> int:
        return 0 if self.status is RunStatus.SUCCESS else 1
