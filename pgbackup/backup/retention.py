"""
Retention policy enforcement for backups.

The same engine runs against the local backup directory and the remote
directory. A store only has to list its entries and delete one artifact:

    List -> Recognise -> Classify -> Select -> Delete (isolated per item)

Only files that parse as artifacts with the configured prefix are ever
considered. Anything else is logged and left alone.

Artifact age is taken from the filename timestamp for the local store and
from the listing's modification time for the remote store (falling back to
the filename when the listing has no mtime).
"""

import logging
import os
import posixpath
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from pgbackup.models import Artifact, BatchResult, DirectoryEntry, Location, RetentionPolicy
from .errors import DeleteFailed, ListingFailed, TransportError
from .naming import validate_prefix
from .transport import Transport


logger = logging.getLogger(__name__)


class LocalStore:
    """Backup directory on the local filesystem."""

    location = Location.LOCAL
    age_from_mtime = False

    def __init__(self, directory: str):
        self.directory = str(directory)

    def describe(self) -> str:
        return self.directory

    def path_for(self, name: str) -> str:
        return os.path.join(self.directory, name)

    def list_entries(self) -> List[DirectoryEntry]:
        """
        List regular files in the backup directory.

        A directory that does not exist yet simply has no entries.

        Raises:
            ListingFailed: If the directory cannot be scanned
        """
        if not os.path.isdir(self.directory):
            return []

        entries = []
        try:
            with os.scandir(self.directory) as it:
                for entry in it:
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    try:
                        info = entry.stat(follow_symlinks=False)
                    except FileNotFoundError:
                        # Removed between scandir and stat
                        logger.debug(f"Local entry vanished while listing: {entry.name}")
                        continue
                    entries.append(DirectoryEntry(
                        entry.name,
                        datetime.fromtimestamp(info.st_mtime),
                        info.st_size
                    ))
        except OSError as e:
            raise ListingFailed(f"Failed to list local directory {self.directory}: {e}")

        return entries

    def delete(self, artifact: Artifact):
        """
        Delete a local artifact. A file that is already gone counts as deleted.

        Raises:
            DeleteFailed: If the file cannot be removed
        """
        try:
            os.remove(artifact.path)
        except FileNotFoundError:
            logger.debug(f"Local file already gone: {artifact.path}")
        except PermissionError as e:
            raise DeleteFailed(f"Permission denied deleting {artifact.path}: {e}")
        except OSError as e:
            raise DeleteFailed(f"Failed to delete local file {artifact.path}: {e}")


class RemoteStore:
    """Backup directory on the remote store, reached through a Transport."""

    location = Location.REMOTE
    age_from_mtime = True

    def __init__(self, transport: Transport, directory: str):
        self.transport = transport
        self.directory = directory

    def describe(self) -> str:
        return self.directory

    def path_for(self, name: str) -> str:
        return posixpath.join(self.directory, name)

    def list_entries(self) -> List[DirectoryEntry]:
        """
        Raises:
            ListingFailed: If the transport cannot list the directory
        """
        try:
            return self.transport.list(self.directory)
        except TransportError as e:
            raise ListingFailed(f"Failed to list remote directory {self.directory}: {e}")

    def delete(self, artifact: Artifact):
        """
        Raises:
            DeleteFailed: If the transport cannot delete the file
        """
        try:
            self.transport.delete(artifact.path)
        except (TransportError, OSError) as e:
            raise DeleteFailed(f"Failed to delete remote file {artifact.path}: {e}")


def artifact_age(artifact: Artifact, now: datetime, age_from_mtime: bool = False) -> timedelta:
    """
    Age of an artifact at a given time.

    Args:
        artifact: Artifact to measure
        now: Current time
        age_from_mtime: Use the listing mtime instead of the filename timestamp

    Returns:
        Age as a timedelta
    """
    reference = artifact.captured_at
    if age_from_mtime and artifact.modified_at is not None:
        reference = artifact.modified_at
    return now - reference


def select_expired(
    artifacts: Iterable[Artifact],
    policy: RetentionPolicy,
    now: datetime,
    age_from_mtime: bool = False,
    protected: Iterable[str] = ()
) -> List[Artifact]:
    """
    Select artifacts that have reached the retention cutoff.

    The boundary is inclusive: an artifact exactly max_age_days old is
    selected. Protected names are never selected.

    Args:
        artifacts: Candidate artifacts
        policy: Retention policy
        now: Current time
        age_from_mtime: Use the listing mtime instead of the filename timestamp
        protected: Artifact names that must be kept regardless of age

    Returns:
        Expired artifacts, oldest first
    """
    protected = set(protected)
    expired = []

    for artifact in artifacts:
        if artifact.name in protected:
            continue
        age = artifact_age(artifact, now, age_from_mtime)
        if age >= policy.max_age:
            expired.append((age, artifact))

    expired.sort(key=lambda item: (item[0], item[1].name), reverse=True)
    return [artifact for _, artifact in expired]


class RetentionEngine:
    """
    Enforces a retention policy at one location.

    Each candidate is deleted independently: a failed deletion is recorded and
    the remaining candidates are still attempted.
    """

    def __init__(
        self,
        store,
        policy: RetentionPolicy,
        prefix: str,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize retention engine.

        Args:
            store: LocalStore or RemoteStore
            policy: Retention policy
            prefix: Backup prefix; artifacts with another prefix are ignored
            clock: Returns the current time (default datetime.now)
        """
        self.store = store
        self.policy = policy
        self.prefix = validate_prefix(prefix)
        self.clock = clock

    def _now(self) -> datetime:
        return self.clock() if self.clock else datetime.now()

    def collect(self) -> Tuple[List[Artifact], List[str]]:
        """
        List the store and keep only our own artifacts.

        Returns:
            Tuple of (artifacts, skipped entry names)

        Raises:
            ListingFailed: If the store cannot be listed
        """
        artifacts = []
        skipped = []

        for entry in self.store.list_entries():
            artifact = Artifact.from_name(
                entry.name,
                self.store.location,
                self.store.path_for(entry.name),
                size_bytes=entry.size_bytes,
                modified_at=entry.modified_at
            )
            if artifact is None:
                logger.debug(f"Ignoring unrecognized {self.store.location.value} entry: {entry.name}")
                skipped.append(entry.name)
                continue
            if artifact.prefix != self.prefix:
                logger.debug(
                    f"Ignoring {self.store.location.value} artifact with foreign prefix: {entry.name}"
                )
                skipped.append(entry.name)
                continue
            artifacts.append(artifact)

        return artifacts, skipped

    def plan(self, protected: Iterable[str] = ()) -> List[Artifact]:
        """
        Compute deletion candidates without deleting anything.

        Raises:
            ListingFailed: If the store cannot be listed
        """
        artifacts, _ = self.collect()
        return select_expired(
            artifacts, self.policy, self._now(),
            age_from_mtime=self.store.age_from_mtime,
            protected=protected
        )

    def enforce(self, protected: Iterable[str] = ()) -> BatchResult:
        """
        Delete every expired artifact at the store.

        Args:
            protected: Artifact names that must be kept regardless of age

        Returns:
            BatchResult with deleted/failed names and error messages

        Raises:
            ListingFailed: If the store cannot be listed; nothing is deleted
        """
        location = self.store.location.value
        result = BatchResult(location=self.store.location)

        artifacts, result.skipped = self.collect()
        candidates = select_expired(
            artifacts, self.policy, self._now(),
            age_from_mtime=self.store.age_from_mtime,
            protected=protected
        )

        logger.info(
            f"{len(artifacts)} {location} backup(s) found in {self.store.describe()}, "
            f"{len(candidates)} older than {self.policy.max_age_days} days"
        )

        for artifact in candidates:
            try:
                self.store.delete(artifact)
            except (DeleteFailed, TransportError, OSError) as e:
                result.failed.append(artifact.name)
                result.errors.append(str(e))
                logger.warning(str(e))
            else:
                result.deleted.append(artifact.name)
                logger.info(f"Deleted {location} file: {artifact.name}")

        return result
