"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Dump and compress the database cluster into the local backup directory
2. Ensure the remote directory exists
3. Upload the new artifact
4. Delete expired local artifacts
5. Delete expired remote artifacts

A failure in steps 1-3 aborts the run and no cleanup happens, so an
unreliable dump or a failed transfer never reduces the number of good
backups. Cleanup is best effort and never fails the run.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from pgbackup.config import Config
from pgbackup.models import Artifact, RetentionPolicy, RunResult, RunState
from .dump import DumpProducer, human_size
from .errors import BackupError, DumpFailed, ListingFailed
from .naming import format_artifact_name
from .retention import LocalStore, RemoteStore, RetentionEngine
from .transport import SSHTransport, Transport


logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Orchestrates one backup run.

    The executor owns the transport session for the whole run and releases
    it on every exit path.
    """

    def __init__(
        self,
        config: Config,
        producer: Optional[DumpProducer] = None,
        transport_factory: Optional[Callable[[], Transport]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize backup executor.

        Args:
            config: Job configuration
            producer: Dump producer (default built from config)
            transport_factory: Returns an unopened Transport (default SSHTransport)
            clock: Returns the current time (default datetime.now)
        """
        self.config = config
        self.producer = producer or DumpProducer(
            pg_host=config.pg_host,
            pg_port=config.pg_port,
            pg_user=config.pg_user,
            pgpass_file=config.pgpass_file
        )
        self.transport_factory = transport_factory or self._ssh_transport
        self.clock = clock
        self.policy = RetentionPolicy(config.retention_days)

        self.state = RunState.IDLE
        self.result = None
        self.logs = []

    def _ssh_transport(self) -> Transport:
        return SSHTransport(
            host=self.config.remote_host,
            port=self.config.remote_port,
            username=self.config.remote_user,
            private_key=self.config.ssh_key_path,
            timeout=self.config.ssh_connect_timeout
        )

    def _now(self) -> datetime:
        return self.clock() if self.clock else datetime.now()

    def execute(self) -> RunResult:
        """
        Execute the backup run.

        Returns:
            RunResult describing what happened; fatal errors are recorded in
            it rather than raised
        """
        self.result = RunResult(started_at=self._now())
        self._log("=== Starting PostgreSQL backup process ===")

        try:
            self._execute_workflow()
            self.state = RunState.DONE
            self._log("=== Backup process completed successfully ===")

        except BackupError as e:
            self._abort(e)
            self._log(f"ERROR: {e}", logging.ERROR)

        except Exception as e:
            self._abort(e)
            logger.exception("Unexpected error during backup")
            self._log(f"ERROR: unexpected {type(e).__name__}: {e}", logging.ERROR)

        finally:
            self.result.completed_at = self._now()
            self._log_summary()

        return self.result

    def _abort(self, error: Exception):
        self.result.failure = error
        self.result.failed_state = self.state
        self.state = RunState.ABORTED

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        self.state = RunState.DUMPING
        artifact = self._dump()
        self.result.artifact = artifact
        self.result.dump_ok = True

        self.state = RunState.UPLOADING
        self._log(
            f"Connecting to {self.config.remote_user}@{self.config.remote_host}:"
            f"{self.config.remote_port}"
        )
        with self.transport_factory() as transport:
            self._upload(transport, artifact)
            self.result.upload_ok = True

            self.state = RunState.LOCAL_CLEANUP
            self._cleanup_local(artifact)

            self.state = RunState.REMOTE_CLEANUP
            self._cleanup_remote(transport, artifact)

    def _dump(self) -> Artifact:
        """
        Create the dump artifact in the local backup directory.

        Raises:
            DumpFailed, CompressionFailed, OutputMissing
        """
        backup_dir = Path(self.config.local_backup_dir)
        if not backup_dir.is_dir():
            self._log(f"Creating local backup directory: {backup_dir}")
            try:
                backup_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DumpFailed(f"Failed to create local backup directory {backup_dir}: {e}")

        name = format_artifact_name(self.config.backup_prefix, self._now())
        self._log(f"Backup file: {name}")

        self._log("Step 1: Running pg_dumpall and compressing...")
        artifact = self.producer.produce(str(backup_dir / name))
        self._log(f"Backup created successfully ({human_size(artifact.size_bytes)})")
        return artifact

    def _upload(self, transport: Transport, artifact: Artifact):
        """
        Raises:
            DirectoryEnsureFailed, UploadFailed
        """
        self._log("Step 2: Ensuring remote directory exists...")
        transport.ensure_directory(self.config.remote_dir)
        self._log("Remote directory confirmed")

        self._log("Step 3: Transferring backup to remote server...")
        remote_path = transport.upload(artifact.path, self.config.remote_dir)
        self._log(f"Transfer completed successfully ({remote_path})")

    def _cleanup_local(self, artifact: Artifact):
        self._log(
            f"Step 4: Cleaning up local backups older than {self.policy.max_age_days} days..."
        )
        engine = RetentionEngine(
            LocalStore(self.config.local_backup_dir),
            self.policy,
            self.config.backup_prefix,
            clock=self.clock
        )

        try:
            batch = engine.enforce(protected=[artifact.name])
        except ListingFailed as e:
            self._record_error(f"Local cleanup skipped: {e}")
            return
        except Exception as e:
            logger.exception("Unexpected error during local cleanup")
            self._record_error(f"Local cleanup failed: {type(e).__name__}: {e}")
            return

        self.result.local_cleanup_count = batch.deleted_count
        self.result.errors.extend(batch.errors)
        self._log(f"Deleted {batch.deleted_count} old local backup(s)")
        if batch.failed_count:
            self._log(
                f"WARNING: Failed to delete {batch.failed_count} local backup(s)",
                logging.WARNING
            )

    def _cleanup_remote(self, transport: Transport, artifact: Artifact):
        self._log(
            f"Step 5: Cleaning up remote backups older than {self.policy.max_age_days} days..."
        )
        engine = RetentionEngine(
            RemoteStore(transport, self.config.remote_dir),
            self.policy,
            self.config.backup_prefix,
            clock=self.clock
        )

        try:
            batch = engine.enforce(protected=[artifact.name])
        except ListingFailed as e:
            self._record_error(f"Remote cleanup skipped: {e}")
            return
        except Exception as e:
            logger.exception("Unexpected error during remote cleanup")
            self._record_error(f"Remote cleanup failed: {type(e).__name__}: {e}")
            return

        self.result.remote_cleanup_attempted = True
        self.result.remote_cleanup_count = batch.deleted_count
        self.result.errors.extend(batch.errors)
        self._log(f"Deleted {batch.deleted_count} old remote backup(s)")
        if batch.failed_count:
            self._log(
                f"WARNING: Failed to delete {batch.failed_count} remote backup(s)",
                logging.WARNING
            )

    def _record_error(self, message: str):
        self.result.errors.append(message)
        self._log(f"WARNING: {message}", logging.WARNING)

    def _log_summary(self):
        result = self.result
        if result.failure is not None:
            step = result.failed_state.value if result.failed_state else 'unknown'
            self._log(
                f"Backup FAILED during {step}: {result.failure_reason}",
                logging.ERROR
            )
        self._log(
            f"Run finished: status={result.status.value}, dump_ok={result.dump_ok}, "
            f"upload_ok={result.upload_ok}, local_deleted={result.local_cleanup_count}, "
            f"remote_deleted={result.remote_cleanup_count}, "
            f"remote_cleanup_attempted={result.remote_cleanup_attempted}, "
            f"errors={len(result.errors)}"
        )

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = self._now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def run_backup(config: Config, **kwargs) -> RunResult:
    """
    Execute one backup run for a configuration.

    Args:
        config: Job configuration
        **kwargs: Passed through to BackupExecutor

    Returns:
        RunResult
    """
    executor = BackupExecutor(config, **kwargs)
    return executor.execute()
