"""
Dump producer.

Runs the database dump and the compressor as two processes connected by a
pipe, equivalent to:

    pg_dumpall -h HOST -p PORT -U USER | gzip > OUTPUT

Both exit statuses are inspected. Output is written to a hidden temporary
file next to the destination and only renamed into place once both stages
succeeded, so an interrupted run never leaves a file under an artifact name.
"""

import logging
import os
import signal
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from pgbackup.models import Artifact, Location
from .errors import CompressionFailed, DumpFailed, OutputMissing


logger = logging.getLogger(__name__)

# Bytes of stderr kept for error messages
STDERR_TAIL_BYTES = 2000


class DumpProducer:
    """
    Produces one compressed dump file per call.

    Credentials are never handled here: the dump tool reads them from the
    password file named by PGPASSFILE.
    """

    def __init__(
        self,
        pg_host: str,
        pg_port: int,
        pg_user: str,
        pgpass_file: Optional[str] = None,
        dump_command: str = 'pg_dumpall',
        compress_command: str = 'gzip'
    ):
        """
        Initialize dump producer.

        Args:
            pg_host: Database host
            pg_port: Database port
            pg_user: Database user
            pgpass_file: Password file passed as PGPASSFILE (default ~/.pgpass)
            dump_command: Dump executable
            compress_command: Compression executable (reads stdin, writes stdout)
        """
        self.pg_host = pg_host
        self.pg_port = pg_port
        self.pg_user = pg_user
        self.pgpass_file = pgpass_file or os.path.expanduser('~/.pgpass')
        self.dump_command = dump_command
        self.compress_command = compress_command

    def build_dump_command(self) -> List[str]:
        return [
            self.dump_command,
            '-h', self.pg_host,
            '-p', str(self.pg_port),
            '-U', self.pg_user,
            '--no-password'
        ]

    def build_compress_command(self) -> List[str]:
        return [self.compress_command]

    def _environment(self) -> dict:
        env = os.environ.copy()
        env['PGPASSFILE'] = self.pgpass_file
        return env

    def produce(self, output_path: str) -> Artifact:
        """
        Run the dump pipeline and write the artifact to output_path.

        Args:
            output_path: Destination path; its filename must be an artifact name

        Returns:
            The local Artifact that was created

        Raises:
            ValueError: If output_path does not end in an artifact name
            DumpFailed: If the dump stage fails or cannot be started
            CompressionFailed: If the compression stage fails or cannot be started
            OutputMissing: If both stages succeeded but the file is absent or empty
        """
        output = Path(output_path)
        if Artifact.from_name(output.name, Location.LOCAL, str(output)) is None:
            raise ValueError(f"Not an artifact filename: {output.name}")

        temp_path = output.with_name(f".{output.name}.partial")
        dump_proc = None
        compress_proc = None

        try:
            with open(temp_path, 'wb') as out, \
                    tempfile.TemporaryFile() as dump_err, \
                    tempfile.TemporaryFile() as compress_err:
                try:
                    dump_proc = subprocess.Popen(
                        self.build_dump_command(),
                        stdout=subprocess.PIPE,
                        stderr=dump_err,
                        env=self._environment()
                    )
                except OSError as e:
                    raise DumpFailed(f"Failed to start {self.dump_command}: {e}")

                try:
                    compress_proc = subprocess.Popen(
                        self.build_compress_command(),
                        stdin=dump_proc.stdout,
                        stdout=out,
                        stderr=compress_err
                    )
                except OSError as e:
                    raise CompressionFailed(f"Failed to start {self.compress_command}: {e}")
                finally:
                    # The compressor holds the read end now; closing ours lets the
                    # dump receive SIGPIPE if the compressor exits early
                    dump_proc.stdout.close()

                compress_status = compress_proc.wait()
                dump_status = dump_proc.wait()
                logger.debug(
                    f"Pipeline finished (dump={dump_status}, compress={compress_status})"
                )

                self._check_statuses(dump_status, compress_status, dump_err, compress_err)

            # Empty output never gets the artifact name
            if temp_path.stat().st_size == 0:
                raise OutputMissing(f"Backup file is empty: {output}")

            os.replace(temp_path, output)

        except BaseException:
            _terminate(dump_proc)
            _terminate(compress_proc)
            _remove_partial(temp_path)
            raise

        return self._verify_output(output)

    def _check_statuses(self, dump_status: int, compress_status: int, dump_err, compress_err):
        """
        Map the two exit statuses to an error, if any.

        A dump killed by SIGPIPE is a symptom of the compressor dying first,
        so that case is reported as a compression failure.
        """
        if compress_status != 0 and dump_status in (0, -signal.SIGPIPE):
            raise CompressionFailed(
                f"{self.compress_command} exited with status {compress_status}"
                f"{_stderr_tail(compress_err)}"
            )
        if dump_status != 0:
            raise DumpFailed(
                f"{self.dump_command} exited with status {dump_status}"
                f"{_stderr_tail(dump_err)}"
            )

    def _verify_output(self, output: Path) -> Artifact:
        try:
            size = output.stat().st_size
        except FileNotFoundError:
            raise OutputMissing(f"Backup file was not created: {output}")
        except OSError as e:
            raise OutputMissing(f"Cannot access backup file {output}: {e}")

        if size == 0:
            _remove_partial(output)
            raise OutputMissing(f"Backup file is empty: {output}")

        return Artifact.from_name(output.name, Location.LOCAL, str(output), size_bytes=size)


def human_size(num_bytes: Optional[int]) -> str:
    """
    Format a byte count the way `du -h` does (e.g. 512, 1.5K, 12M).

    Args:
        num_bytes: Size in bytes

    Returns:
        Human readable size
    """
    if num_bytes is None:
        return 'unknown size'

    size = float(num_bytes)
    for unit in ('', 'K', 'M', 'G', 'T'):
        if size < 1024 or unit == 'T':
            if unit == '':
                return f"{int(size)}"
            return f"{size:.1f}{unit}" if size < 10 else f"{size:.0f}{unit}"
        size /= 1024


def _stderr_tail(stream) -> str:
    stream.seek(0)
    data = stream.read()[-STDERR_TAIL_BYTES:]
    text = data.decode('utf-8', errors='replace').strip()
    return f": {text}" if text else ''


def _terminate(proc: Optional[subprocess.Popen]):
    if proc is not None and proc.poll() is None:
        proc.kill()
        proc.wait()


def _remove_partial(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove {path}: {e}")
