"""
Remote transport for backup artifacts.

Transport is the narrow interface the rest of the system uses to talk to the
remote store (list, upload, delete, ensure_directory). SSHTransport implements
it over SSH/SFTP with paramiko.

All remote operations are structured SFTP calls; no shell commands are built
from filenames.
"""

import logging
import posixpath
import stat
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import List

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from pgbackup.models import DirectoryEntry
from .errors import (
    DirectoryEnsureFailed,
    TransportError,
    TransportUnreachable,
    UploadFailed
)


logger = logging.getLogger(__name__)


class Transport(ABC):
    """
    Scoped session to a remote store.

    Use as a context manager: the session is opened on enter and released
    on every exit path.
    """

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    @abstractmethod
    def connect(self):
        """Open the session. Raises TransportUnreachable on failure."""

    @abstractmethod
    def close(self):
        """Release the session. Safe to call more than once."""

    @abstractmethod
    def list(self, directory: str) -> List[DirectoryEntry]:
        """List regular files in a directory with their modification times."""

    @abstractmethod
    def upload(self, local_path: str, remote_dir: str) -> str:
        """Upload a file into remote_dir and return its remote path."""

    @abstractmethod
    def delete(self, remote_path: str):
        """Delete a remote file."""

    @abstractmethod
    def ensure_directory(self, path: str):
        """Create a remote directory and its parents if missing."""


class SSHTransport(Transport):
    """
    Transport over SSH/SFTP using key authentication.

    Uploads are written to a hidden .partial name and renamed into place,
    so an interrupted transfer is never visible under an artifact name.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        private_key: str,
        timeout: int = 30
    ):
        """
        Initialize SSH transport.

        Args:
            host: SSH hostname or IP
            port: SSH port
            username: SSH username
            private_key: Path to private key file
            timeout: Connection timeout in seconds
        """
        self.host = host
        self.port = port
        self.username = username
        self.private_key_path = private_key
        self.timeout = timeout

        self.ssh_client = None
        self.sftp_client = None

    def connect(self):
        """
        Establish SSH connection and open an SFTP channel.

        Raises:
            TransportUnreachable: If the key is missing, authentication fails
                or the host cannot be reached
        """
        key_path = Path(self.private_key_path).expanduser()
        if not key_path.exists():
            raise TransportUnreachable(f"Private key not found: {self.private_key_path}")

        try:
            self.ssh_client = SSHClient()
            self.ssh_client.load_system_host_keys()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())

            self.ssh_client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                key_filename=str(key_path),
                timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False
            )
            self.sftp_client = self.ssh_client.open_sftp()

        except paramiko.AuthenticationException as e:
            self.close()
            raise TransportUnreachable(f"SSH authentication failed: {e}")
        except paramiko.SSHException as e:
            self.close()
            raise TransportUnreachable(f"SSH connection failed: {e}")
        except Exception as e:
            self.close()
            raise TransportUnreachable(f"Failed to connect to {self.host}:{self.port}: {e}")

        logger.info(f"Connected to {self.username}@{self.host}:{self.port}")

    def close(self):
        """Close SFTP/SSH connections."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except Exception as e:
                logger.warning(f"Error closing SFTP channel: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except Exception as e:
                logger.warning(f"Error closing SSH connection: {e}")
            self.ssh_client = None

    def _sftp(self) -> paramiko.SFTPClient:
        if self.sftp_client is None:
            raise TransportError("Transport session is not open")
        return self.sftp_client

    def list(self, directory: str) -> List[DirectoryEntry]:
        """
        List regular files in a remote directory.

        Name, size and modification time come back from a single
        listdir_attr call.

        Args:
            directory: Remote directory path

        Returns:
            List of DirectoryEntry

        Raises:
            TransportError: If the directory cannot be listed
        """
        sftp = self._sftp()

        try:
            attributes = sftp.listdir_attr(directory)
        except FileNotFoundError:
            raise TransportError(f"Remote directory not found: {directory}")
        except PermissionError:
            raise TransportError(f"Permission denied listing remote directory: {directory}")
        except Exception as e:
            raise TransportError(f"Failed to list {directory}: {e}")

        entries = []
        for attr in attributes:
            if attr.st_mode is not None and not stat.S_ISREG(attr.st_mode):
                continue
            modified_at = None
            if attr.st_mtime is not None:
                modified_at = datetime.fromtimestamp(attr.st_mtime)
            entries.append(DirectoryEntry(attr.filename, modified_at, attr.st_size))

        return entries

    def upload(self, local_path: str, remote_dir: str) -> str:
        """
        Upload a file into a remote directory.

        Args:
            local_path: Path to local file
            remote_dir: Remote directory path

        Returns:
            Remote path of the uploaded file

        Raises:
            UploadFailed: If the transfer or the final rename fails
        """
        sftp = self._sftp()

        filename = Path(local_path).name
        remote_path = posixpath.join(remote_dir, filename)
        partial_path = posixpath.join(remote_dir, f".{filename}.partial")

        try:
            sftp.put(local_path, partial_path, confirm=True)
            sftp.posix_rename(partial_path, remote_path)
        except FileNotFoundError as e:
            self._discard(partial_path)
            raise UploadFailed(f"Upload of {filename} failed, file not found: {e}")
        except PermissionError as e:
            self._discard(partial_path)
            raise UploadFailed(f"Permission denied uploading to {remote_dir}: {e}")
        except Exception as e:
            self._discard(partial_path)
            raise UploadFailed(f"Failed to upload {filename} to {remote_dir}: {e}")

        return remote_path

    def _discard(self, remote_path: str):
        try:
            self.sftp_client.remove(remote_path)
        except FileNotFoundError:
            pass
        except Exception as e:
            logger.warning(f"Failed to remove partial upload {remote_path}: {e}")

    def delete(self, remote_path: str):
        """
        Delete a remote file. A file that is already gone is not an error.

        Args:
            remote_path: Remote file path

        Raises:
            TransportError: If deletion fails
        """
        sftp = self._sftp()

        try:
            sftp.remove(remote_path)
        except FileNotFoundError:
            logger.debug(f"Remote file already gone: {remote_path}")
        except PermissionError as e:
            raise TransportError(f"Permission denied deleting {remote_path}: {e}")
        except Exception as e:
            raise TransportError(f"Failed to delete {remote_path}: {e}")

    def ensure_directory(self, path: str):
        """
        Create a remote directory and any missing parents (mkdir -p).

        Args:
            path: Remote directory path

        Raises:
            DirectoryEnsureFailed: If a component cannot be created or is not
                a directory
        """
        sftp = self._sftp()

        current = '/' if path.startswith('/') else ''
        for part in [p for p in path.split('/') if p]:
            current = posixpath.join(current, part) if current else part
            try:
                attr = sftp.stat(current)
            except FileNotFoundError:
                try:
                    sftp.mkdir(current)
                except Exception as e:
                    raise DirectoryEnsureFailed(f"Failed to create remote directory {current}: {e}")
                continue
            except Exception as e:
                raise DirectoryEnsureFailed(f"Failed to stat remote path {current}: {e}")

            if attr.st_mode is not None and not stat.S_ISDIR(attr.st_mode):
                raise DirectoryEnsureFailed(f"Remote path exists and is not a directory: {current}")
