"""
Backup module for pgbackup.

This module handles the core backup functionality including:
- Artifact naming
- Dump and compression
- Remote transport (SSH/SFTP)
- Retention policy enforcement
- Execution orchestration
"""

from .executor import BackupExecutor, run_backup
from .dump import DumpProducer
from .naming import format_artifact_name, parse_artifact_name, NOT_AN_ARTIFACT
from .retention import LocalStore, RemoteStore, RetentionEngine, select_expired
from .transport import Transport, SSHTransport

__all__ = [
    'BackupExecutor',
    'run_backup',
    'DumpProducer',
    'format_artifact_name',
    'parse_artifact_name',
    'NOT_AN_ARTIFACT',
    'LocalStore',
    'RemoteStore',
    'RetentionEngine',
    'select_expired',
    'Transport',
    'SSHTransport'
]
