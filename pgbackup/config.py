import os
from dataclasses import dataclass, asdict
from typing import Dict, Mapping, Optional


# Environment variables that must be set for a run
REQUIRED_KEYS = (
    'PG_HOST',
    'PG_PORT',
    'PG_USER',
    'LOCAL_BACKUP_DIR',
    'BACKUP_PREFIX',
    'REMOTE_HOST',
    'REMOTE_PORT',
    'REMOTE_USER',
    'REMOTE_DIR',
    'SSH_KEY_PATH',
    'RETENTION_DAYS',
    'LOG_FILE',
)

DEFAULT_SSH_CONNECT_TIMEOUT = 30
DEFAULT_LOG_LEVEL = 'INFO'
DEFAULT_SCHEDULE_CRON = '0 2 * * *'


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


@dataclass(frozen=True)
class Config:
    """Configuration for one backup job"""

    # PostgreSQL connection
    pg_host: str
    pg_port: int
    pg_user: str

    # Local backups
    local_backup_dir: str
    backup_prefix: str

    # Remote server
    remote_host: str
    remote_port: int
    remote_user: str
    remote_dir: str
    ssh_key_path: str

    # Retention
    retention_days: int

    # Logging
    log_file: str

    # Optional
    pgpass_file: Optional[str] = None
    ssh_connect_timeout: int = DEFAULT_SSH_CONNECT_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL
    schedule_cron: str = DEFAULT_SCHEDULE_CRON

    def validate(self):
        from pgbackup.backup.naming import validate_prefix

        for name, port in (('PG_PORT', self.pg_port), ('REMOTE_PORT', self.remote_port)):
            if not 1 <= port <= 65535:
                raise ConfigError(f"{name} must be between 1 and 65535, got {port}")
        if self.retention_days < 1:
            raise ConfigError(f"RETENTION_DAYS must be at least 1, got {self.retention_days}")
        if self.ssh_connect_timeout < 1:
            raise ConfigError(
                f"SSH_CONNECT_TIMEOUT must be at least 1, got {self.ssh_connect_timeout}"
            )
        try:
            validate_prefix(self.backup_prefix)
        except ValueError as e:
            raise ConfigError(str(e))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        """
        Load configuration from environment variables.

        Args:
            environ: Mapping to read from (default os.environ)

        Returns:
            Validated Config

        Raises:
            ConfigError: If required variables are missing or values are invalid
        """
        env = os.environ if environ is None else environ

        values = {key: (env.get(key) or '').strip() for key in REQUIRED_KEYS}
        missing = [key for key, value in values.items() if not value]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

        config = cls(
            pg_host=values['PG_HOST'],
            pg_port=_parse_int('PG_PORT', values['PG_PORT']),
            pg_user=values['PG_USER'],
            local_backup_dir=os.path.expanduser(values['LOCAL_BACKUP_DIR']),
            backup_prefix=values['BACKUP_PREFIX'],
            remote_host=values['REMOTE_HOST'],
            remote_port=_parse_int('REMOTE_PORT', values['REMOTE_PORT']),
            remote_user=values['REMOTE_USER'],
            remote_dir=values['REMOTE_DIR'],
            ssh_key_path=os.path.expanduser(values['SSH_KEY_PATH']),
            retention_days=_parse_int('RETENTION_DAYS', values['RETENTION_DAYS']),
            log_file=os.path.expanduser(values['LOG_FILE']),
            pgpass_file=env.get('PGPASSFILE') or None,
            ssh_connect_timeout=_parse_int(
                'SSH_CONNECT_TIMEOUT',
                env.get('SSH_CONNECT_TIMEOUT') or str(DEFAULT_SSH_CONNECT_TIMEOUT)
            ),
            log_level=(env.get('LOG_LEVEL') or DEFAULT_LOG_LEVEL).upper(),
            schedule_cron=env.get('SCHEDULE_CRON') or DEFAULT_SCHEDULE_CRON,
        )
        config.validate()
        return config

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
