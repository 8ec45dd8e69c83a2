"""Command-line entry point: run one backup and exit."""

import logging
import sys

from pgbackup import configure_logging
from pgbackup.backup.executor import run_backup
from pgbackup.config import Config, ConfigError


EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def main() -> int:
    """
    Run one backup using configuration from the environment.

    Returns:
        0 if the dump and upload succeeded, 1 if the run failed,
        2 if the configuration is invalid
    """
    try:
        config = Config.from_env()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        configure_logging(config)
    except OSError as e:
        print(f"ERROR: Failed to open log file {config.log_file}: {e}", file=sys.stderr)
        return EXIT_FAILURE

    result = run_backup(config)

    if result.errors:
        logger = logging.getLogger(__name__)
        for error in result.errors:
            logger.warning(f"Non-fatal: {error}")

    return result.exit_code()


if __name__ == '__main__':
    sys.exit(main())
