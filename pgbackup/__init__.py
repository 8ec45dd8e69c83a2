import os
import logging


__version__ = '1.0.0'


def configure_logging(config):
    """
    Configure application logging.

    Lines go to the console and are appended to config.log_file. Rotation is
    left to the host (e.g. logrotate).

    Args:
        config: Config instance

    Raises:
        OSError: If the log directory or file cannot be created
    """
    # Create log directory if it doesn't exist
    log_dir = os.path.dirname(os.path.abspath(config.log_file))
    os.makedirs(log_dir, exist_ok=True)

    log_level = logging.getLevelName(config.log_level)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = logging.FileHandler(config.log_file, mode='a', encoding='utf-8')
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler], force=True)

    # paramiko is chatty at INFO
    logging.getLogger('paramiko').setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        f"Logging configured (level: {logging.getLevelName(log_level)})"
    )
