"""
backup-tool: unattended periodic backups.

Runs pre-backup commands, archives the configured directories into one ZIP
file, uploads it to an FTP, SFTP or S3 store and reports the outcome by
e-mail.
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


__version__ = '1.0.0'

LOG_FILENAME = 'backup-tool.log'


def configure_logging(log_dir: Optional[str] = None, debug: bool = False):
    """
    Configure application logging.

    Logs go to the console and, when log_dir is given, to a rotating file.

    Args:
        log_dir: Directory for the log file (default: console only)
        debug: Log at DEBUG instead of INFO level
    """
    log_level = logging.DEBUG if debug else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, LOG_FILENAME),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Library chatter stays at WARNING unless debugging
    if not debug:
        for name in ('botocore', 'boto3', 's3transfer', 'paramiko', 'apscheduler'):
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        f"Logging configured (level: {logging.getLevelName(log_level)})"
    )
