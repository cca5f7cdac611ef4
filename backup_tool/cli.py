"""
Command line interface for backup-tool.

Usage:
    backup-tool [-c CONFIG] [--log-dir DIR] [-v] [run]
    backup-tool [...] schedule [HH:MM]
    backup-tool [...] test
    backup-tool [...] zip SRC DST [--prefix PREFIX]

Exit codes: 0 success, 1 backup or check failure, 2 startup error.
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from backup_tool import __version__, configure_logging
from backup_tool.backup.errors import ArchiveFailed
from backup_tool.backup.executor import BackupExecutor, pack_directory, validate_setup
from backup_tool.config import ENV_LOG_DIR, ConfigError, Settings, load_settings
from backup_tool.scheduler import DailyScheduler, ScheduleError


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_STARTUP_ERROR = 2


def create_parser() -> argparse.ArgumentParser:
    """
    Build the argument parser.

    Returns:
        argparse.ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog='backup-tool',
        description='Archive directories and upload them to a remote store.'
    )
    parser.add_argument(
        '-c', '--config',
        help='Path to the TOML config file (default: $BACKUP_TOOL_CONFIG or ./config.toml)'
    )
    parser.add_argument(
        '--log-dir',
        default=os.environ.get(ENV_LOG_DIR),
        help='Directory for the rotating log file (default: $BACKUP_TOOL_LOG_DIR)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command')

    subparsers.add_parser('run', help='Run the configured backup (default)')

    schedule_parser = subparsers.add_parser('schedule', help='Run the backup daily at a fixed time')
    schedule_parser.add_argument(
        'time',
        nargs='?',
        help='Time of day as HH:MM (default: [schedule].time from config)'
    )

    subparsers.add_parser('test', help='Check configuration and connectivity without a backup')

    zip_parser = subparsers.add_parser('zip', help='Pack a directory into an archive without uploading')
    zip_parser.add_argument('src', help='Directory to pack')
    zip_parser.add_argument('dst', help='Archive file to create')
    zip_parser.add_argument('--prefix', default='', help='Prefix for entries inside the archive')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point.

    Args:
        argv: Arguments without program name (default: sys.argv[1:])

    Returns:
        Process exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_dir, debug=args.verbose)

    if args.command == 'zip':
        return _cmd_zip(args)

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        logger.error(f"Can't load configuration: {e}")
        return EXIT_STARTUP_ERROR

    if args.command == 'test':
        return EXIT_OK if validate_setup(settings) else EXIT_FAILED

    if args.command == 'schedule':
        time_of_day = args.time or settings.schedule.time
        if not time_of_day:
            logger.error("No schedule time given and [schedule].time is not configured")
            return EXIT_STARTUP_ERROR
        return _cmd_schedule(settings, time_of_day)

    # Plain run: a configured schedule turns it into the daily loop
    if settings.schedule.time:
        return _cmd_schedule(settings, settings.schedule.time)
    return _cmd_run(settings)


def _cmd_run(settings: Settings) -> int:
    result = BackupExecutor(settings).execute()
    return EXIT_OK if result.succeeded else EXIT_FAILED


def _cmd_schedule(settings: Settings, time_of_day: str) -> int:
    executor = BackupExecutor(settings)
    try:
        scheduler = DailyScheduler(time_of_day, executor.execute, timezone=settings.schedule.timezone)
    except (ScheduleError, LookupError) as e:
        # LookupError covers unknown timezone names
        logger.error(f"Invalid schedule: {e}")
        return EXIT_STARTUP_ERROR

    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        logger.info("Scheduler stopped")
    return EXIT_OK


def _cmd_zip(args) -> int:
    try:
        pack_directory(args.src, args.dst, args.prefix)
    except ArchiveFailed as e:
        logger.error(str(e))
        return EXIT_FAILED
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
