"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Run pre-backup commands
2. Create temporary directory
3. Create ZIP archive of all sources
4. Upload to the remote store under a free name
5. Cleanup temporary files
6. Notify success or error recipients

Steps 1-5 run on a dedicated worker thread. Anything unexpected raised
there is turned into a failed result, so one bad run never takes down a
scheduler loop.
"""

import logging
import os
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from backup_tool.config import RemoteSettings, Settings, SourceSpec
from backup_tool.notifier import EmailNotifier
from backup_tool.utils.timing import format_duration
from .commands import check_commands, run_commands
from .compression import create_archive, get_archive_size
from .errors import BackupError, PipelineCrashed
from .storage import RemoteStore, RemoteUploader, create_remote_store


logger = logging.getLogger(__name__)

ARCHIVE_FILENAME = 'backup.zip'
SUCCESS_SUBJECT = 'Backup finished'
ERROR_SUBJECT = 'Error backup'
CRASH_MESSAGE = 'Backup process crashed unexpectedly'


@dataclass
class BackupResult:
    """Outcome of one backup run."""

    status: str
    started_at: datetime
    completed_at: datetime
    elapsed: timedelta
    error_message: Optional[str] = None
    remote_name: Optional[str] = None
    file_size_bytes: Optional[int] = None
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for the configured sources.
    """

    def __init__(
        self,
        settings: Settings,
        notifier=None,
        store_factory: Callable[[RemoteSettings], RemoteStore] = create_remote_store
    ):
        """
        Initialize backup executor.

        Args:
            settings: Loaded settings
            notifier: Object with send(recipients, subject, body)
                (default: EmailNotifier for settings.notify)
            store_factory: Creates the remote store from remote settings
        """
        self.settings = settings
        self.notifier = notifier or EmailNotifier(settings.notify)
        self.store_factory = store_factory
        self.temp_dir = None
        self.archive_path = None
        self.remote_name = None
        self.file_size_bytes = None
        self.logs = []

    def execute(self) -> BackupResult:
        """
        Execute the backup and notify about the outcome.

        Never raises; failures are reported in the returned result.

        Returns:
            BackupResult with execution results
        """
        self._reset()
        started_at = datetime.now()
        start = time.monotonic()
        self._log("Starting backup")

        error_message = None
        try:
            self._run_isolated()
            self._log("Backup completed successfully")
        except BackupError as e:
            error_message = str(e)
            self._log(f"Backup failed: {e}")

        elapsed = timedelta(seconds=time.monotonic() - start)
        result = BackupResult(
            status='failed' if error_message else 'success',
            started_at=started_at,
            completed_at=datetime.now(),
            elapsed=elapsed,
            error_message=error_message,
            remote_name=self.remote_name,
            file_size_bytes=self.file_size_bytes,
            logs=list(self.logs)
        )

        self._notify(result)
        return result

    def _run_isolated(self):
        """
        Run the workflow on a single worker thread and wait for it.

        Raises:
            BackupError: The workflow's own failure, or PipelineCrashed for
                anything unexpected
        """
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix='backup-run') as worker:
            future = worker.submit(self._execute_workflow)
            try:
                future.result()
            except (BackupError, KeyboardInterrupt):
                raise
            except BaseException as e:
                # SystemExit and friends from a stage end this run only
                logger.exception("Unexpected error in backup run")
                self._log(f"Unexpected {type(e).__name__}: {e}")
                raise PipelineCrashed(CRASH_MESSAGE) from e

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        # Step 1: Pre-backup commands
        if self.settings.run.commands:
            self._log(f"Running {len(self.settings.run.commands)} pre-backup command(s)")
            run_commands(self.settings.run.commands)

        # Step 2: Temporary directory, removed on every exit path
        with tempfile.TemporaryDirectory(prefix='backup-tool-') as temp_dir:
            self.temp_dir = temp_dir
            self._log(f"Temporary directory: {temp_dir}")

            # Step 3: Create archive
            self._log(f"Creating archive from {len(self.settings.sources)} source(s)")
            self.archive_path = self._create_archive()
            self.file_size_bytes = get_archive_size(self.archive_path)
            self._log(f"Archive created ({self.file_size_bytes / 1024 / 1024:.2f} MB)")

            # Step 4: Upload
            self._log("Uploading archive")
            self.remote_name = self._upload()
            self._log(f"Uploaded as {self.remote_name}")

        self._log("Cleaned up temporary directory")

    def _create_archive(self) -> str:
        """
        Create the archive inside the temporary directory.

        Returns:
            Path to created archive file

        Raises:
            ArchiveFailed: If archive creation fails
        """
        for source in self.settings.sources:
            self._log(f"Add dir '{source.path}' to archive as '{source.prefix or '/'}'")
        archive_path = os.path.join(self.temp_dir, ARCHIVE_FILENAME)
        return create_archive(self.settings.sources, archive_path)

    def _upload(self) -> str:
        """
        Upload the archive to the remote store.

        Returns:
            Remote file name

        Raises:
            StorageError: If connecting, naming or uploading fails
        """
        store = self.store_factory(self.settings.remote)
        uploader = RemoteUploader(store, self.settings.remote)
        return uploader.send(self.archive_path)

    def _notify(self, result: BackupResult):
        """Send the success or error notification for a result."""
        notify = self.settings.notify
        duration = format_duration(result.elapsed)

        if result.succeeded:
            logger.info(f"Backup finished successfully in {duration}")
            body = (
                f"Backup finished successfully.\n"
                f"Remote file: {result.remote_name}\n"
                f"Size: {(result.file_size_bytes or 0) / 1024 / 1024:.2f} MB\n"
                f"Elapsed: {duration}\n"
            )
            recipients, subject = notify.success_addresses, SUCCESS_SUBJECT
        else:
            logger.error(f"Backup failed after {duration}: {result.error_message}")
            body = (
                f"Error in backup process: {result.error_message}\n"
                f"Elapsed: {duration}\n"
                f"\n"
                f"Log:\n" + '\n'.join(result.logs) + '\n'
            )
            recipients, subject = notify.error_addresses, ERROR_SUBJECT

        if recipients:
            self.notifier.send(recipients, subject, body)

    def _reset(self):
        self.temp_dir = None
        self.archive_path = None
        self.remote_name = None
        self.file_size_bytes = None
        self.logs = []

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)


def execute_backup(settings: Settings, notifier=None) -> BackupResult:
    """
    Run the configured backup once.

    Args:
        settings: Loaded settings
        notifier: Optional notifier override

    Returns:
        BackupResult with execution results
    """
    executor = BackupExecutor(settings, notifier=notifier)
    return executor.execute()


def validate_setup(settings: Settings, store_factory=create_remote_store) -> bool:
    """
    Check configuration and connectivity without doing a real backup.

    Checks that pre-backup commands exist, that the sources are
    directories, that a remote session can be opened and closed, and that
    the target file name can be rendered.

    Args:
        settings: Loaded settings
        store_factory: Creates the remote store from remote settings

    Returns:
        True if every check passed
    """
    ok = True

    if check_commands(settings.run.commands):
        ok = False

    for source in settings.sources:
        if not os.path.isdir(source.path):
            logger.error(f"Source directory '{source.path}' does not exist")
            ok = False

    uploader = RemoteUploader(store_factory(settings.remote), settings.remote)
    try:
        uploader.check_connection()
        logger.info(f"Remote store works: {uploader.store.describe()}")
    except BackupError as e:
        logger.error(f"Error on connecting to remote store: {e}")
        ok = False

    try:
        base = uploader.generate_base_name()
        logger.info(f"Target file name: {uploader.target_name(base, 0)}")
    except ValueError as e:
        logger.error(f"Error in file name format: {e}")
        ok = False

    logger.info("Test finished" if ok else "Test finished with errors")
    return ok


def pack_directory(src: str, dst: str, prefix: str = '') -> str:
    """
    Pack a single directory into an archive at dst, without uploading.

    Args:
        src: Directory to pack
        dst: Archive path to create
        prefix: Prefix for entry names inside the archive

    Returns:
        Path to created archive file

    Raises:
        ArchiveFailed: If archive creation fails
    """
    logger.info(f"Packing '{src}' into '{dst}'")
    archive_path = create_archive([SourceSpec(path=src, prefix=prefix.strip('/'))], dst)
    logger.info(f"Archive created ({get_archive_size(archive_path)} bytes)")
    return archive_path
