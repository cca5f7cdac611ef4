"""
Backup module for backup-tool.

This module handles the core backup pipeline:
- Pre-backup commands
- Archive creation
- Remote storage (FTP, SFTP and S3) with collision-free naming
- Execution orchestration
"""

from .executor import BackupExecutor, BackupResult, execute_backup, validate_setup, pack_directory
from .commands import run_commands
from .compression import create_archive, build_archive
from .storage import FTPStore, SFTPStore, S3Store, RemoteUploader, create_remote_store
from .errors import (
    BackupError,
    CommandFailed,
    ArchiveFailed,
    StorageError,
    RemoteConnectFailed,
    TooManyCollisions,
    UploadFailed,
    PipelineCrashed
)

__all__ = [
    'BackupExecutor',
    'BackupResult',
    'execute_backup',
    'validate_setup',
    'pack_directory',
    'run_commands',
    'create_archive',
    'build_archive',
    'FTPStore',
    'SFTPStore',
    'S3Store',
    'RemoteUploader',
    'create_remote_store',
    'BackupError',
    'CommandFailed',
    'ArchiveFailed',
    'StorageError',
    'RemoteConnectFailed',
    'TooManyCollisions',
    'UploadFailed',
    'PipelineCrashed'
]
