"""
Remote stores and the uploader that names and transfers backup archives.

Supports:
- FTPStore: FTP / FTPS via ftplib
- SFTPStore: SFTP via paramiko
- S3Store: AWS S3 (or compatible) via boto3

Target names are '<file_name>-<timestamp>.zip'. When that name is taken the
uploader tries '-1', '-2', ... up to MAX_NAME_PROBES probes. Probing and
uploading are two steps, so two instances writing to the same directory
could still collide; one writer per target directory is assumed.
"""

import ftplib
import logging
import posixpath
from datetime import datetime
from pathlib import Path
from typing import Optional

import boto3
import paramiko
from botocore.exceptions import BotoCoreError, ClientError
from paramiko import AutoAddPolicy, SSHClient

from backup_tool.config import RemoteSettings
from .errors import RemoteConnectFailed, StorageError, TooManyCollisions, UploadFailed


logger = logging.getLogger(__name__)

MAX_NAME_PROBES = 99
ARCHIVE_EXTENSION = '.zip'
UPLOAD_BLOCK_SIZE = 1024 * 1024


def _reply_code(error: ftplib.Error) -> str:
    """Return the three-digit FTP reply code of an ftplib error."""
    return str(error)[:3]


class RemoteStore:
    """
    Base class for a session with a remote file store.

    Subclasses implement the individual steps; open() runs the session
    setup steps in order.
    """

    def __init__(self, settings: RemoteSettings):
        self.settings = settings

    def open(self):
        """Connect, authenticate and change into the target directory."""
        self._connect()
        self._login()
        self._change_dir()

    def _connect(self):
        raise NotImplementedError

    def _login(self):
        raise NotImplementedError

    def _change_dir(self):
        raise NotImplementedError

    def exists(self, name: str) -> bool:
        """Return True if an object with this name exists in the target directory."""
        raise NotImplementedError

    def upload(self, local_path: str, name: str):
        raise NotImplementedError

    def close(self):
        raise NotImplementedError

    def describe(self) -> str:
        return f"{self.settings.protocol}://{self.settings.host}:{self.settings.port}"


class FTPStore(RemoteStore):
    """FTP store, with optional explicit TLS."""

    def __init__(self, settings: RemoteSettings):
        super().__init__(settings)
        self.ftp: Optional[ftplib.FTP] = None

    def _connect(self):
        self.ftp = ftplib.FTP_TLS() if self.settings.tls else ftplib.FTP()
        self.ftp.connect(self.settings.host, self.settings.port, timeout=60)

    def _login(self):
        self.ftp.login(self.settings.user, self.settings.password)
        if self.settings.tls:
            self.ftp.prot_p()

    def _change_dir(self):
        if self.settings.directory:
            self.ftp.cwd(self.settings.directory)

    def exists(self, name: str) -> bool:
        # SIZE is refused in ASCII mode by many servers
        self.ftp.voidcmd('TYPE I')
        try:
            self.ftp.size(name)
            return True
        except ftplib.error_perm as e:
            if _reply_code(e) == '550':
                return False
            # SIZE not implemented (500/502/504), look the name up instead
            logger.debug(f"SIZE refused for {name} ({e}), falling back to NLST")
        return self._listed(name)

    def _listed(self, name: str) -> bool:
        try:
            entries = self.ftp.nlst(name)
        except (ftplib.error_perm, ftplib.error_temp) as e:
            if _reply_code(e) in ('450', '550'):
                return False
            raise
        return any(posixpath.basename(entry.rstrip('/')) == name for entry in entries)

    def upload(self, local_path: str, name: str):
        with open(local_path, 'rb') as f:
            self.ftp.storbinary(f"STOR {name}", f, blocksize=UPLOAD_BLOCK_SIZE)

    def close(self):
        if self.ftp is None:
            return
        ftp, self.ftp = self.ftp, None
        try:
            if ftp.sock is not None:
                ftp.quit()
        finally:
            ftp.close()


class SFTPStore(RemoteStore):
    """SFTP store over an SSH connection."""

    def __init__(self, settings: RemoteSettings):
        super().__init__(settings)
        self.ssh_client: Optional[SSHClient] = None
        self.sftp_client = None

    def _connect(self):
        # SSHClient authenticates as part of connect
        self.ssh_client = SSHClient()
        self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())

        connect_kwargs = {
            'hostname': self.settings.host,
            'port': self.settings.port,
            'username': self.settings.user,
            'timeout': 30
        }

        if self.settings.password:
            connect_kwargs['password'] = self.settings.password
        elif self.settings.private_key:
            key_path = Path(self.settings.private_key).expanduser()
            if not key_path.exists():
                raise StorageError(f"Private key not found: {self.settings.private_key}")
            connect_kwargs['key_filename'] = str(key_path)

        self.ssh_client.connect(**connect_kwargs)

    def _login(self):
        self.sftp_client = self.ssh_client.open_sftp()

    def _change_dir(self):
        if self.settings.directory:
            self.sftp_client.chdir(self.settings.directory)

    def exists(self, name: str) -> bool:
        try:
            self.sftp_client.stat(name)
            return True
        except FileNotFoundError:
            return False

    def upload(self, local_path: str, name: str):
        self.sftp_client.put(local_path, name, confirm=True)

    def close(self):
        try:
            if self.sftp_client:
                self.sftp_client.close()
        finally:
            self.sftp_client = None
            if self.ssh_client:
                self.ssh_client.close()
                self.ssh_client = None


class S3Store(RemoteStore):
    """
    S3 store. The configured directory is used as a key prefix.
    """

    def __init__(self, settings: RemoteSettings):
        super().__init__(settings)
        self.s3_client = None
        self.key_prefix = ''

    def _connect(self):
        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=self.settings.user or None,
            aws_secret_access_key=self.settings.password or None,
            region_name=self.settings.region,
            endpoint_url=self.settings.endpoint_url
        )

    def _login(self):
        try:
            self.s3_client.head_bucket(Bucket=self.settings.bucket)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.settings.bucket}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.settings.bucket}")
            raise

    def _change_dir(self):
        directory = self.settings.directory.strip('/')
        self.key_prefix = f"{directory}/" if directory else ''

    def _key(self, name: str) -> str:
        return f"{self.key_prefix}{name}"

    def exists(self, name: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.settings.bucket, Key=self._key(name))
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise

    def upload(self, local_path: str, name: str):
        self.s3_client.upload_file(local_path, self.settings.bucket, self._key(name))

    def close(self):
        if self.s3_client is not None:
            self.s3_client.close()
            self.s3_client = None

    def describe(self) -> str:
        return f"s3://{self.settings.bucket}/{self.key_prefix}"


def create_remote_store(settings: RemoteSettings) -> RemoteStore:
    """
    Factory function to create the store for the configured protocol.

    Args:
        settings: Remote store settings

    Returns:
        FTPStore, SFTPStore or S3Store instance

    Raises:
        ValueError: If the protocol is invalid
    """
    if settings.protocol == 'ftp':
        return FTPStore(settings)
    elif settings.protocol == 'sftp':
        return SFTPStore(settings)
    elif settings.protocol == 's3':
        return S3Store(settings)
    else:
        raise ValueError(f"Invalid remote protocol: {settings.protocol}")


class RemoteUploader:
    """
    Picks a free, time-stamped name on the remote store and uploads to it.
    """

    def __init__(self, store: RemoteStore, settings: RemoteSettings):
        """
        Initialize uploader.

        Args:
            store: Remote store to use (not yet opened)
            settings: Remote settings holding the naming configuration
        """
        self.store = store
        self.settings = settings

    def generate_base_name(self, now: Optional[datetime] = None) -> str:
        """
        Generate the target name without index or extension.

        Format: {file_name}-{now formatted with suffix_format}

        Raises:
            ValueError: If the time format cannot be applied
        """
        now = now or datetime.now()
        return f"{self.settings.file_name}-{now.strftime(self.settings.suffix_format)}"

    @staticmethod
    def target_name(base: str, index: int) -> str:
        if index == 0:
            return f"{base}{ARCHIVE_EXTENSION}"
        return f"{base}-{index}{ARCHIVE_EXTENSION}"

    def choose_target_name(self, base: str) -> str:
        """
        Find the first free remote name for base.

        Probes index 0, 1, 2, ... in order and stops at the first name that
        does not exist.

        Args:
            base: Base name from generate_base_name()

        Returns:
            Free remote file name

        Raises:
            TooManyCollisions: If all MAX_NAME_PROBES names exist
            UploadFailed: If a probe fails
        """
        for index in range(MAX_NAME_PROBES):
            name = self.target_name(base, index)
            try:
                taken = self.store.exists(name)
            except Exception as e:
                raise UploadFailed(f"Failed to check remote file {name}: {e}") from e

            if not taken:
                return name
            logger.debug(f"Remote file {name} exists, trying next name")

        raise TooManyCollisions(
            f"Too many matching backup files exist for '{base}' ({MAX_NAME_PROBES} names taken)"
        )

    def send(self, archive_path: str) -> str:
        """
        Upload archive to the remote store under a free name.

        Args:
            archive_path: Path to local archive file

        Returns:
            Remote file name used

        Raises:
            RemoteConnectFailed: If the session cannot be established
            TooManyCollisions: If no free name is found
            UploadFailed: If probing or the transfer fails
        """
        self._open()
        try:
            try:
                base = self.generate_base_name()
            except ValueError as e:
                raise UploadFailed(f"Invalid file name format: {e}") from e

            target = self.choose_target_name(base)

            logger.info(f"Uploading {archive_path} to {self.store.describe()} as {target}")
            try:
                self.store.upload(archive_path, target)
            except Exception as e:
                raise UploadFailed(f"Failed to upload {target}: {e}") from e

            return target
        finally:
            self._close()

    def check_connection(self):
        """
        Open and close a session without transferring anything.

        Raises:
            RemoteConnectFailed: If the session cannot be established
        """
        self._open()
        self._close()

    def _open(self):
        try:
            self.store.open()
        except Exception as e:
            # Release whatever part of the session was established
            self._close()
            raise RemoteConnectFailed(f"Failed to connect to {self.store.describe()}: {e}") from e

    def _close(self):
        # The transfer decides the outcome; a failing logout is only logged
        try:
            self.store.close()
        except (OSError, EOFError, ftplib.Error, paramiko.SSHException, BotoCoreError, ClientError) as e:
            logger.warning(f"Error closing remote session: {e}")
