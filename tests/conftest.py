"""
Shared pytest fixtures for backup-tool tests.

This module provides fixtures for:
- Source directory trees
- Settings objects
- In-memory remote store and recording notifier
- Mock fixtures for external services (S3)
"""

import pytest
import boto3
from moto import mock_aws

from backup_tool.config import (
    NotifySettings,
    RemoteSettings,
    RunSettings,
    ScheduleSettings,
    Settings,
    SourceSpec
)
from backup_tool.backup.storage import RemoteStore


class FakeStore(RemoteStore):
    """
    In-memory remote store recording every call.

    Args:
        existing: Names that already exist on the store
        fail_on: Optional step name ('connect', 'login', 'change_dir',
            'exists', 'upload', 'close') that raises OSError
    """

    def __init__(self, settings=None, existing=(), fail_on=None):
        super().__init__(settings or RemoteSettings(host='fake.example.com'))
        self.existing = set(existing)
        self.fail_on = fail_on
        self.calls = []
        self.probes = []
        self.uploads = {}

    def _step(self, name):
        self.calls.append(name)
        if self.fail_on == name:
            raise OSError(f"{name} failed")

    def _connect(self):
        self._step('connect')

    def _login(self):
        self._step('login')

    def _change_dir(self):
        self._step('change_dir')

    def exists(self, name):
        self._step('exists')
        self.probes.append(name)
        return name in self.existing

    def upload(self, local_path, name):
        self._step('upload')
        with open(local_path, 'rb') as f:
            self.uploads[name] = f.read()
        self.existing.add(name)

    def close(self):
        self._step('close')


class RecordingNotifier:
    """Notifier that records messages instead of sending them."""

    def __init__(self):
        self.messages = []

    def send(self, recipients, subject, body):
        if not recipients:
            return
        self.messages.append((list(recipients), subject, body))


@pytest.fixture
def source_tree(tmp_path):
    """
    Create a small source tree.

    Creates:
    - data/a.txt (10 bytes)
    - data/sub/ (empty directory)
    """
    data = tmp_path / 'data'
    data.mkdir()
    (data / 'a.txt').write_bytes(b'0123456789')
    (data / 'sub').mkdir()
    return data


@pytest.fixture
def temp_files(tmp_path):
    """
    Create a nested tree with an empty file.

    Creates:
    - files/test_file1.txt
    - files/empty.bin (0 bytes)
    - files/nested/test_file3.txt
    - files/nested/deeper/ (empty directory)
    """
    root = tmp_path / 'files'
    root.mkdir()
    (root / 'test_file1.txt').write_text('Test content 1')
    (root / 'empty.bin').write_bytes(b'')

    nested_dir = root / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')
    (nested_dir / 'deeper').mkdir()

    return root


@pytest.fixture
def remote_settings():
    return RemoteSettings(
        protocol='ftp',
        host='ftp.example.com',
        port=21,
        user='backup',
        password='secret',
        directory='/backups',
        file_name='backup',
        suffix_format='%Y-%m-%d'
    )


@pytest.fixture
def settings(source_tree, remote_settings):
    """Settings with one source, no commands and both recipient lists set."""
    return Settings(
        run=RunSettings(commands=()),
        sources=(SourceSpec(path=str(source_tree), prefix='backup'),),
        remote=remote_settings,
        notify=NotifySettings(
            error_addresses=('ops@example.com',),
            success_addresses=('team@example.com',),
            smtp_host='smtp.example.com',
            smtp_from='backup@example.com'
        ),
        schedule=ScheduleSettings()
    )


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def make_store():
    """Factory for FakeStore instances."""
    return FakeStore


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_command(tmp_path):
    """Executable script that exits with status 3."""
    script = tmp_path / 'fail.sh'
    script.write_text('#!/bin/sh\nexit 3\n')
    script.chmod(0o755)
    return str(script)


@pytest.fixture
def marker_command(tmp_path):
    """
    Factory for executable scripts that append their name to a marker file.

    Returns:
        (make_script, marker_path) tuple
    """
    marker = tmp_path / 'marker.log'

    def make_script(name, exit_code=0):
        script = tmp_path / f'{name}.sh'
        script.write_text(f'#!/bin/sh\necho {name} >> "{marker}"\nexit {exit_code}\n')
        script.chmod(0o755)
        return str(script)

    return make_script, marker


@pytest.fixture
def mock_s3(monkeypatch):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3
