"""
Unit tests for compression module (backup_tool/backup/compression.py).

Tests ZIP archive creation from source trees, entry naming and storage methods.
"""

import io
import os
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

from backup_tool.config import SourceSpec
from backup_tool.backup.compression import (
    create_archive,
    build_archive,
    walk_tree,
    archive_name,
    get_archive_size,
    WRITE_BUFFER_SIZE
)
from backup_tool.backup.errors import ArchiveFailed


class TestCreateArchive:
    """Test create_archive function."""

    def test_create_archive_end_to_end(self, source_tree, tmp_path):
        """Test file and empty directory are stored under the prefix."""
        archive_path = str(tmp_path / 'out.zip')

        result = create_archive([SourceSpec(path=str(source_tree), prefix='backup')], archive_path)

        assert result == archive_path
        with zipfile.ZipFile(archive_path) as zipf:
            assert set(zipf.namelist()) == {'backup/', 'backup/a.txt', 'backup/sub/'}

            file_info = zipf.getinfo('backup/a.txt')
            assert file_info.compress_type == zipfile.ZIP_DEFLATED
            assert file_info.file_size == 10
            assert zipf.read('backup/a.txt') == b'0123456789'

            dir_info = zipf.getinfo('backup/sub/')
            assert dir_info.is_dir()
            assert dir_info.compress_type == zipfile.ZIP_STORED
            assert dir_info.file_size == 0

    def test_create_archive_empty_file_is_stored(self, temp_files, tmp_path):
        """Test zero-byte files use the stored method with no payload."""
        archive_path = str(tmp_path / 'out.zip')

        create_archive([SourceSpec(path=str(temp_files), prefix='files')], archive_path)

        with zipfile.ZipFile(archive_path) as zipf:
            info = zipf.getinfo('files/empty.bin')
            assert info.compress_type == zipfile.ZIP_STORED
            assert info.file_size == 0
            assert info.compress_size == 0
            assert zipf.read('files/empty.bin') == b''
            assert zipf.testzip() is None

    def test_create_archive_nested_tree(self, temp_files, tmp_path):
        """Test nested files and directories keep their relative paths."""
        archive_path = str(tmp_path / 'out.zip')

        create_archive([SourceSpec(path=str(temp_files), prefix='files')], archive_path)

        with zipfile.ZipFile(archive_path) as zipf:
            names = zipf.namelist()
            assert 'files/nested/' in names
            assert 'files/nested/deeper/' in names
            assert zipf.read('files/nested/test_file3.txt') == b'Nested test content'

    def test_create_archive_multiple_sources_in_order(self, source_tree, temp_files, tmp_path):
        """Test sources are written in configured order under their own prefixes."""
        archive_path = str(tmp_path / 'out.zip')
        sources = [
            SourceSpec(path=str(temp_files), prefix='second'),
            SourceSpec(path=str(source_tree), prefix='first'),
        ]

        create_archive(sources, archive_path)

        with zipfile.ZipFile(archive_path) as zipf:
            names = zipf.namelist()
            second_start = names.index('second/')
            first_start = names.index('first/')
            assert second_start < first_start
            assert all(n.startswith('second/') for n in names[:first_start])

    def test_create_archive_deterministic_entries(self, temp_files, tmp_path):
        """Test re-running against an unchanged tree gives the same entries and payloads."""
        sources = [SourceSpec(path=str(temp_files), prefix='files')]
        first = create_archive(sources, str(tmp_path / 'one.zip'))
        second = create_archive(sources, str(tmp_path / 'two.zip'))

        with zipfile.ZipFile(first) as a, zipfile.ZipFile(second) as b:
            assert a.namelist() == b.namelist()
            for name in a.namelist():
                assert a.read(name) == b.read(name)

    def test_create_archive_without_prefix(self, source_tree, tmp_path):
        """Test an empty prefix places entries at the archive root."""
        archive_path = str(tmp_path / 'out.zip')

        create_archive([SourceSpec(path=str(source_tree), prefix='')], archive_path)

        with zipfile.ZipFile(archive_path) as zipf:
            assert zipf.namelist() == ['a.txt', 'sub/']

    def test_create_archive_missing_source(self, tmp_path):
        """Test missing source directory fails and leaves no partial archive."""
        archive_path = tmp_path / 'out.zip'

        with pytest.raises(ArchiveFailed, match="does not exist"):
            create_archive([SourceSpec(path=str(tmp_path / 'missing'), prefix='x')], str(archive_path))

        assert not archive_path.exists()

    def test_create_archive_unreadable_file(self, source_tree, tmp_path):
        """Test a read error while streaming aborts the build."""
        archive_path = tmp_path / 'out.zip'
        real_open = open

        def failing_open(path, mode='r', *args, **kwargs):
            if str(path).endswith('a.txt'):
                raise PermissionError("Permission denied")
            return real_open(path, mode, *args, **kwargs)

        with patch('builtins.open', side_effect=failing_open):
            with pytest.raises(ArchiveFailed, match="Permission denied"):
                create_archive([SourceSpec(path=str(source_tree), prefix='b')], str(archive_path))

        assert not archive_path.exists()

    def test_create_archive_unwritable_destination(self, source_tree, tmp_path):
        """Test destination directory that does not exist."""
        with pytest.raises(ArchiveFailed):
            create_archive(
                [SourceSpec(path=str(source_tree), prefix='b')],
                str(tmp_path / 'no' / 'such' / 'dir' / 'out.zip')
            )


class TestBuildArchive:
    """Test build_archive with in-memory streams."""

    def test_build_archive_to_stream(self, source_tree):
        """Test archive can be written to any binary stream."""
        stream = io.BytesIO()

        build_archive([SourceSpec(path=str(source_tree), prefix='backup')], stream)

        stream.seek(0)
        with zipfile.ZipFile(stream) as zipf:
            assert 'backup/a.txt' in zipf.namelist()

    def test_build_archive_no_sources(self):
        """Test empty source list still produces a valid, empty archive."""
        stream = io.BytesIO()

        build_archive([], stream)

        stream.seek(0)
        with zipfile.ZipFile(stream) as zipf:
            assert zipf.namelist() == []

    def test_write_buffer_is_megabytes(self):
        assert WRITE_BUFFER_SIZE >= 1024 * 1024


class TestWalkTree:
    """Test traversal order."""

    def test_walk_tree_sorted_preorder(self, tmp_path):
        (tmp_path / 'b').mkdir()
        (tmp_path / 'b' / 'z.txt').write_text('z')
        (tmp_path / 'a.txt').write_text('a')
        (tmp_path / 'c.txt').write_text('c')

        visited = [p.relative_to(tmp_path).as_posix() for p in walk_tree(tmp_path)]

        assert visited == ['.', 'a.txt', 'b', 'b/z.txt', 'c.txt']

    def test_walk_tree_does_not_follow_directory_symlinks(self, tmp_path):
        target = tmp_path / 'target'
        target.mkdir()
        (target / 'inside.txt').write_text('x')
        root = tmp_path / 'root'
        root.mkdir()
        os.symlink(target, root / 'link')

        visited = [p.relative_to(root).as_posix() for p in walk_tree(root)]

        assert 'link' in visited
        assert 'link/inside.txt' not in visited


class TestArchiveName:
    """Test archive_name helper."""

    @pytest.mark.parametrize("prefix,relative,expected", [
        ("backup", "a.txt", "backup/a.txt"),
        ("backup", ".", "backup"),
        ("", ".", ""),
        ("", "sub/a.txt", "sub/a.txt"),
        ("/nested/prefix/", "x", "nested/prefix/x"),
    ])
    def test_archive_name(self, prefix, relative, expected):
        assert archive_name(prefix, Path(relative)) == expected


class TestGetArchiveSize:
    """Test get_archive_size function."""

    def test_get_archive_size(self, tmp_path):
        archive = tmp_path / 'a.zip'
        archive.write_bytes(b'x' * 123)

        assert get_archive_size(str(archive)) == 123

    def test_get_archive_size_missing(self, tmp_path):
        with pytest.raises(ArchiveFailed, match="Archive not found"):
            get_archive_size(str(tmp_path / 'missing.zip'))


class TestSymlinks:
    """Test symlinked directories inside a source."""

    def test_symlinked_directory_stored_as_empty_entry(self, tmp_path):
        target = tmp_path / 'target'
        target.mkdir()
        (target / 'inside.txt').write_text('x')
        root = tmp_path / 'root'
        root.mkdir()
        os.symlink(target, root / 'link')
        archive_path = str(tmp_path / 'out.zip')

        create_archive([SourceSpec(path=str(root), prefix='r')], archive_path)

        with zipfile.ZipFile(archive_path) as zipf:
            assert zipf.namelist() == ['r/', 'r/link/']


class TestSpecialFiles:
    """Test nodes that are neither regular files nor directories."""

    @pytest.mark.skipif(not hasattr(os, 'mkfifo'), reason="requires named pipes")
    def test_named_pipe_is_skipped(self, tmp_path, caplog):
        root = tmp_path / 'root'
        root.mkdir()
        (root / 'a.txt').write_text('data')
        os.mkfifo(root / 'pipe')
        archive_path = str(tmp_path / 'out.zip')

        create_archive([SourceSpec(path=str(root), prefix='r')], archive_path)

        with zipfile.ZipFile(archive_path) as zipf:
            assert zipf.namelist() == ['r/', 'r/a.txt']
        assert 'Skipping special file' in caplog.text

    def test_dangling_symlink_is_skipped(self, tmp_path):
        root = tmp_path / 'root'
        root.mkdir()
        os.symlink(tmp_path / 'gone', root / 'dangling')
        (root / 'b.txt').write_text('data')
        archive_path = str(tmp_path / 'out.zip')

        create_archive([SourceSpec(path=str(root), prefix='r')], archive_path)

        with zipfile.ZipFile(archive_path) as zipf:
            assert zipf.namelist() == ['r/', 'r/b.txt']
