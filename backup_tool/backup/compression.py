"""
Archive builder for backup runs.

Streams one or more directory trees into a single ZIP container:
- Directories are stored as entries with a trailing '/'
- Empty files are stored uncompressed
- Other files are deflated while streaming, never read whole into memory

Entry names are the source prefix joined with the path relative to the
source root. Sources are written in configured order and each tree in
sorted depth-first order, so the layout is stable for an unchanged
filesystem.
"""

import logging
import os
import shutil
import zipfile
from pathlib import Path
from typing import BinaryIO, Iterator, Sequence

from backup_tool.config import SourceSpec
from .errors import ArchiveFailed


logger = logging.getLogger(__name__)


# Output is buffered to amortise many small writes
WRITE_BUFFER_SIZE = 4 * 1024 * 1024
COPY_CHUNK_SIZE = 1024 * 1024


def create_archive(sources: Sequence[SourceSpec], archive_path: str) -> str:
    """
    Create a ZIP archive file from source trees.

    Args:
        sources: Source directories and their archive prefixes
        archive_path: Path of the archive file to create

    Returns:
        Path to the created archive file

    Raises:
        ArchiveFailed: If archive creation fails
    """
    try:
        with open(archive_path, 'wb', buffering=WRITE_BUFFER_SIZE) as stream:
            build_archive(sources, stream)
        return archive_path
    except (ArchiveFailed, OSError) as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        if isinstance(e, ArchiveFailed):
            raise
        raise ArchiveFailed(f"Failed to create archive: {e}") from e


def build_archive(sources: Sequence[SourceSpec], stream: BinaryIO):
    """
    Write a complete ZIP archive to a writable binary stream.

    The central directory is written when this returns; nothing may be
    appended afterwards.

    Args:
        sources: Source directories and their archive prefixes
        stream: Destination stream

    Raises:
        ArchiveFailed: If walking, reading or writing fails
    """
    try:
        with zipfile.ZipFile(stream, 'w', zipfile.ZIP_DEFLATED, strict_timestamps=False) as zipf:
            for source in sources:
                _add_source(zipf, source)
    except ArchiveFailed:
        raise
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as e:
        raise ArchiveFailed(f"Failed to create archive: {e}") from e


def _add_source(zipf: zipfile.ZipFile, source: SourceSpec):
    """
    Add one source tree to the archive.

    Args:
        zipf: Open ZipFile
        source: Source directory and archive prefix
    """
    root = Path(source.path)
    if not root.is_dir():
        raise ArchiveFailed(f"Source directory does not exist: {source.path}")

    for item in walk_tree(root):
        arcname = archive_name(source.prefix, item.relative_to(root))
        if not arcname:
            continue

        # Symlinked directories become empty directory entries
        if item.is_dir():
            _add_directory(zipf, item, arcname)
        elif item.is_file():
            _add_file(zipf, item, arcname)
        else:
            # FIFOs, sockets, devices and dangling links
            logger.warning(f"Skipping special file: {item}")


def _add_directory(zipf: zipfile.ZipFile, directory: Path, arcname: str):
    info = zipfile.ZipInfo.from_file(directory, arcname, strict_timestamps=False)
    info.compress_type = zipfile.ZIP_STORED
    zipf.writestr(info, b'')


def _add_file(zipf: zipfile.ZipFile, path: Path, arcname: str):
    info = zipfile.ZipInfo.from_file(path, arcname, strict_timestamps=False)
    info.compress_type = zipfile.ZIP_DEFLATED if info.file_size else zipfile.ZIP_STORED

    with open(path, 'rb') as src, zipf.open(info, 'w') as dest:
        shutil.copyfileobj(src, dest, COPY_CHUNK_SIZE)


def walk_tree(root: Path) -> Iterator[Path]:
    """
    Yield root and everything below it, depth-first and sorted by name.

    Directories are yielded before their contents. Symlinked directories
    are yielded but not descended into.

    Args:
        root: Directory to walk

    Yields:
        Paths of visited filesystem nodes
    """
    yield root
    for child in sorted(root.iterdir(), key=lambda p: p.name):
        if child.is_dir() and not child.is_symlink():
            yield from walk_tree(child)
        else:
            yield child


def archive_name(prefix: str, relative: Path) -> str:
    """
    Join an archive prefix with a relative path using '/' separators.

    Args:
        prefix: Archive prefix of the source (may be empty)
        relative: Path relative to the source root

    Returns:
        Entry name, or '' for the root of a source without prefix
    """
    parts = [p for p in prefix.strip('/').split('/') if p]
    parts.extend(p for p in relative.parts if p not in ('', '.'))
    return '/'.join(parts)


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        ArchiveFailed: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise ArchiveFailed(f"Archive not found: {archive_path}")
    except OSError as e:
        raise ArchiveFailed(f"Failed to get archive size: {e}")
