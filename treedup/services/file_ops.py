"""
Filesystem primitives used by the search and duplication engines.

Handles:
- Metadata and attribute inspection (hidden/system/readonly bits)
- Child enumeration and pattern-filtered listings
- Streamed copies with optional hashing
- Attribute, timestamp and ownership propagation
"""

from __future__ import annotations

import fnmatch
import logging
import os
import shutil
import stat
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from treedup.core.models import FileMetadata, FileType, SearchEventMask, SearchOption


# Windows attribute bits (stat_result.st_file_attributes)
FILE_ATTRIBUTE_READONLY = 0x1
FILE_ATTRIBUTE_HIDDEN = 0x2
FILE_ATTRIBUTE_SYSTEM = 0x4

DEFAULT_BUFFER_SIZE = 65536


def list_children(path: Path | str) -> list[os.DirEntry]:
    """
    List the immediate children of a directory, sorted by name.

    The directory handle is closed before returning. Errors from opening
    or reading the directory propagate to the caller.
    """
    with os.scandir(path) as it:
        entries = list(it)
    entries.sort(key=lambda e: e.name)
    return entries


def is_hidden_or_system(path: Path | str, stat_result: Optional[os.stat_result] = None) -> bool:
    """Check whether an entry carries the hidden or system attribute."""
    path = Path(path)
    if stat_result is None:
        try:
            stat_result = path.lstat()
        except OSError as e:
            logging.debug(f"file_ops - Failed to stat {path}: {e}")
            return False

    hidden, system = _hidden_system_bits(path, stat_result)
    return hidden or system


def file_is_in_hidden_or_system_directory(path: Path | str) -> bool:
    """
    Check whether a file sits below a hidden or system directory.

    Any ancestor up to (not including) the filesystem root counts, as does
    a dot-prefixed directory name on every platform. Directories and
    missing paths return False.
    """
    path = Path(path)
    if not path.is_file():
        return False

    path = Path(os.path.abspath(path))
    anchor = Path(path.anchor)
    for parent in path.parents:
        if parent == anchor:
            break
        if parent.name.startswith('.') or is_hidden_or_system(parent):
            return True
    return False


def get_directory_entries(
    path: Path | str,
    pattern: Optional[str] = '*',
    search_option: SearchOption = SearchOption.TOP_DIRECTORY_ONLY,
    fetch: SearchEventMask = SearchEventMask.BOTH
) -> list[Path]:
    """
    Flat listing of the entries below path whose names match pattern.

    The pattern uses fnmatch rules; an empty pattern matches everything.
    With ALL_DIRECTORIES the entries of each subdirectory come before the
    entries of the directory holding it. Directories that cannot be read
    are logged and left out, and directory links are not descended into.
    """
    if not path:
        return []

    found: list[Path] = []
    _collect_entries(
        Path(os.path.abspath(path)),
        pattern or '*',
        search_option == SearchOption.ALL_DIRECTORIES,
        fetch,
        found,
    )
    return found


def _collect_entries(
    directory: Path,
    pattern: str,
    recursive: bool,
    fetch: SearchEventMask,
    found: list[Path]
) -> None:
    try:
        children = list_children(directory)
    except OSError as e:
        logging.warning(f"file_ops - Could not list {directory}: {e}")
        return

    matched = []
    for entry in children:
        try:
            is_dir = entry.is_dir()
        except OSError:
            is_dir = False

        if is_dir and recursive and not entry.is_symlink():
            _collect_entries(Path(entry.path), pattern, recursive, fetch, found)

        kind = SearchEventMask.DIRECTORIES if is_dir else SearchEventMask.FILES
        if fetch & kind and fnmatch.fnmatch(entry.name, pattern):
            matched.append(Path(entry.path))

    found.extend(matched)


def _hidden_system_bits(path: Path, stat_result: os.stat_result) -> tuple[bool, bool]:
    attrs = getattr(stat_result, 'st_file_attributes', None)
    if attrs is not None:
        return bool(attrs & FILE_ATTRIBUTE_HIDDEN), bool(attrs & FILE_ATTRIBUTE_SYSTEM)

    hidden = path.name.startswith('.')
    flags = getattr(stat_result, 'st_flags', 0)
    if flags and hasattr(stat, 'UF_HIDDEN') and flags & stat.UF_HIDDEN:
        hidden = True
    return hidden, False


def _timestamp(value: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(value)
    except (OSError, OverflowError, ValueError):
        return None


def get_metadata(path: Path | str, follow_symlinks: bool = False) -> FileMetadata:
    """
    Get metadata for a file or directory.

    With follow_symlinks, a link is described by its target. Raises
    OSError if the entry cannot be stat'ed at all.
    """
    path = Path(path)
    stat_result = path.stat() if follow_symlinks else path.lstat()

    symlink_target = None
    if stat.S_ISLNK(stat_result.st_mode):
        file_type = FileType.SYMLINK
        try:
            symlink_target = Path(os.readlink(path))
        except OSError as e:
            logging.debug(f"file_ops - Failed to read symlink {path}: {e}")
    elif stat.S_ISDIR(stat_result.st_mode):
        file_type = FileType.DIRECTORY
    elif stat.S_ISREG(stat_result.st_mode):
        file_type = FileType.FILE
    else:
        file_type = FileType.UNKNOWN

    hidden, system = _hidden_system_bits(path, stat_result)

    attrs = getattr(stat_result, 'st_file_attributes', None)
    if attrs is not None:
        is_readonly = bool(attrs & FILE_ATTRIBUTE_READONLY)
    else:
        is_readonly = not (stat_result.st_mode & stat.S_IWUSR)

    created = getattr(stat_result, 'st_birthtime', stat_result.st_ctime)

    return FileMetadata(
        path=path,
        name=path.name,
        file_type=file_type,
        size=stat_result.st_size if file_type == FileType.FILE else 0,
        modified_time=_timestamp(stat_result.st_mtime),
        accessed_time=_timestamp(stat_result.st_atime),
        created_time=_timestamp(created),
        permissions=stat.S_IMODE(stat_result.st_mode),
        is_hidden=hidden,
        is_system=system,
        is_readonly=is_readonly,
        symlink_target=symlink_target,
    )


def copy_file(
    source: Path | str,
    dest: Path | str,
    exclusive: bool = False,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    hasher: Optional[Any] = None
) -> int:
    """
    Copy file contents from source to dest.

    With exclusive, the destination is created with O_EXCL semantics and
    FileExistsError is raised if it already exists. If a hasher is given
    it is updated with every chunk read from the source.

    Returns bytes copied.
    """
    bytes_copied = 0
    mode = 'xb' if exclusive else 'wb'

    with open(source, 'rb') as src:
        with open(dest, mode) as dst:
            while chunk := src.read(buffer_size):
                dst.write(chunk)
                if hasher is not None:
                    hasher.update(chunk)
                bytes_copied += len(chunk)

    return bytes_copied


def write_bytes(dest: Path | str, data: bytes, exclusive: bool = False) -> int:
    """Write a byte string to dest, optionally refusing to replace an existing file."""
    mode = 'xb' if exclusive else 'wb'
    with open(dest, mode) as dst:
        dst.write(data)
    return len(data)


def copy_attributes(source: Path | str, dest: Path | str) -> None:
    """Propagate permission bits and access/modification times."""
    shutil.copystat(source, dest, follow_symlinks=True)


def copy_permissions(source: Path | str, dest: Path | str) -> None:
    """Reconcile the permission bits of dest with source."""
    shutil.copymode(source, dest, follow_symlinks=True)


def set_owner(path: Path | str, owner: Optional[str]) -> bool:
    """
    Change the owning user of a path.

    Returns False if no owner was requested or the change failed.
    """
    if not owner:
        return False

    try:
        shutil.chown(path, user=owner)
        return True
    except (LookupError, OSError) as e:
        logging.warning(f"file_ops - Could not set owner of {path} to {owner}: {e}")
        return False


def remove_file(path: Path | str) -> None:
    """Delete a file, clearing a read-only bit first if needed."""
    path = Path(path)
    try:
        path.unlink()
    except PermissionError:
        os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
        path.unlink()


def ensure_writable_directory(path: Path | str) -> None:
    """Make sure the owner can still create entries in a mirrored directory."""
    path = Path(path)
    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & stat.S_IRWXU != stat.S_IRWXU:
        os.chmod(path, mode | stat.S_IRWXU)
