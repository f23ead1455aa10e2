"""
Byte-exact content comparison.

Sources can be file paths, binary streams or byte strings. Both sides
are streamed in fixed-size blocks so large files are never loaded
whole.
"""

from __future__ import annotations

import io
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from treedup.core.models import CompareMethod, ComparisonResult


ContentSource = Union[Path, str, bytes, bytearray, BinaryIO]

DEFAULT_CHUNK_SIZE = 1024


def _source_length(source: ContentSource) -> Optional[int]:
    """Length of a source in bytes, or None if it is absent."""
    if source is None:
        return None

    if isinstance(source, (bytes, bytearray)):
        return len(source)

    if isinstance(source, (str, os.PathLike)):
        path = Path(source)
        if not path.is_file():
            return None
        return path.stat().st_size

    if source.seekable():
        position = source.tell()
        length = source.seek(0, io.SEEK_END)
        source.seek(position)
        return length

    return None


@contextmanager
def _open_source(source: ContentSource) -> Iterator[BinaryIO]:
    """Open a source for reading from its first byte."""
    if isinstance(source, (bytes, bytearray)):
        yield io.BytesIO(source)
        return

    if isinstance(source, (str, os.PathLike)):
        with open(source, 'rb') as f:
            yield f
        return

    position = source.tell()
    source.seek(0)
    try:
        yield source
    finally:
        source.seek(position)


def bytes_equal(
    source_a: ContentSource,
    source_b: ContentSource,
    chunk_size: int = DEFAULT_CHUNK_SIZE
) -> bool:
    """
    Check whether two sources hold exactly the same bytes.

    Returns False when either source is missing or empty: no content
    cannot be judged identical to content. Read failures are logged and
    reported as False.
    """
    try:
        length_a = _source_length(source_a)
        length_b = _source_length(source_b)
    except OSError as e:
        logging.debug(f"ContentComparer - Could not size sources: {e}")
        return False

    if not length_a or not length_b:
        return False

    if length_a != length_b:
        return False

    # A single stream cannot be read against itself
    if source_a is source_b:
        return True

    try:
        with _open_source(source_a) as stream_a, _open_source(source_b) as stream_b:
            while True:
                chunk_a = stream_a.read(chunk_size)
                chunk_b = stream_b.read(chunk_size)

                if chunk_a != chunk_b:
                    return False

                if not chunk_a:  # EOF
                    return True
    except OSError as e:
        logging.warning(f"ContentComparer - Error comparing content: {e}")
        return False


def file_and_stream_identical(path: Path | str, stream: BinaryIO) -> bool:
    """Check whether a file holds exactly the bytes of a stream."""
    if stream is None:
        return False
    return bytes_equal(Path(path), stream)


def compare_content(source_a: ContentSource, source_b: ContentSource) -> ComparisonResult:
    """Byte-exact comparison reported as a ComparisonResult."""
    return ComparisonResult(
        identical=bytes_equal(source_a, source_b),
        method=CompareMethod.BYTE_EXACT,
    )
