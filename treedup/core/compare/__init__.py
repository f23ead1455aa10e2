"""
Content identity comparison.

Provides:
- Byte-exact comparison of files, streams and buffers
- Rotation-invariant pixel comparison of images
"""

from treedup.core.compare.content import (
    bytes_equal,
    compare_content,
    file_and_stream_identical,
)
from treedup.core.compare.image import (
    compare_files,
    files_contain_identical_image,
    images_are_comparable,
    images_equal,
)

__all__ = [
    # Bytes
    'bytes_equal',
    'compare_content',
    'file_and_stream_identical',
    # Images
    'compare_files',
    'files_contain_identical_image',
    'images_are_comparable',
    'images_equal',
]
