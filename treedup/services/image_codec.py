"""
Image codec service.

Decodes image files into Pillow images, applies EXIF orientation,
and re-encodes images as TIFF byte streams.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import BinaryIO, Optional, Union

from PIL import Image, ImageOps, UnidentifiedImageError

from treedup.core.models import CollisionAction
from treedup.services import file_ops


ImageSource = Union[Path, str, bytes, BinaryIO]

TIFF_EXTENSION = '.tiff'


def decode_image(source: ImageSource, correct_orientation: bool = False) -> Image.Image:
    """
    Decode an image into a fully loaded Pillow image.

    The storage format of the source (PNG, JPEG, ...) is kept on the
    returned image's ``format`` attribute. Raises OSError (including
    UnidentifiedImageError) if the source is not a readable image.
    """
    if isinstance(source, bytes):
        source = io.BytesIO(source)

    with Image.open(source) as img:
        img.load()
        storage_format = img.format
        if correct_orientation:
            result = ImageOps.exif_transpose(img)
        else:
            result = img.copy()

    result.format = storage_format
    return result


def is_image(path: Path | str) -> bool:
    """Check whether a file can be identified as an image."""
    try:
        with Image.open(path) as img:
            img.verify()
        return True
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return False


def encode_tiff(image: Image.Image, compress: bool = False) -> bytes:
    """
    Encode an image as a 32-bit RGBA TIFF.

    Metadata of the original image (EXIF and friends) is not carried over.
    """
    if image.mode != 'RGBA':
        image = image.convert('RGBA')

    buffer = io.BytesIO()
    image.save(buffer, format='TIFF', compression='tiff_lzw' if compress else None)
    return buffer.getvalue()


def convert_stream_to_tiff(
    stream: BinaryIO,
    convert_ico: bool = False,
    compress: bool = False
) -> Optional[io.BytesIO]:
    """
    Attempt to convert an image stream to a TIFF stream.

    Orientation stored in EXIF is applied to the pixels before encoding.

    Returns:
        A BytesIO positioned at the start, or None if the stream is not a
        convertible image (icons are refused unless convert_ico is set).
    """
    try:
        image = decode_image(stream, correct_orientation=True)
        if not convert_ico and image.format == 'ICO':
            return None
        return io.BytesIO(encode_tiff(image, compress))
    except (OSError, ValueError, SyntaxError) as e:
        logging.debug(f"image_codec - Could not convert image stream to TIFF: {e}")
        return None


def convert_file_to_tiff(
    path: Path | str,
    convert_ico: bool = False,
    compress: bool = False
) -> bool:
    """
    Replace an image file with a TIFF version of itself.

    The TIFF is written next to the source as ``<stem>.tiff`` and the
    source is deleted. If that name is taken by a file holding the same
    image nothing is written; otherwise a free numbered name is used.

    Returns:
        True if a TIFF was written and the source removed.
    """
    from treedup.core.compare import file_and_stream_identical, files_contain_identical_image
    from treedup.core.folder.collision import CollisionResolver

    path = Path(path)
    if not path.is_file():
        return False

    with open(path, 'rb') as source:
        tiff_stream = convert_stream_to_tiff(source, convert_ico, compress)
    if tiff_stream is None:
        return False

    target = path.with_suffix(TIFF_EXTENSION)

    try:
        if target.exists():
            identical = (
                file_and_stream_identical(target, tiff_stream)
                or files_contain_identical_image(path, target)
            )
            decision = CollisionResolver().resolve(
                target, identical, CollisionAction.RENAME_DIFFERENT_EXISTING_FILES
            )
            if decision.is_skip:
                logging.info(f"image_codec - {target} already holds this image")
                return False
            target = decision.target_path

        file_ops.write_bytes(target, tiff_stream.getvalue(), exclusive=True)
        file_ops.remove_file(path)

    except OSError as e:
        logging.warning(f"image_codec - Failed to convert {path} to TIFF: {e}")
        return False

    logging.debug(f"image_codec - Converted {path} to {target}")
    return True
