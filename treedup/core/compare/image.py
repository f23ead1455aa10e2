"""
Rotation-invariant image comparison.

Two images are identical when one can be turned into the other by a
rotation of 0, 90, 180 or 270 degrees with every RGBA channel value
matching exactly. There is no tolerance.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from PIL import Image

from treedup.core.compare.content import bytes_equal
from treedup.core.models import CompareMethod, ComparisonResult
from treedup.services.image_codec import decode_image


def images_are_comparable(image_a: Image.Image, image_b: Image.Image) -> bool:
    """Check that two images have the same dimensions, directly or transposed."""
    if image_a is None or image_b is None:
        return False

    if image_a.size == image_b.size:
        return True

    return image_a.size == (image_b.height, image_b.width)


def _pixels_match(image_a: Image.Image, image_b: Image.Image) -> bool:
    if image_a.size != image_b.size:
        return False
    return image_a.tobytes() == image_b.tobytes()


def images_equal(
    image_a: Image.Image,
    image_b: Image.Image,
    compare_format: bool = False
) -> bool:
    """
    Check whether two images hold the same pixels, allowing rotation.

    Args:
        image_a: Reference image
        image_b: Image that may be a rotated copy of image_a
        compare_format: Also require the same storage format (PNG, JPEG, ...)

    Raises:
        ValueError: if either image is None
    """
    if image_a is None or image_b is None:
        raise ValueError("Both images are required for comparison")

    if compare_format and image_a.format != image_b.format:
        return False

    if not images_are_comparable(image_a, image_b):
        return False

    reference = image_a.convert('RGBA')
    candidate = image_b.convert('RGBA')

    if reference.width == reference.height:
        # Square: try every quarter turn
        for _ in range(4):
            if _pixels_match(reference, candidate):
                return True
            candidate = candidate.transpose(Image.Transpose.ROTATE_90)
        return False

    if reference.width != candidate.width:
        candidate = candidate.transpose(Image.Transpose.ROTATE_90)
    if _pixels_match(reference, candidate):
        return True

    candidate = candidate.transpose(Image.Transpose.ROTATE_180)
    return _pixels_match(reference, candidate)


def _try_decode(path: Path) -> Optional[Image.Image]:
    try:
        return decode_image(path)
    except (OSError, ValueError, SyntaxError) as e:
        logging.debug(f"ImageComparer - {path} is not a readable image: {e}")
        return None


def files_contain_identical_image(
    path_a: Path | str,
    path_b: Path | str,
    compare_format: bool = False
) -> bool:
    """Check whether two image files hold the same picture, allowing rotation."""
    image_a = _try_decode(Path(path_a))
    if image_a is None:
        return False

    image_b = _try_decode(Path(path_b))
    if image_b is None:
        return False

    return images_equal(image_a, image_b, compare_format)


def compare_files(
    path_a: Path | str,
    path_b: Path | str,
    compare_images: bool = False
) -> ComparisonResult:
    """
    Decide whether two files hold the same content.

    Bytes are compared first. When compare_images is set and the bytes
    differ, two decodable images are compared pixel by pixel under
    rotation; a file that decodes as an image is never identical to one
    that does not.
    """
    if bytes_equal(path_a, path_b):
        return ComparisonResult(identical=True, method=CompareMethod.BYTE_EXACT)

    if not compare_images:
        return ComparisonResult(identical=False, method=CompareMethod.BYTE_EXACT)

    image_a = _try_decode(Path(path_a))
    image_b = _try_decode(Path(path_b))

    if image_a is None and image_b is None:
        return ComparisonResult(identical=False, method=CompareMethod.BYTE_EXACT)

    if image_a is None or image_b is None:
        return ComparisonResult(identical=False, method=CompareMethod.TYPE_MISMATCH)

    return ComparisonResult(
        identical=images_equal(image_a, image_b),
        method=CompareMethod.ROTATED_PIXEL_MATCH,
    )
