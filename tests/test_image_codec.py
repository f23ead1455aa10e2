"""
Tests for the image codec service.
"""

import io

import pytest
from PIL import Image

from treedup.services import image_codec
from treedup.services.image_codec import (
    convert_file_to_tiff,
    convert_stream_to_tiff,
    decode_image,
    encode_tiff,
    is_image,
)

from conftest import pattern_image


@pytest.fixture
def png_file(tmp_path):
    path = tmp_path / 'photo.png'
    pattern_image(4, 3).save(path)
    return path


class TestDecode:

    def test_keeps_storage_format(self, png_file):
        image = decode_image(png_file)
        assert image.format == 'PNG'
        assert image.size == (4, 3)

    def test_decodes_bytes_and_streams(self, png_file):
        data = png_file.read_bytes()
        assert decode_image(data).tobytes() == decode_image(io.BytesIO(data)).tobytes()

    def test_rejects_non_images(self, tmp_path):
        path = tmp_path / 'notes.txt'
        path.write_text('plain text')
        with pytest.raises(OSError):
            decode_image(path)

    def test_exif_orientation(self, tmp_path):
        exif = Image.Exif()
        exif[0x0112] = 6  # Rotated 90 degrees clockwise
        path = tmp_path / 'oriented.png'
        pattern_image(4, 2).save(path, exif=exif)

        assert decode_image(path).size == (4, 2)
        assert decode_image(path, correct_orientation=True).size == (2, 4)

    def test_is_image(self, png_file, tmp_path):
        (tmp_path / 'notes.txt').write_text('plain text')
        assert is_image(png_file)
        assert not is_image(tmp_path / 'notes.txt')
        assert not is_image(tmp_path / 'missing.png')


class TestEncode:

    @pytest.mark.parametrize('compress', [False, True])
    def test_encode_tiff(self, compress):
        image = pattern_image(5, 4)
        decoded = decode_image(encode_tiff(image, compress=compress))

        assert decoded.format == 'TIFF'
        assert decoded.convert('RGBA').tobytes() == image.tobytes()

    def test_rgb_is_encoded_with_alpha(self):
        decoded = decode_image(encode_tiff(pattern_image(3, 3, mode='RGB')))
        assert decoded.mode == 'RGBA'

    def test_convert_stream(self, png_file):
        with open(png_file, 'rb') as f:
            stream = convert_stream_to_tiff(f)

        assert stream is not None
        assert decode_image(stream).format == 'TIFF'

    def test_convert_stream_rejects_non_images(self):
        assert convert_stream_to_tiff(io.BytesIO(b'plain text')) is None

    def test_icons_need_opt_in(self):
        buffer = io.BytesIO()
        pattern_image(32, 32).save(buffer, format='ICO')

        buffer.seek(0)
        assert convert_stream_to_tiff(buffer) is None
        buffer.seek(0)
        assert convert_stream_to_tiff(buffer, convert_ico=True) is not None


class TestConvertFile:

    def test_replaces_source(self, png_file):
        assert convert_file_to_tiff(png_file)

        target = png_file.with_suffix(image_codec.TIFF_EXTENSION)
        assert not png_file.exists()
        assert decode_image(target).convert('RGBA').tobytes() == pattern_image(4, 3).tobytes()

    def test_identical_target_is_left_alone(self, png_file):
        target = png_file.with_suffix('.tiff')
        target.write_bytes(encode_tiff(decode_image(png_file, correct_orientation=True)))

        assert not convert_file_to_tiff(png_file)
        assert png_file.exists()

    def test_rotated_target_counts_as_identical(self, png_file):
        target = png_file.with_suffix('.tiff')
        rotated = pattern_image(4, 3).transpose(Image.Transpose.ROTATE_180)
        target.write_bytes(encode_tiff(rotated))

        assert not convert_file_to_tiff(png_file)
        assert png_file.exists()

    def test_different_target_gets_new_name(self, png_file):
        target = png_file.with_suffix('.tiff')
        target.write_bytes(encode_tiff(pattern_image(2, 2)))

        assert convert_file_to_tiff(png_file)
        assert not png_file.exists()
        assert png_file.with_name('photo.00001.tiff').exists()
        assert decode_image(target).size == (2, 2)

    def test_non_image_is_kept(self, tmp_path):
        path = tmp_path / 'notes.txt'
        path.write_text('plain text')

        assert not convert_file_to_tiff(path)
        assert path.exists()
