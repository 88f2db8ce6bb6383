"""Tests for raster encoding."""

import pytest
from PIL import Image

from labelprinter.raster import encode_raster, iter_raster_lines, raster_geometry


class TestRasterGeometry:
    """Test padding for each head height."""

    @pytest.mark.parametrize(
        "height,pad,line",
        [(32, 6, 10), (48, 5, 11), (64, 4, 12), (96, 2, 14), (128, 0, 16)],
    )
    def test_label_heights(self, height, pad, line):
        assert raster_geometry(height) == (pad, line)

    @pytest.mark.parametrize("height", [0, 7, 60, 136])
    def test_rejects_invalid_height(self, height):
        with pytest.raises(ValueError, match="multiple of 8"):
            raster_geometry(height)


class TestRasterLines:
    """Test column packing."""

    def test_white_image_sends_no_dots(self):
        bitmap = Image.new("1", (3, 64), color=1)

        lines = list(iter_raster_lines(bitmap))

        assert len(lines) == 3
        for line in lines:
            assert line == bytes([0x47, 12, 0x00]) + bytes(4) + bytes(8)

    def test_black_image_burns_every_dot(self):
        bitmap = Image.new("1", (2, 128), color=0)

        lines = list(iter_raster_lines(bitmap))

        assert lines[0] == bytes([0x47, 16, 0x00]) + b"\xff" * 16

    def test_top_pixel_is_most_significant_bit(self):
        bitmap = Image.new("1", (2, 32), color=1)
        bitmap.putpixel((0, 0), 0)
        bitmap.putpixel((1, 31), 0)

        first, second = iter_raster_lines(bitmap)

        # 6 bytes of padding for a 32 px tape
        assert first[3:9] == bytes(6)
        assert first[9:] == bytes([0x80, 0x00, 0x00, 0x00])
        assert second[9:] == bytes([0x00, 0x00, 0x00, 0x01])

    def test_columns_in_left_to_right_order(self):
        bitmap = Image.new("1", (3, 64), color=1)
        bitmap.putpixel((2, 8), 0)

        lines = list(iter_raster_lines(bitmap))

        assert lines[0][7:] == bytes(8)
        assert lines[2][7:] == bytes([0x00, 0x80]) + bytes(6)

    def test_converts_grayscale_input(self):
        bitmap = Image.new("L", (1, 64), color=0)
        line = next(iter_raster_lines(bitmap))
        assert line[7:] == b"\xff" * 8

    def test_rejects_unsupported_height(self):
        with pytest.raises(ValueError):
            list(iter_raster_lines(Image.new("1", (4, 60), color=1)))


class TestEncodeRaster:
    """Test complete page encoding."""

    def test_last_page_terminator(self):
        data = encode_raster(Image.new("1", (5, 64), color=1), last_page=True)
        assert len(data) == 5 * 15 + 1
        assert data[-1] == 0x1A

    def test_intermediate_page_terminator(self):
        data = encode_raster(Image.new("1", (5, 64), color=1), last_page=False)
        assert data[-1] == 0x0C
