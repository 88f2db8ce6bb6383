"""
Raster encoding for the 128-dot print head.

Tape runs through the printer sideways: each raster line is one vertical
column of the label image, top pixel first. Images narrower than the
head are centred by prefixing zero bytes.

    head (128 dots)
    +-----------+----------------------+-----------+
    |  padding  |  image column (H px) | (unsent)  |
    +-----------+----------------------+-----------+
"""

from typing import Iterator

from PIL import Image

from .commands import PTouchCommands

HEAD_DOTS = 128
RASTER_LINE_COMMAND = 0x47


def raster_geometry(height: int) -> tuple[int, int]:
    """
    Compute padding for an image of the given pixel height.

    Args:
        height: Image height in pixels (multiple of 8, at most 128)

    Returns:
        (pad_bytes, line_byte_count) where line_byte_count includes padding

    Raises:
        ValueError: If the height cannot be sent to the head
    """
    if height <= 0 or height > HEAD_DOTS or height % 8 != 0:
        raise ValueError(
            f"Image height must be a multiple of 8 between 8 and {HEAD_DOTS}, got {height}"
        )
    pad_bytes = ((HEAD_DOTS - height) // 2) // 8
    return pad_bytes, pad_bytes + height // 8


def iter_raster_lines(bitmap: Image.Image) -> Iterator[bytes]:
    """
    Yield one complete raster line command per image column.

    Each line is ``47 <count> 00``, the padding bytes and then the column
    packed 8 pixels per byte, most significant bit first. Source pixels
    are 0 for black; the head burns a dot for a set bit, hence the
    inversion.
    """
    if bitmap.mode != "1":
        bitmap = bitmap.convert("1")

    pad_bytes, line_bytes = raster_geometry(bitmap.height)
    header = bytes([RASTER_LINE_COMMAND, line_bytes, 0x00]) + bytes(pad_bytes)
    column_bytes = bitmap.height // 8

    # After transposing, every row holds one source column, top pixel first.
    # Mode "1" packs rows MSB first with 1 for white.
    packed = bitmap.transpose(Image.Transpose.TRANSPOSE).tobytes()

    for x in range(bitmap.width):
        column = packed[x * column_bytes:(x + 1) * column_bytes]
        yield header + bytes(b ^ 0xFF for b in column)


def encode_raster(bitmap: Image.Image, last_page: bool) -> bytes:
    """
    Encode a whole page: every raster line followed by the page terminator.

    Args:
        bitmap: Monochrome label image, height equal to the label pixel height
        last_page: Terminate with print-and-feed (cut) instead of print
    """
    return b"".join(iter_raster_lines(bitmap)) + PTouchCommands.page_terminator(last_page)
