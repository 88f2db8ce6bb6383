"""
Binary Commands for P-touch Raster Printers.

Every command is a fixed-layout byte sequence. Multi-byte integers are
little-endian.

Command summary:
    ESC @               Initialize (clear buffers)
    ESC i S             Status information request
    ESC i a 01          Switch to raster mode
    ESC i !  n          Automatic status notification mode
    ESC i z  ...        Print information (page geometry)
    ESC i M  n          Various mode settings (auto cut, mirror)
    ESC i d  n1 n2      Margin (feed) amount in dots
    M n                 Compression mode
    G n1 n2 data        Raster graphics transfer (see raster.py)
    FF / SUB            Print (more pages follow) / print with feeding
"""

import struct
from enum import IntEnum, IntFlag


class PrintInfoFlags(IntFlag):
    """Valid-flags byte of the print information command."""

    MEDIA_TYPE = 0x02
    MEDIA_WIDTH = 0x04
    MEDIA_LENGTH = 0x08
    QUALITY = 0x40
    RECOVER = 0x80


class PageTerminator(IntEnum):
    """Byte that ends a page's raster data."""

    PRINT = 0x0C  # more pages follow
    PRINT_AND_FEED = 0x1A  # final page, feeds and cuts


class CompressionMode(IntEnum):
    NONE = 0x00
    TIFF = 0x02


# Media width + recovery, as sent for every page
DEFAULT_PRINT_INFO_FLAGS = PrintInfoFlags.MEDIA_WIDTH | PrintInfoFlags.RECOVER

# ~3 mm at 180 dpi
DEFAULT_MARGIN_DOTS = 20


class PTouchCommands:
    """
    Command builders for P-touch raster printers.

    All builders return the complete bytes to write to the bulk OUT endpoint.
    """

    ESC = 0x1B

    @staticmethod
    def initialize() -> bytes:
        """
        Initialize the printer.

        Clears the receive buffer and any pending print data.
        """
        return bytes([PTouchCommands.ESC, 0x40])

    @staticmethod
    def status_request() -> bytes:
        """
        Request a status block.

        Response: 32 bytes (see responses.parse_query_response)
        """
        return bytes([PTouchCommands.ESC, 0x69, 0x53])

    @staticmethod
    def raster_mode() -> bytes:
        """Switch the printer to raster transfer mode."""
        return bytes([PTouchCommands.ESC, 0x69, 0x61, 0x01])

    @staticmethod
    def notify_mode(notify: bool) -> bytes:
        """
        Enable or disable automatic status notification.

        With notification on, the printer pushes a status block whenever
        its phase changes, so completion can be detected by reading alone.
        """
        return bytes([PTouchCommands.ESC, 0x69, 0x21, 0x00 if notify else 0x01])

    @staticmethod
    def print_information(
        label_size_mm: int,
        num_raster_lines: int,
        first_page: bool,
        valid_flags: int = DEFAULT_PRINT_INFO_FLAGS,
        label_type: int = 0x00,
        label_length: int = 0x00,
    ) -> bytes:
        """
        Declare the geometry of the page that follows.

        Args:
            label_size_mm: Tape width in millimeters
            num_raster_lines: Number of raster lines (image columns) on the page
            first_page: True for the first page of a job
            valid_flags: Which of the following fields the printer should check
            label_type: Media type (0 = not specified)
            label_length: Media length in mm (0 for continuous tape)

        Raises:
            ValueError: If a field does not fit its byte width
        """
        if not 0 <= num_raster_lines <= 0xFFFFFFFF:
            raise ValueError(f"num_raster_lines out of range: {num_raster_lines}")
        for name, value in (
            ("valid_flags", valid_flags),
            ("label_type", label_type),
            ("label_size_mm", label_size_mm),
            ("label_length", label_length),
        ):
            if not 0 <= value <= 0xFF:
                raise ValueError(f"{name} out of range: {value}")

        return (
            bytes([
                PTouchCommands.ESC,
                0x69,
                0x7A,
                int(valid_flags),
                label_type,
                label_size_mm,
                label_length,
            ])
            + struct.pack("<I", num_raster_lines)
            + bytes([0x00 if first_page else 0x01, 0x00])
        )

    @staticmethod
    def each_mode(autocut: bool, mirror: bool = False) -> bytes:
        """
        Various mode settings.

        Bit 6 enables auto cut after each label, bit 7 mirror printing.
        """
        flags = (0x40 if autocut else 0) | (0x80 if mirror else 0)
        return bytes([PTouchCommands.ESC, 0x69, 0x4D, flags])

    @staticmethod
    def margin(dots: int = DEFAULT_MARGIN_DOTS) -> bytes:
        """Feed margin before and after the printed area, in dots."""
        if not 0 <= dots <= 0xFFFF:
            raise ValueError(f"Margin out of range: {dots}")
        return bytes([PTouchCommands.ESC, 0x69, 0x64]) + struct.pack("<H", dots)

    @staticmethod
    def compression_mode(mode: CompressionMode = CompressionMode.NONE) -> bytes:
        """Select raster compression. Only uncompressed transfer is used."""
        return bytes([0x4D, int(mode)])

    @staticmethod
    def page_terminator(last_page: bool) -> bytes:
        """Print the page; the last page also feeds and cuts."""
        terminator = PageTerminator.PRINT_AND_FEED if last_page else PageTerminator.PRINT
        return bytes([terminator])
