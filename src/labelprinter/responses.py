"""
Status Response Parser for P-touch Raster Printers.

The printer answers a status request (ESC i S) with a fixed 32-byte
block. It also pushes the same block on its own when its phase changes
while printing.

    Offset  Length  Field
    0       1       Print head mark (0x80)
    1       1       Size (0x20 = 32)
    2-7     6       Brother code, series, model, country, reserved
    8       1       Error information 1 (see ErrorFlags1)
    9       1       Error information 2 (see ErrorFlags2)
    10      1       Media width in mm (0 = no cassette)
    11      1       Media type
    12-17   6       Reserved / media length / mode
    18      1       Status type (see StatusType)
    19      1       Phase type (0 = editing/idle, 1 = printing)
    20      1       Phase number (high byte)
    21      1       Phase number (low byte)
    22-31   10      Notification, text colour, reserved
"""

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum, IntFlag
from typing import Optional

from .results import (
    CommunicationError,
    QueryCommunicationError,
    QueryDeviceError,
    QueryResult,
    QuerySuccess,
)

log = logging.getLogger(__name__)

STATUS_SIZE = 32
HEADER = bytes([0x80, 0x20])


class LabelSize(Enum):
    """Tape width and the matching print-head pixel height."""

    MM6 = (6, 32)
    MM9 = (9, 48)
    MM12 = (12, 64)
    MM18 = (18, 96)
    MM24 = (24, 128)
    # 64 px so a preview can still be rendered without a cassette
    UNKNOWN = (0, 64)

    def __init__(self, mm: int, pixels: int):
        self.mm = mm
        self.pixels = pixels

    @classmethod
    def from_mm(cls, mm: int) -> Optional["LabelSize"]:
        """Map a firmware media width to a LabelSize, None if unsupported."""
        for size in cls:
            if size.mm == mm:
                return size
        return None

    def __str__(self) -> str:
        if self is LabelSize.UNKNOWN:
            return "unknown"
        return f"{self.mm}mm"


class ErrorFlags1(IntFlag):
    """Error information 1 (byte 8)."""

    NO_MEDIA = 0x01
    END_OF_MEDIA = 0x02
    CUTTER_JAM = 0x04
    WEAK_BATTERY = 0x08
    HIGH_VOLTAGE_ADAPTER = 0x40


class ErrorFlags2(IntFlag):
    """Error information 2 (byte 9)."""

    REPLACE_MEDIA = 0x01
    EXPANSION_BUFFER_FULL = 0x02
    TRANSMISSION_ERROR = 0x04
    TRANSMISSION_BUFFER_FULL = 0x08
    COVER_OPEN = 0x10
    OVERHEATING = 0x20


class StatusType(IntEnum):
    """Reason the status block was sent (byte 18)."""

    REPLY = 0x00
    PRINTING_COMPLETED = 0x01
    ERROR_OCCURRED = 0x02
    TURNED_OFF = 0x04
    NOTIFICATION = 0x05
    PHASE_CHANGE = 0x06


class PhaseType(IntEnum):
    """Printer phase (byte 19)."""

    EDITING = 0x00  # idle, ready for the next job
    PRINTING = 0x01


_ERROR1_TEXT = {
    ErrorFlags1.NO_MEDIA: "no media",
    ErrorFlags1.END_OF_MEDIA: "end of media",
    ErrorFlags1.CUTTER_JAM: "cutter jam",
    ErrorFlags1.WEAK_BATTERY: "weak battery",
    ErrorFlags1.HIGH_VOLTAGE_ADAPTER: "high voltage adapter",
}

_ERROR2_TEXT = {
    ErrorFlags2.REPLACE_MEDIA: "replace media",
    ErrorFlags2.EXPANSION_BUFFER_FULL: "expansion buffer full",
    ErrorFlags2.TRANSMISSION_ERROR: "transmission error",
    ErrorFlags2.TRANSMISSION_BUFFER_FULL: "transmission buffer full",
    ErrorFlags2.COVER_OPEN: "cover open",
    ErrorFlags2.OVERHEATING: "overheating",
}


@dataclass(frozen=True)
class PrinterStatus:
    """Parsed 32-byte status block."""

    label_size: LabelSize
    error1: int
    error2: int
    status: int
    phase_type: int
    phase1: int
    phase2: int
    raw_data: bytes = b""

    @property
    def has_error(self) -> bool:
        return self.error1 != 0 or self.error2 != 0

    @property
    def is_idle(self) -> bool:
        """True once the printer is back in the editing phase."""
        return self.phase_type == PhaseType.EDITING

    def errors(self) -> list[str]:
        """Human readable names of every error bit that is set.

        Bits without a documented meaning are reported by position.
        """
        messages = []
        for value, flags, table, label in (
            (self.error1, ErrorFlags1, _ERROR1_TEXT, "error1"),
            (self.error2, ErrorFlags2, _ERROR2_TEXT, "error2"),
        ):
            for bit in range(8):
                mask = 1 << bit
                if not value & mask:
                    continue
                try:
                    messages.append(table[flags(mask)])
                except (KeyError, ValueError):
                    messages.append(f"{label} bit {bit}")
        return messages

    def __str__(self) -> str:
        errors = ", ".join(self.errors()) or "none"
        return (
            f"PrinterStatus(label={self.label_size}, status=0x{self.status:02x}, "
            f"phase_type={self.phase_type}, phase=0x{self.phase1:02x}{self.phase2:02x}, "
            f"errors={errors})"
        )


def parse_query_response(data: bytes) -> QueryResult:
    """
    Parse a status block into a query result.

    Args:
        data: Raw bytes read from the bulk IN endpoint

    Returns:
        QuerySuccess, QueryDeviceError when any error bit is set, or
        QueryCommunicationError(PARSING) for a malformed block
    """
    if len(data) != STATUS_SIZE or data[:2] != HEADER:
        log.warning("Status header is not valid: %s", bytes(data[:2]).hex())
        return QueryCommunicationError(CommunicationError.PARSING)

    label_size = LabelSize.from_mm(data[10])
    if label_size is None:
        log.warning(
            "Invalid label size %d, only 6, 9, 12, 18, 24 are supported", data[10]
        )
        return QueryCommunicationError(CommunicationError.PARSING)

    status = PrinterStatus(
        label_size=label_size,
        error1=data[8],
        error2=data[9],
        status=data[18],
        phase_type=data[19],
        phase1=data[20],
        phase2=data[21],
        raw_data=bytes(data),
    )

    if status.has_error:
        log.warning(
            "Printer indicated error (error1=0x%02x, error2=0x%02x): %s",
            status.error1,
            status.error2,
            ", ".join(status.errors()),
        )
        return QueryDeviceError(status)

    return QuerySuccess(status)
