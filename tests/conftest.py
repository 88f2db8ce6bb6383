"""
Pytest configuration for label printer tests.

Provides fakes for the USB transport and command-line options for
hardware tests.
"""

from typing import Callable, Optional

import pytest
import pytest_asyncio
import usb.core

from labelprinter.config import PrinterTimings
from labelprinter.connection import SetupError, TransferError
from labelprinter.devices import Device
from labelprinter.printer import LabelPrinter


def pytest_addoption(parser):
    """Add command-line options for hardware tests."""
    parser.addoption(
        "--device",
        action="store",
        default=None,
        help="USB device key (BBB:AAA) of the printer for hardware tests",
    )


def build_status(
    label_mm: int = 12,
    error1: int = 0,
    error2: int = 0,
    status: int = 0,
    phase_type: int = 0,
    phase1: int = 0,
    phase2: int = 0,
) -> bytes:
    """Build a 32-byte status block as sent by the printer."""
    data = bytearray(32)
    data[0] = 0x80
    data[1] = 0x20
    data[8] = error1
    data[9] = error2
    data[10] = label_mm
    data[18] = status
    data[19] = phase_type
    data[20] = phase1
    data[21] = phase2
    return bytes(data)


class FakeConnection:
    """
    In-memory stand-in for USBConnection.

    Reads are served from a queue; an Exception in the queue is raised
    instead. An empty queue behaves like a read timeout.
    """

    def __init__(
        self,
        reads: Optional[list] = None,
        fail_open: bool = False,
        fail_write: Optional[Callable[[bytes], bool]] = None,
    ):
        self.reads = list(reads or [])
        self.writes: list[bytes] = []
        self.fail_open = fail_open
        self.fail_write = fail_write
        self.open_calls = 0
        self.close_calls = 0
        self._open = False

    def open(self) -> None:
        self.open_calls += 1
        if self.fail_open:
            raise SetupError("Expected 1 interface, got 2")
        self._open = True

    def bulk_write(self, data: bytes) -> int:
        if self.fail_write is not None and self.fail_write(data):
            raise TransferError("Write failed at chunk 1/1: timeout")
        self.writes.append(bytes(data))
        return len(data)

    def bulk_read(self, size: int) -> bytes:
        if not self.reads:
            raise TransferError("Read failed: timeout")
        item = self.reads.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.close_calls += 1
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open


# Keep completion polling quick
FAST_TIMINGS = PrinterTimings(
    poll_interval=0.001,
    page_timeout=0.05,
    last_page_timeout=0.05,
    permission_timeout=0.05,
    heartbeat_interval=0.01,
)


@pytest.fixture
def status_block():
    """Factory for raw status blocks."""
    return build_status


@pytest.fixture
def fake_connection():
    """Factory for FakeConnection instances."""
    return FakeConnection


@pytest.fixture
def timings():
    return FAST_TIMINGS


@pytest.fixture
def make_device():
    """Factory for Device values without a real pyusb handle."""

    def _make(bus=1, address=5, vendor_id=0x04F9, product_id=0x2061, handle=None):
        return Device(
            vendor_id=vendor_id,
            product_id=product_id,
            bus=bus,
            address=address,
            handle=handle,
        )

    return _make


@pytest.fixture
def device_key(request):
    """Get the printer device key from command line."""
    key = request.config.getoption("--device")
    if key is None:
        pytest.skip("No printer device provided (use --device=BBB:AAA)")
    return key


@pytest_asyncio.fixture
async def connected_printer(device_key):
    """Provide an opened printer on real hardware."""
    bus, address = (int(part) for part in device_key.split(":"))
    handle = usb.core.find(bus=bus, address=address)
    if handle is None:
        pytest.skip(f"No USB device at {device_key}")

    printer = LabelPrinter.for_device(handle)
    result = await printer.open()
    if printer.is_open is False:
        pytest.skip(f"Could not open printer at {device_key}: {result}")

    yield printer

    printer.close()
