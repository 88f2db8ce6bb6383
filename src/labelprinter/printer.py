"""
P-touch Printer Protocol Engine.

Implements open, query and print against one claimed USB device. The
engine does no locking of its own: the connection manager serializes
every call on a shared connection.

Blocking USB transfers are run in a worker thread so that the polling
sleeps between status reads stay cooperative.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from PIL import Image

from .commands import PTouchCommands
from .config import PrinterTimings
from .connection import SetupError, TransferError, USBConnection
from .image import DitherMode, ImageTransformer
from .poller import wait_for_page_completion
from .raster import encode_raster
from .responses import STATUS_SIZE, LabelSize, parse_query_response
from .results import (
    CommunicationError,
    OpenCommunicationError,
    OpenResult,
    OpenSuccess,
    PrintCommunicationError,
    PrintDeviceError,
    PrintResult,
    PrintStatusError,
    PrintSuccess,
    QueryCommunicationError,
    QueryDeviceError,
    QueryResult,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrintRequest:
    """One print action.

    Attributes:
        image: Source image (any size and mode); None means nothing to print
        label_size: Label size resolved from the last status query
        copies: Number of labels, each cut separately
        dither: Binarization method
        threshold: Cut-off in [0, 1], used when dither is NONE
    """

    image: Optional[Image.Image]
    label_size: LabelSize
    copies: int = 1
    dither: DitherMode = DitherMode.FLOYD_STEINBERG
    threshold: float = ImageTransformer.DEFAULT_THRESHOLD

    def __post_init__(self):
        if self.copies < 1:
            raise ValueError(f"copies must be at least 1, got {self.copies}")
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be between 0 and 1, got {self.threshold}")

    def render(self, transformer: Optional[ImageTransformer] = None) -> Image.Image:
        """Run the image pipeline for this request's label size."""
        transformer = transformer or ImageTransformer()
        return transformer.transform(
            self.image, self.label_size, dither=self.dither, threshold=self.threshold
        )


class LabelPrinter:
    """
    Protocol engine for one P-touch printer.

    All operations return result values; transport exceptions are
    converted at the command boundary.
    """

    def __init__(
        self,
        connection: USBConnection,
        timings: PrinterTimings = PrinterTimings(),
        notify_mode: bool = False,
        transformer: Optional[ImageTransformer] = None,
    ):
        """
        Args:
            connection: Unopened USB connection to the printer
            timings: Poll intervals and deadlines
            notify_mode: Explicitly enable automatic status notification
                before each page instead of relying on the firmware default
            transformer: Image pipeline used to render print requests
        """
        self.connection = connection
        self.timings = timings
        self.notify_mode = notify_mode
        self.transformer = transformer or ImageTransformer()
        self._open = False

    @classmethod
    def for_device(cls, handle: Any, timings: PrinterTimings = PrinterTimings(), **kwargs) -> "LabelPrinter":
        """Build an engine around a pyusb device handle."""
        connection = USBConnection(
            handle,
            write_timeout_ms=timings.write_timeout_ms,
            read_timeout_ms=timings.read_timeout_ms,
        )
        return cls(connection, timings=timings, **kwargs)

    @property
    def is_open(self) -> bool:
        return self._open

    async def _write(self, data: bytes) -> None:
        await asyncio.to_thread(self.connection.bulk_write, data)

    async def _read(self, size: int) -> bytes:
        return await asyncio.to_thread(self.connection.bulk_read, size)

    async def open(self) -> OpenResult:
        """Validate and claim the printer's interface."""
        try:
            await asyncio.to_thread(self.connection.open)
        except SetupError as e:
            log.warning("open() error: %s", e)
            return OpenCommunicationError(CommunicationError.USB_SETUP)

        self._open = True
        return OpenSuccess()

    async def query(self, request: bool = True) -> QueryResult:
        """
        Read the printer status.

        Args:
            request: Send the status request first. While printing the
                printer pushes status on its own and must not be written
                to, so the completion poll passes False.
        """
        if not self._open:
            log.warning("query() before a successful open()")
            return QueryCommunicationError(CommunicationError.USB_SETUP)

        if request:
            try:
                await self._write(PTouchCommands.status_request())
            except TransferError as e:
                log.warning("Query write error: %s", e)
                return QueryCommunicationError(CommunicationError.TRANSFER)

        try:
            data = await self._read(STATUS_SIZE)
        except TransferError as e:
            # Expected while polling a busy printer
            log.log(logging.WARNING if request else logging.DEBUG, "Query read error: %s", e)
            return QueryCommunicationError(CommunicationError.TRANSFER)

        return parse_query_response(data)

    def _page_commands(self, bitmap: Image.Image, label_size: LabelSize, first_page: bool) -> list[bytes]:
        commands = []
        if self.notify_mode:
            commands.append(PTouchCommands.notify_mode(True))
        commands += [
            PTouchCommands.raster_mode(),
            PTouchCommands.print_information(
                label_size_mm=label_size.mm,
                num_raster_lines=bitmap.width,
                first_page=first_page,
            ),
            PTouchCommands.each_mode(autocut=True, mirror=False),
            PTouchCommands.margin(),
            PTouchCommands.compression_mode(),
        ]
        return commands

    async def print(self, request: Optional[PrintRequest]) -> PrintResult:
        """
        Print every copy of the request and wait for each to complete.

        A failed transfer aborts the job; nothing is resent.
        """
        if request is None or request.image is None:
            return PrintDeviceError(PrintStatusError.CONFIG_NULL)
        if request.label_size is LabelSize.UNKNOWN:
            return PrintDeviceError(PrintStatusError.LABEL_SIZE_UNKNOWN)
        if not self._open:
            log.warning("print() before a successful open()")
            return PrintCommunicationError(CommunicationError.USB_SETUP)

        bitmap = request.render(self.transformer)

        # Re-query to make sure the loaded tape did not change
        query_result = await self.query()
        if isinstance(query_result, QueryCommunicationError):
            return PrintCommunicationError(query_result.error)
        if isinstance(query_result, QueryDeviceError):
            return PrintDeviceError(PrintStatusError.DEVICE_ERROR, query_result.status)
        if query_result.status.label_size is not request.label_size:
            log.warning(
                "Label size mismatch: got %s, expected %s",
                query_result.status.label_size,
                request.label_size,
            )
            return PrintDeviceError(PrintStatusError.LABEL_SIZE_MISMATCH, query_result.status)

        try:
            await self._write(PTouchCommands.initialize())
        except TransferError as e:
            log.warning("Print write error when clearing buffers: %s", e)
            return PrintCommunicationError(CommunicationError.TRANSFER)

        for i in range(request.copies):
            first_page = i == 0
            last_page = i == request.copies - 1

            try:
                for command in self._page_commands(bitmap, request.label_size, first_page):
                    await self._write(command)
                await self._write(encode_raster(bitmap, last_page))
            except TransferError as e:
                log.warning("Print write error on copy %d/%d: %s", i + 1, request.copies, e)
                return PrintCommunicationError(CommunicationError.TRANSFER)

            timeout = self.timings.last_page_timeout if last_page else self.timings.page_timeout
            outcome = await wait_for_page_completion(
                self.query, timeout=timeout, interval=self.timings.poll_interval
            )
            if outcome is None:
                return PrintCommunicationError(CommunicationError.TIMEOUT)
            if isinstance(outcome, QueryDeviceError):
                return PrintDeviceError(PrintStatusError.DEVICE_ERROR, outcome.status)

            log.debug("Copy %d/%d completed", i + 1, request.copies)

        return PrintSuccess()

    def close(self) -> None:
        """Release the device. Safe to call on an already closed engine."""
        self._open = False
        self.connection.close()
