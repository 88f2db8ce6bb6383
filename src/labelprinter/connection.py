"""
USB Connection Handler for P-touch Printers.

Handles bulk transfers over a single claimed interface using pyusb
(libusb backend).

Linux: the kernel ``usblp`` driver usually binds these printers; it is
detached when the interface is claimed. Non-root access needs a udev
rule granting the user rw on the device node.
"""

import logging
from typing import Any, Optional

import usb.core
import usb.util

log = logging.getLogger(__name__)


# --- Exception Classes ---


class TransportError(Exception):
    """Base exception for USB transport faults."""

    pass


class SetupError(TransportError):
    """Device layout is not what the protocol expects, or the claim failed."""

    pass


class TransferError(TransportError):
    """A bulk read or write did not complete."""

    pass


class USBConnection:
    """Owns one claimed USB interface with a bulk IN and a bulk OUT endpoint."""

    # Largest single bulk transfer; larger payloads are split
    MAX_CHUNK_SIZE = 16384

    DEFAULT_WRITE_TIMEOUT_MS = 500
    DEFAULT_READ_TIMEOUT_MS = 500

    def __init__(
        self,
        device: Any,
        write_timeout_ms: int = DEFAULT_WRITE_TIMEOUT_MS,
        read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS,
    ):
        """
        Args:
            device: pyusb device (usb.core.Device)
            write_timeout_ms: Timeout for each bulk OUT chunk
            read_timeout_ms: Timeout for a bulk IN read
        """
        self.device = device
        self.write_timeout_ms = write_timeout_ms
        self.read_timeout_ms = read_timeout_ms
        self._interface_number: Optional[int] = None
        self._ep_in: Any = None
        self._ep_out: Any = None
        self._claimed = False

    def _active_configuration(self):
        try:
            return self.device.get_active_configuration()
        except usb.core.USBError:
            # Unconfigured device; select the default configuration
            self.device.set_configuration()
            return self.device.get_active_configuration()

    def open(self) -> None:
        """
        Validate the interface layout and claim the interface.

        Requires exactly one interface with exactly two endpoints: one bulk
        IN and one bulk OUT.

        Raises:
            SetupError: If the layout is unexpected or the claim fails
        """
        try:
            cfg = self._active_configuration()
            interfaces = cfg.interfaces()
            if len(interfaces) != 1:
                raise SetupError(f"Expected 1 interface, got {len(interfaces)}")
            intf = interfaces[0]

            endpoints = intf.endpoints()
            if len(endpoints) != 2:
                raise SetupError(f"Expected 2 endpoints, got {len(endpoints)}")

            ep_in = ep_out = None
            for ep in endpoints:
                if usb.util.endpoint_type(ep.bmAttributes) != usb.util.ENDPOINT_TYPE_BULK:
                    continue
                if usb.util.endpoint_direction(ep.bEndpointAddress) == usb.util.ENDPOINT_IN:
                    ep_in = ep
                else:
                    ep_out = ep

            if ep_in is None:
                raise SetupError("No bulk IN endpoint")
            if ep_out is None:
                raise SetupError("No bulk OUT endpoint")

            number = intf.bInterfaceNumber
            try:
                if self.device.is_kernel_driver_active(number):
                    self.device.detach_kernel_driver(number)
                    log.debug("Detached kernel driver from interface %d", number)
            except NotImplementedError:
                # Not supported by the backend on this platform (macOS, Windows)
                pass

            usb.util.claim_interface(self.device, number)
        except usb.core.USBError as e:
            raise SetupError(f"USB setup failed: {e}") from e

        self._interface_number = number
        self._ep_in = ep_in
        self._ep_out = ep_out
        self._claimed = True
        log.debug(
            "Claimed interface %d: OUT=0x%02x IN=0x%02x",
            number,
            ep_out.bEndpointAddress,
            ep_in.bEndpointAddress,
        )

    def bulk_write(self, data: bytes) -> int:
        """
        Write data to the bulk OUT endpoint in chunks.

        Args:
            data: Payload of any length

        Returns:
            Number of bytes written (always len(data))

        Raises:
            TransferError: If any chunk fails or transfers fewer bytes
        """
        if not self._claimed:
            raise TransferError("Connection is not open")

        total_chunks = (len(data) + self.MAX_CHUNK_SIZE - 1) // self.MAX_CHUNK_SIZE

        offset = 0
        while offset < len(data):
            chunk = data[offset:offset + self.MAX_CHUNK_SIZE]
            chunk_num = offset // self.MAX_CHUNK_SIZE + 1

            try:
                written = self._ep_out.write(chunk, timeout=self.write_timeout_ms)
            except usb.core.USBError as e:
                raise TransferError(
                    f"Write failed at chunk {chunk_num}/{total_chunks}: {e}"
                ) from e

            if written != len(chunk):
                raise TransferError(
                    f"Short write at chunk {chunk_num}/{total_chunks}: "
                    f"{written} of {len(chunk)} bytes"
                )

            log.debug("Wrote chunk %d/%d (%d bytes)", chunk_num, total_chunks, written)
            offset += len(chunk)

        return offset

    def bulk_read(self, size: int) -> bytes:
        """
        Read exactly size bytes from the bulk IN endpoint.

        Raises:
            TransferError: If the read fails, times out or is short
        """
        if not self._claimed:
            raise TransferError("Connection is not open")

        try:
            data = self._ep_in.read(size, timeout=self.read_timeout_ms)
        except usb.core.USBError as e:
            raise TransferError(f"Read failed: {e}") from e

        if len(data) != size:
            raise TransferError(f"Short read: {len(data)} of {size} bytes")

        return bytes(data)

    def close(self) -> None:
        """Release the interface. Safe to call more than once."""
        if self._claimed:
            try:
                usb.util.release_interface(self.device, self._interface_number)
            except usb.core.USBError as e:
                log.warning("Error releasing interface: %s", e)
        try:
            usb.util.dispose_resources(self.device)
        except usb.core.USBError as e:
            log.warning("Error disposing USB resources: %s", e)

        self._claimed = False
        self._ep_in = None
        self._ep_out = None

    @property
    def is_open(self) -> bool:
        """Check if the interface is currently claimed."""
        return self._claimed
