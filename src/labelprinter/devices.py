"""
Attached printer discovery and selection.

The registry filters the USB device list down to allowed (vendor, product)
pairs and keeps track of which printer is selected. It never talks to a
device; opening one is the connection manager's job.
"""

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

import usb.core

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Device:
    """An enumerated USB device.

    Attributes:
        vendor_id: USB idVendor
        product_id: USB idProduct
        bus: USB bus number
        address: Device address on the bus
        handle: pyusb device object (not part of equality)
    """

    vendor_id: int
    product_id: int
    bus: int
    address: int
    handle: Any = field(default=None, compare=False, repr=False)

    @property
    def key(self) -> str:
        """Stable identifier while the device stays plugged in."""
        return f"{self.bus:03d}:{self.address:03d}"

    @property
    def usb_id(self) -> tuple[int, int]:
        return (self.vendor_id, self.product_id)

    def __str__(self) -> str:
        return f"[{self.key}] {self.vendor_id:04x}:{self.product_id:04x}"


@dataclass(frozen=True)
class PrinterConnectionState:
    """Snapshot of available printers, the selection and the live connection."""

    available: Mapping[str, Device] = field(default_factory=lambda: MappingProxyType({}))
    selected: Optional[str] = None
    connected: Optional[str] = None

    @property
    def selected_device(self) -> Optional[Device]:
        if self.selected is None:
            return None
        return self.available.get(self.selected)


def enumerate_usb_devices() -> list[Device]:
    """List every attached USB device."""
    devices = []
    for dev in usb.core.find(find_all=True):
        devices.append(Device(
            vendor_id=dev.idVendor,
            product_id=dev.idProduct,
            bus=dev.bus,
            address=dev.address,
            handle=dev,
        ))
    return devices


class DeviceRegistry:
    """Tracks allowed printers and the current selection."""

    def __init__(
        self,
        allow_list: Iterable[tuple[int, int]],
        enumerate_devices: Callable[[], list[Device]] = enumerate_usb_devices,
    ):
        self.allow_list = frozenset(allow_list)
        self._enumerate = enumerate_devices
        self._state = PrinterConnectionState()

    @property
    def state(self) -> PrinterConnectionState:
        return self._state

    @property
    def selected_device(self) -> Optional[Device]:
        return self._state.selected_device

    def refresh(self, preferred: Optional[Device] = None) -> PrinterConnectionState:
        """
        Re-enumerate and rebuild the state.

        Keeps the previous selection if that printer is still attached,
        otherwise selects the first remaining one. A preferred device that
        is attached and allowed takes the selection.

        Args:
            preferred: Device to select, e.g. one that was just attached

        Returns:
            The new state
        """
        old = self._state
        available = {
            dev.key: dev
            for dev in sorted(self._enumerate(), key=lambda d: d.key)
            if dev.usb_id in self.allow_list
        }

        selected = None
        if available:
            selected = old.selected if old.selected in available else next(iter(available))
        if preferred is not None and preferred.key in available:
            selected = preferred.key

        connected = old.connected if old.connected in available else None

        self._state = PrinterConnectionState(
            available=MappingProxyType(available),
            selected=selected,
            connected=connected,
        )
        log.debug(
            "Printers: %s, selected: %s", list(available) or "none", selected
        )
        return self._state

    def select(self, key: str) -> PrinterConnectionState:
        """Select an available printer; unknown keys leave the state unchanged."""
        if key in self._state.available:
            self._state = replace(self._state, selected=key)
        else:
            log.warning("Cannot select %s: not an available printer", key)
        return self._state

    def mark_connected(self, key: Optional[str]) -> PrinterConnectionState:
        """Record which printer holds the live connection (None when closed)."""
        self._state = replace(self._state, connected=key)
        return self._state
