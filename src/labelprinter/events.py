"""
Device events and permission handling.

Attach/detach notifications and permission results are delivered through
a DeviceEventSource; the connection manager subscribes to one. The libusb
implementations here poll enumeration for hotplug and probe device access
for permission, which is what a desktop host offers. Other platforms can
plug in their own source and broker.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Union

import usb.core
import usb.util

from .devices import Device, enumerate_usb_devices

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceAttached:
    device: Device


@dataclass(frozen=True)
class DeviceDetached:
    device: Device


@dataclass(frozen=True)
class PermissionResult:
    device: Device
    granted: bool


DeviceEvent = Union[DeviceAttached, DeviceDetached, PermissionResult]
EventCallback = Callable[[DeviceEvent], None]


class DeviceEventSource:
    """Fan-out of device events to subscribers."""

    def __init__(self):
        self._subscribers: list[EventCallback] = []

    def subscribe(self, callback: EventCallback) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, event: DeviceEvent) -> None:
        """Deliver an event to every subscriber, in subscription order."""
        log.debug("Event: %s", event)
        for callback in list(self._subscribers):
            callback(event)

    async def start(self) -> None:
        """Begin producing events. No-op for sources driven by emit()."""

    async def stop(self) -> None:
        """Stop producing events."""


class UsbHotplugMonitor(DeviceEventSource):
    """Emits attach/detach events by diffing periodic libusb enumeration."""

    DEFAULT_INTERVAL = 1.0

    def __init__(
        self,
        interval: float = DEFAULT_INTERVAL,
        enumerate_devices: Callable[[], list[Device]] = enumerate_usb_devices,
    ):
        super().__init__()
        self.interval = interval
        self._enumerate = enumerate_devices
        self._known: dict[str, Device] = {}
        self._task: Optional[asyncio.Task] = None

    def poll(self) -> None:
        """Enumerate once and emit events for the differences."""
        self._update(self._enumerate())

    def _update(self, devices: list[Device]) -> None:
        current = {dev.key: dev for dev in devices}

        for key, dev in self._known.items():
            if key not in current:
                self.emit(DeviceDetached(dev))
        for key, dev in current.items():
            if key not in self._known:
                self.emit(DeviceAttached(dev))

        self._known = current

    async def _run(self) -> None:
        while True:
            try:
                devices = await asyncio.to_thread(self._enumerate)
            except usb.core.USBError as e:
                log.warning("USB enumeration failed: %s", e)
            else:
                # Subscribers run on the loop, not in the enumeration thread
                self._update(devices)
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        if self._task is None:
            # Devices present at start are the baseline, not attach events
            self._known = {dev.key: dev for dev in self._enumerate()}
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class PermissionBroker(ABC):
    """Grants access to a USB device."""

    @abstractmethod
    def has_permission(self, device: Device) -> bool:
        """Return True if the device can be opened without asking."""

    @abstractmethod
    def request_permission(self, device: Device) -> None:
        """
        Ask for access to the device.

        The outcome must be delivered later as a PermissionResult event.
        """


class LibusbPermissionBroker(PermissionBroker):
    """
    Permission as seen by libusb: whether the device node can be opened.

    There is nobody to ask on a desktop host, so a request is answered
    immediately with the result of probing the device.
    """

    def __init__(self, events: DeviceEventSource):
        self.events = events

    @staticmethod
    def _can_open(device: Device) -> bool:
        # Reading the language table needs an open handle
        try:
            usb.util.get_langids(device.handle)
        except usb.core.USBError as e:
            log.debug("Cannot open %s: %s", device, e)
            return False
        return True

    def has_permission(self, device: Device) -> bool:
        return self._can_open(device)

    def request_permission(self, device: Device) -> None:
        granted = self._can_open(device)
        if not granted:
            log.warning(
                "Permission denied for %s; check udev rules for %04x:%04x",
                device,
                device.vendor_id,
                device.product_id,
            )
        self.events.emit(PermissionResult(device, granted))
