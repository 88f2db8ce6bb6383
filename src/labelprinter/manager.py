"""
Printer connection management.

ConnectionManager owns the single live printer connection. It obtains
permission for the selected device, opens it, and serializes every
operation on it behind one asyncio.Lock, so a status query issued while
a multi-copy print is running waits for the print to finish.

Device events (attach, detach, permission results) arrive through a
DeviceEventSource subscription. Events delivered from another thread are
handed to the loop the manager runs on, and a connection that no longer
belongs to the selected printer is only ever closed under the lock.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .config import PrinterTimings
from .devices import Device, DeviceRegistry, PrinterConnectionState
from .events import (
    DeviceAttached,
    DeviceDetached,
    DeviceEvent,
    DeviceEventSource,
    PermissionBroker,
    PermissionResult,
)
from .poller import StatusHeartbeat
from .printer import LabelPrinter, PrintRequest
from .responses import LabelSize
from .results import (
    CommunicationError,
    OpenCommunicationError,
    OpenResult,
    OpenSuccess,
    PrintCommunicationError,
    PrintResult,
    PrintStatus,
    QueryCommunicationError,
    QueryResult,
    QuerySuccess,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrinterSnapshot:
    """What an observer can see of the printer at one moment.

    Attributes:
        state: Available printers, selection and live connection
        last_query: Result of the most recent status query, if any
        print_status: Progress of the most recent print
        print_result: Result of the most recent completed print, if any
    """

    state: PrinterConnectionState
    last_query: Optional[QueryResult] = None
    print_status: PrintStatus = PrintStatus.NOT_STARTED
    print_result: Optional[PrintResult] = None


class ConnectionManager:
    """
    Single owner of the printer connection.

    Example:
        events = UsbHotplugMonitor()
        manager = ConnectionManager(
            DeviceRegistry(load_allow_list()),
            LibusbPermissionBroker(events),
            events,
        )
        async with manager:
            manager.registry.refresh()
            if isinstance(await manager.request_permission_and_open(), OpenSuccess):
                result = await manager.print(request)
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        permissions: PermissionBroker,
        events: Optional[DeviceEventSource] = None,
        timings: PrinterTimings = PrinterTimings(),
        printer_factory: Callable[..., LabelPrinter] = LabelPrinter.for_device,
    ):
        """
        Args:
            registry: Source of the selected device
            permissions: Broker asked for access before opening
            events: Event source to subscribe to; permission results must
                arrive through it
            timings: Timeouts and intervals for the engine and heartbeat
            printer_factory: Called as printer_factory(handle, timings=...)
                to build an engine for a device
        """
        self.registry = registry
        self.permissions = permissions
        self.events = events
        self.timings = timings
        self.printer_factory = printer_factory

        self._lock = asyncio.Lock()
        self._printer: Optional[LabelPrinter] = None
        self._connected_key: Optional[str] = None
        self._permission_waiter: Optional[tuple[str, asyncio.Future]] = None
        self._heartbeat = StatusHeartbeat(self.query, interval=timings.heartbeat_interval)
        self._pending_close: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._last_query: Optional[QueryResult] = None
        self._print_status = PrintStatus.NOT_STARTED
        self._print_result: Optional[PrintResult] = None

        if events is not None:
            events.subscribe(self.handle_event)

    async def __aenter__(self) -> "ConnectionManager":
        self._bind_loop()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop_heartbeat()
        if self._pending_close is not None:
            await asyncio.gather(self._pending_close, return_exceptions=True)
        await self.close()
        if self.events is not None:
            self.events.unsubscribe(self.handle_event)

    # --- Observation ---

    @property
    def snapshot(self) -> PrinterSnapshot:
        return PrinterSnapshot(
            state=self.registry.state,
            last_query=self._last_query,
            print_status=self._print_status,
            print_result=self._print_result,
        )

    @property
    def is_connected(self) -> bool:
        return self._printer is not None

    @property
    def resolved_label_size(self) -> LabelSize:
        """Label size from the last query; UNKNOWN unless it succeeded."""
        if isinstance(self._last_query, QuerySuccess):
            return self._last_query.status.label_size
        return LabelSize.UNKNOWN

    def clear_print_status(self) -> None:
        """Forget the last print so a new one can be tracked."""
        self._print_status = PrintStatus.NOT_STARTED
        self._print_result = None

    # --- Permission and open ---

    async def _await_permission(self, device: Device) -> bool:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._permission_waiter = (device.key, future)
        try:
            # The broker may answer before returning
            self.permissions.request_permission(device)
            return await asyncio.wait_for(future, timeout=self.timings.permission_timeout)
        except asyncio.TimeoutError:
            log.warning("Timed out waiting for permission for %s", device)
            return False
        finally:
            self._permission_waiter = None

    async def request_permission_and_open(self) -> OpenResult:
        """
        Get permission for the selected printer and open it.

        Any previously open connection is closed first, so at most one
        device is ever claimed.
        """
        self._bind_loop()
        device = self.registry.selected_device
        if device is None:
            return OpenCommunicationError(CommunicationError.NO_PRINTER)

        if not self.permissions.has_permission(device):
            granted = await self._await_permission(device)
            if not granted:
                return OpenCommunicationError(CommunicationError.PERMISSION_DENIED)

        async with self._lock:
            self._close_connection()

            printer = self.printer_factory(device.handle, timings=self.timings)
            result = await printer.open()
            if not isinstance(result, OpenSuccess):
                printer.close()
                return result

            self._printer = printer
            self._connected_key = device.key
            self.registry.mark_connected(device.key)
            log.info("Connected to %s", device)

            self._last_query = await printer.query()

        return result

    # --- Locked operations ---

    async def query(self) -> QueryResult:
        """Query the connected printer and remember the result."""
        async with self._lock:
            self._drop_stale_connection()
            if self._printer is None:
                return QueryCommunicationError(CommunicationError.CONNECTION_NULL)
            self._last_query = await self._printer.query()
            return self._last_query

    async def print(self, request: Optional[PrintRequest]) -> PrintResult:
        """Print on the connected printer, holding the connection throughout."""
        async with self._lock:
            self._drop_stale_connection()
            if self._printer is None:
                return PrintCommunicationError(CommunicationError.CONNECTION_NULL)

            self._print_status = PrintStatus.IN_PROGRESS
            self._print_result = None
            try:
                result = await self._printer.print(request)
            finally:
                self._print_status = PrintStatus.COMPLETED

            self._print_result = result
            return result

    async def close(self) -> None:
        async with self._lock:
            self._close_connection()

    def _drop_stale_connection(self) -> None:
        # Caller holds the lock
        if self._is_stale():
            log.info("Printer %s is no longer selected", self._connected_key)
            self._close_connection()

    def _close_connection(self) -> None:
        # Caller holds the lock
        if self._printer is None:
            return
        log.info("Closing connection to %s", self._connected_key)
        self._printer.close()
        self._printer = None
        self._connected_key = None
        self.registry.mark_connected(None)

    # --- Events ---

    def _bind_loop(self) -> None:
        self._loop = asyncio.get_running_loop()

    def handle_event(self, event: DeviceEvent) -> None:
        """React to a device event. Subscribed to the event source.

        Safe to call from any thread: when the manager's loop is running
        elsewhere, the event is handed over to it.
        """
        loop = self._loop
        if loop is not None and loop.is_running() and not self._on_loop(loop):
            loop.call_soon_threadsafe(self._dispatch, event)
            return
        self._dispatch(event)

    @staticmethod
    def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False

    def _dispatch(self, event: DeviceEvent) -> None:
        if isinstance(event, DeviceAttached):
            self.registry.refresh(preferred=event.device)
            self._reconcile()
        elif isinstance(event, DeviceDetached):
            self.registry.refresh()
            self._reconcile()
        elif isinstance(event, PermissionResult):
            waiter = self._permission_waiter
            if waiter is not None:
                key, future = waiter
                if key == event.device.key and not future.done():
                    future.set_result(event.granted)

    def _is_stale(self) -> bool:
        return self._connected_key is not None and self._connected_key != self.registry.state.selected

    def _reconcile(self) -> None:
        """Schedule closing the connection if it no longer belongs to the selected printer.

        The close waits for the lock, so a running print finishes first.
        Without a running loop the close happens at the next operation.
        """
        if not self._is_stale():
            return
        if self._loop is None or not self._on_loop(self._loop):
            log.info("Printer %s is no longer selected; closing at the next operation", self._connected_key)
            return
        if self._pending_close is not None and not self._pending_close.done():
            return
        self._pending_close = self._loop.create_task(self._close_stale())
        self._pending_close.add_done_callback(self._log_close_failure)

    async def _close_stale(self) -> None:
        async with self._lock:
            self._drop_stale_connection()

    @staticmethod
    def _log_close_failure(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            log.error("Closing stale connection failed: %s", task.exception())

    # --- Heartbeat ---

    def start_heartbeat(self) -> None:
        self._heartbeat.start()

    async def stop_heartbeat(self) -> None:
        await self._heartbeat.stop()
