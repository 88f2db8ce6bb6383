"""Brother P-touch USB Label Printer Driver for Linux/macOS."""

__version__ = "0.1.0"

from .config import (
    ConfigError,
    DEFAULT_ALLOW_LIST,
    PrinterTimings,
    load_allow_list,
)
from .connection import USBConnection, TransportError, SetupError, TransferError
from .devices import Device, DeviceRegistry, PrinterConnectionState
from .events import (
    DeviceAttached,
    DeviceDetached,
    DeviceEventSource,
    LibusbPermissionBroker,
    PermissionBroker,
    PermissionResult,
    UsbHotplugMonitor,
)
from .image import DitherMode, ImageSizeError, ImageTransformer
from .manager import ConnectionManager, PrinterSnapshot
from .printer import LabelPrinter, PrintRequest
from .responses import LabelSize, PrinterStatus, parse_query_response
from .results import (
    CommunicationError,
    PrintStatusError,
    PrintStatus,
    OpenSuccess,
    OpenCommunicationError,
    QuerySuccess,
    QueryCommunicationError,
    QueryDeviceError,
    PrintSuccess,
    PrintCommunicationError,
    PrintDeviceError,
)

__all__ = [
    "ConfigError",
    "DEFAULT_ALLOW_LIST",
    "PrinterTimings",
    "load_allow_list",
    "USBConnection",
    "TransportError",
    "SetupError",
    "TransferError",
    "Device",
    "DeviceRegistry",
    "PrinterConnectionState",
    "DeviceAttached",
    "DeviceDetached",
    "DeviceEventSource",
    "LibusbPermissionBroker",
    "PermissionBroker",
    "PermissionResult",
    "UsbHotplugMonitor",
    "DitherMode",
    "ImageSizeError",
    "ImageTransformer",
    "ConnectionManager",
    "PrinterSnapshot",
    "LabelPrinter",
    "PrintRequest",
    "LabelSize",
    "PrinterStatus",
    "parse_query_response",
    "CommunicationError",
    "PrintStatusError",
    "PrintStatus",
    "OpenSuccess",
    "OpenCommunicationError",
    "QuerySuccess",
    "QueryCommunicationError",
    "QueryDeviceError",
    "PrintSuccess",
    "PrintCommunicationError",
    "PrintDeviceError",
]
