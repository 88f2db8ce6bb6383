"""
Result types returned by the protocol engine and connection manager.

Expected communication and device faults are reported as values rather
than raised, so callers can render them without try/except around every
printer call.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from .responses import PrinterStatus


class CommunicationError(Enum):
    """Local or transport faults. Nothing is assumed about device state."""

    NO_PRINTER = "no_printer"  # No allowed printer is attached/selected
    PERMISSION_DENIED = "permission_denied"
    CONNECTION_NULL = "connection_null"  # No connection has been opened
    USB_SETUP = "usb_setup"  # Interface/endpoint layout or claim failed
    TRANSFER = "transfer"  # Bulk read or write failed
    PARSING = "parsing"  # Status response had unexpected values
    TIMEOUT = "timeout"  # Printer did not report completion in time
    GENERIC = "generic"


class PrintStatusError(Enum):
    """Application-level print failures, checked before or reported by the device."""

    CONFIG_NULL = "config_null"
    LABEL_SIZE_UNKNOWN = "label_size_unknown"
    LABEL_SIZE_MISMATCH = "label_size_mismatch"
    DEVICE_ERROR = "device_error"


class PrintStatus(Enum):
    """Progress of the most recent print job."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# --- Open ---


@dataclass(frozen=True)
class OpenSuccess:
    pass


@dataclass(frozen=True)
class OpenCommunicationError:
    error: CommunicationError


OpenResult = Union[OpenSuccess, OpenCommunicationError]


# --- Query ---


@dataclass(frozen=True)
class QuerySuccess:
    status: "PrinterStatus"


@dataclass(frozen=True)
class QueryCommunicationError:
    error: CommunicationError


@dataclass(frozen=True)
class QueryDeviceError:
    """The printer answered but flagged one or more error bits."""

    status: "PrinterStatus"


QueryResult = Union[QuerySuccess, QueryCommunicationError, QueryDeviceError]


# --- Print ---


@dataclass(frozen=True)
class PrintSuccess:
    pass


@dataclass(frozen=True)
class PrintCommunicationError:
    error: CommunicationError


@dataclass(frozen=True)
class PrintDeviceError:
    error: PrintStatusError
    status: Optional["PrinterStatus"] = None


PrintResult = Union[PrintSuccess, PrintCommunicationError, PrintDeviceError]
