"""
Configuration for the label printer driver.

Holds the USB allow-list of supported printers, the protocol timing
constants and the location of the per-user configuration directory.

The allow-list can be overridden with a JSON file at
``~/.config/labelprinter/devices.json``::

    [
        {"vendor_id": "0x04f9", "product_id": "0x2061", "name": "PT-P700"},
        {"vendor_id": 1273, "product_id": 8289}
    ]
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

# Config directory location
CONFIG_DIR = Path.home() / ".config" / "labelprinter"
DEVICES_FILE = CONFIG_DIR / "devices.json"

BROTHER_VENDOR_ID = 0x04F9

# Brother P-touch USB models with a 128-dot head that accept raster mode
DEFAULT_ALLOW_LIST: frozenset[tuple[int, int]] = frozenset({
    (BROTHER_VENDOR_ID, 0x205E),  # PT-H500
    (BROTHER_VENDOR_ID, 0x205F),  # PT-E500
    (BROTHER_VENDOR_ID, 0x2060),  # PT-E550W
    (BROTHER_VENDOR_ID, 0x2061),  # PT-P700
    (BROTHER_VENDOR_ID, 0x2062),  # PT-P750W
    (BROTHER_VENDOR_ID, 0x2074),  # PT-D600
    (BROTHER_VENDOR_ID, 0x20AF),  # PT-P710BT
})


class ConfigError(ValueError):
    """Configuration file is present but cannot be used."""

    pass


@dataclass(frozen=True)
class PrinterTimings:
    """Timeouts and intervals used when talking to the printer.

    Attributes:
        write_timeout_ms: Per-chunk bulk OUT timeout
        read_timeout_ms: Bulk IN timeout for one status read
        poll_interval: Delay between completion polls while printing (seconds)
        page_timeout: Completion deadline for intermediate pages (seconds)
        last_page_timeout: Completion deadline for the last page, which also
            feeds and cuts (seconds)
        permission_timeout: Bounded wait for a permission result (seconds)
        heartbeat_interval: Idle status refresh period (seconds)
    """

    write_timeout_ms: int = 500
    read_timeout_ms: int = 500
    poll_interval: float = 0.25
    page_timeout: float = 7.5
    last_page_timeout: float = 15.0
    permission_timeout: float = 0.5
    heartbeat_interval: float = 0.3


def _parse_id(value: Union[str, int], field: str) -> int:
    """Parse a USB id given as an int or a (hex) string."""
    if isinstance(value, bool):
        raise ConfigError(f"Invalid {field}: {value!r}")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = int(value, 0)
        except ValueError:
            raise ConfigError(f"Invalid {field}: {value!r}") from None
    else:
        raise ConfigError(f"Invalid {field}: {value!r}")

    if not 0 <= parsed <= 0xFFFF:
        raise ConfigError(f"{field} out of range: {value!r}")
    return parsed


def parse_allow_list(entries: list) -> frozenset[tuple[int, int]]:
    """
    Convert decoded JSON entries into a set of (vendor_id, product_id) pairs.

    Raises:
        ConfigError: If the structure or any id is invalid
    """
    if not isinstance(entries, list):
        raise ConfigError("Allow-list must be a JSON list")

    allowed = set()
    for entry in entries:
        if not isinstance(entry, dict):
            raise ConfigError(f"Allow-list entry must be an object: {entry!r}")
        try:
            vid = entry["vendor_id"]
            pid = entry["product_id"]
        except KeyError as e:
            raise ConfigError(f"Allow-list entry missing {e.args[0]}: {entry!r}") from None
        allowed.add((_parse_id(vid, "vendor_id"), _parse_id(pid, "product_id")))

    return frozenset(allowed)


def load_allow_list(path: Optional[Path] = None) -> frozenset[tuple[int, int]]:
    """Load the USB allow-list.

    Args:
        path: JSON file to read. Defaults to DEVICES_FILE.

    Returns:
        Set of (vendor_id, product_id) pairs. DEFAULT_ALLOW_LIST when the
        file does not exist.

    Raises:
        ConfigError: If the file exists but is malformed
    """
    path = DEVICES_FILE if path is None else path
    if not path.exists():
        return DEFAULT_ALLOW_LIST

    try:
        entries = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError(f"Cannot parse {path}: {e}") from e

    return parse_allow_list(entries)
