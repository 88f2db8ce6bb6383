"""
Last-used printer memory.

A USB bus/address pair is only stable while a printer stays plugged in, so
the cached entry also records the vendor and product ids. A different
printer that later shows up at the same address is not preferred.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Optional

from .config import CONFIG_DIR
from .devices import Device

log = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60

CACHE_FILE = CONFIG_DIR / "last_printer.json"


@dataclass(frozen=True)
class CachedPrinter:
    """The printer that completed the most recent print."""

    key: str  # "BBB:AAA"
    vendor_id: int
    product_id: int
    last_used: float  # Unix timestamp

    @classmethod
    def from_device(cls, device: Device, now: Optional[float] = None) -> "CachedPrinter":
        return cls(
            key=device.key,
            vendor_id=device.vendor_id,
            product_id=device.product_id,
            last_used=time.time() if now is None else now,
        )

    @classmethod
    def from_json(cls, data: Any) -> "CachedPrinter":
        """Build from decoded JSON. Raises KeyError, TypeError or ValueError."""
        return cls(
            key=str(data["key"]),
            vendor_id=int(data["vendor_id"]),
            product_id=int(data["product_id"]),
            last_used=float(data["last_used"]),
        )

    def matches(self, device: Device) -> bool:
        return device.key == self.key and device.usb_id == (self.vendor_id, self.product_id)

    def age(self, now: Optional[float] = None) -> float:
        return (time.time() if now is None else now) - self.last_used


def load_cached_printer(ttl_seconds: int = DEFAULT_TTL_SECONDS) -> Optional[CachedPrinter]:
    """Load the remembered printer.

    Returns None when nothing is cached, the entry is older than
    ``ttl_seconds`` or the file cannot be read back.
    """
    if not CACHE_FILE.exists():
        return None

    try:
        cached = CachedPrinter.from_json(json.loads(CACHE_FILE.read_text()))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        log.debug("Ignoring unreadable printer cache %s: %s", CACHE_FILE, e)
        return None

    if cached.age() > ttl_seconds:
        log.debug("Cached printer %s expired", cached.key)
        return None
    return cached


def save_printer(device: Device) -> CachedPrinter:
    """Remember ``device`` as the last used printer."""
    cached = CachedPrinter.from_device(device)
    CACHE_FILE.parent.mkdir(parents=True, exist_ok=True)
    CACHE_FILE.write_text(json.dumps(asdict(cached), indent=2))
    return cached


def clear_cache() -> bool:
    """Forget the last used printer. Returns False if nothing was cached."""
    if not CACHE_FILE.exists():
        return False
    CACHE_FILE.unlink()
    return True
