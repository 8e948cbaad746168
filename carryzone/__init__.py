"""
carryzone - Offline-first sync for crowd-sourced carry-zone pins.

Pins are written locally, queued, and converged with a shared backend.
"""

from .app import CarryZone
from .types import Location, Pin, PinMetadata, PinStatus, RestrictionTag

try:
    from importlib.metadata import version

    __version__ = version("carryzone")
except Exception:
    __version__ = "0.0.0"

__all__ = ["CarryZone", "Location", "Pin", "PinMetadata", "PinStatus", "RestrictionTag"]
