"""Multi-arch emulation module.

This module handles one-time QEMU binfmt registration and the marker
stores that make it idempotent.
"""

from ciemu.emulation.markers import FileMarkerStore, MarkerStore, MemoryMarkerStore
from ciemu.emulation.registrar import EmulationError, EmulationRegistrar

__all__ = [
    "EmulationError",
    "EmulationRegistrar",
    "FileMarkerStore",
    "MarkerStore",
    "MemoryMarkerStore",
]
