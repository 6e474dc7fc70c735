"""Marker stores for one-time setup steps.

A marker records that a step already ran against this runtime instance.
Markers are never removed by ciemu.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^-_.a-zA-Z0-9]+")


class MarkerStore(Protocol):
    """Storage for setup markers."""

    def has_marker(self, key: str) -> bool: ...

    def set_marker(self, key: str) -> None: ...


class FileMarkerStore:
    """Markers stored as zero-byte files in a directory.

    No locking is performed; concurrent invocations sharing the
    directory may both run the step.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, key: str) -> Path:
        """Return the sentinel file path for a key."""
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.lock"

    def has_marker(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def set_marker(self, key: str) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()
        logger.debug("Wrote marker %s", path)


class MemoryMarkerStore:
    """Markers kept in memory for the lifetime of the store."""

    def __init__(self) -> None:
        self.keys: set[str] = set()

    def has_marker(self, key: str) -> bool:
        return key in self.keys

    def set_marker(self, key: str) -> None:
        self.keys.add(key)


__all__ = ["FileMarkerStore", "MarkerStore", "MemoryMarkerStore"]
