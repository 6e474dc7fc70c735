"""Build context archive module.

This module handles encoding named blobs into the minimal tar layout
used as a Docker build context.
"""

from ciemu.archive.encoder import (
    BLOCK_SIZE,
    ArchiveEncodingError,
    ArchiveEntry,
    encode_archive,
    header_checksum,
)

__all__ = [
    "BLOCK_SIZE",
    "ArchiveEncodingError",
    "ArchiveEntry",
    "encode_archive",
    "header_checksum",
]
