"""Build context archive encoder.

This module handles:
- The fixed USTAR-style header schema and its offset table
- Encoding named byte blobs into a single tar stream
- Header checksum computation

Only regular file entries are supported. The output is the minimal layout
the Docker daemon accepts as a build context: header block, data rounded
up to the block unit, no end-of-archive marker unless requested.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

# Archive block unit (bytes)
BLOCK_SIZE = 512

# The checksum slot counts as eight blanks (0x20) while summing
CHECKSUM_BASE = 8 * ord(" ")


class ArchiveEncodingError(Exception):
    """Raised when an entry cannot be represented in a header block."""

    def __init__(self, message: str, code: str = "archive_encoding_error") -> None:
        """Initialize ArchiveEncodingError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


class FieldKind(str, Enum):
    """Value kind of a header field."""

    STRING = "string"
    NUMERIC = "numeric"
    COMPUTED = "computed"


def epoch_now() -> int:
    """Return the current UTC time as whole epoch seconds."""
    return int(time.time())


@dataclass(frozen=True)
class HeaderField:
    """Fixed-width header field descriptor.

    Attributes:
        name: Field name.
        width: Width in bytes.
        kind: Value kind. COMPUTED fields are numeric with a callable default.
        default: Default value, or a callable for COMPUTED fields.
        offset: Byte offset inside the header block.
    """

    name: str
    width: int
    kind: FieldKind = FieldKind.STRING
    default: str | int | Callable[[], int] | None = None
    offset: int = 0


def _compile_schema(fields: list[HeaderField]) -> tuple[HeaderField, ...]:
    """Assign offsets to an ordered list of field descriptors."""
    compiled: list[HeaderField] = []
    offset = 0
    for f in fields:
        compiled.append(HeaderField(f.name, f.width, f.kind, f.default, offset))
        offset += f.width
    if offset != BLOCK_SIZE:
        raise ValueError(f"Header schema spans {offset} bytes, expected {BLOCK_SIZE}")
    return tuple(compiled)


HEADER_SCHEMA: tuple[HeaderField, ...] = _compile_schema(
    [
        HeaderField("name", 100),
        HeaderField("mode", 8, FieldKind.NUMERIC, 0o664),
        HeaderField("uid", 8, FieldKind.NUMERIC, 0),
        HeaderField("gid", 8, FieldKind.NUMERIC, 0),
        HeaderField("size", 12, FieldKind.NUMERIC),
        HeaderField("mtime", 12, FieldKind.COMPUTED, epoch_now),
        HeaderField("chksum", 8, FieldKind.NUMERIC),
        HeaderField("typeflag", 1, FieldKind.NUMERIC, 0),
        HeaderField("linkname", 100),
        HeaderField("magic", 6, FieldKind.STRING, "ustar"),
        HeaderField("version", 2, FieldKind.STRING, "00"),
        HeaderField("uname", 32),
        HeaderField("gname", 32),
        HeaderField("devmajor", 8, FieldKind.NUMERIC),
        HeaderField("devminor", 8, FieldKind.NUMERIC),
        HeaderField("prefix", 131),
        HeaderField("atime", 12, FieldKind.NUMERIC),
        HeaderField("ctime", 12, FieldKind.NUMERIC),
        HeaderField("padding", 12),
    ]
)

FIELDS: dict[str, HeaderField] = {f.name: f for f in HEADER_SCHEMA}


@dataclass
class ArchiveEntry:
    """A named blob to place in the archive.

    Attributes:
        name: Entry path inside the archive (at most 100 ASCII bytes).
        data: Entry content.
        mode: Optional permission bits (defaults to 0o664).
        mtime: Optional modification time (defaults to encoding time).
    """

    name: str
    data: bytes
    mode: int | None = None
    mtime: int | None = None


def entry_block_count(data_length: int) -> int:
    """Return the number of blocks an entry occupies (header included)."""
    return math.ceil(data_length / BLOCK_SIZE) + 1


def render_field(field: HeaderField, value: str | int) -> bytes:
    """Render a field value as the bytes written into the header.

    Numeric values become zero-padded octal strings of ``width - 1``
    digits, leaving the trailing byte zero.

    Args:
        field: Field descriptor.
        value: Value to render.

    Returns:
        ASCII bytes, never longer than the field width.

    Raises:
        ArchiveEncodingError: If the value is not ASCII or does not fit.
    """
    if field.kind in (FieldKind.NUMERIC, FieldKind.COMPUTED):
        if not isinstance(value, int) or value < 0:
            raise ArchiveEncodingError(
                f"Header field '{field.name}' requires a non-negative integer, got {value!r}",
                code="invalid_numeric_field",
            )
        text = format(value, "o").zfill(field.width - 1)
    else:
        text = str(value)

    try:
        raw = text.encode("ascii")
    except UnicodeEncodeError as e:
        raise ArchiveEncodingError(
            f"Header field '{field.name}' must be ASCII: {text!r}",
            code="non_ascii_field",
        ) from e

    if len(raw) > field.width:
        raise ArchiveEncodingError(
            f"Header field '{field.name}' exceeds {field.width} bytes: {text!r}",
            code="field_overflow",
        )
    return raw


def _write_field(block: bytearray, field: HeaderField, value: str | int) -> int:
    """Write a field into a header block and return its byte sum."""
    raw = render_field(field, value)
    block[field.offset : field.offset + len(raw)] = raw
    return sum(raw)


def _resolve_defaults(mtime: int | None) -> dict[str, str | int]:
    """Resolve schema defaults for one encoding call."""
    defaults: dict[str, str | int] = {}
    for f in HEADER_SCHEMA:
        if f.default is None:
            continue
        if callable(f.default):
            defaults[f.name] = mtime if mtime is not None else f.default()
        else:
            defaults[f.name] = f.default
    return defaults


def encode_header(
    entry: ArchiveEntry,
    defaults: dict[str, str | int],
) -> bytearray:
    """Encode the header block for a single entry.

    Args:
        entry: Archive entry.
        defaults: Resolved schema defaults for this encoding call.

    Returns:
        A BLOCK_SIZE header block with the checksum filled in.
    """
    values: dict[str, str | int] = dict(defaults)
    values["name"] = entry.name
    if entry.mode is not None:
        values["mode"] = entry.mode
    if entry.mtime is not None:
        values["mtime"] = entry.mtime
    values["size"] = len(entry.data)

    block = bytearray(BLOCK_SIZE)
    chksum = CHECKSUM_BASE
    for f in HEADER_SCHEMA:
        if f.name == "chksum" or f.name not in values:
            continue
        chksum += _write_field(block, f, values[f.name])

    _write_field(block, FIELDS["chksum"], chksum)
    return block


def header_checksum(block: bytes) -> int:
    """Recompute the checksum of a header block.

    The checksum slot is treated as eight blanks regardless of content.

    Args:
        block: A BLOCK_SIZE header block.

    Returns:
        The checksum value.
    """
    f = FIELDS["chksum"]
    return (
        sum(block[: f.offset])
        + CHECKSUM_BASE
        + sum(block[f.offset + f.width : BLOCK_SIZE])
    )


def encode_archive(
    entries: Iterable[ArchiveEntry],
    *,
    mtime: int | None = None,
    terminate: bool = False,
) -> bytes:
    """Encode entries into a tar stream usable as a Docker build context.

    Args:
        entries: Entries to encode, in order. Names are not deduplicated.
        mtime: Modification time for entries that do not set one
            (defaults to the current time).
        terminate: Append the two zero blocks of an end-of-archive marker.

    Returns:
        The encoded archive.

    Raises:
        ArchiveEncodingError: If an entry cannot be represented.
    """
    items = list(entries)
    defaults = _resolve_defaults(mtime)

    total_blocks = sum(entry_block_count(len(e.data)) for e in items)
    if terminate:
        total_blocks += 2
    output = bytearray(total_blocks * BLOCK_SIZE)

    offset = 0
    for entry in items:
        header = encode_header(entry, defaults)
        output[offset : offset + BLOCK_SIZE] = header
        data_offset = offset + BLOCK_SIZE
        output[data_offset : data_offset + len(entry.data)] = entry.data
        offset += entry_block_count(len(entry.data)) * BLOCK_SIZE

    logger.debug("Encoded %d archive entries into %d bytes", len(items), len(output))
    return bytes(output)


__all__ = [
    "BLOCK_SIZE",
    "FIELDS",
    "HEADER_SCHEMA",
    "ArchiveEncodingError",
    "ArchiveEntry",
    "FieldKind",
    "HeaderField",
    "encode_archive",
    "encode_header",
    "entry_block_count",
    "header_checksum",
    "render_field",
]
