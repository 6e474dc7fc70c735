"""Tests for archive/encoder.py module.

Tests header layout, checksums, block sizing, and compatibility with
Python's tarfile reader.
"""

import io
import tarfile

import pytest

from ciemu.archive.encoder import (
    BLOCK_SIZE,
    FIELDS,
    HEADER_SCHEMA,
    ArchiveEncodingError,
    ArchiveEntry,
    FieldKind,
    encode_archive,
    encode_header,
    entry_block_count,
    header_checksum,
    render_field,
)

FIXED_MTIME = 1_700_000_000


def field_bytes(block: bytes, name: str) -> bytes:
    """Return the raw bytes of a header field."""
    f = FIELDS[name]
    return block[f.offset : f.offset + f.width]


class TestHeaderSchema:
    """Tests for the header schema."""

    def test_widths_sum_to_block_size(self):
        """Field widths should cover exactly one block."""
        assert sum(f.width for f in HEADER_SCHEMA) == BLOCK_SIZE

    def test_field_order(self):
        """Fields should appear in USTAR order."""
        names = [f.name for f in HEADER_SCHEMA]
        assert names[:8] == [
            "name",
            "mode",
            "uid",
            "gid",
            "size",
            "mtime",
            "chksum",
            "typeflag",
        ]
        assert names[-4:] == ["prefix", "atime", "ctime", "padding"]
        assert len(names) == 19

    def test_offsets_are_contiguous(self):
        """Each field should start where the previous one ends."""
        offset = 0
        for f in HEADER_SCHEMA:
            assert f.offset == offset
            offset += f.width

    def test_standard_offsets(self):
        """Offsets should match the USTAR layout."""
        assert FIELDS["size"].offset == 124
        assert FIELDS["chksum"].offset == 148
        assert FIELDS["typeflag"].offset == 156
        assert FIELDS["magic"].offset == 257

    def test_mtime_is_computed(self):
        """mtime default should be computed at encoding time."""
        assert FIELDS["mtime"].kind == FieldKind.COMPUTED
        assert callable(FIELDS["mtime"].default)


class TestRenderField:
    """Tests for render_field function."""

    def test_numeric_is_zero_padded_octal(self):
        """Numeric values should be octal padded to width - 1."""
        assert render_field(FIELDS["size"], 12) == b"00000000014"
        assert render_field(FIELDS["mode"], 0o664) == b"0000664"

    def test_typeflag_fills_single_byte(self):
        """Single-byte numeric fields hold one digit."""
        assert render_field(FIELDS["typeflag"], 0) == b"0"

    def test_string_is_ascii(self):
        """String values should be written as-is."""
        assert render_field(FIELDS["magic"], "ustar") == b"ustar"

    def test_name_too_long(self):
        """Names longer than the field should be rejected."""
        with pytest.raises(ArchiveEncodingError) as exc_info:
            render_field(FIELDS["name"], "a" * 101)
        assert exc_info.value.code == "field_overflow"

    def test_name_at_limit(self):
        """A 100-byte name fills the field exactly."""
        assert len(render_field(FIELDS["name"], "a" * 100)) == 100

    def test_non_ascii_rejected(self):
        """Non-ASCII characters should be rejected."""
        with pytest.raises(ArchiveEncodingError) as exc_info:
            render_field(FIELDS["name"], "répertoire")
        assert exc_info.value.code == "non_ascii_field"

    def test_negative_numeric_rejected(self):
        """Negative numbers cannot be represented."""
        with pytest.raises(ArchiveEncodingError):
            render_field(FIELDS["uid"], -1)

    def test_numeric_overflow(self):
        """Numbers wider than the field should be rejected."""
        with pytest.raises(ArchiveEncodingError):
            render_field(FIELDS["uid"], 8**8)


class TestEncodeHeader:
    """Tests for encode_header function."""

    def test_checksum_matches_recomputation(self):
        """The written checksum should equal the recomputed one."""
        entry = ArchiveEntry(name="Dockerfile", data=b"FROM alpine\n")
        defaults = {
            "mode": 0o664,
            "uid": 0,
            "gid": 0,
            "mtime": FIXED_MTIME,
            "typeflag": 0,
            "magic": "ustar",
            "version": "00",
        }
        block = encode_header(entry, defaults)

        written = int(field_bytes(block, "chksum").rstrip(b"\0"), 8)
        assert written == header_checksum(block)

    def test_size_reflects_data(self):
        """The size field should hold the data length."""
        entry = ArchiveEntry(name="x", data=b"a" * 700)
        block = encode_header(entry, {})
        assert int(field_bytes(block, "size").rstrip(b"\0"), 8) == 700

    def test_unset_fields_are_zero(self):
        """Fields without values should stay zero."""
        block = encode_header(ArchiveEntry(name="x", data=b""), {})
        assert field_bytes(block, "linkname") == b"\0" * 100
        assert field_bytes(block, "uname") == b"\0" * 32
        assert field_bytes(block, "padding") == b"\0" * 12

    def test_entry_overrides(self):
        """Entry mode and mtime should override defaults."""
        entry = ArchiveEntry(name="run.sh", data=b"", mode=0o755, mtime=42)
        block = encode_header(entry, {"mode": 0o664, "mtime": FIXED_MTIME})
        assert field_bytes(block, "mode") == b"0000755\0"
        assert field_bytes(block, "mtime") == b"00000000052\0"


class TestEncodeArchive:
    """Tests for encode_archive function."""

    def test_single_small_entry(self):
        """A small Dockerfile should occupy two blocks."""
        output = encode_archive(
            [ArchiveEntry(name="Dockerfile", data=b"FROM alpine\n")],
            mtime=FIXED_MTIME,
        )

        assert len(output) == 1024
        assert field_bytes(output, "magic")[:5] == b"ustar"
        assert output[BLOCK_SIZE : BLOCK_SIZE + 12] == b"FROM alpine\n"
        assert output[BLOCK_SIZE + 12 :] == b"\0" * (BLOCK_SIZE - 12)

    @pytest.mark.parametrize(
        "sizes",
        [[0], [1], [512], [513], [12, 1024, 2000], [511, 512, 513]],
    )
    def test_buffer_length(self, sizes):
        """Length should be the sum of per-entry block counts."""
        entries = [ArchiveEntry(name=f"f{i}", data=b"x" * n) for i, n in enumerate(sizes)]
        output = encode_archive(entries, mtime=FIXED_MTIME)
        assert len(output) == sum(entry_block_count(n) for n in sizes) * BLOCK_SIZE

    def test_entries_start_on_block_boundaries(self):
        """The second header should follow the first entry's padded data."""
        entries = [
            ArchiveEntry(name="a", data=b"a" * 600),
            ArchiveEntry(name="b", data=b"b"),
        ]
        output = encode_archive(entries, mtime=FIXED_MTIME)
        second = output[3 * BLOCK_SIZE : 4 * BLOCK_SIZE]
        assert field_bytes(second, "name").rstrip(b"\0") == b"b"
        assert output[4 * BLOCK_SIZE] == ord("b")

    def test_every_checksum_verifies(self):
        """All headers should carry valid checksums."""
        entries = [
            ArchiveEntry(name="Dockerfile", data=b"FROM alpine\n"),
            ArchiveEntry(name="ciemu-build.sh", data=b"echo hi\n" * 100),
        ]
        output = encode_archive(entries, mtime=FIXED_MTIME)
        for offset in (0, 2 * BLOCK_SIZE):
            block = output[offset : offset + BLOCK_SIZE]
            written = int(field_bytes(block, "chksum").rstrip(b"\0"), 8)
            assert written == header_checksum(block)

    def test_default_mtime_is_current(self, monkeypatch):
        """Without an explicit mtime, the encoding time should be used."""
        monkeypatch.setattr("ciemu.archive.encoder.time.time", lambda: 1234.9)
        output = encode_archive([ArchiveEntry(name="x", data=b"")])
        assert int(field_bytes(output, "mtime").rstrip(b"\0"), 8) == 1234

    def test_terminate_appends_zero_blocks(self):
        """terminate=True should append two zero blocks."""
        output = encode_archive(
            [ArchiveEntry(name="x", data=b"1")], mtime=FIXED_MTIME, terminate=True
        )
        assert len(output) == 4 * BLOCK_SIZE
        assert output[2 * BLOCK_SIZE :] == b"\0" * (2 * BLOCK_SIZE)

    def test_empty_archive(self):
        """No entries should produce an empty buffer."""
        assert encode_archive([]) == b""

    def test_readable_by_tarfile(self):
        """Python's tarfile should read the archive back."""
        entries = [
            ArchiveEntry(name="Dockerfile", data=b"FROM alpine\nRUN true\n"),
            ArchiveEntry(name="ciemu-build.sh", data=b"echo hi\n", mode=0o755),
        ]
        output = encode_archive(entries, mtime=FIXED_MTIME)

        with tarfile.open(fileobj=io.BytesIO(output), mode="r:") as tar:
            members = tar.getmembers()
            assert [m.name for m in members] == ["Dockerfile", "ciemu-build.sh"]
            assert members[0].isfile()
            assert members[0].mtime == FIXED_MTIME
            assert members[1].mode == 0o755
            assert tar.extractfile(members[1]).read() == b"echo hi\n"

    def test_rejects_long_name(self):
        """Encoding should fail instead of truncating long names."""
        with pytest.raises(ArchiveEncodingError):
            encode_archive([ArchiveEntry(name="n" * 120, data=b"")])
