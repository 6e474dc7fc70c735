"""Tests for builds/cache_key.py module.

Tests namespace sanitization and deterministic key derivation.
"""

import hashlib
import re

import pytest

from ciemu.builds.cache_key import (
    CACHE_KEY_VERSION,
    BuildInputs,
    compute_digest,
    derive_key,
    sanitize_namespace,
)

BUILD_FILE = "FROM alpine\nCOPY ciemu-build.sh /ciemu-build.sh"


class TestSanitizeNamespace:
    """Tests for sanitize_namespace function."""

    def test_image_reference(self):
        """Slashes, colons and dots should collapse to dashes."""
        assert sanitize_namespace("ciemu-cache-arm64v8/alpine:3.17") == (
            "ciemu-cache-arm64v8-alpine-3-17"
        )

    def test_lowercases(self):
        """Namespaces should be valid repository names."""
        assert sanitize_namespace("Cache-Getting-Started") == "cache-getting-started"

    def test_runs_collapse(self):
        """Runs of unsafe characters become a single dash."""
        assert sanitize_namespace("a :/ b") == "a-b"

    def test_safe_unchanged(self):
        """Already-safe names should not change."""
        assert sanitize_namespace("my_cache-1") == "my_cache-1"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("/x", "x"),
            ("cache/", "cache"),
            ("_-", "ciemu-cache"),
            ("a_-b", "a-b"),
            ("a___b", "a-b"),
            ("a__b", "a__b"),
            ("a--b", "a--b"),
            ("", "ciemu-cache"),
        ],
    )
    def test_result_is_valid_repository_name(self, raw, expected):
        """Separators may not lead, trail, or mix."""
        namespace = sanitize_namespace(raw)
        assert namespace == expected
        assert re.fullmatch(r"[a-z0-9]+(?:(?:[._]|__|[-]*)[a-z0-9]+)*", namespace)


class TestComputeDigest:
    """Tests for compute_digest function."""

    def test_matches_sequential_sha1(self):
        """Digest should be SHA-1 over the segments in order."""
        inputs = BuildInputs(namespace="ns", build_file=BUILD_FILE, script="echo hi")
        expected = hashlib.sha1(
            (CACHE_KEY_VERSION + "ns" + BUILD_FILE + "echo hi").encode()
        ).hexdigest()
        assert compute_digest(inputs) == expected

    def test_is_hex_40(self):
        """Digest should be 40 hex characters."""
        digest = compute_digest(BuildInputs("ns", BUILD_FILE, "echo hi"))
        assert re.fullmatch(r"[0-9a-f]{40}", digest)


class TestDeriveKey:
    """Tests for derive_key function."""

    def test_format(self):
        """Key should be namespace, dash, digest."""
        key = derive_key("ciemu-cache-alpine", BUILD_FILE, "echo hi")
        assert re.fullmatch(r"ciemu-cache-alpine-[0-9a-f]{40}", key)

    def test_deterministic(self):
        """Identical inputs should give identical keys."""
        assert derive_key("ns", BUILD_FILE, "echo hi") == derive_key(
            "ns", BUILD_FILE, "echo hi"
        )

    @pytest.mark.parametrize(
        "changed",
        [
            ("other", BUILD_FILE, "echo hi"),
            ("ns", BUILD_FILE + "\nRUN true", "echo hi"),
            ("ns", BUILD_FILE, "echo bye"),
        ],
    )
    def test_any_input_change_changes_key(self, changed):
        """Changing any single input should change the digest."""
        base = derive_key("ns", BUILD_FILE, "echo hi")
        other = derive_key(*changed)
        assert base.rsplit("-", 1)[1] != other.rsplit("-", 1)[1]

    def test_unicode_script(self):
        """Non-ASCII scripts should hash as UTF-8."""
        key = derive_key("ns", BUILD_FILE, "echo héllo")
        assert key.startswith("ns-")
