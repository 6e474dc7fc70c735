"""Cache key computation for image builds.

This module handles:
- Namespace sanitization so keys are valid image repository names
- Deterministic hashing of the build file and build script

The same key is used as the blob cache key and as the image tag, so
any change to the inputs produces a fresh cache entry.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

# Format version for cache keys; bump when the archive or pipeline format changes
CACHE_KEY_VERSION = "ciemu-cache-v1"

_UNSAFE_NAMESPACE_CHARS = re.compile(r"[^-_a-z0-9]+", re.IGNORECASE)

# Repository name components allow single separators, "__" or runs of "-"
_SEPARATOR_RUN = re.compile(r"[-_]{2,}")

DEFAULT_NAMESPACE = "ciemu-cache"


@dataclass(frozen=True)
class BuildInputs:
    """All inputs that affect a built image.

    Attributes:
        namespace: Sanitized cache namespace.
        build_file: Synthesized build file text.
        script: User build script text.
    """

    namespace: str
    build_file: str
    script: str


def _collapse_separators(match: re.Match[str]) -> str:
    run = match.group(0)
    if run == "__" or set(run) == {"-"}:
        return run
    return "-"


def sanitize_namespace(value: str) -> str:
    """Make a namespace usable as an image repository name.

    Runs of characters outside ``[-_a-z0-9]`` collapse into a single ``-``.
    Mixed separator runs also collapse to ``-`` and leading or trailing
    separators are dropped, since the daemon rejects both.

    Args:
        value: Raw namespace (e.g. ``ciemu-cache-arm64v8/alpine:3.17``).

    Returns:
        Lowercase sanitized namespace, or ``ciemu-cache`` if nothing
        usable is left.
    """
    namespace = _UNSAFE_NAMESPACE_CHARS.sub("-", value).lower()
    namespace = _SEPARATOR_RUN.sub(_collapse_separators, namespace).strip("-_")
    return namespace or DEFAULT_NAMESPACE


def compute_digest(inputs: BuildInputs) -> str:
    """Compute the hex digest of build inputs.

    Segments are fed in a fixed order without delimiters.

    Args:
        inputs: BuildInputs instance.

    Returns:
        40-character SHA-1 hex digest.
    """
    digest = hashlib.sha1()
    for segment in (CACHE_KEY_VERSION, inputs.namespace, inputs.build_file, inputs.script):
        digest.update(segment.encode("utf-8"))
    return digest.hexdigest()


def derive_key(namespace: str, build_file_text: str, script_text: str) -> str:
    """Derive the cache key for a build.

    Args:
        namespace: Cache namespace (sanitized by the caller).
        build_file_text: Synthesized build file text.
        script_text: User build script text.

    Returns:
        Key of the form ``<namespace>-<digest>``.
    """
    inputs = BuildInputs(
        namespace=namespace,
        build_file=build_file_text,
        script=script_text,
    )
    return f"{namespace}-{compute_digest(inputs)}"


__all__ = [
    "CACHE_KEY_VERSION",
    "DEFAULT_NAMESPACE",
    "BuildInputs",
    "compute_digest",
    "derive_key",
    "sanitize_namespace",
]
