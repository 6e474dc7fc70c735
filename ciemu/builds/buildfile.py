"""Build file synthesis for user build scripts.

This module handles:
- Composing the Dockerfile that applies a build script to a base image
- Choosing between the inline and copied-script forms
- Packing the build context archive
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ciemu.archive.encoder import ArchiveEntry, encode_archive
from ciemu.types import BuildFileStyle

logger = logging.getLogger(__name__)

BUILD_FILE_NAME = "Dockerfile"
BUILD_SCRIPT_NAME = "ciemu-build.sh"
BUILD_SCRIPT_ARG = "CIEMU_BUILD_SCRIPT"


@dataclass
class BuildContext:
    """Everything sent to the daemon for one build.

    Attributes:
        build_file: Synthesized Dockerfile text.
        style: Form used to embed the script.
        entries: Archive entries (Dockerfile first).
        build_args: Build arguments passed alongside the context.
    """

    build_file: str
    style: BuildFileStyle
    entries: list[ArchiveEntry] = field(default_factory=list)
    build_args: dict[str, str] = field(default_factory=dict)

    def archive(self, mtime: int | None = None) -> bytes:
        """Encode the context entries as a tar stream."""
        return encode_archive(self.entries, mtime=mtime)


def is_inline_safe(script: str) -> bool:
    """Check whether a script can be passed through a build argument.

    Only non-empty, single-line, printable ASCII scripts qualify.
    """
    if not script.strip():
        return False
    return all(32 <= ord(c) < 127 for c in script)


def resolve_style(requested: BuildFileStyle, script: str) -> BuildFileStyle:
    """Return the build file style actually usable for a script.

    Args:
        requested: Preferred style.
        script: Build script text.

    Returns:
        ``requested``, or SCRIPT when the script is unsafe to inline.
    """
    if requested == BuildFileStyle.INLINE and not is_inline_safe(script):
        logger.info("Build script cannot be inlined, copying it into the image instead")
        return BuildFileStyle.SCRIPT
    return requested


def synthesize_build_file(image: str, shell: str, style: BuildFileStyle) -> str:
    """Compose the Dockerfile text for a build.

    Args:
        image: Base image reference.
        shell: Shell used to execute the build script.
        style: Embedding form.

    Returns:
        Dockerfile text.
    """
    if style == BuildFileStyle.INLINE:
        lines = [
            f"FROM {image}",
            f"ARG {BUILD_SCRIPT_ARG}",
            f'RUN {shell} -c "${BUILD_SCRIPT_ARG}"',
        ]
    else:
        lines = [
            f"FROM {image}",
            f"COPY {BUILD_SCRIPT_NAME} /{BUILD_SCRIPT_NAME}",
            f"RUN {shell} /{BUILD_SCRIPT_NAME}",
            f"RUN rm /{BUILD_SCRIPT_NAME}",
        ]
    return "\n".join(lines)


def create_build_context(
    image: str,
    shell: str,
    script: str,
    style: BuildFileStyle = BuildFileStyle.SCRIPT,
) -> BuildContext:
    """Create the build context for a build script.

    Args:
        image: Base image reference.
        shell: Shell used to execute the build script.
        script: Build script text.
        style: Preferred embedding form.

    Returns:
        BuildContext ready to be archived.
    """
    effective = resolve_style(style, script)
    build_file = synthesize_build_file(image, shell, effective)

    entries = [ArchiveEntry(name=BUILD_FILE_NAME, data=build_file.encode("utf-8"))]
    build_args: dict[str, str] = {}
    if effective == BuildFileStyle.INLINE:
        build_args[BUILD_SCRIPT_ARG] = script
    else:
        entries.append(ArchiveEntry(name=BUILD_SCRIPT_NAME, data=script.encode("utf-8")))

    return BuildContext(
        build_file=build_file,
        style=effective,
        entries=entries,
        build_args=build_args,
    )


__all__ = [
    "BUILD_FILE_NAME",
    "BUILD_SCRIPT_ARG",
    "BUILD_SCRIPT_NAME",
    "BuildContext",
    "create_build_context",
    "is_inline_safe",
    "resolve_style",
    "synthesize_build_file",
]
