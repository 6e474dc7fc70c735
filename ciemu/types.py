"""Shared type definitions for ciemu.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class PipelineState(str, Enum):
    """State of the build/run pipeline."""

    START = "start"
    EMULATION_ENSURED = "emulation_ensured"
    CACHE_RESOLVED = "cache_resolved"
    RESTORED = "restored"
    BUILT = "built"
    TAGGED = "tagged"
    RUN = "run"
    DONE = "done"
    ERROR = "error"


class CacheStrategy(str, Enum):
    """Strategy used to persist built images across invocations."""

    AUTO = "auto"
    LOCAL = "local"
    REGISTRY = "registry"
    NONE = "none"


class BuildFileStyle(str, Enum):
    """How the build script is embedded into the synthesized build file."""

    SCRIPT = "script"
    INLINE = "inline"


@dataclass
class RunSpec:
    """Specification of a command to run inside a container.

    Attributes:
        image: Image name or ID to run.
        shell: Shell used to interpret the command.
        command: Command text passed to the shell with ``-c``.
        working_dir: Working directory inside the container.
        env: Environment entries as ``NAME=VALUE``.
        binds: Bind mounts as ``host:container[:mode]``, mandatory ones first.
        user: Optional ``uid:gid`` to run as.
    """

    image: str
    shell: str
    command: str
    working_dir: str
    env: list[str] = field(default_factory=list)
    binds: list[str] = field(default_factory=list)
    user: str | None = None


@dataclass
class PipelineResult:
    """Result of a pipeline execution."""

    image: str
    exit_code: int | None = None
    cache_hit: bool = False
    cache_key: str | None = None
    states: list[PipelineState] = field(default_factory=list)


__all__ = [
    "BuildFileStyle",
    "CacheStrategy",
    "PipelineResult",
    "PipelineState",
    "RunSpec",
]
