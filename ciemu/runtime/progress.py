"""Daemon stream handling.

This module handles:
- Failing on the first ``error`` event of a decoded progress stream
- Logging progress events
- Writing demultiplexed container output to stdout/stderr sinks
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any, BinaryIO

from ciemu.runtime.errors import DaemonError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict[str, Any]], None]

# One attach stream frame: (stdout bytes, stderr bytes), one side is None
OutputFrame = tuple[bytes | None, bytes | None]


def raise_for_event(event: dict[str, Any]) -> None:
    """Raise DaemonError if a progress event reports an error."""
    if event.get("error"):
        raise DaemonError(str(event["error"]), payload=event, code="progress_error")


def follow_progress(
    events: Iterable[dict[str, Any]],
    on_event: ProgressCallback | None = None,
) -> list[dict[str, Any]]:
    """Consume a decoded progress stream until it ends.

    Args:
        events: Progress events as decoded by the docker SDK.
        on_event: Optional callback invoked for every event.

    Returns:
        All events received.

    Raises:
        DaemonError: On the first ``error`` event.
    """
    received: list[dict[str, Any]] = []
    for event in events:
        if on_event is not None:
            on_event(event)
        raise_for_event(event)
        received.append(event)
    return received


def log_progress(event: dict[str, Any]) -> None:
    """Log a progress event at debug level."""
    status = event.get("status")
    if status:
        progress_id = event.get("id")
        if progress_id:
            logger.debug("%s: %s", progress_id, status)
        else:
            logger.debug("%s", status)


def write_output(frames: Iterable[OutputFrame], stdout: BinaryIO, stderr: BinaryIO) -> None:
    """Write demultiplexed attach frames to their sinks as they arrive."""
    for out, err in frames:
        if out:
            stdout.write(out)
            stdout.flush()
        if err:
            stderr.write(err)
            stderr.flush()


__all__ = [
    "OutputFrame",
    "follow_progress",
    "log_progress",
    "raise_for_event",
    "write_output",
]
