"""Workflow runner integration.

This module handles:
- Grouping log output into collapsible sections on GitHub Actions
- Writing step outputs to $GITHUB_OUTPUT
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


def in_github_actions(environ: Mapping[str, str] | None = None) -> bool:
    """Return True when running inside a GitHub Actions job."""
    env = os.environ if environ is None else environ
    return env.get("GITHUB_ACTIONS") == "true"


@contextmanager
def log_group(title: str, environ: Mapping[str, str] | None = None) -> Iterator[None]:
    """Group everything logged inside the block under a title.

    Args:
        title: Group title.
        environ: Environment to inspect (defaults to os.environ).
    """
    if in_github_actions(environ):
        sys.stdout.write(f"::group::{title}\n")
        sys.stdout.flush()
        try:
            yield
        finally:
            sys.stdout.write("::endgroup::\n")
            sys.stdout.flush()
    else:
        logger.info("== %s", title)
        yield


def set_output(
    name: str,
    value: str | int,
    environ: Mapping[str, str] | None = None,
) -> bool:
    """Append a step output to $GITHUB_OUTPUT if it is set.

    Args:
        name: Output name.
        value: Output value (single line).
        environ: Environment to inspect (defaults to os.environ).

    Returns:
        True if the output was written.
    """
    env = os.environ if environ is None else environ
    out_path = env.get("GITHUB_OUTPUT")
    if not out_path:
        return False
    with Path(out_path).open("a", encoding="utf-8") as fh:
        fh.write(f"{name}={value}\n")
    logger.debug("Set output %s=%s", name, value)
    return True


__all__ = ["in_github_actions", "log_group", "set_output"]
