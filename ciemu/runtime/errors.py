"""Error definitions for the Docker Engine client."""

from __future__ import annotations

from typing import Any


class DaemonError(Exception):
    """Raised when the daemon reports a failure.

    Covers SDK API errors, transport failures and ``error`` events in progress
    streams. The daemon's own payload is preserved for diagnosis.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        payload: Any = None,
        code: str = "daemon_error",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload
        self.code = code


__all__ = ["DaemonError"]
