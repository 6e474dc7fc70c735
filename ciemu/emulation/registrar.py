"""Multi-arch emulation registration.

This module handles registering QEMU binfmt handlers with the host kernel
by running the multiarch/qemu-user-static installer once per runtime
instance. Registration is a prerequisite for running foreign-architecture
images, so any failure here is fatal.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ciemu.runtime.errors import DaemonError
from ciemu.runtime.executor import run_container

if TYPE_CHECKING:
    from ciemu.emulation.markers import MarkerStore
    from ciemu.runtime.client import DockerClient

logger = logging.getLogger(__name__)

EMULATION_IMAGE = "multiarch/qemu-user-static"
EMULATION_TAG = "latest"
EMULATION_MARKER = "qemu-user-static"

# Reset existing handlers, then install persistent ones with credential support
EMULATION_ARGS = ["--reset", "--credential", "yes", "--persistent", "yes"]


class EmulationError(Exception):
    """Raised when emulation registration fails.

    When the failure came from the daemon, its status code and payload
    are kept alongside the message.
    """

    def __init__(
        self,
        message: str,
        code: str = "emulation_error",
        status_code: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.payload = payload


class EmulationRegistrar:
    """Idempotent registration of multi-arch emulation.

    Args:
        client: Docker client.
        markers: Marker store shared by invocations on this runtime.
        image: Installer image.
        tag: Installer image tag.
    """

    def __init__(
        self,
        client: DockerClient,
        markers: MarkerStore,
        image: str = EMULATION_IMAGE,
        tag: str = EMULATION_TAG,
    ) -> None:
        self.client = client
        self.markers = markers
        self.image = image
        self.tag = tag

    def installer_config(self) -> dict[str, Any]:
        """Return the create payload for the installer container."""
        return {
            "Image": f"{self.image}:{self.tag}",
            "Cmd": list(EMULATION_ARGS),
            "HostConfig": {
                "AutoRemove": True,
                "Privileged": True,
            },
        }

    def ensure(self) -> bool:
        """Register emulation unless already registered.

        Returns:
            True if registration ran, False if it was already done.

        Raises:
            EmulationError: If pulling or running the installer fails, or
                the marker cannot be written.
        """
        if self.markers.has_marker(EMULATION_MARKER):
            logger.info("Multi-arch emulation already registered, skipping")
            return False

        logger.info("Pulling %s:%s...", self.image, self.tag)
        try:
            self.client.create_image(self.image, tag=self.tag)
        except DaemonError as e:
            raise EmulationError(
                f"Failed to pull {self.image}:{self.tag}: {e}",
                code="emulation_pull_failed",
                status_code=e.status_code,
                payload=e.payload,
            ) from e

        logger.info("Registering emulation binaries...")
        try:
            exit_code = run_container(self.client, self.installer_config())
        except DaemonError as e:
            raise EmulationError(
                f"Failed to run {self.image}:{self.tag}: {e}",
                code="emulation_run_failed",
                status_code=e.status_code,
                payload=e.payload,
            ) from e

        if exit_code != 0:
            raise EmulationError(
                f"Emulation installer exited with code {exit_code}",
                code="emulation_run_failed",
            )

        try:
            self.markers.set_marker(EMULATION_MARKER)
        except OSError as e:
            raise EmulationError(
                f"Failed to record emulation marker: {e}",
                code="emulation_marker_failed",
            ) from e
        logger.info("Multi-arch emulation registered")
        return True


__all__ = [
    "EMULATION_ARGS",
    "EMULATION_IMAGE",
    "EMULATION_MARKER",
    "EMULATION_TAG",
    "EmulationError",
    "EmulationRegistrar",
]
