"""Docker Engine client.

This module handles:
- Driving the daemon through the docker SDK's low-level ``APIClient``
- The operation set used by the pipeline: pull, build, export, import,
  push, tag, and the container create/attach/start/wait sequence
- Mapping SDK and transport failures to DaemonError

Requests have no timeout; long builds and container runs are awaited
until the daemon answers.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import docker
from docker.errors import APIError, DockerException, StreamParseError
from requests.exceptions import RequestException

from ciemu.runtime.auth import CredentialProvider, NoCredentials
from ciemu.runtime.errors import DaemonError
from ciemu.runtime.progress import OutputFrame, follow_progress, log_progress

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/var/run/docker.sock"

# Engine API 1.41 (Docker 20.10); newer daemons still serve it
DEFAULT_API_VERSION = "1.41"

# Chunk size for image snapshot transfers (bytes)
TRANSFER_CHUNK_SIZE = 64 * 1024

OutputCallback = Callable[[str], None]


def _error_payload(error: APIError) -> Any:
    """Return the daemon's error body, decoded when it is JSON."""
    response = error.response
    if response is None:
        return error.explanation
    try:
        return response.json()
    except ValueError:
        return response.text or None


@contextmanager
def daemon_errors(action: str) -> Iterator[None]:
    """Translate docker SDK failures raised inside the block to DaemonError.

    Args:
        action: Short description of the operation, used in messages.
    """
    try:
        yield
    except APIError as e:
        message = e.explanation or str(e)
        if e.status_code is not None:
            message = f"{message} (HTTP {e.status_code})"
        raise DaemonError(
            f"{action}: {message}",
            status_code=e.status_code,
            payload=_error_payload(e),
        ) from e
    except RequestException as e:
        raise DaemonError(
            f"Cannot reach daemon for {action}: {e}",
            code="daemon_unreachable",
        ) from e
    except StreamParseError as e:
        raise DaemonError(
            f"{action}: malformed progress stream: {e}",
            code="malformed_progress",
        ) from e
    except DockerException as e:
        raise DaemonError(f"{action}: {e}") from e


def _guarded(frames: Iterable[OutputFrame], action: str) -> Iterator[OutputFrame]:
    with daemon_errors(action):
        yield from frames


class DockerClient:
    """Docker Engine client for the pipeline's operations.

    Args:
        socket_path: Path to the daemon's unix socket.
        credentials: Provider for registry credentials.
        api: Pre-built ``docker.APIClient`` (used instead of the socket).
        api_version: Engine API version; pinned so construction needs no
            round trip to the daemon.
    """

    def __init__(
        self,
        socket_path: str = DEFAULT_SOCKET_PATH,
        credentials: CredentialProvider | None = None,
        api: docker.APIClient | None = None,
        api_version: str = DEFAULT_API_VERSION,
    ) -> None:
        self.socket_path = socket_path
        self.credentials = credentials or NoCredentials()
        if api is None:
            api = docker.APIClient(
                base_url=f"unix://{socket_path}",
                version=api_version,
                timeout=None,
            )
        self.api = api

    def close(self) -> None:
        """Close the underlying API client."""
        self.api.close()

    def __enter__(self) -> DockerClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Images

    def create_image(
        self,
        from_image: str,
        tag: str | None = None,
        on_event: Callable[[dict[str, Any]], None] | None = log_progress,
    ) -> list[dict[str, Any]]:
        """Pull an image and wait for the pull to complete.

        Args:
            from_image: Image reference to pull.
            tag: Optional tag (may also be part of ``from_image``).
            on_event: Callback for progress events.

        Returns:
            Progress events received.

        Raises:
            DaemonError: If the pull fails.
        """
        logger.debug("Pulling %s%s", from_image, f":{tag}" if tag else "")
        with daemon_errors(f"pull {from_image}"):
            events = self.api.pull(
                from_image,
                tag=tag,
                stream=True,
                decode=True,
                auth_config=self.credentials.auth_config(from_image),
            )
            return follow_progress(events, on_event)

    def build(
        self,
        context: bytes,
        build_args: dict[str, str] | None = None,
        cache_from: list[str] | None = None,
        quiet: bool = True,
        on_output: OutputCallback | None = None,
    ) -> str:
        """Build an image from a tar build context.

        Args:
            context: Encoded build context archive.
            build_args: Build arguments.
            cache_from: Images to use as layer cache sources.
            quiet: Suppress verbose build output.
            on_output: Callback for build log lines.

        Returns:
            The built image ID.

        Raises:
            DaemonError: On the first ``error`` event, or when no image ID
                is reported.
        """
        image_id: str | None = None
        with daemon_errors("build"):
            events = self.api.build(
                fileobj=io.BytesIO(context),
                custom_context=True,
                buildargs=build_args or None,
                cache_from=cache_from or None,
                quiet=quiet,
                rm=True,
                decode=True,
            )
            for event in events:
                if event.get("error"):
                    raise DaemonError(
                        str(event["error"]), payload=event, code="build_error"
                    )
                aux = event.get("aux")
                if isinstance(aux, dict) and aux.get("ID"):
                    image_id = aux["ID"]
                    continue
                stream = event.get("stream")
                if isinstance(stream, str):
                    if quiet and stream.strip().startswith("sha256:"):
                        image_id = stream.strip()
                    elif on_output is not None:
                        on_output(stream)

        if not image_id:
            raise DaemonError("Build finished without reporting an image ID", code="build_error")
        logger.info("Built image %s", image_id)
        return image_id

    def export_image(self, name: str, dest: Path) -> int:
        """Export an image snapshot to a file.

        Args:
            name: Image name or ID.
            dest: Destination file path.

        Returns:
            Number of bytes written.
        """
        written = 0
        dest.parent.mkdir(parents=True, exist_ok=True)
        with daemon_errors(f"export {name}"):
            chunks = self.api.get_image(name, chunk_size=TRANSFER_CHUNK_SIZE)
            with dest.open("wb") as fh:
                for chunk in chunks:
                    fh.write(chunk)
                    written += len(chunk)
        logger.debug("Exported %s to %s (%d bytes)", name, dest, written)
        return written

    def import_images(self, source: Path) -> list[dict[str, Any]]:
        """Load image snapshots from a file.

        Args:
            source: Snapshot file produced by ``export_image``.

        Returns:
            Progress events received.
        """
        with daemon_errors(f"import {source.name}"), source.open("rb") as fh:
            return follow_progress(self.api.load_image(fh, quiet=True))

    def push_image(
        self,
        name: str,
        tag: str | None = None,
        on_event: Callable[[dict[str, Any]], None] | None = log_progress,
    ) -> list[dict[str, Any]]:
        """Push an image to its registry and wait for completion.

        Args:
            name: Image repository (may include the tag).
            tag: Optional tag to push.
            on_event: Callback for progress events.

        Returns:
            Progress events received.
        """
        with daemon_errors(f"push {name}"):
            events = self.api.push(
                name,
                tag=tag,
                stream=True,
                decode=True,
                auth_config=self.credentials.auth_config(name),
            )
            return follow_progress(events, on_event)

    def tag(self, image: str, repo: str, tag: str | None = None) -> None:
        """Tag an image.

        Args:
            image: Image name or ID.
            repo: Target repository (may include a tag).
            tag: Optional target tag.
        """
        with daemon_errors(f"tag {image}"):
            self.api.tag(image, repo, tag=tag)

    # Containers

    def create_container(self, config: dict[str, Any]) -> str:
        """Create a container from a raw create payload and return its ID."""
        with daemon_errors("create container"):
            return self.api.create_container_from_config(config)["Id"]

    def attach(self, container_id: str) -> Iterator[OutputFrame]:
        """Attach to a container's output streams.

        The attach request is sent before this returns, so a container
        started afterwards cannot lose early output.

        Returns:
            Iterator over ``(stdout, stderr)`` frames.
        """
        action = f"attach {container_id[:12]}"
        with daemon_errors(action):
            frames = self.api.attach(
                container_id, stdout=True, stderr=True, stream=True, demux=True
            )
        return _guarded(frames, action)

    def start(self, container_id: str) -> None:
        """Start a created container."""
        with daemon_errors(f"start {container_id[:12]}"):
            self.api.start(container_id)

    def wait(self, container_id: str) -> int:
        """Wait for a container to stop and return its exit code."""
        with daemon_errors(f"wait {container_id[:12]}"):
            result = self.api.wait(container_id)
        error = result.get("Error")
        if error and error.get("Message"):
            raise DaemonError(error["Message"], payload=result, code="wait_error")
        return int(result["StatusCode"])


__all__ = [
    "DEFAULT_API_VERSION",
    "DEFAULT_SOCKET_PATH",
    "DockerClient",
    "daemon_errors",
]
