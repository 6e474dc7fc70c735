"""Container run executor.

This module handles:
- Rendering run specifications into container create payloads
- The mandatory bind mounts shared by every run
- The create, attach, start, wait sequence with live output
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import TYPE_CHECKING, Any, BinaryIO

from ciemu.runtime.client import DEFAULT_SOCKET_PATH
from ciemu.runtime.progress import write_output
from ciemu.types import RunSpec

if TYPE_CHECKING:
    from ciemu.runtime.client import DockerClient

logger = logging.getLogger(__name__)


def mandatory_binds(
    install_dir: str,
    workspace: str,
    socket_path: str = DEFAULT_SOCKET_PATH,
) -> list[str]:
    """Return the bind mounts every run container receives.

    Args:
        install_dir: Installation directory of ciemu (mounted read-only).
        workspace: Workspace directory (mounted read-write).
        socket_path: Daemon control socket (mounted read-only).

    Returns:
        Bind specifications in ``host:container[:mode]`` form.
    """
    return [
        f"{socket_path}:{socket_path}:ro",
        f"{install_dir}:{install_dir}:ro",
        f"{workspace}:{workspace}",
    ]


def build_run_spec(
    image: str,
    shell: str,
    command: str,
    install_dir: str,
    workspace: str,
    env: list[str] | None = None,
    binds: list[str] | None = None,
    user: str | None = None,
    socket_path: str = DEFAULT_SOCKET_PATH,
) -> RunSpec:
    """Create a RunSpec with the mandatory binds followed by user binds.

    User binds are not deduplicated; a user bind on the same container
    path as a mandatory one wins at the daemon.
    """
    return RunSpec(
        image=image,
        shell=shell,
        command=command,
        working_dir=workspace,
        env=list(env or []),
        binds=mandatory_binds(install_dir, workspace, socket_path) + list(binds or []),
        user=user or None,
    )


def container_config(spec: RunSpec) -> dict[str, Any]:
    """Render a RunSpec as a container create payload."""
    config: dict[str, Any] = {
        "Image": spec.image,
        "Cmd": [spec.shell, "-c", spec.command],
        "WorkingDir": spec.working_dir,
        "Env": spec.env,
        "HostConfig": {"Binds": spec.binds},
    }
    if spec.user:
        config["User"] = spec.user
    return config


def run_container(
    client: DockerClient,
    config: dict[str, Any],
    stdout: BinaryIO | None = None,
    stderr: BinaryIO | None = None,
) -> int:
    """Run a container to completion, streaming its output.

    The attach stream is opened before the container starts so early
    output is not lost. Output is written on a helper thread while
    the daemon is waited on, which keeps auto-removed containers waitable.

    Args:
        client: Docker client.
        config: Container create payload.
        stdout: Sink for container stdout (defaults to our stdout).
        stderr: Sink for container stderr (defaults to our stderr).

    Returns:
        The container exit code.

    Raises:
        DaemonError: If any daemon operation fails.
    """
    stdout = stdout if stdout is not None else sys.stdout.buffer
    stderr = stderr if stderr is not None else sys.stderr.buffer

    container_id = client.create_container(config)
    logger.debug("Created container %s from %s", container_id[:12], config.get("Image"))

    failures: list[BaseException] = []

    frames = client.attach(container_id)

    def pump() -> None:
        try:
            write_output(frames, stdout, stderr)
        except Exception as e:  # re-raised on the caller's thread
            failures.append(e)

    client.start(container_id)
    reader = threading.Thread(target=pump, name=f"attach-{container_id[:12]}")
    reader.start()
    try:
        exit_code = client.wait(container_id)
    finally:
        reader.join()

    if failures:
        raise failures[0]

    logger.debug("Container %s exited with code %d", container_id[:12], exit_code)
    return exit_code


def run_command(
    client: DockerClient,
    spec: RunSpec,
    stdout: BinaryIO | None = None,
    stderr: BinaryIO | None = None,
) -> int:
    """Run a RunSpec and return the container exit code."""
    return run_container(client, container_config(spec), stdout=stdout, stderr=stderr)


__all__ = [
    "build_run_spec",
    "container_config",
    "mandatory_binds",
    "run_command",
    "run_container",
]
