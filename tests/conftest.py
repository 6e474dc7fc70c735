"""Shared fixtures for ciemu tests.

Provides an in-memory stand-in for the Docker client that records every
daemon operation in order.
"""

from pathlib import Path
from typing import Any

import pytest

from ciemu.runtime.errors import DaemonError

BUILT_IMAGE_ID = "sha256:" + "ab" * 32


class FakeDockerClient:
    """Records daemon calls and answers with canned results."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.pull_failures: set[str] = set()
        self.build_error: str | None = None
        self.push_error: str | None = None
        self.exit_code = 0
        self.output = [(b"hello\n", None), (None, b"oops\n")]
        self.containers: list[dict[str, Any]] = []
        self.build_requests: list[dict[str, Any]] = []

    def names(self) -> list[str]:
        """Return the recorded operation names."""
        return [name for name, _ in self.calls]

    def count(self, name: str) -> int:
        return self.names().count(name)

    def create_image(self, from_image, tag=None, on_event=None):
        ref = f"{from_image}:{tag}" if tag else from_image
        self.calls.append(("create_image", ref))
        if ref in self.pull_failures:
            raise DaemonError(
                f"manifest unknown: {ref}",
                status_code=404,
                payload={"message": "manifest unknown"},
            )
        return [{"status": "Downloaded"}]

    def build(self, context, build_args=None, cache_from=None, quiet=True, on_output=None):
        self.calls.append(("build", len(context)))
        self.build_requests.append(
            {"context": context, "build_args": build_args, "cache_from": cache_from}
        )
        if self.build_error:
            raise DaemonError(self.build_error, payload={"error": self.build_error})
        return BUILT_IMAGE_ID

    def export_image(self, name: str, dest: Path) -> int:
        self.calls.append(("export_image", name))
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(b"snapshot of " + name.encode())
        return dest.stat().st_size

    def import_images(self, source: Path):
        self.calls.append(("import_images", source))
        return [{"stream": "Loaded image"}]

    def push_image(self, name, tag=None, on_event=None):
        self.calls.append(("push_image", f"{name}:{tag}" if tag else name))
        if self.push_error:
            raise DaemonError(self.push_error)
        return [{"status": "Pushed"}]

    def tag(self, image, repo, tag=None):
        self.calls.append(("tag", (image, repo, tag)))

    def create_container(self, config):
        self.calls.append(("create_container", config.get("Image")))
        self.containers.append(config)
        return f"container{len(self.containers):02d}" + "0" * 56

    def attach(self, container_id):
        self.calls.append(("attach", container_id))
        return iter(self.output)

    def start(self, container_id):
        self.calls.append(("start", container_id))

    def wait(self, container_id):
        self.calls.append(("wait", container_id))
        return self.exit_code

    def close(self):
        self.calls.append(("close", None))


@pytest.fixture
def fake_client() -> FakeDockerClient:
    """Create a recording fake Docker client."""
    return FakeDockerClient()
