"""Tests for runtime/executor.py module.

Tests run specifications, container payloads and the
create/attach/start/wait sequence.
"""

import io

import pytest

from ciemu.runtime.errors import DaemonError
from ciemu.runtime.executor import (
    build_run_spec,
    container_config,
    mandatory_binds,
    run_command,
    run_container,
)
from ciemu.types import RunSpec


class TestMandatoryBinds:
    """Tests for mandatory_binds function."""

    def test_order_and_modes(self):
        assert mandatory_binds("/opt/ciemu", "/work", "/run/docker.sock") == [
            "/run/docker.sock:/run/docker.sock:ro",
            "/opt/ciemu:/opt/ciemu:ro",
            "/work:/work",
        ]


class TestBuildRunSpec:
    """Tests for build_run_spec function."""

    def test_user_binds_follow_mandatory(self):
        """User binds are appended after the mandatory ones."""
        spec = build_run_spec(
            image="alpine",
            shell="/bin/sh",
            command="echo ok",
            install_dir="/opt/ciemu",
            workspace="/work",
            binds=["/data:/data", "/work:/elsewhere"],
        )

        assert spec.binds[3:] == ["/data:/data", "/work:/elsewhere"]
        assert len(spec.binds) == 5
        assert spec.working_dir == "/work"

    def test_empty_user_becomes_none(self):
        spec = build_run_spec("alpine", "/bin/sh", "true", "/opt", "/w", user="")
        assert spec.user is None


class TestContainerConfig:
    """Tests for container_config function."""

    def test_payload(self):
        spec = RunSpec(
            image="arm64v8/alpine",
            shell="/bin/bash",
            command="uname -m",
            working_dir="/work",
            env=["CI=true"],
            binds=["/work:/work"],
            user="1001:127",
        )

        assert container_config(spec) == {
            "Image": "arm64v8/alpine",
            "Cmd": ["/bin/bash", "-c", "uname -m"],
            "WorkingDir": "/work",
            "Env": ["CI=true"],
            "HostConfig": {"Binds": ["/work:/work"]},
            "User": "1001:127",
        }

    def test_no_user(self):
        spec = RunSpec(image="alpine", shell="/bin/sh", command="true", working_dir="/w")
        assert "User" not in container_config(spec)


class TestRunContainer:
    """Tests for run_container and run_command."""

    def test_call_sequence(self, fake_client):
        """Attach must be opened before start, and wait comes last."""
        run_container(fake_client, {"Image": "alpine"}, io.BytesIO(), io.BytesIO())

        assert fake_client.names() == ["create_container", "attach", "start", "wait"]

    def test_output_and_exit_code(self, fake_client):
        fake_client.exit_code = 42
        fake_client.output = [(b"out", None), (None, b"err")]
        stdout, stderr = io.BytesIO(), io.BytesIO()

        exit_code = run_container(fake_client, {"Image": "alpine"}, stdout, stderr)

        assert exit_code == 42
        assert stdout.getvalue() == b"out"
        assert stderr.getvalue() == b"err"

    def test_wait_failure_propagates(self, fake_client, monkeypatch):
        def fail(container_id):
            raise DaemonError("wait failed")

        monkeypatch.setattr(fake_client, "wait", fail)

        with pytest.raises(DaemonError, match="wait failed"):
            run_container(fake_client, {"Image": "alpine"}, io.BytesIO(), io.BytesIO())

    def test_stream_failure_propagates(self, fake_client):
        """Errors while reading output should surface on the caller."""

        def broken():
            yield (b"start", None)
            raise DaemonError("stream reset")

        fake_client.output = broken()

        with pytest.raises(DaemonError, match="stream reset"):
            run_container(fake_client, {"Image": "alpine"}, io.BytesIO(), io.BytesIO())

    def test_run_command(self, fake_client):
        spec = build_run_spec("alpine", "/bin/sh", "echo ok", "/opt/ciemu", "/work")

        exit_code = run_command(fake_client, spec, io.BytesIO(), io.BytesIO())

        assert exit_code == 0
        assert fake_client.containers[0]["Cmd"] == ["/bin/sh", "-c", "echo ok"]
