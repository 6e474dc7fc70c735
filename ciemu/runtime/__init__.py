"""Container runtime module.

This module handles:
- The Docker Engine client built on the docker SDK
- Registry credential providers
- Progress event checks and container output routing
- Running commands inside containers
"""

from ciemu.runtime.auth import (
    CredentialProvider,
    NoCredentials,
    PatternCredentials,
    RegistryAuth,
    StaticCredentials,
)
from ciemu.runtime.client import DEFAULT_SOCKET_PATH, DockerClient
from ciemu.runtime.errors import DaemonError
from ciemu.runtime.executor import build_run_spec, run_command, run_container

__all__ = [
    "DEFAULT_SOCKET_PATH",
    "CredentialProvider",
    "DaemonError",
    "DockerClient",
    "NoCredentials",
    "PatternCredentials",
    "RegistryAuth",
    "StaticCredentials",
    "build_run_spec",
    "run_command",
    "run_container",
]
