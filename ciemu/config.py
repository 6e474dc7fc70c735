"""Configuration settings for ciemu.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > options file >
env vars > defaults.
"""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from ciemu.builds.cache_key import sanitize_namespace
from ciemu.runtime.auth import (
    CredentialProvider,
    NoCredentials,
    RegistryAuth,
    for_registry,
)
from ciemu.runtime.client import DEFAULT_SOCKET_PATH
from ciemu.types import BuildFileStyle, CacheStrategy


class OptionsError(Exception):
    """Raised when configured options cannot be resolved."""

    def __init__(self, message: str, code: str = "options_error") -> None:
        super().__init__(message)
        self.code = code


def _default_install_dir() -> Path:
    """Return the directory ciemu is installed in."""
    return Path(__file__).resolve().parent.parent


def _default_blob_dir() -> Path:
    """Return the default blob store directory."""
    return Path.home() / ".cache" / "ciemu" / "blobs"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the CIEMU_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="CIEMU_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Image and commands
    image: str = Field(default="alpine", description="Base image for emulation")
    shell: str = Field(
        default="/bin/sh",
        description="Shell executing the build script and run command",
    )
    build: str = Field(default="", description="Build script for the image")
    run: str = Field(default="", description="Command to run in the container")
    bind: str = Field(default="", description="Space-separated bind mounts")
    env: str = Field(
        default="",
        description="Space-separated environment variable names to export",
    )
    user: str = Field(
        default="",
        description="uid:gid to run as (defaults to the current user)",
    )
    build_style: BuildFileStyle = Field(
        default=BuildFileStyle.SCRIPT,
        description="How the build script is embedded in the build file",
    )

    # Caching
    cache: CacheStrategy = Field(
        default=CacheStrategy.AUTO,
        description="Image cache strategy",
    )
    cache_prefix: str = Field(
        default="",
        description="Cache namespace (defaults to ciemu-cache-<image>)",
    )
    cache_registry: str = Field(default="ghcr.io", description="Registry for image cache")
    cache_repository: str = Field(
        default="",
        description="Registry repository (defaults to <GITHUB_REPOSITORY>/ciemu-cache)",
    )
    registry_username: str = Field(
        default="",
        description="Registry username (defaults to GITHUB_ACTOR)",
    )
    registry_token: SecretStr | None = Field(
        default=None,
        description="Registry token; enables registry caching in auto mode",
    )

    # Paths
    install_dir: Path = Field(
        default_factory=_default_install_dir,
        description="Installation directory mounted read-only into containers",
    )
    runtime_dir: Path | None = Field(
        default=None,
        description="Runtime state directory (defaults to <install_dir>/.ciemu/runtime)",
    )
    blob_dir: Path = Field(
        default_factory=_default_blob_dir,
        description="Directory of the local blob store",
    )
    workspace: Path | None = Field(
        default=None,
        description="Workspace directory (defaults to GITHUB_WORKSPACE or cwd)",
    )
    socket_path: str = Field(
        default=DEFAULT_SOCKET_PATH,
        description="Docker daemon socket",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )


@dataclass
class ResolvedOptions:
    """Settings after input defaulting against the host environment."""

    image: str
    shell: str
    build: str | None
    run: str | None
    binds: list[str]
    env: list[str]
    user: str | None
    build_style: BuildFileStyle
    namespace: str
    strategy: CacheStrategy
    install_dir: Path
    runtime_dir: Path
    cache_dir: Path
    lock_dir: Path
    blob_dir: Path
    workspace: Path
    socket_path: str
    cache_repository: str | None = None
    credentials: CredentialProvider = field(default_factory=NoCredentials)


def get_settings(**overrides: Any) -> Settings:
    """Get the application settings.

    Args:
        **overrides: Values taking precedence over the environment.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings(**overrides)


def load_options_file(path: Path) -> dict[str, Any]:
    """Load settings overrides from a YAML file.

    Keys use the setting names, dashes or underscores (``cache-prefix``).

    Raises:
        OptionsError: If the file cannot be read or is not a mapping.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise OptionsError(f"Failed to load options file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise OptionsError(f"Options file {path} must contain a mapping")
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def _split(value: str, name: str) -> list[str]:
    try:
        return shlex.split(value)
    except ValueError as e:
        raise OptionsError(f"Cannot parse '{name}': {e}") from e


def _default_user() -> str:
    return f"{os.getuid()}:{os.getgid()}"


def resolve_strategy(settings: Settings) -> CacheStrategy:
    """Pick the cache strategy; AUTO means registry iff a token is set."""
    if settings.cache != CacheStrategy.AUTO:
        return settings.cache
    if settings.registry_token is not None and settings.registry_token.get_secret_value():
        return CacheStrategy.REGISTRY
    return CacheStrategy.LOCAL


def resolve_options(
    settings: Settings,
    environ: Mapping[str, str] | None = None,
) -> ResolvedOptions:
    """Apply input defaulting to settings.

    Args:
        settings: Loaded settings.
        environ: Host environment (defaults to os.environ).

    Returns:
        ResolvedOptions ready to build a pipeline.

    Raises:
        OptionsError: If lists cannot be parsed or registry caching lacks
            a repository.
    """
    env_map = os.environ if environ is None else environ

    image = settings.image or "alpine"
    shell = settings.shell or "/bin/sh"
    binds = _split(settings.bind, "bind") if settings.bind else []
    env = (
        [f"{name}={env_map.get(name, '')}" for name in _split(settings.env, "env")]
        if settings.env
        else []
    )
    namespace = sanitize_namespace(settings.cache_prefix or f"ciemu-cache-{image}")

    install_dir = settings.install_dir
    runtime_dir = settings.runtime_dir or install_dir / ".ciemu" / "runtime"
    workspace = settings.workspace or Path(env_map.get("GITHUB_WORKSPACE") or Path.cwd())

    strategy = resolve_strategy(settings)
    cache_repository: str | None = None
    credentials: CredentialProvider = NoCredentials()
    if strategy == CacheStrategy.REGISTRY:
        repository = settings.cache_repository
        if not repository:
            github_repository = env_map.get("GITHUB_REPOSITORY", "")
            if not github_repository:
                raise OptionsError(
                    "Registry caching needs cache_repository or GITHUB_REPOSITORY",
                    code="missing_repository",
                )
            repository = f"{github_repository.lower()}/ciemu-cache"
        cache_repository = f"{settings.cache_registry}/{repository}"
        if settings.registry_token is not None:
            username = settings.registry_username or env_map.get("GITHUB_ACTOR") or "ciemu"
            credentials = for_registry(
                settings.cache_registry,
                RegistryAuth(
                    username=username,
                    password=settings.registry_token.get_secret_value(),
                    serveraddress=settings.cache_registry,
                ),
            )

    return ResolvedOptions(
        image=image,
        shell=shell,
        build=settings.build or None,
        run=settings.run or None,
        binds=binds,
        env=env,
        user=settings.user or _default_user(),
        build_style=settings.build_style,
        namespace=namespace,
        strategy=strategy,
        install_dir=install_dir,
        runtime_dir=runtime_dir,
        cache_dir=runtime_dir / "cache" / namespace,
        lock_dir=runtime_dir / "locks",
        blob_dir=settings.blob_dir,
        workspace=workspace,
        socket_path=settings.socket_path,
        cache_repository=cache_repository,
        credentials=credentials,
    )


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings (secrets masked).
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "OptionsError",
    "ResolvedOptions",
    "Settings",
    "get_settings",
    "load_options_file",
    "print_settings_json",
    "resolve_options",
    "resolve_strategy",
]
