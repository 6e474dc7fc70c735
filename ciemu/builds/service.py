"""Build/run pipeline service.

This module provides the high-level pipeline API:
- Pipeline.execute(): main entry point - emulation, build with cache
  awareness, then run
- Cache lookup and build-on-miss through a CacheBackend
- Running the user command in the resulting image

Steps run strictly in sequence. Any failure moves the pipeline to the
ERROR state and propagates unchanged; completed steps are not rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, BinaryIO

from ciemu.actions import log_group
from ciemu.builds.buildfile import create_build_context
from ciemu.builds.cache import (
    DirectoryBlobStore,
    LocalCacheBackend,
    NoCacheBackend,
    RegistryCacheBackend,
)
from ciemu.builds.cache_key import derive_key
from ciemu.emulation.markers import FileMarkerStore
from ciemu.emulation.registrar import EmulationRegistrar
from ciemu.runtime.client import DEFAULT_SOCKET_PATH, DockerClient
from ciemu.runtime.executor import build_run_spec, run_command
from ciemu.types import BuildFileStyle, CacheStrategy, PipelineResult, PipelineState

if TYPE_CHECKING:
    from ciemu.builds.cache import CacheBackend
    from ciemu.config import ResolvedOptions

logger = logging.getLogger(__name__)


class PipelinePreconditionError(Exception):
    """Raised when a step is requested without the input it needs."""

    def __init__(self, message: str, code: str = "precondition_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class PipelineOptions:
    """Inputs of a pipeline run.

    Attributes:
        image: Base image reference.
        shell: Shell for the build script and run command.
        namespace: Sanitized cache namespace.
        install_dir: Installation directory mounted into run containers.
        workspace: Workspace directory mounted and used as working dir.
        build: Build script text, if an image should be built.
        run: Command text, if a command should be run.
        binds: Extra bind mounts for the run container.
        env: Environment entries (``NAME=VALUE``) for the run container.
        user: Optional ``uid:gid`` for the run container.
        build_style: Preferred build file form.
        socket_path: Daemon socket mounted into run containers.
    """

    image: str
    shell: str
    namespace: str
    install_dir: str
    workspace: str
    build: str | None = None
    run: str | None = None
    binds: list[str] = field(default_factory=list)
    env: list[str] = field(default_factory=list)
    user: str | None = None
    build_style: BuildFileStyle = BuildFileStyle.SCRIPT
    socket_path: str = DEFAULT_SOCKET_PATH


class Pipeline:
    """Sequential emulation, build/cache and run pipeline.

    Args:
        client: Docker client.
        registrar: Emulation registrar.
        backend: Image cache backend.
        options: Pipeline inputs.
        stdout: Sink for run container stdout.
        stderr: Sink for run container stderr.
    """

    def __init__(
        self,
        client: DockerClient,
        registrar: EmulationRegistrar,
        backend: CacheBackend,
        options: PipelineOptions,
        stdout: BinaryIO | None = None,
        stderr: BinaryIO | None = None,
    ) -> None:
        self.client = client
        self.registrar = registrar
        self.backend = backend
        self.options = options
        self.stdout = stdout
        self.stderr = stderr
        self.state = PipelineState.START
        self.result = PipelineResult(image=options.image, states=[PipelineState.START])

    def _transition(self, state: PipelineState) -> None:
        logger.debug("Pipeline state: %s -> %s", self.state.value, state.value)
        self.state = state
        self.result.states.append(state)

    def execute(self) -> PipelineResult:
        """Run the pipeline to completion.

        Returns:
            PipelineResult with the image and, if a run happened, its exit code.

        Raises:
            Exception: Any step failure, unchanged, after entering ERROR.
        """
        options = self.options
        try:
            with log_group("Enabling execution of multi-arch binaries (powered by QEMU)"):
                self.registrar.ensure()
            self._transition(PipelineState.EMULATION_ENSURED)

            if not options.build and not options.run:
                logger.warning("Neither a build script nor a run command was provided")

            if options.build:
                with log_group("Building image"):
                    self.result.image = self.build_image(options.build)

            if options.run:
                with log_group("Running command"):
                    self.result.exit_code = self.run_command(self.result.image, options.run)

            self._transition(PipelineState.DONE)
            return self.result
        except Exception:
            self._transition(PipelineState.ERROR)
            raise

    def build_image(self, script: str) -> str:
        """Resolve the image for a build script from cache or by building.

        Args:
            script: Build script text.

        Returns:
            Name of the restored or built image.

        Raises:
            PipelinePreconditionError: If the script is empty.
            DaemonError: If the build fails.
            CacheWriteError: If the built image cannot be cached.
        """
        if not script:
            raise PipelinePreconditionError("No command to build.")

        options = self.options
        context = create_build_context(
            options.image, options.shell, script, style=options.build_style
        )
        key = derive_key(options.namespace, context.build_file, script)
        self.result.cache_key = key
        logger.info("Computed cache key: %s", key)

        cached = self.backend.lookup(key)
        self._transition(PipelineState.CACHE_RESOLVED)
        if cached is not None:
            logger.info("Cache hit for key %s, skipping build", key)
            self.result.cache_hit = True
            self._transition(PipelineState.RESTORED)
            return cached

        logger.info("Creating build context...")
        archive = context.archive()

        logger.info("Building image...")
        image_id = self.client.build(
            archive,
            build_args=context.build_args,
            cache_from=self.backend.cache_from(key),
            quiet=True,
            on_output=lambda line: logger.info("%s", line.rstrip()),
        )
        self._transition(PipelineState.BUILT)

        self.backend.store(key, image_id)
        self._transition(PipelineState.TAGGED)
        return self.backend.image_name(key)

    def run_command(self, image: str, command: str) -> int:
        """Run a command in a container of an image.

        Args:
            image: Image to run.
            command: Command text for the shell.

        Returns:
            The container exit code.

        Raises:
            PipelinePreconditionError: If the command is empty.
            DaemonError: If the container cannot be run.
        """
        if not command:
            raise PipelinePreconditionError("No command to run.")

        options = self.options
        spec = build_run_spec(
            image=image,
            shell=options.shell,
            command=command,
            install_dir=options.install_dir,
            workspace=options.workspace,
            env=options.env,
            binds=options.binds,
            user=options.user,
            socket_path=options.socket_path,
        )

        logger.info("Running container...")
        exit_code = run_command(self.client, spec, stdout=self.stdout, stderr=self.stderr)
        self._transition(PipelineState.RUN)
        logger.info("Exit code: %d.", exit_code)
        return exit_code


def create_client(resolved: ResolvedOptions) -> DockerClient:
    """Create a Docker client for resolved options."""
    return DockerClient(socket_path=resolved.socket_path, credentials=resolved.credentials)


def create_backend(resolved: ResolvedOptions, client: DockerClient) -> CacheBackend:
    """Create the cache backend selected by the resolved strategy."""
    if resolved.strategy == CacheStrategy.REGISTRY:
        if not resolved.cache_repository:
            raise PipelinePreconditionError("Registry caching needs a cache repository.")
        return RegistryCacheBackend(client, resolved.cache_repository)
    if resolved.strategy == CacheStrategy.LOCAL:
        try:
            resolved.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PipelinePreconditionError(
                f"Cannot create cache directory {resolved.cache_dir}: {e}",
                code="cache_dir_unavailable",
            ) from e
        return LocalCacheBackend(client, DirectoryBlobStore(resolved.blob_dir), resolved.cache_dir)
    return NoCacheBackend(client)


def create_pipeline(
    resolved: ResolvedOptions,
    client: DockerClient,
    stdout: BinaryIO | None = None,
    stderr: BinaryIO | None = None,
) -> Pipeline:
    """Wire a Pipeline from resolved options.

    Args:
        resolved: Resolved options.
        client: Docker client.
        stdout: Sink for run container stdout.
        stderr: Sink for run container stderr.

    Returns:
        Pipeline ready to execute.
    """
    registrar = EmulationRegistrar(client, FileMarkerStore(resolved.lock_dir))
    options = PipelineOptions(
        image=resolved.image,
        shell=resolved.shell,
        namespace=resolved.namespace,
        install_dir=str(resolved.install_dir),
        workspace=str(resolved.workspace),
        build=resolved.build,
        run=resolved.run,
        binds=resolved.binds,
        env=resolved.env,
        user=resolved.user,
        build_style=resolved.build_style,
        socket_path=resolved.socket_path,
    )
    return Pipeline(
        client,
        registrar,
        create_backend(resolved, client),
        options,
        stdout=stdout,
        stderr=stderr,
    )


__all__ = [
    "Pipeline",
    "PipelineOptions",
    "PipelinePreconditionError",
    "create_backend",
    "create_client",
    "create_pipeline",
]
