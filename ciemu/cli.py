"""Thin CLI wrapper for ciemu.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError
from rich.console import Console

from ciemu import __version__
from ciemu.actions import set_output
from ciemu.config import (
    OptionsError,
    Settings,
    get_settings,
    load_options_file,
    print_settings_json,
    resolve_options,
)
from ciemu.types import BuildFileStyle, CacheStrategy

app = typer.Typer(
    name="ciemu",
    help="CIEmu - run multi-arch Linux containers with QEMU emulation",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ciemu version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Configure root logging for CLI runs."""
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _load_settings(config_file: Path | None, overrides: dict[str, Any]) -> Settings:
    values: dict[str, Any] = {}
    if config_file is not None:
        values.update(load_options_file(config_file))
    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return get_settings(**values)
    except ValidationError as e:
        raise OptionsError(f"Invalid options: {e}") from e


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """CIEmu - run multi-arch Linux containers with QEMU emulation."""


@app.command()
def config(
    config_file: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="YAML options file"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    try:
        settings = _load_settings(config_file, {})
    except OptionsError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    runtime_dir_display = (
        str(settings.runtime_dir)
        if settings.runtime_dir
        else f"{settings.install_dir}/.ciemu/runtime"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Image:[/bold]")
    console.print(f"  Base image:          {settings.image}")
    console.print(f"  Shell:               {settings.shell}")
    console.print(f"  Build style:         {settings.build_style.value}")
    console.print()
    console.print("[bold]Caching:[/bold]")
    console.print(f"  Strategy:            {settings.cache.value}")
    console.print(f"  Cache prefix:        {settings.cache_prefix or '(from image)'}")
    console.print(f"  Registry:            {settings.cache_registry}")
    console.print(f"  Repository:          {settings.cache_repository or '(from GITHUB_REPOSITORY)'}")
    console.print(f"  Registry token:      {'set' if settings.registry_token else 'not set'}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Install directory:   {settings.install_dir}")
    console.print(f"  Runtime directory:   {runtime_dir_display}")
    console.print(f"  Blob directory:      {settings.blob_dir}")
    console.print(f"  Daemon socket:       {settings.socket_path}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")


@app.command("run")
def run_pipeline(
    image: Annotated[
        str | None,
        typer.Option("--image", "-i", help="Base image to emulate"),
    ] = None,
    shell: Annotated[
        str | None,
        typer.Option("--shell", "-s", help="Shell for build and run commands"),
    ] = None,
    build: Annotated[
        str | None,
        typer.Option("--build", "-b", help="Build script for the image"),
    ] = None,
    build_file: Annotated[
        Path | None,
        typer.Option("--build-file", help="Read the build script from a file"),
    ] = None,
    run: Annotated[
        str | None,
        typer.Option("--run", "-r", help="Command to run in the container"),
    ] = None,
    bind: Annotated[
        str | None,
        typer.Option("--bind", help="Space-separated bind mounts"),
    ] = None,
    env: Annotated[
        str | None,
        typer.Option("--env", "-e", help="Space-separated env var names to export"),
    ] = None,
    user: Annotated[
        str | None,
        typer.Option("--user", "-u", help="uid:gid to run as"),
    ] = None,
    cache_prefix: Annotated[
        str | None,
        typer.Option("--cache-prefix", help="Cache namespace"),
    ] = None,
    cache: Annotated[
        CacheStrategy | None,
        typer.Option("--cache", help="Image cache strategy"),
    ] = None,
    build_style: Annotated[
        BuildFileStyle | None,
        typer.Option("--build-style", help="How the build script is embedded"),
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="YAML options file"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output result as JSON"),
    ] = False,
) -> None:
    """Register emulation, build the image if needed, and run a command.

    Exits with the container's exit code when a command was run.
    """
    from ciemu.builds.cache import CacheWriteError
    from ciemu.builds.service import (
        PipelinePreconditionError,
        create_client,
        create_pipeline,
    )
    from ciemu.emulation.registrar import EmulationError
    from ciemu.runtime.errors import DaemonError

    if not sys.platform.startswith("linux"):
        console.print("[red]Error: CIEmu only works on Linux.[/red]")
        raise typer.Exit(code=1)

    if build_file is not None:
        try:
            build = build_file.read_text(encoding="utf-8")
        except OSError as e:
            console.print(f"[red]Error: Cannot read build file: {e}[/red]")
            raise typer.Exit(code=1) from None

    try:
        settings = _load_settings(
            config_file,
            {
                "image": image,
                "shell": shell,
                "build": build,
                "run": run,
                "bind": bind,
                "env": env,
                "user": user,
                "cache_prefix": cache_prefix,
                "cache": cache,
                "build_style": build_style,
            },
        )
        configure_logging(settings.log_level)
        resolved = resolve_options(settings)
    except OptionsError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    client = create_client(resolved)
    try:
        pipeline = create_pipeline(resolved, client)
        result = pipeline.execute()
    except (
        CacheWriteError,
        DaemonError,
        EmulationError,
        PipelinePreconditionError,
        OSError,
    ) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    finally:
        client.close()

    set_output("image", result.image)
    if result.exit_code is not None:
        set_output("exit-code", result.exit_code)

    if json_output:
        output = {
            "image": result.image,
            "exit_code": result.exit_code,
            "cache_hit": result.cache_hit,
            "cache_key": result.cache_key,
        }
        console.print(json.dumps(output, indent=2), soft_wrap=True)
    else:
        console.print(f"[green]Image:[/green] {result.image}")
        if result.cache_key:
            status = "hit" if result.cache_hit else "miss"
            console.print(f"  Cache: {status} ({result.cache_key})")
        if result.exit_code is not None:
            console.print(f"  Exit code: {result.exit_code}")

    if result.exit_code:
        raise typer.Exit(code=result.exit_code)


if __name__ == "__main__":
    app()
