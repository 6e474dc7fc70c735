"""Image cache backends.

This module handles:
- The CacheBackend interface used by the pipeline
- Local snapshot caching (export/import through a blob store)
- Registry caching (tag/push/pull)
- A directory-backed blob store

Backends are mutually exclusive; the pipeline is configured with one.
A failure to write the cache after a successful build is fatal.
"""

from __future__ import annotations

import logging
import tarfile
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from ciemu.runtime.errors import DaemonError

if TYPE_CHECKING:
    from ciemu.runtime.client import DockerClient

logger = logging.getLogger(__name__)


class CacheWriteError(Exception):
    """Raised when a built image cannot be written to the cache."""

    def __init__(self, message: str, code: str = "cache_write_error") -> None:
        super().__init__(message)
        self.code = code


class CacheRestoreError(Exception):
    """Raised when a stored cache entry cannot be restored."""

    def __init__(self, message: str, code: str = "cache_restore_error") -> None:
        super().__init__(message)
        self.code = code


class BlobStore(Protocol):
    """Key-addressed storage for cache directories."""

    def restore(self, paths: Sequence[Path], key: str) -> bool: ...

    def save(self, paths: Sequence[Path], key: str) -> None: ...


class DirectoryBlobStore:
    """Blob store keeping one tar archive per key in a directory.

    Each saved path is stored under its position in ``paths`` and
    restored to the path at the same position.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def archive_path(self, key: str) -> Path:
        """Return the archive file for a key."""
        return self.root / f"{key}.tar"

    def save(self, paths: Sequence[Path], key: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        archive = self.archive_path(key)
        tmp = archive.with_suffix(".tar.part")
        with tarfile.open(tmp, "w") as tar:
            for index, path in enumerate(paths):
                if not path.exists():
                    logger.warning("Cache path %s does not exist, skipping", path)
                    continue
                tar.add(path, arcname=str(index))
        tmp.replace(archive)
        logger.info("Saved cache entry %s", key)

    def restore(self, paths: Sequence[Path], key: str) -> bool:
        archive = self.archive_path(key)
        if not archive.is_file():
            return False

        with tarfile.open(archive, "r") as tar:
            for member in tar.getmembers():
                member_path = Path(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise CacheRestoreError(
                        f"Refusing to restore {member.name}: path traversal detected",
                        code="path_traversal",
                    )
                index, *rest = member_path.parts
                if not index.isdigit() or int(index) >= len(paths):
                    continue
                dest = paths[int(index)].joinpath(*rest)
                if member.isdir():
                    dest.mkdir(parents=True, exist_ok=True)
                elif member.isfile():
                    source = tar.extractfile(member)
                    if source is None:
                        continue
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    with source, dest.open("wb") as fh:
                        while chunk := source.read(64 * 1024):
                            fh.write(chunk)
        logger.info("Restored cache entry %s", key)
        return True


class CacheBackend(Protocol):
    """Persistence of built images across invocations."""

    def image_name(self, key: str) -> str: ...

    def lookup(self, key: str) -> str | None: ...

    def cache_from(self, key: str) -> list[str]: ...

    def store(self, key: str, image_id: str) -> None: ...


class NoCacheBackend:
    """Backend that never persists images; builds are only tagged locally."""

    def __init__(self, client: DockerClient) -> None:
        self.client = client

    def image_name(self, key: str) -> str:
        return key

    def lookup(self, key: str) -> str | None:
        logger.info("No image cache configured, skipping cache lookup")
        return None

    def cache_from(self, key: str) -> list[str]:
        return []

    def store(self, key: str, image_id: str) -> None:
        logger.info("No image cache configured, tagging image without caching")
        try:
            self.client.tag(image_id, self.image_name(key))
        except DaemonError as e:
            raise CacheWriteError(f"Failed to tag image {image_id} as {key}: {e}") from e


class LocalCacheBackend:
    """Cache built images as exported snapshots in a local directory.

    Args:
        client: Docker client.
        blob_store: Blob store persisting the cache directory.
        cache_dir: Directory holding ``<key>.tar`` snapshots.
    """

    def __init__(self, client: DockerClient, blob_store: BlobStore, cache_dir: Path) -> None:
        self.client = client
        self.blob_store = blob_store
        self.cache_dir = cache_dir

    def snapshot_path(self, key: str) -> Path:
        """Return the snapshot file for a key."""
        return self.cache_dir / f"{key}.tar"

    def image_name(self, key: str) -> str:
        return key

    def cache_from(self, key: str) -> list[str]:
        return []

    def prune(self, keep: str) -> list[Path]:
        """Remove snapshots of other keys so the directory holds one image.

        Returns:
            Removed snapshot paths.
        """
        removed: list[Path] = []
        if not self.cache_dir.is_dir():
            return removed
        for path in self.cache_dir.glob("*.tar"):
            if path != self.snapshot_path(keep):
                path.unlink()
                removed.append(path)
                logger.debug("Removed stale snapshot %s", path)
        return removed

    def lookup(self, key: str) -> str | None:
        """Import a cached snapshot for a key.

        A blob store entry that cannot be restored is logged and counts as
        a miss.

        Returns:
            The image name if a snapshot was found and imported, else None.

        Raises:
            DaemonError: If a found snapshot cannot be imported.
        """
        snapshot = self.snapshot_path(key)
        if not snapshot.is_file():
            logger.info("Restoring cache entry %s...", key)
            try:
                restored = self.blob_store.restore([self.cache_dir], key)
            except (CacheRestoreError, tarfile.TarError, OSError) as e:
                logger.warning("Failed to restore cache entry %s: %s", key, e)
                snapshot.unlink(missing_ok=True)
                return None
            if not restored:
                logger.info("Cache miss for %s", key)
                return None
            if not snapshot.is_file():
                logger.warning("Cache entry %s has no image snapshot", key)
                return None

        logger.info("Importing cached image from %s...", snapshot)
        self.client.import_images(snapshot)
        return self.image_name(key)

    def store(self, key: str, image_id: str) -> None:
        """Tag, export and persist a built image.

        Raises:
            CacheWriteError: If any step fails.
        """
        snapshot = self.snapshot_path(key)
        try:
            self.prune(keep=key)
            self.client.tag(image_id, self.image_name(key))
            logger.info("Exporting image to %s...", snapshot)
            self.client.export_image(self.image_name(key), snapshot)
            self.blob_store.save([self.cache_dir], key)
        except (DaemonError, OSError) as e:
            raise CacheWriteError(f"Failed to cache image {image_id} as {key}: {e}") from e


class RegistryCacheBackend:
    """Cache built images as tags in a remote registry.

    Args:
        client: Docker client (configured with registry credentials).
        repository: Registry repository, e.g. ``ghcr.io/owner/repo/ciemu-cache``.
    """

    def __init__(self, client: DockerClient, repository: str) -> None:
        self.client = client
        self.repository = repository

    def image_name(self, key: str) -> str:
        return f"{self.repository}:{key}"

    def cache_from(self, key: str) -> list[str]:
        return [self.image_name(key)]

    def lookup(self, key: str) -> str | None:
        """Pull the cached image for a key; failures count as a miss."""
        name = self.image_name(key)
        logger.info("Pulling cached image %s from registry...", name)
        try:
            self.client.create_image(name)
        except DaemonError as e:
            logger.warning("Failed to pull cached image: %s", e)
            return None
        return name

    def store(self, key: str, image_id: str) -> None:
        """Tag and push a built image.

        Raises:
            CacheWriteError: If tagging or pushing fails.
        """
        name = self.image_name(key)
        try:
            self.client.tag(image_id, self.repository, tag=key)
            logger.info("Pushing image %s to registry...", name)
            self.client.push_image(self.repository, tag=key)
        except DaemonError as e:
            raise CacheWriteError(f"Failed to push image {name}: {e}") from e


__all__ = [
    "BlobStore",
    "CacheBackend",
    "CacheRestoreError",
    "CacheWriteError",
    "DirectoryBlobStore",
    "LocalCacheBackend",
    "NoCacheBackend",
    "RegistryCacheBackend",
]
