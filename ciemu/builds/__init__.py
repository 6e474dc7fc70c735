"""Build orchestration module.

This module handles:
- Cache key computation
- Build file synthesis and build context packing
- Image cache backends
- The emulation, build and run pipeline
"""

from ciemu.builds.cache import (
    CacheRestoreError,
    CacheWriteError,
    DirectoryBlobStore,
    LocalCacheBackend,
    NoCacheBackend,
    RegistryCacheBackend,
)
from ciemu.builds.cache_key import derive_key, sanitize_namespace
from ciemu.builds.service import Pipeline, PipelineOptions, PipelinePreconditionError

__all__ = [
    "CacheRestoreError",
    "CacheWriteError",
    "DirectoryBlobStore",
    "LocalCacheBackend",
    "NoCacheBackend",
    "Pipeline",
    "PipelineOptions",
    "PipelinePreconditionError",
    "RegistryCacheBackend",
    "derive_key",
    "sanitize_namespace",
]
