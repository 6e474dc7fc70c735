"""CIEmu - multi-arch container emulation for CI workflows.

This package registers QEMU emulation with a Docker daemon, builds
cached images from user build scripts, and runs commands inside them.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
