"""On-disk stores used by the build pipeline."""

from .compile_cache import CompileCache

__all__ = ["CompileCache"]
