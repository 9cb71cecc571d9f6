"""
Geometry parsing runtime loading and process-wide caching.
"""

from bimsync.runtime.loader import RUNTIME_CACHE, BinaryRuntimeLoader, RuntimeBinary, RuntimeBinaryCache

__all__ = [
    "RuntimeBinary",
    "RuntimeBinaryCache",
    "RUNTIME_CACHE",
    "BinaryRuntimeLoader",
]
