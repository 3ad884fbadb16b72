"""
kvcache — Cache Backends

Exports available cache backend implementations.

The distributed backend is lazy-loaded via factory.py so the redis client is
only imported when it is selected.
"""

from .memory import MemoryCacheBackend

__all__ = [
    "MemoryCacheBackend",
]
