"""Skip cache: components whose bytes a downstream stage no longer needs.

A decoder that caches its results can mark the source descriptor of a
component once it has processed it. On later reads the loader sees the mark,
flags the output with ``skip_sample`` and hands back an empty buffer instead
of reading the archive.

Usage:
    cache = SkipCache()
    loader = TarIndexLoader(..., skip_cached_images=True, skip_cache=cache)

    outputs = loader.read_sample()
    cache.mark(outputs[0].meta.source_info)   # decoded and cached downstream
"""

from __future__ import annotations

import threading
from typing import Iterable, Protocol


class SkipCacheProtocol(Protocol):
    def should_skip(self, source_info: str) -> bool: ...


class SkipCache:
    """Thread-safe set of source descriptors to skip."""

    def __init__(self, descriptors: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._descriptors = set(descriptors)

    def mark(self, source_info: str) -> None:
        with self._lock:
            self._descriptors.add(source_info)

    def should_skip(self, source_info: str) -> bool:
        with self._lock:
            return source_info in self._descriptors

    def __contains__(self, source_info: str) -> bool:
        return self.should_skip(source_info)

    def __len__(self) -> int:
        return len(self._descriptors)


__all__ = ["SkipCache", "SkipCacheProtocol"]
