"""Random access to tar archives.

ArchiveFile wraps one archive file and offers the two read paths the loader
needs:

- ``read_into()`` copies bytes at the current position into a caller buffer
  (plain buffered file I/O).
- ``get()`` returns a zero-copy numpy view of the memory-mapped file. Only
  available when the archive was opened with ``use_mmap=True`` and the
  mapping succeeded (``can_share``).

MappingReserver keeps a process-wide count of mapped archives so a job with
many loaders and many shards does not run into the kernel's mapping limit;
a loader that cannot reserve one mapping per archive reads by copying.

Environment variable:
    TARSTREAM_MAX_MAPPINGS: Process-wide budget of mapped archives
                            (default 16384).
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

import numpy as np

MAX_MAPPINGS_ENV_VAR = "TARSTREAM_MAX_MAPPINGS"
DEFAULT_MAX_MAPPINGS = 16384


class ArchiveReadError(OSError):
    """Fewer bytes could be read from an archive than its index promised."""


# =============================================================================
# Mapping Reservation
# =============================================================================

class MappingReserver:
    """Reservation of ``num_mappings`` slots in the process-wide mapping budget.

    The reservation is all-or-nothing: if the budget cannot hold every
    requested mapping, nothing is reserved and ``can_share_mapped_data`` is
    False. Release with ``release()`` or by using the reserver as a context
    manager.

    Example:
        with MappingReserver(len(paths)) as reserver:
            use_mmap = reserver.can_share_mapped_data
    """

    _lock = threading.Lock()
    _in_use = 0

    def __init__(self, num_mappings: int = 0) -> None:
        self.num_reserved = 0
        if num_mappings > 0:
            self.reserve(num_mappings)

    @staticmethod
    def limit() -> int:
        value = os.environ.get(MAX_MAPPINGS_ENV_VAR)
        return int(value) if value else DEFAULT_MAX_MAPPINGS

    @classmethod
    def in_use(cls) -> int:
        return cls._in_use

    def reserve(self, num_mappings: int) -> bool:
        cls = type(self)
        with cls._lock:
            if self.num_reserved:
                return True
            if cls._in_use + num_mappings <= self.limit():
                cls._in_use += num_mappings
                self.num_reserved = num_mappings
        return self.num_reserved > 0

    @property
    def can_share_mapped_data(self) -> bool:
        return self.num_reserved > 0

    def release(self) -> None:
        cls = type(self)
        with cls._lock:
            cls._in_use -= self.num_reserved
            self.num_reserved = 0

    def __enter__(self) -> MappingReserver:
        return self

    def __exit__(self, *exc) -> None:
        self.release()


# =============================================================================
# ArchiveFile
# =============================================================================

class ArchiveFile:
    """Seekable read-only handle on one tar archive.

    Args:
        path: Path to the archive.
        use_mmap: Also memory-map the file so ``get()`` can hand out views.
            If mapping fails (e.g. an empty file), ``can_share`` is False.
        read_ahead: Ask the OS to start reading the whole file into the page
            cache right away.

    Raises:
        FileNotFoundError: If the archive doesn't exist.
    """

    def __init__(
        self,
        path: str | Path,
        use_mmap: bool = False,
        read_ahead: bool = False,
    ) -> None:
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Archive not found: {self.path}")

        self._file = open(self.path, "rb")
        self._size = os.fstat(self._file.fileno()).st_size
        self._pos = 0
        self._mmap: np.memmap | None = None

        if use_mmap:
            try:
                self._mmap = np.memmap(self.path, dtype=np.uint8, mode="r")
            except (ValueError, OSError):
                # Empty files cannot be mapped
                self._mmap = None

        if read_ahead and hasattr(os, "posix_fadvise"):
            os.posix_fadvise(self._file.fileno(), 0, 0, os.POSIX_FADV_WILLNEED)

    @classmethod
    def open(cls, path: str | Path, use_mmap: bool = False, read_ahead: bool = False) -> ArchiveFile:
        return cls(path, use_mmap=use_mmap, read_ahead=read_ahead)

    @property
    def can_share(self) -> bool:
        """True if ``get()`` can return zero-copy views."""
        return self._mmap is not None

    @property
    def closed(self) -> bool:
        return self._file.closed

    def size(self) -> int:
        return self._size

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int) -> None:
        if not 0 <= offset <= self._size:
            raise ValueError(
                f"Cannot seek to {offset} in {self.path} ({self._size} bytes)"
            )
        self._pos = offset
        self._file.seek(offset)

    def read_into(self, buffer: np.ndarray) -> int:
        """Copy ``len(buffer)`` bytes from the current position into ``buffer``.

        Returns the number of bytes actually read, which is smaller than
        requested only at the end of the file.
        """
        out = buffer.reshape(-1).view(np.uint8)
        if self._mmap is not None:
            n = max(0, min(len(out), self._size - self._pos))
            out[:n] = self._mmap[self._pos:self._pos + n]
            self._file.seek(self._pos + n)
        else:
            n = self._file.readinto(memoryview(out)) or 0
        self._pos += n
        return n

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes into a new bytes object."""
        buffer = np.empty(size, dtype=np.uint8)
        n = self.read_into(buffer)
        return buffer[:n].tobytes()

    def get(self, size: int) -> np.ndarray:
        """Zero-copy uint8 view of ``size`` bytes at the current position.

        The view is read-only and stays valid after ``close()`` for as long
        as it is referenced.
        """
        if self._mmap is None:
            raise RuntimeError(f"Archive {self.path} is not memory-mapped")
        end = min(self._pos + size, self._size)
        view = self._mmap[self._pos:end]
        self._pos = end
        self._file.seek(end)
        return np.asarray(view)

    def unmap(self) -> None:
        """Drop the mapping; later reads go through the file handle."""
        self._mmap = None

    def close(self) -> None:
        # Outstanding views keep the mapping alive until they are collected
        self._mmap = None
        self._file.close()

    def __enter__(self) -> ArchiveFile:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"ArchiveFile(path='{self.path}', size={self._size:,}, "
            f"mapped={self.can_share})"
        )


__all__ = [
    "ArchiveFile",
    "ArchiveReadError",
    "MappingReserver",
    "DEFAULT_MAX_MAPPINGS",
    "MAX_MAPPINGS_ENV_VAR",
]
