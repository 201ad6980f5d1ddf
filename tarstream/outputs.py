"""Output buffers filled by the sample reader.

An OutputBuffer holds the bytes of one declared output as a 1-D numpy array of
the output's dtype. It either owns its storage (copy mode, reused across
reads when large enough) or shares memory it does not own: a memory-mapped
archive slice, or the storage of another output bound to the same component.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

# Element types an output may be declared with
SUPPORTED_DTYPES = (
    np.dtype(np.uint8),
    np.dtype(np.uint16),
    np.dtype(np.uint32),
    np.dtype(np.uint64),
    np.dtype(np.int8),
    np.dtype(np.int16),
    np.dtype(np.int32),
    np.dtype(np.int64),
    np.dtype(np.float16),
    np.dtype(np.float32),
    np.dtype(np.float64),
    np.dtype(np.bool_),
)


def supported_types_list() -> str:
    return ", ".join(dtype.name for dtype in SUPPORTED_DTYPES)


def resolve_dtype(dtype: np.dtype | type | str) -> np.dtype:
    """Normalize a dtype spec, rejecting anything outside SUPPORTED_DTYPES."""
    try:
        # np.dtype(None) means float64
        resolved = None if dtype is None else np.dtype(dtype)
    except TypeError:
        resolved = None
    if resolved is None or resolved not in SUPPORTED_DTYPES:
        raise ValueError(
            f"Unsupported output dtype {dtype}. "
            f"Supported types are: {supported_types_list()}"
        )
    return resolved


@dataclass
class SourceMeta:
    """Where an output's bytes came from.

    Attributes:
        source_info: Archive, index file, line and offset of the component.
        skip_sample: The skip cache asked for this component to be skipped,
            so the output is empty on purpose.
    """

    source_info: str = ""
    skip_sample: bool = False


class OutputBuffer:
    """Growable 1-D buffer for one output of one sample.

    Args:
        dtype: Element type of the output.
        reserve_bytes: Storage to allocate up front.
    """

    def __init__(self, dtype: np.dtype | type | str = np.uint8, reserve_bytes: int = 0) -> None:
        self.dtype = np.dtype(dtype)
        self.meta = SourceMeta()
        self._storage: np.ndarray | None = None
        self._shared = False
        self._data = np.empty(0, dtype=self.dtype)
        if reserve_bytes:
            self.reserve(reserve_bytes)

    @property
    def data(self) -> np.ndarray:
        """Current contents as a 1-D array of ``dtype``."""
        return self._data

    @property
    def shares_data(self) -> bool:
        """True when the contents live in memory this buffer does not own."""
        return self._shared

    @property
    def nbytes(self) -> int:
        return self._data.nbytes

    def __len__(self) -> int:
        return len(self._data)

    def reserve(self, nbytes: int) -> None:
        if self._storage is None or self._storage.nbytes < nbytes:
            self._storage = np.empty(nbytes, dtype=np.uint8)

    def reset(self) -> None:
        """Drop contents, storage and metadata."""
        self._storage = None
        self._shared = False
        self._data = np.empty(0, dtype=self.dtype)
        self.meta = SourceMeta()

    def resize(self, count: int, dtype: np.dtype | type | str | None = None) -> np.ndarray:
        """Make this buffer own ``count`` elements, reusing storage if possible.

        Contents are undefined after the call. Returns the new array.
        """
        if dtype is not None:
            self.dtype = np.dtype(dtype)
        nbytes = count * self.dtype.itemsize
        if self._shared:
            self._storage = None
            self._shared = False
        self.reserve(nbytes)
        self._data = self._storage[:nbytes].view(self.dtype)
        return self._data

    def share_data(self, view: np.ndarray, dtype: np.dtype | type | str | None = None) -> None:
        """Point this buffer at memory owned elsewhere, without copying.

        Args:
            view: Contiguous uint8 array (archive slice or another buffer).
            dtype: Element type to reinterpret the bytes as.
        """
        if dtype is not None:
            self.dtype = np.dtype(dtype)
        self._storage = None
        self._shared = True
        self._data = view.view(self.dtype)

    def set_meta(self, meta: SourceMeta) -> None:
        self.meta = meta

    def __repr__(self) -> str:
        return (
            f"OutputBuffer(dtype={self.dtype.name}, size={len(self)}, "
            f"shared={self._shared}, source='{self.meta.source_info}')"
        )


__all__ = [
    "SUPPORTED_DTYPES",
    "OutputBuffer",
    "SourceMeta",
    "resolve_dtype",
    "supported_types_list",
]
