"""PyTorch IterableDataset over indexed tar archives.

Each DataLoader worker of each distributed rank becomes one shard of the
sample table, so the whole job reads every sample once per epoch without any
coordination:

    shard_id   = rank * num_workers + worker_id
    num_shards = world_size * num_workers

Usage:
    from torch.utils.data import DataLoader
    from tarstream import TarIndexIterableDataset

    dataset = TarIndexIterableDataset(
        paths=tar_paths,
        index_paths=index_paths,
        ext=["jpg", "cls"],
        missing_component_behavior="skip",
    )
    loader = DataLoader(dataset, batch_size=None, num_workers=8)

    for image_bytes, label_bytes in loader:
        ...  # 1-D uint8 tensors
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator, Sequence

import numpy as np
import torch
import torch.distributed as dist
from torch.utils.data import IterableDataset, get_worker_info

from tarstream.loader import TarIndexLoader


def _distributed_world() -> tuple[int, int]:
    if dist.is_available() and dist.is_initialized():
        return dist.get_rank(), dist.get_world_size()
    return 0, 1


def _to_tensor(array: np.ndarray) -> torch.Tensor:
    # Memory-mapped views are read-only; torch needs a writable array
    if not array.flags.writeable:
        array = array.copy()
    return torch.from_numpy(array)


class TarIndexIterableDataset(IterableDataset):
    """Yields one tuple of tensors per sample, one tensor per output.

    Args:
        paths: Archive paths.
        index_paths: Index file per archive.
        ext: Extension group per output.
        **loader_kwargs: Passed on to TarIndexLoader (dtypes,
            missing_component_behavior, dont_use_mmap, ...). ``shard_id`` and
            ``num_shards`` are derived from the worker and rank.
    """

    def __init__(
        self,
        paths: Sequence[str | Path],
        index_paths: Sequence[str | Path],
        ext: Sequence[str],
        **loader_kwargs: Any,
    ) -> None:
        if "shard_id" in loader_kwargs or "num_shards" in loader_kwargs:
            raise ValueError(
                "shard_id and num_shards are derived from the DataLoader worker and "
                "distributed rank and cannot be passed explicitly"
            )
        self.paths = [str(p) for p in paths]
        self.index_paths = [str(p) for p in index_paths]
        self.ext = list(ext)
        self.loader_kwargs = loader_kwargs

    def shard_identity(self) -> tuple[int, int]:
        """``(shard_id, num_shards)`` of the calling process/worker."""
        rank, world_size = _distributed_world()
        worker_info = get_worker_info()
        if worker_info is None:
            worker_id, num_workers = 0, 1
        else:
            worker_id, num_workers = worker_info.id, worker_info.num_workers
        return rank * num_workers + worker_id, world_size * num_workers

    def make_loader(self) -> TarIndexLoader:
        shard_id, num_shards = self.shard_identity()
        return TarIndexLoader(
            self.paths,
            self.index_paths,
            self.ext,
            shard_id=shard_id,
            num_shards=num_shards,
            **self.loader_kwargs,
        )

    def __iter__(self) -> Iterator[tuple[torch.Tensor, ...]]:
        with self.make_loader() as loader:
            for sample in loader:
                yield tuple(_to_tensor(array) for array in sample)


__all__ = ["TarIndexIterableDataset"]
