"""Static partitioning of the sample table across workers.

Each of ``num_shards`` workers owns the contiguous slice
``[start_index(w), start_index(w + 1))`` of the global sample table. Workers
never talk to each other: the partition is a pure function of the worker id,
the worker count and the table size.

Example:
    >>> [start_index(w, 3, 10) for w in range(3)]
    [0, 3, 6]
"""

from __future__ import annotations


def start_index(shard_id: int, num_shards: int, total: int) -> int:
    """First sample of worker ``shard_id``: ``floor(shard_id * total / num_shards)``."""
    return shard_id * total // num_shards


def shard_bounds(shard_id: int, num_shards: int, total: int) -> tuple[int, int]:
    """Half-open ``[start, end)`` sample range of one worker."""
    return (
        start_index(shard_id, num_shards, total),
        start_index(shard_id + 1, num_shards, total),
    )


class ShardCursor:
    """Position of one worker in the sample table.

    The cursor starts at the worker's first sample and moves forward one
    sample per read. With ``stick_to_shard`` it wraps back to the worker's own
    start at the end of its partition; otherwise it walks the whole table and
    wraps to 0.

    Args:
        shard_id: This worker's id, in ``[0, num_shards)``.
        num_shards: Number of workers.
        stick_to_shard: Stay inside this worker's partition.
    """

    def __init__(self, shard_id: int = 0, num_shards: int = 1, stick_to_shard: bool = True) -> None:
        if num_shards < 1:
            raise ValueError(f"num_shards must be positive, got {num_shards}")
        if not 0 <= shard_id < num_shards:
            raise ValueError(
                f"shard_id must be in [0, {num_shards}), got {shard_id}"
            )
        self.shard_id = shard_id
        self.num_shards = num_shards
        self.stick_to_shard = stick_to_shard
        self.total = 0
        self.index = 0

    def bind(self, total: int) -> None:
        """Attach to a table of ``total`` samples and move to this worker's start."""
        self.total = total
        self.reset(wrap_to_shard=True)

    @property
    def start(self) -> int:
        return start_index(self.shard_id, self.num_shards, self.total)

    @property
    def end(self) -> int:
        return start_index(self.shard_id + 1, self.num_shards, self.total)

    def shard_size(self) -> int:
        return self.end - self.start

    def reset(self, wrap_to_shard: bool = True) -> None:
        """Rewind to this worker's start, or to the table start if not ``wrap_to_shard``."""
        self.index = self.start if wrap_to_shard else 0

    def current(self) -> int:
        """Index of the next sample to read, applying any pending wrap."""
        if self.index >= self.total:
            self.index = self.start if self.stick_to_shard else 0
        elif self.stick_to_shard and self.index >= self.end:
            self.index = self.start
        return self.index

    def advance(self) -> int:
        """Return the index to read now and step past it."""
        index = self.current()
        self.index = index + 1
        return index

    def __repr__(self) -> str:
        return (
            f"ShardCursor(shard_id={self.shard_id}, num_shards={self.num_shards}, "
            f"index={self.index}, range=[{self.start}, {self.end}))"
        )


__all__ = ["ShardCursor", "shard_bounds", "start_index"]
