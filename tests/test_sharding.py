"""Tests for worker partitioning of the sample table."""

import pytest

from tarstream.sharding import ShardCursor, shard_bounds, start_index


def _walk(cursor: ShardCursor, steps: int) -> list[int]:
    return [cursor.advance() for _ in range(steps)]


class TestStartIndex:
    def test_ten_samples_three_workers(self):
        assert [start_index(w, 3, 10) for w in range(3)] == [0, 3, 6]

    def test_bounds_partition_the_table(self):
        for total in (1, 7, 10, 101):
            for num_shards in range(1, min(total, 8) + 1):
                covered = []
                for w in range(num_shards):
                    start, end = shard_bounds(w, num_shards, total)
                    covered.extend(range(start, end))
                assert covered == list(range(total))

    def test_last_bound_is_total(self):
        assert shard_bounds(2, 3, 10) == (6, 10)


class TestShardCursor:
    def test_invalid_identity(self):
        with pytest.raises(ValueError, match="shard_id"):
            ShardCursor(shard_id=3, num_shards=3)
        with pytest.raises(ValueError, match="num_shards"):
            ShardCursor(shard_id=0, num_shards=0)

    def test_starts_at_partition_start(self):
        cursor = ShardCursor(shard_id=1, num_shards=3)
        cursor.bind(10)
        assert cursor.current() == 3
        assert cursor.shard_size() == 3

    def test_wraps_to_own_start(self):
        cursors = [ShardCursor(w, 3) for w in range(3)]
        for cursor in cursors:
            cursor.bind(10)
        assert _walk(cursors[0], 7) == [0, 1, 2, 0, 1, 2, 0]
        assert _walk(cursors[1], 7) == [3, 4, 5, 3, 4, 5, 3]
        assert _walk(cursors[2], 9) == [6, 7, 8, 9, 6, 7, 8, 9, 6]

    def test_never_leaves_partition(self):
        for w in range(3):
            cursor = ShardCursor(w, 3)
            cursor.bind(10)
            start, end = shard_bounds(w, 3, 10)
            assert all(start <= i < end for i in _walk(cursor, 50))

    def test_without_stick_to_shard_walks_whole_table(self):
        cursor = ShardCursor(shard_id=1, num_shards=3, stick_to_shard=False)
        cursor.bind(10)
        assert _walk(cursor, 9) == [3, 4, 5, 6, 7, 8, 9, 0, 1]

    def test_reset_to_shard(self):
        cursor = ShardCursor(shard_id=2, num_shards=3)
        cursor.bind(10)
        _walk(cursor, 2)
        cursor.reset(wrap_to_shard=True)
        assert cursor.current() == 6

    def test_reset_to_zero(self):
        cursor = ShardCursor(shard_id=2, num_shards=3)
        cursor.bind(10)
        cursor.reset(wrap_to_shard=False)
        assert cursor.current() == 0

    def test_deterministic(self):
        a, b = ShardCursor(1, 4), ShardCursor(1, 4)
        a.bind(37)
        b.bind(37)
        assert _walk(a, 30) == _walk(b, 30)
