from __future__ import annotations

import pytest

from formulation_search.search.partition import shard_first_dimension, worker_count


def test_worker_count_is_clamped_to_first_dimension() -> None:
    assert worker_count(5, 8) == 5
    assert worker_count(5, 3) == 3
    assert worker_count(5, 0) == 1
    assert 1 <= worker_count(5) <= 5
    assert worker_count(1, 16) == 1


def test_shards_are_contiguous_with_short_or_empty_tail() -> None:
    shards = shard_first_dimension([0.0, 0.1, 0.2, 0.3, 0.4], 4)

    assert shards == [(0.0, 0.1), (0.2, 0.3), (0.4,), ()]


@pytest.mark.parametrize("workers", range(1, 12))
def test_shards_concatenate_back_to_input(workers: int) -> None:
    values = [round(i / 10, 6) for i in range(11)]

    shards = shard_first_dimension(values, workers)

    assert len(shards) == workers
    assert [v for shard in shards for v in shard] == values


def test_zero_workers_rejected() -> None:
    with pytest.raises(ValueError):
        shard_first_dimension([1.0], 0)
