"""search/partition.py - Split dimension 0 into per-worker shards."""

from __future__ import annotations

import math
import os
from typing import Sequence


def available_parallelism() -> int:
    return os.cpu_count() or 1


def worker_count(first_dimension: int, max_workers: int | None = None) -> int:
    """Clamp the requested fan-out to ``[1, first_dimension]``."""
    wanted = max_workers if max_workers is not None else available_parallelism()
    return max(1, min(int(wanted), first_dimension))


def shard_first_dimension(values: Sequence[float], workers: int) -> list[tuple[float, ...]]:
    """Cut *values* into ``workers`` contiguous, order-preserving slices.

    Every slice holds ``ceil(len / workers)`` values except the trailing
    ones, which may be shorter or empty.  Concatenating the slices gives
    back *values* unchanged.
    """
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    values = tuple(values)
    size = math.ceil(len(values) / workers) if values else 0
    return [values[i * size:(i + 1) * size] for i in range(workers)]
