"""search/messages.py - Messages exchanged between the coordinator and workers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Union

import numpy as np
from numpy.typing import NDArray

from ..config import ComponentSpec, GroupConstraint


@dataclass(frozen=True)
class StartPayload:
    """Everything a worker needs; ``first_values`` is its dimension-0 shard."""

    components: tuple[ComponentSpec, ...]
    group_constraints: Mapping[str, GroupConstraint]
    min_total: float
    max_total: float
    ranges: tuple[tuple[float, ...], ...]
    first_values: tuple[float, ...]
    epsilon: float
    max_results: int | None
    worker_id: int
    batch_size: int = 200
    progress_interval: int = 5_000


@dataclass(frozen=True)
class Progress:
    worker_id: int
    processed: int
    valid: int


@dataclass(frozen=True)
class ResultBatch:
    """``rows`` is a flat float64 buffer of ``row_count * row_size`` values."""

    worker_id: int
    rows: NDArray[np.float64]
    row_count: int

    def as_matrix(self) -> NDArray[np.float64]:
        if self.row_count == 0:
            return self.rows.reshape(0, 0)
        return self.rows.reshape(self.row_count, -1)


@dataclass(frozen=True)
class Done:
    worker_id: int
    processed: int
    valid: int
    stored: int


@dataclass(frozen=True)
class WorkerFailure:
    """Posted by a worker whose search raised; carries the formatted traceback."""

    worker_id: int
    error: str


WorkerMessage = Union[Progress, ResultBatch, Done, WorkerFailure]
