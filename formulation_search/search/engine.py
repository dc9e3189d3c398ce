"""
search/engine.py - Depth-first enumeration with sum and group pruning.

Design notes
------------
* **State** - the partial tuple, per-group masses and per-group counts live
  in three flat lists sized once per run.  A branch writes its slot before
  recursing and restores the previous value on return, so siblings never
  see each other's updates and the hot loop allocates nothing.
* **Pruning** - partial sums only grow (all values are non-negative), so a
  prefix above ``max_total + eps`` or a group above its mass/count ceiling
  discards the whole subtree.  The subtree's leaf count is still added to
  ``processed`` so a finished shard reports exactly its share of the space.
* **Cancellation** - ``stop.is_set()`` is polled at the top of every call
  and before every candidate.  Nothing is interrupted from outside.
"""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from .constraints import ConstraintSet
from .space import VALUE_DECIMALS, subtree_sizes

logger = logging.getLogger(__name__)


class StopFlag(Protocol):
    def is_set(self) -> bool: ...


class RowSink(Protocol):
    """Receives accepted rows and progress from one engine."""

    def emit_row(self, values: Sequence[float]) -> None: ...

    def emit_progress(self, processed: int, valid: int) -> None: ...


class _NeverStop:
    def is_set(self) -> bool:
        return False


class SearchEngine:
    """Exhaustive search over ``lattices`` for one worker.

    Parameters
    ----------
    lattices:
        Candidate values per dimension.  For a worker, ``lattices[0]`` is its
        own shard of dimension 0.
    constraints:
        Compiled total and group bounds.
    sink:
        Destination for accepted rows and progress ticks.
    stop:
        Cooperative cancellation flag (``threading.Event`` or
        ``multiprocessing.Event``).
    max_results:
        Cap on rows handed to ``sink``; later valid rows are only counted.
    progress_interval:
        Processed-leaf stride between progress ticks.
    """

    def __init__(
        self,
        lattices: Sequence[Sequence[float]],
        constraints: ConstraintSet,
        sink: RowSink,
        stop: StopFlag | None = None,
        max_results: int | None = None,
        progress_interval: int = 5_000,
    ) -> None:
        if len(lattices) != len(constraints.component_groups):
            raise ValueError(
                f"{len(lattices)} lattices for {len(constraints.component_groups)} components"
            )
        self._lattices = [tuple(lat) for lat in lattices]
        self._constraints = constraints
        self._sink = sink
        self._stop = stop if stop is not None else _NeverStop()
        self._max_results = max_results
        self._progress_interval = max(1, int(progress_interval))

        self._k = len(self._lattices)
        self._groups = constraints.component_groups
        self._below = subtree_sizes(self._lattices)

        self._values: list[float] = [0.0] * self._k
        self._masses: list[float] = [0.0] * len(constraints)
        self._counts: list[int] = [0] * len(constraints)

        self.processed = 0
        self.valid = 0
        self.stored = 0
        self._next_report = self._progress_interval

    @property
    def expected(self) -> int:
        """Leaves in this engine's share of the space."""
        return self._below[0]

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def run(self) -> None:
        """Search the whole space, then post a final progress tick."""
        if self._k:
            self._descend(0, 0.0)
        self._sink.emit_progress(self.processed, self.valid)
        logger.debug(
            "search finished: processed=%d/%d valid=%d stored=%d cancelled=%s",
            self.processed, self.expected, self.valid, self.stored, self.cancelled,
        )

    # ---------------------------------------------------------------- #
    #  Recursion                                                       #
    # ---------------------------------------------------------------- #

    def _advance(self, leaves: int) -> None:
        self.processed += leaves
        if self.processed >= self._next_report:
            self._sink.emit_progress(self.processed, self.valid)
            interval = self._progress_interval
            self._next_report = (self.processed // interval + 1) * interval

    def _descend(self, depth: int, running_sum: float) -> None:
        stop = self._stop
        if stop.is_set():
            return
        if depth == self._k:
            self._visit_leaf(running_sum)
            return

        constraints = self._constraints
        ceiling = constraints.sum_ceiling
        group = self._groups[depth]
        below = self._below[depth + 1]
        masses = self._masses
        counts = self._counts
        values = self._values

        for value in self._lattices[depth]:
            if stop.is_set():
                return
            new_sum = round(running_sum + value, VALUE_DECIMALS)
            if new_sum > ceiling:
                self._advance(below)
                continue

            prev_mass = masses[group]
            prev_count = counts[group]
            if value > 0:
                mass = round(prev_mass + value, VALUE_DECIMALS)
                count = prev_count + 1
                if constraints.prunes(group, mass, count):
                    self._advance(below)
                    continue
                masses[group] = mass
                counts[group] = count

            values[depth] = value
            self._descend(depth + 1, new_sum)
            masses[group] = prev_mass
            counts[group] = prev_count

    def _visit_leaf(self, total: float) -> None:
        constraints = self._constraints
        accepted = constraints.sum_in_bounds(total) and constraints.leaf_accepts(
            self._masses, self._counts
        )
        if accepted:
            self.valid += 1
            if self._max_results is None or self.stored < self._max_results:
                self.stored += 1
                self._sink.emit_row(self._values)
        self._advance(1)
