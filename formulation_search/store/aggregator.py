"""store/aggregator.py - Merge worker messages into run totals and row views."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Sequence

import numpy as np
from numpy.typing import NDArray

from ..search.messages import Done, Progress, ResultBatch, WorkerFailure, WorkerMessage

logger = logging.getLogger(__name__)


@dataclass
class _WorkerTally:
    """Latest counters seen from one worker."""

    processed: int = 0
    valid: int = 0
    stored: int = 0
    rows_received: int = 0
    done: bool = False


@dataclass
class RunSummary:
    total_expected: int
    processed: int
    valid: int
    stored: int
    workers: int
    cancelled: bool
    truncated: bool
    per_worker: dict[int, dict[str, int]] = field(default_factory=dict)


class ResultAggregator:
    """Coordinator-side view of a run.

    Keeps two row views: an unbounded export accumulator holding every
    batch received, and a display list capped at ``display_limit`` rows.
    Rows are kept in arrival order (worker-major across workers).
    """

    def __init__(
        self,
        component_names: Sequence[str],
        total_expected: int,
        worker_ids: Sequence[int],
        display_limit: int = 1_000,
    ) -> None:
        self.component_names = list(component_names)
        self.total_expected = int(total_expected)
        self.display_limit = max(0, int(display_limit))

        self._tallies: dict[int, _WorkerTally] = {wid: _WorkerTally() for wid in worker_ids}
        self._export: list[NDArray[np.float64]] = []
        self._display: list[tuple[float, ...]] = []
        self.rows_received = 0
        self.truncated = False
        self._finalised = False

    # ---------------------------------------------------------------- #
    #  Message intake                                                  #
    # ---------------------------------------------------------------- #

    def handle(self, message: WorkerMessage) -> None:
        if isinstance(message, Progress):
            self._on_progress(message)
        elif isinstance(message, ResultBatch):
            self._on_batch(message)
        elif isinstance(message, Done):
            self._on_done(message)
        elif isinstance(message, WorkerFailure):
            # The session raises; nothing to merge.
            logger.error("worker %d failed:\n%s", message.worker_id, message.error)
        else:
            raise TypeError(f"unexpected worker message: {message!r}")

    def _tally(self, worker_id: int) -> _WorkerTally:
        try:
            return self._tallies[worker_id]
        except KeyError:
            raise KeyError(f"message from unknown worker {worker_id}") from None

    def _on_progress(self, msg: Progress) -> None:
        tally = self._tally(msg.worker_id)
        # Queue order between a worker's messages is preserved, but keep the
        # maximum in case a late tick follows the final one.
        tally.processed = max(tally.processed, msg.processed)
        tally.valid = max(tally.valid, msg.valid)

    def _on_batch(self, msg: ResultBatch) -> None:
        tally = self._tally(msg.worker_id)
        matrix = msg.rows.reshape(msg.row_count, len(self.component_names))
        tally.rows_received += msg.row_count
        self.rows_received += msg.row_count
        self._export.append(matrix)

        room = self.display_limit - len(self._display)
        if room > 0:
            self._display.extend(tuple(float(v) for v in row) for row in matrix[:room])
        if self.rows_received > self.display_limit:
            self.truncated = True

    def _on_done(self, msg: Done) -> None:
        tally = self._tally(msg.worker_id)
        tally.processed = msg.processed
        tally.valid = msg.valid
        tally.stored = msg.stored
        tally.done = True
        if self.done:
            self._finalised = True
            logger.debug("all %d workers reported done", len(self._tallies))

    # ---------------------------------------------------------------- #
    #  Totals                                                          #
    # ---------------------------------------------------------------- #

    @property
    def done(self) -> bool:
        return all(t.done for t in self._tallies.values())

    def worker_done(self, worker_id: int) -> bool:
        return self._tally(worker_id).done

    def worker_processed(self, worker_id: int) -> int:
        return self._tally(worker_id).processed

    @property
    def total_processed(self) -> int:
        return sum(t.processed for t in self._tallies.values())

    @property
    def total_valid(self) -> int:
        return sum(t.valid for t in self._tallies.values())

    @property
    def total_stored(self) -> int:
        return self.rows_received

    @property
    def progress_percent(self) -> float:
        if self._finalised:
            return 100.0
        if self.total_expected <= 0:
            return 0.0
        return min(100.0, 100.0 * self.total_processed / self.total_expected)

    @property
    def cancelled(self) -> bool:
        """Finished early: fewer leaves accounted for than the space holds."""
        return self.done and self.total_processed < self.total_expected

    # ---------------------------------------------------------------- #
    #  Row views                                                       #
    # ---------------------------------------------------------------- #

    @property
    def display_rows(self) -> list[tuple[float, ...]]:
        return list(self._display)

    def iter_rows(self) -> Iterator[tuple[float, ...]]:
        """Every stored row in arrival order."""
        for matrix in self._export:
            for row in matrix:
                yield tuple(float(v) for v in row)

    def to_array(self) -> NDArray[np.float64]:
        if not self._export:
            return np.empty((0, len(self.component_names)), dtype=np.float64)
        return np.vstack(self._export)

    def summary(self) -> RunSummary:
        return RunSummary(
            total_expected=self.total_expected,
            processed=self.total_processed,
            valid=self.total_valid,
            stored=self.total_stored,
            workers=len(self._tallies),
            cancelled=self.cancelled,
            truncated=self.truncated,
            per_worker={
                wid: {"processed": t.processed, "valid": t.valid, "stored": t.stored}
                for wid, t in sorted(self._tallies.items())
            },
        )
