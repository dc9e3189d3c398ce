"""search/worker.py - Worker entry point and batching row sink."""

from __future__ import annotations

import logging
import multiprocessing
import signal
import threading
import traceback
from typing import Protocol, Sequence

import numpy as np

from .constraints import ConstraintSet
from .engine import SearchEngine, StopFlag
from .messages import Done, Progress, ResultBatch, StartPayload, WorkerFailure, WorkerMessage

logger = logging.getLogger(__name__)


class Outbox(Protocol):
    def put(self, message: WorkerMessage) -> None: ...


class BatchingSink:
    """Packs accepted rows into flat float64 buffers of ``batch_size`` rows.

    A full buffer is handed to the outbox as a :class:`ResultBatch` and a
    fresh one is allocated; the sink keeps no reference to what it sent.
    """

    def __init__(self, worker_id: int, row_size: int, outbox: Outbox, batch_size: int = 200) -> None:
        self.worker_id = worker_id
        self.row_size = row_size
        self.batch_size = max(1, int(batch_size))
        self._outbox = outbox
        self._buffer = self._allocate()
        self._rows = 0
        self.batches_sent = 0

    def _allocate(self) -> np.ndarray:
        return np.empty(self.batch_size * self.row_size, dtype=np.float64)

    def emit_row(self, values: Sequence[float]) -> None:
        start = self._rows * self.row_size
        self._buffer[start:start + self.row_size] = values
        self._rows += 1
        if self._rows >= self.batch_size:
            self.flush()

    def emit_progress(self, processed: int, valid: int) -> None:
        self._outbox.put(Progress(self.worker_id, processed, valid))

    def flush(self) -> None:
        if self._rows == 0:
            return
        rows = self._buffer[: self._rows * self.row_size]
        self._outbox.put(ResultBatch(self.worker_id, rows, self._rows))
        self.batches_sent += 1
        self._buffer = self._allocate()
        self._rows = 0


def run_worker(payload: StartPayload, outbox: Outbox, stop: StopFlag) -> None:
    """Search one shard and post ``Progress``/``ResultBatch``/``Done``.

    Always ends with exactly one ``Done`` (or a ``WorkerFailure`` if the
    search itself raised).
    """
    worker_id = payload.worker_id
    in_child = multiprocessing.parent_process() is not None
    if in_child and threading.current_thread() is threading.main_thread():
        # Ctrl-C reaches the whole process group; the coordinator turns it
        # into a stop request instead.
        signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        constraints = ConstraintSet(
            payload.components,
            payload.group_constraints,
            payload.min_total,
            payload.max_total,
            payload.epsilon,
        )
        sink = BatchingSink(worker_id, len(payload.components), outbox, payload.batch_size)
        lattices = [payload.first_values, *payload.ranges[1:]]
        engine = SearchEngine(
            lattices,
            constraints,
            sink,
            stop=stop,
            max_results=payload.max_results,
            progress_interval=payload.progress_interval,
        )
        logger.debug(
            "worker %d: shard of %d first values, %d leaves",
            worker_id, len(payload.first_values), engine.expected,
        )
        engine.run()
        sink.flush()
        logger.debug(
            "worker %d: sent %d batches, stored %d rows", worker_id, sink.batches_sent, engine.stored
        )
    except Exception:
        logger.exception("worker %d failed", worker_id)
        outbox.put(WorkerFailure(worker_id, traceback.format_exc()))
        return

    if engine.cancelled:
        logger.info(
            "worker %d stopped after %d/%d leaves", worker_id, engine.processed, engine.expected
        )
    outbox.put(Done(worker_id, engine.processed, engine.valid, engine.stored))
