"""
search/session.py - Coordinator for one parallel search run.

A :class:`SearchSession` validates the request, builds the lattices, cuts
dimension 0 into shards and starts one worker per shard.  Workers talk back
over a single one-way queue; the session drains it, feeds every message to
a :class:`ResultAggregator` and re-yields it to the caller.  Only the
coordinating thread mutates the aggregate counters.
"""

from __future__ import annotations

import logging
import multiprocessing
import queue
import threading
from typing import Callable, Iterator

from ..config import EngineConfig, SearchRequest, validate_request
from ..store.aggregator import ResultAggregator
from .messages import Done, Progress, StartPayload, WorkerFailure, WorkerMessage
from .partition import shard_first_dimension, worker_count
from .space import Lattice, build_lattices, total_combinations
from .worker import run_worker

logger = logging.getLogger(__name__)

_BACKENDS = ("process", "thread")
# Empty polls tolerated after a worker exits without ``Done``; its last
# messages may still be in flight through the queue's pipe.
_DEAD_WORKER_POLLS = 3
_JOIN_TIMEOUT_S = 5.0


class WorkerFailedError(RuntimeError):
    """A worker raised or exited without reporting ``Done``."""


class SearchSession:
    """Run the constrained search across independent workers.

    Usage
    -----
        with SearchSession(request, EngineConfig(max_workers=4)) as session:
            for message in session.events():
                ...
        rows = session.aggregator.to_array()
    """

    def __init__(self, request: SearchRequest, config: EngineConfig | None = None) -> None:
        validate_request(request)
        self.request = request
        self.config = config or EngineConfig()
        if self.config.backend not in _BACKENDS:
            raise ValueError(f"backend must be one of {_BACKENDS}, got {self.config.backend!r}")

        self.lattices: list[Lattice] = build_lattices(request.components)
        self.total_expected = total_combinations(self.lattices)
        n_workers = worker_count(len(self.lattices[0]), self.config.max_workers)
        self.shards = shard_first_dimension(self.lattices[0], n_workers)

        self.aggregator = ResultAggregator(
            request.component_names,
            self.total_expected,
            worker_ids=range(n_workers),
            display_limit=self.config.display_limit,
        )

        if self.config.backend == "process":
            ctx = multiprocessing.get_context()
            self._queue = ctx.Queue()
            self._stops = [ctx.Event() for _ in range(n_workers)]
            self._spawn: Callable[..., object] = ctx.Process
        else:
            self._queue = queue.Queue()
            self._stops = [threading.Event() for _ in range(n_workers)]
            self._spawn = threading.Thread
        self._runners: list = []
        self._dead_polls: dict[int, int] = {}
        self._failed = False

        logger.info(
            "Search space: %d combinations over %d components  lattice sizes=%s",
            self.total_expected,
            len(self.lattices),
            [len(lat) for lat in self.lattices],
        )

    @property
    def n_workers(self) -> int:
        return len(self.shards)

    @property
    def started(self) -> bool:
        return bool(self._runners)

    def payload_for(self, worker_id: int) -> StartPayload:
        return StartPayload(
            components=tuple(self.request.components),
            group_constraints=dict(self.request.groups),
            min_total=self.request.min_total,
            max_total=self.request.max_total,
            ranges=(self.shards[worker_id], *self.lattices[1:]),
            first_values=self.shards[worker_id],
            epsilon=self.request.epsilon,
            max_results=self.request.max_stored_results,
            worker_id=worker_id,
            batch_size=self.config.batch_size,
            progress_interval=self.config.progress_interval,
        )

    # ---------------------------------------------------------------- #
    #  Lifecycle                                                       #
    # ---------------------------------------------------------------- #

    def start(self) -> SearchSession:
        if self.started:
            raise RuntimeError("session already started")
        logger.info(
            "Starting %d %s worker(s)  shard sizes=%s",
            self.n_workers, self.config.backend, [len(s) for s in self.shards],
        )
        for wid in range(self.n_workers):
            runner = self._spawn(
                target=run_worker,
                args=(self.payload_for(wid), self._queue, self._stops[wid]),
                name=f"formulation-search-{wid}",
                daemon=True,
            )
            runner.start()
            self._runners.append(runner)
        return self

    def stop_worker(self, worker_id: int) -> None:
        self._stops[worker_id].set()

    def cancel(self) -> None:
        """Ask every worker to stop; each still reports ``Done``."""
        if not all(stop.is_set() for stop in self._stops):
            logger.info("Cancelling search (%d workers)", self.n_workers)
        for stop in self._stops:
            stop.set()

    def events(self) -> Iterator[WorkerMessage]:
        """Yield worker messages until every worker has reported ``Done``."""
        if not self.started:
            self.start()
        timeout = self.config.poll_timeout_s
        while not self.aggregator.done:
            try:
                message = self._queue.get(timeout=timeout)
            except queue.Empty:
                self._check_workers()
                continue
            self.aggregator.handle(message)
            if isinstance(message, WorkerFailure):
                self._failed = True
                self.cancel()
                raise WorkerFailedError(f"worker {message.worker_id} failed:\n{message.error}")
            yield message
        self.join()

    def wait(self, on_progress: Callable[[ResultAggregator], None] | None = None) -> ResultAggregator:
        """Drain all events, calling *on_progress* on progress and done ticks."""
        for message in self.events():
            if on_progress is not None and isinstance(message, (Progress, Done)):
                on_progress(self.aggregator)
        return self.aggregator

    def join(self, timeout: float | None = None) -> None:
        for runner in self._runners:
            runner.join(timeout)
            if runner.is_alive() and hasattr(runner, "terminate"):
                logger.warning("Terminating unresponsive worker %s", runner.name)
                runner.terminate()
                runner.join(_JOIN_TIMEOUT_S)

    def _check_workers(self) -> None:
        for wid, runner in enumerate(self._runners):
            if runner.is_alive() or self.aggregator.worker_done(wid):
                self._dead_polls.pop(wid, None)
                continue
            polls = self._dead_polls.get(wid, 0) + 1
            self._dead_polls[wid] = polls
            if polls >= _DEAD_WORKER_POLLS:
                self._failed = True
                self.cancel()
                raise WorkerFailedError(
                    f"worker {wid} exited without reporting done "
                    f"(processed={self.aggregator.worker_processed(wid)})"
                )

    # ---------------------------------------------------------------- #
    #  Context manager                                                 #
    # ---------------------------------------------------------------- #

    def __enter__(self) -> SearchSession:
        if not self.started:
            self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.aggregator.done:
            self.join()
            return
        self.cancel()
        if self._failed:
            self.join(_JOIN_TIMEOUT_S)
            return
        # Wait for every worker to acknowledge the stop.
        for _ in self.events():
            pass


def run_search(
    request: SearchRequest,
    config: EngineConfig | None = None,
    on_progress: Callable[[ResultAggregator], None] | None = None,
) -> ResultAggregator:
    """Run a whole search and return the finished aggregator."""
    with SearchSession(request, config) as session:
        aggregator = session.wait(on_progress)
    summary = aggregator.summary()
    logger.info(
        "Search %s: processed=%d/%d  valid=%d  stored=%d",
        "cancelled" if summary.cancelled else "complete",
        summary.processed, summary.total_expected, summary.valid, summary.stored,
    )
    return aggregator
