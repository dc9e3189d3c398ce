from __future__ import annotations

import threading

from conftest import ListSink

from formulation_search.config import ComponentSpec, GroupConstraint, SearchRequest
from formulation_search.search.constraints import ConstraintSet
from formulation_search.search.engine import SearchEngine
from formulation_search.search.space import build_lattices


def _engine(request: SearchRequest, sink: ListSink, **kwargs) -> SearchEngine:
    return SearchEngine(
        build_lattices(request.components),
        ConstraintSet.from_request(request),
        sink,
        **kwargs,
    )


class _StopAfter:
    """Reports stopped once it has been polled *n* times."""

    def __init__(self, n: int) -> None:
        self.remaining = n

    def is_set(self) -> bool:
        self.remaining -= 1
        return self.remaining < 0


def test_sum_bound_accepts_all_tuples_near_one(halves_request: SearchRequest) -> None:
    sink = ListSink()
    engine = _engine(halves_request, sink)

    engine.run()

    assert sink.rows == [(0.0, 1.0), (0.5, 0.5), (1.0, 0.0)]
    assert engine.valid == 3
    assert engine.stored == 3
    # Pruned subtrees still count toward processed.
    assert engine.processed == engine.expected == 9
    assert sink.progress[-1] == (9, 3)


def test_max_count_forbids_two_nonzero_members() -> None:
    request = SearchRequest(
        components=(
            ComponentSpec("a", "A", 0.0, 1.0, 0.5),
            ComponentSpec("b", "A", 0.0, 1.0, 0.5),
        ),
        groups={"A": GroupConstraint(max_count=1)},
        min_total=0.0,
        max_total=2.0,
    )
    sink = ListSink()

    _engine(request, sink).run()

    assert sink.rows == [(0.0, 0.0), (0.0, 0.5), (0.0, 1.0), (0.5, 0.0), (1.0, 0.0)]
    assert all(not (a > 0 and b > 0) for a, b in sink.rows)


def test_fixed_mass_group_must_match_exactly() -> None:
    request = SearchRequest(
        components=(
            ComponentSpec("a", "A", 0.0, 1.0, 0.25),
            ComponentSpec("b", "A", 0.0, 1.0, 0.25),
            ComponentSpec("c", "B", 0.0, 1.0, 0.25),
        ),
        groups={"A": GroupConstraint(fixed_mass=0.5)},
        min_total=1.0,
        max_total=1.0,
    )
    sink = ListSink()

    _engine(request, sink).run()

    assert sink.rows == [(0.0, 0.5, 0.5), (0.25, 0.25, 0.5), (0.5, 0.0, 0.5)]


def test_zero_values_do_not_count_toward_min_count() -> None:
    request = SearchRequest(
        components=(
            ComponentSpec("a", "A", 0.0, 1.0, 1.0),
            ComponentSpec("b", "A", 0.0, 1.0, 1.0),
        ),
        groups={"A": GroupConstraint(min_count=1)},
        min_total=0.0,
        max_total=2.0,
    )
    sink = ListSink()

    _engine(request, sink).run()

    assert sink.rows == [(0.0, 1.0), (1.0, 0.0), (1.0, 1.0)]


def test_min_mass_and_min_count_combine() -> None:
    request = SearchRequest(
        components=(
            ComponentSpec("a", "A", 0.0, 1.0, 0.5),
            ComponentSpec("b", "A", 0.0, 1.0, 0.5),
        ),
        groups={"A": GroupConstraint(min_count=2, min_mass=0.9)},
        min_total=0.99,
        max_total=1.01,
    )
    sink = ListSink()

    _engine(request, sink).run()

    assert sink.rows == [(0.5, 0.5)]


def test_fixed_component_contributes_its_value() -> None:
    request = SearchRequest(
        components=(
            ComponentSpec("a", "A", fixed=0.25),
            ComponentSpec("b", "B", 0.0, 1.0, 0.25),
        ),
        min_total=1.0,
        max_total=1.0,
    )
    sink = ListSink()

    _engine(request, sink).run()

    assert sink.rows == [(0.25, 0.75)]


def test_storage_cap_keeps_counting_valid_rows(halves_request: SearchRequest) -> None:
    sink = ListSink()
    engine = _engine(halves_request, sink, max_results=1)

    engine.run()

    assert sink.rows == [(0.0, 1.0)]
    assert engine.valid == 3
    assert engine.stored == 1


def test_progress_is_monotonic_and_ends_at_shard_size(tenths_request: SearchRequest) -> None:
    sink = ListSink()
    engine = _engine(tenths_request, sink, progress_interval=50)

    engine.run()

    processed = [p for p, _ in sink.progress]
    assert len(processed) > 2
    assert processed == sorted(processed)
    assert processed[-1] == engine.expected == 11 ** 3
    assert engine.valid == 66


def test_rows_come_out_in_lexicographic_order(tenths_request: SearchRequest) -> None:
    sink = ListSink()

    _engine(tenths_request, sink).run()

    assert sink.rows == sorted(sink.rows)
    assert all(abs(sum(row) - 1.0) <= 1e-6 for row in sink.rows)


def test_preset_stop_flag_visits_nothing(tenths_request: SearchRequest) -> None:
    stop = threading.Event()
    stop.set()
    sink = ListSink()
    engine = _engine(tenths_request, sink, stop=stop)

    engine.run()

    assert engine.cancelled
    assert engine.processed == 0
    assert sink.rows == []
    assert sink.progress == [(0, 0)]


def test_stop_mid_run_unwinds_with_partial_counts(tenths_request: SearchRequest) -> None:
    sink = ListSink()
    engine = _engine(tenths_request, sink, stop=_StopAfter(40))

    engine.run()

    assert engine.cancelled
    assert 0 < engine.processed < engine.expected
    assert len(sink.rows) == engine.stored


def test_rerun_is_idempotent(tenths_request: SearchRequest) -> None:
    first, second = ListSink(), ListSink()

    _engine(tenths_request, first).run()
    _engine(tenths_request, second).run()

    assert first.rows == second.rows
