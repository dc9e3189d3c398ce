from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from formulation_search.config import ComponentSpec, GroupConstraint, SearchRequest  # noqa: E402


class ListSink:
    """Collects what an engine emits, copying each row."""

    def __init__(self) -> None:
        self.rows: list[tuple[float, ...]] = []
        self.progress: list[tuple[int, int]] = []

    def emit_row(self, values) -> None:
        self.rows.append(tuple(values))

    def emit_progress(self, processed: int, valid: int) -> None:
        self.progress.append((processed, valid))


class ListOutbox:
    def __init__(self) -> None:
        self.messages: list = []

    def put(self, message) -> None:
        self.messages.append(message)


@pytest.fixture
def halves_request() -> SearchRequest:
    """Two components on 0, 0.5, 1 whose total must land near 1."""
    return SearchRequest(
        components=(
            ComponentSpec("a", "A", 0.0, 1.0, 0.5),
            ComponentSpec("b", "A", 0.0, 1.0, 0.5),
        ),
        groups={"A": GroupConstraint()},
        min_total=0.99,
        max_total=1.01,
    )


@pytest.fixture
def tenths_request() -> SearchRequest:
    """Three components on a 0.1 grid summing to exactly 1 (66 mixtures)."""
    return SearchRequest(
        components=(
            ComponentSpec("hf", "metal", 0.0, 1.0, 0.1),
            ComponentSpec("zr", "metal", 0.0, 1.0, 0.1),
            ComponentSpec("c", "nonmetal", 0.0, 1.0, 0.1),
        ),
        groups={"metal": GroupConstraint(), "nonmetal": GroupConstraint()},
        min_total=1.0,
        max_total=1.0,
    )
