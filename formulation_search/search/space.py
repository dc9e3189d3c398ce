"""search/space.py - Candidate lattices for each search dimension."""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Sequence

import numpy as np

from ..config import ComponentSpec

# Every externally visible value is rounded to this many decimals.
VALUE_DECIMALS = 6

Lattice = tuple[float, ...]


def round_value(value: float) -> float:
    return round(float(value), VALUE_DECIMALS)


def decimal_places(value: float) -> int:
    """Number of decimals needed to write *value* exactly (``0.25`` → 2)."""
    exponent = Decimal(repr(float(value))).normalize().as_tuple().exponent
    return max(0, -int(exponent))


def build_lattice(spec: ComponentSpec) -> Lattice:
    """Discretise one component onto an integer lattice.

    ``min``, ``max`` and ``step`` are scaled by ``10**d`` (``d`` the largest
    decimal count among them) so that enumeration happens over exact
    integers; each point is then scaled back and rounded.  Repeatedly adding
    a binary ``step`` would drift instead (0.1 + 0.1 + 0.1 != 0.3).

    Returns
    -------
    lattice : tuple of float, never empty
    """
    if spec.fixed is not None:
        return (float(spec.fixed),)

    digits = max(decimal_places(spec.step), decimal_places(spec.min), decimal_places(spec.max))
    scale = 10 ** digits
    lo = round(spec.min * scale)
    hi = round(spec.max * scale)
    stride = max(1, round(spec.step * scale))

    points = np.arange(lo, hi + 1, stride, dtype=np.int64)
    values = np.round(points / scale, VALUE_DECIMALS)
    if values.size == 0:
        return (round_value(spec.min),)
    return tuple(float(v) for v in values)


def build_lattices(components: Sequence[ComponentSpec]) -> list[Lattice]:
    return [build_lattice(c) for c in components]


def total_combinations(lattices: Sequence[Sequence[float]]) -> int:
    """Size of the full Cartesian space (``1`` for no dimensions)."""
    return math.prod(len(lat) for lat in lattices)


def subtree_sizes(lattices: Sequence[Sequence[float]]) -> list[int]:
    """Leaf counts below each depth.

    ``sizes[i]`` is the number of full tuples spanned by dimensions
    ``i .. k-1``; ``sizes[k] == 1``.
    """
    sizes = [1] * (len(lattices) + 1)
    for depth in range(len(lattices) - 1, -1, -1):
        sizes[depth] = sizes[depth + 1] * len(lattices[depth])
    return sizes
