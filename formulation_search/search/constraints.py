"""search/constraints.py - Group and total bounds compiled for the hot loop."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping, Sequence

from ..config import ComponentSpec, GroupConstraint, SearchRequest

_INF = math.inf


@dataclass(frozen=True)
class CompiledGroup:
    """A :class:`GroupConstraint` with open bounds replaced by ±inf.

    The ``*_ceiling`` / ``*_floor`` fields already include the tolerance so
    the search compares plain floats.
    """

    name: str
    mass_ceiling: float  # min(max_mass, fixed_mass) + eps
    count_ceiling: float
    mass_floor: float  # min_mass - eps
    count_floor: float
    fixed_mass: float | None
    epsilon: float

    @classmethod
    def compile(cls, name: str, cfg: GroupConstraint, epsilon: float) -> CompiledGroup:
        ceilings = [v for v in (cfg.max_mass, cfg.fixed_mass) if v is not None]
        return cls(
            name=name,
            mass_ceiling=min(ceilings) + epsilon if ceilings else _INF,
            count_ceiling=cfg.max_count if cfg.max_count is not None else _INF,
            mass_floor=cfg.min_mass - epsilon if cfg.min_mass is not None else -_INF,
            count_floor=cfg.min_count if cfg.min_count is not None else -_INF,
            fixed_mass=cfg.fixed_mass,
            epsilon=epsilon,
        )

    def exceeds(self, mass: float, count: int) -> bool:
        """Partial aggregate already too large; no extension can recover."""
        return mass > self.mass_ceiling or count > self.count_ceiling

    def accepts(self, mass: float, count: int) -> bool:
        """Leaf check, in the order fixed, min mass, min count, max mass, max count."""
        if self.fixed_mass is not None and abs(mass - self.fixed_mass) > self.epsilon:
            return False
        if mass < self.mass_floor:
            return False
        if count < self.count_floor:
            return False
        return not self.exceeds(mass, count)


class ConstraintSet:
    """Total bounds plus per-group rules, addressed by integer group id.

    Group ids are assigned in order of first appearance among the
    components, followed by groups that only appear in the constraint
    mapping (these hold zero mass and zero count at every leaf).
    """

    def __init__(
        self,
        components: Sequence[ComponentSpec],
        groups: Mapping[str, GroupConstraint],
        min_total: float,
        max_total: float,
        epsilon: float,
    ) -> None:
        names: list[str] = []
        for comp in components:
            if comp.group not in names:
                names.append(comp.group)
        for name in groups:
            if name not in names:
                names.append(name)

        self.group_names: tuple[str, ...] = tuple(names)
        self.group_ids: dict[str, int] = {name: i for i, name in enumerate(names)}
        self.component_groups: tuple[int, ...] = tuple(self.group_ids[c.group] for c in components)

        unconstrained = GroupConstraint()
        self.groups: tuple[CompiledGroup, ...] = tuple(
            CompiledGroup.compile(name, groups.get(name, unconstrained), epsilon) for name in names
        )
        # Only constrained groups take part in the leaf check.
        self.checked_groups: tuple[int, ...] = tuple(
            i for i, name in enumerate(names) if not groups.get(name, unconstrained).is_unconstrained
        )

        self.epsilon = epsilon
        self.sum_floor = min_total - epsilon
        self.sum_ceiling = max_total + epsilon

    @classmethod
    def from_request(cls, request: SearchRequest) -> ConstraintSet:
        return cls(
            request.components,
            request.groups,
            request.min_total,
            request.max_total,
            request.epsilon,
        )

    def __len__(self) -> int:
        return len(self.group_names)

    def sum_in_bounds(self, total: float) -> bool:
        return self.sum_floor <= total <= self.sum_ceiling

    def prunes(self, group_id: int, mass: float, count: int) -> bool:
        return self.groups[group_id].exceeds(mass, count)

    def leaf_accepts(self, masses: Sequence[float], counts: Sequence[int]) -> bool:
        for gid in self.checked_groups:
            if not self.groups[gid].accepts(masses[gid], counts[gid]):
                return False
        return True
