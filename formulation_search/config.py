"""Configuration dataclasses for the formulation search pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Mapping

# Numeric tolerance for sum and mass comparisons.
DEFAULT_EPSILON = 1e-6


class RequestValidationError(ValueError):
    """Raised before any worker starts when a request cannot be searched."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("Invalid search request: " + "; ".join(self.problems))


@dataclass(frozen=True)
class ComponentSpec:
    """One search dimension.

    ``fixed`` short-circuits discretisation: the component then contributes
    exactly that value and ``min``/``max``/``step`` are ignored.
    """

    name: str
    group: str
    min: float = 0.0
    max: float = 1.0
    step: float = 0.1
    fixed: float | None = None

    @property
    def is_fixed(self) -> bool:
        return self.fixed is not None


@dataclass(frozen=True)
class GroupConstraint:
    """Aggregate bounds for the components sharing a group (``None`` = open)."""

    min_mass: float | None = None
    max_mass: float | None = None
    fixed_mass: float | None = None
    min_count: int | None = None
    max_count: int | None = None

    @property
    def is_unconstrained(self) -> bool:
        return all(
            v is None
            for v in (self.min_mass, self.max_mass, self.fixed_mass, self.min_count, self.max_count)
        )


@dataclass(frozen=True)
class SearchRequest:
    """Everything the engine needs for one run; immutable once built."""

    components: tuple[ComponentSpec, ...]
    groups: Mapping[str, GroupConstraint] = field(default_factory=dict)
    min_total: float = 1.0
    max_total: float = 1.0
    epsilon: float = DEFAULT_EPSILON
    # Per-worker cap on retained rows; valid rows beyond it are only counted.
    max_stored_results: int | None = None

    @property
    def component_names(self) -> list[str]:
        return [c.name for c in self.components]


@dataclass(frozen=True)
class EngineConfig:
    """Worker fan-out, batching and display knobs."""

    batch_size: int = 200
    progress_interval: int = 5_000
    display_limit: int = 1_000
    max_workers: int | None = None  # None → os.cpu_count()
    backend: str = "process"  # "process" | "thread"
    poll_timeout_s: float = 0.1


@dataclass
class RunConfig:
    """Top-level knobs for a single CLI invocation."""

    request: SearchRequest
    engine: EngineConfig = field(default_factory=EngineConfig)
    output_path: str = "combinations.csv"
    units: str = "ratio"  # "ratio" | "percent"


# ------------------------------------------------------------------ #
#  Validation                                                         #
# ------------------------------------------------------------------ #

def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _check_component(idx: int, comp: ComponentSpec) -> list[str]:
    label = f"component #{idx + 1} ({comp.name or '?'})"
    problems: list[str] = []
    if not comp.name or not comp.name.strip():
        problems.append(f"{label}: name is blank")
    if not comp.group or not comp.group.strip():
        problems.append(f"{label}: group is blank")

    if comp.is_fixed:
        if not _is_number(comp.fixed):
            problems.append(f"{label}: fixed value must be a finite number")
        elif comp.fixed < 0:
            problems.append(f"{label}: fixed value must be non-negative")
        return problems

    if not _is_number(comp.min) or not _is_number(comp.max):
        problems.append(f"{label}: min and max are required")
        return problems
    if not _is_number(comp.step) or comp.step <= 0:
        problems.append(f"{label}: step must be positive")
    if comp.min < 0:
        problems.append(f"{label}: min must be non-negative")
    if comp.min > comp.max:
        problems.append(f"{label}: min ({comp.min:g}) exceeds max ({comp.max:g})")
    return problems


def _check_group(name: str, cfg: GroupConstraint) -> list[str]:
    label = f"group {name}"
    problems: list[str] = []
    for attr in ("min_mass", "max_mass", "fixed_mass"):
        value = getattr(cfg, attr)
        if value is None:
            continue
        if not _is_number(value):
            problems.append(f"{label}: {attr} must be a finite number")
        elif value < 0:
            problems.append(f"{label}: {attr} must be non-negative")
    for attr in ("min_count", "max_count"):
        value = getattr(cfg, attr)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            problems.append(f"{label}: {attr} must be a non-negative integer")
    if problems:
        return problems
    if cfg.min_mass is not None and cfg.max_mass is not None and cfg.min_mass > cfg.max_mass:
        problems.append(f"{label}: min_mass exceeds max_mass")
    if cfg.min_count is not None and cfg.max_count is not None and cfg.min_count > cfg.max_count:
        problems.append(f"{label}: min_count exceeds max_count")
    return problems


def validate_request(request: SearchRequest) -> None:
    """Raise :class:`RequestValidationError` listing every problem found."""
    problems: list[str] = []
    if not request.components:
        problems.append("at least one component is required")
    for idx, comp in enumerate(request.components):
        problems.extend(_check_component(idx, comp))
    for name, cfg in request.groups.items():
        problems.extend(_check_group(name, cfg))

    if not _is_number(request.min_total) or not _is_number(request.max_total):
        problems.append("min_total and max_total are required")
    elif request.min_total > request.max_total:
        problems.append(
            f"min_total ({request.min_total:g}) exceeds max_total ({request.max_total:g})"
        )
    if not _is_number(request.epsilon) or request.epsilon < 0:
        problems.append("epsilon must be a non-negative number")
    if request.max_stored_results is not None and request.max_stored_results <= 0:
        problems.append("max_stored_results must be positive")

    if problems:
        raise RequestValidationError(problems)
