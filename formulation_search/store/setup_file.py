"""store/setup_file.py - Save / restore the last-used search setup."""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any

from ..config import (
    DEFAULT_EPSILON,
    ComponentSpec,
    GroupConstraint,
    RequestValidationError,
    SearchRequest,
)

logger = logging.getLogger(__name__)

_GROUP_FIELDS = ("min_mass", "max_mass", "fixed_mass", "min_count", "max_count")
_DEFAULT_STEP = 0.1


class _FieldReader:
    """Coerces raw JSON fields, recording a problem instead of raising."""

    def __init__(self) -> None:
        self.problems: list[str] = []

    def number(self, raw: dict[str, Any], key: str, default: float, label: str) -> float:
        value = raw.get(key, default)
        if value is None or value == "":
            self.problems.append(f"{label}: {key} is required")
            return math.nan
        return self._to_float(value, key, label)

    def opt_number(self, raw: dict[str, Any], key: str, label: str) -> float | None:
        value = raw.get(key)
        if value is None or value == "":
            return None
        return self._to_float(value, key, label)

    def opt_count(self, raw: dict[str, Any], key: str, label: str) -> int | None:
        value = raw.get(key)
        if value is None or value == "":
            return None
        number = None if isinstance(value, bool) else self._to_float(value, key, label, report=False)
        if number is None or not number.is_integer() or number < 0:
            self.problems.append(f"{label}: {key} must be a non-negative integer, got {value!r}")
            return None
        return int(number)

    def _to_float(self, value: Any, key: str, label: str, report: bool = True) -> float | None:
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = math.nan
        if math.isfinite(number):
            return number
        if report:
            self.problems.append(f"{label}: {key} must be a number, got {value!r}")
            return math.nan
        return None


def request_to_dict(request: SearchRequest) -> dict[str, Any]:
    components = []
    for c in request.components:
        entry: dict[str, Any] = {"name": c.name, "group": c.group, "min": c.min, "max": c.max, "step": c.step}
        if c.fixed is not None:
            entry["fixed"] = c.fixed
        components.append(entry)
    return {
        "components": components,
        "groups": {
            name: {f: getattr(cfg, f) for f in _GROUP_FIELDS}
            for name, cfg in request.groups.items()
        },
        "min_total": request.min_total,
        "max_total": request.max_total,
        "epsilon": request.epsilon,
        "max_stored_results": request.max_stored_results,
    }


def request_from_dict(data: dict[str, Any]) -> SearchRequest:
    """Build a request from setup JSON.

    A top-level ``step`` is the default for components without their own.
    Every group used by a component gets an entry (unconstrained if not
    configured); configured groups no component uses are dropped.  Fields
    that cannot be read are reported together as one
    :class:`RequestValidationError`.
    """
    if not isinstance(data, dict):
        raise RequestValidationError(["setup must be a JSON object"])
    reader = _FieldReader()
    default_step = reader.number(data, "step", _DEFAULT_STEP, "setup")

    components: list[ComponentSpec] = []
    for idx, raw in enumerate(data.get("components") or []):
        if not isinstance(raw, dict):
            reader.problems.append(f"component #{idx + 1}: expected an object")
            continue
        label = f"component #{idx + 1} ({raw.get('name') or '?'})"
        fixed = reader.opt_number(raw, "fixed", label)
        if fixed is None:
            lo = reader.number(raw, "min", 0.0, label)
            hi = reader.number(raw, "max", 1.0, label)
            step = reader.number(raw, "step", default_step, label)
        else:
            lo = reader.opt_number(raw, "min", label) or 0.0
            hi = reader.opt_number(raw, "max", label)
            hi = 1.0 if hi is None else hi
            step = reader.opt_number(raw, "step", label) or default_step
        components.append(
            ComponentSpec(
                name=str(raw.get("name") or ""),
                group=str(raw.get("group", "A")),
                min=lo,
                max=hi,
                step=step,
                fixed=fixed,
            )
        )

    raw_groups = data.get("groups") or {}
    if not isinstance(raw_groups, dict):
        reader.problems.append("groups must be an object keyed by group name")
        raw_groups = {}
    groups: dict[str, GroupConstraint] = {}
    for comp in components:
        if comp.group in groups:
            continue
        raw = raw_groups.get(comp.group) or {}
        label = f"group {comp.group}"
        groups[comp.group] = GroupConstraint(
            min_mass=reader.opt_number(raw, "min_mass", label),
            max_mass=reader.opt_number(raw, "max_mass", label),
            fixed_mass=reader.opt_number(raw, "fixed_mass", label),
            min_count=reader.opt_count(raw, "min_count", label),
            max_count=reader.opt_count(raw, "max_count", label),
        )
    dropped = sorted(set(raw_groups) - set(groups))
    if dropped:
        logger.info("Dropping constraints for unused groups: %s", dropped)

    min_total = reader.number(data, "min_total", 1.0, "setup")
    max_total = reader.number(data, "max_total", 1.0, "setup")
    epsilon = reader.number(data, "epsilon", DEFAULT_EPSILON, "setup")
    max_stored = reader.opt_count(data, "max_stored_results", "setup")

    if reader.problems:
        raise RequestValidationError(reader.problems)
    return SearchRequest(
        components=tuple(components),
        groups=groups,
        min_total=min_total,
        max_total=max_total,
        epsilon=epsilon,
        max_stored_results=max_stored,
    )


def save_setup(path: str | Path, request: SearchRequest) -> None:
    path = Path(path)
    path.write_text(json.dumps(request_to_dict(request), indent=2))
    logger.info("Setup saved → %s  (%d components)", path, len(request.components))


def load_setup(path: str | Path) -> SearchRequest | None:
    """Read a setup file; ``None`` when it does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise RequestValidationError(
            [f"{path}: not valid JSON ({exc.msg} at line {exc.lineno})"]
        ) from exc
    request = request_from_dict(data)
    logger.info("Setup loaded ← %s  (%d components)", path, len(request.components))
    return request
