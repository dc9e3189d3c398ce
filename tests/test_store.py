from __future__ import annotations

import csv
import json
from pathlib import Path

import pytest

from formulation_search.config import ComponentSpec, GroupConstraint, RequestValidationError, SearchRequest
from formulation_search.store.export import format_row, write_csv
from formulation_search.store.setup_file import load_setup, request_from_dict, save_setup


def test_setup_round_trip(tmp_path: Path) -> None:
    request = SearchRequest(
        components=(
            ComponentSpec("hf", "metal", 0.0, 0.6, 0.05),
            ComponentSpec("c", "nonmetal", fixed=0.4),
        ),
        groups={
            "metal": GroupConstraint(max_count=1, max_mass=0.6),
            "nonmetal": GroupConstraint(),
        },
        min_total=0.99,
        max_total=1.01,
        max_stored_results=500,
    )
    path = tmp_path / "setup.json"

    save_setup(path, request)

    assert load_setup(path) == request


def test_missing_setup_returns_none(tmp_path: Path) -> None:
    assert load_setup(tmp_path / "absent.json") is None


def test_top_level_step_is_component_default() -> None:
    request = request_from_dict(
        {
            "step": 0.25,
            "components": [
                {"name": "a", "group": "A", "min": 0, "max": 1},
                {"name": "b", "group": "A", "min": 0, "max": 1, "step": 0.5},
            ],
        }
    )

    assert [c.step for c in request.components] == [0.25, 0.5]


def test_groups_follow_components() -> None:
    request = request_from_dict(
        {
            "components": [{"name": "a", "group": "A"}, {"name": "b", "group": "B"}],
            "groups": {"A": {"min_count": "1", "max_mass": ""}, "Z": {"max_count": 2}},
        }
    )

    assert set(request.groups) == {"A", "B"}
    assert request.groups["A"] == GroupConstraint(min_count=1)
    assert request.groups["B"].is_unconstrained


def test_unreadable_fields_reported_together() -> None:
    with pytest.raises(RequestValidationError) as excinfo:
        request_from_dict(
            {
                "components": [
                    {"name": "a", "group": "A", "min": None, "max": 1},
                    {"name": "b", "group": "B", "min": 0, "max": "lots"},
                ],
                "min_total": "one",
            }
        )

    problems = excinfo.value.problems
    assert any("(a)" in p and "min is required" in p for p in problems)
    assert any("(b)" in p and "max must be a number" in p for p in problems)
    assert any("min_total" in p for p in problems)


def test_fractional_counts_rejected() -> None:
    with pytest.raises(RequestValidationError) as excinfo:
        request_from_dict(
            {
                "components": [{"name": "a", "group": "A"}],
                "groups": {"A": {"max_count": 1.7}},
            }
        )

    assert excinfo.value.problems == ["group A: max_count must be a non-negative integer, got 1.7"]


def test_integral_float_counts_accepted() -> None:
    request = request_from_dict(
        {
            "components": [{"name": "a", "group": "A"}],
            "groups": {"A": {"max_count": 2.0}},
            "max_stored_results": "50",
        }
    )

    assert request.groups["A"].max_count == 2
    assert isinstance(request.groups["A"].max_count, int)
    assert request.max_stored_results == 50


def test_invalid_json_is_validation_error(tmp_path: Path) -> None:
    path = tmp_path / "setup.json"
    path.write_text("{not json")

    with pytest.raises(RequestValidationError, match="not valid JSON"):
        load_setup(path)


def test_csv_has_name_header_and_rows(tmp_path: Path) -> None:
    path = tmp_path / "out.csv"

    n = write_csv(path, ["hf", "c"], [(0.6, 0.4), (0.35, 0.65)])

    assert n == 2
    with path.open(newline="") as fh:
        assert list(csv.reader(fh)) == [["hf", "c"], ["0.6", "0.4"], ["0.35", "0.65"]]


def test_percent_units_scale_at_export_only() -> None:
    assert format_row([0.5, 0.123456], units="percent") == ["50", "12.3456"]
    assert format_row([0.1, 0.2]) == ["0.1", "0.2"]
    with pytest.raises(ValueError):
        format_row([0.1], units="permille")


def test_setup_json_is_readable(tmp_path: Path) -> None:
    path = tmp_path / "setup.json"
    save_setup(path, SearchRequest(components=(ComponentSpec("a", "A"),)))

    data = json.loads(path.read_text())

    assert data["components"][0]["name"] == "a"
    assert data["groups"] == {}
