"""Tests for the plan file model."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from buildloop.plan import (
    PlanFileError,
    PlanItem,
    extract_plan_from_output,
    filter_deferred,
    filter_tested,
    get_by_id,
    mark_deferred,
    next_unit,
    parse_plan_json,
    read_plan,
    serialize_plan,
    write_plan,
)

SAMPLE = [
    {"id": 1, "category": "core", "description": "Parse config", "steps": ["a"], "tested": True},
    {"id": 2, "category": "core", "description": "Load plan", "steps": ["a", "b"]},
    {"id": 3, "description": "Render summary", "deferred": True, "defer_reason": "deadline"},
    {"id": 4, "description": "Write docs", "extra_field": "ignored"},
]


@pytest.fixture
def plan_file(tmp_path: Path) -> Path:
    path = tmp_path / "plan.json"
    path.write_text(json.dumps(SAMPLE))
    return path


class TestParsePlan:
    """Tests for parsing plan JSON."""

    def test_parse(self) -> None:
        """A JSON array parses into plan items."""
        plans = parse_plan_json(json.dumps(SAMPLE))
        assert [p.id for p in plans] == [1, 2, 3, 4]
        assert plans[0].tested is True
        assert plans[1].steps == ["a", "b"]
        assert plans[2].defer_reason == "deadline"

    def test_unknown_keys_ignored(self) -> None:
        """Unknown keys do not fail parsing."""
        plans = parse_plan_json(json.dumps(SAMPLE))
        assert not hasattr(plans[3], "extra_field")

    @pytest.mark.parametrize("text", ["not json", '{"id": 1}', '[{"description": "no id"}]'])
    def test_invalid(self, text: str) -> None:
        """Malformed plans raise PlanFileError."""
        with pytest.raises(PlanFileError):
            parse_plan_json(text)


class TestReadWritePlan:
    """Tests for reading and writing plan files."""

    def test_read(self, plan_file: Path) -> None:
        """Plan files are read from disk."""
        assert len(read_plan(plan_file)) == 4

    def test_read_missing(self, tmp_path: Path) -> None:
        """A missing file raises PlanFileError naming the path."""
        with pytest.raises(PlanFileError, match="failed to read plan file"):
            read_plan(tmp_path / "nope.json")

    def test_read_malformed(self, tmp_path: Path) -> None:
        """Malformed content raises PlanFileError."""
        path = tmp_path / "plan.json"
        path.write_text("[{]")
        with pytest.raises(PlanFileError, match="failed to parse plan file"):
            read_plan(path)

    def test_write_uses_four_space_indent(self, tmp_path: Path) -> None:
        """Plans are written as indented JSON without empty fields."""
        path = tmp_path / "plan.json"
        write_plan(path, [PlanItem(id=1, description="x")])
        text = path.read_text()
        assert text == '[\n    {\n        "id": 1,\n        "description": "x"\n    }\n]'

    def test_round_trip_keeps_fields(self, plan_file: Path) -> None:
        """Writing then reading keeps every known field."""
        plans = read_plan(plan_file)
        write_plan(plan_file, plans)
        assert read_plan(plan_file) == plans

    def test_write_failure(self, tmp_path: Path) -> None:
        """Unwritable paths raise PlanFileError."""
        with pytest.raises(PlanFileError, match="failed to write plan file"):
            write_plan(tmp_path / "missing" / "plan.json", [])


class TestPlanHelpers:
    """Tests for plan query helpers."""

    def test_next_unit_skips_tested_and_deferred(self, plan_file: Path) -> None:
        """The next unit is the first untested, undeferred one."""
        plans = read_plan(plan_file)
        unit = next_unit(plans)
        assert unit is not None
        assert unit.id == 2

    def test_next_unit_none_left(self) -> None:
        """No unit is returned when all are done."""
        assert next_unit([PlanItem(id=1, tested=True)]) is None

    def test_mark_deferred(self, plan_file: Path) -> None:
        """Marking sets the flag and reason; unknown ids return False."""
        plans = read_plan(plan_file)
        assert mark_deferred(plans, 2, "iteration_limit") is True
        item = get_by_id(plans, 2)
        assert item is not None
        assert item.deferred is True
        assert item.defer_reason == "iteration_limit"
        assert mark_deferred(plans, 99, "x") is False

    def test_filters(self, plan_file: Path) -> None:
        """Filters select by tested and deferred flags."""
        plans = read_plan(plan_file)
        assert [p.id for p in filter_tested(plans, True)] == [1]
        assert [p.id for p in filter_deferred(plans, True)] == [3]
        assert len(filter_tested(plans, False)) == 3

    def test_serialize_omits_defaults(self) -> None:
        """Default-valued optional fields are left out."""
        data = json.loads(serialize_plan([PlanItem(id=5, description="d", tested=True)]))
        assert data == [{"id": 5, "description": "d", "tested": True}]


class TestExtractPlanFromOutput:
    """Tests for extract_plan_from_output."""

    def test_extract_from_prose(self) -> None:
        """The array is found inside surrounding text."""
        output = 'Here is the plan:\n[{"id": 1, "description": "a"}]\nDone.'
        plans = extract_plan_from_output(output)
        assert [p.id for p in plans] == [1]

    def test_no_array(self) -> None:
        """Output without an array raises PlanFileError."""
        with pytest.raises(PlanFileError, match="could not find JSON array"):
            extract_plan_from_output("no plan here")

    def test_invalid_array(self) -> None:
        """An array that is not a plan raises PlanFileError."""
        with pytest.raises(PlanFileError):
            extract_plan_from_output("[1, 2")
