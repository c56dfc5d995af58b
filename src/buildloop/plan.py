"""Plan file model and helpers.

The plan file is a JSON array of units of work. The loop reads it every
iteration; deferral marking and replanning write it back.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Collection
from pathlib import Path

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

# Keys written even when empty; everything else is omitted at its default
ALWAYS_SERIALIZED = ("id", "description")


class PlanFileError(ValueError):
    """The plan file could not be read, parsed or written."""


class PlanItem(BaseModel):
    """One unit of work in the plan file. Unknown keys are ignored."""

    id: int
    category: str = ""
    command: str = ""
    description: str = ""
    steps: list[str] = Field(default_factory=list)
    expected_output: str = ""
    tested: bool = False
    milestone: str = ""  # Optional milestone this unit belongs to
    milestone_order: int = 0
    deferred: bool = False
    defer_reason: str = ""

    def to_dict(self) -> dict:
        data = self.model_dump()
        return {
            key: value
            for key, value in data.items()
            if key in ALWAYS_SERIALIZED or value not in ("", 0, False, [])
        }


_PLAN_LIST = TypeAdapter(list[PlanItem])


def parse_plan_json(text: str | bytes) -> list[PlanItem]:
    """Parse a JSON array of plan items.

    Raises:
        PlanFileError: If the text is not a valid plan array.
    """
    try:
        return _PLAN_LIST.validate_json(text)
    except ValidationError as e:
        raise PlanFileError(f"invalid plan JSON: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e


def serialize_plan(plans: list[PlanItem]) -> str:
    return json.dumps([p.to_dict() for p in plans], indent=4)


def read_plan(path: Path) -> list[PlanItem]:
    """Read and parse a plan file.

    Raises:
        PlanFileError: If the file is missing, unreadable or malformed.
    """
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise PlanFileError(f"failed to read plan file {path}: {e}") from e

    try:
        return parse_plan_json(data)
    except PlanFileError as e:
        raise PlanFileError(f"failed to parse plan file {path}: {e}") from e


def write_plan(path: Path, plans: list[PlanItem]) -> None:
    """Write plans as 4-space indented JSON.

    Raises:
        PlanFileError: If the file cannot be written.
    """
    try:
        Path(path).write_text(serialize_plan(plans))
    except OSError as e:
        raise PlanFileError(f"failed to write plan file {path}: {e}") from e
    logger.debug("Wrote %d plan item(s) to %s", len(plans), path)


def mark_deferred(plans: list[PlanItem], unit_id: int, reason: str) -> bool:
    """Mark a unit deferred in place. Returns False if the id is unknown."""
    item = get_by_id(plans, unit_id)
    if item is None:
        return False
    item.deferred = True
    item.defer_reason = reason
    return True


def get_by_id(plans: list[PlanItem], unit_id: int) -> PlanItem | None:
    for item in plans:
        if item.id == unit_id:
            return item
    return None


def filter_tested(plans: list[PlanItem], tested: bool) -> list[PlanItem]:
    return [p for p in plans if p.tested == tested]


def filter_deferred(plans: list[PlanItem], deferred: bool) -> list[PlanItem]:
    return [p for p in plans if p.deferred == deferred]


def next_unit(plans: list[PlanItem], exclude: Collection[int] = ()) -> PlanItem | None:
    """First unit that is neither tested nor deferred, ignoring ids in ``exclude``."""
    for item in plans:
        if not item.tested and not item.deferred and item.id not in exclude:
            return item
    return None


def extract_plan_from_output(output: str) -> list[PlanItem]:
    """Pull a plan array out of free-form agent output.

    Takes everything from the first ``[`` to the last ``]`` and validates
    it as a plan.

    Raises:
        PlanFileError: If no array is found or it does not parse.
    """
    start = output.find("[")
    end = output.rfind("]")
    if start == -1 or end <= start:
        raise PlanFileError("could not find JSON array in agent output")

    return parse_plan_json(output[start : end + 1].strip())
