"""Structural diff between two plans."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..plan import PlanItem


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


@dataclass
class PlanChange:
    """A single field-level modification to a unit."""

    id: int
    field: str
    old_value: str
    new_value: str


@dataclass
class PlanDiff:
    added: list[PlanItem] = field(default_factory=list)
    removed: list[PlanItem] = field(default_factory=list)
    modified: list[PlanChange] = field(default_factory=list)

    @property
    def added_ids(self) -> list[int]:
        return [p.id for p in self.added]

    @property
    def removed_ids(self) -> list[int]:
        return [p.id for p in self.removed]

    @property
    def modified_ids(self) -> list[int]:
        return sorted({c.id for c in self.modified})

    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)

    def summary(self) -> str:
        """Human-readable summary of the changes."""
        if self.is_empty():
            return "No changes detected"

        lines = ["Plan Changes:"]
        if self.added:
            lines.append(f"  + Added: {len(self.added)} feature(s)")
            lines.extend(f"    - #{p.id}: {truncate(p.description, 60)}" for p in self.added)
        if self.removed:
            lines.append(f"  - Removed: {len(self.removed)} feature(s)")
            lines.extend(f"    - #{p.id}: {truncate(p.description, 60)}" for p in self.removed)
        if self.modified:
            lines.append(f"  ~ Modified: {len(self.modified)} change(s)")
            lines.extend(
                f"    - #{c.id}.{c.field}: {c.old_value} -> {c.new_value}" for c in self.modified
            )
        return "\n".join(lines)


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


def compare_items(old: PlanItem, new: PlanItem) -> list[PlanChange]:
    """Field-level changes between two versions of the same unit."""
    changes = []

    def add(name: str, old_value: str, new_value: str) -> None:
        changes.append(PlanChange(id=old.id, field=name, old_value=old_value, new_value=new_value))

    if old.description != new.description:
        add("description", old.description, new.description)
    if old.category != new.category:
        add("category", old.category, new.category)
    if old.tested != new.tested:
        add("tested", _bool_text(old.tested), _bool_text(new.tested))
    if old.deferred != new.deferred:
        add("deferred", _bool_text(old.deferred), _bool_text(new.deferred))
    if old.steps != new.steps:
        add("steps", f"{len(old.steps)} steps", f"{len(new.steps)} steps")
    if old.expected_output != new.expected_output:
        add("expected_output", truncate(old.expected_output, 50), truncate(new.expected_output, 50))
    if old.milestone != new.milestone:
        add("milestone", old.milestone, new.milestone)

    return changes


def compute_diff(old_plans: list[PlanItem], new_plans: list[PlanItem]) -> PlanDiff:
    """Compute added, removed and modified units keyed by id."""
    diff = PlanDiff()
    old_by_id = {p.id: p for p in old_plans}
    new_ids = {p.id for p in new_plans}

    for item in new_plans:
        previous = old_by_id.get(item.id)
        if previous is None:
            diff.added.append(item)
        else:
            diff.modified.extend(compare_items(previous, item))

    diff.removed.extend(p for p in old_plans if p.id not in new_ids)
    return diff
