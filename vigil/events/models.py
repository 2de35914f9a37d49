"""Domain events that drive invalidation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from vigil.engine.types import Lifecycle


@dataclass(frozen=True)
class AssumptionChanged:
    """An assumption's status or content changed."""
    assumption_id: str

    kind = "assumption_changed"

    @property
    def source_id(self) -> str:
        return self.assumption_id


@dataclass(frozen=True)
class ConstraintChanged:
    constraint_id: str

    kind = "constraint_changed"

    @property
    def source_id(self) -> str:
        return self.constraint_id


@dataclass(frozen=True)
class DependencyChanged:
    """A depended-upon decision changed outside of a rescore."""
    target_decision_id: str

    kind = "dependency_changed"

    @property
    def source_id(self) -> str:
        return self.target_decision_id


@dataclass(frozen=True)
class DecisionRescored:
    """Published after a rescore has been persisted."""

    decision_id: str
    changes_detected: bool
    old_lifecycle: Lifecycle
    new_lifecycle: Lifecycle
    old_health: int
    new_health: int

    kind = "decision_rescored"

    @property
    def source_id(self) -> str:
        return self.decision_id

    @property
    def lifecycle_changed(self) -> bool:
        return self.old_lifecycle is not self.new_lifecycle

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "changes_detected": self.changes_detected,
            "old_lifecycle": self.old_lifecycle.value,
            "new_lifecycle": self.new_lifecycle.value,
            "old_health": self.old_health,
            "new_health": self.new_health,
        }
