"""Domain events and the in-process event bus."""

from vigil.events.bus import EventBus
from vigil.events.models import (
    AssumptionChanged,
    ConstraintChanged,
    DecisionRescored,
    DependencyChanged,
)

__all__ = [
    "AssumptionChanged",
    "ConstraintChanged",
    "DecisionRescored",
    "DependencyChanged",
    "EventBus",
]
