"""Invalidation Propagator.

Turns domain events into dirty flags one hop away from the change:

  AssumptionChanged   -> decisions linked to the assumption
  ConstraintChanged   -> decisions linked to the constraint
  DependencyChanged   -> direct dependents of the target
  DecisionRescored    -> direct dependents, only if the verdict changed

Marking is a single conditional bulk write that skips RETIRED decisions.
The propagator never walks the graph itself: a dependent is rescored by a
later orchestrator call, and only a *changed* verdict propagates another
hop, so cascades stop on any finite graph, cycles included.

Lookup and write failures are logged and reported as zero marked.  A
failed propagation leaves dependents stale until the next sweep.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from vigil.events.models import (
    AssumptionChanged,
    ConstraintChanged,
    DecisionRescored,
    DependencyChanged,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PropagationReport:
    """What a single handled event did."""

    event_kind: str
    source_id: str
    affected: tuple[str, ...] = ()
    marked: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_kind": self.event_kind,
            "source_id": self.source_id,
            "affected": list(self.affected),
            "marked": self.marked,
            "error": self.error,
        }


class InvalidationPropagator:
    """Marks decisions affected by a change as needing evaluation.

    Usage::

        propagator = InvalidationPropagator(gateway)
        propagator.register(bus)
        bus.publish(AssumptionChanged("a-1"))
    """

    def __init__(self, gateway: Any) -> None:
        self.gateway = gateway
        self.reports: list[PropagationReport] = []

    def register(self, bus: Any) -> None:
        bus.subscribe(AssumptionChanged, self.on_assumption_changed)
        bus.subscribe(ConstraintChanged, self.on_constraint_changed)
        bus.subscribe(DependencyChanged, self.on_dependency_changed)
        bus.subscribe(DecisionRescored, self.on_decision_rescored)

    # -- event handlers -----------------------------------------------------

    def on_assumption_changed(self, event: AssumptionChanged) -> PropagationReport:
        return self._propagate(
            event.kind, event.assumption_id, self.gateway.get_decisions_for_assumption
        )

    def on_constraint_changed(self, event: ConstraintChanged) -> PropagationReport:
        return self._propagate(
            event.kind, event.constraint_id, self.gateway.get_decisions_for_constraint
        )

    def on_dependency_changed(self, event: DependencyChanged) -> PropagationReport:
        return self._propagate(
            event.kind, event.target_decision_id, self.gateway.get_dependents
        )

    def on_decision_rescored(self, event: DecisionRescored) -> PropagationReport:
        if not event.changes_detected:
            logger.debug("Rescore of %s changed nothing; not propagating", event.decision_id)
            return self._record(PropagationReport(event.kind, event.decision_id))
        return self._propagate(event.kind, event.decision_id, self.gateway.get_dependents)

    # -- manual entry point -------------------------------------------------

    def mark_for_evaluation(self, decision_ids: Iterable[str], reason: str = "manual") -> int:
        """Mark ``decision_ids`` dirty directly. Returns the number marked."""
        ids = tuple(dict.fromkeys(decision_ids))
        report = self._mark(reason, ",".join(ids), ids)
        return report.marked

    # -- internals ----------------------------------------------------------

    def _propagate(
        self,
        kind: str,
        source_id: str,
        lookup: Callable[[str], list[str]],
    ) -> PropagationReport:
        try:
            affected = tuple(lookup(source_id))
        except Exception as e:
            logger.error("Propagation lookup for %s %s failed: %s", kind, source_id, e)
            return self._record(PropagationReport(kind, source_id, error=str(e)))
        return self._mark(kind, source_id, affected)

    def _mark(self, kind: str, source_id: str, affected: tuple[str, ...]) -> PropagationReport:
        if not affected:
            return self._record(PropagationReport(kind, source_id))
        try:
            marked = self.gateway.mark_dirty(affected)
        except Exception as e:
            logger.error(
                "Marking %d decision(s) for %s %s failed: %s", len(affected), kind, source_id, e
            )
            return self._record(PropagationReport(kind, source_id, affected, 0, str(e)))

        logger.info(
            "%s %s: marked %d of %d affected decision(s)", kind, source_id, marked, len(affected)
        )
        return self._record(PropagationReport(kind, source_id, affected, marked))

    def _record(self, report: PropagationReport) -> PropagationReport:
        self.reports.append(report)
        return report
