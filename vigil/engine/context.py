"""Evaluation context assembly.

Builds the frozen ``EvaluationContext`` a scoring engine receives, fresh
for every run, from whatever the persistence gateway currently holds.

Assumptions are the decision's linked assumptions followed by its tenant's
UNIVERSAL assumptions, deduplicated by id with the first occurrence kept.
Dependency edges whose target no longer resolves are logged and skipped.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from vigil.engine.errors import DataIntegrityError
from vigil.engine.types import Assumption, Decision, EvaluationContext, as_utc

logger = logging.getLogger(__name__)


def merge_assumptions(
    linked: list[Assumption],
    universal: list[Assumption],
) -> tuple[Assumption, ...]:
    seen: set[str] = set()
    merged = []
    for assumption in [*linked, *universal]:
        if assumption.id in seen:
            continue
        seen.add(assumption.id)
        merged.append(assumption)
    return tuple(merged)


def load_dependencies(gateway: Any, decision: Decision) -> tuple[Decision, ...]:
    """Current stored state of each decision ``decision`` depends on."""
    found = []
    for target_id in gateway.get_dependency_targets(decision.id):
        target = gateway.get_decision(target_id)
        if target is None:
            logger.warning("%s; skipping", DataIntegrityError(decision.id, target_id))
            continue
        found.append(target)
    return tuple(found)


def assemble_context(gateway: Any, decision: Decision, as_of: datetime) -> EvaluationContext:
    """Gather everything ``decision`` is scored against.

    Parameters
    ----------
    gateway : PersistenceGateway
        Storage the inputs are read from.
    decision : Decision
        Stored snapshot being rescored.
    as_of : datetime
        Reference time handed to the engine.

    Returns
    -------
    EvaluationContext
    """
    assumptions = merge_assumptions(
        gateway.get_linked_assumptions(decision.id),
        gateway.get_universal_assumptions(decision.tenant_id),
    )
    return EvaluationContext(
        decision=decision,
        assumptions=assumptions,
        constraints=tuple(gateway.get_linked_constraints(decision.id)),
        dependencies=load_dependencies(gateway, decision),
        as_of=as_utc(as_of),
    )
