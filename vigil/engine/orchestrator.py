"""Evaluation Orchestrator.

Runs the check, score, persist, publish sequence for one decision or a
batch of them:

  1. Load the decision; RETIRED is skipped even when forced
  2. Ask the staleness oracle (unless forced)
  3. Claim the per-decision lease (when leases are enabled)
  4. Assemble the evaluation context
  5. Score it
  6. Persist the verdict and clear the dirty flag in one write
  7. Publish ``DecisionRescored``

Deadlines are cooperative: the budget is checked before the load, score
and persist steps.  A decision that fails at any step keeps its old verdict
and its dirty flag.  Batches are sequential and never abort on a single
failure.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from vigil.config.schema import VigilConfig
from vigil.engine.context import assemble_context
from vigil.engine.errors import (
    DecisionNotFoundError,
    EvaluationConflictError,
    EvaluationTimeoutError,
    UpstreamError,
    VigilError,
)
from vigil.engine.scoring import DeterministicScoringEngine
from vigil.engine.staleness import StalenessCheck, StalenessOracle, StalenessReason
from vigil.engine.types import Decision, EvaluationResult, as_utc, utc_now
from vigil.events.models import DecisionRescored

logger = logging.getLogger(__name__)

EVALUATED = "evaluated"
SKIPPED = "skipped"
FAILED = "failed"

LEASE_HELD = "lease_held"
FORCED = "forced"


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------

class Deadline:
    """Cooperative time budget for one evaluation. ``None`` never expires."""

    def __init__(
        self,
        timeout: float | None,
        decision_id: str = "",
        clock: Callable[[], float] | None = None,
    ):
        self.timeout = timeout
        self.decision_id = decision_id
        self._clock = clock or time.monotonic
        self._expires = self._clock() + timeout if timeout is not None else None

    @property
    def expired(self) -> bool:
        return self._expires is not None and self._clock() >= self._expires

    def check(self, step: str) -> None:
        if self.expired:
            raise EvaluationTimeoutError(self.decision_id, step, self.timeout or 0.0)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass
class EvaluationOutcome:
    """Result of one ``evaluate_if_needed`` call."""

    decision_id: str
    status: str
    """'evaluated', 'skipped' or 'failed'."""
    reason: str | None = None
    result: EvaluationResult | None = None
    changes_detected: bool = False
    error: str | None = None
    error_kind: str | None = None

    @property
    def evaluated(self) -> bool:
        return self.status == EVALUATED

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "decision_id": self.decision_id,
            "status": self.status,
            "reason": self.reason,
            "changes_detected": self.changes_detected,
        }
        if self.result is not None:
            d["new_health"] = self.result.new_health
            d["new_lifecycle"] = self.result.new_lifecycle.value
            d["invalidated_reason"] = self.result.invalidated_reason
        if self.error is not None:
            d["error"] = self.error
            d["error_kind"] = self.error_kind
        return d


@dataclass
class BatchResult:
    """Ordered outcomes of a batch, one per requested id."""

    outcomes: list[EvaluationOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def evaluated(self) -> int:
        return self._count(EVALUATED)

    @property
    def skipped(self) -> int:
        return self._count(SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(FAILED)

    @property
    def changed(self) -> int:
        return sum(1 for o in self.outcomes if o.evaluated and o.changes_detected)

    @property
    def failures(self) -> list[EvaluationOutcome]:
        return [o for o in self.outcomes if o.status == FAILED]

    @property
    def errors(self) -> list[str]:
        return [f"{o.decision_id}: {o.error}" for o in self.failures]

    def to_dict(self) -> dict[str, Any]:
        return {
            "evaluated": self.evaluated,
            "skipped": self.skipped,
            "failed": self.failed,
            "changed": self.changed,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

def _default_holder() -> str:
    return f"vigil-{os.getpid()}-{uuid.uuid4().hex[:8]}"


class EvaluationOrchestrator:
    """Rescore decisions that need it.

    Parameters
    ----------
    gateway : PersistenceGateway
        Storage for decisions and their inputs.
    engine : ScoringEngine | None
        Defaults to ``DeterministicScoringEngine`` with the configured
        scoring thresholds.
    oracle : StalenessOracle | None
        Defaults to an oracle bound to ``config.staleness``.
    bus : EventBus | None
        ``DecisionRescored`` is published here after each persisted rescore.
    config : VigilConfig | None
    clock : callable
        Returns the current aware UTC time; used for ``as_of`` and leases.
    """

    def __init__(
        self,
        gateway: Any,
        engine: Any = None,
        *,
        oracle: StalenessOracle | None = None,
        bus: Any = None,
        config: VigilConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        holder: str | None = None,
    ):
        self.config = config or VigilConfig()
        self.gateway = gateway
        self.engine = engine or DeterministicScoringEngine(self.config.scoring)
        self.oracle = oracle or StalenessOracle(gateway, self.config.staleness)
        self.bus = bus
        self.clock = clock
        self.holder = holder or _default_holder()

    # -- single decision ----------------------------------------------------

    def evaluate_if_needed(
        self,
        decision_id: str,
        force: bool = False,
        as_of: datetime | None = None,
        timeout: float | None = None,
    ) -> EvaluationOutcome:
        """Rescore ``decision_id`` if the oracle (or ``force``) says so.

        Raises
        ------
        DecisionNotFoundError
            The id does not resolve.
        EvaluationTimeoutError
            The budget ran out between steps; nothing was written.
        EvaluationConflictError
            The decision was retired while it was being scored.
        UpstreamError
            Storage or scoring failed.
        """
        as_of = as_utc(as_of) if as_of is not None else self.clock()
        if timeout is None:
            timeout = self.config.evaluation.timeout_seconds
        deadline = Deadline(timeout, decision_id)

        deadline.check("load")
        decision = self._load(decision_id)
        required, reason = self._verdict(decision, force, as_of)
        if not required:
            logger.debug("Skipping %s: %s", decision_id, reason)
            return EvaluationOutcome(decision_id, SKIPPED, reason=reason)

        if not self.config.evaluation.use_leases:
            return self._evaluate(decision, as_of, deadline, reason)

        if not self.gateway.acquire_lease(
            decision_id, self.holder, self.clock(), self.config.evaluation.lease_seconds
        ):
            logger.info("Skipping %s: lease held by another evaluator", decision_id)
            return EvaluationOutcome(decision_id, SKIPPED, reason=LEASE_HELD)
        try:
            # Re-read under the lease; another holder may have just finished.
            decision = self._load(decision_id)
            required, reason = self._verdict(decision, force, as_of)
            if not required:
                logger.debug("Skipping %s after lease: %s", decision_id, reason)
                return EvaluationOutcome(decision_id, SKIPPED, reason=reason)
            return self._evaluate(decision, as_of, deadline, reason)
        finally:
            self.gateway.release_lease(decision_id, self.holder)

    def check(self, decision_id: str, as_of: datetime | None = None) -> StalenessCheck:
        """Oracle verdict for ``decision_id`` without evaluating it."""
        as_of = as_utc(as_of) if as_of is not None else self.clock()
        return self.oracle.check(decision_id, as_of)

    # -- batch --------------------------------------------------------------

    def evaluate_batch(
        self,
        decision_ids: Iterable[str],
        force: bool = False,
        as_of: datetime | None = None,
        timeout: float | None = None,
    ) -> BatchResult:
        """Evaluate ``decision_ids`` in order; one failure never stops the rest.

        ``timeout`` is a per-decision budget.
        """
        batch = BatchResult()
        for decision_id in decision_ids:
            try:
                outcome = self.evaluate_if_needed(
                    decision_id, force=force, as_of=as_of, timeout=timeout
                )
            except Exception as e:
                kind = e.kind if isinstance(e, VigilError) else "unexpected"
                logger.error("Evaluation of %s failed (%s): %s", decision_id, kind, e)
                outcome = EvaluationOutcome(
                    decision_id, FAILED, error=str(e), error_kind=kind
                )
            batch.outcomes.append(outcome)

        logger.info(
            "Batch complete: %d evaluated (%d changed), %d skipped, %d failed",
            batch.evaluated, batch.changed, batch.skipped, batch.failed,
        )
        return batch

    # -- internals ----------------------------------------------------------

    def _load(self, decision_id: str) -> Decision:
        decision = self.gateway.get_decision(decision_id)
        if decision is None:
            raise DecisionNotFoundError(decision_id)
        return decision

    def _verdict(self, decision: Decision, force: bool, as_of: datetime) -> tuple[bool, str]:
        """(required, reason). RETIRED wins over ``force``."""
        if decision.is_retired:
            return False, StalenessReason.TERMINAL_STATE.value
        if force:
            return True, FORCED
        verdict = self.oracle.needs_evaluation(decision, as_of)
        return verdict.required, verdict.reason.value

    def _evaluate(
        self,
        decision: Decision,
        as_of: datetime,
        deadline: Deadline,
        reason: str,
    ) -> EvaluationOutcome:
        context = assemble_context(self.gateway, decision, as_of)

        deadline.check("score")
        try:
            result = self.engine.evaluate(context)
        except VigilError:
            raise
        except Exception as e:
            raise UpstreamError(f"Scoring {decision.id} failed: {e}") from e

        changed = (
            result.new_health != decision.health
            or result.new_lifecycle != decision.lifecycle
        )
        if changed != result.changes_detected:
            logger.warning(
                "Engine reported changes_detected=%s for %s but verdict %s; using %s",
                result.changes_detected, decision.id,
                "changed" if changed else "did not change", changed,
            )

        deadline.check("persist")
        if not self.gateway.update_decision_after_evaluation(decision.id, result, as_of):
            raise EvaluationConflictError(decision.id, "decision was retired during evaluation")

        logger.info(
            "Evaluated %s (%s): health %d -> %d, %s -> %s",
            decision.id, reason, decision.health, result.new_health,
            decision.lifecycle.value, result.new_lifecycle.value,
        )

        if self.bus is not None:
            self.bus.publish(DecisionRescored(
                decision_id=decision.id,
                changes_detected=changed,
                old_lifecycle=decision.lifecycle,
                new_lifecycle=result.new_lifecycle,
                old_health=decision.health,
                new_health=result.new_health,
            ))

        return EvaluationOutcome(
            decision.id,
            EVALUATED,
            reason=reason,
            result=result,
            changes_detected=changed,
        )
