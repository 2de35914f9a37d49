"""Scoring engine contract and the default deterministic engine.

Any object with ``evaluate(context) -> EvaluationResult`` can score
decisions.  Engines must be deterministic (the same ``EvaluationContext``
always yields the same ``EvaluationResult``) and free of side effects: no
randomness, no clock, no storage or network access.  The orchestrator relies
on this to skip scoring when nothing changed.

Default evaluation phases, in order:
  1. Constraint validation (violation -> INVALIDATED, health 0)
  2. Dependency health floor (lowest dependency health caps own health)
  3. Assumption check (broken universal -> INVALIDATED; broken
     decision-specific -> proportional penalty, INVALIDATED past a share)
  4. Expiry retirement (far past expiry -> RETIRED)
  5. Time decay (expiry phases, or days since last review)
  6. Lifecycle from health thresholds

Health alone never produces INVALIDATED, and RETIRED is never left.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Callable, Protocol, runtime_checkable

from vigil.config.schema import ScoringConfig
from vigil.engine.types import (
    AssumptionStatus,
    Constraint,
    Decision,
    EvaluationContext,
    EvaluationResult,
    EvaluationStep,
    Lifecycle,
)

ConstraintChecker = Callable[[Constraint, Decision], bool]
"""Returns True when ``decision`` satisfies ``constraint``."""

_SECONDS_PER_DAY = 86_400


@runtime_checkable
class ScoringEngine(Protocol):
    def evaluate(self, context: EvaluationContext) -> EvaluationResult:
        ...


def _always_satisfied(constraint: Constraint, decision: Decision) -> bool:
    return True


def _days_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / _SECONDS_PER_DAY


class DeterministicScoringEngine:
    """Rule-based scoring engine with an explanation trace.

    Parameters:
        config: Thresholds and decay rates. Defaults to ``ScoringConfig()``.
        constraint_checker: Pure predicate deciding whether a constraint
            holds for a decision. Rule-expression interpretation lives
            outside the engine; by default every constraint holds.
    """

    def __init__(
        self,
        config: ScoringConfig | None = None,
        constraint_checker: ConstraintChecker | None = None,
    ) -> None:
        self.config = config or ScoringConfig()
        self.constraint_checker = constraint_checker or _always_satisfied

    def evaluate(self, context: EvaluationContext) -> EvaluationResult:
        decision = context.decision
        trace: list[EvaluationStep] = []

        if decision.lifecycle is Lifecycle.RETIRED:
            trace.append(self._step(context, "lifecycle_determination", True,
                                    "Lifecycle remains RETIRED"))
            return self._result(context, decision.health, Lifecycle.RETIRED,
                                decision.invalidated_reason, trace)

        # INVALIDATED gets a fresh chance at recovery each run
        lifecycle = (
            Lifecycle.STABLE if decision.lifecycle is Lifecycle.INVALIDATED
            else decision.lifecycle
        )
        health = 100
        reason: str | None = None

        if not self._validate_constraints(context, trace):
            lifecycle = Lifecycle.INVALIDATED
            health = 0
            reason = "constraint_violation"
        else:
            health = min(health, self._dependency_floor(context, trace))

            passed, penalty = self._check_assumptions(context, trace)
            if not passed:
                lifecycle = Lifecycle.INVALIDATED
                health = 0
                reason = "broken_assumptions"
            else:
                health = max(0, health - penalty)

        if reason is None and self._past_retirement(context, trace):
            lifecycle = Lifecycle.RETIRED
            reason = "expired"

        if reason is None:
            health = max(0, health - self._decay(context, trace))
            lifecycle = self._lifecycle_for(health, context, trace)

        return self._result(context, health, lifecycle, reason, trace)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _validate_constraints(
        self, context: EvaluationContext, trace: list[EvaluationStep]
    ) -> bool:
        violated = [
            c for c in context.constraints
            if not self.constraint_checker(c, context.decision)
        ]
        if violated:
            names = ", ".join(c.name or c.id for c in violated)
            details = f"{len(violated)} constraint(s) violated: {names}"
        else:
            details = f"All {len(context.constraints)} constraints validated successfully"
        trace.append(self._step(context, "constraint_validation", not violated, details))
        return not violated

    def _dependency_floor(
        self, context: EvaluationContext, trace: list[EvaluationStep]
    ) -> int:
        if not context.dependencies:
            trace.append(self._step(context, "dependency_evaluation", True,
                                    "No dependencies to evaluate"))
            return 100

        lowest = min(100, *(d.health for d in context.dependencies))
        trace.append(self._step(
            context, "dependency_evaluation", True,
            f"Evaluated {len(context.dependencies)} dependencies. "
            f"Health signal from dependencies: {lowest}",
        ))
        return lowest

    def _check_assumptions(
        self, context: EvaluationContext, trace: list[EvaluationStep]
    ) -> tuple[bool, int]:
        cfg = self.config.assumptions
        universal = [a for a in context.assumptions if a.is_universal]
        specific = [a for a in context.assumptions if not a.is_universal]
        broken_universal = [a for a in universal if a.status is AssumptionStatus.BROKEN]
        broken_specific = [a for a in specific if a.status is AssumptionStatus.BROKEN]

        passed = True
        penalty = 0
        if broken_universal:
            passed = False
            details = (
                f"{len(broken_universal)} universal assumption(s) broken - "
                "decision invalidated"
            )
        elif specific:
            share = len(broken_specific) / len(specific)
            penalty = math.floor(share * cfg.max_penalty)
            if not broken_specific:
                details = f"All {len(context.assumptions)} assumptions are valid"
            else:
                details = (
                    f"{len(broken_specific)} of {len(specific)} decision-specific "
                    f"assumptions broken ({round(share * 100)}%) - "
                    f"health penalty: -{penalty}"
                )
                if share >= cfg.invalidate_broken_share:
                    passed = False
                    details += " - exceeds threshold, decision invalidated"
        elif universal:
            details = f"All {len(universal)} universal assumptions are valid"
        else:
            details = "No assumptions to evaluate"

        trace.append(self._step(context, "assumption_check", passed, details))
        return passed, penalty

    def _past_retirement(
        self, context: EvaluationContext, trace: list[EvaluationStep]
    ) -> bool:
        expiry = context.decision.expiry_date
        if expiry is None:
            return False
        days_until = _days_between(expiry, context.as_of)
        if days_until >= -self.config.decay.retire_after_expiry_days:
            return False
        trace.append(self._step(
            context, "expiry_retirement", False,
            f"Decision expired {math.floor(abs(days_until))} days ago. Automatically retired.",
        ))
        return True

    def _decay(self, context: EvaluationContext, trace: list[EvaluationStep]) -> int:
        cfg = self.config.decay
        decision = context.decision

        if decision.expiry_date is not None:
            days_until = _days_between(decision.expiry_date, context.as_of)
            if days_until > cfg.warning_phase_days:
                amount = 0
                details = f"{math.floor(days_until)} days until expiry. No decay yet."
            elif days_until > cfg.critical_phase_days:
                amount = math.floor((cfg.warning_phase_days - days_until) / cfg.warning_days_per_point)
                details = f"{math.floor(days_until)} days until expiry. Warning phase: -{amount}."
            elif days_until > 0:
                amount = (
                    math.floor((cfg.warning_phase_days - days_until) / cfg.warning_days_per_point)
                    + math.floor((cfg.critical_phase_days - days_until) / cfg.critical_days_per_point)
                )
                details = f"{math.floor(days_until)} days until expiry. Critical phase: -{amount}."
            else:
                days_past = abs(days_until)
                # full pre-expiry decay plus one point per overdue day
                amount = (
                    math.floor(cfg.warning_phase_days / cfg.warning_days_per_point)
                    + math.floor(cfg.critical_phase_days / cfg.critical_days_per_point)
                    + math.floor(days_past)
                )
                details = f"{math.floor(days_past)} days past expiry. Severe decay: -{amount}."
        else:
            days_since_review = max(0.0, _days_between(context.as_of, decision.last_reviewed_at))
            amount = math.floor(days_since_review / cfg.review_days_per_point)
            details = f"{math.floor(days_since_review)} days since last review. Health decay: -{amount}."

        trace.append(self._step(context, "health_decay", True, details))
        return amount

    def _lifecycle_for(
        self, health: int, context: EvaluationContext, trace: list[EvaluationStep]
    ) -> Lifecycle:
        thresholds = self.config.lifecycle
        if health >= thresholds.stable:
            lifecycle = Lifecycle.STABLE
        elif health >= thresholds.under_review:
            lifecycle = Lifecycle.UNDER_REVIEW
        else:
            lifecycle = Lifecycle.AT_RISK
        trace.append(self._step(
            context, "lifecycle_determination", True,
            f"Health signal {health} -> {lifecycle.value}",
        ))
        return lifecycle

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _step(context: EvaluationContext, name: str, passed: bool, details: str) -> EvaluationStep:
        return EvaluationStep(step=name, passed=passed, details=details, timestamp=context.as_of)

    @staticmethod
    def _result(
        context: EvaluationContext,
        health: int,
        lifecycle: Lifecycle,
        reason: str | None,
        trace: list[EvaluationStep],
    ) -> EvaluationResult:
        decision = context.decision
        return EvaluationResult(
            decision_id=decision.id,
            new_health=int(health),
            new_lifecycle=lifecycle,
            invalidated_reason=reason,
            changes_detected=(
                health != decision.health or lifecycle is not decision.lifecycle
            ),
            trace=tuple(trace),
        )
