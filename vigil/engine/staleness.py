"""Staleness Oracle: does a decision need rescoring right now, and why?

Rules are checked in strict priority order, first match wins:

  1. RETIRED                          -> not required  (terminal_state)
  2. needs_evaluation flag set        -> required      (explicit_flag)
  3. never evaluated                  -> required      (never_evaluated)
  4. hours since eval > stale_hours   -> required      (stale)
  5. within +/- window of expiry and
     hours since eval > check hours   -> required      (expiry_window)
  6. otherwise                        -> not required  (fresh)

Terminal state short-circuits first so a retired decision can never be
resurrected, and the explicit flag is checked before any time window so a
cascaded change always forces a rescore regardless of recency.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from vigil.engine.types import Decision, Lifecycle, as_utc

logger = logging.getLogger(__name__)

_SECONDS_PER_HOUR = 3600


class StalenessReason(str, Enum):
    TERMINAL_STATE = "terminal_state"
    EXPLICIT_FLAG = "explicit_flag"
    NEVER_EVALUATED = "never_evaluated"
    STALE = "stale"
    EXPIRY_WINDOW = "expiry_window"
    FRESH = "fresh"
    DECISION_NOT_FOUND = "decision_not_found"


@dataclass(frozen=True)
class StalenessCheck:
    """Oracle verdict for one decision."""

    required: bool
    reason: StalenessReason
    hours_since_eval: int | None = None
    """Whole hours since the last evaluation, rounded; None if never evaluated."""
    last_evaluated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "required": self.required,
            "reason": self.reason.value,
            "hours_since_eval": self.hours_since_eval,
            "last_evaluated_at": (
                self.last_evaluated_at.isoformat() if self.last_evaluated_at else None
            ),
        }


def check_staleness(
    decision: Decision,
    now: datetime,
    *,
    stale_hours: float = 24,
    expiry_window_days: float = 30,
    expiry_check_hours: float = 24,
) -> StalenessCheck:
    """Decide whether ``decision`` needs rescoring as of ``now``.

    Parameters:
        decision: Stored decision snapshot.
        now: Reference time (caller-supplied, never read from a clock here).
        stale_hours: General time-decay window.
        expiry_window_days: Half-width of the window around ``expiry_date``.
        expiry_check_hours: Rescore cadence inside the expiry window.
    """
    if decision.lifecycle is Lifecycle.RETIRED:
        return StalenessCheck(False, StalenessReason.TERMINAL_STATE)

    last = decision.last_evaluated_at
    if decision.needs_evaluation:
        return StalenessCheck(True, StalenessReason.EXPLICIT_FLAG, last_evaluated_at=last)

    if last is None:
        return StalenessCheck(True, StalenessReason.NEVER_EVALUATED)

    now = as_utc(now)
    last = as_utc(last)
    hours = (now - last).total_seconds() / _SECONDS_PER_HOUR
    rounded = round(hours)

    if hours > stale_hours:
        return StalenessCheck(True, StalenessReason.STALE, rounded, last)

    if decision.expiry_date is not None:
        expiry = as_utc(decision.expiry_date)
        window = timedelta(days=expiry_window_days)
        if expiry - window <= now <= expiry + window and hours > expiry_check_hours:
            return StalenessCheck(True, StalenessReason.EXPIRY_WINDOW, rounded, last)

    return StalenessCheck(False, StalenessReason.FRESH, rounded, last)


class StalenessOracle:
    """``check_staleness`` bound to configured windows and a gateway.

    Usage::

        oracle = StalenessOracle(gateway, config.staleness)
        verdict = oracle.check("dec-1", now)
    """

    def __init__(self, gateway: Any = None, config: Any = None) -> None:
        self.gateway = gateway
        self.stale_hours = getattr(config, "stale_hours", 24)
        self.expiry_window_days = getattr(config, "expiry_window_days", 30)
        self.expiry_check_hours = getattr(config, "expiry_check_hours", 24)

    def needs_evaluation(self, decision: Decision, now: datetime) -> StalenessCheck:
        return check_staleness(
            decision,
            now,
            stale_hours=self.stale_hours,
            expiry_window_days=self.expiry_window_days,
            expiry_check_hours=self.expiry_check_hours,
        )

    def check(self, decision_id: str, now: datetime) -> StalenessCheck:
        """Load ``decision_id`` through the gateway and check it."""
        decision = self.gateway.get_decision(decision_id)
        if decision is None:
            logger.debug("Staleness check: %s not found", decision_id)
            return StalenessCheck(False, StalenessReason.DECISION_NOT_FOUND)
        return self.needs_evaluation(decision, now)
