"""Scheduled staleness sweeps and fixpoint settling.

Event-driven marking covers changes the system is told about.  Sweeps
cover everything else: time decay, expiry windows, and dependents left
stale by a failed propagation.

  run_sweep  - one pass over the decisions the oracle says need rescoring
  settle     - repeat passes until a pass finds nothing to evaluate
  run_daemon - poll ``run_sweep`` forever under a file lock
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from vigil.engine.orchestrator import BatchResult, EvaluationOrchestrator
from vigil.engine.types import as_utc

logger = logging.getLogger(__name__)

_LOCK_FILE = Path("~/.vigil/.sweep_lock").expanduser()


@dataclass
class SweepResult:
    """Result of a single sweep pass."""
    tenant_id: str
    candidates: list[str] = field(default_factory=list)
    reasons: dict[str, str] = field(default_factory=dict)
    """decision_id -> staleness reason that selected it."""
    batch: BatchResult = field(default_factory=BatchResult)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "candidates": self.candidates,
            "reasons": self.reasons,
            **self.batch.to_dict(),
        }


@dataclass
class SettleReport:
    """Per-round results of a ``settle`` run."""
    tenant_id: str
    rounds: list[SweepResult] = field(default_factory=list)
    converged: bool = False

    @property
    def evaluated(self) -> int:
        return sum(r.batch.evaluated for r in self.rounds)

    @property
    def failed(self) -> int:
        return sum(r.batch.failed for r in self.rounds)

    @property
    def errors(self) -> list[str]:
        return [e for r in self.rounds for e in r.batch.errors]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "converged": self.converged,
            "rounds": len(self.rounds),
            "evaluated": self.evaluated,
            "failed": self.failed,
            "per_round": [r.to_dict() for r in self.rounds],
        }


def run_sweep(
    orchestrator: EvaluationOrchestrator,
    gateway: Any,
    tenant_id: str,
    *,
    stale_hours: float | None = None,
    limit: int | None = None,
    now: datetime | None = None,
) -> SweepResult:
    """Evaluate every decision of ``tenant_id`` that currently needs it.

    Parameters
    ----------
    orchestrator : EvaluationOrchestrator
    gateway : PersistenceGateway
        Source of ``list_decisions_needing_evaluation``.
    tenant_id : str
    stale_hours : float | None
        Defaults to the orchestrator's staleness config.
    limit : int | None
        Max decisions per pass; defaults to ``sweep.limit``.
    now : datetime | None
        Reference time for both selection and evaluation.
    """
    config = orchestrator.config
    now = as_utc(now) if now is not None else orchestrator.clock()
    if stale_hours is None:
        stale_hours = config.staleness.stale_hours
    if limit is None:
        limit = config.sweep.limit

    result = SweepResult(tenant_id)
    for decision_id, check in gateway.list_decisions_needing_evaluation(
        tenant_id, stale_hours=stale_hours, limit=limit, now=now
    ):
        result.candidates.append(decision_id)
        result.reasons[decision_id] = check.reason.value

    if not result.candidates:
        logger.debug("Sweep of %s: nothing to evaluate", tenant_id)
        return result

    logger.info("Sweep of %s: %d candidate(s)", tenant_id, len(result.candidates))
    result.batch = orchestrator.evaluate_batch(result.candidates, as_of=now)
    return result


def settle(
    orchestrator: EvaluationOrchestrator,
    gateway: Any,
    tenant_id: str,
    *,
    max_rounds: int | None = None,
    now: datetime | None = None,
) -> SettleReport:
    """Sweep repeatedly until a sweep finds nothing left to evaluate.

    Propagation must be wired to the orchestrator's bus for dependents to be
    re-marked between rounds.  Failed, lease-held and over-``limit``
    decisions are still candidates on the next sweep, so only an empty
    sweep is a fixpoint.
    """
    if max_rounds is None:
        max_rounds = orchestrator.config.sweep.max_settle_rounds
    now = as_utc(now) if now is not None else orchestrator.clock()

    report = SettleReport(tenant_id)
    for round_no in range(1, max_rounds + 1):
        sweep = run_sweep(orchestrator, gateway, tenant_id, now=now)
        report.rounds.append(sweep)
        if not sweep.candidates:
            report.converged = True
            logger.info("Settled %s after %d round(s)", tenant_id, round_no)
            break
    else:
        logger.warning(
            "Tenant %s did not settle within %d round(s)", tenant_id, max_rounds
        )
    return report


# ---------------------------------------------------------------------------
# Daemon
# ---------------------------------------------------------------------------

def acquire_lock(lock_file: Path = _LOCK_FILE) -> Any | None:
    """Acquire a file lock to prevent concurrent sweepers.

    Returns the lock file descriptor if acquired, None if another
    instance is running.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    lock_fd = open(lock_file, "w")  # noqa: SIM115
    try:
        fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        lock_fd.close()
        return None
    return lock_fd


def release_lock(lock_fd: Any, lock_file: Path = _LOCK_FILE) -> None:
    if lock_fd is None:
        return
    try:
        fcntl.flock(lock_fd, fcntl.LOCK_UN)
        lock_fd.close()
    except OSError:
        pass
    with contextlib.suppress(OSError):
        os.unlink(lock_file)


def run_daemon(
    orchestrator: EvaluationOrchestrator,
    gateway: Any,
    tenant_id: str,
    interval: int | None = None,
    *,
    max_cycles: int | None = None,
    lock_file: Path = _LOCK_FILE,
    on_cycle: Callable[[SweepResult], Any] | None = None,
) -> int:
    """Sweep ``tenant_id`` every ``interval`` seconds.

    Runs until interrupted, or for ``max_cycles`` cycles when given.
    ``on_cycle`` is called with each sweep result.
    Returns the number of completed cycles.
    """
    if interval is None:
        interval = orchestrator.config.sweep.interval_seconds

    lock_fd = acquire_lock(lock_file)
    if lock_fd is None:
        logger.warning("Another sweeper instance is running, exiting")
        return 0

    cycles = 0
    try:
        logger.info("Sweeper started for %s (interval=%ds)", tenant_id, interval)
        while max_cycles is None or cycles < max_cycles:
            try:
                result = run_sweep(orchestrator, gateway, tenant_id)
                if result.candidates:
                    logger.info(
                        "Swept %d decision(s): %d evaluated, %d failed",
                        len(result.candidates), result.batch.evaluated, result.batch.failed,
                    )
                if on_cycle is not None:
                    on_cycle(result)
            except Exception as e:
                logger.error("Sweep cycle error: %s", e)
            cycles += 1
            if max_cycles is None or cycles < max_cycles:
                time.sleep(interval)
    except KeyboardInterrupt:
        logger.info("Sweeper stopped")
    finally:
        release_lock(lock_fd, lock_file)
    return cycles
