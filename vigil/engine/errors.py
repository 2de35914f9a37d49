"""Error taxonomy for evaluation and propagation.

  not-found        DecisionNotFoundError    abort the unit, never the batch
  upstream-failure UpstreamError            storage or scoring failed; flag stays set
                   EvaluationTimeoutError   deadline passed between steps
  conflict         EvaluationConflictError  persist guard matched no row
  data-integrity   DataIntegrityError       dangling dependency edge; skipped, not fatal
"""

from __future__ import annotations


class VigilError(Exception):
    """Base class for all evaluation engine errors."""

    kind = "error"


class DecisionNotFoundError(VigilError):
    kind = "not_found"

    def __init__(self, decision_id: str):
        super().__init__(f"Decision not found: {decision_id}")
        self.decision_id = decision_id


class UpstreamError(VigilError):
    kind = "upstream_failure"


class EvaluationTimeoutError(UpstreamError):
    kind = "timeout"

    def __init__(self, decision_id: str, step: str, timeout: float):
        super().__init__(
            f"Evaluation of {decision_id} exceeded {timeout:.2f}s before step '{step}'"
        )
        self.decision_id = decision_id
        self.step = step
        self.timeout = timeout


class EvaluationConflictError(VigilError):
    kind = "conflict"

    def __init__(self, decision_id: str, message: str = "decision changed underneath evaluation"):
        super().__init__(f"{decision_id}: {message}")
        self.decision_id = decision_id


class DataIntegrityError(VigilError):
    kind = "data_integrity"

    def __init__(self, source_id: str, target_id: str):
        super().__init__(
            f"Dependency edge {source_id} -> {target_id} points to a missing decision"
        )
        self.source_id = source_id
        self.target_id = target_id
