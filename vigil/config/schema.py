"""Pydantic models for vigil.yaml validation."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from vigil.config.defaults import (
    ALERT_THRESHOLDS,
    ALERT_TRANSITIONS,
    ASSUMPTION_PENALTY,
    DECAY,
    EVALUATION,
    LIFECYCLE_THRESHOLDS,
    STALENESS,
    SWEEP,
)


# ---------------------------------------------------------------------------
# Staleness / Evaluation Configs
# ---------------------------------------------------------------------------

class StalenessConfig(BaseModel):
    stale_hours: float = STALENESS["stale_hours"]
    expiry_window_days: float = STALENESS["expiry_window_days"]
    expiry_check_hours: float = STALENESS["expiry_check_hours"]

    @field_validator("stale_hours", "expiry_window_days", "expiry_check_hours")
    @classmethod
    def non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"staleness windows must be >= 0, got {v}")
        return v


class EvaluationConfig(BaseModel):
    timeout_seconds: float | None = EVALUATION["timeout_seconds"]
    use_leases: bool = EVALUATION["use_leases"]
    lease_seconds: int = EVALUATION["lease_seconds"]

    @field_validator("timeout_seconds")
    @classmethod
    def positive_timeout(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {v}")
        return v


class SweepConfig(BaseModel):
    limit: int = SWEEP["limit"]
    interval_seconds: int = SWEEP["interval_seconds"]
    max_settle_rounds: int = SWEEP["max_settle_rounds"]


# ---------------------------------------------------------------------------
# Scoring Configs
# ---------------------------------------------------------------------------

class LifecycleThresholdsConfig(BaseModel):
    stable: int = LIFECYCLE_THRESHOLDS["stable"]
    under_review: int = LIFECYCLE_THRESHOLDS["under_review"]

    @model_validator(mode="after")
    def thresholds_ordered(self) -> "LifecycleThresholdsConfig":
        if not 0 <= self.under_review <= self.stable <= 100:
            raise ValueError(
                "lifecycle thresholds must satisfy 0 <= under_review <= stable <= 100, "
                f"got under_review={self.under_review}, stable={self.stable}"
            )
        return self


class AssumptionPenaltyConfig(BaseModel):
    max_penalty: int = ASSUMPTION_PENALTY["max_penalty"]
    invalidate_broken_share: float = ASSUMPTION_PENALTY["invalidate_broken_share"]


class DecayConfig(BaseModel):
    review_days_per_point: int = DECAY["review_days_per_point"]
    warning_phase_days: int = DECAY["warning_phase_days"]
    warning_days_per_point: int = DECAY["warning_days_per_point"]
    critical_phase_days: int = DECAY["critical_phase_days"]
    critical_days_per_point: int = DECAY["critical_days_per_point"]
    retire_after_expiry_days: int = DECAY["retire_after_expiry_days"]


class ScoringConfig(BaseModel):
    lifecycle: LifecycleThresholdsConfig = Field(default_factory=LifecycleThresholdsConfig)
    assumptions: AssumptionPenaltyConfig = Field(default_factory=AssumptionPenaltyConfig)
    decay: DecayConfig = Field(default_factory=DecayConfig)


# ---------------------------------------------------------------------------
# Alert Config
# ---------------------------------------------------------------------------

class EmailConfig(BaseModel):
    to: str = ""
    from_addr: str = Field("", alias="from")
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    app_password: str = ""

    model_config = {"populate_by_name": True}


class AlertsConfig(BaseModel):
    enabled: bool = True
    email: EmailConfig = Field(default_factory=EmailConfig)
    thresholds: dict[str, int] = Field(
        default_factory=lambda: dict(ALERT_THRESHOLDS)
    )
    transitions: list[list[str]] = Field(
        default_factory=lambda: [list(t) for t in ALERT_TRANSITIONS]
    )


# ---------------------------------------------------------------------------
# Database Config
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    path: str = "~/.vigil/vigil.db"


# ---------------------------------------------------------------------------
# Root Config
# ---------------------------------------------------------------------------

class VigilConfig(BaseModel):
    """Root configuration model for Vigil."""

    version: int = 1
    staleness: StalenessConfig = Field(default_factory=StalenessConfig)
    evaluation: EvaluationConfig = Field(default_factory=EvaluationConfig)
    sweep: SweepConfig = Field(default_factory=SweepConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @model_validator(mode="before")
    @classmethod
    def coerce_none_to_defaults(cls, data: Any) -> Any:
        """YAML parses empty keys as None. Drop them so defaults apply."""
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data
