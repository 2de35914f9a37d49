"""Default values for staleness detection, scoring, and alerting.

The staleness windows mirror the intent of the evaluation tracker: a
decision is rescored at least daily, and every day inside the +/-30 day
window around its expiry date.

Change the scoring thresholds only together with the lifecycle rules in
``vigil.engine.scoring``; they are tuned as a set.
"""

# ---------------------------------------------------------------------------
# Staleness Oracle
# ---------------------------------------------------------------------------
STALENESS = {
    "stale_hours": 24,           # general time-decay window
    "expiry_window_days": 30,    # +/- days around expiry_date
    "expiry_check_hours": 24,    # rescore cadence inside the expiry window
}

# ---------------------------------------------------------------------------
# Evaluation Orchestrator
# ---------------------------------------------------------------------------
EVALUATION = {
    "timeout_seconds": None,     # per-decision deadline; None disables
    "use_leases": False,         # per-decision claim rows
    "lease_seconds": 300,
}

# ---------------------------------------------------------------------------
# Scheduled sweeps
# ---------------------------------------------------------------------------
SWEEP = {
    "limit": 100,
    "interval_seconds": 3600,
    "max_settle_rounds": 25,
}

# ---------------------------------------------------------------------------
# Scoring (default deterministic engine)
# ---------------------------------------------------------------------------
LIFECYCLE_THRESHOLDS = {
    "stable": 80,          # health >= 80 -> STABLE
    "under_review": 60,    # health >= 60 -> UNDER_REVIEW, below -> AT_RISK
}

ASSUMPTION_PENALTY = {
    "max_penalty": 60,             # full penalty when every specific assumption is broken
    "invalidate_broken_share": 0.7,
}

DECAY = {
    "review_days_per_point": 30,   # no expiry date: 1 point per 30 days unreviewed
    "warning_phase_days": 90,      # expiry decay begins 90 days out
    "warning_days_per_point": 15,
    "critical_phase_days": 30,
    "critical_days_per_point": 5,
    "retire_after_expiry_days": 30,
}

# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------
ALERT_THRESHOLDS = {
    "health_degraded": 60,
    "health_critical": 40,
    "review_after_days": 30,     # NEEDS_REVIEW once unreviewed this long
    "review_overdue_days": 60,   # ... escalated from INFO to WARNING
}

# Lifecycle transitions that raise a LIFECYCLE_CHANGED notification
ALERT_TRANSITIONS = [
    ("STABLE", "AT_RISK"),
    ("STABLE", "INVALIDATED"),
    ("UNDER_REVIEW", "AT_RISK"),
    ("UNDER_REVIEW", "INVALIDATED"),
]
