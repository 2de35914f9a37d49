"""Tests for the staleness oracle."""

from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from vigil.engine.staleness import StalenessOracle, StalenessReason, check_staleness
from vigil.engine.types import Lifecycle

from .conftest import NOW, make_decision


class TestPriorityRules:
    """Rules apply in strict order; the first match wins."""

    def test_retired_is_terminal(self):
        d = make_decision(lifecycle=Lifecycle.RETIRED, last_evaluated_at=None)
        check = check_staleness(d, NOW)
        assert not check.required
        assert check.reason is StalenessReason.TERMINAL_STATE

    def test_retired_wins_over_dirty_flag(self):
        d = make_decision(lifecycle=Lifecycle.RETIRED, needs_evaluation=True)
        check = check_staleness(d, NOW)
        assert not check.required
        assert check.reason is StalenessReason.TERMINAL_STATE

    def test_dirty_flag_regardless_of_recency(self):
        d = make_decision(needs_evaluation=True, last_evaluated_at=NOW)
        check = check_staleness(d, NOW)
        assert check.required
        assert check.reason is StalenessReason.EXPLICIT_FLAG

    def test_dirty_flag_wins_over_never_evaluated(self):
        d = make_decision(needs_evaluation=True, last_evaluated_at=None)
        assert check_staleness(d, NOW).reason is StalenessReason.EXPLICIT_FLAG

    def test_never_evaluated(self):
        d = make_decision(last_evaluated_at=None)
        check = check_staleness(d, NOW)
        assert check.required
        assert check.reason is StalenessReason.NEVER_EVALUATED
        assert check.hours_since_eval is None

    def test_stale_after_25_hours(self):
        d = make_decision(last_evaluated_at=NOW - timedelta(hours=25))
        check = check_staleness(d, NOW)
        assert check.required
        assert check.reason is StalenessReason.STALE
        assert check.hours_since_eval == 25

    def test_exactly_24_hours_is_fresh(self):
        d = make_decision(last_evaluated_at=NOW - timedelta(hours=24))
        check = check_staleness(d, NOW)
        assert not check.required
        assert check.reason is StalenessReason.FRESH

    def test_fresh(self):
        d = make_decision(last_evaluated_at=NOW - timedelta(hours=3))
        check = check_staleness(d, NOW)
        assert not check.required
        assert check.reason is StalenessReason.FRESH
        assert check.hours_since_eval == 3

    def test_hours_rounded(self):
        d = make_decision(last_evaluated_at=NOW - timedelta(hours=5, minutes=40))
        assert check_staleness(d, NOW).hours_since_eval == 6

    def test_custom_stale_hours(self):
        d = make_decision(last_evaluated_at=NOW - timedelta(hours=7))
        assert check_staleness(d, NOW, stale_hours=6).reason is StalenessReason.STALE


class TestExpiryWindow:
    """Inside +/-30 days of expiry the stale window is expiry_check_hours."""

    def test_inside_window_uses_check_hours(self):
        d = make_decision(
            expiry_date=NOW + timedelta(days=10),
            last_evaluated_at=NOW - timedelta(hours=20),
        )
        # 20h is fresh under both 24h windows
        assert check_staleness(d, NOW).reason is StalenessReason.FRESH
        check = check_staleness(d, NOW, stale_hours=48, expiry_check_hours=12)
        assert check.required
        assert check.reason is StalenessReason.EXPIRY_WINDOW

    def test_after_expiry_still_in_window(self):
        d = make_decision(
            expiry_date=NOW - timedelta(days=29),
            last_evaluated_at=NOW - timedelta(hours=30),
        )
        check = check_staleness(d, NOW, stale_hours=48)
        assert check.reason is StalenessReason.EXPIRY_WINDOW

    def test_outside_window(self):
        d = make_decision(
            expiry_date=NOW + timedelta(days=45),
            last_evaluated_at=NOW - timedelta(hours=30),
        )
        check = check_staleness(d, NOW, stale_hours=48)
        assert not check.required
        assert check.reason is StalenessReason.FRESH

    def test_stale_checked_before_expiry(self):
        d = make_decision(
            expiry_date=NOW + timedelta(days=5),
            last_evaluated_at=NOW - timedelta(hours=30),
        )
        assert check_staleness(d, NOW).reason is StalenessReason.STALE


class TestTimezones:
    def test_naive_now_is_utc(self):
        d = make_decision(last_evaluated_at=NOW - timedelta(hours=25))
        naive = datetime(2026, 3, 2, 12, 0)
        assert check_staleness(d, naive).hours_since_eval == 25

    def test_to_dict(self):
        d = make_decision(last_evaluated_at=NOW - timedelta(hours=25))
        data = check_staleness(d, NOW).to_dict()
        assert data["required"] is True
        assert data["reason"] == "stale"
        assert data["hours_since_eval"] == 25
        assert data["last_evaluated_at"].startswith("2026-03-01T11:00")


class TestStalenessOracle:
    def test_reads_config(self):
        cfg = SimpleNamespace(stale_hours=2, expiry_window_days=30, expiry_check_hours=24)
        oracle = StalenessOracle(config=cfg)
        d = make_decision(last_evaluated_at=NOW - timedelta(hours=3))
        assert oracle.needs_evaluation(d, NOW).reason is StalenessReason.STALE

    def test_defaults_without_config(self):
        oracle = StalenessOracle()
        d = make_decision(last_evaluated_at=NOW - timedelta(hours=3))
        assert oracle.needs_evaluation(d, NOW).reason is StalenessReason.FRESH

    def test_check_by_id(self):
        gateway = MagicMock()
        gateway.get_decision.return_value = make_decision(needs_evaluation=True)
        check = StalenessOracle(gateway).check("D1", NOW)
        gateway.get_decision.assert_called_once_with("D1")
        assert check.reason is StalenessReason.EXPLICIT_FLAG

    def test_missing_decision(self):
        gateway = MagicMock()
        gateway.get_decision.return_value = None
        check = StalenessOracle(gateway).check("nope", NOW)
        assert not check.required
        assert check.reason is StalenessReason.DECISION_NOT_FOUND

    @pytest.mark.parametrize("lifecycle", list(Lifecycle))
    def test_only_retired_is_never_required(self, lifecycle):
        d = make_decision(lifecycle=lifecycle, needs_evaluation=True)
        check = StalenessOracle().needs_evaluation(d, NOW)
        assert check.required is (lifecycle is not Lifecycle.RETIRED)
