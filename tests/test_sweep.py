"""Tests for sweeps, settling, and cascade scenarios end to end."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock, patch

from vigil.config.schema import VigilConfig
from vigil.engine.orchestrator import EvaluationOrchestrator
from vigil.engine.sweep import acquire_lock, release_lock, run_daemon, run_sweep, settle
from vigil.engine.types import Lifecycle
from vigil.events import AssumptionChanged
from vigil.storage.queries import set_assumption_status

from .conftest import NOW


class TestRunSweep:
    def test_evaluates_candidates(self, orchestrator, gateway, add_decision):
        add_decision("fresh")
        add_decision("stale", last_evaluated_at=NOW - timedelta(hours=25))
        add_decision("dirty", needs_evaluation=True)
        result = run_sweep(orchestrator, gateway, "acme")
        assert result.candidates == ["dirty", "stale"]
        assert result.reasons == {"dirty": "explicit_flag", "stale": "stale"}
        assert result.batch.evaluated == 2
        assert gateway.get_decision("stale").last_evaluated_at == NOW

    def test_nothing_to_do(self, orchestrator, gateway, add_decision):
        add_decision("fresh")
        result = run_sweep(orchestrator, gateway, "acme")
        assert result.candidates == []
        assert result.batch.outcomes == []

    def test_limit(self, orchestrator, gateway, add_decision):
        for i in range(4):
            add_decision(f"D{i}", needs_evaluation=True)
        result = run_sweep(orchestrator, gateway, "acme", limit=3)
        assert len(result.candidates) == 3

    def test_time_decay_fallback(self, orchestrator, gateway, add_decision):
        # never marked by an event, but its review is 95 days old
        add_decision(
            "D1",
            last_reviewed_at=NOW - timedelta(days=95),
            last_evaluated_at=NOW - timedelta(days=2),
        )
        run_sweep(orchestrator, gateway, "acme")
        assert gateway.get_decision("D1").health == 97


class TestCascadeScenarios:
    def test_assumption_break_cascades_to_dependent(
        self, orchestrator, gateway, bus, add_decision, add_assumption, depend, memory_db
    ):
        add_decision("D1")
        add_decision("D2")
        add_decision("D3", lifecycle=Lifecycle.RETIRED)
        depend("D1", "D2")
        add_assumption("A1", linked=("D2", "D3"))

        set_assumption_status(memory_db, "A1", "BROKEN")
        bus.publish(AssumptionChanged("A1"))
        assert gateway.get_decision("D2").needs_evaluation
        assert not gateway.get_decision("D3").needs_evaluation
        assert not gateway.get_decision("D1").needs_evaluation

        # D2 rescored with a change -> D1 (its dependent) marked
        outcome = orchestrator.evaluate_if_needed("D2")
        assert outcome.changes_detected
        assert gateway.get_decision("D2").lifecycle is Lifecycle.INVALIDATED
        assert gateway.get_decision("D1").needs_evaluation

        orchestrator.evaluate_if_needed("D1")
        d1 = gateway.get_decision("D1")
        assert d1.health == 0
        assert d1.lifecycle is Lifecycle.AT_RISK

    def test_unchanged_rescore_stops_chain(
        self, orchestrator, gateway, add_decision, depend
    ):
        # A depends on B depends on C. C changes; B is rescored but its
        # verdict holds, so A is never marked.
        add_decision("A")
        add_decision("B")
        add_decision("C", health=90, needs_evaluation=True)
        depend("A", "B")
        depend("B", "C")

        assert orchestrator.evaluate_if_needed("C").changes_detected
        assert gateway.get_decision("B").needs_evaluation

        outcome = orchestrator.evaluate_if_needed("B")
        assert outcome.status == "evaluated"
        assert not outcome.changes_detected
        assert not gateway.get_decision("A").needs_evaluation


class TestSettle:
    def test_chain_settles(self, orchestrator, gateway, add_decision, add_assumption, depend,
                           memory_db, bus):
        for d in ("D1", "D2", "D3"):
            add_decision(d)
        depend("D1", "D2")
        depend("D2", "D3")
        add_assumption("A1", linked=("D3",), status="BROKEN")
        bus.publish(AssumptionChanged("A1"))

        report = settle(orchestrator, gateway, "acme")

        assert report.converged
        assert len(report.rounds) == 4
        assert [r.candidates for r in report.rounds[:3]] == [["D3"], ["D2"], ["D1"]]
        assert gateway.get_decision("D1").health == 0

    def test_cycle_converges(self, orchestrator, gateway, add_decision, depend):
        add_decision("X", health=60, lifecycle=Lifecycle.UNDER_REVIEW, needs_evaluation=True)
        add_decision("Y", health=80)
        depend("X", "Y")
        depend("Y", "X")

        report = settle(orchestrator, gateway, "acme")

        assert report.converged
        x, y = gateway.get_decision("X"), gateway.get_decision("Y")
        assert x.health == y.health == 80
        assert not x.needs_evaluation and not y.needs_evaluation

    def test_max_rounds(self, orchestrator, gateway, add_decision, depend):
        add_decision("X", health=60, needs_evaluation=True)
        add_decision("Y", health=80)
        depend("X", "Y")
        depend("Y", "X")
        report = settle(orchestrator, gateway, "acme", max_rounds=1)
        assert not report.converged
        assert len(report.rounds) == 1

    def test_failed_round_is_not_a_fixpoint(self, orchestrator, gateway, add_decision):
        add_decision("D1", needs_evaluation=True)
        orchestrator.engine = MagicMock()
        orchestrator.engine.evaluate.side_effect = RuntimeError("engine down")
        report = settle(orchestrator, gateway, "acme", max_rounds=3)
        assert not report.converged
        assert report.failed == 3
        assert gateway.get_decision("D1").needs_evaluation

    def test_to_dict(self, orchestrator, gateway, add_decision):
        add_decision("D1", needs_evaluation=True)
        data = settle(orchestrator, gateway, "acme").to_dict()
        assert data["converged"] is True
        assert data["rounds"] == 2
        assert data["per_round"][0]["candidates"] == ["D1"]
        assert data["per_round"][1]["candidates"] == []

    def test_candidates_beyond_limit_keep_settling(self, gateway, bus, propagator, clock,
                                                   add_decision):
        ids = [f"D{i}" for i in range(5)]
        for d in ids:
            add_decision(d, needs_evaluation=True)
        orch = EvaluationOrchestrator(
            gateway, bus=bus, clock=clock, config=VigilConfig(sweep={"limit": 2})
        )

        report = settle(orch, gateway, "acme")

        assert report.converged
        assert [len(r.candidates) for r in report.rounds] == [2, 2, 1, 0]
        assert report.evaluated == 5
        assert gateway.list_decisions_needing_evaluation("acme", now=NOW) == []
        assert not any(gateway.get_decision(d).needs_evaluation for d in ids)

    def test_lease_held_is_not_a_fixpoint(self, gateway, bus, propagator, clock, add_decision):
        add_decision("D1", needs_evaluation=True)
        assert gateway.acquire_lease("D1", "other-holder", NOW, 300)
        orch = EvaluationOrchestrator(
            gateway, bus=bus, clock=clock, holder="test-holder",
            config=VigilConfig(evaluation={"use_leases": True}),
        )

        report = settle(orch, gateway, "acme", max_rounds=3)

        assert not report.converged
        assert len(report.rounds) == 3
        assert all(r.candidates == ["D1"] for r in report.rounds)
        assert gateway.get_decision("D1").needs_evaluation


class TestDaemon:
    def test_lock_is_exclusive(self, tmp_path):
        lock_file = tmp_path / "sweep.lock"
        first = acquire_lock(lock_file)
        assert first is not None
        try:
            assert acquire_lock(lock_file) is None
        finally:
            release_lock(first, lock_file)
        second = acquire_lock(lock_file)
        assert second is not None
        release_lock(second, lock_file)

    def test_runs_cycles(self, orchestrator, gateway, add_decision, tmp_path):
        add_decision("D1", needs_evaluation=True)
        with patch("vigil.engine.sweep.time.sleep") as sleep:
            cycles = run_daemon(
                orchestrator, gateway, "acme", interval=7,
                max_cycles=2, lock_file=tmp_path / "sweep.lock",
            )
        assert cycles == 2
        sleep.assert_called_once_with(7)
        assert not gateway.get_decision("D1").needs_evaluation

    def test_on_cycle_sees_each_sweep(self, orchestrator, gateway, add_decision, tmp_path):
        add_decision("D1", needs_evaluation=True)
        on_cycle = MagicMock()
        with patch("vigil.engine.sweep.time.sleep"):
            run_daemon(
                orchestrator, gateway, "acme", interval=1, max_cycles=2,
                lock_file=tmp_path / "sweep.lock", on_cycle=on_cycle,
            )
        assert on_cycle.call_count == 2
        first, second = (c.args[0] for c in on_cycle.call_args_list)
        assert first.candidates == ["D1"]
        assert second.candidates == []

    def test_exits_when_locked(self, orchestrator, gateway, tmp_path):
        lock_file = tmp_path / "sweep.lock"
        held = acquire_lock(lock_file)
        try:
            assert run_daemon(orchestrator, gateway, "acme", max_cycles=1, lock_file=lock_file) == 0
        finally:
            release_lock(held, lock_file)
