"""End-to-end tests for the vigil CLI."""

from __future__ import annotations

import json

import pytest
import yaml
from click.testing import CliRunner

from vigil.cli.main import cli
from vigil.storage.database import Database
from vigil.storage.queries import (
    get_assumption,
    get_decision,
    list_evaluation_runs,
    list_notifications,
)


def _json(output: str) -> dict:
    """Parse the JSON document at the end of ``output``, ignoring log lines."""
    lines = output.splitlines()
    start = next(i for i, line in enumerate(lines) if line.startswith("{"))
    return json.loads("\n".join(lines[start:]))


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "vigil.db"


@pytest.fixture
def invoke(tmp_path, db_path, monkeypatch, clean_env):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    config_file = tmp_path / "vigil.yaml"
    config_file.write_text(yaml.dump({"database": {"path": str(db_path)}}))
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(cli, ["--config", str(config_file), *args])

    return _invoke


def _row(db_path, decision_id):
    with Database(db_path) as db:
        return get_decision(db, decision_id)


class TestSetup:
    def test_init(self, invoke, db_path, tmp_path):
        result = invoke("init")
        assert result.exit_code == 0, result.output
        assert "Vigil initialized successfully" in result.output
        assert db_path.exists()
        assert (tmp_path / "home" / ".vigil").is_dir()

    def test_config_validate(self, invoke):
        result = invoke("config", "validate")
        assert result.exit_code == 0
        assert "Config is valid." in result.output
        assert "leases=off" in result.output

    def test_config_validate_rejects_bad_file(self, tmp_path, clean_env):
        bad = tmp_path / "bad.yaml"
        bad.write_text("staleness:\n  stale_hours: -5\n")
        result = CliRunner().invoke(cli, ["--config", str(bad), "config", "validate"])
        assert result.exit_code == 1
        assert "Config validation failed" in result.output

    def test_config_show(self, invoke, db_path):
        result = invoke("config", "show")
        assert result.exit_code == 0
        assert _json(result.output)["database"]["path"] == str(db_path)


class TestDecisionCommands:
    def test_add_and_show(self, invoke):
        assert invoke("decision", "add", "D1", "--tenant", "acme", "--title", "Use Postgres").exit_code == 0
        assert invoke("decision", "add", "D2", "--tenant", "acme").exit_code == 0
        assert invoke("decision", "depend", "D1", "D2").exit_code == 0

        result = invoke("decision", "show", "D1")
        assert result.exit_code == 0
        data = _json(result.output)
        assert data["title"] == "Use Postgres"
        assert data["depends_on"] == ["D2"]
        assert data["needs_evaluation"] is True

    def test_add_duplicate(self, invoke):
        invoke("decision", "add", "D1", "--tenant", "acme")
        result = invoke("decision", "add", "D1", "--tenant", "acme")
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_show_missing(self, invoke):
        assert invoke("decision", "show", "nope").exit_code == 1

    def test_depend_unknown_decision(self, invoke):
        invoke("decision", "add", "D1", "--tenant", "acme")
        result = invoke("decision", "depend", "D1", "ghost")
        assert result.exit_code == 1
        assert "Decision ghost not found" in result.output
        assert isinstance(result.exception, SystemExit)
        assert _json(invoke("decision", "show", "D1").output)["depends_on"] == []

    def test_assumption_link_unknown_decision(self, invoke, db_path):
        invoke("decision", "add", "D1", "--tenant", "acme")
        result = invoke("assumption", "add", "A1", "--tenant", "acme", "--link", "D1",
                        "--link", "ghost")
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Decision ghost not found" in result.output
        with Database(db_path) as db:
            assert get_assumption(db, "A1") is None

    def test_check(self, invoke):
        invoke("decision", "add", "D1", "--tenant", "acme")
        result = invoke("check", "D1")
        assert result.exit_code == 0
        data = _json(result.output)
        assert data["required"] is True
        assert data["reason"] == "never_evaluated"

    def test_check_missing(self, invoke):
        result = invoke("check", "nope")
        assert result.exit_code == 1
        assert _json(result.output)["reason"] == "decision_not_found"


class TestEvaluate:
    def test_evaluate_then_skip(self, invoke, db_path):
        invoke("decision", "add", "D1", "--tenant", "acme")
        result = invoke("evaluate", "D1", "--json")
        assert result.exit_code == 0, result.output
        assert _json(result.output)["outcomes"][0]["status"] == "evaluated"
        assert _row(db_path, "D1")["last_evaluated_at"] is not None

        result = invoke("evaluate", "D1")
        assert result.exit_code == 0
        assert "skipped    fresh" in result.output

        result = invoke("evaluate", "D1", "--force")
        assert "evaluated" in result.output

    def test_missing_decision_fails(self, invoke, db_path):
        result = invoke("evaluate", "nope")
        assert result.exit_code == 1
        assert "[not_found]" in result.output
        with Database(db_path) as db:
            runs = list_evaluation_runs(db)
        assert runs[0]["status"] == "completed_with_errors"
        assert runs[0]["failed"] == 1

    def test_bad_as_of(self, invoke):
        result = invoke("evaluate", "D1", "--as-of", "yesterday")
        assert result.exit_code == 2


class TestPropagationCommands:
    def test_assumption_status_cascade(self, invoke, db_path):
        invoke("decision", "add", "D1", "--tenant", "acme")
        invoke("decision", "add", "D2", "--tenant", "acme")
        invoke("decision", "depend", "D1", "D2")
        invoke("assumption", "add", "A1", "--tenant", "acme", "--link", "D2")
        assert invoke("settle", "acme").exit_code == 0

        result = invoke("assumption", "status", "A1", "broken")
        assert result.exit_code == 0
        assert "A1 is now BROKEN; 1 decision(s) marked" in result.output
        assert _row(db_path, "D2")["needs_evaluation"] == 1

        result = invoke("settle", "acme", "--json")
        assert result.exit_code == 0, result.output
        report = _json(result.output)
        assert report["converged"] is True
        assert report["evaluated"] == 2

        assert _row(db_path, "D2")["lifecycle"] == "INVALIDATED"
        assert _row(db_path, "D1")["health"] == 0
        with Database(db_path) as db:
            assert list_notifications(db, "D2")

    def test_assumption_status_unknown(self, invoke):
        assert invoke("assumption", "status", "nope", "VALID").exit_code == 1

    def test_mark(self, invoke, db_path):
        invoke("decision", "add", "D1", "--tenant", "acme")
        invoke("decision", "add", "D2", "--tenant", "acme")
        invoke("decision", "depend", "D1", "D2")
        invoke("sweep", "acme", "--once")

        result = invoke("mark", "--decision", "D2", "--dirty", "D2")
        assert result.exit_code == 0
        assert "2 decision(s) marked" in result.output
        assert _row(db_path, "D1")["needs_evaluation"] == 1

    def test_mark_nothing(self, invoke):
        assert invoke("mark").exit_code == 1


class TestSweepCommands:
    def test_sweep_once(self, invoke):
        invoke("decision", "add", "D1", "--tenant", "acme")
        invoke("decision", "add", "D2", "--tenant", "other")
        result = invoke("sweep", "acme", "--once", "--json")
        assert result.exit_code == 0, result.output
        data = _json(result.output)
        assert data["candidates"] == ["D1"]
        assert data["reasons"] == {"D1": "never_evaluated"}

        result = invoke("sweep", "acme", "--once")
        assert "No decisions need evaluation" in result.output

    def test_settle_records_run(self, invoke, db_path):
        invoke("decision", "add", "D1", "--tenant", "acme")
        result = invoke("settle", "acme")
        assert result.exit_code == 0
        assert "acme converged" in result.output
        with Database(db_path) as db:
            runs = list_evaluation_runs(db)
        assert runs[0]["kind"] == "settle"
        assert runs[0]["status"] == "converged"
