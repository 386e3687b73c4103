"""Unit tests for the CLI: command registration and behaviour via CliRunner."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from typer.testing import CliRunner

from edgeswap.cli.app import app
from edgeswap.core.config_store import ParameterRepository, SqliteConfigStore
from edgeswap.core.run_ledger import RunLedger
from edgeswap.monitor.projection import MonitorProjection

runner = CliRunner()


def _params(data_dir: Path, service: str = "frontend"):
    return ParameterRepository(SqliteConfigStore(data_dir / "parameters.db"), service).load()


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("simulate", "history", "runs", "params"):
            assert command in result.output

    def test_params_help(self):
        result = runner.invoke(app, ["params", "--help"])
        assert result.exit_code == 0
        assert "show" in result.output
        assert "init" in result.output


# ---------------------------------------------------------------------------
# Test: params
# ---------------------------------------------------------------------------


class TestParamsCommands:
    def test_init_then_show(self, tmp_path: Path):
        store = str(tmp_path / "params.db")
        result = runner.invoke(
            app,
            [
                "params", "init",
                "--production-id", "E2QWRUHEXAMPLE",
                "--service", "shop",
                "--version", "v5",
                "--no-cleanup",
                "--store", store,
            ],
        )
        assert result.exit_code == 0, result.output

        params = ParameterRepository(SqliteConfigStore(Path(store)), "shop").load()
        assert params.production_distribution_id == "E2QWRUHEXAMPLE"
        assert params.frontend_version == "v5"
        assert params.staging_cleanup_enabled is False

        shown = runner.invoke(app, ["params", "show", "--service", "shop", "--store", store])
        assert shown.exit_code == 0
        assert "E2QWRUHEXAMPLE" in shown.output

    def test_show_unknown_service(self, tmp_path: Path):
        result = runner.invoke(
            app, ["params", "show", "--service", "ghost", "--store", str(tmp_path / "p.db")]
        )
        assert result.exit_code == 1

    def test_init_requires_production_id(self, tmp_path: Path):
        result = runner.invoke(app, ["params", "init", "--store", str(tmp_path / "p.db")])
        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# Test: simulate / history / runs
# ---------------------------------------------------------------------------


class TestSimulate:
    def test_accept(self, tmp_path: Path):
        result = runner.invoke(app, ["simulate", "--accept", "--data-dir", str(tmp_path)])
        assert result.exit_code == 0, result.output
        assert "Awaiting approval" in result.output

        params = _params(tmp_path)
        assert params.frontend_version == "v2"
        assert not params.has_staging
        assert (tmp_path / "objects" / "v2" / "index.html").is_file()

        run_id = RunLedger(tmp_path / "ledger.db").get_all_run_ids()[0]
        snapshot = MonitorProjection(RunLedger(tmp_path / "ledger.db")).snapshot(run_id)
        assert snapshot.status.value == "succeeded"

    def test_reject(self, tmp_path: Path):
        result = runner.invoke(app, ["simulate", "--reject", "--data-dir", str(tmp_path)])
        assert result.exit_code == 0, result.output

        params = _params(tmp_path)
        assert params.frontend_version == "v1"
        assert not params.has_staging

        ledger = RunLedger(tmp_path / "ledger.db")
        snapshot = MonitorProjection(ledger).snapshot(ledger.get_all_run_ids()[0])
        assert snapshot.status.value == "purged"

    def test_no_cleanup_keeps_staging(self, tmp_path: Path):
        result = runner.invoke(
            app, ["simulate", "--no-cleanup", "--service", "shop", "--data-dir", str(tmp_path)]
        )
        assert result.exit_code == 0, result.output
        params = _params(tmp_path, "shop")
        assert params.frontend_version == "v2"
        assert params.has_staging

    def test_repeated_runs_continue_from_stored_parameters(self, tmp_path: Path):
        for _ in range(2):
            result = runner.invoke(app, ["simulate", "--accept", "--data-dir", str(tmp_path)])
            assert result.exit_code == 0, result.output

        params = _params(tmp_path)
        assert params.frontend_version == "v3"
        assert params.last_built_version == "v3"
        assert (tmp_path / "objects" / "v2" / "index.html").is_file()
        assert (tmp_path / "objects" / "v3" / "index.html").is_file()

    def test_cleanup_flag_updates_seeded_service(self, tmp_path: Path):
        runner.invoke(app, ["simulate", "--data-dir", str(tmp_path)])
        result = runner.invoke(app, ["simulate", "--no-cleanup", "--data-dir", str(tmp_path)])
        assert result.exit_code == 0, result.output
        params = _params(tmp_path)
        assert params.staging_cleanup_enabled is False
        assert params.has_staging

    def test_approval_request_written(self, tmp_path: Path):
        runner.invoke(app, ["simulate", "--data-dir", str(tmp_path)])
        written = list((tmp_path / "events" / "approvals").rglob("*.json"))
        assert len(written) == 1


class TestHistoryAndRuns:
    def test_history_after_simulate(self, tmp_path: Path):
        runner.invoke(app, ["simulate", "--data-dir", str(tmp_path)])
        ledger_db = tmp_path / "ledger.db"
        run_id = RunLedger(ledger_db).get_all_run_ids()[0]

        result = runner.invoke(
            app, ["history", run_id, "--verify-chain", "--ledger", str(ledger_db)]
        )
        assert result.exit_code == 0, result.output
        assert "valid" in result.output

    def test_history_unknown_run(self, tmp_path: Path):
        runner.invoke(app, ["simulate", "--data-dir", str(tmp_path)])
        result = runner.invoke(
            app, ["history", "run-missing", "--ledger", str(tmp_path / "ledger.db")]
        )
        assert result.exit_code == 1
        assert "Run not found" in result.output

    def test_missing_ledger(self, tmp_path: Path):
        result = runner.invoke(app, ["runs", "--ledger", str(tmp_path / "none.db")])
        assert result.exit_code == 1

    def test_tampered_chain_exit_code(self, tmp_path: Path):
        runner.invoke(app, ["simulate", "--data-dir", str(tmp_path)])
        ledger_db = tmp_path / "ledger.db"
        run_id = RunLedger(ledger_db).get_all_run_ids()[0]
        conn = sqlite3.connect(str(ledger_db))
        conn.execute("UPDATE run_ledger SET outcome = 'succeeded' WHERE outcome = 'approval_pending'")
        conn.commit()
        conn.close()

        result = runner.invoke(
            app, ["history", run_id, "--verify-chain", "--ledger", str(ledger_db)]
        )
        assert result.exit_code == 2

    def test_runs_lists_every_run(self, tmp_path: Path):
        runner.invoke(app, ["simulate", "--data-dir", str(tmp_path)])
        runner.invoke(app, ["simulate", "--reject", "--data-dir", str(tmp_path)])
        assert len(RunLedger(tmp_path / "ledger.db").get_all_run_ids()) == 2

        result = runner.invoke(app, ["runs", "--ledger", str(tmp_path / "ledger.db")])
        assert result.exit_code == 0, result.output
