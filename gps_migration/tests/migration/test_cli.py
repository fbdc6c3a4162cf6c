from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import psycopg
from click.testing import CliRunner

import gps_migration.tools.run_migration as mod
from gps_migration.tests.utils.fakes import FakeSource, InMemoryStore, row


USERS = [row(5, user_email="ana@example.com"), row(6, user_email="omar@example.com")]


def _legacy_env(monkeypatch) -> None:
    monkeypatch.setattr(mod, "load_environment", lambda: None)
    monkeypatch.setenv("WP_DB_HOST", "legacy-db")
    monkeypatch.setenv("WP_DB_USER", "reader")
    monkeypatch.setenv("WP_DB_NAME", "gpsdentaltraining")


def _use_source(monkeypatch, source: FakeSource) -> None:
    monkeypatch.setattr(mod, "WordPressSource", lambda settings: source)


def test_missing_legacy_settings_exit_with_error(monkeypatch) -> None:
    monkeypatch.setattr(mod, "load_environment", lambda: None)
    result = CliRunner().invoke(mod.cli, ["--dry-run"])
    assert result.exit_code == 1
    assert "Missing required settings: WP_DB_HOST, WP_DB_USER, WP_DB_NAME" in result.output


def test_live_run_requires_store_dsn(monkeypatch) -> None:
    _legacy_env(monkeypatch)
    result = CliRunner().invoke(mod.cli, [])
    assert result.exit_code == 1
    assert "SUPABASE_DB_URL" in result.output


def test_unknown_stage_and_conflicting_flags_are_usage_errors(monkeypatch) -> None:
    _legacy_env(monkeypatch)
    runner = CliRunner()

    unknown = runner.invoke(mod.cli, ["--dry-run", "--step", "payments"])
    assert unknown.exit_code == 2

    both = runner.invoke(mod.cli, ["--dry-run", "--step", "users", "--from", "events"])
    assert both.exit_code == 2
    assert "mutually exclusive" in both.output


def test_non_positive_batch_size_is_rejected(monkeypatch) -> None:
    _legacy_env(monkeypatch)
    result = CliRunner().invoke(mod.cli, ["--dry-run", "--batch-size", "0"])
    assert result.exit_code == 2


def test_dry_run_exports_and_writes_report(monkeypatch, tmp_path: Path) -> None:
    _legacy_env(monkeypatch)
    source = FakeSource(users=USERS)
    _use_source(monkeypatch, source)

    result = CliRunner().invoke(mod.cli, ["--dry-run", "--output-dir", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "Starting GPS Dental migration (DRY-RUN)" in result.output
    assert "Dry-run complete" in result.output
    assert source.closed is True
    assert (tmp_path / "users-export.json").exists()
    [report_path] = tmp_path.glob("migration-report-*.json")
    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["dryRun"] is True
    assert [stage["name"] for stage in report["stages"]] == list(mod.STAGE_NAMES)
    assert not (tmp_path / "id-mappings.json").exists()


def test_export_only_writes_no_report(monkeypatch, tmp_path: Path) -> None:
    _legacy_env(monkeypatch)
    _use_source(monkeypatch, FakeSource(users=USERS))

    result = CliRunner().invoke(mod.cli, ["--export-only", "--step", "users", "--output-dir", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert list(tmp_path.glob("migration-report-*.json")) == []
    assert (tmp_path / "clerk-import.json").exists()


def test_live_step_persists_mappings(monkeypatch, tmp_path: Path) -> None:
    _legacy_env(monkeypatch)
    _use_source(monkeypatch, FakeSource(users=USERS))
    store = InMemoryStore()
    monkeypatch.setattr(mod, "TransactionalWriter", SimpleNamespace(connect=lambda dsn: store))

    result = CliRunner().invoke(
        mod.cli,
        ["--step", "users", "--db-dsn", "postgresql://localhost/gps", "--output-dir", str(tmp_path)],
    )

    assert result.exit_code == 0, result.output
    assert "Migration finished successfully." in result.output
    assert "users: total=2 migrated=2 skipped=0 failed=0" in result.output
    mappings = json.loads((tmp_path / "id-mappings.json").read_text(encoding="utf-8"))
    assert [entry["legacyId"] for entry in mappings] == [5, 6]
    assert store.closed is True


def test_failing_stage_prints_resume_hint(monkeypatch, tmp_path: Path) -> None:
    _legacy_env(monkeypatch)
    monkeypatch.setenv("SUPABASE_DB_URL", "postgresql://localhost/gps")
    source = FakeSource()

    def lost_connection(since=None):
        raise RuntimeError("Lost connection to MySQL server")

    source.fetch_orders = lost_connection
    _use_source(monkeypatch, source)
    monkeypatch.setattr(mod, "TransactionalWriter", SimpleNamespace(connect=lambda dsn: InMemoryStore()))

    result = CliRunner().invoke(mod.cli, ["--from", "orders", "--output-dir", str(tmp_path)])

    assert result.exit_code == 1
    assert "Resume with --from=orders" in result.output
    assert "credits" not in result.output.split("=== Migration summary ===")[1]


def test_store_connection_failure_aborts(monkeypatch, tmp_path: Path) -> None:
    _legacy_env(monkeypatch)
    monkeypatch.setenv("SUPABASE_DB_URL", "postgresql://localhost/gps")
    _use_source(monkeypatch, FakeSource())

    def refuse(dsn):
        raise psycopg.OperationalError("connection refused")

    monkeypatch.setattr(mod, "TransactionalWriter", SimpleNamespace(connect=refuse))

    result = CliRunner().invoke(mod.cli, ["--output-dir", str(tmp_path)])

    assert result.exit_code == 1
    assert "Migration failed: connection refused" in result.output
