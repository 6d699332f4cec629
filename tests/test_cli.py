from datetime import datetime

from roster_api.models.pattern import PatternDefinition
from roster_api.models.reconciliation import AbsenceRecord, ReconciliationRun


def test_seed_patterns_command(app):
    runner = app.test_cli_runner()
    out = runner.invoke(args=["seed-patterns"])
    assert out.exit_code == 0
    assert "Seeded patterns" in out.output
    assert PatternDefinition.query.count() == 4

    again = runner.invoke(args=["seed-patterns"])
    assert "already present" in again.output


def test_reconcile_forced_command(app, make_period, clock):
    make_period()
    clock.at = datetime(2025, 2, 10, 6, 0)
    out = app.test_cli_runner().invoke(args=["reconcile-forced", "--from", "2025-02-01", "--to", "2025-02-03"])
    assert out.exit_code == 0, out.output
    assert "FORCED" in out.output
    assert "3 absence(s)" in out.output
    assert AbsenceRecord.query.count() == 3


def test_reconcile_nightly_command(app, make_period, clock):
    make_period()
    clock.at = datetime(2025, 2, 3, 6, 0)
    out = app.test_cli_runner().invoke(args=["reconcile-nightly", "--days", "2"])
    assert out.exit_code == 0, out.output
    assert "TOLERANT 2025-02-01..2025-02-03" in out.output
    assert ReconciliationRun.query.count() == 1


def test_archive_expired_command(app, make_period, clock):
    p = make_period()
    clock.at = datetime(2025, 3, 1, 0, 0)
    out = app.test_cli_runner().invoke(args=["archive-expired"])
    assert out.exit_code == 0
    assert f"Archived 1 period(s): {p.id}" in out.output
