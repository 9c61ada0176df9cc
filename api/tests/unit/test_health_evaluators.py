"""
Tests unitarios de los evaluadores de salud.
"""
from datetime import date, datetime, timedelta, timezone

from sqp_sync.application.services.health_evaluators import (
    DataFreshnessCheck,
    FailureRateCheck,
    HealthContext,
    StalePercentageCheck,
    SyncLagCheck,
    evaluate_health,
    is_stale,
    worst_level,
)
from sqp_sync.shared.constants.refresh_constants import HealthLevel

NOW = datetime(2025, 3, 20, 12, 0, tzinfo=timezone.utc)


def test_is_stale_uses_frequency_multiplier():
    assert is_stale(None, 24, NOW) is True
    assert is_stale(NOW - timedelta(hours=35), 24, NOW) is False
    assert is_stale(NOW - timedelta(hours=37), 24, NOW) is True


def test_is_stale_accepts_naive_datetimes():
    naive = (NOW - timedelta(hours=1)).replace(tzinfo=None)
    assert is_stale(naive, 24, NOW) is False


def test_worst_level():
    assert worst_level([]) == HealthLevel.HEALTHY
    assert worst_level([HealthLevel.HEALTHY, HealthLevel.WARNING]) == HealthLevel.WARNING
    assert worst_level([HealthLevel.WARNING, HealthLevel.ERROR]) == HealthLevel.ERROR


def test_stale_percentage():
    ok = StalePercentageCheck().evaluate(HealthContext(now=NOW, enabled_tables=10, stale_tables=2))
    bad = StalePercentageCheck().evaluate(HealthContext(now=NOW, enabled_tables=3, stale_tables=1))
    empty = StalePercentageCheck().evaluate(HealthContext(now=NOW))

    assert ok.status == HealthLevel.HEALTHY
    assert bad.status == HealthLevel.ERROR
    assert bad.value == 33.33
    assert empty.status == HealthLevel.WARNING


def test_failure_rate():
    none = FailureRateCheck().evaluate(HealthContext(now=NOW))
    high = FailureRateCheck().evaluate(HealthContext(now=NOW, runs_last_24h=5, failed_runs_last_24h=1))

    assert none.status == HealthLevel.HEALTHY
    assert high.status == HealthLevel.ERROR
    assert high.value == 20.0


def test_sync_lag():
    never = SyncLagCheck().evaluate(HealthContext(now=NOW))
    recent = SyncLagCheck().evaluate(HealthContext(now=NOW, last_success_at=NOW - timedelta(hours=3)))
    late = SyncLagCheck().evaluate(HealthContext(now=NOW, last_success_at=NOW - timedelta(hours=49)))

    assert never.status == HealthLevel.ERROR
    assert recent.status == HealthLevel.HEALTHY
    assert late.status == HealthLevel.ERROR


def test_data_freshness_levels():
    check = DataFreshnessCheck()

    assert check.evaluate(HealthContext(now=NOW, latest_data_date=date(2025, 3, 18))).status == HealthLevel.HEALTHY
    assert check.evaluate(HealthContext(now=NOW, latest_data_date=date(2025, 3, 15))).status == HealthLevel.WARNING
    assert check.evaluate(HealthContext(now=NOW, latest_data_date=date(2025, 3, 10))).status == HealthLevel.ERROR
    assert check.evaluate(HealthContext(now=NOW)).status == HealthLevel.ERROR


def test_evaluate_health_runs_all_checks():
    context = HealthContext(
        now=NOW,
        enabled_tables=3,
        stale_tables=0,
        runs_last_24h=3,
        failed_runs_last_24h=0,
        last_success_at=NOW - timedelta(hours=1),
        latest_data_date=date(2025, 3, 16),
    )

    results = evaluate_health(context)

    assert [r.name for r in results] == ["stale_tables", "failure_rate_24h", "sync_lag", "data_freshness"]
    assert worst_level([r.status for r in results]) == HealthLevel.WARNING
