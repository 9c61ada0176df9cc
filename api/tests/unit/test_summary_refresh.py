"""
Tests unitarios del recalculo de la tabla resumen.
"""
from datetime import date

import pytest

from sqp_sync.application.use_cases.summary_refresh_use_cases import (
    SummaryRefreshService,
    aggregate_summaries,
    period_bounds,
    window_start,
)
from sqp_sync.infrastructure.database.models import SearchQueryPerformanceModel, SearchQuerySummaryModel
from sqp_sync.infrastructure.external.bigquery_sync.pg_repository import PostgresUpsertRepository
from sqp_sync.infrastructure.repositories.refresh_audit_repository import RefreshAuditRepository
from sqp_sync.shared.constants.refresh_constants import SummaryPeriod

from conftest import seed_refresh_configs

AS_OF = date(2025, 3, 20)  # jueves


def _perf(end_date, asin="B0SUMMARY1", query="protein powder", impressions=100, clicks=10, ctr=0.1, cvr=0.2):
    return {
        "end_date": end_date,
        "asin": asin,
        "search_query": query,
        "impressions": impressions,
        "clicks": clicks,
        "cart_adds": 4,
        "purchases": 2,
        "ctr": ctr,
        "cvr": cvr,
    }


class TestPeriods:
    """Tests de limites de periodo y ventanas."""

    @pytest.mark.parametrize("period, expected", [
        (SummaryPeriod.WEEKLY, (date(2025, 3, 17), date(2025, 3, 23))),
        (SummaryPeriod.MONTHLY, (date(2025, 3, 1), date(2025, 3, 31))),
        (SummaryPeriod.QUARTERLY, (date(2025, 1, 1), date(2025, 3, 31))),
        (SummaryPeriod.YEARLY, (date(2025, 1, 1), date(2025, 12, 31))),
    ])
    def test_period_bounds(self, period, expected):
        assert period_bounds(period, AS_OF) == expected

    def test_month_end_in_leap_year(self):
        assert period_bounds(SummaryPeriod.MONTHLY, date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))

    def test_fourth_quarter_crosses_year(self):
        assert period_bounds(SummaryPeriod.QUARTERLY, date(2024, 11, 5)) == (date(2024, 10, 1), date(2024, 12, 31))

    @pytest.mark.parametrize("period, expected", [
        (SummaryPeriod.WEEKLY, date(2025, 1, 27)),
        (SummaryPeriod.MONTHLY, date(2024, 10, 1)),
        (SummaryPeriod.QUARTERLY, date(2023, 4, 1)),
        (SummaryPeriod.YEARLY, date(2023, 1, 1)),
    ])
    def test_window_start(self, period, expected):
        assert window_start(period, AS_OF) == expected


class TestAggregateSummaries:
    """Tests de agregacion por periodo."""

    def test_weeks_are_split_and_month_is_combined(self):
        rows = [
            _perf(date(2025, 3, 16), impressions=100, clicks=10, cvr=0.2),
            _perf(date(2025, 3, 9), impressions=50, clicks=5, cvr=0.4),
        ]

        summaries = aggregate_summaries(rows, AS_OF)

        by_period = {}
        for s in summaries:
            by_period.setdefault(s["period_type"], []).append(s)
        assert len(by_period["weekly"]) == 2
        assert len(by_period["monthly"]) == 1
        monthly = by_period["monthly"][0]
        assert monthly["period_start"] == date(2025, 3, 1)
        assert monthly["period_end"] == date(2025, 3, 31)
        assert monthly["total_impressions"] == 150
        assert monthly["total_clicks"] == 15
        assert monthly["avg_cvr"] == pytest.approx(0.3)

    def test_rows_outside_windows_are_ignored(self):
        rows = [
            _perf(date(2025, 3, 30)),  # posterior a as_of
            _perf(date(2022, 6, 5)),   # anterior a todas las ventanas
            _perf(date(2024, 11, 30)),  # solo mensual, trimestral y anual
        ]

        summaries = aggregate_summaries(rows, AS_OF)

        assert sorted(s["period_type"] for s in summaries) == ["monthly", "quarterly", "yearly"]

    def test_distinct_queries_are_not_mixed(self):
        rows = [_perf(date(2025, 3, 16), query="a"), _perf(date(2025, 3, 16), query="b")]

        weekly = [s for s in aggregate_summaries(rows, AS_OF) if s["period_type"] == "weekly"]

        assert sorted(s["search_query"] for s in weekly) == ["a", "b"]


@pytest.mark.asyncio
async def test_summary_run_is_audited_and_idempotent(db_session):
    await seed_refresh_configs(db_session)
    for end, query in [(date(2025, 3, 16), "a"), (date(2025, 3, 9), "a"), (date(2025, 3, 16), "b")]:
        db_session.add(SearchQueryPerformanceModel(
            start_date=date.fromordinal(end.toordinal() - 6),
            end_date=end,
            asin="B0SUMMARY1",
            search_query=query,
            impressions=100,
            clicks=10,
            cart_adds=4,
            purchases=2,
            ctr=0.1,
            cvr=0.2,
        ))
    await db_session.commit()
    service = SummaryRefreshService(db_session)

    first = await service.run(as_of=AS_OF)

    # a: 2 semanas + mes + trimestre + anio; b: 1 semana + mes + trimestre + anio
    assert first.status == "success"
    assert first.rows_inserted == 9
    assert await PostgresUpsertRepository(db_session).count_rows(SearchQuerySummaryModel) == 9
    audit = await RefreshAuditRepository(db_session).get(first.audit_log_id)
    assert audit.status == "success"
    assert audit.sync_metadata["periods"]["weekly"] == 3

    second = await service.run(as_of=AS_OF)
    assert second.rows_inserted == 0
    assert second.rows_updated == 9
