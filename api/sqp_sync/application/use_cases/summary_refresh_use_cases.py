"""
Refresco de la tabla resumen search_query_summary.

Agrega search_query_performance por periodo (semanal, mensual, trimestral y
anual) y hace UPSERT por (period_type, period_start, asin, search_query).
El periodo de cada fila se determina por su end_date.

Ventanas (periodos completos hacia atras, incluyendo el actual):
- weekly: 8 semanas (lunes a domingo)
- monthly: 6 meses
- quarterly: 8 trimestres (2 anos)
- yearly: 3 anos
"""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.infrastructure.database.models import (
    SearchQueryPerformanceModel,
    SearchQuerySummaryModel,
)
from sqp_sync.infrastructure.external.bigquery_sync.pg_repository import PostgresUpsertRepository
from sqp_sync.infrastructure.external.bigquery_sync.types import TableSyncResult, TimeBudget
from sqp_sync.infrastructure.repositories.refresh_audit_repository import RefreshAuditRepository
from sqp_sync.infrastructure.repositories.refresh_config_repository import RefreshConfigRepository
from sqp_sync.shared.constants.refresh_constants import (
    DEFAULT_SCHEMA,
    FUNCTION_SUMMARY_TABLES,
    RefreshStatus,
    RefreshType,
    SummaryPeriod,
)
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils

SUMMARY_TABLE = "search_query_summary"
SUMMARY_NATURAL_KEY = ("period_type", "period_start", "asin", "search_query")
_UPSERT_CHUNK = 500

# Cantidad de periodos que cubre cada ventana
PERIOD_WINDOWS: Dict[SummaryPeriod, int] = {
    SummaryPeriod.WEEKLY: 8,
    SummaryPeriod.MONTHLY: 6,
    SummaryPeriod.QUARTERLY: 8,
    SummaryPeriod.YEARLY: 3,
}


def _shift_months(d: date, months: int) -> date:
    """Primer dia del mes desplazado `months` meses."""
    index = d.year * 12 + (d.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def period_bounds(period: SummaryPeriod, d: date) -> Tuple[date, date]:
    """Inicio y fin (inclusive) del periodo que contiene `d`."""
    if period == SummaryPeriod.WEEKLY:
        start = d - timedelta(days=d.weekday())
        return start, start + timedelta(days=6)
    if period == SummaryPeriod.MONTHLY:
        start = date(d.year, d.month, 1)
        return start, _shift_months(start, 1) - timedelta(days=1)
    if period == SummaryPeriod.QUARTERLY:
        start = date(d.year, 3 * ((d.month - 1) // 3) + 1, 1)
        return start, _shift_months(start, 3) - timedelta(days=1)
    start = date(d.year, 1, 1)
    return start, date(d.year, 12, 31)


def window_start(period: SummaryPeriod, as_of: date) -> date:
    """Primer dia de la ventana del periodo."""
    current_start, _ = period_bounds(period, as_of)
    count = PERIOD_WINDOWS[period]
    if period == SummaryPeriod.WEEKLY:
        return current_start - timedelta(weeks=count - 1)
    if period == SummaryPeriod.MONTHLY:
        return _shift_months(current_start, -(count - 1))
    if period == SummaryPeriod.QUARTERLY:
        return _shift_months(current_start, -3 * (count - 1))
    return date(current_start.year - (count - 1), 1, 1)


@dataclass
class _Bucket:
    period_end: date
    impressions: int = 0
    clicks: int = 0
    cart_adds: int = 0
    purchases: int = 0
    ctr_sum: float = 0.0
    cvr_sum: float = 0.0
    rows: int = 0


def aggregate_summaries(rows: Iterable[Dict[str, Any]], as_of: date) -> List[Dict[str, Any]]:
    """
    Agrega filas de search_query_performance en filas resumen.

    Cada fila de entrada necesita: end_date, asin, search_query, impressions,
    clicks, cart_adds, purchases, ctr, cvr.
    """
    starts = {period: window_start(period, as_of) for period in PERIOD_WINDOWS}
    buckets: Dict[Tuple[str, date, str, str], _Bucket] = {}

    for row in rows:
        end_date = DateTimeUtils.parse_date(row.get("end_date"))
        if end_date is None or end_date > as_of:
            continue
        for period, first_day in starts.items():
            if end_date < first_day:
                continue
            p_start, p_end = period_bounds(period, end_date)
            key = (period.value, p_start, row["asin"], row["search_query"])
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = _Bucket(period_end=p_end)
            bucket.impressions += row.get("impressions") or 0
            bucket.clicks += row.get("clicks") or 0
            bucket.cart_adds += row.get("cart_adds") or 0
            bucket.purchases += row.get("purchases") or 0
            bucket.ctr_sum += row.get("ctr") or 0.0
            bucket.cvr_sum += row.get("cvr") or 0.0
            bucket.rows += 1

    summaries = []
    for (period_type, p_start, asin, search_query), b in buckets.items():
        summaries.append({
            "period_type": period_type,
            "period_start": p_start,
            "period_end": b.period_end,
            "asin": asin,
            "search_query": search_query,
            "total_impressions": b.impressions,
            "total_clicks": b.clicks,
            "total_cart_adds": b.cart_adds,
            "total_purchases": b.purchases,
            "avg_ctr": b.ctr_sum / b.rows if b.rows else 0.0,
            "avg_cvr": b.cvr_sum / b.rows if b.rows else 0.0,
        })
    return summaries


class SummaryRefreshService:
    """
    Recalcula search_query_summary y registra la corrida en refresh_audit_log
    como cualquier otra tabla.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.configs = RefreshConfigRepository(db)
        self.audits = RefreshAuditRepository(db)
        self.upserts = PostgresUpsertRepository(db)

    async def _load_rows(self, since: date) -> List[Dict[str, Any]]:
        m = SearchQueryPerformanceModel
        result = await self.db.execute(
            select(
                m.end_date, m.asin, m.search_query, m.impressions,
                m.clicks, m.cart_adds, m.purchases, m.ctr, m.cvr,
            ).where(m.end_date >= since)
        )
        return [dict(r._mapping) for r in result.all()]

    async def refresh_summaries(self, as_of: Optional[date] = None) -> Dict[str, int]:
        """
        Recalcula todas las ventanas. Retorna filas escritas por tipo de periodo.
        No hace commit.
        """
        as_of = as_of or DateTimeUtils.now_utc().date()
        since = min(window_start(period, as_of) for period in PERIOD_WINDOWS)
        source_rows = await self._load_rows(since)
        summaries = aggregate_summaries(source_rows, as_of)

        written = {period.value: 0 for period in PERIOD_WINDOWS}
        inserted = updated = 0
        for i in range(0, len(summaries), _UPSERT_CHUNK):
            chunk = summaries[i:i + _UPSERT_CHUNK]
            result = await self.upserts.upsert_rows(SearchQuerySummaryModel, chunk, SUMMARY_NATURAL_KEY)
            inserted += result.inserted
            updated += result.updated
        for row in summaries:
            written[row["period_type"]] += 1

        logger.info(
            f"Resumen recalculado desde {since.isoformat()}: {len(source_rows)} filas origen, "
            f"{len(summaries)} filas resumen ({written})"
        )
        written["inserted"] = inserted
        written["updated"] = updated
        written["source_rows"] = len(source_rows)
        return written

    async def run(
        self,
        table_name: str = SUMMARY_TABLE,
        *,
        refresh_type: str = RefreshType.MANUAL.value,
        as_of: Optional[date] = None,
    ) -> TableSyncResult:
        """
        Corrida auditada del resumen. Nunca lanza: el error queda en el audit log.
        """
        budget = TimeBudget(None)
        config = await self.configs.get_by_table(table_name)
        config_id = config.id if config else None
        schema = config.table_schema if config else DEFAULT_SCHEMA

        audit = await self.audits.create(
            table_schema=schema,
            table_name=table_name,
            refresh_type=refresh_type,
            refresh_config_id=config_id,
            sync_metadata={"function_name": FUNCTION_SUMMARY_TABLES},
        )
        await self.db.commit()
        audit_id = audit.id

        try:
            written = await self.refresh_summaries(as_of)
            rows = written["inserted"] + written["updated"]
            await self.audits.finish(
                audit_id,
                status=RefreshStatus.SUCCESS,
                rows_processed=rows,
                rows_inserted=written["inserted"],
                rows_updated=written["updated"],
                sync_metadata={"function_name": FUNCTION_SUMMARY_TABLES, "periods": written},
            )
            if config_id is not None:
                await self.configs.mark_refreshed(config_id, DateTimeUtils.now_utc())
            await self.db.commit()
            logger.success(f"Resumen {table_name} actualizado: {rows} filas")
            return TableSyncResult(
                table_name=table_name,
                function_name=FUNCTION_SUMMARY_TABLES,
                status=RefreshStatus.SUCCESS.value,
                audit_log_id=audit_id,
                rows_processed=rows,
                rows_inserted=written["inserted"],
                rows_updated=written["updated"],
                execution_time_ms=budget.elapsed_ms,
            )
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error recalculando {table_name}: {e}")
            logger.exception("Detalle del error:")
            await self.audits.finish(
                audit_id,
                status=RefreshStatus.FAILED,
                error_message=str(e),
                error_details={"type": type(e).__name__},
            )
            await self.db.commit()
            return TableSyncResult(
                table_name=table_name,
                function_name=FUNCTION_SUMMARY_TABLES,
                status=RefreshStatus.FAILED.value,
                audit_log_id=audit_id,
                error=str(e),
                execution_time_ms=budget.elapsed_ms,
            )
