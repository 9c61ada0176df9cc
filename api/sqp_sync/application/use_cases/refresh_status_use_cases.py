"""
Casos de uso de consulta y administracion del refresco:
estado por tabla, salud, historial, metricas, configuracion y disparo manual.
"""
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.application.dto.refresh_dto import (
    AuditHistoryDTO,
    AuditLogDTO,
    DailySuccessRateDTO,
    HealthCheckDTO,
    HealthReportDTO,
    RefreshConfigDTO,
    RefreshConfigUpdateDTO,
    RefreshMetricsDTO,
    RefreshStatusDTO,
    RefreshTimePointDTO,
    TableCategoryDTO,
    TableMetricsDTO,
    TableOverviewDTO,
    TableOverviewMetricsDTO,
    TablesOverviewDTO,
    TablesSummaryDTO,
    TableStatusDTO,
    TableTrendsDTO,
)
from sqp_sync.application.services.health_evaluators import (
    HealthContext,
    evaluate_health,
    hours_since,
    is_stale,
    worst_level,
)
from sqp_sync.core.config import settings
from sqp_sync.infrastructure.database.models import (
    AsinPerformanceDataModel,
    RefreshConfigModel,
    SearchQueryPerformanceModel,
    SearchQuerySummaryModel,
)
from sqp_sync.infrastructure.external.bigquery_sync.pg_repository import PostgresUpsertRepository
from sqp_sync.infrastructure.repositories.checkpoint_repository import CheckpointRepository
from sqp_sync.infrastructure.repositories.orchestration_log_repository import OrchestrationLogRepository
from sqp_sync.infrastructure.repositories.refresh_audit_repository import RefreshAuditRepository
from sqp_sync.infrastructure.repositories.refresh_config_repository import RefreshConfigRepository
from sqp_sync.shared.constants.refresh_constants import (
    OTHER_CATEGORY,
    TABLE_CATEGORIES,
    TABLE_TREND_DAYS,
    TABLE_TREND_REFRESH_POINTS,
    HealthLevel,
    RefreshStatus,
    TableHealthStatus,
)
from sqp_sync.shared.exceptions.domain import (
    EntityNotFoundException,
    RefreshDisabledException,
    RefreshTooSoonException,
)
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils


_TABLE_MODELS = {
    "asin_performance_data": AsinPerformanceDataModel,
    "search_query_performance": SearchQueryPerformanceModel,
    "search_query_summary": SearchQuerySummaryModel,
}


def _success_rate(successful: int, total: int) -> float:
    return round(successful * 100.0 / total, 2) if total else 0.0


def _category_of(table_name: str) -> Tuple[str, str, int]:
    """(clave, nombre, prioridad) de la categoria de una tabla."""
    for key, (name, priority, tables) in TABLE_CATEGORIES.items():
        if table_name in tables:
            return key, name, priority
    return OTHER_CATEGORY


def _duration_minutes(audit) -> Optional[float]:
    if audit.execution_time_ms is not None:
        return round(audit.execution_time_ms / 60000, 2)
    if audit.refresh_completed_at is None:
        return None
    seconds = (
        DateTimeUtils.ensure_utc(audit.refresh_completed_at) - DateTimeUtils.ensure_utc(audit.refresh_started_at)
    ).total_seconds()
    return round(seconds / 60, 2)


class RefreshStatusUseCases:
    """
    Lectura del estado del pipeline y cambios de configuracion.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.configs = RefreshConfigRepository(db)
        self.audits = RefreshAuditRepository(db)
        self.checkpoints = CheckpointRepository(db)
        self.orchestrations = OrchestrationLogRepository(db)
        self.upserts = PostgresUpsertRepository(db)

    async def get_status(self) -> RefreshStatusDTO:
        """
        Estado por tabla. Nivel global:
        - error: alguna tabla habilitada fallo en su ultima corrida
        - warning: alguna tabla habilitada esta desactualizada
        """
        now = DateTimeUtils.now_utc()
        configs = await self.configs.list_all()
        active = {(c.table_schema, c.table_name) for c in await self.checkpoints.list_active()}

        tables: List[TableStatusDTO] = []
        for config in configs:
            latest = await self.audits.latest_for_table(config.table_name)
            tables.append(TableStatusDTO(
                table_schema=config.table_schema,
                table_name=config.table_name,
                function_name=config.function_name,
                is_enabled=config.is_enabled,
                priority=config.priority,
                refresh_frequency_hours=config.refresh_frequency_hours,
                last_refresh_at=config.last_refresh_at,
                next_refresh_at=config.next_refresh_at,
                hours_since_refresh=(
                    round(hours_since(config.last_refresh_at, now), 2)
                    if config.last_refresh_at else None
                ),
                is_stale=is_stale(config.last_refresh_at, config.refresh_frequency_hours, now),
                last_status=latest.status if latest else None,
                last_error=latest.error_message if latest else None,
                last_rows_processed=latest.rows_processed if latest else None,
                has_active_checkpoint=(config.table_schema, config.table_name) in active,
            ))

        enabled = [t for t in tables if t.is_enabled]
        stale = [t for t in enabled if t.is_stale]
        failed = [t for t in enabled if t.last_status == RefreshStatus.FAILED.value]
        levels = [HealthLevel.ERROR for _ in failed] + [HealthLevel.WARNING for _ in stale]

        return RefreshStatusDTO(
            overall_status=worst_level(levels).value,
            total_tables=len(tables),
            enabled_tables=len(enabled),
            stale_tables=len(stale),
            failed_tables=len(failed),
            tables=tables,
            checked_at=now,
        )

    async def get_health(self) -> HealthReportDTO:
        now = DateTimeUtils.now_utc()
        configs = [c for c in await self.configs.list_all() if c.is_enabled]
        recent = [
            a for a in await self.audits.list_since(now - timedelta(hours=24))
            if RefreshStatus(a.status).is_terminal
        ]
        latest_data = await self.upserts.max_value(SearchQueryPerformanceModel, "end_date")

        context = HealthContext(
            now=now,
            enabled_tables=len(configs),
            stale_tables=sum(1 for c in configs if is_stale(c.last_refresh_at, c.refresh_frequency_hours, now)),
            runs_last_24h=len(recent),
            failed_runs_last_24h=sum(1 for a in recent if a.status == RefreshStatus.FAILED.value),
            last_success_at=await self.audits.last_success_at(),
            latest_data_date=DateTimeUtils.parse_date(latest_data),
        )
        results = evaluate_health(context)
        return HealthReportDTO(
            status=worst_level([r.status for r in results]).value,
            checks=[
                HealthCheckDTO(
                    name=r.name,
                    status=r.status.value,
                    value=r.value,
                    threshold=r.threshold,
                    message=r.message,
                )
                for r in results
            ],
            latest_data_date=context.latest_data_date,
            checked_at=now,
        )

    async def get_history(
        self,
        table_name: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> AuditHistoryDTO:
        rows, total = await self.audits.list_history(
            table_name=table_name, status=status, limit=limit, offset=offset
        )
        return AuditHistoryDTO(
            items=[AuditLogDTO.model_validate(r) for r in rows],
            total=total,
            limit=limit,
            offset=offset,
        )

    async def get_metrics(self, days: int = 7) -> RefreshMetricsDTO:
        """Tasa de exito, duracion promedio y filas por tabla en los ultimos `days` dias."""
        since = DateTimeUtils.now_utc() - timedelta(days=days)
        audits = [a for a in await self.audits.list_since(since) if RefreshStatus(a.status).is_terminal]

        by_table: Dict[str, list] = defaultdict(list)
        for audit in audits:
            by_table[audit.table_name].append(audit)

        tables = []
        for table_name in sorted(by_table):
            runs = by_table[table_name]
            durations = [r.execution_time_ms for r in runs if r.execution_time_ms is not None]
            successful = sum(1 for r in runs if r.status == RefreshStatus.SUCCESS.value)
            tables.append(TableMetricsDTO(
                table_name=table_name,
                total_runs=len(runs),
                successful_runs=successful,
                failed_runs=sum(1 for r in runs if r.status == RefreshStatus.FAILED.value),
                partial_runs=sum(1 for r in runs if r.status == RefreshStatus.PARTIAL.value),
                success_rate=_success_rate(successful, len(runs)),
                avg_execution_time_ms=round(sum(durations) / len(durations), 1) if durations else None,
                total_rows_processed=sum(r.rows_processed or 0 for r in runs),
            ))

        durations = [a.execution_time_ms for a in audits if a.execution_time_ms is not None]
        successful = sum(1 for a in audits if a.status == RefreshStatus.SUCCESS.value)
        orchestrations = await self.orchestrations.list_since(since)
        return RefreshMetricsDTO(
            days=days,
            total_runs=len(audits),
            success_rate=_success_rate(successful, len(audits)),
            avg_execution_time_ms=round(sum(durations) / len(durations), 1) if durations else None,
            total_rows_processed=sum(a.rows_processed or 0 for a in audits),
            tables=tables,
            orchestrations=len(orchestrations),
        )

    async def get_tables(
        self,
        category: Optional[str] = None,
        table_name: Optional[str] = None,
    ) -> TablesOverviewDTO:
        """
        Salud por tabla con tendencias de los ultimos TABLE_TREND_DAYS dias.

        Estado: disabled, error (ultima corrida terminal fallida), stale
        (refresco mas viejo que frecuencia * STALE_MULTIPLIER) o active.
        Orden: prioridad de la categoria y luego health_score.
        """
        now = DateTimeUtils.now_utc()
        since = now - timedelta(days=TABLE_TREND_DAYS)
        audits_by_table: Dict[tuple, list] = defaultdict(list)
        for audit in await self.audits.list_since(since):
            if RefreshStatus(audit.status).is_terminal:
                audits_by_table[(audit.table_schema, audit.table_name)].append(audit)

        tables: List[TableOverviewDTO] = []
        for config in await self.configs.list_all():
            key, name, _ = _category_of(config.table_name)
            if category and key != category:
                continue
            if table_name and config.table_name != table_name:
                continue
            runs = audits_by_table.get((config.table_schema, config.table_name), [])
            tables.append(await self._table_overview(config, name, runs, now))

        priorities = {name: priority for name, priority, _ in TABLE_CATEGORIES.values()}
        tables.sort(key=lambda t: (-priorities.get(t.category, OTHER_CATEGORY[2]), -t.health_score))

        categories = None
        if not table_name:
            categories = []
            for key, (name, priority, _) in TABLE_CATEGORIES.items():
                scores = [t.health_score for t in tables if t.category == name]
                if scores:
                    categories.append(TableCategoryDTO(
                        key=key,
                        name=name,
                        priority=priority,
                        table_count=len(scores),
                        avg_health_score=round(sum(scores) / len(scores)),
                    ))

        return TablesOverviewDTO(
            tables=tables,
            summary=TablesSummaryDTO(
                total_tables=len(tables),
                by_status={s.value: sum(1 for t in tables if t.status == s.value) for s in TableHealthStatus},
                avg_health_score=round(sum(t.health_score for t in tables) / len(tables)) if tables else 0,
            ),
            categories=categories,
        )

    async def _table_overview(
        self,
        config: RefreshConfigModel,
        category_name: str,
        runs: list,
        now: datetime,
    ) -> TableOverviewDTO:
        # Mas reciente primero
        runs = sorted(runs, key=lambda r: DateTimeUtils.ensure_utc(r.refresh_started_at), reverse=True)
        successful = [r for r in runs if r.status == RefreshStatus.SUCCESS.value]
        success_rate = _success_rate(len(successful), len(runs)) if runs else None
        durations = [(r, _duration_minutes(r)) for r in successful]
        durations = [(r, d) for r, d in durations if d is not None]
        last_failed = next((r for r in runs if r.status == RefreshStatus.FAILED.value), None)
        freshness = hours_since(config.last_refresh_at, now)

        if not config.is_enabled:
            status = TableHealthStatus.DISABLED
        elif runs and runs[0].status == RefreshStatus.FAILED.value:
            status = TableHealthStatus.ERROR
        elif freshness is not None and is_stale(config.last_refresh_at, config.refresh_frequency_hours, now):
            status = TableHealthStatus.STALE
        else:
            status = TableHealthStatus.ACTIVE

        if status == TableHealthStatus.DISABLED:
            health_score = 0
        elif status == TableHealthStatus.ERROR:
            health_score = 20
        elif status == TableHealthStatus.STALE:
            health_score = 50
        elif success_rate is not None:
            health_score = round(success_rate * 0.7 + 30)
        else:
            health_score = 100

        daily: List[DailySuccessRateDTO] = []
        for days_back in range(TABLE_TREND_DAYS):
            day = (now - timedelta(days=days_back)).date()
            day_runs = [r for r in runs if DateTimeUtils.ensure_utc(r.refresh_started_at).date() == day]
            if day_runs:
                day_ok = sum(1 for r in day_runs if r.status == RefreshStatus.SUCCESS.value)
                daily.append(DailySuccessRateDTO(day=day, rate=_success_rate(day_ok, len(day_runs))))

        model = _TABLE_MODELS.get(config.table_name)
        return TableOverviewDTO(
            table_name=config.table_name,
            table_schema=config.table_schema,
            category=category_name,
            status=status.value,
            health_score=health_score,
            metrics=TableOverviewMetricsDTO(
                last_refresh=config.last_refresh_at,
                next_refresh=config.next_refresh_at,
                refresh_frequency_hours=config.refresh_frequency_hours,
                rows_count=await self.upserts.count_rows(model) if model is not None else None,
                avg_refresh_duration_minutes=(
                    round(sum(d for _, d in durations) / len(durations), 2) if durations else None
                ),
                success_rate_7d=success_rate,
                last_error=last_failed.error_message if last_failed else None,
                data_freshness_hours=round(freshness, 2) if freshness is not None else None,
            ),
            trends=TableTrendsDTO(
                refresh_times=[
                    RefreshTimePointDTO(started_at=r.refresh_started_at, duration_minutes=d)
                    for r, d in durations[:TABLE_TREND_REFRESH_POINTS]
                ],
                success_rate=daily,
            ),
        )

    async def list_configs(self) -> List[RefreshConfigDTO]:
        return [RefreshConfigDTO.model_validate(c) for c in await self.configs.list_all()]

    async def update_config(self, table_name: str, dto: RefreshConfigUpdateDTO) -> RefreshConfigDTO:
        config = await self.configs.get_by_table(table_name)
        if config is None:
            raise EntityNotFoundException("RefreshConfig", table_name)

        values = dto.model_dump(exclude_unset=True)
        if "refresh_frequency_hours" in values and config.last_refresh_at is not None:
            # Reprogramar el proximo refresco con la nueva frecuencia
            values["next_refresh_at"] = (
                DateTimeUtils.ensure_utc(config.last_refresh_at)
                + timedelta(hours=values["refresh_frequency_hours"])
            )
        updated = await self.configs.update_fields(config.id, values)
        await self.db.commit()
        return RefreshConfigDTO.model_validate(updated)

    async def check_trigger(self, table_name: str, force: bool = False) -> RefreshConfigModel:
        """
        Valida un disparo manual.

        Raises:
            EntityNotFoundException: tabla sin configuracion (404)
            RefreshDisabledException: tabla deshabilitada (400)
            RefreshTooSoonException: refrescada hace menos del intervalo minimo (409)
        """
        config = await self.configs.get_by_table(table_name)
        if config is None:
            raise EntityNotFoundException("RefreshConfig", table_name)
        if not config.is_enabled:
            raise RefreshDisabledException(table_name)

        if not force and config.last_refresh_at is not None:
            elapsed = hours_since(config.last_refresh_at, DateTimeUtils.now_utc()) * 60
            if elapsed < settings.MIN_REFRESH_INTERVAL_MINUTES:
                raise RefreshTooSoonException(table_name, elapsed, settings.MIN_REFRESH_INTERVAL_MINUTES)

        logger.info(f"Disparo manual aceptado para {table_name} (force={force})")
        return config
