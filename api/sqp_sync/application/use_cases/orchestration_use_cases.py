"""
Orquestacion del refresco de todas las tablas vencidas.

Flujo:
1. Seleccion: refresh_config habilitadas y vencidas (o lista explicita), por prioridad
2. Planificacion: grupos de ORCHESTRATION_BATCH_SIZE; una tabla con dependencias
   vencidas va en un grupo posterior al de sus dependencias
3. Ejecucion: cada grupo en paralelo con asyncio.gather(return_exceptions=True);
   cada tabla usa su propia sesion y no tiene presupuesto de tiempo
4. Registro en refresh_orchestration_log y evento sync.completed a los webhooks
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sqp_sync.core.config import settings
from sqp_sync.infrastructure.database.models import RefreshConfigModel
from sqp_sync.infrastructure.database.session import get_session_factory
from sqp_sync.infrastructure.external.bigquery_sync.bigquery_client import BigQueryClient
from sqp_sync.infrastructure.external.bigquery_sync.continuation import ContinuationDispatcher
from sqp_sync.infrastructure.external.bigquery_sync.sync_service import BigQuerySyncService, SyncSource
from sqp_sync.infrastructure.external.bigquery_sync.types import TableSyncResult, TimeBudget
from sqp_sync.infrastructure.external.webhooks.webhook_client import WebhookClient
from sqp_sync.infrastructure.repositories.checkpoint_repository import CheckpointRepository
from sqp_sync.infrastructure.repositories.orchestration_log_repository import OrchestrationLogRepository
from sqp_sync.infrastructure.repositories.refresh_config_repository import RefreshConfigRepository
from sqp_sync.application.use_cases.summary_refresh_use_cases import SummaryRefreshService
from sqp_sync.application.use_cases.webhook_use_cases import WebhookNotifier
from sqp_sync.shared.constants.refresh_constants import (
    FUNCTION_SUMMARY_TABLES,
    WEBHOOK_RESULTS_PREVIEW,
    OrchestrationStatus,
    RefreshStatus,
    RefreshType,
    WebhookEvent,
)
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils


@dataclass(frozen=True)
class DueTable:
    """Copia inmutable de una fila de refresh_config (no depende de la sesion)."""
    config_id: int
    table_schema: str
    table_name: str
    function_name: str
    priority: int = 100
    dependencies: tuple = ()

    @classmethod
    def from_model(cls, config: RefreshConfigModel) -> "DueTable":
        return cls(
            config_id=config.id,
            table_schema=config.table_schema,
            table_name=config.table_name,
            function_name=config.function_name,
            priority=config.priority or 0,
            dependencies=tuple(config.dependencies or ()),
        )


@dataclass
class OrchestrationResult:
    """Resultado agregado de una corrida."""
    orchestration_id: Optional[int]
    status: str
    total_tables: int = 0
    successful_tables: int = 0
    failed_tables: int = 0
    total_rows_processed: int = 0
    skipped_tables: List[str] = field(default_factory=list)
    results: List[Dict[str, Any]] = field(default_factory=list)
    execution_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orchestration_id": self.orchestration_id,
            "status": self.status,
            "total_tables": self.total_tables,
            "successful_tables": self.successful_tables,
            "failed_tables": self.failed_tables,
            "total_rows_processed": self.total_rows_processed,
            "skipped_tables": list(self.skipped_tables),
            "results": list(self.results),
            "execution_time_ms": self.execution_time_ms,
        }


def plan_batches(tables: Sequence[DueTable], batch_size: int) -> List[List[DueTable]]:
    """
    Agrupa las tablas en lotes de a lo sumo `batch_size`.

    Cada tabla recibe un nivel: 0 sin dependencias dentro de la corrida, si no
    1 + el nivel maximo de sus dependencias. Los niveles se ejecutan en orden y
    dentro de cada nivel se respeta el orden de entrada (prioridad).
    Una dependencia circular se ignora con un warning.
    """
    batch_size = max(batch_size, 1)
    by_name = {t.table_name: t for t in tables}
    levels: Dict[str, int] = {}

    def level_of(name: str, visiting: tuple) -> int:
        if name in levels:
            return levels[name]
        deps = [d for d in by_name[name].dependencies if d in by_name and d != name]
        level = 0
        for dep in deps:
            if dep in visiting:
                logger.warning(f"Dependencia circular ignorada: {name} -> {dep}")
                continue
            level = max(level, level_of(dep, visiting + (name,)) + 1)
        levels[name] = level
        return level

    for table in tables:
        level_of(table.table_name, ())

    batches: List[List[DueTable]] = []
    for level in sorted(set(levels.values())):
        members = [t for t in tables if levels[t.table_name] == level]
        for i in range(0, len(members), batch_size):
            batches.append(members[i:i + batch_size])
    return batches


def aggregate_status(results: Sequence[TableSyncResult]) -> OrchestrationStatus:
    """success si todas terminaron bien, failed si todas fallaron, partial en otro caso."""
    if not results:
        return OrchestrationStatus.SUCCESS
    statuses = [r.status for r in results]
    if all(s == RefreshStatus.SUCCESS.value for s in statuses):
        return OrchestrationStatus.SUCCESS
    if all(s == RefreshStatus.FAILED.value for s in statuses):
        return OrchestrationStatus.FAILED
    return OrchestrationStatus.PARTIAL


async def run_table_refresh(
    db: AsyncSession,
    table_name: str,
    function_name: Optional[str] = None,
    *,
    source: Optional[SyncSource] = None,
    source_factory: Optional[Callable[[], SyncSource]] = None,
    dispatcher: Optional[ContinuationDispatcher] = None,
    refresh_type: str = RefreshType.MANUAL.value,
    full_sync: bool = False,
    audit_log_id: Optional[int] = None,
    use_time_budget: bool = True,
) -> TableSyncResult:
    """
    Ejecuta el refresco de una tabla segun su funcion.
    El resumen se recalcula localmente; el resto se sincroniza desde BigQuery.
    La fuente se crea dentro de la corrida auditada: credenciales invalidas
    dejan un audit failed.
    """
    if function_name == FUNCTION_SUMMARY_TABLES:
        return await SummaryRefreshService(db).run(table_name, refresh_type=refresh_type)

    service = BigQuerySyncService(
        db,
        source=source,
        source_factory=source_factory,
        dispatcher=dispatcher,
    )
    return await service.sync_table(
        table_name,
        refresh_type=refresh_type,
        full_sync=full_sync,
        audit_log_id=audit_log_id,
        use_time_budget=use_time_budget,
    )


class RefreshOrchestrator:
    """
    Orquesta el refresco de las tablas vencidas en lotes concurrentes.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        *,
        source: Optional[SyncSource] = None,
        batch_size: Optional[int] = None,
        batch_delay_s: Optional[float] = None,
        webhook_client: Optional[WebhookClient] = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._source = source
        self.batch_size = batch_size or settings.ORCHESTRATION_BATCH_SIZE
        self.batch_delay_s = settings.ORCHESTRATION_BATCH_DELAY_S if batch_delay_s is None else batch_delay_s
        self._webhook_client = webhook_client

    def _get_source(self) -> SyncSource:
        if self._source is None:
            self._source = BigQueryClient.from_settings()
        return self._source

    async def run(
        self,
        table_names: Optional[Sequence[str]] = None,
        *,
        full_sync: bool = False,
        refresh_type: str = RefreshType.SCHEDULED.value,
    ) -> OrchestrationResult:
        """
        Ejecuta una orquestacion completa.

        Args:
            table_names: tablas explicitas (ignora next_refresh_at); None = vencidas
            full_sync: re-leer todo el historial de cada tabla
            refresh_type: origen registrado en los audit logs
        """
        budget = TimeBudget(None)

        async with self._session_factory() as db:
            # Cierra las corridas cuya continuacion se perdio (p.ej. reinicio del proceso)
            await CheckpointRepository(db).expire_stale()
            configs = await RefreshConfigRepository(db).list_due(DateTimeUtils.now_utc(), table_names)
            tables = [DueTable.from_model(c) for c in configs]
            log = await OrchestrationLogRepository(db).create(refresh_type=refresh_type, total_tables=len(tables))
            await db.commit()
            orchestration_id = log.id

        found = {t.table_name for t in tables}
        skipped = [name for name in (table_names or []) if name not in found]
        if skipped:
            logger.warning(f"Tablas omitidas (sin configuracion o deshabilitadas): {skipped}")

        batches = plan_batches(tables, self.batch_size)
        logger.info(
            f"Orquestacion {orchestration_id}: {len(tables)} tabla(s) en {len(batches)} lote(s) "
            f"de hasta {self.batch_size}"
        )

        results: List[TableSyncResult] = []
        for index, batch in enumerate(batches):
            if index > 0 and self.batch_delay_s > 0:
                await asyncio.sleep(self.batch_delay_s)
            logger.info(f"Lote {index + 1}/{len(batches)}: {[t.table_name for t in batch]}")
            outcomes = await asyncio.gather(
                *(self._run_table(t, refresh_type, full_sync) for t in batch),
                return_exceptions=True,
            )
            for table, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(f"Error no controlado refrescando {table.table_name}: {outcome}")
                    outcome = TableSyncResult(
                        table_name=table.table_name,
                        function_name=table.function_name,
                        status=RefreshStatus.FAILED.value,
                        error=str(outcome) or type(outcome).__name__,
                    )
                results.append(outcome)

        status = aggregate_status(results)
        result = OrchestrationResult(
            orchestration_id=orchestration_id,
            status=status.value,
            total_tables=len(tables),
            successful_tables=sum(1 for r in results if r.status == RefreshStatus.SUCCESS.value),
            failed_tables=sum(1 for r in results if r.status == RefreshStatus.FAILED.value),
            total_rows_processed=sum(r.rows_processed for r in results),
            skipped_tables=skipped,
            results=[r.to_dict() for r in results],
            execution_time_ms=budget.elapsed_ms,
        )

        async with self._session_factory() as db:
            await OrchestrationLogRepository(db).finish(
                orchestration_id,
                status=status,
                successful_tables=result.successful_tables,
                failed_tables=result.failed_tables,
                total_rows_processed=result.total_rows_processed,
                results=result.results,
            )
            await db.commit()

        log_fn = logger.success if status == OrchestrationStatus.SUCCESS else logger.warning
        log_fn(
            f"Orquestacion {orchestration_id} {status.value}: "
            f"{result.successful_tables}/{result.total_tables} exitosas, "
            f"{result.failed_tables} fallidas, {result.total_rows_processed} filas"
        )

        await self._notify(result)
        return result

    async def _run_table(self, table: DueTable, refresh_type: str, full_sync: bool) -> TableSyncResult:
        async with self._session_factory() as db:
            return await run_table_refresh(
                db,
                table.table_name,
                table.function_name,
                source=self._source,
                source_factory=self._get_source,
                refresh_type=refresh_type,
                full_sync=full_sync,
                use_time_budget=False,
            )

    async def _notify(self, result: OrchestrationResult) -> None:
        """Evento sync.completed; un fallo de webhooks no afecta la corrida."""
        data = result.to_dict()
        data["results"] = data["results"][:WEBHOOK_RESULTS_PREVIEW]
        try:
            async with self._session_factory() as db:
                await WebhookNotifier(db, self._webhook_client).notify(WebhookEvent.SYNC_COMPLETED.value, data)
        except Exception as e:
            logger.error(f"Error enviando webhooks de la orquestacion {result.orchestration_id}: {e}")
