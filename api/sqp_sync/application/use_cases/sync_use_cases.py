"""
Casos de uso para sincronizar una tabla bajo demanda (API y disparo manual).
"""
from typing import Callable, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.application.use_cases.function_use_cases import RefreshFunctionRunner
from sqp_sync.application.use_cases.orchestration_use_cases import run_table_refresh
from sqp_sync.application.use_cases.refresh_status_use_cases import RefreshStatusUseCases
from sqp_sync.infrastructure.external.bigquery_sync.continuation import ContinuationDispatcher
from sqp_sync.infrastructure.external.bigquery_sync.sync_service import SyncSource
from sqp_sync.infrastructure.external.bigquery_sync.table_mappings import is_bigquery_table
from sqp_sync.infrastructure.external.bigquery_sync.types import TableSyncResult
from sqp_sync.infrastructure.repositories.refresh_config_repository import RefreshConfigRepository
from sqp_sync.shared.constants.refresh_constants import RefreshType
from sqp_sync.shared.exceptions.domain import EntityNotFoundException


class TableSyncUseCases:
    """
    Sync de una tabla en la misma peticion, con presupuesto de tiempo:
    si se agota, la corrida sigue en una continuacion.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        source: Optional[SyncSource] = None,
        source_factory: Optional[Callable[[], SyncSource]] = None,
        dispatcher: Optional[ContinuationDispatcher] = None,
        runner: Optional[RefreshFunctionRunner] = None,
    ):
        self.db = db
        self.source = source
        self.source_factory = source_factory
        self.dispatcher = dispatcher
        self.runner = runner or RefreshFunctionRunner()
        self.configs = RefreshConfigRepository(db)

    async def sync_table(
        self,
        table_name: str,
        *,
        full_sync: bool = False,
        refresh_type: str = RefreshType.API_SYNC.value,
    ) -> TableSyncResult:
        """
        Raises:
            EntityNotFoundException: tabla sin configuracion ni mapeo BigQuery
        """
        config = await self.configs.get_by_table(table_name)
        if config is None and not is_bigquery_table(table_name):
            raise EntityNotFoundException("RefreshConfig", table_name)
        function_name = config.function_name if config else None

        logger.info(f"Sync bajo demanda de {table_name} ({refresh_type}, full_sync={full_sync})")
        result = await run_table_refresh(
            self.db,
            table_name,
            function_name,
            source=self.source,
            source_factory=self.source_factory,
            dispatcher=self.dispatcher,
            refresh_type=refresh_type,
            full_sync=full_sync,
        )
        await self.runner.notify_result(result)
        return result

    async def trigger(self, table_name: str, *, force: bool = False, full_sync: bool = False) -> TableSyncResult:
        """
        Disparo manual con validaciones (habilitada, intervalo minimo).
        """
        await RefreshStatusUseCases(self.db).check_trigger(table_name, force=force)
        return await self.sync_table(table_name, full_sync=full_sync, refresh_type=RefreshType.MANUAL.value)
