"""
Funciones de refresco invocables por nombre (refresh-asin-performance, ...).

Es el punto de entrada de las continuaciones: tanto el endpoint
POST /functions/{function_name} como el job one-shot del scheduler llaman a
`RefreshFunctionRunner.run`.
"""
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from sqp_sync.application.use_cases.orchestration_use_cases import run_table_refresh
from sqp_sync.application.use_cases.summary_refresh_use_cases import SUMMARY_TABLE
from sqp_sync.application.use_cases.webhook_use_cases import WebhookNotifier
from sqp_sync.infrastructure.database.session import get_session_factory
from sqp_sync.infrastructure.external.bigquery_sync.bigquery_client import BigQueryClient
from sqp_sync.infrastructure.external.bigquery_sync.continuation import ContinuationDispatcher
from sqp_sync.infrastructure.external.bigquery_sync.sync_service import SyncSource
from sqp_sync.infrastructure.external.bigquery_sync.table_mappings import get_table_sync_config
from sqp_sync.infrastructure.external.bigquery_sync.types import TableSyncResult
from sqp_sync.infrastructure.external.webhooks.webhook_client import WebhookClient
from sqp_sync.shared.constants.refresh_constants import (
    FUNCTION_ASIN_PERFORMANCE,
    FUNCTION_SEARCH_QUERIES,
    FUNCTION_SUMMARY_TABLES,
    RefreshStatus,
    RefreshType,
    WebhookEvent,
)
from sqp_sync.shared.exceptions.domain import EntityNotFoundException, ValidationException

KNOWN_FUNCTIONS = (FUNCTION_ASIN_PERFORMANCE, FUNCTION_SEARCH_QUERIES, FUNCTION_SUMMARY_TABLES)


def resolve_function_table(function_name: str, payload: Optional[Dict[str, Any]] = None) -> str:
    """
    Tabla destino de una funcion.

    Raises:
        EntityNotFoundException: funcion desconocida
        ValidationException: el payload apunta a otra tabla
    """
    if function_name not in KNOWN_FUNCTIONS:
        raise EntityNotFoundException("Funcion de refresco", function_name)

    if function_name == FUNCTION_SUMMARY_TABLES:
        expected = SUMMARY_TABLE
    else:
        expected = get_table_sync_config(function_name=function_name).target_table

    requested = ((payload or {}).get("config") or {}).get("table_name")
    if requested and requested != expected:
        raise ValidationException(
            f"La funcion '{function_name}' refresca '{expected}', no '{requested}'",
            field="config.table_name",
        )
    return expected


class RefreshFunctionRunner:
    """
    Ejecuta una funcion de refresco en su propia sesion y publica
    refresh.completed / refresh.failed cuando la corrida termina.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        *,
        source: Optional[SyncSource] = None,
        webhook_client: Optional[WebhookClient] = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._source = source
        self._webhook_client = webhook_client

    def _get_source(self) -> SyncSource:
        if self._source is None:
            self._source = BigQueryClient.from_settings()
        return self._source

    async def run(
        self,
        function_name: str,
        payload: Dict[str, Any],
        dispatcher: Optional[ContinuationDispatcher] = None,
    ) -> TableSyncResult:
        """
        Args:
            function_name: nombre estable de la funcion
            payload: {config, audit_log_id, refresh_type, full_sync}
            dispatcher: programa la siguiente continuacion si se agota el presupuesto
        """
        table_name = resolve_function_table(function_name, payload)
        audit_log_id = payload.get("audit_log_id")
        refresh_type = payload.get("refresh_type") or RefreshType.CONTINUATION.value
        logger.info(f"Ejecutando funcion {function_name} (tabla={table_name}, audit={audit_log_id})")

        async with self._session_factory() as db:
            result = await run_table_refresh(
                db,
                table_name,
                function_name,
                source=self._source,
                source_factory=self._get_source,
                dispatcher=dispatcher,
                refresh_type=refresh_type,
                full_sync=bool(payload.get("full_sync", False)),
                audit_log_id=audit_log_id,
                use_time_budget=True,
            )

        await self.notify_result(result)
        return result

    async def notify_result(self, result: TableSyncResult) -> None:
        """Publica el evento de fin de tabla (no se publica si quedo una continuacion)."""
        if result.continued or result.skipped:
            return
        event = (
            WebhookEvent.REFRESH_FAILED if result.status == RefreshStatus.FAILED.value
            else WebhookEvent.REFRESH_COMPLETED
        )
        try:
            async with self._session_factory() as db:
                await WebhookNotifier(db, self._webhook_client).notify(event.value, result.to_dict())
        except Exception as e:
            logger.error(f"Error enviando webhooks de {result.table_name}: {e}")
