"""
Dependencias para inyeccion de casos de uso.
"""
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.application.services.daily_sync_scheduler import DailySyncScheduler
from sqp_sync.application.use_cases.function_use_cases import RefreshFunctionRunner
from sqp_sync.application.use_cases.orchestration_use_cases import RefreshOrchestrator
from sqp_sync.application.use_cases.refresh_status_use_cases import RefreshStatusUseCases
from sqp_sync.application.use_cases.sync_use_cases import TableSyncUseCases
from sqp_sync.application.use_cases.webhook_use_cases import WebhookUseCases
from sqp_sync.infrastructure.database.session import get_db
from sqp_sync.infrastructure.external.bigquery_sync.bigquery_client import BigQueryClient
from sqp_sync.infrastructure.external.bigquery_sync.continuation import (
    ContinuationDispatcher,
    build_continuation_dispatcher,
)
from sqp_sync.infrastructure.external.bigquery_sync.sync_service import SyncSource


def get_sync_source_factory() -> Callable[[], SyncSource]:
    """
    Fabrica de la fuente BigQuery. Se invoca dentro de la corrida auditada,
    asi un error de credenciales queda registrado como audit failed.
    """
    return BigQueryClient.from_settings


def get_function_runner(request: Request) -> RefreshFunctionRunner:
    """
    Runner de funciones de refresco registrado en el startup.
    """
    runner = getattr(request.app.state, "function_runner", None)
    return runner or RefreshFunctionRunner()


def get_continuation_dispatcher(request: Request) -> ContinuationDispatcher:
    """
    Dispatcher de continuaciones registrado en el startup (scheduler o HTTP).
    """
    dispatcher = getattr(request.app.state, "continuation_dispatcher", None)
    return dispatcher or build_continuation_dispatcher()


def get_orchestrator() -> RefreshOrchestrator:
    """
    Orquestador con la session factory global.
    """
    return RefreshOrchestrator()


def get_daily_scheduler(request: Request) -> DailySyncScheduler:
    """
    Scheduler diario activo.

    Raises:
        HTTPException 503: si la app arranco sin scheduler
    """
    daily = getattr(request.app.state, "daily_scheduler", None)
    if daily is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="El scheduler diario no esta inicializado",
        )
    return daily


async def get_refresh_status_use_cases(
    db: AsyncSession = Depends(get_db)
) -> RefreshStatusUseCases:
    """
    Dependencia para los casos de uso de estado y configuracion.

    Args:
        db: Sesion de base de datos

    Returns:
        RefreshStatusUseCases: Instancia de casos de uso
    """
    return RefreshStatusUseCases(db)


async def get_webhook_use_cases(
    db: AsyncSession = Depends(get_db)
) -> WebhookUseCases:
    """
    Dependencia para los casos de uso de webhooks.
    """
    return WebhookUseCases(db)


async def get_table_sync_use_cases(
    db: AsyncSession = Depends(get_db),
    source_factory: Callable[[], SyncSource] = Depends(get_sync_source_factory),
    dispatcher: ContinuationDispatcher = Depends(get_continuation_dispatcher),
    runner: RefreshFunctionRunner = Depends(get_function_runner),
) -> TableSyncUseCases:
    """
    Dependencia para el sync bajo demanda de una tabla.
    """
    return TableSyncUseCases(db, source_factory=source_factory, dispatcher=dispatcher, runner=runner)
