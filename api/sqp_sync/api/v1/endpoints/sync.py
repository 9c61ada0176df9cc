"""
Endpoints de sincronizacion BigQuery -> Postgres.
Permiten orquestar el refresco completo o sincronizar una tabla.
"""
from fastapi import APIRouter, Depends, Query, status
from loguru import logger

from sqp_sync.api.v1.dependencies.use_case_deps import get_orchestrator, get_table_sync_use_cases
from sqp_sync.application.dto.refresh_dto import (
    OrchestrateRequestDTO,
    OrchestrationResultDTO,
    TableSyncResultDTO,
)
from sqp_sync.application.use_cases.orchestration_use_cases import RefreshOrchestrator
from sqp_sync.application.use_cases.sync_use_cases import TableSyncUseCases
from sqp_sync.core.security import require_service_role


router = APIRouter(prefix="/sync", tags=["Sync"], dependencies=[Depends(require_service_role)])


@router.post(
    "/orchestrate",
    response_model=OrchestrationResultDTO,
    status_code=status.HTTP_200_OK,
    summary="Refrescar las tablas vencidas"
)
async def orchestrate(
    request: OrchestrateRequestDTO,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
) -> OrchestrationResultDTO:
    """
    Ejecuta una orquestacion completa.

    - Sin `table_names`: tablas habilitadas con next_refresh_at vencido
    - Con `table_names`: esas tablas (habilitadas) sin mirar next_refresh_at
    - Cada tabla termina con su fila de auditoria en estado terminal
    """
    logger.info(f"Orquestacion solicitada desde API: tablas={request.table_names}, full_sync={request.full_sync}")
    result = await orchestrator.run(
        request.table_names,
        full_sync=request.full_sync,
        refresh_type=request.refresh_type,
    )
    return OrchestrationResultDTO(**result.to_dict())


@router.post(
    "/tables/{table_name}",
    response_model=TableSyncResultDTO,
    status_code=status.HTTP_200_OK,
    summary="Sincronizar una tabla"
)
async def sync_table(
    table_name: str,
    full_sync: bool = Query(
        default=False,
        description="Si True, ignora el checkpoint y re-lee todo el historial."
    ),
    use_cases: TableSyncUseCases = Depends(get_table_sync_use_cases),
) -> TableSyncResultDTO:
    """
    Sincroniza una tabla en esta peticion.
    Si se agota el presupuesto de tiempo la respuesta tiene status 'in_progress'
    y `continued=true`: la corrida sigue en una continuacion.
    """
    result = await use_cases.sync_table(table_name, full_sync=full_sync)
    return TableSyncResultDTO(**result.to_dict())
