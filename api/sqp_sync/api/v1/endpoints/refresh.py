"""
Endpoints de estado, salud, historial, metricas y configuracion del refresco.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from sqp_sync.api.v1.dependencies.use_case_deps import (
    get_refresh_status_use_cases,
    get_table_sync_use_cases,
)
from sqp_sync.application.dto.refresh_dto import (
    AuditHistoryDTO,
    HealthReportDTO,
    RefreshConfigDTO,
    RefreshConfigUpdateDTO,
    RefreshMetricsDTO,
    RefreshStatusDTO,
    RefreshTriggerRequestDTO,
    TablesOverviewDTO,
    TableSyncResultDTO,
)
from sqp_sync.application.use_cases.refresh_status_use_cases import RefreshStatusUseCases
from sqp_sync.application.use_cases.sync_use_cases import TableSyncUseCases
from sqp_sync.core.security import require_service_role

router = APIRouter(prefix="/refresh", tags=["Refresh"])


@router.get("/status", response_model=RefreshStatusDTO)
async def get_refresh_status(
    use_cases: RefreshStatusUseCases = Depends(get_refresh_status_use_cases)
):
    """
    Estado por tabla con deteccion de tablas desactualizadas.
    """
    return await use_cases.get_status()


@router.get("/health", response_model=HealthReportDTO)
async def get_refresh_health(
    use_cases: RefreshStatusUseCases = Depends(get_refresh_status_use_cases)
):
    """
    Chequeos de salud: tablas desactualizadas, tasa de fallos, lag y frescura de datos.
    """
    return await use_cases.get_health()


@router.get("/tables", response_model=TablesOverviewDTO)
async def get_refresh_tables(
    category: Optional[str] = Query(None, description="Clave de categoria (core_data, reporting, other)"),
    table: Optional[str] = Query(None, description="Una sola tabla"),
    use_cases: RefreshStatusUseCases = Depends(get_refresh_status_use_cases)
):
    """
    Salud por tabla: categoria, health_score, tasa de exito a 7 dias,
    duracion promedio, frescura y tendencias diarias.
    """
    return await use_cases.get_tables(category=category, table_name=table)


@router.get("/history", response_model=AuditHistoryDTO)
async def get_refresh_history(
    table_name: Optional[str] = Query(None, description="Filtrar por tabla"),
    status: Optional[str] = Query(None, description="Filtrar por estado"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    use_cases: RefreshStatusUseCases = Depends(get_refresh_status_use_cases)
):
    """
    Historial de corridas (mas reciente primero).
    """
    return await use_cases.get_history(table_name=table_name, status=status, limit=limit, offset=offset)


@router.get("/metrics", response_model=RefreshMetricsDTO)
async def get_refresh_metrics(
    days: int = Query(7, ge=1, le=90),
    use_cases: RefreshStatusUseCases = Depends(get_refresh_status_use_cases)
):
    """
    Tasa de exito, duracion promedio y filas procesadas.
    """
    return await use_cases.get_metrics(days)


@router.get("/config", response_model=List[RefreshConfigDTO])
async def list_refresh_config(
    use_cases: RefreshStatusUseCases = Depends(get_refresh_status_use_cases)
):
    return await use_cases.list_configs()


@router.patch(
    "/config/{table_name}",
    response_model=RefreshConfigDTO,
    dependencies=[Depends(require_service_role)],
)
async def update_refresh_config(
    table_name: str,
    dto: RefreshConfigUpdateDTO,
    use_cases: RefreshStatusUseCases = Depends(get_refresh_status_use_cases)
):
    """
    Actualiza is_enabled, frecuencia, prioridad, dependencias o
    custom_sync_params (batch_size entre 1 y 10000) de una tabla.
    """
    return await use_cases.update_config(table_name, dto)


@router.post(
    "/trigger",
    response_model=TableSyncResultDTO,
    dependencies=[Depends(require_service_role)],
)
async def trigger_refresh(
    request: RefreshTriggerRequestDTO,
    use_cases: TableSyncUseCases = Depends(get_table_sync_use_cases)
):
    """
    Dispara el refresco de una tabla.

    - 404 si la tabla no tiene configuracion
    - 400 si esta deshabilitada
    - 409 si se refresco hace menos del intervalo minimo (salvo force=true)
    """
    result = await use_cases.trigger(request.table_name, force=request.force, full_sync=request.full_sync)
    return TableSyncResultDTO(**result.to_dict())
