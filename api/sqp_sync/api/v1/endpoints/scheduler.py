"""
Endpoints del scheduler diario.
"""
from fastapi import APIRouter, Depends

from sqp_sync.api.v1.dependencies.use_case_deps import get_daily_scheduler
from sqp_sync.application.dto.refresh_dto import (
    OrchestrationResultDTO,
    SchedulerScheduleUpdateDTO,
    SchedulerStatusDTO,
)
from sqp_sync.application.services.daily_sync_scheduler import DailySyncScheduler
from sqp_sync.core.security import require_service_role
from sqp_sync.shared.constants.refresh_constants import RefreshType

router = APIRouter(prefix="/scheduler", tags=["Scheduler"])


@router.get("/status", response_model=SchedulerStatusDTO)
async def get_scheduler_status(daily: DailySyncScheduler = Depends(get_daily_scheduler)):
    """
    Proxima ejecucion, ultima corrida y contadores.
    """
    return SchedulerStatusDTO(**daily.status())


@router.put(
    "/schedule",
    response_model=SchedulerStatusDTO,
    dependencies=[Depends(require_service_role)],
)
async def update_scheduler_schedule(
    dto: SchedulerScheduleUpdateDTO,
    daily: DailySyncScheduler = Depends(get_daily_scheduler),
):
    """
    Cambia la expresion cron del sync diario (400 si es invalida).
    El cambio vive en memoria: al reiniciar vuelve SYNC_SCHEDULE_CRON.
    """
    daily.reschedule(dto.cron)
    return SchedulerStatusDTO(**daily.status())


@router.post(
    "/run",
    response_model=OrchestrationResultDTO,
    dependencies=[Depends(require_service_role)],
)
async def run_scheduler_now(daily: DailySyncScheduler = Depends(get_daily_scheduler)):
    """
    Ejecuta el sync diario ahora (409 si ya hay una corrida en curso).
    """
    result = await daily.run_now(refresh_type=RefreshType.MANUAL.value)
    return OrchestrationResultDTO(**result.to_dict())
