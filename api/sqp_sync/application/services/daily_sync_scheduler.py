"""
Scheduler diario del sync SQP.

Registra un job cron en el AsyncIOScheduler de la app que ejecuta la
orquestacion completa. Un guard `is_running` evita corridas superpuestas
(cron + disparo manual).
"""
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence

from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from sqp_sync.application.use_cases.orchestration_use_cases import (
    OrchestrationResult,
    RefreshOrchestrator,
)
from sqp_sync.core.config import settings
from sqp_sync.shared.constants.refresh_constants import OrchestrationStatus, RefreshType
from sqp_sync.shared.exceptions.domain import SyncAlreadyRunningException, ValidationException
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils

JOB_ID = "daily_sqp_sync"


def build_cron_trigger(expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Valida una expresion cron de 5 campos y construye el trigger.

    Raises:
        ValidationException: expresion invalida
    """
    if not expression or len(expression.split()) != 5:
        raise ValidationException(
            f"Expresion cron invalida (se esperan 5 campos): '{expression}'",
            field="cron",
        )
    try:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except ValueError as e:
        raise ValidationException(f"Expresion cron invalida '{expression}': {e}", field="cron")


class DailySyncScheduler:
    """
    Ejecuta la orquestacion diaria y guarda metricas en memoria.
    """

    def __init__(
        self,
        scheduler,
        orchestrator_factory: Callable[[], RefreshOrchestrator] = RefreshOrchestrator,
        *,
        cron: Optional[str] = None,
        timezone: Optional[str] = None,
        enabled: Optional[bool] = None,
    ):
        self.scheduler = scheduler
        self.orchestrator_factory = orchestrator_factory
        self.cron = cron or settings.SYNC_SCHEDULE_CRON
        self.timezone = timezone or settings.SYNC_SCHEDULE_TIMEZONE
        self.enabled = settings.SCHEDULER_ENABLED if enabled is None else enabled
        self.is_running = False
        self.last_run_started_at: Optional[datetime] = None
        self.last_run_completed_at: Optional[datetime] = None
        self.last_result: Optional[Dict[str, Any]] = None
        self.total_runs = 0
        self.successful_runs = 0
        self.failed_runs = 0

    def start(self) -> bool:
        """
        Registra el job cron. Retorna False si el scheduler diario esta deshabilitado.
        """
        if not self.enabled:
            logger.info("Scheduler diario deshabilitado (SCHEDULER_ENABLED=false)")
            return False
        trigger = build_cron_trigger(self.cron, self.timezone)
        self.scheduler.add_job(
            self._scheduled_run,
            trigger=trigger,
            id=JOB_ID,
            name="Sync diario SQP",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Sync diario programado: '{self.cron}' ({self.timezone})")
        return True

    def reschedule(self, cron: str) -> None:
        """Cambia la expresion cron del job activo."""
        trigger = build_cron_trigger(cron, self.timezone)
        self.cron = cron
        if self.scheduler.get_job(JOB_ID):
            self.scheduler.reschedule_job(JOB_ID, trigger=trigger)
        logger.info(f"Sync diario reprogramado: '{cron}'")

    async def _scheduled_run(self) -> None:
        try:
            await self.run_now(refresh_type=RefreshType.SCHEDULED.value)
        except SyncAlreadyRunningException:
            logger.warning("Sync diario omitido: ya hay una corrida en curso")
        except Exception as e:
            logger.error(f"Error en el sync diario: {e}")
            logger.exception("Detalle del error:")

    async def run_now(
        self,
        *,
        refresh_type: str = RefreshType.MANUAL.value,
        table_names: Optional[Sequence[str]] = None,
        full_sync: bool = False,
    ) -> OrchestrationResult:
        """
        Ejecuta la orquestacion inmediatamente.

        Raises:
            SyncAlreadyRunningException: si ya hay una corrida en curso
        """
        if self.is_running:
            raise SyncAlreadyRunningException()

        self.is_running = True
        self.last_run_started_at = DateTimeUtils.now_utc()
        self.total_runs += 1
        logger.info(f"Iniciando sync diario ({refresh_type})")
        try:
            result = await self.orchestrator_factory().run(
                table_names, full_sync=full_sync, refresh_type=refresh_type
            )
        except Exception as e:
            self.failed_runs += 1
            self.last_result = {"status": OrchestrationStatus.FAILED.value, "error": str(e)}
            raise
        finally:
            self.is_running = False
            self.last_run_completed_at = DateTimeUtils.now_utc()

        if result.status == OrchestrationStatus.FAILED.value:
            self.failed_runs += 1
        else:
            self.successful_runs += 1
        summary = result.to_dict()
        summary.pop("results", None)
        self.last_result = summary
        return result

    def next_run_at(self) -> Optional[datetime]:
        job = self.scheduler.get_job(JOB_ID) if self.scheduler else None
        # Un job pendiente (scheduler sin arrancar) aun no tiene next_run_time
        return getattr(job, "next_run_time", None) if job else None

    def status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "is_running": self.is_running,
            "cron": self.cron,
            "timezone": self.timezone,
            "next_run_at": self.next_run_at(),
            "last_run_started_at": self.last_run_started_at,
            "last_run_completed_at": self.last_run_completed_at,
            "last_result": self.last_result,
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
        }
