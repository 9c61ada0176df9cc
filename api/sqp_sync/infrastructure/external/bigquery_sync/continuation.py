"""
Continuación asíncrona de un sync interrumpido por presupuesto de tiempo.

Dos implementaciones:
- HTTP: se auto-invoca `POST {SELF_BASE_URL}/api/v1/functions/{function_name}`
  (equivalente a re-invocar la función en otra ejecución).
- Scheduler: agenda un job one-shot (DateTrigger) en el AsyncIOScheduler de la app.

Semántica at-least-once: la continuación puede ejecutarse más de una vez;
el UPSERT por clave natural y el cierre único del audit log la hacen segura.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

import httpx
from apscheduler.triggers.date import DateTrigger
from loguru import logger

from sqp_sync.core.config import settings
from sqp_sync.shared.exceptions.sync import ContinuationDispatchError

from .types import utc_now


class ContinuationDispatcher(ABC):
    """Programa la siguiente invocación de una función de refresco."""

    @abstractmethod
    async def dispatch(self, function_name: str, payload: dict[str, Any]) -> None:
        """
        Raises:
            ContinuationDispatchError: si no se pudo programar la continuación
        """


class HttpContinuationDispatcher(ContinuationDispatcher):
    """
    Auto-invocación vía HTTP.
    El endpoint de funciones responde 202 y procesa en background.
    """

    def __init__(
        self,
        base_url: str,
        *,
        service_role_key: str = "",
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_role_key = service_role_key
        self.timeout_s = timeout_s
        self._transport = transport

    async def dispatch(self, function_name: str, payload: dict[str, Any]) -> None:
        url = f"{self.base_url}/api/v1/functions/{function_name}"
        headers = {"Content-Type": "application/json"}
        if self.service_role_key:
            headers["Authorization"] = f"Bearer {self.service_role_key}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Error invocando continuacion {function_name}: {e}")
            raise ContinuationDispatchError(function_name, str(e)) from e
        logger.info(f"Continuacion de {function_name} invocada via HTTP (audit={payload.get('audit_log_id')})")


ContinuationRunner = Callable[[str, dict[str, Any], "ContinuationDispatcher"], Awaitable[Any]]


class SchedulerContinuationDispatcher(ContinuationDispatcher):
    """
    Continuación en proceso mediante un job one-shot de APScheduler.
    """

    def __init__(self, scheduler, runner: ContinuationRunner, *, delay_s: float = 1.0) -> None:
        self.scheduler = scheduler
        self.runner = runner
        self.delay_s = delay_s

    async def dispatch(self, function_name: str, payload: dict[str, Any]) -> None:
        job_id = f"continuation:{function_name}:{payload.get('audit_log_id')}"
        try:
            self.scheduler.add_job(
                self.runner,
                trigger=DateTrigger(run_date=utc_now() + timedelta(seconds=self.delay_s)),
                args=[function_name, payload, self],
                id=job_id,
                replace_existing=True,
                misfire_grace_time=None,
            )
        except Exception as e:
            logger.error(f"Error agendando continuacion {job_id}: {e}")
            raise ContinuationDispatchError(function_name, str(e)) from e
        logger.info(f"Continuacion agendada: {job_id}")


def build_continuation_dispatcher(scheduler=None, runner: Optional[ContinuationRunner] = None) -> ContinuationDispatcher:
    """
    Construye el dispatcher según CONTINUATION_MODE.
    El modo scheduler requiere scheduler y runner; si faltan se usa HTTP.
    """
    mode = settings.CONTINUATION_MODE.lower()
    if mode == "scheduler" and scheduler is not None and runner is not None:
        return SchedulerContinuationDispatcher(scheduler, runner)
    if mode == "scheduler":
        logger.warning("CONTINUATION_MODE=scheduler sin scheduler activo; usando HTTP")
    return HttpContinuationDispatcher(settings.SELF_BASE_URL, service_role_key=settings.SERVICE_ROLE_KEY)
