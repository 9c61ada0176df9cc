"""
Evaluadores de salud del pipeline de refresco.

Cada chequeo recibe un HealthContext ya calculado (sin I/O) y retorna un
HealthCheckResult con nivel healthy / warning / error.
Para agregar un chequeo, crear una clase con `evaluate(context)` y sumarla a
DEFAULT_HEALTH_CHECKS.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Sequence

from sqp_sync.shared.constants.refresh_constants import (
    DATA_FRESHNESS_ERROR_DAYS,
    DATA_FRESHNESS_WARNING_DAYS,
    HEALTH_FAILURE_RATE_MAX,
    HEALTH_STALE_PERCENTAGE_MAX,
    HEALTH_SYNC_LAG_HOURS_MAX,
    STALE_MULTIPLIER,
    HealthLevel,
)
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils


def hours_since(moment: Optional[datetime], now: datetime) -> Optional[float]:
    """Horas transcurridas desde `moment` (None si nunca ocurrio)."""
    if moment is None:
        return None
    return (now - DateTimeUtils.ensure_utc(moment)).total_seconds() / 3600


def is_stale(last_refresh_at: Optional[datetime], frequency_hours: int, now: datetime) -> bool:
    """
    Una tabla esta desactualizada si nunca se refresco o si su ultimo refresco
    supera frecuencia * STALE_MULTIPLIER.
    """
    age = hours_since(last_refresh_at, now)
    if age is None:
        return True
    return age > (frequency_hours or 24) * STALE_MULTIPLIER


def worst_level(levels: Sequence[HealthLevel]) -> HealthLevel:
    """Nivel mas grave de una lista (healthy si esta vacia)."""
    if HealthLevel.ERROR in levels:
        return HealthLevel.ERROR
    if HealthLevel.WARNING in levels:
        return HealthLevel.WARNING
    return HealthLevel.HEALTHY


@dataclass
class HealthContext:
    """Datos agregados sobre los que se evaluan los chequeos."""
    now: datetime
    enabled_tables: int = 0
    stale_tables: int = 0
    runs_last_24h: int = 0
    failed_runs_last_24h: int = 0
    last_success_at: Optional[datetime] = None
    latest_data_date: Optional[date] = None


@dataclass
class HealthCheckResult:
    name: str
    status: HealthLevel
    message: str
    value: Optional[float] = None
    threshold: Optional[float] = None


@dataclass
class StalePercentageCheck:
    """Porcentaje de tablas habilitadas desactualizadas."""

    name: str = "stale_tables"
    threshold: float = HEALTH_STALE_PERCENTAGE_MAX

    def evaluate(self, context: HealthContext) -> HealthCheckResult:
        if context.enabled_tables == 0:
            return HealthCheckResult(self.name, HealthLevel.WARNING, "No hay tablas habilitadas", 0.0, self.threshold)
        pct = context.stale_tables * 100.0 / context.enabled_tables
        ok = pct <= self.threshold
        return HealthCheckResult(
            name=self.name,
            status=HealthLevel.HEALTHY if ok else HealthLevel.ERROR,
            message=f"{context.stale_tables}/{context.enabled_tables} tablas desactualizadas ({pct:.1f}%)",
            value=round(pct, 2),
            threshold=self.threshold,
        )


@dataclass
class FailureRateCheck:
    """Tasa de fallos de las corridas de las ultimas 24 horas."""

    name: str = "failure_rate_24h"
    threshold: float = HEALTH_FAILURE_RATE_MAX

    def evaluate(self, context: HealthContext) -> HealthCheckResult:
        if context.runs_last_24h == 0:
            return HealthCheckResult(self.name, HealthLevel.HEALTHY, "Sin corridas en las ultimas 24h", 0.0, self.threshold)
        rate = context.failed_runs_last_24h * 100.0 / context.runs_last_24h
        ok = rate <= self.threshold
        return HealthCheckResult(
            name=self.name,
            status=HealthLevel.HEALTHY if ok else HealthLevel.ERROR,
            message=f"{context.failed_runs_last_24h}/{context.runs_last_24h} corridas fallidas ({rate:.1f}%)",
            value=round(rate, 2),
            threshold=self.threshold,
        )


@dataclass
class SyncLagCheck:
    """Horas desde el ultimo refresco exitoso de cualquier tabla."""

    name: str = "sync_lag"
    threshold: float = HEALTH_SYNC_LAG_HOURS_MAX

    def evaluate(self, context: HealthContext) -> HealthCheckResult:
        lag = hours_since(context.last_success_at, context.now)
        if lag is None:
            return HealthCheckResult(self.name, HealthLevel.ERROR, "Nunca hubo un refresco exitoso", None, self.threshold)
        ok = lag <= self.threshold
        return HealthCheckResult(
            name=self.name,
            status=HealthLevel.HEALTHY if ok else HealthLevel.ERROR,
            message=f"Ultimo refresco exitoso hace {lag:.1f}h",
            value=round(lag, 2),
            threshold=self.threshold,
        )


@dataclass
class DataFreshnessCheck:
    """Dias desde el ultimo periodo SQP cargado."""

    name: str = "data_freshness"
    warning_days: int = DATA_FRESHNESS_WARNING_DAYS
    error_days: int = DATA_FRESHNESS_ERROR_DAYS

    def evaluate(self, context: HealthContext) -> HealthCheckResult:
        if context.latest_data_date is None:
            return HealthCheckResult(self.name, HealthLevel.ERROR, "No hay datos SQP cargados", None, float(self.error_days))
        days = (context.now.date() - context.latest_data_date).days
        if days > self.error_days:
            level = HealthLevel.ERROR
        elif days > self.warning_days:
            level = HealthLevel.WARNING
        else:
            level = HealthLevel.HEALTHY
        return HealthCheckResult(
            name=self.name,
            status=level,
            message=f"Datos hasta {context.latest_data_date.isoformat()} ({days} dias)",
            value=float(days),
            threshold=float(self.error_days),
        )


DEFAULT_HEALTH_CHECKS = [
    StalePercentageCheck(),
    FailureRateCheck(),
    SyncLagCheck(),
    DataFreshnessCheck(),
]


def evaluate_health(context: HealthContext, checks: Optional[List] = None) -> List[HealthCheckResult]:
    return [check.evaluate(context) for check in (checks or DEFAULT_HEALTH_CHECKS)]
