"""
Tipos y utilidades puras para el pipeline BigQuery -> Postgres.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


def to_int(value: Any) -> int:
    """
    Coerción entera tolerante: None, vacío o no numérico -> 0.

    BigQuery devuelve INT64 como int, pero las columnas exportadas a veces
    llegan como string ("1,234" o "12.0").
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(float(str(value).replace(",", "").strip()))
    except (TypeError, ValueError):
        return 0


def to_float(value: Any) -> float:
    """Coerción float tolerante: None, vacío, NaN o no numérico -> 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        result = float(value)
    else:
        try:
            result = float(str(value).replace(",", "").strip())
        except (TypeError, ValueError):
            return 0.0
    if result != result:  # NaN
        return 0.0
    return result


def safe_divide(numerator: float, denominator: float) -> float:
    """División que retorna 0 cuando el denominador es 0."""
    if not denominator:
        return 0.0
    return numerator / denominator


Transform = Callable[[Any], Any]


@dataclass(frozen=True)
class FieldMapping:
    """
    Define el mapeo de una columna BigQuery a una columna Postgres.

    - source_field: nombre de la columna en BigQuery (con espacios, tal cual el export SQP)
    - pg_column: nombre de la columna en Postgres
    - transform: función opcional para transformar el valor antes de persistir
    - required: si True, el valor no puede ser vacío (la fila se descarta)
    """

    source_field: str
    pg_column: str
    transform: Optional[Transform] = None
    required: bool = False


@dataclass(frozen=True)
class UpsertResult:
    """Conteo de un UPSERT por lote."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated


@dataclass(frozen=True)
class BigQueryPage:
    """Página de resultados de una consulta BigQuery."""

    rows: list[dict[str, Any]]
    job_id: Optional[str] = None


@dataclass
class TableSyncResult:
    """
    Resultado de sincronizar una tabla.

    status es el estado terminal del audit log, o "in_progress" si la corrida
    se interrumpió por presupuesto de tiempo y quedó una continuación pendiente.
    """

    table_name: str
    function_name: str
    status: str
    audit_log_id: Optional[int] = None
    rows_processed: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    batches: int = 0
    failed_batches: int = 0
    continued: bool = False
    skipped: bool = False
    bigquery_job_id: Optional[str] = None
    last_processed_date: Optional[date] = None
    error: Optional[str] = None
    execution_time_ms: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_name": self.table_name,
            "function_name": self.function_name,
            "status": self.status,
            "audit_log_id": self.audit_log_id,
            "rows_processed": self.rows_processed,
            "rows_inserted": self.rows_inserted,
            "rows_updated": self.rows_updated,
            "batches": self.batches,
            "failed_batches": self.failed_batches,
            "continued": self.continued,
            "skipped": self.skipped,
            "bigquery_job_id": self.bigquery_job_id,
            "last_processed_date": self.last_processed_date.isoformat() if self.last_processed_date else None,
            "error": self.error,
            "execution_time_ms": self.execution_time_ms,
        }


class TimeBudget:
    """
    Presupuesto de tiempo de una invocación.

    `limit_ms=None` desactiva el límite (corridas orquestadas terminan siempre
    en un estado terminal dentro de la misma invocación).
    """

    def __init__(self, limit_ms: Optional[int], clock: Callable[[], float] = time.monotonic) -> None:
        self._limit_ms = limit_ms
        self._clock = clock
        self._started = clock()

    @property
    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    def exhausted(self) -> bool:
        if self._limit_ms is None:
            return False
        return self.elapsed_ms >= self._limit_ms
