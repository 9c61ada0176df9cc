"""
Excepciones del pipeline de sincronizacion BigQuery -> Postgres.
"""
from typing import Any, Dict, Optional

from sqp_sync.shared.exceptions.base import AppException


class SyncError(AppException):
    """Excepcion base del pipeline de sync."""

    def __init__(
        self,
        message: str,
        error_code: str = "SYNC_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, status_code=500, error_code=error_code, details=details)


class SyncConfigError(SyncError):
    """Error de configuracion del pipeline (credenciales, tabla desconocida, etc.)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, error_code="SYNC_CONFIG_ERROR", details=details)


class BigQueryQueryError(SyncError):
    """Fallo al ejecutar o leer una consulta BigQuery."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="BIGQUERY_QUERY_ERROR",
            details={"job_id": job_id} if job_id else None,
        )
        self.job_id = job_id


class ContinuationDispatchError(SyncError):
    """No se pudo programar la continuacion de un sync interrumpido."""

    def __init__(self, function_name: str, reason: str):
        super().__init__(
            message=f"No se pudo continuar '{function_name}': {reason}",
            error_code="CONTINUATION_ERROR",
            details={"function_name": function_name},
        )
