"""
Excepciones relacionadas con la lógica de dominio.
"""
from typing import Any

from sqp_sync.shared.exceptions.base import AppException


class DomainException(AppException):
    """Excepción base para errores de dominio."""

    def __init__(self, message: str, error_code: str = "DOMAIN_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=400,
            error_code=error_code,
            details=details
        )


class EntityNotFoundException(DomainException):
    """Excepción cuando no se encuentra una entidad."""

    def __init__(self, entity_name: str, entity_id: Any):
        super().__init__(
            message=f"{entity_name} con ID {entity_id} no encontrado",
            error_code="ENTITY_NOT_FOUND",
            details={"entity": entity_name, "id": str(entity_id)}
        )
        self.status_code = 404


class ValidationException(DomainException):
    """Excepción para errores de validación."""

    def __init__(self, message: str, field: str = None):
        details = {"field": field} if field else None
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details
        )


class RefreshDisabledException(DomainException):
    """Excepcion cuando se intenta refrescar una tabla deshabilitada."""

    def __init__(self, table_name: str):
        super().__init__(
            message=f"El refresco de la tabla '{table_name}' esta deshabilitado",
            error_code="REFRESH_DISABLED",
            details={"table_name": table_name}
        )


class RefreshTooSoonException(DomainException):
    """Excepcion cuando la tabla se refresco hace menos del intervalo minimo."""

    def __init__(self, table_name: str, minutes_since_last: float, min_interval_minutes: int):
        super().__init__(
            message=(
                f"La tabla '{table_name}' se refresco hace {minutes_since_last:.0f} minutos; "
                f"el intervalo minimo es {min_interval_minutes} minutos (usar force=true)"
            ),
            error_code="REFRESH_TOO_SOON",
            details={
                "table_name": table_name,
                "minutes_since_last": round(minutes_since_last, 1),
                "min_interval_minutes": min_interval_minutes,
            }
        )
        self.status_code = 409


class SyncAlreadyRunningException(DomainException):
    """Excepcion cuando el scheduler diario ya tiene una corrida en curso."""

    def __init__(self):
        super().__init__(
            message="Ya hay una sincronizacion diaria en curso",
            error_code="SYNC_ALREADY_RUNNING",
        )
        self.status_code = 409
