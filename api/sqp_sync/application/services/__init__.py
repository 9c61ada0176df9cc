"""
Servicios de aplicacion.

Contiene la logica reutilizable que no pertenece a un caso de uso especifico.
"""
from sqp_sync.application.services.health_evaluators import (
    DEFAULT_HEALTH_CHECKS,
    HealthContext,
    HealthCheckResult,
    evaluate_health,
    is_stale,
    worst_level,
)

__all__ = [
    "DEFAULT_HEALTH_CHECKS",
    "HealthContext",
    "HealthCheckResult",
    "evaluate_health",
    "is_stale",
    "worst_level",
]
