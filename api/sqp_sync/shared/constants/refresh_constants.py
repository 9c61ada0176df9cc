"""
Constantes del pipeline de refresco BigQuery -> Postgres.
Define estados de auditoria, checkpoints, webhooks y nombres de funciones.
"""
from enum import Enum


class RefreshStatus(str, Enum):
    """Estados posibles de una fila de refresh_audit_log."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RefreshStatus.SUCCESS, RefreshStatus.FAILED, RefreshStatus.PARTIAL})


class RefreshType(str, Enum):
    """Origen de una corrida de refresco."""
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    API_SYNC = "api_sync"
    ORCHESTRATED = "orchestrated"
    CONTINUATION = "continuation"


class CheckpointStatus(str, Enum):
    """Estados de un checkpoint de refresco."""
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class OrchestrationStatus(str, Enum):
    """Estados agregados de una corrida de orquestacion."""
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class DeliveryStatus(str, Enum):
    """Estados de una entrega de webhook (un solo intento)."""
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class WebhookEvent(str, Enum):
    """Eventos publicados a los suscriptores."""
    SYNC_COMPLETED = "sync.completed"
    REFRESH_COMPLETED = "refresh.completed"
    REFRESH_FAILED = "refresh.failed"
    WEBHOOK_TEST = "webhook.test"


class HealthLevel(str, Enum):
    """Niveles de salud reportados por /refresh/status y /refresh/health."""
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"


class TableHealthStatus(str, Enum):
    """Estado de una tabla en /refresh/tables."""
    ACTIVE = "active"
    STALE = "stale"
    ERROR = "error"
    DISABLED = "disabled"


class SummaryPeriod(str, Enum):
    """Granularidad de las tablas resumen."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


# Nombres de funciones de refresco (igual que los endpoints de continuacion)
FUNCTION_ASIN_PERFORMANCE = "refresh-asin-performance"
FUNCTION_SEARCH_QUERIES = "refresh-search-queries"
FUNCTION_SUMMARY_TABLES = "refresh-summary-tables"

DEFAULT_SCHEMA = "sqp"

# Tamano de pagina configurable por tabla (refresh_config.custom_sync_params.batch_size)
CUSTOM_BATCH_SIZE_MIN = 1
CUSTOM_BATCH_SIZE_MAX = 10000

# Categorias de /refresh/tables: clave -> (nombre, prioridad, tablas)
TABLE_CATEGORIES: dict = {
    "core_data": ("Core Data", 90, ("asin_performance_data", "search_query_performance")),
    "reporting": ("Reporting", 50, ("search_query_summary",)),
}
OTHER_CATEGORY = ("other", "Other", 0)
TABLE_TREND_DAYS = 7
TABLE_TREND_REFRESH_POINTS = 10

# Umbrales de salud
STALE_MULTIPLIER = 1.5
HEALTH_STALE_PERCENTAGE_MAX = 20.0
HEALTH_FAILURE_RATE_MAX = 10.0
HEALTH_SYNC_LAG_HOURS_MAX = 48.0
DATA_FRESHNESS_WARNING_DAYS = 3
DATA_FRESHNESS_ERROR_DAYS = 7

# Limites de almacenamiento
RESPONSE_BODY_MAX_CHARS = 1000
ERROR_MESSAGE_MAX_CHARS = 2000
WEBHOOK_RESULTS_PREVIEW = 10
