"""
DTOs del pipeline de refresco: sync, orquestacion, estado, salud e historial.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from sqp_sync.shared.constants.refresh_constants import CUSTOM_BATCH_SIZE_MAX, CUSTOM_BATCH_SIZE_MIN


class OrchestrateRequestDTO(BaseModel):
    """Solicitud de orquestacion (sin tablas = todas las vencidas)."""
    table_names: Optional[List[str]] = Field(None, description="Tablas a refrescar")
    full_sync: bool = Field(False, description="Ignorar checkpoints y cursores")
    refresh_type: str = Field("manual", description="Origen de la corrida")


class TableSyncRequestDTO(BaseModel):
    """Solicitud de sync de una tabla."""
    full_sync: bool = False


class TableSyncResultDTO(BaseModel):
    """Resultado de sincronizar una tabla."""
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
    last_processed_date: Optional[str] = None
    error: Optional[str] = None
    execution_time_ms: int = 0


class OrchestrationResultDTO(BaseModel):
    """Resultado agregado de una orquestacion."""
    orchestration_id: Optional[int] = None
    status: str
    total_tables: int = 0
    successful_tables: int = 0
    failed_tables: int = 0
    total_rows_processed: int = 0
    skipped_tables: List[str] = Field(default_factory=list)
    results: List[Dict[str, Any]] = Field(default_factory=list)
    execution_time_ms: int = 0


class FunctionInvocationDTO(BaseModel):
    """
    Cuerpo de la re-invocacion de una funcion de refresco.
    `config` identifica la tabla; `audit_log_id` la corrida a continuar.
    """
    config: Dict[str, Any] = Field(default_factory=dict)
    audit_log_id: Optional[int] = None
    refresh_type: str = "continuation"
    full_sync: bool = False


class FunctionAcceptedDTO(BaseModel):
    """Respuesta 202 del endpoint de funciones."""
    accepted: bool = True
    function_name: str
    table_name: Optional[str] = None
    audit_log_id: Optional[int] = None


class TableStatusDTO(BaseModel):
    """Estado de refresco de una tabla."""
    table_schema: str
    table_name: str
    function_name: str
    is_enabled: bool
    priority: int
    refresh_frequency_hours: int
    last_refresh_at: Optional[datetime] = None
    next_refresh_at: Optional[datetime] = None
    hours_since_refresh: Optional[float] = None
    is_stale: bool = False
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    last_rows_processed: Optional[int] = None
    has_active_checkpoint: bool = False


class RefreshStatusDTO(BaseModel):
    """Resumen de estado de todas las tablas."""
    overall_status: str
    total_tables: int
    enabled_tables: int
    stale_tables: int
    failed_tables: int
    tables: List[TableStatusDTO]
    checked_at: datetime


class HealthCheckDTO(BaseModel):
    """Resultado de un chequeo individual."""
    name: str
    status: str
    value: Optional[float] = None
    threshold: Optional[float] = None
    message: str


class HealthReportDTO(BaseModel):
    """Reporte de salud del pipeline."""
    status: str
    checks: List[HealthCheckDTO]
    latest_data_date: Optional[date] = None
    checked_at: datetime


class AuditLogDTO(BaseModel):
    """Fila del historial de refrescos."""
    id: int
    refresh_config_id: Optional[int] = None
    table_schema: str
    table_name: str
    refresh_type: str
    status: str
    rows_processed: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    bigquery_job_id: Optional[str] = None
    sync_metadata: Optional[Dict[str, Any]] = None
    refresh_started_at: Optional[datetime] = None
    refresh_completed_at: Optional[datetime] = None
    execution_time_ms: Optional[int] = None

    class Config:
        from_attributes = True


class AuditHistoryDTO(BaseModel):
    """Historial paginado."""
    items: List[AuditLogDTO]
    total: int
    limit: int
    offset: int


class TableMetricsDTO(BaseModel):
    """Metricas de una tabla en la ventana consultada."""
    table_name: str
    total_runs: int
    successful_runs: int
    failed_runs: int
    partial_runs: int
    success_rate: float
    avg_execution_time_ms: Optional[float] = None
    total_rows_processed: int = 0


class RefreshMetricsDTO(BaseModel):
    """Metricas agregadas del pipeline."""
    days: int
    total_runs: int
    success_rate: float
    avg_execution_time_ms: Optional[float] = None
    total_rows_processed: int
    tables: List[TableMetricsDTO]
    orchestrations: int = 0


class RefreshTimePointDTO(BaseModel):
    """Duracion de una corrida exitosa."""
    started_at: datetime
    duration_minutes: float


class DailySuccessRateDTO(BaseModel):
    """Tasa de exito de un dia UTC (solo dias con corridas)."""
    day: date
    rate: float


class TableTrendsDTO(BaseModel):
    refresh_times: List[RefreshTimePointDTO] = Field(default_factory=list)
    success_rate: List[DailySuccessRateDTO] = Field(default_factory=list)


class TableOverviewMetricsDTO(BaseModel):
    """Metricas de una tabla en /refresh/tables."""
    last_refresh: Optional[datetime] = None
    next_refresh: Optional[datetime] = None
    refresh_frequency_hours: int
    rows_count: Optional[int] = None
    avg_refresh_duration_minutes: Optional[float] = None
    success_rate_7d: Optional[float] = None
    last_error: Optional[str] = None
    data_freshness_hours: Optional[float] = None


class TableOverviewDTO(BaseModel):
    """Salud y tendencias de una tabla."""
    table_name: str
    table_schema: str
    category: str
    status: str
    health_score: int
    metrics: TableOverviewMetricsDTO
    trends: TableTrendsDTO


class TableCategoryDTO(BaseModel):
    key: str
    name: str
    priority: int
    table_count: int
    avg_health_score: int


class TablesSummaryDTO(BaseModel):
    total_tables: int
    by_status: Dict[str, int]
    avg_health_score: int


class TablesOverviewDTO(BaseModel):
    """Respuesta de /refresh/tables; sin categorias cuando se filtra una tabla."""
    tables: List[TableOverviewDTO]
    summary: TablesSummaryDTO
    categories: Optional[List[TableCategoryDTO]] = None


class RefreshConfigDTO(BaseModel):
    """Fila de refresh_config."""
    id: int
    table_schema: str
    table_name: str
    function_name: str
    is_enabled: bool
    refresh_frequency_hours: int
    priority: int
    last_refresh_at: Optional[datetime] = None
    next_refresh_at: Optional[datetime] = None
    custom_sync_params: Optional[Dict[str, Any]] = None
    dependencies: Optional[List[str]] = None

    class Config:
        from_attributes = True


class RefreshConfigUpdateDTO(BaseModel):
    """Campos editables de refresh_config (todos opcionales)."""
    is_enabled: Optional[bool] = None
    refresh_frequency_hours: Optional[int] = Field(None, ge=1, le=24 * 30)
    priority: Optional[int] = Field(None, ge=0, le=1000)
    custom_sync_params: Optional[Dict[str, Any]] = Field(
        None, description="Parametros de sync; batch_size define el tamano de pagina"
    )
    dependencies: Optional[List[str]] = None

    @field_validator("custom_sync_params")
    @classmethod
    def validate_custom_sync_params(cls, value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if value is None or "batch_size" not in value:
            return value
        batch_size = value["batch_size"]
        if (
            isinstance(batch_size, bool)
            or not isinstance(batch_size, int)
            or not CUSTOM_BATCH_SIZE_MIN <= batch_size <= CUSTOM_BATCH_SIZE_MAX
        ):
            raise ValueError(
                f"batch_size debe ser un entero entre {CUSTOM_BATCH_SIZE_MIN} y {CUSTOM_BATCH_SIZE_MAX}"
            )
        return value


class RefreshTriggerRequestDTO(BaseModel):
    """Disparo manual de una tabla."""
    table_name: str = Field(..., min_length=1)
    force: bool = Field(False, description="Ignorar el intervalo minimo entre refrescos")
    full_sync: bool = False


class SchedulerScheduleUpdateDTO(BaseModel):
    """Nueva expresion cron (5 campos) del sync diario."""
    cron: str = Field(..., min_length=1, examples=["0 6 * * *"])


class SchedulerStatusDTO(BaseModel):
    """Estado del scheduler diario."""
    enabled: bool
    is_running: bool
    cron: str
    timezone: str
    next_run_at: Optional[datetime] = None
    last_run_started_at: Optional[datetime] = None
    last_run_completed_at: Optional[datetime] = None
    last_result: Optional[Dict[str, Any]] = None
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
