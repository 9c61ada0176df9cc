"""
Data Transfer Objects (DTOs) para la capa de aplicacion.
"""
from .refresh_dto import (
    OrchestrateRequestDTO,
    TableSyncRequestDTO,
    TableSyncResultDTO,
    OrchestrationResultDTO,
    FunctionInvocationDTO,
    FunctionAcceptedDTO,
    TableStatusDTO,
    RefreshStatusDTO,
    HealthCheckDTO,
    HealthReportDTO,
    AuditLogDTO,
    AuditHistoryDTO,
    TableMetricsDTO,
    RefreshMetricsDTO,
    RefreshConfigDTO,
    RefreshConfigUpdateDTO,
    RefreshTriggerRequestDTO,
    SchedulerStatusDTO,
)
from .webhook_dto import (
    WebhookCreateDTO,
    WebhookResponseDTO,
    WebhookDeliveryDTO,
    WebhookDeliveryResultDTO,
    WebhookTestResultDTO,
)

__all__ = [
    "OrchestrateRequestDTO",
    "TableSyncRequestDTO",
    "TableSyncResultDTO",
    "OrchestrationResultDTO",
    "FunctionInvocationDTO",
    "FunctionAcceptedDTO",
    "TableStatusDTO",
    "RefreshStatusDTO",
    "HealthCheckDTO",
    "HealthReportDTO",
    "AuditLogDTO",
    "AuditHistoryDTO",
    "TableMetricsDTO",
    "RefreshMetricsDTO",
    "RefreshConfigDTO",
    "RefreshConfigUpdateDTO",
    "RefreshTriggerRequestDTO",
    "SchedulerStatusDTO",
    "WebhookCreateDTO",
    "WebhookResponseDTO",
    "WebhookDeliveryDTO",
    "WebhookDeliveryResultDTO",
    "WebhookTestResultDTO",
]
