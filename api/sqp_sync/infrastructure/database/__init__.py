"""
Configuración de base de datos.

Importa todos los modelos para que se registren con Base
antes de crear las tablas.
"""
from sqp_sync.infrastructure.database.models import (
    RefreshConfigModel,
    RefreshAuditLogModel,
    RefreshCheckpointModel,
    RefreshOrchestrationLogModel,
    WebhookConfigModel,
    WebhookDeliveryLogModel,
    AsinPerformanceDataModel,
    SearchQueryPerformanceModel,
    SearchQuerySummaryModel,
)
