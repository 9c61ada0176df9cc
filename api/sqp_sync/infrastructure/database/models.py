"""
Modelos de base de datos (ORM).

Dos grupos de tablas:
- Control del pipeline: refresh_config, refresh_audit_log, refresh_checkpoints,
  refresh_orchestration_log, webhook_configs, webhook_deliveries
- Datos SQP destino: asin_performance_data, search_query_performance,
  search_query_summary
"""
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    JSON,
    text,
)
from sqlalchemy.sql import func

from sqp_sync.infrastructure.database.session import Base
from sqp_sync.shared.constants.refresh_constants import (
    CheckpointStatus,
    DeliveryStatus,
    OrchestrationStatus,
    RefreshStatus,
)


class RefreshConfigModel(Base):
    """
    Configuracion de refresco por tabla destino.
    Determina que tablas estan vencidas y con que funcion se sincronizan.
    """

    __tablename__ = "refresh_config"
    __table_args__ = (
        UniqueConstraint("table_schema", "table_name", name="uq_refresh_config_table"),
    )

    id = Column(Integer, primary_key=True, index=True)
    table_schema = Column(String(100), nullable=False, default="sqp")
    table_name = Column(String(255), nullable=False, index=True)
    function_name = Column(String(255), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    refresh_frequency_hours = Column(Integer, nullable=False, default=24)
    priority = Column(Integer, nullable=False, default=100)
    last_refresh_at = Column(DateTime(timezone=True), nullable=True)
    next_refresh_at = Column(DateTime(timezone=True), nullable=True, index=True)
    custom_sync_params = Column(JSON, nullable=True)
    dependencies = Column(JSON, nullable=True)  # Lista de table_name que deben refrescarse antes
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return (
            f"<RefreshConfig(id={self.id}, table={self.table_schema}.{self.table_name}, "
            f"enabled={self.is_enabled})>"
        )


class RefreshAuditLogModel(Base):
    """
    Historial de corridas de sync (append-only).
    Cada intento crea una fila antes de empezar y la cierra una sola vez.
    """

    __tablename__ = "refresh_audit_log"

    id = Column(Integer, primary_key=True, index=True)
    refresh_config_id = Column(Integer, ForeignKey("refresh_config.id", ondelete="SET NULL"), nullable=True, index=True)
    table_schema = Column(String(100), nullable=False)
    table_name = Column(String(255), nullable=False, index=True)
    refresh_type = Column(String(50), nullable=False, default="manual")
    status = Column(String(20), nullable=False, default=RefreshStatus.PENDING.value, index=True)
    rows_processed = Column(Integer, nullable=False, default=0)
    rows_inserted = Column(Integer, nullable=False, default=0)
    rows_updated = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)
    bigquery_job_id = Column(String(255), nullable=True)
    sync_metadata = Column(JSON, nullable=True)
    refresh_started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    refresh_completed_at = Column(DateTime(timezone=True), nullable=True)
    execution_time_ms = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<RefreshAuditLog(id={self.id}, table={self.table_name}, status={self.status})>"


class RefreshCheckpointModel(Base):
    """
    Posicion de reanudacion de un sync largo.
    Solo puede existir un checkpoint 'active' por (funcion, schema, tabla).
    """

    __tablename__ = "refresh_checkpoints"
    __table_args__ = (
        Index(
            "uq_refresh_checkpoints_active",
            "function_name",
            "table_schema",
            "table_name",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    function_name = Column(String(255), nullable=False)
    table_schema = Column(String(100), nullable=False)
    table_name = Column(String(255), nullable=False)
    checkpoint_data = Column(JSON, nullable=False, default=dict)
    last_processed_row = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=CheckpointStatus.ACTIVE.value, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return (
            f"<RefreshCheckpoint(id={self.id}, function={self.function_name}, "
            f"table={self.table_name}, status={self.status})>"
        )


class RefreshOrchestrationLogModel(Base):
    """Resultado agregado de una corrida de orquestacion."""

    __tablename__ = "refresh_orchestration_log"

    id = Column(Integer, primary_key=True, index=True)
    refresh_type = Column(String(50), nullable=False, default="scheduled")
    status = Column(String(20), nullable=False, default=OrchestrationStatus.IN_PROGRESS.value)
    total_tables = Column(Integer, nullable=False, default=0)
    successful_tables = Column(Integer, nullable=False, default=0)
    failed_tables = Column(Integer, nullable=False, default=0)
    total_rows_processed = Column(Integer, nullable=False, default=0)
    results = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    execution_time_ms = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<RefreshOrchestration(id={self.id}, status={self.status}, tables={self.total_tables})>"


class WebhookConfigModel(Base):
    """Suscriptor de eventos del pipeline."""

    __tablename__ = "webhook_configs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    secret = Column(String(255), nullable=True)
    events = Column(JSON, nullable=False, default=list)  # Lista vacia = todos los eventos
    headers = Column(JSON, nullable=True)
    is_enabled = Column(Boolean, nullable=False, default=True)
    total_deliveries = Column(Integer, nullable=False, default=0)
    successful_deliveries = Column(Integer, nullable=False, default=0)
    failed_deliveries = Column(Integer, nullable=False, default=0)
    last_delivery_at = Column(DateTime(timezone=True), nullable=True)
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    last_failure_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<WebhookConfig(id={self.id}, name={self.name}, enabled={self.is_enabled})>"


class WebhookDeliveryLogModel(Base):
    """Registro de cada intento de entrega de un webhook."""

    __tablename__ = "webhook_deliveries"

    id = Column(Integer, primary_key=True, index=True)
    webhook_config_id = Column(Integer, ForeignKey("webhook_configs.id", ondelete="CASCADE"), nullable=False, index=True)
    delivery_id = Column(String(64), nullable=False, unique=True)
    event_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False)
    signature = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value, index=True)
    http_status_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    attempt_number = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<WebhookDelivery(id={self.id}, event={self.event_type}, status={self.status})>"


class AsinPerformanceDataModel(Base):
    """Periodo de reporte SQP por ASIN (fila padre de search_query_performance)."""

    __tablename__ = "asin_performance_data"
    __table_args__ = (
        UniqueConstraint("start_date", "end_date", "asin", name="uq_asin_performance_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False, index=True)
    asin = Column(String(20), nullable=False, index=True)
    parent_asin = Column(String(20), nullable=True)
    product_name = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<AsinPerformance(id={self.id}, asin={self.asin}, end_date={self.end_date})>"


class SearchQueryPerformanceModel(Base):
    """Metricas del embudo por (periodo, ASIN, search query)."""

    __tablename__ = "search_query_performance"
    __table_args__ = (
        UniqueConstraint(
            "start_date", "end_date", "asin", "search_query",
            name="uq_search_query_performance_key",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    asin_performance_id = Column(
        Integer, ForeignKey("asin_performance_data.id", ondelete="CASCADE"), nullable=True, index=True
    )
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False, index=True)
    asin = Column(String(20), nullable=False, index=True)
    search_query = Column(Text, nullable=False)
    search_query_score = Column(Integer, nullable=False, default=0)
    search_query_volume = Column(Integer, nullable=False, default=0)

    # Impresiones
    total_query_impressions = Column(Integer, nullable=False, default=0)
    impressions = Column(Integer, nullable=False, default=0)
    impression_share = Column(Float, nullable=False, default=0)

    # Clicks
    total_clicks = Column(Integer, nullable=False, default=0)
    clicks = Column(Integer, nullable=False, default=0)
    click_share = Column(Float, nullable=False, default=0)
    total_median_click_price = Column(Float, nullable=False, default=0)
    asin_median_click_price = Column(Float, nullable=False, default=0)

    # Carrito
    total_cart_adds = Column(Integer, nullable=False, default=0)
    cart_adds = Column(Integer, nullable=False, default=0)
    cart_add_share = Column(Float, nullable=False, default=0)

    # Compras
    total_purchases = Column(Integer, nullable=False, default=0)
    purchases = Column(Integer, nullable=False, default=0)
    purchase_share = Column(Float, nullable=False, default=0)
    total_median_purchase_price = Column(Float, nullable=False, default=0)
    asin_median_purchase_price = Column(Float, nullable=False, default=0)

    # Metricas calculadas
    ctr = Column(Float, nullable=False, default=0)
    cvr = Column(Float, nullable=False, default=0)
    cart_add_rate = Column(Float, nullable=False, default=0)
    purchase_rate = Column(Float, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return (
            f"<SearchQueryPerformance(id={self.id}, asin={self.asin}, "
            f"query={self.search_query}, end_date={self.end_date})>"
        )


class SearchQuerySummaryModel(Base):
    """Agregados semanales, mensuales, trimestrales y anuales."""

    __tablename__ = "search_query_summary"
    __table_args__ = (
        UniqueConstraint(
            "period_type", "period_start", "asin", "search_query",
            name="uq_search_query_summary_key",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    period_type = Column(String(20), nullable=False, index=True)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    asin = Column(String(20), nullable=False)
    search_query = Column(Text, nullable=False)
    total_impressions = Column(Integer, nullable=False, default=0)
    total_clicks = Column(Integer, nullable=False, default=0)
    total_cart_adds = Column(Integer, nullable=False, default=0)
    total_purchases = Column(Integer, nullable=False, default=0)
    avg_ctr = Column(Float, nullable=False, default=0)
    avg_cvr = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return (
            f"<SearchQuerySummary(period={self.period_type}:{self.period_start}, "
            f"asin={self.asin}, query={self.search_query})>"
        )
