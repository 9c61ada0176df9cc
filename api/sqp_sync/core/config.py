"""
Configuracion central de la aplicacion.
Gestiona variables de entorno y configuraciones globales.
Soporta configuracion dinamica para desarrollo (ENVIRONMENT=development)
y produccion (ENVIRONMENT=production).
"""
import json
from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field, computed_field


class Settings(BaseSettings):
    """
    Clase de configuracion de la aplicacion.
    Lee variables de entorno y proporciona valores por defecto.

    Bloques principales:
    - Base de datos destino (Supabase/Postgres): URL completa o por componentes
    - BigQuery origen: proyecto, dataset, tabla y credenciales JSON
    - Sync: presupuesto de tiempo, tamanos de lote y modo de continuacion
    - Orquestacion, scheduler diario y webhooks
    """

    # Configuracion de la aplicacion
    APP_NAME: str = Field(default="SQP Sync Service")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Configuracion del servidor
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Base de datos - Componentes separados (recomendado para flexibilidad)
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)
    DATABASE_USER: str = Field(default="postgres")
    DATABASE_PASSWORD: str = Field(default="postgres")
    DATABASE_NAME: str = Field(default="postgres")

    # Base de datos - URL completa (override de componentes si se proporciona)
    DATABASE_URL: str = Field(default="")
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)

    # BigQuery (origen de datos SQP)
    BIGQUERY_PROJECT_ID: str = Field(default="")
    BIGQUERY_DATASET: str = Field(default="dataclient_amzatlas_agency_85")
    BIGQUERY_TABLE: str = Field(default="amz_atlas_product_data_search_query_performance_85")
    BIGQUERY_LOCATION: str = Field(default="US")
    # JSON completo de la service account (mismo formato que el archivo descargado de GCP)
    GOOGLE_APPLICATION_CREDENTIALS_JSON: str = Field(default="")

    # Sync - presupuesto de tiempo por invocacion (ms)
    SYNC_FUNCTION_TIMEOUT_MS: int = Field(default=300000)
    SYNC_TIMEOUT_BUFFER_MS: int = Field(default=30000)
    ASIN_BATCH_SIZE: int = Field(default=1000)
    SEARCH_QUERY_BATCH_SIZE: int = Field(default=500)
    INITIAL_LOOKBACK_DAYS: int = Field(default=90)
    CHECKPOINT_TTL_MINUTES: int = Field(default=60)
    # "scheduler" (job en proceso) o "http" (auto-invocacion via API)
    CONTINUATION_MODE: str = Field(default="scheduler")
    SELF_BASE_URL: str = Field(default="http://localhost:8000")

    # Orquestacion
    ORCHESTRATION_BATCH_SIZE: int = Field(default=3)
    ORCHESTRATION_BATCH_DELAY_S: float = Field(default=1.0)
    MIN_REFRESH_INTERVAL_MINUTES: int = Field(default=60)

    # Scheduler diario (expresion cron de 5 campos)
    SCHEDULER_ENABLED: bool = Field(default=True)
    SYNC_SCHEDULE_CRON: str = Field(default="0 2 * * *")
    SYNC_SCHEDULE_TIMEZONE: str = Field(default="UTC")

    # Webhooks
    WEBHOOK_TIMEOUT_S: float = Field(default=30.0)

    # Seguridad (token de service role para endpoints que disparan syncs)
    SERVICE_ROLE_KEY: str = Field(default="")

    # CORS (acepta lista JSON o "*" para todos los origenes)
    CORS_ORIGINS: str = Field(default="*")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/app.log")

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """
        Retorna la URL de base de datos efectiva.
        Si DATABASE_URL esta definida, la usa directamente.
        Si no, construye la URL desde los componentes individuales.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    @computed_field
    @property
    def is_development(self) -> bool:
        """Indica si el entorno es de desarrollo."""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def sync_time_budget_ms(self) -> int:
        """Tiempo util por invocacion antes de guardar checkpoint y continuar."""
        return max(self.SYNC_FUNCTION_TIMEOUT_MS - self.SYNC_TIMEOUT_BUFFER_MS, 0)

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra del .env


def get_cors_origins(cors_string: str) -> List[str]:
    """
    Parsea la configuracion de CORS.
    Acepta "*" para todos los origenes o una lista JSON.
    """
    if cors_string == "*":
        return ["*"]
    try:
        return json.loads(cors_string)
    except json.JSONDecodeError:
        # Si no es JSON valido, retornar como lista simple
        return [origin.strip() for origin in cors_string.split(",")]


# Instancia global de configuracion
settings = Settings()
