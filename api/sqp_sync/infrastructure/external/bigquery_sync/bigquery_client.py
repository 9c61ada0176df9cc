"""
Cliente mínimo de BigQuery para leer el export SQP.

Requisitos cubiertos:
- google-cloud-bigquery con credenciales de service account en JSON (env)
- consultas parametrizadas (sin interpolar valores en el SQL)
- paginación LIMIT/OFFSET con cursor fijo por fecha de fin de periodo
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any, Optional

from google.api_core.exceptions import GoogleAPIError
from google.cloud import bigquery
from google.oauth2 import service_account
from loguru import logger

from sqp_sync.core.config import settings
from sqp_sync.shared.exceptions.sync import BigQueryQueryError, SyncConfigError

from .sync_config import TableSyncConfig
from .types import BigQueryPage


def _quote(identifier: str) -> str:
    """Cita un identificador BigQuery con backticks."""
    return "`" + identifier.replace("`", "") + "`"


def build_incremental_query(
    config: TableSyncConfig,
    *,
    table_ref: str,
    cursor: Optional[date],
    limit: int,
    offset: int,
) -> tuple[str, dict[str, tuple[str, Any]]]:
    """
    Construye la consulta de una página incremental.

    - Incluye igualdad (>=) en el cursor: re-leer el borde es seguro porque
      el destino hace UPSERT por clave natural.
    - Orden estable por las columnas de `order_by_source_fields` para que
      LIMIT/OFFSET no salte ni repita filas entre páginas.

    Returns:
        (sql, params) donde params es {nombre: (tipo_bigquery, valor)}
    """
    select_kw = "SELECT DISTINCT" if config.distinct else "SELECT"
    columns = ",\n  ".join(_quote(f) for f in config.source_fields)

    where: list[str] = [f"{_quote(f)} IS NOT NULL" for f in config.not_null_source_fields]
    params: dict[str, tuple[str, Any]] = {}
    if cursor is not None:
        where.append(f"DATE({_quote(config.cursor_source_field)}) >= @cursor")
        params["cursor"] = ("DATE", cursor)

    order_fields = config.order_by_source_fields or (config.cursor_source_field,)
    order_by = ", ".join(f"{_quote(f)} ASC" for f in order_fields)

    sql = f"{select_kw}\n  {columns}\nFROM {table_ref}"
    if where:
        sql += "\nWHERE " + "\n  AND ".join(where)
    sql += f"\nORDER BY {order_by}\nLIMIT @limit OFFSET @offset"
    params["limit"] = ("INT64", int(limit))
    params["offset"] = ("INT64", int(offset))
    return sql, params


def load_service_account_info(raw_json: str) -> Optional[dict[str, Any]]:
    """
    Parsea el JSON de la service account.

    Retorna None si no se configuró (se usan Application Default Credentials).
    """
    if not raw_json or not raw_json.strip():
        return None
    try:
        info = json.loads(raw_json)
    except json.JSONDecodeError as e:
        raise SyncConfigError(f"GOOGLE_APPLICATION_CREDENTIALS_JSON no es JSON valido: {e}")
    if not isinstance(info, dict) or "client_email" not in info:
        raise SyncConfigError("GOOGLE_APPLICATION_CREDENTIALS_JSON no parece una service account")
    return info


class BigQueryClient:
    """
    Fuente BigQuery del pipeline.

    El `bigquery.Client` se crea perezosamente en la primera consulta para que
    la app pueda arrancar sin credenciales (p.ej. en tests o sólo para lectura
    de estado).
    """

    def __init__(
        self,
        *,
        project_id: str,
        dataset: str,
        table: str,
        location: str = "US",
        credentials_info: Optional[dict[str, Any]] = None,
        client: Optional[bigquery.Client] = None,
    ) -> None:
        self._credentials_info = credentials_info
        self.project_id = project_id or (credentials_info or {}).get("project_id", "")
        self.dataset = dataset
        self.table = table
        self.location = location
        self._client = client

    @classmethod
    def from_settings(cls) -> "BigQueryClient":
        info = load_service_account_info(settings.GOOGLE_APPLICATION_CREDENTIALS_JSON)
        return cls(
            project_id=settings.BIGQUERY_PROJECT_ID,
            dataset=settings.BIGQUERY_DATASET,
            table=settings.BIGQUERY_TABLE,
            location=settings.BIGQUERY_LOCATION,
            credentials_info=info,
        )

    @property
    def table_ref(self) -> str:
        parts = [p for p in (self.project_id, self.dataset, self.table) if p]
        return _quote(".".join(parts))

    def _get_client(self) -> bigquery.Client:
        if self._client is None:
            if self._credentials_info:
                credentials = service_account.Credentials.from_service_account_info(self._credentials_info)
                self._client = bigquery.Client(
                    project=self.project_id or credentials.project_id,
                    credentials=credentials,
                    location=self.location,
                )
            else:
                self._client = bigquery.Client(project=self.project_id or None, location=self.location)
        return self._client

    def run_query(self, sql: str, params: dict[str, tuple[str, Any]]) -> BigQueryPage:
        """
        Ejecuta una consulta parametrizada y retorna todas sus filas como dicts.

        Raises:
            BigQueryQueryError: si el job falla o no se pueden leer los resultados
        """
        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter(name, type_, value)
                for name, (type_, value) in params.items()
            ]
        )
        job = None
        try:
            job = self._get_client().query(sql, job_config=job_config, location=self.location)
            rows = [dict(row.items()) for row in job.result()]
        except GoogleAPIError as e:
            job_id = getattr(job, "job_id", None)
            logger.error(f"BigQuery fallo (job={job_id}): {e}")
            raise BigQueryQueryError(f"Consulta BigQuery fallida: {e}", job_id=job_id) from e

        logger.debug(f"BigQuery job {job.job_id}: {len(rows)} filas")
        return BigQueryPage(rows=rows, job_id=job.job_id)

    def fetch_page(
        self,
        config: TableSyncConfig,
        *,
        cursor: Optional[date],
        limit: int,
        offset: int,
    ) -> BigQueryPage:
        """Lee una página incremental para la tabla configurada."""
        sql, params = build_incremental_query(
            config, table_ref=self.table_ref, cursor=cursor, limit=limit, offset=offset
        )
        return self.run_query(sql, params)
