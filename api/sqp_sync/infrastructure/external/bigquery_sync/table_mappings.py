"""
Mapeos BigQuery (export SQP) -> Postgres por tabla.

Cada tabla destino tiene:
- una función de refresco (nombre estable usado en checkpoints/continuaciones)
- su lista de FieldMapping sobre las columnas del export (nombres con espacios)
- métricas derivadas calculadas en `derive`
"""

from __future__ import annotations

from typing import Any, Optional

from sqp_sync.core.config import settings
from sqp_sync.infrastructure.database.models import (
    AsinPerformanceDataModel,
    SearchQueryPerformanceModel,
)
from sqp_sync.shared.constants.refresh_constants import (
    DEFAULT_SCHEMA,
    FUNCTION_ASIN_PERFORMANCE,
    FUNCTION_SEARCH_QUERIES,
    FUNCTION_SUMMARY_TABLES,
)
from sqp_sync.shared.exceptions.sync import SyncConfigError
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils

from .sync_config import ParentLink, TableSyncConfig
from .types import FieldMapping, safe_divide, to_float, to_int


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


_PERIOD_MAPPINGS = [
    FieldMapping(source_field="Start Date", pg_column="start_date", transform=DateTimeUtils.parse_date, required=True),
    FieldMapping(source_field="End Date", pg_column="end_date", transform=DateTimeUtils.parse_date, required=True),
    FieldMapping(source_field="Child ASIN", pg_column="asin", transform=_clean_str, required=True),
    FieldMapping(source_field="Parent ASIN", pg_column="parent_asin", transform=_clean_str),
    FieldMapping(source_field="Product Name", pg_column="product_name", transform=_clean_str),
]

_SEARCH_QUERY_METRICS = [
    FieldMapping(source_field="Search Query", pg_column="search_query", transform=_clean_str, required=True),
    FieldMapping(source_field="Search Query Score", pg_column="search_query_score", transform=to_int),
    FieldMapping(source_field="Search Query Volume", pg_column="search_query_volume", transform=to_int),
    FieldMapping(source_field="Total Query Impression Count", pg_column="total_query_impressions", transform=to_int),
    FieldMapping(source_field="ASIN Impression Count", pg_column="impressions", transform=to_int),
    FieldMapping(source_field="ASIN Impression Share", pg_column="impression_share", transform=to_float),
    FieldMapping(source_field="Total Click Count", pg_column="total_clicks", transform=to_int),
    FieldMapping(source_field="ASIN Click Count", pg_column="clicks", transform=to_int),
    FieldMapping(source_field="ASIN Click Share", pg_column="click_share", transform=to_float),
    FieldMapping(source_field="Total Median Click Price Amount", pg_column="total_median_click_price", transform=to_float),
    FieldMapping(source_field="ASIN Median Click Price Amount", pg_column="asin_median_click_price", transform=to_float),
    FieldMapping(source_field="Total Cart Add Count", pg_column="total_cart_adds", transform=to_int),
    FieldMapping(source_field="ASIN Cart Add Count", pg_column="cart_adds", transform=to_int),
    FieldMapping(source_field="ASIN Cart Add Share", pg_column="cart_add_share", transform=to_float),
    FieldMapping(source_field="Total Purchase Count", pg_column="total_purchases", transform=to_int),
    FieldMapping(source_field="ASIN Purchase Count", pg_column="purchases", transform=to_int),
    FieldMapping(source_field="ASIN Purchase Share", pg_column="purchase_share", transform=to_float),
    FieldMapping(source_field="Total Median Purchase Price Amount", pg_column="total_median_purchase_price", transform=to_float),
    FieldMapping(source_field="ASIN Median Purchase Price Amount", pg_column="asin_median_purchase_price", transform=to_float),
]


def derive_funnel_rates(row: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """
    Calcula las tasas del embudo como fracciones (0..1).

    - ctr: clicks / impresiones
    - cvr: compras / clicks
    - cart_add_rate: carritos / clicks
    - purchase_rate: compras / carritos
    """
    impressions = row.get("impressions") or 0
    clicks = row.get("clicks") or 0
    cart_adds = row.get("cart_adds") or 0
    purchases = row.get("purchases") or 0
    row["ctr"] = safe_divide(clicks, impressions)
    row["cvr"] = safe_divide(purchases, clicks)
    row["cart_add_rate"] = safe_divide(cart_adds, clicks)
    row["purchase_rate"] = safe_divide(purchases, cart_adds)
    return row


def asin_performance_config() -> TableSyncConfig:
    return TableSyncConfig(
        function_name=FUNCTION_ASIN_PERFORMANCE,
        table_schema=DEFAULT_SCHEMA,
        target_table="asin_performance_data",
        model=AsinPerformanceDataModel,
        natural_key=("start_date", "end_date", "asin"),
        field_mappings=list(_PERIOD_MAPPINGS),
        batch_size=settings.ASIN_BATCH_SIZE,
        not_null_source_fields=("Child ASIN",),
        order_by_source_fields=("End Date", "Child ASIN", "Start Date"),
        distinct=True,
    )


def search_query_performance_config() -> TableSyncConfig:
    return TableSyncConfig(
        function_name=FUNCTION_SEARCH_QUERIES,
        table_schema=DEFAULT_SCHEMA,
        target_table="search_query_performance",
        model=SearchQueryPerformanceModel,
        natural_key=("start_date", "end_date", "asin", "search_query"),
        field_mappings=list(_PERIOD_MAPPINGS) + list(_SEARCH_QUERY_METRICS),
        batch_size=settings.SEARCH_QUERY_BATCH_SIZE,
        not_null_source_fields=("Child ASIN", "Search Query"),
        order_by_source_fields=("End Date", "Child ASIN", "Search Query", "Start Date"),
        derive=derive_funnel_rates,
        parent=ParentLink(
            model=AsinPerformanceDataModel,
            natural_key=("start_date", "end_date", "asin"),
            fk_column="asin_performance_id",
            copy_columns=("start_date", "end_date", "asin", "parent_asin", "product_name"),
        ),
    )


_CONFIG_BUILDERS = {
    "asin_performance_data": asin_performance_config,
    "search_query_performance": search_query_performance_config,
}

_FUNCTION_TABLES = {
    FUNCTION_ASIN_PERFORMANCE: "asin_performance_data",
    FUNCTION_SEARCH_QUERIES: "search_query_performance",
}


def is_bigquery_table(table_name: str) -> bool:
    """Indica si la tabla se alimenta desde BigQuery."""
    return table_name in _CONFIG_BUILDERS


def get_table_sync_config(
    *,
    table_name: Optional[str] = None,
    function_name: Optional[str] = None,
) -> TableSyncConfig:
    """
    Retorna la configuración de sync por nombre de tabla o de función.

    Raises:
        SyncConfigError: si la tabla/función no es una tabla BigQuery conocida
    """
    if table_name is None and function_name is not None:
        table_name = _FUNCTION_TABLES.get(function_name)
    builder = _CONFIG_BUILDERS.get(table_name or "")
    if builder is None:
        raise SyncConfigError(
            f"No hay mapeo BigQuery para tabla={table_name!r} funcion={function_name!r}",
            details={"table_name": table_name, "function_name": function_name},
        )
    return builder()


# Filas iniciales de refresh_config (scripts/init_db.py)
DEFAULT_REFRESH_CONFIGS: list[dict[str, Any]] = [
    {
        "table_schema": DEFAULT_SCHEMA,
        "table_name": "asin_performance_data",
        "function_name": FUNCTION_ASIN_PERFORMANCE,
        "refresh_frequency_hours": 24,
        "priority": 100,
        "dependencies": [],
    },
    {
        "table_schema": DEFAULT_SCHEMA,
        "table_name": "search_query_performance",
        "function_name": FUNCTION_SEARCH_QUERIES,
        "refresh_frequency_hours": 24,
        "priority": 90,
        "dependencies": ["asin_performance_data"],
    },
    {
        "table_schema": DEFAULT_SCHEMA,
        "table_name": "search_query_summary",
        "function_name": FUNCTION_SUMMARY_TABLES,
        "refresh_frequency_hours": 24,
        "priority": 50,
        "dependencies": ["search_query_performance"],
    },
]
