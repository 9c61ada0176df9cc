"""
Tests unitarios del mapeo BigQuery -> Postgres.

Verifica:
- Coercion tolerante de enteros y floats del export
- Tasas del embudo como fracciones (division por cero = 0)
- Descarte de filas sin campos requeridos
- Resolucion de configuracion por tabla y por funcion
"""
from datetime import date

import pytest

from sqp_sync.infrastructure.external.bigquery_sync.sync_service import map_source_row
from sqp_sync.infrastructure.external.bigquery_sync.table_mappings import (
    asin_performance_config,
    derive_funnel_rates,
    get_table_sync_config,
    is_bigquery_table,
    search_query_performance_config,
)
from sqp_sync.infrastructure.external.bigquery_sync.types import safe_divide, to_float, to_int
from sqp_sync.shared.constants.refresh_constants import FUNCTION_ASIN_PERFORMANCE, FUNCTION_SEARCH_QUERIES
from sqp_sync.shared.exceptions.sync import SyncConfigError

from conftest import make_sqp_row


@pytest.mark.parametrize("raw, expected", [
    (None, 0),
    ("", 0),
    ("1,234", 1234),
    ("12.0", 12),
    (7, 7),
    (True, 0),
    ("abc", 0),
])
def test_to_int_is_tolerant(raw, expected):
    assert to_int(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    (None, 0.0),
    ("0.25", 0.25),
    ("1,000.5", 1000.5),
    (float("nan"), 0.0),
    ("nan", 0.0),
    ("x", 0.0),
])
def test_to_float_is_tolerant(raw, expected):
    assert to_float(raw) == expected


def test_safe_divide_returns_zero_on_zero_denominator():
    assert safe_divide(5, 0) == 0.0
    assert safe_divide(1, 4) == 0.25


def test_funnel_rates_are_fractions():
    row = derive_funnel_rates({"impressions": 200, "clicks": 20, "cart_adds": 5, "purchases": 2}, {})

    assert row["ctr"] == pytest.approx(0.1)
    assert row["cvr"] == pytest.approx(0.1)
    assert row["cart_add_rate"] == pytest.approx(0.25)
    assert row["purchase_rate"] == pytest.approx(0.4)


def test_funnel_rates_with_no_activity_are_zero():
    row = derive_funnel_rates({"impressions": 0, "clicks": 0, "cart_adds": 0, "purchases": 0}, {})
    assert row["ctr"] == row["cvr"] == row["cart_add_rate"] == row["purchase_rate"] == 0.0


def test_map_search_query_row():
    source = make_sqp_row(date(2025, 3, 8), impressions=100, clicks=10, cart_adds=4, purchases=2)
    source["ASIN Impression Count"] = "100"  # algunos exports llegan como string

    row = map_source_row(source, config=search_query_performance_config())

    assert row["start_date"] == date(2025, 3, 2)
    assert row["end_date"] == date(2025, 3, 8)
    assert row["asin"] == "B000TEST01"
    assert row["search_query"] == "protein powder"
    assert row["impressions"] == 100
    assert row["ctr"] == pytest.approx(0.1)
    assert row["cvr"] == pytest.approx(0.2)
    assert row["asin_median_purchase_price"] == pytest.approx(25.0)


def test_map_row_without_required_field_is_dropped():
    source = make_sqp_row(date(2025, 3, 8))
    source["Search Query"] = "   "

    assert map_source_row(source, config=search_query_performance_config()) is None


def test_map_asin_row_keeps_only_period_columns():
    row = map_source_row(make_sqp_row(date(2025, 3, 8)), config=asin_performance_config())

    assert set(row) == {"start_date", "end_date", "asin", "parent_asin", "product_name"}
    assert row["parent_asin"] == "B000PARENT"


def test_get_config_by_table_and_by_function():
    by_table = get_table_sync_config(table_name="search_query_performance")
    by_function = get_table_sync_config(function_name=FUNCTION_ASIN_PERFORMANCE)

    assert by_table.function_name == FUNCTION_SEARCH_QUERIES
    assert by_table.natural_key == ("start_date", "end_date", "asin", "search_query")
    assert by_table.parent is not None
    assert by_function.target_table == "asin_performance_data"


def test_unknown_table_raises_config_error():
    assert is_bigquery_table("search_query_summary") is False
    with pytest.raises(SyncConfigError):
        get_table_sync_config(table_name="search_query_summary")


def test_source_fields_include_cursor_once():
    cfg = search_query_performance_config()
    assert cfg.source_fields.count("End Date") == 1
    assert "Search Query" in cfg.source_fields
