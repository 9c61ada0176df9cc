"""
Configuración de fixtures para pytest.

Las variables de entorno se fijan antes de importar la app: `settings` y el
engine global se construyen al importar sqp_sync.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("CONTINUATION_MODE", "http")
os.environ["SERVICE_ROLE_KEY"] = ""

from datetime import date, timedelta
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from sqp_sync.infrastructure.database import models  # noqa: F401
from sqp_sync.infrastructure.database.session import Base
from sqp_sync.infrastructure.external.bigquery_sync.sync_config import TableSyncConfig
from sqp_sync.infrastructure.external.bigquery_sync.table_mappings import DEFAULT_REFRESH_CONFIGS
from sqp_sync.infrastructure.external.bigquery_sync.types import BigQueryPage, utc_now
from sqp_sync.infrastructure.repositories.refresh_config_repository import RefreshConfigRepository
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils


# URL de base de datos de prueba
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Fixture que proporciona una sesión de base de datos para tests.
    Crea una base de datos en memoria para cada test.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory sobre un archivo SQLite temporal.
    La orquestacion abre varias sesiones: cada una necesita su propia conexion.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sqp_test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


async def seed_refresh_configs(db: AsyncSession) -> int:
    """Crea las filas por defecto de refresh_config."""
    created = await RefreshConfigRepository(db).seed_defaults(DEFAULT_REFRESH_CONFIGS)
    await db.commit()
    return created


def days_ago(days: int) -> date:
    return utc_now().date() - timedelta(days=days)


def make_sqp_row(
    end_date: date,
    asin: str = "B000TEST01",
    search_query: str = "protein powder",
    *,
    impressions: int = 100,
    clicks: int = 10,
    cart_adds: int = 4,
    purchases: int = 2,
) -> Dict[str, Any]:
    """Fila del export SQP tal como la devuelve BigQuery (columnas con espacios)."""
    return {
        "Start Date": (end_date - timedelta(days=6)).isoformat(),
        "End Date": end_date.isoformat(),
        "Child ASIN": asin,
        "Parent ASIN": "B000PARENT",
        "Product Name": f"Producto {asin}",
        "Search Query": search_query,
        "Search Query Score": 1,
        "Search Query Volume": 5000,
        "Total Query Impression Count": impressions * 10,
        "ASIN Impression Count": impressions,
        "ASIN Impression Share": 0.1,
        "Total Click Count": clicks * 10,
        "ASIN Click Count": clicks,
        "ASIN Click Share": 0.1,
        "Total Median Click Price Amount": 19.99,
        "ASIN Median Click Price Amount": 21.5,
        "Total Cart Add Count": cart_adds * 10,
        "ASIN Cart Add Count": cart_adds,
        "ASIN Cart Add Share": 0.1,
        "Total Purchase Count": purchases * 10,
        "ASIN Purchase Count": purchases,
        "ASIN Purchase Share": 0.1,
        "Total Median Purchase Price Amount": 24.99,
        "ASIN Median Purchase Price Amount": 25.0,
    }


class FakeSource:
    """
    Fuente en memoria con la misma semantica que la consulta BigQuery:
    filtro NOT NULL, cursor inclusivo por End Date, orden estable y LIMIT/OFFSET.
    """

    def __init__(self, rows: List[Dict[str, Any]], error: Optional[Exception] = None):
        self.rows = list(rows)
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def fetch_page(
        self,
        config: TableSyncConfig,
        *,
        cursor: Optional[date],
        limit: int,
        offset: int,
    ) -> BigQueryPage:
        self.calls.append({"table": config.target_table, "cursor": cursor, "limit": limit, "offset": offset})
        if self.error is not None:
            raise self.error

        data = [r for r in self.rows if all(r.get(f) is not None for f in config.not_null_source_fields)]
        if cursor is not None:
            data = [r for r in data if DateTimeUtils.parse_date(r[config.cursor_source_field]) >= cursor]

        projected = [{f: r.get(f) for f in config.source_fields} for r in data]
        if config.distinct:
            unique: Dict[tuple, Dict[str, Any]] = {}
            for r in projected:
                unique.setdefault(tuple(r.values()), r)
            projected = list(unique.values())

        order = config.order_by_source_fields or (config.cursor_source_field,)
        projected.sort(key=lambda r: tuple(str(r.get(f)) for f in order))
        return BigQueryPage(rows=projected[offset:offset + limit], job_id="job-test")


class RecordingDispatcher:
    """Dispatcher de continuaciones que solo registra las llamadas."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: List[tuple] = []

    async def dispatch(self, function_name: str, payload: Dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.calls.append((function_name, payload))
