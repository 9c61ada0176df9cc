"""
Tests del arranque de la aplicacion.
"""
import pytest

from sqp_sync.core import events
from sqp_sync.infrastructure.repositories.refresh_config_repository import RefreshConfigRepository


@pytest.mark.asyncio
async def test_startup_seeds_default_refresh_config(session_factory, monkeypatch):
    monkeypatch.setattr(events, "get_session_factory", lambda: session_factory)

    await events._seed_refresh_config()
    # Segunda llamada: no duplica filas
    await events._seed_refresh_config()

    async with session_factory() as db:
        configs = await RefreshConfigRepository(db).list_all()

    assert sorted(c.table_name for c in configs) == [
        "asin_performance_data",
        "search_query_performance",
        "search_query_summary",
    ]
