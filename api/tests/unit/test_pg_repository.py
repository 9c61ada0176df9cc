"""
Tests unitarios del repositorio de UPSERT del pipeline.

Verifica:
- Filas con la misma clave natural dentro de un lote
- Clasificacion de IntegrityError (unicidad vs otras violaciones)
- Reintento fila por fila cuando el lote choca con una clave duplicada
"""
from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.dml import Insert

from sqp_sync.infrastructure.database.models import AsinPerformanceDataModel
from sqp_sync.infrastructure.external.bigquery_sync.pg_repository import (
    PostgresUpsertRepository,
    dedupe_rows,
    is_duplicate_key_error,
)

NATURAL_KEY = ("start_date", "end_date", "asin")
START, END = date(2025, 3, 2), date(2025, 3, 8)


def _row(asin, product_name="Producto"):
    return {"start_date": START, "end_date": END, "asin": asin, "product_name": product_name}


class _PgError(Exception):
    """Error del driver con codigo SQLSTATE, como asyncpg/psycopg."""

    def __init__(self, message, sqlstate):
        super().__init__(message)
        self.sqlstate = sqlstate


def _integrity_error(orig):
    return IntegrityError("INSERT INTO asin_performance_data ...", {}, orig)


class TestDedupeRows:
    """Tests de colapso por clave natural."""

    def test_last_row_wins_for_repeated_key(self):
        rows = [_row("B0DUP00001", "viejo"), _row("B0OTHER001"), _row("B0DUP00001", "nuevo")]

        unique, dropped = dedupe_rows(rows, NATURAL_KEY)

        assert dropped == 1
        assert len(unique) == 2
        assert next(r for r in unique if r["asin"] == "B0DUP00001")["product_name"] == "nuevo"

    def test_rows_with_blank_key_are_dropped(self):
        unique, dropped = dedupe_rows([_row(""), _row(None), _row("B0VALID001")], NATURAL_KEY)

        assert [r["asin"] for r in unique] == ["B0VALID001"]
        assert dropped == 2


class TestDuplicateKeyDetection:
    """Tests de is_duplicate_key_error."""

    def test_postgres_sqlstate_23505(self):
        assert is_duplicate_key_error(_integrity_error(_PgError("violacion", "23505"))) is True

    def test_sqlite_unique_message(self):
        orig = Exception("UNIQUE constraint failed: asin_performance_data.asin")
        assert is_duplicate_key_error(_integrity_error(orig)) is True

    def test_postgres_duplicate_message_without_code(self):
        orig = Exception('duplicate key value violates unique constraint "uq_asin_performance_period"')
        assert is_duplicate_key_error(_integrity_error(orig)) is True

    def test_other_violations_are_not_duplicates(self):
        assert is_duplicate_key_error(_integrity_error(_PgError("not null", "23502"))) is False
        assert is_duplicate_key_error(_integrity_error(Exception("FOREIGN KEY constraint failed"))) is False


class TestUpsertRows:
    """Tests de upsert_rows contra SQLite."""

    @pytest.mark.asyncio
    async def test_repeated_key_in_batch_is_skipped(self, db_session):
        repo = PostgresUpsertRepository(db_session)
        rows = [_row("B0DUP00001", "viejo"), _row("B0OTHER001"), _row("B0DUP00001", "nuevo")]

        result = await repo.upsert_rows(AsinPerformanceDataModel, rows, NATURAL_KEY)
        await db_session.commit()

        assert result.inserted == 2
        assert result.updated == 0
        assert result.skipped == 1
        assert await repo.count_rows(AsinPerformanceDataModel) == 2
        stored = (await db_session.execute(
            select(AsinPerformanceDataModel).where(AsinPerformanceDataModel.asin == "B0DUP00001")
        )).scalar_one()
        assert stored.product_name == "nuevo"

    @pytest.mark.asyncio
    async def test_duplicate_error_retries_row_by_row(self, db_session, monkeypatch):
        """El lote choca con una clave duplicada: se reintenta fila a fila y se omite la que choca."""
        repo = PostgresUpsertRepository(db_session)
        execute = db_session.execute
        inserts = {"n": 0}

        async def flaky_execute(statement, *args, **kwargs):
            if isinstance(statement, Insert):
                inserts["n"] += 1
                # 1: lote completo, 3: segunda fila del reintento
                if inserts["n"] == 1:
                    raise _integrity_error(_PgError("duplicate key", "23505"))
                if inserts["n"] == 3:
                    raise _integrity_error(Exception("UNIQUE constraint failed: asin_performance_data.asin"))
            return await execute(statement, *args, **kwargs)

        monkeypatch.setattr(db_session, "execute", flaky_execute)
        rows = [_row("B0ROW00001"), _row("B0ROW00002"), _row("B0ROW00003")]

        result = await repo.upsert_rows(AsinPerformanceDataModel, rows, NATURAL_KEY)

        assert inserts["n"] == 4
        assert result.inserted == 2
        assert result.skipped == 1
        monkeypatch.undo()
        asins = (await db_session.execute(select(AsinPerformanceDataModel.asin))).scalars().all()
        assert sorted(asins) == ["B0ROW00001", "B0ROW00003"]

    @pytest.mark.asyncio
    async def test_row_by_row_counts_existing_rows_as_updated(self, db_session, monkeypatch):
        repo = PostgresUpsertRepository(db_session)
        await repo.upsert_rows(AsinPerformanceDataModel, [_row("B0EXIST001", "antes")], NATURAL_KEY)
        await db_session.commit()

        execute = db_session.execute
        inserts = {"n": 0}

        async def flaky_execute(statement, *args, **kwargs):
            if isinstance(statement, Insert):
                inserts["n"] += 1
                if inserts["n"] == 1:
                    raise _integrity_error(_PgError("duplicate key", "23505"))
            return await execute(statement, *args, **kwargs)

        monkeypatch.setattr(db_session, "execute", flaky_execute)

        result = await repo.upsert_rows(
            AsinPerformanceDataModel, [_row("B0EXIST001", "despues"), _row("B0NEW00001")], NATURAL_KEY
        )

        assert result.inserted == 1
        assert result.updated == 1
        assert result.skipped == 0

    @pytest.mark.asyncio
    async def test_other_integrity_errors_propagate(self, db_session, monkeypatch):
        repo = PostgresUpsertRepository(db_session)
        execute = db_session.execute

        async def failing_execute(statement, *args, **kwargs):
            if isinstance(statement, Insert):
                raise _integrity_error(_PgError("null value in column", "23502"))
            return await execute(statement, *args, **kwargs)

        monkeypatch.setattr(db_session, "execute", failing_execute)

        with pytest.raises(IntegrityError):
            await repo.upsert_rows(AsinPerformanceDataModel, [_row("B0NULL0001")], NATURAL_KEY)
