"""
Repositorio Postgres para el pipeline BigQuery -> Postgres.

Responsabilidades:
- UPSERT por lote con ON CONFLICT sobre la clave natural
- Contar filas insertadas vs actualizadas
- Asegurar filas padre y resolver sus ids
- Leer el máximo de la columna cursor en la tabla destino

Decisiones:
- Se usa el `insert` del dialecto (postgresql / sqlite) para que el mismo
  código corra contra Supabase y contra SQLite en tests.
- Errores de clave duplicada son benignos: el lote se reintenta fila por fila
  y las filas duplicadas se omiten (idempotencia).
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Optional, Sequence

from loguru import logger
from sqlalchemy import and_, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.shared.exceptions.sync import SyncConfigError

from .sync_config import ParentLink
from .types import UpsertResult

_DUPLICATE_MARKERS = ("duplicate key value", "unique constraint failed", "uniqueviolation")


def is_duplicate_key_error(exc: IntegrityError) -> bool:
    """Indica si un IntegrityError corresponde a una violación de unicidad."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == "23505":
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(marker in message for marker in _DUPLICATE_MARKERS)


def _key_of(row: dict[str, Any], natural_key: Sequence[str]) -> tuple:
    return tuple(row.get(c) for c in natural_key)


def dedupe_rows(
    rows: Iterable[dict[str, Any]],
    natural_key: Sequence[str],
) -> tuple[list[dict[str, Any]], int]:
    """
    Colapsa filas con la misma clave natural (gana la última) y descarta
    filas con algún componente de la clave vacío.

    Returns:
        (filas_unicas, descartadas)
    """
    unique: dict[tuple, dict[str, Any]] = {}
    dropped = 0
    for row in rows:
        key = _key_of(row, natural_key)
        if any(v is None or v == "" for v in key):
            dropped += 1
            continue
        if key in unique:
            dropped += 1
        unique[key] = row
    return list(unique.values()), dropped


class PostgresUpsertRepository:
    """
    Escritura idempotente de filas transformadas.

    No hace commit en el camino normal: la transacción la controla el servicio
    de sync (un commit por lote junto con el checkpoint).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self, model):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise SyncConfigError(f"Dialecto no soportado para UPSERT: {dialect}")

    @staticmethod
    def _column_names(model) -> set[str]:
        return set(model.__table__.columns.keys())

    def _build_upsert(self, model, rows: list[dict[str, Any]], natural_key: Sequence[str], coalesce: bool = False):
        stmt = self._insert(model).values(rows)
        update_columns = [c for c in rows[0].keys() if c not in natural_key and c != "id"]
        if not update_columns:
            return stmt.on_conflict_do_nothing(index_elements=list(natural_key))

        table = model.__table__
        if coalesce:
            # No pisar valores existentes con NULL (filas padre aseguradas desde hijas)
            set_ = {c: func.coalesce(stmt.excluded[c], table.c[c]) for c in update_columns}
        else:
            set_ = {c: stmt.excluded[c] for c in update_columns}
        if "updated_at" in table.c:
            set_["updated_at"] = func.now()
        return stmt.on_conflict_do_update(index_elements=list(natural_key), set_=set_)

    async def _existing_keys(self, model, natural_key: Sequence[str], rows: list[dict[str, Any]]) -> set[tuple]:
        """Claves del lote que ya existen en la tabla destino."""
        columns = [getattr(model, c) for c in natural_key]
        conditions = [
            getattr(model, c).in_(list({row[c] for row in rows}))
            for c in natural_key
        ]
        result = await self.db.execute(select(*columns).where(and_(*conditions)))
        candidates = {tuple(r) for r in result.all()}
        return {_key_of(row, natural_key) for row in rows} & candidates

    async def upsert_rows(
        self,
        model,
        rows: list[dict[str, Any]],
        natural_key: Sequence[str],
    ) -> UpsertResult:
        """
        UPSERT de un lote por clave natural.

        Returns:
            UpsertResult con insertadas, actualizadas y omitidas
        """
        allowed = self._column_names(model)
        filtered = [{k: v for k, v in row.items() if k in allowed} for row in rows]
        unique_rows, dropped = dedupe_rows(filtered, natural_key)
        if not unique_rows:
            return UpsertResult(skipped=dropped)

        existing = await self._existing_keys(model, natural_key, unique_rows)
        try:
            await self.db.execute(self._build_upsert(model, unique_rows, natural_key))
        except IntegrityError as e:
            if not is_duplicate_key_error(e):
                raise
            logger.warning(
                f"Clave duplicada en lote de {model.__tablename__}; reintentando fila por fila"
            )
            await self.db.rollback()
            return await self._upsert_row_by_row(model, unique_rows, natural_key, existing, dropped)

        updated = len(existing)
        return UpsertResult(inserted=len(unique_rows) - updated, updated=updated, skipped=dropped)

    async def _upsert_row_by_row(
        self,
        model,
        rows: list[dict[str, Any]],
        natural_key: Sequence[str],
        existing: set[tuple],
        dropped: int,
    ) -> UpsertResult:
        inserted = updated = 0
        skipped = dropped
        for row in rows:
            try:
                await self.db.execute(self._build_upsert(model, [row], natural_key))
                await self.db.commit()
            except IntegrityError as e:
                await self.db.rollback()
                if not is_duplicate_key_error(e):
                    raise
                skipped += 1
                continue
            if _key_of(row, natural_key) in existing:
                updated += 1
            else:
                inserted += 1
        return UpsertResult(inserted=inserted, updated=updated, skipped=skipped)

    async def ensure_parents(self, link: ParentLink, rows: list[dict[str, Any]]) -> dict[tuple, int]:
        """
        Asegura las filas padre referenciadas por `rows` y retorna {clave: id}.
        """
        parents = [{c: row.get(c) for c in link.copy_columns} for row in rows]
        unique_parents, _ = dedupe_rows(parents, link.natural_key)
        if not unique_parents:
            return {}

        await self.db.execute(self._build_upsert(link.model, unique_parents, link.natural_key, coalesce=True))

        columns = [getattr(link.model, c) for c in link.natural_key]
        conditions = [
            getattr(link.model, c).in_(list({p[c] for p in unique_parents}))
            for c in link.natural_key
        ]
        result = await self.db.execute(select(link.model.id, *columns).where(and_(*conditions)))
        return {tuple(r[1:]): r[0] for r in result.all()}

    async def max_value(self, model, column: str) -> Optional[date]:
        """Máximo de una columna (cursor por defecto cuando no hay checkpoint)."""
        result = await self.db.execute(select(func.max(getattr(model, column))))
        return result.scalar_one_or_none()

    async def count_rows(self, model) -> int:
        result = await self.db.execute(select(func.count()).select_from(model))
        return int(result.scalar_one())
