"""
Servicio de sincronización BigQuery -> Postgres.

Diseño (resumen):
- Crea la fila de refresh_audit_log (in_progress) antes de cualquier trabajo
- Carga cursor: checkpoint activo, si no max(end_date) destino, si no hoy - lookback
- Consulta BigQuery incrementalmente (End Date >= cursor) por páginas fijas
- Mapea columnas del export a columnas tipadas y calcula tasas del embudo
- UPSERT por clave natural; guarda checkpoint después de cada lote
- Al agotar la fuente: checkpoint completed, audit success/partial, próximo refresco

Estrategia de idempotencia:
- El cursor es inclusivo (>=), re-leer el borde es seguro gracias al UPSERT.
- El checkpoint guarda {last_processed_date, date_offset}: filas ya procesadas
  con End Date == last_processed_date, para que una continuación no repita
  indefinidamente un día con más filas de las que caben en una invocación.
- Si un lote falla, el checkpoint se congela en el último lote bueno y sin
  vencimiento: la próxima corrida (la tabla queda vencida) lo vuelve a leer.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date, timedelta
from typing import Any, Callable, Optional, Protocol

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.core.config import settings
from sqp_sync.infrastructure.repositories.checkpoint_repository import CheckpointRepository
from sqp_sync.infrastructure.repositories.refresh_audit_repository import RefreshAuditRepository
from sqp_sync.infrastructure.repositories.refresh_config_repository import RefreshConfigRepository
from sqp_sync.shared.constants.refresh_constants import (
    CUSTOM_BATCH_SIZE_MAX,
    CUSTOM_BATCH_SIZE_MIN,
    DEFAULT_SCHEMA,
    ERROR_MESSAGE_MAX_CHARS,
    RefreshStatus,
    RefreshType,
)
from sqp_sync.shared.exceptions.sync import BigQueryQueryError, ContinuationDispatchError
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils

from .bigquery_client import BigQueryClient
from .continuation import ContinuationDispatcher
from .pg_repository import PostgresUpsertRepository
from .sync_config import TableSyncConfig
from .table_mappings import get_table_sync_config, is_bigquery_table
from .types import BigQueryPage, TableSyncResult, TimeBudget, utc_now

_MAX_STORED_ERRORS = 5


class SyncSource(Protocol):
    """Fuente paginada (BigQueryClient en producción, fakes en tests)."""

    def fetch_page(
        self,
        config: TableSyncConfig,
        *,
        cursor: Optional[date],
        limit: int,
        offset: int,
    ) -> BigQueryPage:
        ...


def map_source_row(source: dict[str, Any], *, config: TableSyncConfig) -> Optional[dict[str, Any]]:
    """
    Mapea una fila BigQuery a un dict listo para UPSERT.

    Reglas:
    - Cada FieldMapping decide cómo transformar el valor
    - Si un campo requerido queda vacío la fila se descarta (retorna None)
    - `derive` agrega métricas calculadas
    """
    row: dict[str, Any] = {}
    for m in config.field_mappings:
        raw = source.get(m.source_field)
        value = m.transform(raw) if m.transform else raw
        if m.required and (value is None or value == ""):
            return None
        row[m.pg_column] = value

    if config.derive:
        row = config.derive(row, source)
    return row


def apply_custom_sync_params(table_cfg: TableSyncConfig, params: Optional[dict[str, Any]]) -> TableSyncConfig:
    """
    Aplica refresh_config.custom_sync_params a la config de la tabla.
    Hoy solo batch_size (tamano de pagina); un valor fuera de rango se ignora.
    """
    batch_size = (params or {}).get("batch_size")
    if batch_size is None:
        return table_cfg
    if (
        isinstance(batch_size, bool)
        or not isinstance(batch_size, int)
        or not CUSTOM_BATCH_SIZE_MIN <= batch_size <= CUSTOM_BATCH_SIZE_MAX
    ):
        logger.warning(
            f"batch_size invalido en custom_sync_params de {table_cfg.target_table}: {batch_size!r}; se ignora"
        )
        return table_cfg
    return replace(table_cfg, batch_size=batch_size)


def continuation_payload(
    *,
    config_id: Optional[int],
    table_cfg: TableSyncConfig,
    audit_log_id: int,
    refresh_type: str,
) -> dict[str, Any]:
    """Cuerpo de la re-invocación: {config, audit_log_id, refresh_type}."""
    return {
        "config": {
            "id": config_id,
            "table_schema": table_cfg.table_schema,
            "table_name": table_cfg.target_table,
            "function_name": table_cfg.function_name,
        },
        "audit_log_id": audit_log_id,
        "refresh_type": refresh_type,
    }


class _RunState:
    """Contadores mutables de una corrida (acumulan entre continuaciones)."""

    def __init__(self, metadata: dict[str, Any], rows_processed: int, rows_inserted: int, rows_updated: int):
        self.rows_processed = rows_processed
        self.rows_inserted = rows_inserted
        self.rows_updated = rows_updated
        self.batches = int(metadata.get("batches", 0))
        self.failed_batches = int(metadata.get("failed_batches", 0))
        self.continuations = int(metadata.get("continuations", 0))
        self.errors: list[str] = list(metadata.get("errors", []))
        self.job_id: Optional[str] = None
        self.frozen = False
        self.last_date: Optional[date] = None
        self.date_offset = 0
        # Posicion de partida: un lote fallido antes de avanzar congela aqui
        self.start_date: Optional[date] = None
        self.start_offset = 0

    def metadata(self, cursor: Optional[date]) -> dict[str, Any]:
        return {
            "batches": self.batches,
            "failed_batches": self.failed_batches,
            "continuations": self.continuations,
            "errors": self.errors[-_MAX_STORED_ERRORS:],
            "cursor": cursor.isoformat() if cursor else None,
            "last_processed_date": self.last_date.isoformat() if self.last_date else None,
        }

    def advance(self, source_rows: list[dict[str, Any]], cursor_field: str) -> None:
        """
        Avanza (last_date, date_offset) con las filas del lote, que vienen
        ordenadas por fecha ascendente.
        """
        if self.frozen:
            return
        for raw in source_rows:
            d = DateTimeUtils.parse_date(raw.get(cursor_field))
            if d is None:
                continue
            if self.last_date is None or d > self.last_date:
                self.last_date = d
                self.date_offset = 1
            elif d == self.last_date:
                self.date_offset += 1


class BigQuerySyncService:
    """
    Sincroniza una tabla SQP desde BigQuery hacia Postgres.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        source: Optional[SyncSource] = None,
        source_factory: Optional[Callable[[], SyncSource]] = None,
        dispatcher: Optional[ContinuationDispatcher] = None,
        time_budget_ms: Optional[int] = None,
        checkpoint_ttl_minutes: Optional[int] = None,
        lookback_days: Optional[int] = None,
    ) -> None:
        self.db = db
        self._source = source
        self._source_factory = source_factory or BigQueryClient.from_settings
        self._dispatcher = dispatcher
        self._time_budget_ms = settings.sync_time_budget_ms if time_budget_ms is None else time_budget_ms
        self._ttl = checkpoint_ttl_minutes or settings.CHECKPOINT_TTL_MINUTES
        self._lookback_days = lookback_days or settings.INITIAL_LOOKBACK_DAYS
        self.configs = RefreshConfigRepository(db)
        self.audits = RefreshAuditRepository(db)
        self.checkpoints = CheckpointRepository(db)
        self.upserts = PostgresUpsertRepository(db)

    def _get_source(self) -> SyncSource:
        """
        Crea la fuente en la primera consulta: un error de credenciales queda
        dentro de la corrida auditada.
        """
        if self._source is None:
            self._source = self._source_factory()
        return self._source

    async def sync_table(
        self,
        table_name: str,
        *,
        refresh_type: str = RefreshType.API_SYNC.value,
        full_sync: bool = False,
        audit_log_id: Optional[int] = None,
        use_time_budget: bool = True,
    ) -> TableSyncResult:
        """
        Ejecuta (o continúa) el sync de una tabla.

        Args:
            table_name: tabla destino (se busca su fila en refresh_config)
            refresh_type: origen de la corrida (scheduled, manual, api_sync, ...)
            full_sync: ignora checkpoint y cursor, re-lee desde el inicio
            audit_log_id: fila de auditoría a continuar (re-invocaciones)
            use_time_budget: False en corridas orquestadas (terminan en la misma invocación)

        Returns:
            TableSyncResult. Nunca lanza por errores de datos/BigQuery: quedan en el audit log.
        """
        refresh_config = await self.configs.get_by_table(table_name)
        # Solo valores primitivos: un rollback de lote expira las instancias ORM
        config_id = refresh_config.id if refresh_config else None
        function_name = refresh_config.function_name if refresh_config else ""
        custom_params = dict(refresh_config.custom_sync_params or {}) if refresh_config else {}

        if not is_bigquery_table(table_name):
            if refresh_config is None:
                logger.info(f"Tabla '{table_name}' sin configuracion ni mapeo BigQuery; se omite")
                return TableSyncResult(table_name=table_name, function_name="", status="skipped", skipped=True)
            return await self._fail_unsupported(
                config_id, table_name, refresh_config.table_schema, function_name, refresh_type
            )

        table_cfg = apply_custom_sync_params(get_table_sync_config(table_name=table_name), custom_params)
        schema = refresh_config.table_schema if refresh_config else (table_cfg.table_schema or DEFAULT_SCHEMA)
        budget = TimeBudget(self._time_budget_ms if use_time_budget else None)

        audit, adopted = await self._open_audit(config_id, table_cfg, schema, refresh_type, audit_log_id)
        if adopted and RefreshStatus(audit.status).is_terminal:
            # Continuación duplicada (at-least-once): la corrida ya se cerró
            logger.warning(f"Audit {audit.id} ya cerrado ({audit.status}); continuacion ignorada")
            return TableSyncResult(
                table_name=table_name,
                function_name=table_cfg.function_name,
                status=audit.status,
                audit_log_id=audit.id,
                rows_processed=audit.rows_processed,
                rows_inserted=audit.rows_inserted,
                rows_updated=audit.rows_updated,
            )

        audit_id = audit.id
        state = _RunState(
            audit.sync_metadata or {},
            audit.rows_processed or 0,
            audit.rows_inserted or 0,
            audit.rows_updated or 0,
        )
        if adopted:
            state.continuations += 1
        cursor: Optional[date] = None

        try:
            source = self._get_source()
            cursor, offset = await self._resolve_cursor(table_cfg, schema, full_sync, state, audit_id)
            state.start_date, state.start_offset = cursor, offset
            logger.info(
                f"Sync {table_cfg.function_name}: BigQuery -> {schema}.{table_name} "
                f"(cursor >= {cursor}, offset={offset}, audit={audit_id})"
            )

            while True:
                page = await asyncio.to_thread(
                    source.fetch_page,
                    table_cfg,
                    cursor=cursor,
                    limit=table_cfg.batch_size,
                    offset=offset,
                )
                state.job_id = page.job_id or state.job_id
                if not page.rows:
                    break

                state.batches += 1
                await self._process_batch(table_cfg, schema, page.rows, state, cursor, audit_id)
                offset += len(page.rows)
                state.rows_processed += len(page.rows)
                await self.audits.update_progress(
                    audit_id,
                    rows_processed=state.rows_processed,
                    rows_inserted=state.rows_inserted,
                    rows_updated=state.rows_updated,
                    sync_metadata=state.metadata(cursor),
                    bigquery_job_id=state.job_id,
                )
                await self.db.commit()

                if len(page.rows) < table_cfg.batch_size:
                    break
                if budget.exhausted():
                    return await self._continue_later(config_id, table_cfg, schema, refresh_type, state, cursor, audit_id, budget)

            return await self._finish(config_id, table_cfg, schema, state, cursor, audit_id, budget)

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Sync {table_cfg.function_name} fallo: {e}")
            if not isinstance(e, BigQueryQueryError):
                logger.exception("Detalle del error:")
            state.errors.append(str(e)[:ERROR_MESSAGE_MAX_CHARS])
            state.job_id = getattr(e, "job_id", None) or state.job_id
            await self.audits.finish(
                audit_id,
                status=RefreshStatus.FAILED,
                rows_processed=state.rows_processed,
                rows_inserted=state.rows_inserted,
                rows_updated=state.rows_updated,
                error_message=str(e),
                error_details={"type": type(e).__name__, "batch_number": state.batches},
                bigquery_job_id=state.job_id,
                sync_metadata=state.metadata(cursor),
            )
            await self.db.commit()
            return self._result(table_cfg, RefreshStatus.FAILED.value, state, audit_id, budget, error=str(e))

    async def _fail_unsupported(self, config_id, table_name, schema, function_name, refresh_type) -> TableSyncResult:
        """
        Tabla configurada cuya funcion no se alimenta desde BigQuery: se deja
        igualmente una fila de auditoria terminal.
        """
        error = f"Funcion de refresco no soportada por el sync BigQuery: '{function_name}'"
        logger.warning(f"{table_name}: {error}")
        audit = await self.audits.create(
            table_schema=schema,
            table_name=table_name,
            refresh_type=refresh_type,
            refresh_config_id=config_id,
            sync_metadata={"function_name": function_name},
        )
        await self.audits.finish(
            audit.id,
            status=RefreshStatus.FAILED,
            error_message=error,
            error_details={"type": "SyncConfigError"},
        )
        await self.db.commit()
        return TableSyncResult(
            table_name=table_name,
            function_name=function_name,
            status=RefreshStatus.FAILED.value,
            audit_log_id=audit.id,
            error=error,
        )

    async def _open_audit(self, config_id, table_cfg, schema, refresh_type, audit_log_id):
        if audit_log_id is not None:
            audit = await self.audits.get(audit_log_id)
            if audit is not None:
                return audit, True
            logger.warning(f"Audit {audit_log_id} no existe; se crea uno nuevo")
        audit = await self.audits.create(
            table_schema=schema,
            table_name=table_cfg.target_table,
            refresh_type=refresh_type,
            refresh_config_id=config_id,
            sync_metadata={"function_name": table_cfg.function_name},
        )
        await self.db.commit()
        return audit, False

    async def _resolve_cursor(
        self,
        table_cfg: TableSyncConfig,
        schema: str,
        full_sync: bool,
        state: _RunState,
        audit_id: Optional[int] = None,
    ) -> tuple[Optional[date], int]:
        """
        Determina (cursor, offset) de la corrida.
        Un checkpoint congelado sin fecha reanuda desde el inicio (full sync fallido).
        """
        if full_sync:
            completed = await self.checkpoints.complete(table_cfg.function_name, schema, table_cfg.target_table)
            if completed:
                logger.info(f"Full sync: checkpoint activo de {table_cfg.target_table} descartado")
            await self.db.commit()
            return None, 0

        checkpoint = await self.checkpoints.get_active(
            table_cfg.function_name, schema, table_cfg.target_table, keep_audit_id=audit_id
        )
        data = (checkpoint.checkpoint_data or {}) if checkpoint is not None else {}
        frozen_audit = data.get("audit_log_id") if data.get("frozen") else None
        if frozen_audit is not None and frozen_audit != audit_id:
            # El checkpoint congelado no vence: su corrida se cierra al retomarlo
            await self.audits.close_abandoned(
                int(frozen_audit),
                reason=f"Continuacion perdida: retomada por el audit {audit_id}",
            )
        # Persiste la expiracion (y el cierre del audit abandonado) aunque la corrida falle
        await self.db.commit()
        if checkpoint is not None:
            last_date = DateTimeUtils.parse_date(data.get("last_processed_date"))
            if last_date is None and data.get("frozen"):
                logger.info(f"Reanudando {table_cfg.function_name} desde el inicio (checkpoint {checkpoint.id})")
                return None, 0
            if last_date is not None:
                state.last_date = last_date
                state.date_offset = int(data.get("date_offset", 0) or 0)
                state.batches = max(state.batches, int(data.get("batch_number", 0) or 0))
                logger.info(
                    f"Reanudando {table_cfg.function_name} desde checkpoint {checkpoint.id}: "
                    f"{last_date.isoformat()} (+{state.date_offset})"
                )
                return last_date, state.date_offset

        max_date = await self.upserts.max_value(table_cfg.model, table_cfg.cursor_column)
        if max_date is not None:
            return DateTimeUtils.parse_date(max_date), 0

        return (utc_now() - timedelta(days=self._lookback_days)).date(), 0

    async def _process_batch(
        self,
        table_cfg: TableSyncConfig,
        schema: str,
        source_rows: list[dict[str, Any]],
        state: _RunState,
        cursor: Optional[date],
        audit_id: int,
    ) -> None:
        """
        Transforma y persiste un lote. Un error de escritura se registra y no
        detiene los lotes siguientes.
        """
        rows = [r for r in (map_source_row(s, config=table_cfg) for s in source_rows) if r is not None]
        try:
            if table_cfg.parent and rows:
                link = table_cfg.parent
                parent_ids = await self.upserts.ensure_parents(link, rows)
                # Las filas padre son idempotentes: se confirman antes del lote hijo
                await self.db.commit()
                for row in rows:
                    row[link.fk_column] = parent_ids.get(tuple(row.get(c) for c in link.natural_key))

            result = await self.upserts.upsert_rows(table_cfg.model, rows, table_cfg.natural_key)
            state.rows_inserted += result.inserted
            state.rows_updated += result.updated
            state.advance(source_rows, table_cfg.cursor_source_field)

            if state.last_date is not None and not state.frozen:
                await self.checkpoints.save(
                    function_name=table_cfg.function_name,
                    table_schema=schema,
                    table_name=table_cfg.target_table,
                    checkpoint_data={
                        "last_processed_date": state.last_date.isoformat(),
                        "date_offset": state.date_offset,
                        "batch_number": state.batches,
                        "audit_log_id": audit_id,
                    },
                    last_processed_row=state.rows_processed + len(source_rows),
                    ttl_minutes=self._ttl,
                )
            await self.db.commit()
            logger.debug(
                f"Lote {state.batches} de {table_cfg.target_table}: "
                f"+{result.inserted} insertadas, {result.updated} actualizadas, {result.skipped} omitidas"
            )
        except BigQueryQueryError:
            raise
        except Exception as e:
            await self.db.rollback()
            state.failed_batches += 1
            state.errors.append(f"lote {state.batches}: {str(e)[:500]}")
            logger.error(f"Lote {state.batches} de {table_cfg.target_table} fallo: {e}")
            if not state.frozen:
                state.frozen = True
                await self._freeze_checkpoint(table_cfg, schema, state, audit_id)

    async def _freeze_checkpoint(self, table_cfg: TableSyncConfig, schema: str, state: _RunState, audit_id: int) -> None:
        """
        Guarda la ultima posicion buena sin vencimiento. Los lotes siguientes
        no la mueven, asi la proxima corrida re-lee el lote fallido.
        """
        if state.last_date is not None:
            position, position_offset = state.last_date, state.date_offset
        else:
            position, position_offset = state.start_date, state.start_offset
        await self.checkpoints.save(
            function_name=table_cfg.function_name,
            table_schema=schema,
            table_name=table_cfg.target_table,
            checkpoint_data={
                "last_processed_date": position.isoformat() if position else None,
                "date_offset": position_offset,
                "batch_number": state.batches - 1,
                "audit_log_id": audit_id,
                "frozen": True,
                "failed_batch": state.batches,
            },
            last_processed_row=state.rows_processed,
            ttl_minutes=None,
        )
        await self.db.commit()
        logger.warning(
            f"Checkpoint de {table_cfg.target_table} congelado en "
            f"{position.isoformat() if position else 'inicio'} (+{position_offset})"
        )

    async def _continue_later(self, config_id, table_cfg, schema, refresh_type, state, cursor, audit_id, budget):
        """
        Presupuesto agotado: el checkpoint ya quedó guardado con el último lote;
        se renueva su vencimiento y se programa la continuación.
        """
        logger.info(
            f"Presupuesto de tiempo agotado en {table_cfg.function_name} "
            f"({budget.elapsed_ms} ms); guardando checkpoint y continuando"
        )
        if self._dispatcher is None:
            error = "Presupuesto de tiempo agotado sin dispatcher de continuacion"
            return await self._close_partial(table_cfg, state, cursor, audit_id, budget, error)

        payload = continuation_payload(
            config_id=config_id,
            table_cfg=table_cfg,
            audit_log_id=audit_id,
            refresh_type=refresh_type,
        )
        try:
            await self._dispatcher.dispatch(table_cfg.function_name, payload)
        except ContinuationDispatchError as e:
            return await self._close_partial(table_cfg, state, cursor, audit_id, budget, str(e))

        result = self._result(table_cfg, RefreshStatus.IN_PROGRESS.value, state, audit_id, budget)
        result.continued = True
        return result

    async def _close_partial(self, table_cfg, state, cursor, audit_id, budget, error: str) -> TableSyncResult:
        """
        Sin continuación posible: se cierra como partial; el checkpoint activo
        queda para que la próxima corrida programada reanude.
        """
        logger.warning(f"{table_cfg.function_name}: {error}")
        state.errors.append(error)
        await self.audits.finish(
            audit_id,
            status=RefreshStatus.PARTIAL,
            rows_processed=state.rows_processed,
            rows_inserted=state.rows_inserted,
            rows_updated=state.rows_updated,
            error_message=error,
            bigquery_job_id=state.job_id,
            sync_metadata=state.metadata(cursor),
        )
        await self.db.commit()
        return self._result(table_cfg, RefreshStatus.PARTIAL.value, state, audit_id, budget, error=error)

    async def _finish(self, config_id, table_cfg, schema, state, cursor, audit_id, budget) -> TableSyncResult:
        if state.failed_batches == 0:
            status = RefreshStatus.SUCCESS
            await self.checkpoints.complete(table_cfg.function_name, schema, table_cfg.target_table)
        elif state.failed_batches >= state.batches:
            status = RefreshStatus.FAILED
        else:
            status = RefreshStatus.PARTIAL

        error = "; ".join(state.errors[-_MAX_STORED_ERRORS:]) if state.failed_batches else None
        await self.audits.finish(
            audit_id,
            status=status,
            rows_processed=state.rows_processed,
            rows_inserted=state.rows_inserted,
            rows_updated=state.rows_updated,
            error_message=error,
            error_details={"failed_batches": state.failed_batches} if state.failed_batches else None,
            bigquery_job_id=state.job_id,
            sync_metadata=state.metadata(cursor),
        )
        if status != RefreshStatus.FAILED and config_id is not None:
            # Con lotes fallidos la tabla queda vencida para re-leer desde el checkpoint congelado
            await self.configs.mark_refreshed(config_id, utc_now(), retry_due=status == RefreshStatus.PARTIAL)
        await self.db.commit()

        log = logger.success if status == RefreshStatus.SUCCESS else logger.warning
        log(
            f"Sync {table_cfg.function_name} {status.value}: filas={state.rows_processed} "
            f"insertadas={state.rows_inserted} actualizadas={state.rows_updated} "
            f"lotes={state.batches} fallidos={state.failed_batches}"
        )
        return self._result(table_cfg, status.value, state, audit_id, budget, error=error)

    @staticmethod
    def _result(table_cfg, status: str, state: _RunState, audit_id: int, budget: TimeBudget, error: Optional[str] = None) -> TableSyncResult:
        return TableSyncResult(
            table_name=table_cfg.target_table,
            function_name=table_cfg.function_name,
            status=status,
            audit_log_id=audit_id,
            rows_processed=state.rows_processed,
            rows_inserted=state.rows_inserted,
            rows_updated=state.rows_updated,
            batches=state.batches,
            failed_batches=state.failed_batches,
            bigquery_job_id=state.job_id,
            last_processed_date=state.last_date,
            error=error,
            execution_time_ms=budget.elapsed_ms,
            errors=list(state.errors),
        )
