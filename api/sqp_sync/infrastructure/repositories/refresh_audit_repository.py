"""
Repositorio del historial de refrescos (refresh_audit_log).

La fila se crea antes de empezar el trabajo y se cierra una sola vez:
`finish` solo actualiza filas en estado no terminal.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.infrastructure.database.models import RefreshAuditLogModel
from sqp_sync.shared.constants.refresh_constants import (
    ERROR_MESSAGE_MAX_CHARS,
    RefreshStatus,
)
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils

_OPEN_STATUSES = (RefreshStatus.PENDING.value, RefreshStatus.IN_PROGRESS.value)


class RefreshAuditRepository:
    """
    Gestiona la tabla refresh_audit_log.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        *,
        table_schema: str,
        table_name: str,
        refresh_type: str,
        refresh_config_id: Optional[int] = None,
        sync_metadata: Optional[Dict[str, Any]] = None,
        started_at: Optional[datetime] = None,
    ) -> RefreshAuditLogModel:
        """Crea la fila en estado in_progress."""
        row = RefreshAuditLogModel(
            refresh_config_id=refresh_config_id,
            table_schema=table_schema,
            table_name=table_name,
            refresh_type=refresh_type,
            status=RefreshStatus.IN_PROGRESS.value,
            sync_metadata=sync_metadata or {},
            refresh_started_at=started_at or DateTimeUtils.now_utc(),
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def get(self, audit_id: int) -> Optional[RefreshAuditLogModel]:
        result = await self.db.execute(
            select(RefreshAuditLogModel)
            .where(RefreshAuditLogModel.id == audit_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_progress(
        self,
        audit_id: int,
        *,
        rows_processed: int,
        rows_inserted: int,
        rows_updated: int,
        sync_metadata: Optional[Dict[str, Any]] = None,
        bigquery_job_id: Optional[str] = None,
    ) -> None:
        """Actualiza contadores mientras la corrida sigue abierta."""
        values: Dict[str, Any] = {
            "rows_processed": rows_processed,
            "rows_inserted": rows_inserted,
            "rows_updated": rows_updated,
        }
        if sync_metadata is not None:
            values["sync_metadata"] = sync_metadata
        if bigquery_job_id:
            values["bigquery_job_id"] = bigquery_job_id
        await self.db.execute(
            update(RefreshAuditLogModel)
            .where(RefreshAuditLogModel.id == audit_id)
            .where(RefreshAuditLogModel.status.in_(_OPEN_STATUSES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def finish(
        self,
        audit_id: int,
        *,
        status: RefreshStatus,
        rows_processed: int = 0,
        rows_inserted: int = 0,
        rows_updated: int = 0,
        error_message: Optional[str] = None,
        error_details: Optional[Dict[str, Any]] = None,
        bigquery_job_id: Optional[str] = None,
        sync_metadata: Optional[Dict[str, Any]] = None,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Cierra la corrida con un estado terminal.

        Returns:
            True si la fila se cerro; False si ya estaba cerrada (o no existe).
        """
        if not status.is_terminal:
            raise ValueError(f"Estado no terminal: {status}")

        row = await self.get(audit_id)
        if row is None or row.status not in _OPEN_STATUSES:
            return False

        completed = completed_at or DateTimeUtils.now_utc()
        values: Dict[str, Any] = {
            "status": status.value,
            "rows_processed": rows_processed,
            "rows_inserted": rows_inserted,
            "rows_updated": rows_updated,
            "refresh_completed_at": completed,
            "execution_time_ms": DateTimeUtils.elapsed_ms(row.refresh_started_at, completed),
        }
        if error_message:
            values["error_message"] = error_message[:ERROR_MESSAGE_MAX_CHARS]
        if error_details is not None:
            values["error_details"] = error_details
        if bigquery_job_id:
            values["bigquery_job_id"] = bigquery_job_id
        if sync_metadata is not None:
            values["sync_metadata"] = sync_metadata

        result = await self.db.execute(
            update(RefreshAuditLogModel)
            .where(RefreshAuditLogModel.id == audit_id)
            .where(RefreshAuditLogModel.status.in_(_OPEN_STATUSES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        # Refrescar la instancia cacheada en la sesion para lecturas posteriores
        await self.db.refresh(row)
        return result.rowcount == 1

    async def close_abandoned(
        self,
        audit_id: int,
        *,
        reason: str,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Cierra una corrida cuya continuacion nunca llego.
        Queda partial si alcanzo a procesar filas, si no failed.
        """
        row = await self.get(audit_id)
        if row is None or row.status not in _OPEN_STATUSES:
            return False
        processed = row.rows_processed or 0
        return await self.finish(
            audit_id,
            status=RefreshStatus.PARTIAL if processed > 0 else RefreshStatus.FAILED,
            rows_processed=processed,
            rows_inserted=row.rows_inserted or 0,
            rows_updated=row.rows_updated or 0,
            error_message=reason,
            error_details={"type": "ExpiredContinuation"},
            completed_at=completed_at,
        )

    async def list_history(
        self,
        *,
        table_name: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[RefreshAuditLogModel], int]:
        """Historial paginado (mas reciente primero) y total."""
        query = select(RefreshAuditLogModel)
        count_query = select(func.count()).select_from(RefreshAuditLogModel)
        if table_name:
            query = query.where(RefreshAuditLogModel.table_name == table_name)
            count_query = count_query.where(RefreshAuditLogModel.table_name == table_name)
        if status:
            query = query.where(RefreshAuditLogModel.status == status)
            count_query = count_query.where(RefreshAuditLogModel.status == status)

        query = query.order_by(RefreshAuditLogModel.refresh_started_at.desc(), RefreshAuditLogModel.id.desc())
        result = await self.db.execute(query.limit(limit).offset(offset))
        total = (await self.db.execute(count_query)).scalar_one()
        return list(result.scalars().all()), int(total)

    async def list_since(self, since: datetime) -> List[RefreshAuditLogModel]:
        result = await self.db.execute(
            select(RefreshAuditLogModel)
            .where(RefreshAuditLogModel.refresh_started_at >= since)
            .order_by(RefreshAuditLogModel.refresh_started_at.desc())
        )
        return list(result.scalars().all())

    async def latest_for_table(self, table_name: str) -> Optional[RefreshAuditLogModel]:
        result = await self.db.execute(
            select(RefreshAuditLogModel)
            .where(RefreshAuditLogModel.table_name == table_name)
            .order_by(RefreshAuditLogModel.refresh_started_at.desc(), RefreshAuditLogModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def last_success_at(self) -> Optional[datetime]:
        """Fin del ultimo refresco exitoso de cualquier tabla."""
        result = await self.db.execute(
            select(func.max(RefreshAuditLogModel.refresh_completed_at))
            .where(RefreshAuditLogModel.status == RefreshStatus.SUCCESS.value)
        )
        return result.scalar_one_or_none()
