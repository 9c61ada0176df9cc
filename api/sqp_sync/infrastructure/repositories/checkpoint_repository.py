"""
Repositorio de checkpoints de refresco (refresh_checkpoints).

Invariante: a lo sumo un checkpoint 'active' por (function_name, table_schema,
table_name). `save` actualiza el activo existente en lugar de insertar otro;
en Postgres el indice unico parcial lo garantiza ademas a nivel de base.

Un checkpoint sin expires_at (congelado por un lote fallido) no vence: solo
lo cierra una corrida que termina bien o un full sync.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.infrastructure.database.models import RefreshCheckpointModel
from sqp_sync.infrastructure.repositories.refresh_audit_repository import RefreshAuditRepository
from sqp_sync.shared.constants.refresh_constants import CheckpointStatus
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils


class CheckpointRepository:
    """
    Gestiona la tabla refresh_checkpoints.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audits = RefreshAuditRepository(db)

    def _active_query(self, function_name: str, table_schema: str, table_name: str):
        return (
            select(RefreshCheckpointModel)
            .where(RefreshCheckpointModel.function_name == function_name)
            .where(RefreshCheckpointModel.table_schema == table_schema)
            .where(RefreshCheckpointModel.table_name == table_name)
            .where(RefreshCheckpointModel.status == CheckpointStatus.ACTIVE.value)
            .execution_options(populate_existing=True)
        )

    async def _expire(
        self,
        checkpoint: RefreshCheckpointModel,
        now: datetime,
        keep_audit_id: Optional[int] = None,
    ) -> None:
        """
        Marca el checkpoint 'expired' y cierra la corrida que lo dejo.
        Si la continuacion se perdio, su audit seguiria in_progress para siempre.
        """
        checkpoint.status = CheckpointStatus.EXPIRED.value
        checkpoint.updated_at = now
        audit_id = (checkpoint.checkpoint_data or {}).get("audit_log_id")
        if audit_id is not None and audit_id != keep_audit_id:
            closed = await self.audits.close_abandoned(
                int(audit_id),
                reason=f"Continuacion vencida: checkpoint {checkpoint.id} expiro sin completarse",
                completed_at=now,
            )
            if closed:
                logger.warning(f"Audit {audit_id} cerrado por checkpoint vencido {checkpoint.id}")
        await self.db.flush()

    async def get_active(
        self,
        function_name: str,
        table_schema: str,
        table_name: str,
        now: Optional[datetime] = None,
        keep_audit_id: Optional[int] = None,
    ) -> Optional[RefreshCheckpointModel]:
        """
        Retorna el checkpoint activo vigente.
        Si el activo ya vencio se marca 'expired' y se retorna None.

        Args:
            keep_audit_id: audit de la corrida actual; no se cierra al expirar
        """
        result = await self.db.execute(self._active_query(function_name, table_schema, table_name))
        checkpoint = result.scalars().first()
        if checkpoint is None:
            return None

        now = now or DateTimeUtils.now_utc()
        expires_at = DateTimeUtils.ensure_utc(checkpoint.expires_at)
        if expires_at is not None and expires_at < now:
            logger.warning(
                f"Checkpoint {checkpoint.id} de {function_name} vencido ({expires_at.isoformat()}); se descarta"
            )
            await self._expire(checkpoint, now, keep_audit_id)
            return None
        return checkpoint

    async def save(
        self,
        *,
        function_name: str,
        table_schema: str,
        table_name: str,
        checkpoint_data: Dict[str, Any],
        last_processed_row: int,
        ttl_minutes: Optional[int],
        now: Optional[datetime] = None,
    ) -> RefreshCheckpointModel:
        """
        Crea o actualiza el checkpoint activo de la tabla.
        ttl_minutes=None deja el checkpoint sin vencimiento.
        """
        now = now or DateTimeUtils.now_utc()
        result = await self.db.execute(self._active_query(function_name, table_schema, table_name))
        checkpoint = result.scalars().first()
        if checkpoint is None:
            checkpoint = RefreshCheckpointModel(
                function_name=function_name,
                table_schema=table_schema,
                table_name=table_name,
                status=CheckpointStatus.ACTIVE.value,
            )
            self.db.add(checkpoint)

        # Copia para que el tipo JSON detecte el cambio
        checkpoint.checkpoint_data = dict(checkpoint_data)
        checkpoint.last_processed_row = last_processed_row
        checkpoint.expires_at = now + timedelta(minutes=ttl_minutes) if ttl_minutes is not None else None
        checkpoint.updated_at = now
        await self.db.flush()
        return checkpoint

    async def complete(self, function_name: str, table_schema: str, table_name: str) -> int:
        """Marca como 'completed' el checkpoint activo. Retorna filas afectadas."""
        result = await self.db.execute(
            update(RefreshCheckpointModel)
            .where(RefreshCheckpointModel.function_name == function_name)
            .where(RefreshCheckpointModel.table_schema == table_schema)
            .where(RefreshCheckpointModel.table_name == table_name)
            .where(RefreshCheckpointModel.status == CheckpointStatus.ACTIVE.value)
            .values(status=CheckpointStatus.COMPLETED.value, updated_at=DateTimeUtils.now_utc())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def expire_stale(self, now: Optional[datetime] = None) -> int:
        """
        Marca 'expired' los checkpoints activos vencidos y cierra sus corridas
        abiertas. Retorna la cantidad de checkpoints expirados.
        """
        now = now or DateTimeUtils.now_utc()
        result = await self.db.execute(
            select(RefreshCheckpointModel)
            .where(RefreshCheckpointModel.status == CheckpointStatus.ACTIVE.value)
            .where(RefreshCheckpointModel.expires_at.is_not(None))
            .where(RefreshCheckpointModel.expires_at < now)
            .execution_options(populate_existing=True)
        )
        stale = list(result.scalars().all())
        for checkpoint in stale:
            await self._expire(checkpoint, now)
        if stale:
            logger.info(f"Checkpoints vencidos marcados como expired: {len(stale)}")
        return len(stale)

    async def list_active(self) -> List[RefreshCheckpointModel]:
        result = await self.db.execute(
            select(RefreshCheckpointModel)
            .where(RefreshCheckpointModel.status == CheckpointStatus.ACTIVE.value)
            .order_by(RefreshCheckpointModel.updated_at.desc())
        )
        return list(result.scalars().all())
