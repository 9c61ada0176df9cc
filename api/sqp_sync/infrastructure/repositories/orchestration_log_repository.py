"""
Repositorio del log de orquestacion (refresh_orchestration_log).
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.infrastructure.database.models import RefreshOrchestrationLogModel
from sqp_sync.shared.constants.refresh_constants import OrchestrationStatus
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils


class OrchestrationLogRepository:
    """
    Gestiona la tabla refresh_orchestration_log.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, *, refresh_type: str, total_tables: int) -> RefreshOrchestrationLogModel:
        row = RefreshOrchestrationLogModel(
            refresh_type=refresh_type,
            status=OrchestrationStatus.IN_PROGRESS.value,
            total_tables=total_tables,
            started_at=DateTimeUtils.now_utc(),
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def finish(
        self,
        orchestration_id: int,
        *,
        status: OrchestrationStatus,
        successful_tables: int,
        failed_tables: int,
        total_rows_processed: int,
        results: List[Dict[str, Any]],
        completed_at: Optional[datetime] = None,
    ) -> Optional[RefreshOrchestrationLogModel]:
        row = await self.db.get(RefreshOrchestrationLogModel, orchestration_id)
        if row is None:
            return None
        completed = completed_at or DateTimeUtils.now_utc()
        row.status = status.value
        row.successful_tables = successful_tables
        row.failed_tables = failed_tables
        row.total_rows_processed = total_rows_processed
        row.results = results
        row.completed_at = completed
        row.execution_time_ms = DateTimeUtils.elapsed_ms(row.started_at, completed)
        await self.db.flush()
        return row

    async def list_recent(self, limit: int = 20) -> List[RefreshOrchestrationLogModel]:
        result = await self.db.execute(
            select(RefreshOrchestrationLogModel)
            .order_by(RefreshOrchestrationLogModel.started_at.desc(), RefreshOrchestrationLogModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_since(self, since: datetime) -> List[RefreshOrchestrationLogModel]:
        result = await self.db.execute(
            select(RefreshOrchestrationLogModel)
            .where(RefreshOrchestrationLogModel.started_at >= since)
            .order_by(RefreshOrchestrationLogModel.started_at.desc())
        )
        return list(result.scalars().all())
