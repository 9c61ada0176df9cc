"""
Repositorio para gestionar la configuracion de refresco por tabla.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.infrastructure.database.models import RefreshConfigModel


class RefreshConfigRepository:
    """
    Gestiona la tabla refresh_config.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, config_id: int) -> Optional[RefreshConfigModel]:
        return await self.db.get(RefreshConfigModel, config_id)

    async def get_by_table(self, table_name: str, table_schema: Optional[str] = None) -> Optional[RefreshConfigModel]:
        """
        Obtiene la configuracion de una tabla por nombre (y schema si se indica).
        """
        query = select(RefreshConfigModel).where(RefreshConfigModel.table_name == table_name)
        if table_schema:
            query = query.where(RefreshConfigModel.table_schema == table_schema)
        result = await self.db.execute(query.order_by(RefreshConfigModel.id))
        return result.scalars().first()

    async def list_all(self) -> List[RefreshConfigModel]:
        query = select(RefreshConfigModel).order_by(
            RefreshConfigModel.priority.desc(), RefreshConfigModel.table_name
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_due(
        self,
        now: datetime,
        table_names: Optional[Sequence[str]] = None,
    ) -> List[RefreshConfigModel]:
        """
        Tablas a refrescar, ordenadas por prioridad (mayor primero).

        - Sin lista explicita: habilitadas y con next_refresh_at vencido o nulo.
        - Con lista explicita: habilitadas y dentro de la lista, sin mirar next_refresh_at.
        """
        query = select(RefreshConfigModel).where(RefreshConfigModel.is_enabled.is_(True))
        if table_names:
            query = query.where(RefreshConfigModel.table_name.in_(list(table_names)))
        else:
            query = query.where(
                or_(
                    RefreshConfigModel.next_refresh_at.is_(None),
                    RefreshConfigModel.next_refresh_at <= now,
                )
            )
        query = query.order_by(RefreshConfigModel.priority.desc(), RefreshConfigModel.table_name)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def mark_refreshed(self, config_id: int, refreshed_at: datetime, retry_due: bool = False) -> None:
        """
        Registra un refresco y programa el siguiente segun la frecuencia.
        Con retry_due la tabla queda vencida de inmediato (corrida parcial).
        """
        config = await self.db.get(RefreshConfigModel, config_id)
        if config is None:
            return
        config.last_refresh_at = refreshed_at
        if retry_due:
            config.next_refresh_at = refreshed_at
        else:
            config.next_refresh_at = refreshed_at + timedelta(hours=config.refresh_frequency_hours or 24)
        await self.db.flush()

    async def update_fields(self, config_id: int, values: Dict[str, Any]) -> Optional[RefreshConfigModel]:
        """
        Actualiza campos editables (is_enabled, refresh_frequency_hours, priority, ...).
        """
        if values:
            await self.db.execute(
                update(RefreshConfigModel).where(RefreshConfigModel.id == config_id).values(**values)
            )
            await self.db.flush()
            logger.info(f"refresh_config {config_id} actualizado: {values}")
        config = await self.db.get(RefreshConfigModel, config_id)
        if config is not None:
            await self.db.refresh(config)
        return config

    async def create(self, **values: Any) -> RefreshConfigModel:
        config = RefreshConfigModel(**values)
        self.db.add(config)
        await self.db.flush()
        return config

    async def seed_defaults(self, defaults: Sequence[Dict[str, Any]]) -> int:
        """
        Crea las filas por defecto que no existan. Retorna cuantas se crearon.
        """
        created = 0
        for values in defaults:
            existing = await self.get_by_table(values["table_name"], values.get("table_schema"))
            if existing:
                continue
            await self.create(**values)
            created += 1
        return created
