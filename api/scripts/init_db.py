"""
Script para inicializar la base de datos.
Crea las tablas y las filas por defecto de refresh_config.
"""
import asyncio
import sys
from pathlib import Path

from loguru import logger

_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

from sqp_sync.infrastructure.database.session import AsyncSessionLocal, close_db, init_db
from sqp_sync.infrastructure.external.bigquery_sync.table_mappings import DEFAULT_REFRESH_CONFIGS
from sqp_sync.infrastructure.repositories.refresh_config_repository import RefreshConfigRepository


async def main():
    """Función principal para inicializar la base de datos."""
    logger.info("Inicializando base de datos...")

    try:
        await init_db()
        async with AsyncSessionLocal() as db:
            created = await RefreshConfigRepository(db).seed_defaults(DEFAULT_REFRESH_CONFIGS)
            await db.commit()
        logger.info(f"Configuraciones de refresco creadas: {created}")
        logger.success("Base de datos inicializada correctamente")
    except Exception as e:
        logger.error(f"Error al inicializar base de datos: {e}")
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
