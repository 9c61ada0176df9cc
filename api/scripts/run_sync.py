"""
CLI: BigQuery -> Postgres (sync SQP fuera del API).

Uso recomendado:
  - Backfills largos o ejecucion como job (cron/systemd timer).
  - Corre sin presupuesto de tiempo: no genera continuaciones.

Variables de entorno relevantes:
  - BIGQUERY_PROJECT_ID, BIGQUERY_DATASET, BIGQUERY_TABLE
  - GOOGLE_APPLICATION_CREDENTIALS_JSON
  - DATABASE_URL (postgresql+asyncpg://...)

Ejecucion:
  python scripts/run_sync.py                      # orquesta las tablas vencidas
  python scripts/run_sync.py --table search_query_performance --full-sync
  python scripts/run_sync.py --summaries-only
  python scripts/run_sync.py --cleanup-checkpoints
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger
from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
# La carpeta "api" contiene el paquete raiz `sqp_sync/`.
_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

# Cargar variables desde .env antes de construir settings
load_dotenv(_API_ROOT / ".env", override=False)
load_dotenv(_API_ROOT.parent / ".env", override=False)

from sqp_sync.application.use_cases.orchestration_use_cases import RefreshOrchestrator
from sqp_sync.application.use_cases.summary_refresh_use_cases import SUMMARY_TABLE
from sqp_sync.infrastructure.database.session import AsyncSessionLocal, close_db, init_db
from sqp_sync.infrastructure.repositories.checkpoint_repository import CheckpointRepository
from sqp_sync.shared.constants.refresh_constants import OrchestrationStatus, RefreshType


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync SQP BigQuery -> Postgres")
    parser.add_argument(
        "--table",
        action="append",
        dest="tables",
        help="Tabla a refrescar (repetible). Sin --table se orquestan las tablas vencidas.",
    )
    parser.add_argument(
        "--full-sync",
        action="store_true",
        help="Ignora checkpoints y cursores: re-lee todo el historial.",
    )
    parser.add_argument(
        "--summaries-only",
        action="store_true",
        help="Solo recalcula search_query_summary.",
    )
    parser.add_argument(
        "--cleanup-checkpoints",
        action="store_true",
        help="Marca como expired los checkpoints activos vencidos y termina.",
    )
    return parser


async def _cleanup_checkpoints() -> int:
    async with AsyncSessionLocal() as db:
        expired = await CheckpointRepository(db).expire_stale()
        await db.commit()
    logger.info(f"Checkpoints expirados: {expired}")
    return 0


async def _run(args: argparse.Namespace) -> int:
    await init_db()
    try:
        if args.cleanup_checkpoints:
            return await _cleanup_checkpoints()

        tables = [SUMMARY_TABLE] if args.summaries_only else args.tables
        logger.info(f"Iniciando sync SQP (tablas={tables or 'vencidas'}, full_sync={args.full_sync})")
        result = await RefreshOrchestrator().run(
            tables,
            full_sync=args.full_sync,
            refresh_type=RefreshType.MANUAL.value,
        )
        for item in result.results:
            logger.info(
                f"  {item.get('table_name')}: {item.get('status')} "
                f"(filas={item.get('rows_processed', 0)})"
            )
        if result.skipped_tables:
            logger.warning(f"Tablas sin configuracion habilitada: {result.skipped_tables}")
        logger.info(
            f"Sync terminado: status={result.status}, ok={result.successful_tables}, "
            f"fallidas={result.failed_tables}, filas={result.total_rows_processed}"
        )
        return 0 if result.status == OrchestrationStatus.SUCCESS.value else 1
    finally:
        await close_db()


def main() -> int:
    args = _build_parser().parse_args()
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
