"""
Manejadores de eventos de inicio y cierre de la aplicacion.

En el arranque se crean las tablas, se siembran las filas por defecto de
refresh_config y se crea el AsyncIOScheduler compartido: lo usan el sync
diario (job cron) y las continuaciones en proceso (jobs one-shot).
"""
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from loguru import logger

from sqp_sync.application.services.daily_sync_scheduler import DailySyncScheduler
from sqp_sync.application.use_cases.function_use_cases import RefreshFunctionRunner
from sqp_sync.core.config import settings
from sqp_sync.infrastructure.database.session import close_db, get_session_factory, init_db
from sqp_sync.infrastructure.external.bigquery_sync.continuation import build_continuation_dispatcher
from sqp_sync.infrastructure.external.bigquery_sync.table_mappings import DEFAULT_REFRESH_CONFIGS
from sqp_sync.infrastructure.repositories.refresh_config_repository import RefreshConfigRepository


def startup_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de inicio de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de inicio
    """
    async def startup() -> None:
        """Inicializa recursos al inicio de la aplicacion."""
        try:
            logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION}")
            logger.info(f"Entorno: {settings.ENVIRONMENT}")

            # Validar configuracion critica
            _validate_config()

            # Inicializar base de datos (crea tablas si no existen)
            await init_db()
            logger.info("Base de datos inicializada")

            await _seed_refresh_config()

            # Configurar logging adicional
            logger.add(
                settings.LOG_FILE,
                rotation="500 MB",
                retention="10 days",
                level=settings.LOG_LEVEL
            )

            _start_scheduler(app)

            logger.success("Aplicacion iniciada correctamente")

            # Mostrar URLs disponibles
            _print_available_urls()

        except Exception as e:
            logger.error(f"Error durante startup: {e}")
            logger.exception("Detalle del error:")
            raise

    return startup


async def _seed_refresh_config() -> None:
    """Crea las filas por defecto de refresh_config que falten."""
    async with get_session_factory()() as db:
        created = await RefreshConfigRepository(db).seed_defaults(DEFAULT_REFRESH_CONFIGS)
        await db.commit()
    if created:
        logger.info(f"refresh_config: {created} tabla(s) por defecto creadas")


def _start_scheduler(app: FastAPI) -> None:
    """
    Crea el scheduler, el runner de funciones y el dispatcher de continuaciones,
    y los deja en app.state para las dependencias de los endpoints.
    """
    scheduler = AsyncIOScheduler(timezone=settings.SYNC_SCHEDULE_TIMEZONE)
    runner = RefreshFunctionRunner()

    app.state.scheduler = scheduler
    app.state.function_runner = runner
    # El job recibe la corutina ligada: APScheduler la ejecuta en el event loop
    app.state.continuation_dispatcher = build_continuation_dispatcher(scheduler, runner.run)

    daily = DailySyncScheduler(scheduler)
    daily.start()
    app.state.daily_scheduler = daily

    scheduler.start()
    logger.info(f"Scheduler iniciado (continuaciones: {settings.CONTINUATION_MODE})")


def _validate_config() -> None:
    """Valida que la configuracion critica este presente."""
    warnings = []

    if not settings.BIGQUERY_PROJECT_ID:
        warnings.append("BIGQUERY_PROJECT_ID no configurado - los syncs fallaran")
    if not settings.GOOGLE_APPLICATION_CREDENTIALS_JSON:
        warnings.append(
            "GOOGLE_APPLICATION_CREDENTIALS_JSON no configurada - se usaran credenciales por defecto de GCP"
        )
    if not settings.SERVICE_ROLE_KEY:
        warnings.append("SERVICE_ROLE_KEY no configurada - los endpoints de sync quedan sin autenticacion")

    # Mostrar advertencias
    for warning in warnings:
        logger.warning(f"CONFIG: {warning}")


def _print_available_urls() -> None:
    """Imprime las URLs disponibles de la aplicacion."""
    if settings.HOST == "0.0.0.0":
        access_host = "localhost"
    else:
        access_host = settings.HOST

    base_url = f"http://{access_host}:{settings.PORT}"

    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info("<bold><green>URLS DISPONIBLES:</green></bold>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info(f"<cyan>  Swagger UI:      {base_url}/docs</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Health:          {base_url}/health</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Refresh status:  {base_url}/api/v1/refresh/status</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Scheduler:       {base_url}/api/v1/scheduler/status</cyan>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")


def shutdown_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de cierre de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de cierre
    """
    async def shutdown() -> None:
        """Libera recursos al cerrar la aplicacion."""
        logger.info("Cerrando aplicacion...")

        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is not None and scheduler.running:
            # Las continuaciones pendientes se retoman desde su checkpoint
            scheduler.shutdown(wait=False)
            logger.info("Scheduler detenido")

        # Cerrar conexiones de base de datos
        await close_db()
        logger.info("Conexiones de base de datos cerradas")

        logger.success("Aplicacion cerrada correctamente")

    return shutdown
