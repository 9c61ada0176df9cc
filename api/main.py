"""
Punto de entrada principal de la aplicación FastAPI.
Configura la aplicación, middlewares, rutas y eventos.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sqp_sync.core.config import settings, get_cors_origins
from sqp_sync.core.events import startup_handler, shutdown_handler
from sqp_sync.api.v1.router import api_router
from sqp_sync.api.middlewares.error_handler import ErrorHandlerMiddleware
from sqp_sync.shared.exceptions.base import AppException


def create_application() -> FastAPI:
    """
    Factory para crear y configurar la aplicación FastAPI.

    Returns:
        FastAPI: Instancia configurada de la aplicación
    """
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Sincronizacion de datos SQP desde BigQuery hacia Postgres, con orquestacion, auditoria y webhooks",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Configurar CORS
    cors_origins = get_cors_origins(settings.CORS_ORIGINS)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Middleware personalizado para manejo de errores
    application.add_middleware(ErrorHandlerMiddleware)

    # Registrar eventos de inicio y cierre
    application.add_event_handler("startup", startup_handler(application))
    application.add_event_handler("shutdown", shutdown_handler(application))

    # Incluir routers de la API
    application.include_router(api_router, prefix="/api")

    # Manejador global de excepciones personalizadas
    @application.exception_handler(AppException)
    async def app_exception_handler(request, exc: AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
        )

    # Health check endpoint
    @application.get("/health", tags=["Health"])
    async def health_check():
        """
        Estado del proceso: scheduler y modo de continuacion.
        La salud de los datos esta en /api/v1/refresh/health.
        """
        scheduler = getattr(application.state, "scheduler", None)
        daily = getattr(application.state, "daily_scheduler", None)
        next_sync = daily.next_run_at() if daily else None
        return {
            "status": "healthy",
            "app_name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "scheduler_running": bool(scheduler and scheduler.running),
            "continuation_mode": settings.CONTINUATION_MODE,
            "next_daily_sync_at": next_sync.isoformat() if next_sync else None,
        }

    return application


# Crear instancia de la aplicación
app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
