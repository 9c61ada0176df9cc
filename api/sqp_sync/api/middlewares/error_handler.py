"""
Middleware para manejo centralizado de errores.

Los errores de dominio (AppException) los resuelve el exception handler de
la app; aca llegan solo los no controlados.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import DBAPIError
from starlette.middleware.base import BaseHTTPMiddleware


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware para capturar errores no controlados."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except DBAPIError as exc:
            # Base destino caida o sin conexiones disponibles
            logger.error(f"Error de base de datos en {request.method} {request.url.path}: {exc.__class__.__name__}")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "error": "DATABASE_UNAVAILABLE",
                    "message": "La base de datos destino no esta disponible",
                    "details": {"path": request.url.path}
                }
            )
        except Exception as exc:
            # Escapar llaves para evitar error de formato en loguru
            error_msg = str(exc).replace("{", "{{").replace("}", "}}")
            logger.error(f"Error no manejado en {request.method} {request.url.path}: {error_msg}")
            logger.exception("Detalle del error:")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": "INTERNAL_SERVER_ERROR",
                    "message": "Ha ocurrido un error interno del servidor",
                    "details": {"path": request.url.path}
                }
            )
