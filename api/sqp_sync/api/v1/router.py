"""
Router principal de la API v1.
Agrupa todos los endpoints de la version 1.
"""
from fastapi import APIRouter

from sqp_sync.api.v1.endpoints import functions, refresh, scheduler, sync, webhooks


# Router principal de la API v1
api_router = APIRouter(prefix="/v1")

# Incluir routers de endpoints especificos
api_router.include_router(sync.router)
api_router.include_router(refresh.router)
api_router.include_router(webhooks.router)
api_router.include_router(functions.router)
api_router.include_router(scheduler.router)
