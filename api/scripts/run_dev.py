"""
Script para ejecutar el servidor en modo desarrollo.
Las continuaciones corren en el scheduler del proceso: usar un solo worker.
"""
import uvicorn
from sqp_sync.core.config import settings


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        workers=1,
        log_level=settings.LOG_LEVEL.lower()
    )
