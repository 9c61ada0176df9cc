"""
Raiz de las excepciones del servicio de sync.

Cada error lleva el status HTTP y el codigo estable que el handler de
main.py devuelve en el cuerpo {error, message, details}.
"""
from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Error con respuesta HTTP propia.

    Las familias de dominio, auth y sync heredan de esta clase; lo que no
    herede de aqui termina como 500 en el middleware de errores.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        # Codigo en mayusculas que consumen los clientes (p.ej. REFRESH_TOO_SOON)
        self.error_code = error_code
        self.details = dict(details) if details else {}
        super().__init__(message)

    def to_response(self) -> Dict[str, Any]:
        """Cuerpo JSON del error."""
        return {"error": self.error_code, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.status_code}, {self.error_code}: {self.message})"
