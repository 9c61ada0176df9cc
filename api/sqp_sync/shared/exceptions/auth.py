"""
Excepciones de autenticacion del token de service role.
"""
from sqp_sync.shared.exceptions.base import AppException


class AuthException(AppException):
    """Excepcion base para errores de autenticacion."""

    def __init__(self, message: str, error_code: str = "AUTH_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=401,
            error_code=error_code,
            details=details
        )


class UnauthorizedException(AuthException):
    """Falta la cabecera Authorization: Bearer <token>."""

    def __init__(self, message: str = "No autorizado"):
        super().__init__(
            message=message,
            error_code="UNAUTHORIZED"
        )


class InvalidCredentialsException(AuthException):
    """El token no coincide con SERVICE_ROLE_KEY."""

    def __init__(self):
        super().__init__(
            message="Credenciales invalidas",
            error_code="INVALID_CREDENTIALS"
        )
