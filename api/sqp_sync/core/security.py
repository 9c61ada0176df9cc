"""
Seguridad: validacion del token de service role.

Los endpoints que disparan syncs, modifican configuracion o reciben
continuaciones exigen `Authorization: Bearer <SERVICE_ROLE_KEY>`.
Si SERVICE_ROLE_KEY no esta configurada (desarrollo) no se valida.
"""
import hmac
from typing import Optional

from fastapi import Header
from loguru import logger

from sqp_sync.core.config import settings
from sqp_sync.shared.exceptions.auth import InvalidCredentialsException, UnauthorizedException

BEARER_PREFIX = "bearer "


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extrae el token de una cabecera 'Bearer <token>'."""
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


def is_valid_service_token(token: Optional[str], expected: str) -> bool:
    """Comparacion en tiempo constante."""
    if not token or not expected:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


async def require_service_role(authorization: Optional[str] = Header(default=None)) -> None:
    """
    Dependencia FastAPI para endpoints protegidos.

    Raises:
        UnauthorizedException: sin token
        InvalidCredentialsException: token distinto de SERVICE_ROLE_KEY
    """
    expected = settings.SERVICE_ROLE_KEY
    if not expected:
        logger.debug("SERVICE_ROLE_KEY no configurada; endpoint sin autenticacion")
        return

    token = extract_bearer_token(authorization)
    if token is None:
        raise UnauthorizedException("Falta el token de service role")
    if not is_valid_service_token(token, expected):
        raise InvalidCredentialsException()
