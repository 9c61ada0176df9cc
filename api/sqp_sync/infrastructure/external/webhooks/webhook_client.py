"""
Cliente HTTP para entregar webhooks firmados.
"""
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from sqp_sync.core.config import settings

SIGNATURE_PREFIX = "sha256="


def serialize_payload(payload: Dict[str, Any]) -> str:
    """
    Serializa el payload de forma estable.
    La firma se calcula sobre este mismo texto, que es el cuerpo enviado.
    """
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)


def sign_payload(body: str, secret: str) -> str:
    """Firma HMAC-SHA256 del cuerpo exacto: 'sha256=<hex>'."""
    digest = hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: str, signature: Optional[str], secret: str) -> bool:
    """
    Verifica una firma recibida en X-Webhook-Signature.
    Comparacion en tiempo constante.
    """
    if not signature or not secret:
        return False
    expected = sign_payload(body, secret)
    return hmac.compare_digest(expected, signature)


@dataclass
class WebhookResponse:
    """Resultado de un unico intento de entrega."""
    status_code: Optional[int]
    body: Optional[str]
    response_time_ms: int
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


class WebhookClient:
    """
    Cliente simple para enviar un POST firmado a un suscriptor.
    No reintenta: cada llamada es un solo intento.
    """

    def __init__(
        self,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_s = timeout_s or settings.WEBHOOK_TIMEOUT_S
        self._transport = transport

    async def post(self, url: str, body: str, headers: Dict[str, str]) -> WebhookResponse:
        """
        Envia el cuerpo ya serializado.

        Args:
            url: URL del suscriptor.
            body: JSON serializado (el mismo que se firmo).
            headers: Cabeceras completas (firma, evento, delivery id, custom).
        """
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                response = await client.post(url, content=body.encode("utf-8"), headers=headers)
        except httpx.HTTPError as e:
            elapsed = int((time.monotonic() - started) * 1000)
            logger.error(f"Error al enviar webhook a {url}: {e}")
            return WebhookResponse(status_code=None, body=None, response_time_ms=elapsed, error=str(e) or type(e).__name__)

        elapsed = int((time.monotonic() - started) * 1000)
        error = None if response.is_success else f"HTTP {response.status_code}"
        return WebhookResponse(
            status_code=response.status_code,
            body=response.text,
            response_time_ms=elapsed,
            error=error,
        )
