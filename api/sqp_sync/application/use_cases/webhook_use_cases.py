"""
Casos de uso de webhooks: notificacion de eventos y gestion de suscriptores.

Cada entrega es un unico intento (sin reintentos ni backoff):
- se crea la fila 'pending' en webhook_deliveries antes del POST
- se cierra como 'delivered' (2xx) o 'failed' con codigo, cuerpo y tiempo
- se actualizan los contadores acumulados del suscriptor
"""
import uuid
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.application.dto.webhook_dto import (
    WebhookCreateDTO,
    WebhookDeliveryDTO,
    WebhookDeliveryResultDTO,
    WebhookResponseDTO,
    WebhookTestResultDTO,
)
from sqp_sync.infrastructure.database.models import WebhookConfigModel
from sqp_sync.infrastructure.external.webhooks.webhook_client import (
    WebhookClient,
    serialize_payload,
    sign_payload,
)
from sqp_sync.infrastructure.repositories.webhook_repository import (
    WebhookConfigRepository,
    WebhookDeliveryRepository,
)
from sqp_sync.shared.constants.refresh_constants import DeliveryStatus, WebhookEvent
from sqp_sync.shared.exceptions.domain import EntityNotFoundException
from sqp_sync.shared.utils.datetime_utils import DateTimeUtils

USER_AGENT = "SQP-Sync-Webhook/1.0"


def build_event_payload(event: str, data: Dict[str, Any], delivery_id: str) -> Dict[str, Any]:
    """Payload estandar: {id, timestamp, event, data}."""
    return {
        "id": delivery_id,
        "timestamp": DateTimeUtils.now_utc().isoformat(),
        "event": event,
        "data": data,
    }


def build_headers(
    *,
    event: str,
    delivery_id: str,
    signature: Optional[str],
    custom_headers: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """
    Cabeceras de la entrega.
    Las cabeceras custom no pueden pisar las de firma/evento.
    """
    headers: Dict[str, str] = dict(custom_headers or {})
    headers.update({
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        "X-Webhook-Event": event,
        "X-Webhook-Delivery": delivery_id,
    })
    if signature:
        headers["X-Webhook-Signature"] = signature
    return headers


class WebhookNotifier:
    """
    Publica eventos del pipeline a los suscriptores habilitados.
    """

    def __init__(self, db: AsyncSession, client: Optional[WebhookClient] = None):
        self.db = db
        self.client = client or WebhookClient()
        self.configs = WebhookConfigRepository(db)
        self.deliveries = WebhookDeliveryRepository(db)

    async def notify(self, event: str, data: Dict[str, Any]) -> List[WebhookDeliveryResultDTO]:
        """
        Envia el evento a cada suscriptor habilitado que lo escucha.
        Un suscriptor que falla no afecta a los demas.
        """
        webhooks = await self.configs.list_for_event(event)
        if not webhooks:
            logger.debug(f"Sin suscriptores para el evento {event}")
            return []

        logger.info(f"Enviando evento {event} a {len(webhooks)} suscriptor(es)")
        results = []
        for webhook in webhooks:
            result, _ = await self.deliver(webhook, event, data)
            results.append(result)
        return results

    async def deliver(
        self,
        webhook: WebhookConfigModel,
        event: str,
        data: Dict[str, Any],
    ) -> tuple[WebhookDeliveryResultDTO, Dict[str, Any]]:
        """
        Un intento de entrega a un suscriptor.

        Returns:
            (resultado, payload enviado)
        """
        webhook_id = webhook.id
        url = webhook.url
        delivery_id = uuid.uuid4().hex
        payload = build_event_payload(event, data, delivery_id)
        body = serialize_payload(payload)
        signature = sign_payload(body, webhook.secret) if webhook.secret else None
        headers = build_headers(
            event=event,
            delivery_id=delivery_id,
            signature=signature,
            custom_headers=webhook.headers,
        )

        delivery = await self.deliveries.create_pending(
            webhook_config_id=webhook_id,
            delivery_id=delivery_id,
            event_type=event,
            payload=payload,
            signature=signature,
        )
        await self.db.commit()

        response = await self.client.post(url, body, headers)
        now = DateTimeUtils.now_utc()
        status = DeliveryStatus.DELIVERED if response.ok else DeliveryStatus.FAILED

        await self.deliveries.mark_result(
            delivery,
            status=status,
            http_status_code=response.status_code,
            response_body=response.body,
            response_time_ms=response.response_time_ms,
            error_message=response.error,
            delivered_at=now if response.ok else None,
        )
        await self.configs.record_delivery(webhook_id, success=response.ok, at=now)
        await self.db.commit()

        if response.ok:
            logger.info(f"Webhook {webhook_id} entregado ({event}, {response.status_code}, {response.response_time_ms} ms)")
        else:
            logger.warning(f"Webhook {webhook_id} fallo ({event}): {response.error}")

        result = WebhookDeliveryResultDTO(
            webhook_id=webhook_id,
            delivery_id=delivery_id,
            status=status.value,
            http_status_code=response.status_code,
            response_time_ms=response.response_time_ms,
            error=response.error,
        )
        return result, payload


class WebhookUseCases:
    """
    Gestion de suscriptores y envio de prueba.
    """

    def __init__(self, db: AsyncSession, client: Optional[WebhookClient] = None):
        self.db = db
        self.repository = WebhookConfigRepository(db)
        self.deliveries = WebhookDeliveryRepository(db)
        self.notifier = WebhookNotifier(db, client)

    async def list_webhooks(self) -> List[WebhookResponseDTO]:
        webhooks = await self.repository.list_all()
        return [WebhookResponseDTO.from_model(w) for w in webhooks]

    async def create_webhook(self, dto: WebhookCreateDTO) -> WebhookResponseDTO:
        webhook = await self.repository.create(
            name=dto.name,
            url=dto.url,
            secret=dto.secret,
            events=dto.events,
            headers=dto.headers,
            is_enabled=dto.is_enabled,
        )
        await self.db.commit()
        logger.info(f"Webhook creado: {webhook.name} ({webhook.url})")
        return WebhookResponseDTO.from_model(webhook)

    async def delete_webhook(self, webhook_id: int) -> None:
        deleted = await self.repository.delete(webhook_id)
        if not deleted:
            raise EntityNotFoundException("Webhook", webhook_id)
        await self.db.commit()
        logger.info(f"Webhook {webhook_id} eliminado")

    async def send_test(self, webhook_id: int) -> WebhookTestResultDTO:
        """
        Envia el evento webhook.test a un suscriptor, este o no habilitado.
        """
        webhook = await self.repository.get(webhook_id)
        if webhook is None:
            raise EntityNotFoundException("Webhook", webhook_id)

        data = {"test": True, "message": f"Webhook de prueba para '{webhook.name}'"}
        result, payload = await self.notifier.deliver(webhook, WebhookEvent.WEBHOOK_TEST.value, data)
        return WebhookTestResultDTO(
            success=result.status == DeliveryStatus.DELIVERED.value,
            delivery=result,
            payload=payload,
        )

    async def list_deliveries(
        self,
        webhook_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[WebhookDeliveryDTO]:
        rows = await self.deliveries.list_recent(webhook_config_id=webhook_id, status=status, limit=limit)
        return [WebhookDeliveryDTO.model_validate(r) for r in rows]
