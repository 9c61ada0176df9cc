"""
Repositorios de webhooks: suscriptores y log de entregas.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sqp_sync.infrastructure.database.models import WebhookConfigModel, WebhookDeliveryLogModel
from sqp_sync.shared.constants.refresh_constants import DeliveryStatus, RESPONSE_BODY_MAX_CHARS


class WebhookConfigRepository:
    """
    Gestiona la tabla webhook_configs.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, webhook_id: int) -> Optional[WebhookConfigModel]:
        result = await self.db.execute(
            select(WebhookConfigModel)
            .where(WebhookConfigModel.id == webhook_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> List[WebhookConfigModel]:
        result = await self.db.execute(select(WebhookConfigModel).order_by(WebhookConfigModel.id))
        return list(result.scalars().all())

    async def list_for_event(self, event: str) -> List[WebhookConfigModel]:
        """
        Suscriptores habilitados para el evento.
        Una lista de eventos vacia equivale a suscribirse a todos.
        """
        result = await self.db.execute(
            select(WebhookConfigModel)
            .where(WebhookConfigModel.is_enabled.is_(True))
            .order_by(WebhookConfigModel.id)
        )
        return [w for w in result.scalars().all() if not w.events or event in w.events]

    async def create(
        self,
        *,
        name: str,
        url: str,
        secret: Optional[str] = None,
        events: Optional[List[str]] = None,
        headers: Optional[Dict[str, str]] = None,
        is_enabled: bool = True,
    ) -> WebhookConfigModel:
        webhook = WebhookConfigModel(
            name=name,
            url=url,
            secret=secret,
            events=list(events or []),
            headers=dict(headers or {}),
            is_enabled=is_enabled,
            total_deliveries=0,
            successful_deliveries=0,
            failed_deliveries=0,
        )
        self.db.add(webhook)
        await self.db.flush()
        # Carga created_at (server_default)
        await self.db.refresh(webhook)
        return webhook

    async def delete(self, webhook_id: int) -> bool:
        webhook = await self.db.get(WebhookConfigModel, webhook_id)
        if webhook is None:
            return False
        await self.db.delete(webhook)
        await self.db.flush()
        return True

    async def record_delivery(self, webhook_id: int, *, success: bool, at: datetime) -> None:
        """
        Actualiza los contadores acumulados del suscriptor.
        Se hace con UPDATE atomico (col = col + 1) para tolerar entregas concurrentes.
        """
        values: Dict[str, Any] = {
            "total_deliveries": WebhookConfigModel.total_deliveries + 1,
            "last_delivery_at": at,
        }
        if success:
            values["successful_deliveries"] = WebhookConfigModel.successful_deliveries + 1
            values["last_success_at"] = at
        else:
            values["failed_deliveries"] = WebhookConfigModel.failed_deliveries + 1
            values["last_failure_at"] = at
        await self.db.execute(
            update(WebhookConfigModel)
            .where(WebhookConfigModel.id == webhook_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )


class WebhookDeliveryRepository:
    """
    Gestiona la tabla webhook_deliveries.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_pending(
        self,
        *,
        webhook_config_id: int,
        delivery_id: str,
        event_type: str,
        payload: Dict[str, Any],
        signature: Optional[str],
    ) -> WebhookDeliveryLogModel:
        delivery = WebhookDeliveryLogModel(
            webhook_config_id=webhook_config_id,
            delivery_id=delivery_id,
            event_type=event_type,
            payload=payload,
            signature=signature,
            status=DeliveryStatus.PENDING.value,
            attempt_number=1,
        )
        self.db.add(delivery)
        await self.db.flush()
        return delivery

    async def mark_result(
        self,
        delivery: WebhookDeliveryLogModel,
        *,
        status: DeliveryStatus,
        http_status_code: Optional[int],
        response_body: Optional[str],
        response_time_ms: int,
        error_message: Optional[str] = None,
        delivered_at: Optional[datetime] = None,
    ) -> WebhookDeliveryLogModel:
        delivery.status = status.value
        delivery.http_status_code = http_status_code
        delivery.response_body = response_body[:RESPONSE_BODY_MAX_CHARS] if response_body else response_body
        delivery.response_time_ms = response_time_ms
        delivery.error_message = error_message
        delivery.delivered_at = delivered_at
        await self.db.flush()
        return delivery

    async def list_recent(
        self,
        *,
        webhook_config_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[WebhookDeliveryLogModel]:
        query = select(WebhookDeliveryLogModel)
        if webhook_config_id is not None:
            query = query.where(WebhookDeliveryLogModel.webhook_config_id == webhook_config_id)
        if status:
            query = query.where(WebhookDeliveryLogModel.status == status)
        result = await self.db.execute(
            query.order_by(WebhookDeliveryLogModel.id.desc()).limit(limit)
        )
        return list(result.scalars().all())
