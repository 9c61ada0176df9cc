"""
Endpoints de gestion de webhooks.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from sqp_sync.api.v1.dependencies.use_case_deps import get_webhook_use_cases
from sqp_sync.application.dto.webhook_dto import (
    WebhookCreateDTO,
    WebhookDeliveryDTO,
    WebhookResponseDTO,
    WebhookTestResultDTO,
)
from sqp_sync.application.use_cases.webhook_use_cases import WebhookUseCases
from sqp_sync.core.security import require_service_role

router = APIRouter(
    prefix="/refresh/webhooks",
    tags=["Webhooks"],
    dependencies=[Depends(require_service_role)],
)


@router.get("", response_model=List[WebhookResponseDTO])
async def list_webhooks(
    use_cases: WebhookUseCases = Depends(get_webhook_use_cases)
):
    return await use_cases.list_webhooks()


@router.post("", response_model=WebhookResponseDTO, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    dto: WebhookCreateDTO,
    use_cases: WebhookUseCases = Depends(get_webhook_use_cases)
):
    """
    Registra un suscriptor. `events` vacio = todos los eventos.
    """
    return await use_cases.create_webhook(dto)


@router.get("/deliveries", response_model=List[WebhookDeliveryDTO])
async def list_deliveries(
    webhook_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None, description="pending, delivered o failed"),
    limit: int = Query(50, ge=1, le=500),
    use_cases: WebhookUseCases = Depends(get_webhook_use_cases)
):
    """
    Ultimas entregas registradas.
    """
    return await use_cases.list_deliveries(webhook_id=webhook_id, status=status, limit=limit)


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(
    webhook_id: int,
    use_cases: WebhookUseCases = Depends(get_webhook_use_cases)
):
    await use_cases.delete_webhook(webhook_id)


@router.post("/{webhook_id}/test", response_model=WebhookTestResultDTO)
async def test_webhook(
    webhook_id: int,
    use_cases: WebhookUseCases = Depends(get_webhook_use_cases)
):
    """
    Envia el evento webhook.test (un intento) y retorna el resultado.
    """
    return await use_cases.send_test(webhook_id)
