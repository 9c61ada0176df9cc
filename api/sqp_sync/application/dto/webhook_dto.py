"""
DTOs de webhooks: suscriptores, entregas y envio de prueba.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from sqp_sync.shared.constants.refresh_constants import WebhookEvent


class WebhookCreateDTO(BaseModel):
    """DTO para registrar un suscriptor."""
    name: str = Field(..., min_length=1, max_length=255, description="Nombre descriptivo")
    url: str = Field(..., description="URL que recibe el POST firmado")
    secret: Optional[str] = Field(None, description="Secreto HMAC; sin secreto no se firma")
    events: List[str] = Field(default_factory=list, description="Eventos suscritos (vacio = todos)")
    headers: Dict[str, str] = Field(default_factory=dict, description="Cabeceras adicionales")
    is_enabled: bool = True

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("La URL debe comenzar con http:// o https://")
        return value

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: List[str]) -> List[str]:
        known = {e.value for e in WebhookEvent}
        unknown = [e for e in value if e not in known]
        if unknown:
            raise ValueError(f"Eventos desconocidos: {', '.join(unknown)}")
        return value


class WebhookResponseDTO(BaseModel):
    """DTO de respuesta de un suscriptor (el secreto no se expone)."""
    id: int
    name: str
    url: str
    events: List[str] = Field(default_factory=list)
    headers: Optional[Dict[str, str]] = None
    is_enabled: bool
    has_secret: bool = False
    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    last_delivery_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_model(cls, webhook) -> "WebhookResponseDTO":
        dto = cls.model_validate(webhook)
        dto.has_secret = bool(webhook.secret)
        return dto


class WebhookDeliveryDTO(BaseModel):
    """DTO de una entrega registrada."""
    id: int
    webhook_config_id: int
    delivery_id: str
    event_type: str
    status: str
    http_status_code: Optional[int] = None
    response_body: Optional[str] = None
    response_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    attempt_number: int = 1
    created_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WebhookDeliveryResultDTO(BaseModel):
    """Resultado de un intento de entrega."""
    webhook_id: int
    delivery_id: str
    status: str
    http_status_code: Optional[int] = None
    response_time_ms: int = 0
    error: Optional[str] = None


class WebhookTestResultDTO(BaseModel):
    """Resultado del envio de prueba."""
    success: bool
    delivery: WebhookDeliveryResultDTO
    payload: Dict[str, Any]
