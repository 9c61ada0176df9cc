"""
Tests unitarios de webhooks.

Verifica:
- Firma HMAC-SHA256 sobre el cuerpo exacto enviado
- Filtro por evento y suscriptores deshabilitados
- Un unico intento por entrega con registro del resultado
- Contadores acumulados del suscriptor
"""
import json

import httpx
import pytest

from sqp_sync.application.dto.webhook_dto import WebhookCreateDTO
from sqp_sync.application.use_cases.webhook_use_cases import WebhookNotifier, WebhookUseCases, build_headers
from sqp_sync.infrastructure.external.webhooks.webhook_client import (
    WebhookClient,
    serialize_payload,
    sign_payload,
    verify_signature,
)
from sqp_sync.infrastructure.repositories.webhook_repository import WebhookConfigRepository
from sqp_sync.shared.exceptions.domain import EntityNotFoundException


def _client(captured, status_code=200, error=None):
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        if error is not None:
            raise error
        return httpx.Response(status_code, text="respuesta del suscriptor")

    return WebhookClient(transport=httpx.MockTransport(handler))


class TestSignature:
    """Tests de firma."""

    def test_signature_matches_body(self):
        body = serialize_payload({"event": "sync.completed", "data": {"b": 1, "a": 2}})
        signature = sign_payload(body, "secreto")

        assert signature.startswith("sha256=")
        assert verify_signature(body, signature, "secreto") is True
        assert verify_signature(body + " ", signature, "secreto") is False
        assert verify_signature(body, signature, "otro") is False
        assert verify_signature(body, None, "secreto") is False

    def test_serialization_is_stable(self):
        assert serialize_payload({"b": 1, "a": 2}) == '{"a":2,"b":1}'

    def test_custom_headers_cannot_override_signature(self):
        headers = build_headers(
            event="sync.completed",
            delivery_id="abc",
            signature="sha256=real",
            custom_headers={"X-Webhook-Signature": "sha256=fake", "X-Team": "ads"},
        )

        assert headers["X-Webhook-Signature"] == "sha256=real"
        assert headers["X-Team"] == "ads"
        assert headers["X-Webhook-Event"] == "sync.completed"


class TestWebhookNotifier:
    """Tests de entrega de eventos."""

    @pytest.mark.asyncio
    async def test_signed_delivery_is_logged(self, db_session):
        repo = WebhookConfigRepository(db_session)
        webhook = await repo.create(
            name="ops",
            url="https://hooks.example.com/ops",
            secret="s3cr3t",
            events=["sync.completed"],
            headers={"X-Team": "ads"},
        )
        await db_session.commit()
        captured = []

        results = await WebhookNotifier(db_session, _client(captured)).notify(
            "sync.completed", {"status": "success", "total_tables": 3}
        )

        assert len(results) == 1
        assert results[0].status == "delivered"
        assert results[0].http_status_code == 200

        request = captured[0]
        body = request.content.decode("utf-8")
        assert verify_signature(body, request.headers["X-Webhook-Signature"], "s3cr3t")
        assert request.headers["X-Team"] == "ads"
        payload = json.loads(body)
        assert payload["event"] == "sync.completed"
        assert payload["id"] == request.headers["X-Webhook-Delivery"]
        assert payload["data"]["total_tables"] == 3

        stored = await repo.get(webhook.id)
        assert stored.total_deliveries == 1
        assert stored.successful_deliveries == 1
        assert stored.last_success_at is not None

        deliveries = await WebhookUseCases(db_session).list_deliveries(webhook_id=webhook.id)
        assert deliveries[0].status == "delivered"
        assert deliveries[0].response_body == "respuesta del suscriptor"

    @pytest.mark.asyncio
    async def test_event_filter_and_disabled_subscribers(self, db_session):
        repo = WebhookConfigRepository(db_session)
        await repo.create(name="all", url="https://a.example.com")
        await repo.create(name="failures", url="https://b.example.com", events=["refresh.failed"])
        await repo.create(name="off", url="https://c.example.com", is_enabled=False)
        await db_session.commit()
        captured = []

        await WebhookNotifier(db_session, _client(captured)).notify("sync.completed", {})

        assert [r.url.host for r in captured] == ["a.example.com"]

    @pytest.mark.asyncio
    async def test_http_error_is_recorded_without_retry(self, db_session):
        repo = WebhookConfigRepository(db_session)
        webhook = await repo.create(name="broken", url="https://broken.example.com")
        await db_session.commit()
        captured = []

        results = await WebhookNotifier(db_session, _client(captured, status_code=500)).notify("sync.completed", {})

        assert len(captured) == 1
        assert results[0].status == "failed"
        assert results[0].http_status_code == 500
        assert results[0].error == "HTTP 500"
        stored = await repo.get(webhook.id)
        assert stored.failed_deliveries == 1
        assert stored.successful_deliveries == 0

    @pytest.mark.asyncio
    async def test_connection_error_does_not_block_other_subscribers(self, db_session):
        repo = WebhookConfigRepository(db_session)
        await repo.create(name="down", url="https://down.example.com")
        await repo.create(name="up", url="https://up.example.com")
        await db_session.commit()
        captured = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            if request.url.host == "down.example.com":
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(204)

        notifier = WebhookNotifier(db_session, WebhookClient(transport=httpx.MockTransport(handler)))
        results = await notifier.notify("refresh.completed", {"table_name": "asin_performance_data"})

        assert [r.status for r in results] == ["failed", "delivered"]
        assert results[0].http_status_code is None
        assert "connection refused" in results[0].error


class TestWebhookUseCases:
    """Tests de gestion de suscriptores."""

    @pytest.mark.asyncio
    async def test_create_list_and_delete(self, db_session):
        use_cases = WebhookUseCases(db_session)

        created = await use_cases.create_webhook(WebhookCreateDTO(
            name="ops",
            url="https://hooks.example.com",
            secret="x",
            events=["refresh.failed"],
        ))

        assert created.has_secret is True
        assert [w.name for w in await use_cases.list_webhooks()] == ["ops"]

        await use_cases.delete_webhook(created.id)
        assert await use_cases.list_webhooks() == []

        with pytest.raises(EntityNotFoundException):
            await use_cases.delete_webhook(created.id)

    def test_unknown_event_is_rejected(self):
        with pytest.raises(ValueError):
            WebhookCreateDTO(name="x", url="https://x.example.com", events=["table.dropped"])

    def test_url_scheme_is_validated(self):
        with pytest.raises(ValueError):
            WebhookCreateDTO(name="x", url="ftp://x.example.com")

    @pytest.mark.asyncio
    async def test_send_test_reaches_disabled_webhook(self, db_session):
        repo = WebhookConfigRepository(db_session)
        webhook = await repo.create(name="off", url="https://off.example.com", is_enabled=False)
        await db_session.commit()
        captured = []

        result = await WebhookUseCases(db_session, _client(captured)).send_test(webhook.id)

        assert result.success is True
        assert result.payload["event"] == "webhook.test"
        assert captured[0].headers["X-Webhook-Event"] == "webhook.test"

    @pytest.mark.asyncio
    async def test_send_test_unknown_webhook(self, db_session):
        with pytest.raises(EntityNotFoundException):
            await WebhookUseCases(db_session, _client([])).send_test(999)
