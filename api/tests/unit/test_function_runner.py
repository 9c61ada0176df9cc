"""
Tests unitarios de las funciones de refresco invocables por nombre.
"""
import json

import httpx
import pytest

from sqp_sync.application.use_cases.function_use_cases import (
    RefreshFunctionRunner,
    resolve_function_table,
)
from sqp_sync.core.config import settings
from sqp_sync.infrastructure.external.bigquery_sync.types import TableSyncResult
from sqp_sync.infrastructure.external.webhooks.webhook_client import WebhookClient
from sqp_sync.infrastructure.repositories.refresh_audit_repository import RefreshAuditRepository
from sqp_sync.infrastructure.repositories.webhook_repository import WebhookConfigRepository
from sqp_sync.shared.constants.refresh_constants import (
    DEFAULT_SCHEMA,
    FUNCTION_ASIN_PERFORMANCE,
    FUNCTION_SEARCH_QUERIES,
    FUNCTION_SUMMARY_TABLES,
)
from sqp_sync.shared.exceptions.domain import EntityNotFoundException, ValidationException

from conftest import FakeSource, days_ago, make_sqp_row, seed_refresh_configs


class TestResolveFunctionTable:
    """Tests de resolucion funcion -> tabla."""

    def test_known_functions(self):
        assert resolve_function_table(FUNCTION_ASIN_PERFORMANCE) == "asin_performance_data"
        assert resolve_function_table(FUNCTION_SEARCH_QUERIES) == "search_query_performance"
        assert resolve_function_table(FUNCTION_SUMMARY_TABLES) == "search_query_summary"

    def test_unknown_function(self):
        with pytest.raises(EntityNotFoundException):
            resolve_function_table("refresh-everything")

    def test_payload_for_another_table(self):
        payload = {"config": {"table_name": "search_query_performance"}}
        with pytest.raises(ValidationException):
            resolve_function_table(FUNCTION_ASIN_PERFORMANCE, payload)

    def test_payload_for_same_table(self):
        payload = {"config": {"table_name": "asin_performance_data"}, "audit_log_id": 7}
        assert resolve_function_table(FUNCTION_ASIN_PERFORMANCE, payload) == "asin_performance_data"


def _capturing_client(captured):
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, text="ok")

    return WebhookClient(transport=httpx.MockTransport(handler))


async def _subscribe(session_factory):
    async with session_factory() as db:
        await seed_refresh_configs(db)
        await WebhookConfigRepository(db).create(name="monitor", url="https://hooks.example.com/sqp")
        await db.commit()


@pytest.mark.asyncio
async def test_run_function_refreshes_table_and_notifies(session_factory):
    await _subscribe(session_factory)
    captured = []
    runner = RefreshFunctionRunner(
        session_factory,
        source=FakeSource([make_sqp_row(days_ago(5))]),
        webhook_client=_capturing_client(captured),
    )

    result = await runner.run(FUNCTION_ASIN_PERFORMANCE, {"refresh_type": "manual"})

    assert result.status == "success"
    assert result.rows_processed == 1
    assert len(captured) == 1
    assert captured[0].headers["X-Webhook-Event"] == "refresh.completed"
    body = json.loads(captured[0].content)
    assert body["data"]["table_name"] == "asin_performance_data"
    assert body["data"]["status"] == "success"


@pytest.mark.asyncio
async def test_run_summary_function(session_factory):
    await _subscribe(session_factory)
    runner = RefreshFunctionRunner(session_factory, source=FakeSource([]), webhook_client=_capturing_client([]))

    result = await runner.run(FUNCTION_SUMMARY_TABLES, {})

    assert result.status == "success"
    assert result.table_name == "search_query_summary"


@pytest.mark.asyncio
async def test_continued_result_is_not_notified(session_factory):
    await _subscribe(session_factory)
    captured = []
    runner = RefreshFunctionRunner(session_factory, webhook_client=_capturing_client(captured))

    await runner.notify_result(TableSyncResult(
        table_name="asin_performance_data",
        function_name=FUNCTION_ASIN_PERFORMANCE,
        status="in_progress",
        continued=True,
    ))

    assert captured == []


@pytest.mark.asyncio
async def test_failed_result_publishes_refresh_failed(session_factory):
    await _subscribe(session_factory)
    captured = []
    runner = RefreshFunctionRunner(session_factory, webhook_client=_capturing_client(captured))

    await runner.notify_result(TableSyncResult(
        table_name="search_query_performance",
        function_name=FUNCTION_SEARCH_QUERIES,
        status="failed",
        error="Quota exceeded",
    ))

    assert captured[0].headers["X-Webhook-Event"] == "refresh.failed"
    assert json.loads(captured[0].content)["data"]["error"] == "Quota exceeded"


@pytest.mark.asyncio
async def test_continuation_with_invalid_credentials_closes_adopted_audit(session_factory, monkeypatch):
    """La continuacion no deja su audit in_progress si no puede crear el cliente."""
    monkeypatch.setattr(settings, "GOOGLE_APPLICATION_CREDENTIALS_JSON", "{not json")
    await _subscribe(session_factory)
    async with session_factory() as db:
        audits = RefreshAuditRepository(db)
        running = await audits.create(table_schema=DEFAULT_SCHEMA, table_name="asin_performance_data", refresh_type="manual")
        await audits.update_progress(running.id, rows_processed=8, rows_inserted=8, rows_updated=0)
        await db.commit()
        audit_id = running.id
    captured = []
    runner = RefreshFunctionRunner(session_factory, webhook_client=_capturing_client(captured))

    result = await runner.run(FUNCTION_ASIN_PERFORMANCE, {"audit_log_id": audit_id})

    assert result.status == "failed"
    assert result.audit_log_id == audit_id
    async with session_factory() as db:
        audit = await RefreshAuditRepository(db).get(audit_id)
        assert audit.status == "failed"
        assert audit.rows_processed == 8
        assert audit.error_details["type"] == "SyncConfigError"
    assert captured[0].headers["X-Webhook-Event"] == "refresh.failed"
