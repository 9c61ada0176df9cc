"""
Tests unitarios de los dispatchers de continuacion.
"""
import json

import httpx
import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from sqp_sync.core.config import settings
from sqp_sync.infrastructure.external.bigquery_sync.continuation import (
    HttpContinuationDispatcher,
    SchedulerContinuationDispatcher,
    build_continuation_dispatcher,
)
from sqp_sync.shared.exceptions.sync import ContinuationDispatchError

PAYLOAD = {
    "config": {"id": 2, "table_schema": "sqp", "table_name": "search_query_performance"},
    "audit_log_id": 41,
    "refresh_type": "scheduled",
}


@pytest.mark.asyncio
async def test_http_dispatch_posts_to_function_endpoint():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202, json={"accepted": True})

    dispatcher = HttpContinuationDispatcher(
        "http://sync.internal/",
        service_role_key="clave",
        transport=httpx.MockTransport(handler),
    )

    await dispatcher.dispatch("refresh-search-queries", PAYLOAD)

    request = captured[0]
    assert request.method == "POST"
    assert request.url.path == "/api/v1/functions/refresh-search-queries"
    assert request.headers["Authorization"] == "Bearer clave"
    assert json.loads(request.content) == PAYLOAD


@pytest.mark.asyncio
async def test_http_dispatch_error_is_wrapped():
    dispatcher = HttpContinuationDispatcher(
        "http://sync.internal",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )

    with pytest.raises(ContinuationDispatchError):
        await dispatcher.dispatch("refresh-search-queries", PAYLOAD)


@pytest.mark.asyncio
async def test_scheduler_dispatch_adds_one_shot_job():
    scheduler = AsyncIOScheduler(timezone="UTC")

    async def runner(function_name, payload, dispatcher):
        return None

    dispatcher = SchedulerContinuationDispatcher(scheduler, runner)

    await dispatcher.dispatch("refresh-search-queries", PAYLOAD)

    jobs = scheduler.get_jobs()
    assert [j.id for j in jobs] == ["continuation:refresh-search-queries:41"]
    assert jobs[0].args == ("refresh-search-queries", PAYLOAD, dispatcher)


def test_build_dispatcher_by_mode(monkeypatch):
    scheduler = AsyncIOScheduler(timezone="UTC")

    async def runner(function_name, payload, dispatcher):
        return None

    monkeypatch.setattr(settings, "CONTINUATION_MODE", "scheduler")
    assert isinstance(build_continuation_dispatcher(scheduler, runner), SchedulerContinuationDispatcher)
    # Sin scheduler activo se usa HTTP
    assert isinstance(build_continuation_dispatcher(None, None), HttpContinuationDispatcher)

    monkeypatch.setattr(settings, "CONTINUATION_MODE", "http")
    assert isinstance(build_continuation_dispatcher(scheduler, runner), HttpContinuationDispatcher)
