"""
Tests de los endpoints HTTP con dependencias sobreescritas.
"""
import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from httpx import ASGITransport, AsyncClient

from main import create_application
from sqp_sync.api.v1.dependencies.use_case_deps import (
    get_continuation_dispatcher,
    get_daily_scheduler,
    get_function_runner,
    get_orchestrator,
    get_refresh_status_use_cases,
    get_table_sync_use_cases,
)
from sqp_sync.application.services.daily_sync_scheduler import DailySyncScheduler
from sqp_sync.application.use_cases.orchestration_use_cases import OrchestrationResult
from sqp_sync.application.use_cases.refresh_status_use_cases import RefreshStatusUseCases
from sqp_sync.core.config import settings
from sqp_sync.infrastructure.external.bigquery_sync.types import TableSyncResult
from sqp_sync.shared.exceptions.domain import RefreshTooSoonException

from conftest import RecordingDispatcher, seed_refresh_configs


class FakeOrchestrator:
    def __init__(self):
        self.calls = []

    async def run(self, table_names=None, *, full_sync=False, refresh_type="manual"):
        self.calls.append((table_names, full_sync, refresh_type))
        return OrchestrationResult(
            orchestration_id=7,
            status="success",
            total_tables=1,
            successful_tables=1,
            total_rows_processed=12,
        )


class FakeTableSyncUseCases:
    def __init__(self, trigger_error=None):
        self.trigger_error = trigger_error
        self.synced = []

    async def sync_table(self, table_name, *, full_sync=False):
        self.synced.append((table_name, full_sync))
        return TableSyncResult(
            table_name=table_name,
            function_name="refresh-asin-performance",
            status="success",
            audit_log_id=3,
            rows_processed=4,
        )

    async def trigger(self, table_name, *, force=False, full_sync=False):
        if self.trigger_error is not None:
            raise self.trigger_error
        return await self.sync_table(table_name, full_sync=full_sync)


class FakeRunner:
    def __init__(self):
        self.calls = []

    async def run(self, function_name, payload, dispatcher=None):
        self.calls.append((function_name, payload))


@pytest.fixture
def app():
    application = create_application()
    yield application
    application.dependency_overrides.clear()


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestHealthEndpoint:

    @pytest.mark.asyncio
    async def test_health_reports_scheduler_not_running(self, app):
        async with _client(app) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["scheduler_running"] is False
        assert body["continuation_mode"] == "http"
        assert body["next_daily_sync_at"] is None


class TestSyncEndpoints:

    @pytest.mark.asyncio
    async def test_orchestrate_returns_aggregate_result(self, app):
        orchestrator = FakeOrchestrator()
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator

        async with _client(app) as client:
            response = await client.post(
                "/api/v1/sync/orchestrate",
                json={"table_names": ["asin_performance_data"], "full_sync": True},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["orchestration_id"] == 7
        assert body["status"] == "success"
        assert body["total_rows_processed"] == 12
        assert orchestrator.calls == [(["asin_performance_data"], True, "manual")]

    @pytest.mark.asyncio
    async def test_sync_table_passes_full_sync_flag(self, app):
        use_cases = FakeTableSyncUseCases()
        app.dependency_overrides[get_table_sync_use_cases] = lambda: use_cases

        async with _client(app) as client:
            response = await client.post("/api/v1/sync/tables/asin_performance_data?full_sync=true")

        assert response.status_code == 200
        assert response.json()["rows_processed"] == 4
        assert use_cases.synced == [("asin_performance_data", True)]


class TestServiceRoleAuth:

    @pytest.mark.asyncio
    async def test_missing_token_is_rejected(self, app, monkeypatch):
        monkeypatch.setattr(settings, "SERVICE_ROLE_KEY", "secret-key")
        app.dependency_overrides[get_orchestrator] = lambda: FakeOrchestrator()

        async with _client(app) as client:
            response = await client.post("/api/v1/sync/orchestrate", json={})

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_wrong_token_is_rejected(self, app, monkeypatch):
        monkeypatch.setattr(settings, "SERVICE_ROLE_KEY", "secret-key")
        app.dependency_overrides[get_orchestrator] = lambda: FakeOrchestrator()

        async with _client(app) as client:
            response = await client.post(
                "/api/v1/sync/orchestrate",
                json={},
                headers={"Authorization": "Bearer otra-clave"},
            )

        assert response.status_code == 401
        assert response.json()["error"] == "INVALID_CREDENTIALS"

    @pytest.mark.asyncio
    async def test_valid_token_is_accepted(self, app, monkeypatch):
        monkeypatch.setattr(settings, "SERVICE_ROLE_KEY", "secret-key")
        app.dependency_overrides[get_orchestrator] = lambda: FakeOrchestrator()

        async with _client(app) as client:
            response = await client.post(
                "/api/v1/sync/orchestrate",
                json={},
                headers={"Authorization": "Bearer secret-key"},
            )

        assert response.status_code == 200


class TestRefreshEndpoints:

    @pytest.mark.asyncio
    async def test_trigger_too_soon_returns_409(self, app):
        use_cases = FakeTableSyncUseCases(
            trigger_error=RefreshTooSoonException("asin_performance_data", 3.0, 15)
        )
        app.dependency_overrides[get_table_sync_use_cases] = lambda: use_cases

        async with _client(app) as client:
            response = await client.post(
                "/api/v1/refresh/trigger",
                json={"table_name": "asin_performance_data"},
            )

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "REFRESH_TOO_SOON"
        assert body["details"]["table_name"] == "asin_performance_data"

    @pytest.mark.asyncio
    async def test_status_lists_seeded_tables(self, app, db_session):
        await seed_refresh_configs(db_session)
        app.dependency_overrides[get_refresh_status_use_cases] = lambda: RefreshStatusUseCases(db_session)

        async with _client(app) as client:
            response = await client.get("/api/v1/refresh/status")

        assert response.status_code == 200
        body = response.json()
        assert body["total_tables"] == 3
        assert {t["table_name"] for t in body["tables"]} == {
            "asin_performance_data",
            "search_query_performance",
            "search_query_summary",
        }

    @pytest.mark.asyncio
    async def test_tables_overview(self, app, db_session):
        await seed_refresh_configs(db_session)
        app.dependency_overrides[get_refresh_status_use_cases] = lambda: RefreshStatusUseCases(db_session)

        async with _client(app) as client:
            response = await client.get("/api/v1/refresh/tables")
            single = await client.get("/api/v1/refresh/tables?table=asin_performance_data")

        assert response.status_code == 200
        body = response.json()
        assert body["summary"]["total_tables"] == 3
        assert {c["key"] for c in body["categories"]} == {"core_data", "reporting"}
        first = body["tables"][0]
        assert first["category"] == "Core Data"
        assert set(first["metrics"]) >= {"success_rate_7d", "avg_refresh_duration_minutes", "data_freshness_hours"}
        assert set(first["trends"]) == {"refresh_times", "success_rate"}

        assert single.status_code == 200
        assert [t["table_name"] for t in single.json()["tables"]] == ["asin_performance_data"]
        assert single.json()["categories"] is None

    @pytest.mark.asyncio
    async def test_config_batch_size_out_of_range_is_rejected(self, app, db_session):
        await seed_refresh_configs(db_session)
        app.dependency_overrides[get_refresh_status_use_cases] = lambda: RefreshStatusUseCases(db_session)

        async with _client(app) as client:
            response = await client.patch(
                "/api/v1/refresh/config/asin_performance_data",
                json={"custom_sync_params": {"batch_size": -100}},
            )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_config_batch_size_is_stored(self, app, db_session):
        await seed_refresh_configs(db_session)
        app.dependency_overrides[get_refresh_status_use_cases] = lambda: RefreshStatusUseCases(db_session)

        async with _client(app) as client:
            response = await client.patch(
                "/api/v1/refresh/config/asin_performance_data",
                json={"custom_sync_params": {"batch_size": 500}},
            )

        assert response.status_code == 200
        assert response.json()["custom_sync_params"] == {"batch_size": 500}

    @pytest.mark.asyncio
    async def test_history_limit_is_validated(self, app, db_session):
        app.dependency_overrides[get_refresh_status_use_cases] = lambda: RefreshStatusUseCases(db_session)

        async with _client(app) as client:
            response = await client.get("/api/v1/refresh/history?limit=1000")

        assert response.status_code == 422


class TestFunctionEndpoint:

    @pytest.mark.asyncio
    async def test_unknown_function_returns_404(self, app):
        app.dependency_overrides[get_function_runner] = lambda: FakeRunner()
        app.dependency_overrides[get_continuation_dispatcher] = lambda: RecordingDispatcher()

        async with _client(app) as client:
            response = await client.post("/api/v1/functions/refresh-everything", json={})

        assert response.status_code == 404
        assert response.json()["error"] == "ENTITY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_known_function_is_accepted_and_run(self, app):
        runner = FakeRunner()
        app.dependency_overrides[get_function_runner] = lambda: runner
        app.dependency_overrides[get_continuation_dispatcher] = lambda: RecordingDispatcher()

        async with _client(app) as client:
            response = await client.post(
                "/api/v1/functions/refresh-search-queries",
                json={"config": {"table_name": "search_query_performance"}, "audit_log_id": 41},
            )

        assert response.status_code == 202
        body = response.json()
        assert body["table_name"] == "search_query_performance"
        assert body["audit_log_id"] == 41
        assert runner.calls[0][0] == "refresh-search-queries"
        assert runner.calls[0][1]["audit_log_id"] == 41

    @pytest.mark.asyncio
    async def test_mismatched_table_is_rejected(self, app):
        app.dependency_overrides[get_function_runner] = lambda: FakeRunner()
        app.dependency_overrides[get_continuation_dispatcher] = lambda: RecordingDispatcher()

        async with _client(app) as client:
            response = await client.post(
                "/api/v1/functions/refresh-search-queries",
                json={"config": {"table_name": "asin_performance_data"}},
            )

        assert response.status_code == 400


class TestSchedulerEndpoints:

    @pytest.mark.asyncio
    async def test_status_without_scheduler_returns_503(self, app):
        async with _client(app) as client:
            response = await client.get("/api/v1/scheduler/status")

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_status_with_scheduler(self, app):
        daily = DailySyncScheduler(
            AsyncIOScheduler(timezone="UTC"),
            FakeOrchestrator,
            cron="0 6 * * *",
            timezone="UTC",
            enabled=True,
        )
        app.dependency_overrides[get_daily_scheduler] = lambda: daily

        async with _client(app) as client:
            response = await client.get("/api/v1/scheduler/status")

        assert response.status_code == 200
        body = response.json()
        assert body["enabled"] is True
        assert body["cron"] == "0 6 * * *"
        assert body["total_runs"] == 0

    @pytest.mark.asyncio
    async def test_schedule_update_changes_cron(self, app):
        daily = DailySyncScheduler(
            AsyncIOScheduler(timezone="UTC"),
            FakeOrchestrator,
            cron="0 6 * * *",
            timezone="UTC",
            enabled=True,
        )
        daily.start()
        app.dependency_overrides[get_daily_scheduler] = lambda: daily

        async with _client(app) as client:
            response = await client.put("/api/v1/scheduler/schedule", json={"cron": "30 2 * * *"})
            invalid = await client.put("/api/v1/scheduler/schedule", json={"cron": "30 2 * *"})

        assert response.status_code == 200
        assert response.json()["cron"] == "30 2 * * *"
        assert invalid.status_code == 400
        assert invalid.json()["error"] == "VALIDATION_ERROR"
        assert invalid.json()["details"] == {"field": "cron"}
        assert daily.status()["cron"] == "30 2 * * *"
