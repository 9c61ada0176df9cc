"""
Tests del cuerpo de error que devuelven las excepciones del servicio.
"""
from sqp_sync.shared.exceptions.base import AppException
from sqp_sync.shared.exceptions.domain import RefreshTooSoonException, ValidationException


def test_default_error_is_internal():
    exc = AppException("algo fallo")

    assert exc.status_code == 500
    assert exc.to_response() == {"error": "INTERNAL_ERROR", "message": "algo fallo", "details": {}}


def test_details_are_copied():
    details = {"table_name": "asin_performance_data"}
    exc = AppException("x", details=details)
    details["table_name"] = "otra"

    assert exc.details == {"table_name": "asin_performance_data"}


def test_refresh_too_soon_envelope():
    exc = RefreshTooSoonException("search_query_summary", 4.26, 15)

    body = exc.to_response()
    assert exc.status_code == 409
    assert body["error"] == "REFRESH_TOO_SOON"
    assert body["details"] == {
        "table_name": "search_query_summary",
        "minutes_since_last": 4.3,
        "min_interval_minutes": 15,
    }


def test_validation_error_names_the_field():
    exc = ValidationException("cron invalido", field="cron")

    assert exc.to_response()["details"] == {"field": "cron"}
    assert "ValidationException" in repr(exc)
