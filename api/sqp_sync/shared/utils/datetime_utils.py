"""
Utilidades para manejo de fechas y horas.
"""
from datetime import date, datetime, timezone
from typing import Any, Optional


class DateTimeUtils:
    """Clase de utilidades para operaciones con fechas y horas."""

    @staticmethod
    def now_utc() -> datetime:
        """
        Obtiene la fecha y hora actual en UTC.

        Returns:
            datetime: Fecha y hora actual en UTC
        """
        return datetime.now(timezone.utc)

    @staticmethod
    def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
        """
        Normaliza un datetime a UTC (aware).

        SQLite devuelve datetimes naive aunque la columna sea timezone=True;
        se asumen en UTC para poder compararlos.
        """
        if dt is None:
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    @staticmethod
    def to_iso_string(dt: Optional[datetime]) -> Optional[str]:
        """
        Convierte un datetime a string ISO 8601.

        Args:
            dt: Objeto datetime

        Returns:
            str: Fecha en formato ISO 8601 (None si dt es None)
        """
        return dt.isoformat() if dt is not None else None

    @staticmethod
    def from_iso_string(iso_string: str) -> Optional[datetime]:
        """
        Convierte un string ISO 8601 a datetime.

        Args:
            iso_string: String en formato ISO 8601

        Returns:
            Optional[datetime]: Objeto datetime o None si hay error
        """
        try:
            return datetime.fromisoformat(iso_string)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def parse_date(value: Any) -> Optional[date]:
        """
        Convierte valores de fecha heterogeneos a date.

        Acepta date/datetime, strings ISO ("2025-01-31" o "2025-01-31T00:00:00Z")
        y objetos con atributo `.value` (formato de algunos clientes BigQuery).
        """
        if value is None:
            return None
        if hasattr(value, "value") and not isinstance(value, (date, str)):
            value = value.value
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        text = str(value).strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text.split("T")[0].split(" ")[0])
        except ValueError:
            return None

    @staticmethod
    def elapsed_ms(started_at: datetime, ended_at: Optional[datetime] = None) -> int:
        """Milisegundos transcurridos entre dos instantes (ahora por defecto)."""
        end = ended_at or DateTimeUtils.now_utc()
        start = DateTimeUtils.ensure_utc(started_at)
        return max(int((DateTimeUtils.ensure_utc(end) - start).total_seconds() * 1000), 0)
