"""
Configuración del sync (mapeo BigQuery -> Postgres).

Aquí se define, por tabla destino:
- función de refresco que la sincroniza (nombre usado en checkpoints y continuaciones)
- modelo SQLAlchemy destino y su clave natural (target del ON CONFLICT)
- mapeos de columnas y transformaciones
- columna cursor (fecha de fin de periodo)
- tabla padre opcional cuyos ids se resuelven antes del UPSERT

Este módulo no realiza I/O: solo define configuración.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .types import FieldMapping


@dataclass(frozen=True)
class ParentLink:
    """
    Relación hija -> padre resuelta durante el sync.

    Las filas padre (p.ej. asin_performance_data) se aseguran con un UPSERT
    previo y su id se copia en `fk_column` de cada fila hija.
    """

    model: Any
    natural_key: tuple[str, ...]
    fk_column: str
    # Columnas de la fila hija que se copian a la fila padre
    copy_columns: tuple[str, ...]


@dataclass(frozen=True)
class TableSyncConfig:
    """
    Config de una tabla de origen BigQuery -> una tabla Postgres.

    NOTA sobre la clave natural:
    - Es el target del ON CONFLICT y debe tener un UNIQUE constraint en Postgres.
    - Filas repetidas dentro de un mismo lote se colapsan (gana la última).
    """

    function_name: str
    table_schema: str
    target_table: str
    model: Any
    natural_key: tuple[str, ...]
    field_mappings: list[FieldMapping]
    batch_size: int
    cursor_source_field: str = "End Date"
    cursor_column: str = "end_date"
    not_null_source_fields: tuple[str, ...] = ()
    order_by_source_fields: tuple[str, ...] = ()
    distinct: bool = False
    derive: Optional[Callable[[dict[str, Any], dict[str, Any]], dict[str, Any]]] = None
    parent: Optional[ParentLink] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def source_fields(self) -> list[str]:
        """Columnas BigQuery a seleccionar (sin duplicados, en orden de mapeo)."""
        seen: list[str] = []
        for m in self.field_mappings:
            if m.source_field not in seen:
                seen.append(m.source_field)
        if self.cursor_source_field not in seen:
            seen.append(self.cursor_source_field)
        return seen
