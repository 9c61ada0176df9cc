"""
Pipeline de sincronización one-way: BigQuery (SQP) -> PostgreSQL (Supabase).

Objetivos de diseño:
- Idempotencia: UPSERT por clave natural, se puede re-ejecutar sin duplicar filas.
- Incremental: cursor por fecha de fin de periodo (`End Date`).
- Reanudable: checkpoint por lote y continuación asíncrona al agotar el presupuesto de tiempo.
- Auditable: una fila de refresh_audit_log por intento, cerrada una sola vez.
"""
