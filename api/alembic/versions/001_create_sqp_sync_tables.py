"""create_sqp_sync_tables

Revision ID: 001
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    # --- Control del pipeline ---
    if not inspector.has_table('refresh_config'):
        op.create_table('refresh_config',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('table_schema', sa.String(length=100), nullable=False),
        sa.Column('table_name', sa.String(length=255), nullable=False),
        sa.Column('function_name', sa.String(length=255), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('refresh_frequency_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('last_refresh_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_refresh_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('custom_sync_params', sa.JSON(), nullable=True),
        sa.Column('dependencies', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('table_schema', 'table_name', name='uq_refresh_config_table')
        )
        op.create_index(op.f('ix_refresh_config_id'), 'refresh_config', ['id'], unique=False)
        op.create_index(op.f('ix_refresh_config_table_name'), 'refresh_config', ['table_name'], unique=False)
        op.create_index(op.f('ix_refresh_config_next_refresh_at'), 'refresh_config', ['next_refresh_at'], unique=False)

        refresh_config = sa.table(
            'refresh_config',
            sa.column('table_schema', sa.String),
            sa.column('table_name', sa.String),
            sa.column('function_name', sa.String),
            sa.column('is_enabled', sa.Boolean),
            sa.column('refresh_frequency_hours', sa.Integer),
            sa.column('priority', sa.Integer),
            sa.column('dependencies', sa.JSON),
        )
        op.bulk_insert(refresh_config, [
            {'table_schema': 'sqp', 'table_name': 'asin_performance_data',
             'function_name': 'refresh-asin-performance', 'is_enabled': True,
             'refresh_frequency_hours': 24, 'priority': 100, 'dependencies': []},
            {'table_schema': 'sqp', 'table_name': 'search_query_performance',
             'function_name': 'refresh-search-queries', 'is_enabled': True,
             'refresh_frequency_hours': 24, 'priority': 90, 'dependencies': ['asin_performance_data']},
            {'table_schema': 'sqp', 'table_name': 'search_query_summary',
             'function_name': 'refresh-summary-tables', 'is_enabled': True,
             'refresh_frequency_hours': 24, 'priority': 50, 'dependencies': ['search_query_performance']},
        ])

    if not inspector.has_table('refresh_audit_log'):
        op.create_table('refresh_audit_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('refresh_config_id', sa.Integer(), nullable=True),
        sa.Column('table_schema', sa.String(length=100), nullable=False),
        sa.Column('table_name', sa.String(length=255), nullable=False),
        sa.Column('refresh_type', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('rows_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rows_inserted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rows_updated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_details', sa.JSON(), nullable=True),
        sa.Column('bigquery_job_id', sa.String(length=255), nullable=True),
        sa.Column('sync_metadata', sa.JSON(), nullable=True),
        sa.Column('refresh_started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('refresh_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['refresh_config_id'], ['refresh_config.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_refresh_audit_log_id'), 'refresh_audit_log', ['id'], unique=False)
        op.create_index(op.f('ix_refresh_audit_log_refresh_config_id'), 'refresh_audit_log', ['refresh_config_id'], unique=False)
        op.create_index(op.f('ix_refresh_audit_log_table_name'), 'refresh_audit_log', ['table_name'], unique=False)
        op.create_index(op.f('ix_refresh_audit_log_status'), 'refresh_audit_log', ['status'], unique=False)

    if not inspector.has_table('refresh_checkpoints'):
        op.create_table('refresh_checkpoints',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('function_name', sa.String(length=255), nullable=False),
        sa.Column('table_schema', sa.String(length=100), nullable=False),
        sa.Column('table_name', sa.String(length=255), nullable=False),
        sa.Column('checkpoint_data', sa.JSON(), nullable=False),
        sa.Column('last_processed_row', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_refresh_checkpoints_id'), 'refresh_checkpoints', ['id'], unique=False)
        op.create_index(op.f('ix_refresh_checkpoints_status'), 'refresh_checkpoints', ['status'], unique=False)
        # A lo sumo un checkpoint activo por (funcion, schema, tabla)
        op.create_index(
            'uq_refresh_checkpoints_active',
            'refresh_checkpoints',
            ['function_name', 'table_schema', 'table_name'],
            unique=True,
            postgresql_where=sa.text("status = 'active'"),
        )

    if not inspector.has_table('refresh_orchestration_log'):
        op.create_table('refresh_orchestration_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('refresh_type', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('total_tables', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_tables', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_tables', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_rows_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('results', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_refresh_orchestration_log_id'), 'refresh_orchestration_log', ['id'], unique=False)

    if not inspector.has_table('webhook_configs'):
        op.create_table('webhook_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('secret', sa.String(length=255), nullable=True),
        sa.Column('events', sa.JSON(), nullable=False),
        sa.Column('headers', sa.JSON(), nullable=True),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('total_deliveries', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_deliveries', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_deliveries', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_delivery_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_success_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_failure_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_webhook_configs_id'), 'webhook_configs', ['id'], unique=False)

    if not inspector.has_table('webhook_deliveries'):
        op.create_table('webhook_deliveries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('webhook_config_id', sa.Integer(), nullable=False),
        sa.Column('delivery_id', sa.String(length=64), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('signature', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('http_status_code', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempt_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['webhook_config_id'], ['webhook_configs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('delivery_id')
        )
        op.create_index(op.f('ix_webhook_deliveries_id'), 'webhook_deliveries', ['id'], unique=False)
        op.create_index(op.f('ix_webhook_deliveries_webhook_config_id'), 'webhook_deliveries', ['webhook_config_id'], unique=False)
        op.create_index(op.f('ix_webhook_deliveries_status'), 'webhook_deliveries', ['status'], unique=False)

    # --- Datos SQP destino ---
    if not inspector.has_table('asin_performance_data'):
        op.create_table('asin_performance_data',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('asin', sa.String(length=20), nullable=False),
        sa.Column('parent_asin', sa.String(length=20), nullable=True),
        sa.Column('product_name', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('start_date', 'end_date', 'asin', name='uq_asin_performance_period')
        )
        op.create_index(op.f('ix_asin_performance_data_id'), 'asin_performance_data', ['id'], unique=False)
        op.create_index(op.f('ix_asin_performance_data_end_date'), 'asin_performance_data', ['end_date'], unique=False)
        op.create_index(op.f('ix_asin_performance_data_asin'), 'asin_performance_data', ['asin'], unique=False)

    if not inspector.has_table('search_query_performance'):
        metric_int = [
            'search_query_score', 'search_query_volume', 'total_query_impressions', 'impressions',
            'total_clicks', 'clicks', 'total_cart_adds', 'cart_adds', 'total_purchases', 'purchases',
        ]
        metric_float = [
            'impression_share', 'click_share', 'total_median_click_price', 'asin_median_click_price',
            'cart_add_share', 'purchase_share', 'total_median_purchase_price', 'asin_median_purchase_price',
            'ctr', 'cvr', 'cart_add_rate', 'purchase_rate',
        ]
        op.create_table('search_query_performance',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('asin_performance_id', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('asin', sa.String(length=20), nullable=False),
        sa.Column('search_query', sa.Text(), nullable=False),
        *[sa.Column(name, sa.Integer(), nullable=False, server_default='0') for name in metric_int],
        *[sa.Column(name, sa.Float(), nullable=False, server_default='0') for name in metric_float],
        *_timestamps(),
        sa.ForeignKeyConstraint(['asin_performance_id'], ['asin_performance_data.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('start_date', 'end_date', 'asin', 'search_query', name='uq_search_query_performance_key')
        )
        op.create_index(op.f('ix_search_query_performance_id'), 'search_query_performance', ['id'], unique=False)
        op.create_index(op.f('ix_search_query_performance_asin_performance_id'), 'search_query_performance', ['asin_performance_id'], unique=False)
        op.create_index(op.f('ix_search_query_performance_end_date'), 'search_query_performance', ['end_date'], unique=False)
        op.create_index(op.f('ix_search_query_performance_asin'), 'search_query_performance', ['asin'], unique=False)

    if not inspector.has_table('search_query_summary'):
        op.create_table('search_query_summary',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('period_type', sa.String(length=20), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('asin', sa.String(length=20), nullable=False),
        sa.Column('search_query', sa.Text(), nullable=False),
        sa.Column('total_impressions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cart_adds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_purchases', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_ctr', sa.Float(), nullable=False, server_default='0'),
        sa.Column('avg_cvr', sa.Float(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('period_type', 'period_start', 'asin', 'search_query', name='uq_search_query_summary_key')
        )
        op.create_index(op.f('ix_search_query_summary_id'), 'search_query_summary', ['id'], unique=False)
        op.create_index(op.f('ix_search_query_summary_period_type'), 'search_query_summary', ['period_type'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table in (
        'search_query_summary',
        'search_query_performance',
        'asin_performance_data',
        'webhook_deliveries',
        'webhook_configs',
        'refresh_orchestration_log',
        'refresh_checkpoints',
        'refresh_audit_log',
        'refresh_config',
    ):
        if inspector.has_table(table):
            op.drop_table(table)
