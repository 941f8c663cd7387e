"""stock requisitions, transfers and movements; work logs; asset update requests

Revision ID: 0002_stock_worklogs
Revises: 0001_initial_schema
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

revision = '0002_stock_worklogs'
down_revision = '0001_initial_schema'
branch_labels = None
depends_on = None

REQUISITION_COLUMNS = [
    sa.Column('requisition_type', sa.String(length=24), nullable=False, server_default='StockRequest'),
    sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id')),
    sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
    sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id')),
    sa.Column('approved_on', sa.DateTime(timezone=True)),
    sa.Column('fulfilled_asset_id', sa.Integer(), sa.ForeignKey('assets.id')),
    sa.Column('fulfilled_on', sa.DateTime(timezone=True)),
    sa.Column('comments', sa.Text()),
    sa.Column('rejection_reason', sa.Text()),
]


def _updated_at():
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    bind = op.get_bind(); insp = inspect(bind)
    existing = {c['name'] for c in insp.get_columns('requisitions')}
    with op.batch_alter_table('requisitions') as batch:
        for col in REQUISITION_COLUMNS:
            if col.name not in existing:
                batch.add_column(col)
    op.create_index('ix_requisitions_requisition_type', 'requisitions', ['requisition_type'])
    op.create_index('ix_requisitions_ticket_id', 'requisitions', ['ticket_id'])
    # rows created before this revision all back RMA replacements
    op.execute("UPDATE requisitions SET requisition_type = 'RMATransfer' WHERE rma_id IS NOT NULL")

    op.create_table('stock_transfers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('transfer_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('source_site_id', sa.Integer(), sa.ForeignKey('sites.id'), nullable=False),
        sa.Column('destination_site_id', sa.Integer(), sa.ForeignKey('sites.id'), nullable=False),
        sa.Column('asset_ids', sa.JSON()),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='Pending'),
        sa.Column('initiated_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('dispatched_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('dispatched_on', sa.DateTime(timezone=True)),
        sa.Column('received_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('received_on', sa.DateTime(timezone=True)),
        sa.Column('logistics', sa.JSON()),
        sa.Column('notes', sa.Text()),
        sa.Column('created_on', sa.DateTime(timezone=True), nullable=False),
        _updated_at(),
    )
    op.create_index('ix_stock_transfers_transfer_number', 'stock_transfers', ['transfer_number'])
    op.create_index('ix_stock_transfers_source_site_id', 'stock_transfers', ['source_site_id'])
    op.create_index('ix_stock_transfers_destination_site_id', 'stock_transfers', ['destination_site_id'])
    op.create_index('ix_stock_transfers_status', 'stock_transfers', ['status'])

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('asset_id', sa.Integer(), sa.ForeignKey('assets.id'), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('from_site_id', sa.Integer(), sa.ForeignKey('sites.id')),
        sa.Column('to_site_id', sa.Integer(), sa.ForeignKey('sites.id')),
        sa.Column('from_status', sa.String(length=32)),
        sa.Column('to_status', sa.String(length=32)),
        sa.Column('performed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id')),
        sa.Column('rma_id', sa.Integer(), sa.ForeignKey('rma_requests.id')),
        sa.Column('requisition_id', sa.Integer(), sa.ForeignKey('requisitions.id')),
        sa.Column('transfer_id', sa.Integer(), sa.ForeignKey('stock_transfers.id')),
        sa.Column('asset_snapshot', sa.JSON()),
        sa.Column('notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    for col in ('asset_id', 'movement_type', 'from_site_id', 'to_site_id'):
        op.create_index(f'ix_stock_movements_{col}', 'stock_movements', [col])

    op.create_table('work_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('log_date', sa.Date(), nullable=False),
        sa.Column('daily_summary', sa.Text()),
        _updated_at(),
        sa.UniqueConstraint('user_id', 'log_date', name='uq_work_logs_user_day'),
    )
    op.create_index('ix_work_logs_user_id', 'work_logs', ['user_id'])
    op.create_index('ix_work_logs_log_date', 'work_logs', ['log_date'])

    op.create_table('work_log_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('work_log_id', sa.Integer(), sa.ForeignKey('work_logs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('entry_type', sa.String(length=8), nullable=False, server_default='auto'),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('description', sa.String(length=1000), nullable=False),
        sa.Column('duration_minutes', sa.Integer()),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id')),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id')),
        sa.Column('police_station', sa.String(length=150)),
        sa.Column('ref_type', sa.String(length=32)),
        sa.Column('ref_id', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_work_log_entries_work_log_id', 'work_log_entries', ['work_log_id'])

    op.create_table('asset_update_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rma_id', sa.Integer(), sa.ForeignKey('rma_requests.id'), nullable=False),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id'), nullable=False),
        sa.Column('asset_id', sa.Integer(), sa.ForeignKey('assets.id'), nullable=False),
        sa.Column('requested_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='Pending'),
        sa.Column('proposed_changes', sa.JSON()),
        sa.Column('original_values', sa.JSON()),
        sa.Column('access_token', sa.String(length=64), nullable=False, unique=True),
        sa.Column('access_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True)),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('created_on', sa.DateTime(timezone=True), nullable=False),
        _updated_at(),
    )
    for col in ('rma_id', 'ticket_id', 'asset_id', 'status', 'access_token'):
        op.create_index(f'ix_asset_update_requests_{col}', 'asset_update_requests', [col])


def downgrade():
    for table in ('asset_update_requests', 'work_log_entries', 'work_logs', 'stock_movements', 'stock_transfers'):
        op.drop_table(table)
    op.drop_index('ix_requisitions_ticket_id', table_name='requisitions')
    op.drop_index('ix_requisitions_requisition_type', table_name='requisitions')
    with op.batch_alter_table('requisitions') as batch:
        for col in reversed(REQUISITION_COLUMNS):
            batch.drop_column(col.name)
