"""initial ticketing schema

Revision ID: 0001_initial_schema
Revises: 
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _updated_at():
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=64), nullable=False, unique=True),
        sa.Column('full_name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False, unique=True),
        sa.Column('mobile_number', sa.String(length=32)),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('1')),
        sa.Column('site_scope', sa.JSON(), nullable=True),
        _updated_at(),
    )
    op.create_index('ix_users_username', 'users', ['username'])
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table('user_rights',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('rights', sa.JSON(), nullable=True),
        _updated_at(),
    )

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=False),
        sa.Column('actor_role', sa.String(length=32), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])

    op.create_table('sites',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('site_code', sa.String(length=32), nullable=False, unique=True),
        sa.Column('site_name', sa.String(length=128), nullable=False),
        sa.Column('city', sa.String(length=64)),
        sa.Column('address', sa.String(length=255)),
        sa.Column('contact_person', sa.String(length=128)),
        sa.Column('contact_phone', sa.String(length=32)),
        sa.Column('is_head_office', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        _updated_at(),
    )
    op.create_index('ix_sites_site_code', 'sites', ['site_code'])

    op.create_table('assets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('asset_code', sa.String(length=50), nullable=False, unique=True),
        sa.Column('asset_type', sa.String(length=50), nullable=False),
        sa.Column('device_type', sa.String(length=100)),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id'), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='Operational'),
        sa.Column('criticality', sa.Integer(), nullable=False, server_default='2'),
        sa.Column('make', sa.String(length=100)),
        sa.Column('model', sa.String(length=150)),
        sa.Column('serial_number', sa.String(length=100)),
        sa.Column('mac', sa.String(length=50)),
        sa.Column('ip_address', sa.String(length=50)),
        sa.Column('location_name', sa.String(length=150)),
        sa.Column('location_description', sa.String(length=200)),
        sa.Column('stock_location', sa.String(length=100)),
        sa.Column('username', sa.String(length=100)),
        sa.Column('password_encrypted', sa.String(length=1024)),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        _updated_at(),
    )
    op.create_index('ix_assets_asset_code', 'assets', ['asset_code'])
    op.create_index('ix_assets_asset_type', 'assets', ['asset_type'])
    op.create_index('ix_assets_site_id', 'assets', ['site_id'])
    op.create_index('ix_assets_status', 'assets', ['status'])

    op.create_table('sla_policies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('policy_name', sa.String(length=100), nullable=False),
        sa.Column('priority', sa.String(length=4), nullable=False),
        sa.Column('response_minutes', sa.Integer(), nullable=False),
        sa.Column('restore_minutes', sa.Integer(), nullable=False),
        sa.Column('escalation_level1_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('escalation_level2_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        _updated_at(),
    )
    op.create_index('ix_sla_policies_priority', 'sla_policies', ['priority'])

    op.create_table('tickets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.Column('sub_category', sa.String(length=64)),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='Open'),
        sa.Column('impact', sa.Integer(), nullable=False),
        sa.Column('urgency', sa.Integer(), nullable=False),
        sa.Column('priority_score', sa.Integer(), nullable=False),
        sa.Column('priority', sa.String(length=4), nullable=False),
        sa.Column('asset_id', sa.Integer(), sa.ForeignKey('assets.id')),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id'), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assigned_to', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('assigned_on', sa.DateTime(timezone=True)),
        sa.Column('acknowledged_on', sa.DateTime(timezone=True)),
        sa.Column('resolved_on', sa.DateTime(timezone=True)),
        sa.Column('verified_on', sa.DateTime(timezone=True)),
        sa.Column('verified_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('closed_on', sa.DateTime(timezone=True)),
        sa.Column('cancelled_on', sa.DateTime(timezone=True)),
        sa.Column('reopened_on', sa.DateTime(timezone=True)),
        sa.Column('root_cause', sa.Text()),
        sa.Column('resolution_summary', sa.Text()),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('escalation_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('escalation_reason', sa.Text()),
        sa.Column('escalated_on', sa.DateTime(timezone=True)),
        sa.Column('escalation_accepted_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('escalation_accepted_on', sa.DateTime(timezone=True)),
        sa.Column('sla_policy_id', sa.Integer(), sa.ForeignKey('sla_policies.id')),
        sa.Column('sla_response_due', sa.DateTime(timezone=True)),
        sa.Column('sla_restore_due', sa.DateTime(timezone=True)),
        sa.Column('is_sla_response_breached', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_sla_restore_breached', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_on', sa.DateTime(timezone=True), nullable=False),
        _updated_at(),
    )
    for col in ('ticket_number', 'category', 'status', 'priority', 'asset_id', 'site_id', 'assigned_to'):
        op.create_index(f'ix_tickets_{col}', 'tickets', [col])

    op.create_table('ticket_activities',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('activity_type', sa.String(length=32), nullable=False, server_default='Comment'),
        sa.Column('is_internal', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('old_status', sa.String(length=32)),
        sa.Column('new_status', sa.String(length=32)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_ticket_activities_ticket_id', 'ticket_activities', ['ticket_id'])

    op.create_table('requisitions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('requisition_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('rma_id', sa.Integer()),
        sa.Column('asset_type', sa.String(length=50)),
        sa.Column('source_site_id', sa.Integer(), sa.ForeignKey('sites.id')),
        sa.Column('destination_site_id', sa.Integer(), sa.ForeignKey('sites.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='Pending'),
        sa.Column('requested_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_on', sa.DateTime(timezone=True), nullable=False),
        _updated_at(),
    )
    op.create_index('ix_requisitions_requisition_number', 'requisitions', ['requisition_number'])
    op.create_index('ix_requisitions_rma_id', 'requisitions', ['rma_id'])
    op.create_index('ix_requisitions_status', 'requisitions', ['status'])

    op.create_table('rma_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rma_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id'), nullable=False),
        sa.Column('asset_id', sa.Integer(), sa.ForeignKey('assets.id'), nullable=False),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id'), nullable=False),
        sa.Column('rma_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=40), nullable=False, server_default='Requested'),
        sa.Column('failure_description', sa.Text()),
        sa.Column('requested_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('original_details', sa.JSON()),
        sa.Column('replacement_details', sa.JSON()),
        sa.Column('item_send_route', sa.String(length=32)),
        sa.Column('repair_destination', sa.String(length=32)),
        sa.Column('destination_site_id', sa.Integer(), sa.ForeignKey('sites.id')),
        sa.Column('stock_source', sa.String(length=32)),
        sa.Column('source_site_id', sa.Integer(), sa.ForeignKey('sites.id')),
        sa.Column('requisition_id', sa.Integer(), sa.ForeignKey('requisitions.id')),
        sa.Column('logistics', sa.JSON()),
        sa.Column('created_on', sa.DateTime(timezone=True), nullable=False),
        sa.Column('installed_on', sa.DateTime(timezone=True)),
        _updated_at(),
    )
    for col in ('rma_number', 'ticket_id', 'asset_id', 'site_id', 'status'):
        op.create_index(f'ix_rma_requests_{col}', 'rma_requests', [col])

    op.create_table('rma_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rma_id', sa.Integer(), sa.ForeignKey('rma_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('step', sa.String(length=40), nullable=False),
        sa.Column('from_status', sa.String(length=40)),
        sa.Column('status', sa.String(length=40), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('remarks', sa.Text()),
        sa.Column('logistics', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_rma_events_rma_id', 'rma_events', ['rma_id'])

    op.create_table('client_registrations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('full_name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False),
        sa.Column('mobile_number', sa.String(length=32)),
        sa.Column('organization', sa.String(length=128)),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id')),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='Pending'),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('reviewed_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('reviewed_on', sa.DateTime(timezone=True)),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_on', sa.DateTime(timezone=True), nullable=False),
        _updated_at(),
    )
    op.create_index('ix_client_registrations_email', 'client_registrations', ['email'])
    op.create_index('ix_client_registrations_status', 'client_registrations', ['status'])


def downgrade():
    for table in ('client_registrations', 'rma_events', 'rma_requests', 'requisitions', 'ticket_activities',
                  'tickets', 'sla_policies', 'assets', 'sites', 'audit_logs', 'user_rights', 'users'):
        op.drop_table(table)
