"""Create services checkout, settlement and affiliate schema

Revision ID: 001_services_schema
Revises:
Create Date: 2026-09-14
"""
import uuid
from datetime import datetime, timezone

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '001_services_schema'
down_revision = None
branch_labels = None
depends_on = None


def _uuid():
    return postgresql.UUID(as_uuid=True)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    """Create tables and seed the no-affiliate row and commission rules"""

    # ====================
    # USERS
    # ====================
    op.create_table(
        'users',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(200), nullable=True),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    # ====================
    # AFFILIATES & TRACKING
    # ====================
    op.create_table(
        'affiliates',
        sa.Column('id', sa.String(50), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_affiliates_status', 'affiliates', ['status'])

    op.create_table(
        'tracking_events',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('affiliate_id', sa.String(50), sa.ForeignKey('affiliates.id'), nullable=False),
        sa.Column('event_type', sa.String(30), nullable=False),
        sa.Column('user_id', _uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('property_id', sa.String(64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_tracking_events_affiliate_type', 'tracking_events', ['affiliate_id', 'event_type'])
    op.create_index('ix_tracking_events_created_at', 'tracking_events', ['created_at'])

    # ====================
    # SERVICE CATALOGUE
    # ====================
    op.create_table(
        'services',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('base_price', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'service_tiers',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('service_id', _uuid(), sa.ForeignKey('services.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('features', sa.JSON(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_service_tiers_service_id', 'service_tiers', ['service_id'])

    # ====================
    # SERVICE REQUESTS
    # ====================
    op.create_table(
        'service_requests',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('reference_number', sa.String(30), nullable=False),
        sa.Column('service_id', _uuid(), sa.ForeignKey('services.id'), nullable=False),
        sa.Column('service_tier_id', _uuid(), sa.ForeignKey('service_tiers.id'), nullable=True),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(20), nullable=False),
        sa.Column('requirements', sa.Text(), nullable=False),
        sa.Column('payment_gateway', sa.String(20), nullable=False),
        sa.Column('payment_amount', sa.BigInteger(), nullable=False),
        sa.Column('payment_currency', sa.String(3), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False),
        sa.Column('payment_transaction_id', sa.String(100), nullable=True),
        sa.Column('payment_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('assigned_provider_id', _uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('affiliate_code', sa.String(50), nullable=True),
        sa.Column('affiliate_id', sa.String(50), sa.ForeignKey('affiliates.id'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_service_requests_reference_number', 'service_requests', ['reference_number'], unique=True)
    op.create_index('ix_service_requests_status', 'service_requests', ['status'])
    op.create_index('ix_service_requests_payment_status', 'service_requests', ['payment_status'])

    op.create_table(
        'service_request_status_history',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column(
            'service_request_id', _uuid(),
            sa.ForeignKey('service_requests.id', ondelete='CASCADE'),
            nullable=False
        ),
        sa.Column('old_status', sa.String(30), nullable=True),
        sa.Column('new_status', sa.String(30), nullable=False),
        sa.Column('changed_by_user_id', _uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'ix_service_request_status_history_service_request_id',
        'service_request_status_history',
        ['service_request_id']
    )

    # ====================
    # COMMISSIONS
    # ====================
    commission_config = op.create_table(
        'affiliate_commission_config',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('service_category', sa.String(20), nullable=False, unique=True),
        sa.Column('commission_type', sa.String(20), nullable=False),
        sa.Column('commission_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'affiliate_commissions',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('affiliate_id', sa.String(50), sa.ForeignKey('affiliates.id'), nullable=False),
        sa.Column('service_request_id', _uuid(), sa.ForeignKey('service_requests.id'), nullable=False),
        sa.Column('commission_amount', sa.BigInteger(), nullable=False),
        sa.Column('commission_currency', sa.String(3), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('service_amount', sa.BigInteger(), nullable=False),
        sa.Column('service_currency', sa.String(3), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('service_request_id', name='uq_affiliate_commissions_service_request'),
    )
    op.create_index('ix_affiliate_commissions_affiliate_id', 'affiliate_commissions', ['affiliate_id'])
    op.create_index('ix_affiliate_commissions_status', 'affiliate_commissions', ['status'])

    # ====================
    # PAYMENT GATEWAYS
    # ====================
    op.create_table(
        'payment_gateway_config',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('provider', sa.String(20), nullable=False, unique=True),
        sa.Column('api_key', sa.String(255), nullable=False),
        sa.Column('api_secret', sa.Text(), nullable=False),
        sa.Column('webhook_secret', sa.Text(), nullable=True),
        sa.Column('mode', sa.String(10), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('additional_config', sa.JSON(), nullable=True),
        *_timestamps(),
    )

    # ====================
    # SEED DATA
    # ====================
    now = datetime.now(timezone.utc)
    affiliates = sa.table(
        'affiliates',
        sa.column('id', sa.String),
        sa.column('name', sa.String),
        sa.column('description', sa.String),
        sa.column('status', sa.String),
        sa.column('created_at', sa.DateTime(timezone=True)),
        sa.column('updated_at', sa.DateTime(timezone=True)),
    )
    op.bulk_insert(affiliates, [
        {
            'id': 'NO_AFFILIATE_ID',
            'name': 'No Affiliate',
            'description': 'Traffic without a valid affiliate code',
            'status': 'active',
            'created_at': now,
            'updated_at': now,
        },
    ])

    op.bulk_insert(commission_config, [
        {
            'id': uuid.uuid4(),
            'service_category': category,
            'commission_type': 'percentage',
            'commission_value': value,
            'currency': 'INR',
            'is_active': True,
            'created_at': now,
            'updated_at': now,
        }
        for category, value in (('default', 10), ('ca', 15), ('legal', 12))
    ])


def downgrade():
    """Drop all tables in reverse dependency order"""
    op.drop_table('payment_gateway_config')
    op.drop_table('affiliate_commissions')
    op.drop_table('affiliate_commission_config')
    op.drop_table('service_request_status_history')
    op.drop_table('service_requests')
    op.drop_table('service_tiers')
    op.drop_table('services')
    op.drop_table('tracking_events')
    op.drop_table('affiliates')
    op.drop_table('users')
