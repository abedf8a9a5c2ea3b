"""001 Booking engine - units, holds, orders, read models, rate limit counters

Revision ID: 001_booking_engine
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_booking_engine'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'units',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False, server_default='room'),
        sa.Column('room_id', sa.String(64), nullable=True),
        sa.Column('resource_id', sa.Integer(), nullable=True, unique=True),
        sa.Column('price_per_night', sa.Numeric(10, 2), server_default='0'),
        sa.Column('max_guests', sa.Integer(), server_default='4'),
        sa.Column('bookings', sa.JSON(), nullable=False),
        sa.Column('holds', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index('ix_unit_room', 'units', ['room_id'])

    op.create_table(
        'holds',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('kind', sa.String(20), nullable=False, server_default='room'),
        sa.Column('owner_uid', sa.String(128), nullable=True),
        sa.Column('unit_id', sa.String(64), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('failure_reason', sa.String(50), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('correlation_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('released_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )
    # Expiry sweep and retention purge both filter on status first
    op.create_index('ix_hold_status_expires', 'holds', ['status', 'expires_at'])
    op.create_index('ix_hold_status_updated', 'holds', ['status', 'updated_at'])

    op.create_table(
        'orders',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('owner_uid', sa.String(128), nullable=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('kind_details', sa.JSON(), nullable=True),
        sa.Column('room_id', sa.String(64), nullable=True),
        sa.Column('unit_id', sa.String(64), nullable=True),
        sa.Column('unit_name', sa.String(200), nullable=True),
        sa.Column('resource_id', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('dates', sa.JSON(), nullable=True),
        sa.Column('adults', sa.Integer(), server_default='1'),
        sa.Column('children', sa.Integer(), server_default='0'),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('nightly_rate', sa.Numeric(10, 2), server_default='0'),
        sa.Column('nights', sa.Integer(), server_default='0'),
        sa.Column('total_price', sa.Numeric(10, 2), server_default='0'),
        sa.Column('currency', sa.String(8), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='confirmed'),
        sa.Column('sync_status', sa.String(30), nullable=False, server_default='synced'),
        sa.Column('provider_approval', sa.String(20), server_default='pending'),
        sa.Column('correlation_id', sa.String(64), nullable=True),
        sa.Column('hold_id', sa.String(36), nullable=True),
        sa.Column('sync_retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sync_error', sa.Text(), nullable=True),
        sa.Column('last_sync_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index('ix_orders_owner_uid', 'orders', ['owner_uid'])
    op.create_index('ix_order_sync_status', 'orders', ['sync_status', 'last_sync_attempt_at'])
    op.create_index('ix_order_unit', 'orders', ['unit_id'])

    op.create_table(
        'user_booking_views',
        sa.Column('owner_uid', sa.String(128), primary_key=True),
        sa.Column('booking_id', sa.String(64), primary_key=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('unit_id', sa.String(64), nullable=True),
        sa.Column('unit_name', sa.String(200), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('nights', sa.Integer(), server_default='0'),
        sa.Column('adults', sa.Integer(), server_default='1'),
        sa.Column('children', sa.Integer(), server_default='0'),
        sa.Column('total_price', sa.Numeric(10, 2), server_default='0'),
        sa.Column('currency', sa.String(8), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('sync_status', sa.String(30), nullable=False),
        sa.Column('provider_approval', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )

    op.create_table(
        'user_profiles',
        sa.Column('uid', sa.String(128), primary_key=True),
        sa.Column('lifetime_booking_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_booking_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )

    op.create_table(
        'rate_limit_counters',
        sa.Column('key', sa.String(200), primary_key=True),
        sa.Column('window_start', sa.DateTime(), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index('ix_rate_limit_expires', 'rate_limit_counters', ['expires_at'])


def downgrade():
    op.drop_index('ix_rate_limit_expires', table_name='rate_limit_counters')
    op.drop_table('rate_limit_counters')
    op.drop_table('user_profiles')
    op.drop_table('user_booking_views')
    op.drop_index('ix_order_unit', table_name='orders')
    op.drop_index('ix_order_sync_status', table_name='orders')
    op.drop_index('ix_orders_owner_uid', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_hold_status_updated', table_name='holds')
    op.drop_index('ix_hold_status_expires', table_name='holds')
    op.drop_table('holds')
    op.drop_index('ix_unit_room', table_name='units')
    op.drop_table('units')
