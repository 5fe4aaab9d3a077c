"""Initial migration

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create restaurants table
    op.create_table(
        'restaurants',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('timezone', sa.String(50), nullable=False, server_default='UTC'),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create tables table
    op.create_table(
        'tables',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('restaurant_id', sa.Integer(), sa.ForeignKey('restaurants.id'), nullable=False),
        sa.Column('table_number', sa.String(20), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='available'),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create reservation_settings table (restaurant_id NULL = global row)
    op.create_table(
        'reservation_settings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('restaurant_id', sa.Integer(), sa.ForeignKey('restaurants.id'), nullable=True),
        sa.Column('cancellation_window_hours', sa.Integer(), nullable=False, server_default='12'),
        sa.Column('reservation_duration_minutes', sa.Integer(), nullable=False, server_default='90'),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create reservations table
    op.create_table(
        'reservations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('restaurant_id', sa.Integer(), sa.ForeignKey('restaurants.id'), nullable=False),
        sa.Column('table_id', sa.Integer(), sa.ForeignKey('tables.id'), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(20)),
        sa.Column('customer_email', sa.String(255)),
        sa.Column('party_size', sa.Integer(), nullable=False),
        sa.Column('reservation_date', sa.Date(), nullable=False),
        sa.Column('reservation_time', sa.Time(), nullable=False),
        sa.Column('special_requests', sa.Text()),
        sa.Column('has_pre_order', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(20), nullable=False, server_default='tentative'),
        sa.Column('payment_id', sa.String(255), nullable=True, unique=True),
        sa.Column('confirmed_at', sa.DateTime()),
        sa.Column('expires_at', sa.DateTime()),
        sa.Column('arrived_at', sa.DateTime()),
        sa.Column('confirmation_sent', sa.DateTime()),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create processed_webhook_events table
    op.create_table(
        'processed_webhook_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('event_type', sa.String(100)),
        sa.Column('received_at', sa.DateTime(), default=sa.func.now()),
    )

    # Create indexes
    op.create_index('ix_tables_restaurant_id', 'tables', ['restaurant_id'])
    op.create_index('ix_reservation_settings_restaurant_id', 'reservation_settings', ['restaurant_id'])
    op.create_index('ix_reservations_restaurant_id', 'reservations', ['restaurant_id'])
    op.create_index('ix_reservations_table_date', 'reservations', ['table_id', 'reservation_date'])
    op.create_index('ix_reservations_status_expires_at', 'reservations', ['status', 'expires_at'])


def downgrade() -> None:
    op.drop_table('processed_webhook_events')
    op.drop_table('reservations')
    op.drop_table('reservation_settings')
    op.drop_table('tables')
    op.drop_table('restaurants')
