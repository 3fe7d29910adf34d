"""create scheduling tables

Revision ID: 7c2d4e91a0b3
Revises:
Create Date: 2026-10-17 09:12:40.518204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '7c2d4e91a0b3'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

reminder_time = postgresql.ENUM(
    'none', '15_minutes', '30_minutes', '1_hour', '2_hours', '24_hours',
    name='reminder_time', create_type=False
)
booking_status = postgresql.ENUM(
    'pending_payment', 'confirmed', 'cancelled', 'payment_failed',
    name='booking_status', create_type=False
)
calendar_sync_status = postgresql.ENUM(
    'pending', 'synced', 'failed', 'sync_disabled',
    name='calendar_sync_status', create_type=False
)
notification_type = postgresql.ENUM('confirmation', 'reminder', name='notification_type', create_type=False)
notification_channel = postgresql.ENUM('email', 'sms', name='notification_channel', create_type=False)
notification_status = postgresql.ENUM('pending', 'sent', 'failed', name='notification_status', create_type=False)

ENUMS = (
    reminder_time,
    booking_status,
    calendar_sync_status,
    notification_type,
    notification_channel,
    notification_status,
)


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    # 1. Hosts
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('timezone', sa.String(50), nullable=False, server_default='UTC'),
        sa.Column('reservation_lock_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    )

    op.create_table(
        'user_settings',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('reminder_time', reminder_time, nullable=False, server_default='30_minutes'),
        sa.Column('min_notice_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('booking_horizon_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('meeting_duration', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('sms_notifications_enabled', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.CheckConstraint('booking_horizon_days IN (7, 14, 21, 30, 90, 180, 365)', name='ck_user_settings_horizon'),
    )

    # 2. Weekly availability
    op.create_table(
        'availability_rules',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('buffer_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_bookings_per_day', sa.Integer(), nullable=True),
        sa.UniqueConstraint('user_id', 'day_of_week', 'start_time', 'end_time', name='uq_availability_rule_window'),
        sa.CheckConstraint('start_time < end_time', name='ck_availability_rule_order'),
        sa.CheckConstraint('day_of_week BETWEEN 0 AND 6', name='ck_availability_rule_day'),
    )
    op.create_index('ix_availability_rules_user_id', 'availability_rules', ['user_id'])

    # 3. Bookings
    op.create_table(
        'bookings',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('timezone', sa.String(50), nullable=False, server_default='UTC'),
        sa.Column('status', booking_status, nullable=False, server_default='confirmed'),
        sa.Column('customer_name', sa.String(100), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(20), nullable=True),
        sa.Column('external_event_id', sa.String(255), nullable=True),
        sa.Column('calendar_sync_status', calendar_sync_status, nullable=False, server_default='pending'),
        sa.Column('calendar_sync_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.CheckConstraint('end_time > start_time', name='ck_bookings_order'),
    )
    op.create_index('idx_bookings_host_window', 'bookings', ['user_id', 'start_time', 'end_time'])

    # 4. Notifications
    op.create_table(
        'notifications',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('bookings.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('type', notification_type, nullable=False),
        sa.Column('channel', notification_channel, nullable=False, server_default='email'),
        sa.Column('recipient', sa.String(255), nullable=False),
        sa.Column('status', notification_status, nullable=False, server_default='pending'),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=False),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('claim_token', sa.String(36), nullable=True),
        sa.Column('claimed_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint('attempt_count >= 0', name='ck_notifications_attempts'),
    )
    op.create_index('ix_notifications_booking_id', 'notifications', ['booking_id'])
    op.create_index('idx_notifications_due', 'notifications', ['status', 'scheduled_for'])

    # 5. External calendars
    op.create_table(
        'calendar_integrations',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true')),
        sa.Column('is_primary', sa.Boolean(), server_default=sa.text('true')),
        sa.Column('access_token_encrypted', sa.LargeBinary()),
        sa.Column('refresh_token_encrypted', sa.LargeBinary()),
        sa.Column('token_expires_at', sa.DateTime(timezone=True)),
        sa.Column('provider_config', postgresql.JSON(), server_default=sa.text("'{}'::json")),
        sa.Column('last_sync_at', sa.DateTime(timezone=True)),
        sa.Column('last_sync_status', sa.String(20)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    )
    op.create_index('ix_calendar_integrations_user_id', 'calendar_integrations', ['user_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_calendar_integrations_user_id', table_name='calendar_integrations')
    op.drop_table('calendar_integrations')

    op.drop_index('idx_notifications_due', table_name='notifications')
    op.drop_index('ix_notifications_booking_id', table_name='notifications')
    op.drop_table('notifications')

    op.drop_index('idx_bookings_host_window', table_name='bookings')
    op.drop_table('bookings')

    op.drop_index('ix_availability_rules_user_id', table_name='availability_rules')
    op.drop_table('availability_rules')

    op.drop_table('user_settings')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
