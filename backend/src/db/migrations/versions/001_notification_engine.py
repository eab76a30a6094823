"""Notification engine schema

Revision ID: 001_notification_engine
Revises:
Create Date: 2026-10-18

Creates the tables for notification scheduling and delivery:
- notification_preferences: one row per owner, created lazily
- calendar_events: study calendar entries with reminder tracking flags
- user_activity_tracking / token_usage_log: append-only activity and usage
- notifications_queue: durable queue of scheduled notifications
- notification_delivery_log: per-channel delivery attempts and opens
- notification_subscriptions: Web Push endpoints
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '001_notification_engine'
down_revision = None
branch_labels = None
depends_on = None


def _uuid_column() -> sa.Column:
    # Native UUID on PostgreSQL, CHAR(32) elsewhere
    return sa.Column('uuid', sa.Uuid(), nullable=False, unique=True)


def _json_type(dialect: str):
    if dialect == 'postgresql':
        return postgresql.JSONB()
    return sa.JSON()


def _now(dialect: str):
    if dialect == 'postgresql':
        return sa.text('NOW()')
    return sa.text("datetime('now')")


def upgrade() -> None:
    """
    Create the notification engine tables.

    Enum-like columns are stored as short strings (non-native enums), so
    adding a value never needs a type migration.
    """
    bind = op.get_bind()
    dialect = bind.dialect.name

    # =========================================================================
    # notification_preferences
    # =========================================================================
    op.create_table(
        'notification_preferences',
        sa.Column('owner_id', sa.String(64), primary_key=True),
        sa.Column('push_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('email_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('inapp_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('calendar_reminders_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('calendar_reminder_minutes', sa.Integer(), nullable=False, server_default='15'),
        sa.Column('hints_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('tutor_unused_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('tools_unused_days', sa.Integer(), nullable=False, server_default='14'),
        sa.Column('upload_nudge_days', sa.Integer(), nullable=False, server_default='7'),
        sa.Column('quota_warning_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('quota_threshold_percentage', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('quiet_hours_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('quiet_hours_start', sa.String(5), nullable=False, server_default='22:00'),
        sa.Column('quiet_hours_end', sa.String(5), nullable=False, server_default='08:00'),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='UTC'),
        sa.Column('email_address', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=_now(dialect)),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=_now(dialect)),
    )
    op.create_index(
        'ix_notification_preferences_hints_enabled',
        'notification_preferences',
        ['hints_enabled'],
    )

    # =========================================================================
    # calendar_events
    # =========================================================================
    op.create_table(
        'calendar_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _uuid_column(),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('event_type', sa.String(20), nullable=False, server_default='study'),
        sa.Column('subject', sa.String(100), nullable=True),
        sa.Column('reminder_scheduled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reminder_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=_now(dialect)),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=_now(dialect)),
    )
    op.create_index('ix_calendar_events_uuid', 'calendar_events', ['uuid'])
    op.create_index('ix_calendar_events_owner_id', 'calendar_events', ['owner_id'])
    op.create_index('ix_calendar_events_start_time', 'calendar_events', ['start_time'])

    # =========================================================================
    # Activity and usage logs (append-only)
    # =========================================================================
    op.create_table(
        'user_activity_tracking',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('activity_type', sa.String(20), nullable=False),
        sa.Column('tutor_id', sa.String(64), nullable=True),
        sa.Column('tool_type', sa.String(50), nullable=True),
        sa.Column('subject', sa.String(100), nullable=True),
        sa.Column('metadata', _json_type(dialect), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=_now(dialect)),
    )
    op.create_index(
        'ix_user_activity_owner_type_created',
        'user_activity_tracking',
        ['owner_id', 'activity_type', 'created_at'],
    )

    op.create_table(
        'token_usage_log',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('units_used', sa.Integer(), nullable=False),
        sa.Column('units_remaining', sa.Integer(), nullable=False),
        sa.Column('usage_kind', sa.String(50), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=_now(dialect)),
    )
    op.create_index('ix_token_usage_log_owner_id', 'token_usage_log', ['owner_id'])

    # =========================================================================
    # notifications_queue
    # =========================================================================
    op.create_table(
        'notifications_queue',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _uuid_column(),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('notification_class', sa.String(30), nullable=False),
        sa.Column('deliver_via_push', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deliver_via_email', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deliver_via_inapp', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.String(1000), nullable=False),
        sa.Column('action_url', sa.String(500), nullable=True),
        sa.Column('icon_type', sa.String(20), nullable=False, server_default='info'),
        sa.Column('scheduled_for', sa.DateTime(), nullable=False),
        sa.Column(
            'related_event_id',
            sa.Integer(),
            sa.ForeignKey(
                'calendar_events.id',
                name='fk_notifications_queue_related_event_id',
                ondelete='SET NULL',
            ),
            nullable=True,
        ),
        sa.Column('tutor_id', sa.String(64), nullable=True),
        sa.Column('subject', sa.String(100), nullable=True),
        sa.Column('metadata', _json_type(dialect), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=_now(dialect)),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=_now(dialect)),
    )
    op.create_index('ix_notifications_queue_uuid', 'notifications_queue', ['uuid'])
    op.create_index('ix_notifications_queue_owner_id', 'notifications_queue', ['owner_id'])
    op.create_index(
        'ix_notifications_queue_related_event_id',
        'notifications_queue',
        ['related_event_id'],
    )
    op.create_index(
        'ix_notifications_queue_status_scheduled',
        'notifications_queue',
        ['status', 'scheduled_for'],
    )
    op.create_index(
        'ix_notifications_queue_owner_class_created',
        'notifications_queue',
        ['owner_id', 'notification_class', 'created_at'],
    )

    # =========================================================================
    # notification_delivery_log
    # =========================================================================
    op.create_table(
        'notification_delivery_log',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'notification_id',
            sa.Integer(),
            sa.ForeignKey(
                'notifications_queue.id',
                name='fk_notification_delivery_log_notification_id',
                ondelete='CASCADE',
            ),
            nullable=False,
        ),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('channel', sa.String(10), nullable=False),
        sa.Column('outcome', sa.String(10), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=_now(dialect)),
    )
    op.create_index(
        'ix_notification_delivery_log_notification_id',
        'notification_delivery_log',
        ['notification_id'],
    )
    op.create_index(
        'ix_notification_delivery_log_owner_id',
        'notification_delivery_log',
        ['owner_id'],
    )

    # =========================================================================
    # notification_subscriptions
    # =========================================================================
    op.create_table(
        'notification_subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _uuid_column(),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('endpoint', sa.String(1024), nullable=False, unique=True),
        sa.Column('p256dh_key', sa.String(255), nullable=False),
        sa.Column('auth_key', sa.String(255), nullable=False),
        sa.Column('user_agent', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=_now(dialect)),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=_now(dialect)),
    )
    op.create_index('ix_notification_subscriptions_uuid', 'notification_subscriptions', ['uuid'])
    op.create_index(
        'ix_notification_subscriptions_owner_id',
        'notification_subscriptions',
        ['owner_id'],
    )


def downgrade() -> None:
    """Drop all notification engine tables."""
    op.drop_table('notification_subscriptions')
    op.drop_table('notification_delivery_log')
    op.drop_table('notifications_queue')
    op.drop_table('token_usage_log')
    op.drop_table('user_activity_tracking')
    op.drop_table('calendar_events')
    op.drop_table('notification_preferences')
