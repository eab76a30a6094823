"""
NotificationPreferences model for per-user notification configuration.

One row per owner. Rows are created lazily the first time a user saves
preferences; until then the engine resolves a fixed default set (see
backend.src.services.preference_service.DEFAULT_PREFERENCES).
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from backend.src.models import Base


class NotificationPreferences(Base):
    """
    Notification configuration owned by a single user.

    Attributes:
        owner_id: Opaque user identifier (primary key, upsert target)
        push_enabled / email_enabled / inapp_enabled: Delivery channel toggles
        calendar_reminders_enabled: Whether calendar events produce reminders
        calendar_reminder_minutes: Reminder lead time (5, 10 or 15)
        hints_enabled: Whether the behavioral scanner considers this user
        tutor_unused_days: Days of tutor disuse before a tip
        tools_unused_days: Days of study-tool disuse before a reminder
        upload_nudge_days: Days without an upload before a nudge
        quota_warning_enabled: Whether usage events can produce quota warnings
        quota_threshold_percentage: Remaining-percentage trigger point
        quiet_hours_enabled: Whether delivery is deferred during quiet hours
        quiet_hours_start / quiet_hours_end: HH:MM, may wrap past midnight
        timezone: IANA zone in which quiet hours are evaluated
        email_address: Recipient for the email channel (optional)
    """

    __tablename__ = "notification_preferences"

    owner_id = Column(String(64), primary_key=True)

    # Delivery methods
    push_enabled = Column(Boolean, nullable=False, default=True)
    email_enabled = Column(Boolean, nullable=False, default=True)
    inapp_enabled = Column(Boolean, nullable=False, default=True)

    # Calendar reminders
    calendar_reminders_enabled = Column(Boolean, nullable=False, default=True)
    calendar_reminder_minutes = Column(Integer, nullable=False, default=15)

    # Behavioral hints
    hints_enabled = Column(Boolean, nullable=False, default=True, index=True)
    tutor_unused_days = Column(Integer, nullable=False, default=30)
    tools_unused_days = Column(Integer, nullable=False, default=14)
    upload_nudge_days = Column(Integer, nullable=False, default=7)

    # Quota warning
    quota_warning_enabled = Column(Boolean, nullable=False, default=True)
    quota_threshold_percentage = Column(Integer, nullable=False, default=10)

    # Quiet hours
    quiet_hours_enabled = Column(Boolean, nullable=False, default=True)
    quiet_hours_start = Column(String(5), nullable=False, default="22:00")
    quiet_hours_end = Column(String(5), nullable=False, default="08:00")
    timezone = Column(String(64), nullable=False, default="UTC")

    email_address = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )
