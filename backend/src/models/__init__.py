"""
SQLAlchemy models for the study notification engine.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

# All models inherit from this Base class
Base = declarative_base()


# Import all models here so they are registered with Base.metadata
# This is required for Alembic autogenerate to detect models
from backend.src.models.notification_preferences import NotificationPreferences
from backend.src.models.calendar_event import CalendarEvent, CalendarEventType
from backend.src.models.activity import ActivityType, UserActivity, UsageLogEntry
from backend.src.models.notification_queue import (
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    NotificationClass,
    NotificationIcon,
    NotificationQueueItem,
    QueueStatus,
)
from backend.src.models.delivery_log import (
    DeliveryChannel,
    DeliveryLogEntry,
    DeliveryOutcome,
)
from backend.src.models.push_subscription import NotificationSubscription

__all__ = [
    "Base",
    "NotificationPreferences",
    "CalendarEvent",
    "CalendarEventType",
    "ActivityType",
    "UserActivity",
    "UsageLogEntry",
    "NotificationClass",
    "NotificationIcon",
    "NotificationQueueItem",
    "QueueStatus",
    "LIVE_STATUSES",
    "TERMINAL_STATUSES",
    "DeliveryChannel",
    "DeliveryLogEntry",
    "DeliveryOutcome",
    "NotificationSubscription",
]
