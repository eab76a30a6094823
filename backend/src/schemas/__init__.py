"""
Pydantic schemas for API request/response validation.

This module exports all schema classes for use in API endpoints.
"""

from backend.src.schemas.notifications import (
    PreferenceSnapshot,
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
    PushSubscriptionCreate,
    PushSubscriptionRemove,
    PushSubscriptionResponse,
    ActivityCreate,
    UsageRecord,
    UsageRecordResponse,
    CalendarEventCreate,
    CalendarRescheduleRequest,
    CalendarEventResponse,
    InboxItemResponse,
    InboxResponse,
    MarkReadResponse,
    DispatchSummaryResponse,
)

__all__ = [
    # Preferences
    "PreferenceSnapshot",
    "NotificationPreferencesResponse",
    "NotificationPreferencesUpdate",
    # Push subscriptions
    "PushSubscriptionCreate",
    "PushSubscriptionRemove",
    "PushSubscriptionResponse",
    # Activity & usage
    "ActivityCreate",
    "UsageRecord",
    "UsageRecordResponse",
    # Calendar
    "CalendarEventCreate",
    "CalendarRescheduleRequest",
    "CalendarEventResponse",
    # Inbox & dispatcher
    "InboxItemResponse",
    "InboxResponse",
    "MarkReadResponse",
    "DispatchSummaryResponse",
]
