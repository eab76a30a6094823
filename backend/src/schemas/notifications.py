"""
Pydantic schemas for notification API request/response validation.

Provides data validation and serialization for:
- Notification preferences (snapshot, update)
- Push subscription management (create, remove, response)
- Activity and usage events reported by other features
- Calendar events and reminder rescheduling
- In-app inbox and dispatcher run summaries
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator

from backend.src.models import (
    ActivityType,
    CalendarEventType,
    NotificationClass,
    NotificationIcon,
    QueueStatus,
)
from backend.src.utils.time_utils import parse_time_of_day


ALLOWED_REMINDER_MINUTES = (5, 10, 15)


def _validate_time_of_day(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    # Normalizes "8:00" to "08:00"
    return parse_time_of_day(v).strftime("%H:%M")


def _validate_timezone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown IANA timezone '{v}'")
    return v


def _to_naive_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is not None and v.tzinfo is not None:
        return v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


def _serialize_utc(v: Optional[datetime]) -> Optional[str]:
    return v.isoformat() + "Z" if v else None


# ============================================================================
# Notification Preferences Schemas
# ============================================================================


class PreferenceSnapshot(BaseModel):
    """
    Fully resolved notification preferences for one owner.

    Field defaults are the preferences in effect when an owner has never
    saved any.
    """

    push_enabled: bool = True
    email_enabled: bool = True
    inapp_enabled: bool = True

    calendar_reminders_enabled: bool = True
    calendar_reminder_minutes: int = 15

    hints_enabled: bool = True
    tutor_unused_days: int = Field(30, ge=1)
    tools_unused_days: int = Field(14, ge=1)
    upload_nudge_days: int = Field(7, ge=1)

    quota_warning_enabled: bool = True
    quota_threshold_percentage: int = Field(10, ge=1, le=100)

    quiet_hours_enabled: bool = True
    quiet_hours_start: str = "22:00"
    quiet_hours_end: str = "08:00"
    timezone: str = Field("UTC", description="IANA timezone identifier")

    email_address: Optional[str] = None

    model_config = {"from_attributes": True}


class NotificationPreferencesResponse(PreferenceSnapshot):
    """Response schema for notification preferences."""

    owner_id: str


class NotificationPreferencesUpdate(BaseModel):
    """
    Schema for updating notification preferences.

    All fields are optional; only provided fields are updated.
    """

    push_enabled: Optional[bool] = None
    email_enabled: Optional[bool] = None
    inapp_enabled: Optional[bool] = None

    calendar_reminders_enabled: Optional[bool] = None
    calendar_reminder_minutes: Optional[int] = Field(
        default=None,
        description="Reminder lead time in minutes (5, 10 or 15)"
    )

    hints_enabled: Optional[bool] = None
    tutor_unused_days: Optional[int] = Field(default=None, ge=1, le=365)
    tools_unused_days: Optional[int] = Field(default=None, ge=1, le=365)
    upload_nudge_days: Optional[int] = Field(default=None, ge=1, le=365)

    quota_warning_enabled: Optional[bool] = None
    quota_threshold_percentage: Optional[int] = Field(default=None, ge=1, le=100)

    quiet_hours_enabled: Optional[bool] = None
    quiet_hours_start: Optional[str] = Field(default=None, description="HH:MM (24h)")
    quiet_hours_end: Optional[str] = Field(default=None, description="HH:MM (24h)")
    timezone: Optional[str] = Field(
        default=None,
        description="IANA timezone identifier (e.g., 'America/New_York')"
    )

    email_address: Optional[str] = Field(default=None, max_length=255)

    @field_validator("calendar_reminder_minutes")
    @classmethod
    def validate_reminder_minutes(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in ALLOWED_REMINDER_MINUTES:
            raise ValueError(
                f"calendar_reminder_minutes must be one of {ALLOWED_REMINDER_MINUTES}"
            )
        return v

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def validate_time_of_day(cls, v: Optional[str]) -> Optional[str]:
        return _validate_time_of_day(v)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _validate_timezone(v)

    @field_validator("email_address")
    @classmethod
    def validate_email_address(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and "@" not in v:
            raise ValueError("email_address must contain '@'")
        return v


# ============================================================================
# Push Subscription Schemas
# ============================================================================


class PushSubscriptionCreate(BaseModel):
    """
    Schema for registering a push subscription.

    Required:
        owner_id: Owning user
        endpoint: Push service endpoint URL (must be HTTPS)
        p256dh_key: Base64url-encoded ECDH public key
        auth_key: Base64url-encoded auth secret
    """

    owner_id: str = Field(..., min_length=1, max_length=64)
    endpoint: str = Field(..., description="Push service endpoint URL (must be HTTPS)")
    p256dh_key: str = Field(..., description="Base64url-encoded ECDH public key")
    auth_key: str = Field(..., description="Base64url-encoded auth secret")
    user_agent: Optional[str] = Field(default=None, max_length=255)

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint_https(cls, v: str) -> str:
        """Ensure endpoint uses HTTPS."""
        if not v.startswith("https://"):
            raise ValueError("Push subscription endpoint must use HTTPS")
        return v

    model_config = {
        "json_schema_extra": {
            "example": {
                "owner_id": "user-42",
                "endpoint": "https://fcm.googleapis.com/fcm/send/abc123...",
                "p256dh_key": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0...",
                "auth_key": "tBHItJI5svbpC7htUH8g...",
                "user_agent": "Mozilla/5.0 (Macintosh)",
            }
        }
    }


class PushSubscriptionRemove(BaseModel):
    """Schema for removing a push subscription by endpoint."""

    endpoint: str = Field(..., description="The push service endpoint URL to unsubscribe")


class PushSubscriptionResponse(BaseModel):
    """Response schema for a push subscription."""

    guid: str = Field(..., description="Subscription GUID (sub_xxx)")
    owner_id: str
    endpoint: str
    user_agent: Optional[str] = None
    is_active: bool
    created_at: datetime
    last_used_at: Optional[datetime] = None

    @field_serializer("created_at", "last_used_at")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return _serialize_utc(v)

    model_config = {"from_attributes": True}


# ============================================================================
# Activity & Usage Schemas
# ============================================================================


class ActivityCreate(BaseModel):
    """An activity reported by another feature (tutor chat, study tools, uploads)."""

    owner_id: str = Field(..., min_length=1, max_length=64)
    activity_type: ActivityType
    tutor_id: Optional[str] = Field(default=None, max_length=64)
    tool_type: Optional[str] = Field(default=None, max_length=50)
    subject: Optional[str] = Field(default=None, max_length=100)
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def require_tutor_for_tutor_usage(self) -> "ActivityCreate":
        if self.activity_type == ActivityType.TUTOR_USAGE and not self.tutor_id:
            raise ValueError("tutor_id is required for tutor_usage activity")
        return self


class UsageRecord(BaseModel):
    """Metered usage after a billable action."""

    owner_id: str = Field(..., min_length=1, max_length=64)
    units_used: int = Field(..., ge=0)
    units_remaining: int = Field(..., ge=0)
    usage_kind: str = Field(..., min_length=1, max_length=50)


class UsageRecordResponse(BaseModel):
    """Result of recording usage: the quota warning queued, if any."""

    warning_guid: Optional[str] = Field(
        default=None, description="GUID of the quota warning enqueued (ntf_xxx)"
    )


# ============================================================================
# Calendar Schemas
# ============================================================================


class CalendarEventCreate(BaseModel):
    """Schema for creating a calendar event (schedules its reminder)."""

    owner_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    event_type: CalendarEventType = CalendarEventType.STUDY
    subject: Optional[str] = Field(default=None, max_length=100)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return _to_naive_utc(v)

    @model_validator(mode="after")
    def check_end_after_start(self) -> "CalendarEventCreate":
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class CalendarRescheduleRequest(BaseModel):
    """New start instant for an event; the end moves by the same amount."""

    new_start: datetime

    @field_validator("new_start")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return _to_naive_utc(v)


class CalendarEventResponse(BaseModel):
    """Response schema for a calendar event and its reminder state."""

    guid: str = Field(..., description="Event GUID (evt_xxx)")
    owner_id: str
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    event_type: CalendarEventType
    subject: Optional[str] = None
    reminder_scheduled: bool
    reminder_sent: bool
    reminder_guid: Optional[str] = Field(
        default=None, description="Queue item GUID of the live reminder, if any"
    )

    @field_serializer("start_time", "end_time")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        return _serialize_utc(v)

    model_config = {"from_attributes": True}


# ============================================================================
# Inbox Schemas
# ============================================================================


class InboxItemResponse(BaseModel):
    """Response schema for one delivered in-app notification."""

    guid: str = Field(..., description="Notification GUID (ntf_xxx)")
    notification_class: NotificationClass
    title: str
    message: str
    action_url: Optional[str] = None
    icon_type: NotificationIcon
    tutor_id: Optional[str] = None
    subject: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    status: QueueStatus
    is_read: bool = False
    created_at: datetime
    delivered_at: Optional[datetime] = None

    @field_serializer("created_at", "delivered_at")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return _serialize_utc(v)


class InboxResponse(BaseModel):
    """Response schema for the in-app inbox."""

    items: List[InboxItemResponse]
    unread_count: int = Field(..., ge=0)
    limit: int


class MarkReadResponse(BaseModel):
    recorded: bool = Field(..., description="False when the notification was already read")


# ============================================================================
# Dispatcher Schemas
# ============================================================================


class DispatchSummaryResponse(BaseModel):
    """Counts from one delivery dispatcher cycle."""

    released: int = Field(0, ge=0, description="Stale claims returned to pending")
    fetched: int = Field(0, ge=0)
    claimed: int = Field(0, ge=0)
    delivered: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    lost_race: int = Field(0, ge=0, description="Items claimed by another dispatcher")
