"""
Notifications API endpoints.

Provides endpoints for:
- Notification preferences (get, update)
- In-app inbox (list, mark as read)
- Activity and usage reporting from other features
- Push subscription management (subscribe, unsubscribe)
- Calendar events and reminder rescheduling
- Running a dispatcher cycle on demand (operator tool)

Authentication is handled upstream; the owner is passed explicitly.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.db.database import get_db
from backend.src.models import CalendarEvent
from backend.src.schemas.notifications import (
    ActivityCreate,
    CalendarEventCreate,
    CalendarEventResponse,
    CalendarRescheduleRequest,
    DispatchSummaryResponse,
    InboxItemResponse,
    InboxResponse,
    MarkReadResponse,
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
    PushSubscriptionCreate,
    PushSubscriptionRemove,
    PushSubscriptionResponse,
    UsageRecord,
    UsageRecordResponse,
)
from backend.src.services.delivery_dispatcher import DeliveryDispatcher
from backend.src.services.exceptions import NotFoundError
from backend.src.services.notification_queue_service import NotificationQueueService
from backend.src.services.notification_service import NotificationService
from backend.src.services.preference_service import PreferenceService
from backend.src.services.push_subscription_service import PushSubscriptionService
from backend.src.utils.logging_config import get_logger
from backend.src.utils.time_utils import Clock


logger = get_logger("api")

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"],
)


# ============================================================================
# Dependencies
# ============================================================================


def get_clock() -> Clock:
    return Clock()


def get_preference_service(db: Session = Depends(get_db)) -> PreferenceService:
    return PreferenceService(db=db)


def get_queue_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> NotificationQueueService:
    return NotificationQueueService(db=db, clock=clock)


def get_push_subscription_service(
    db: Session = Depends(get_db),
) -> PushSubscriptionService:
    """Create PushSubscriptionService instance with database session."""
    return PushSubscriptionService(db=db)


def get_notification_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: AppSettings = Depends(get_settings),
) -> NotificationService:
    """Best-effort entry point for producers called on behalf of other features."""
    return NotificationService(db=db, clock=clock, settings=settings)


def get_dispatcher(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: AppSettings = Depends(get_settings),
) -> DeliveryDispatcher:
    """Create a DeliveryDispatcher with the default channel senders."""
    return DeliveryDispatcher(db=db, clock=clock, settings=settings)


def _event_response(
    event: CalendarEvent, queue: NotificationQueueService
) -> CalendarEventResponse:
    response = CalendarEventResponse.model_validate(event)
    reminder = queue.find_live_event_reminder(event.id)
    response.reminder_guid = reminder.guid if reminder else None
    return response


# ============================================================================
# Preferences Endpoints
# ============================================================================


@router.get(
    "/preferences/{owner_id}",
    response_model=NotificationPreferencesResponse,
    summary="Get notification preferences",
)
async def get_notification_preferences(
    owner_id: str,
    service: PreferenceService = Depends(get_preference_service),
):
    """
    Get the effective notification preferences for an owner.

    Owners who never saved preferences get the default set.
    """
    prefs = service.get_preferences(owner_id)
    return NotificationPreferencesResponse(owner_id=owner_id, **prefs.model_dump())


@router.put(
    "/preferences/{owner_id}",
    response_model=NotificationPreferencesResponse,
    summary="Update notification preferences",
)
async def update_notification_preferences(
    owner_id: str,
    body: NotificationPreferencesUpdate,
    service: PreferenceService = Depends(get_preference_service),
):
    """Partially update preferences. Only provided fields are changed."""
    prefs = service.update_preferences(owner_id, body)
    return NotificationPreferencesResponse(owner_id=owner_id, **prefs.model_dump())


# ============================================================================
# Inbox Endpoints
# ============================================================================


@router.get(
    "/inbox/{owner_id}",
    response_model=InboxResponse,
    summary="List delivered in-app notifications",
)
async def list_inbox(
    owner_id: str,
    limit: int = Query(50, ge=1, le=200, description="Maximum items to return"),
    queue: NotificationQueueService = Depends(get_queue_service),
):
    """Delivered in-app notifications for an owner, newest first."""
    entries = queue.list_in_app(owner_id, limit)
    items = [
        InboxItemResponse(
            guid=item.guid,
            notification_class=item.notification_class,
            title=item.title,
            message=item.message,
            action_url=item.action_url,
            icon_type=item.icon_type,
            tutor_id=item.tutor_id,
            subject=item.subject,
            metadata=item.metadata_json,
            status=item.status,
            is_read=is_read,
            created_at=item.created_at,
            delivered_at=item.delivered_at,
        )
        for item, is_read in entries
    ]
    return InboxResponse(
        items=items,
        unread_count=queue.count_unread(owner_id),
        limit=limit,
    )


@router.post(
    "/{guid}/read",
    response_model=MarkReadResponse,
    summary="Mark notification as read",
)
async def mark_notification_read(
    guid: str,
    queue: NotificationQueueService = Depends(get_queue_service),
):
    """
    Mark a single notification as read. Idempotent: marking an already-read
    notification records nothing new.
    """
    try:
        recorded = queue.mark_read(guid)
    except NotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        ) from err
    return MarkReadResponse(recorded=recorded)


# ============================================================================
# Activity & Usage Endpoints
# ============================================================================


@router.post(
    "/activity",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Report a user activity",
)
async def track_activity(
    body: ActivityCreate,
    notifications: NotificationService = Depends(get_notification_service),
):
    """Append an activity row used by behavioral hints (best-effort)."""
    notifications.track_activity(body)


@router.post(
    "/usage",
    response_model=UsageRecordResponse,
    summary="Report metered usage",
)
async def record_usage(
    body: UsageRecord,
    notifications: NotificationService = Depends(get_notification_service),
):
    """
    Record usage and enqueue a quota warning when the quota runs low.

    A notification engine failure is logged and reported as no warning.
    """
    item = notifications.record_usage_and_warn(
        body.owner_id, body.units_used, body.units_remaining, body.usage_kind
    )
    return UsageRecordResponse(warning_guid=item.guid if item else None)


# ============================================================================
# Push Subscription Endpoints
# ============================================================================


@router.post(
    "/subscriptions",
    response_model=PushSubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a push subscription",
)
async def create_push_subscription(
    body: PushSubscriptionCreate,
    service: PushSubscriptionService = Depends(get_push_subscription_service),
):
    """
    Register a Web Push subscription for a device.

    If a subscription with the same endpoint already exists, it is re-keyed
    and re-activated.
    """
    subscription = service.register(body)
    return PushSubscriptionResponse.model_validate(subscription)


@router.delete(
    "/subscriptions",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a push subscription",
)
async def remove_push_subscription(
    body: PushSubscriptionRemove,
    service: PushSubscriptionService = Depends(get_push_subscription_service),
):
    """Deactivate the push subscription matching the given endpoint."""
    try:
        service.deactivate(body.endpoint)
    except NotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Subscription not found",
        ) from err


# ============================================================================
# Calendar Endpoints
# ============================================================================


@router.post(
    "/calendar/events",
    response_model=CalendarEventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a calendar event and schedule its reminder",
)
async def create_calendar_event(
    body: CalendarEventCreate,
    notifications: NotificationService = Depends(get_notification_service),
):
    """
    Persist the event, then schedule its reminder.

    The event is kept even if scheduling fails; the response then carries
    no reminder_guid.
    """
    event = notifications.calendar.create_event(
        owner_id=body.owner_id,
        title=body.title,
        description=body.description,
        start_time=body.start_time,
        end_time=body.end_time,
        event_type=body.event_type,
        subject=body.subject,
    )
    notifications.schedule_calendar_reminder(event)
    return _event_response(event, notifications.queue)


@router.post(
    "/calendar/events/{guid}/reschedule",
    response_model=CalendarEventResponse,
    summary="Move a calendar event and replace its reminder",
)
async def reschedule_calendar_event(
    guid: str,
    body: CalendarRescheduleRequest,
    notifications: NotificationService = Depends(get_notification_service),
):
    """
    Move an event to a new start (duration preserved). Any pending reminder
    is cancelled and a new one scheduled. Safe to repeat.
    """
    try:
        event = notifications.calendar.get_event_by_guid(guid)
    except NotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Calendar event not found",
        ) from err
    notifications.reschedule_calendar_reminder(event.id, body.new_start)
    return _event_response(event, notifications.queue)


# ============================================================================
# Dispatcher Endpoint
# ============================================================================


@router.post(
    "/dispatch/run",
    response_model=DispatchSummaryResponse,
    summary="Run one delivery dispatcher cycle",
    description="Delivers every due notification now instead of waiting for "
                "the next scheduled cycle. Safe to call while the background "
                "dispatcher is running.",
)
async def run_dispatch_cycle(
    dispatcher: DeliveryDispatcher = Depends(get_dispatcher),
):
    summary = await dispatcher.run_cycle()
    logger.info("Manual dispatch cycle", extra=summary.to_dict())
    return DispatchSummaryResponse(**summary.to_dict())
