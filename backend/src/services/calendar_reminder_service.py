"""
Calendar reminder scheduling.

A calendar event gets at most one live reminder: a calendar_reminder queue
item scheduled ``calendar_reminder_minutes`` before the event start, pushed
past the owner's quiet hours. Rescheduling an event cancels its pending
reminder and schedules a fresh one for the new start.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from backend.src.models import (
    CalendarEvent,
    NotificationClass,
    NotificationIcon,
    NotificationQueueItem,
)
from backend.src.services.exceptions import NotFoundError
from backend.src.services.notification_queue_service import NotificationQueueService
from backend.src.services.preference_service import PreferenceService
from backend.src.services.quiet_hours import defer_past_quiet_hours
from backend.src.utils.logging_config import get_logger
from backend.src.utils.time_utils import Clock


logger = get_logger("services")


class CalendarReminderService:
    """Schedule and reschedule reminders for calendar events."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        preference_service: Optional[PreferenceService] = None,
        queue_service: Optional[NotificationQueueService] = None,
    ):
        self.db = db
        self.clock = clock or Clock()
        self.preferences = preference_service or PreferenceService(db)
        self.queue = queue_service or NotificationQueueService(db, clock=self.clock)

    # ========================================================================
    # Events
    # ========================================================================

    def create_event(self, owner_id: str, **fields) -> CalendarEvent:
        """Persist a calendar event (reminder flags cleared)."""
        event = CalendarEvent(
            owner_id=owner_id,
            reminder_scheduled=False,
            reminder_sent=False,
            **fields,
        )
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)
        return event

    def get_event(self, event_id: int) -> CalendarEvent:
        event = self.db.get(CalendarEvent, event_id)
        if event is None:
            raise NotFoundError("CalendarEvent", event_id)
        return event

    def get_event_by_guid(self, guid: str) -> CalendarEvent:
        """
        Get a calendar event by GUID.

        Raises:
            NotFoundError: If the GUID is malformed or unknown
        """
        try:
            uuid_value = CalendarEvent.parse_guid(guid)
        except ValueError:
            raise NotFoundError("CalendarEvent", guid)

        event = self.db.query(CalendarEvent).filter(CalendarEvent.uuid == uuid_value).first()
        if not event:
            raise NotFoundError("CalendarEvent", guid)
        return event

    # ========================================================================
    # Reminders
    # ========================================================================

    def schedule_reminder(self, event: CalendarEvent) -> Optional[NotificationQueueItem]:
        """
        Enqueue the reminder for an event.

        No-op (returns None) when the owner disabled calendar reminders, when
        a pending or in-progress reminder for the event already exists, or
        when the event has already started.

        Args:
            event: Persisted calendar event

        Returns:
            The enqueued reminder, or None
        """
        prefs = self.preferences.get_preferences(event.owner_id)
        if not prefs.calendar_reminders_enabled:
            logger.debug(
                "Calendar reminders disabled",
                extra={"owner_id": event.owner_id, "event_id": event.id},
            )
            return None

        existing = self.queue.find_live_event_reminder(event.id)
        if existing is not None:
            logger.info(
                "Reminder already scheduled for event",
                extra={"event_id": event.id, "guid": existing.guid},
            )
            return None

        now = self.clock.now()
        if event.start_time <= now:
            logger.debug(
                "Event already started, no reminder",
                extra={"event_id": event.id, "start_time": event.start_time.isoformat()},
            )
            return None

        lead = prefs.calendar_reminder_minutes
        reminder_time = event.start_time - timedelta(minutes=lead)
        scheduled_for = defer_past_quiet_hours(reminder_time, prefs)

        item = NotificationQueueItem(
            owner_id=event.owner_id,
            notification_class=NotificationClass.CALENDAR_REMINDER,
            deliver_via_push=prefs.push_enabled,
            deliver_via_email=prefs.email_enabled,
            deliver_via_inapp=prefs.inapp_enabled,
            title=f"Upcoming: {event.title}",
            message=self._build_message(event, lead),
            action_url="/calendar",
            icon_type=NotificationIcon.REMINDER,
            scheduled_for=scheduled_for,
            related_event_id=event.id,
            subject=event.subject,
            metadata_json={
                "event_type": event.event_type.value,
                "original_reminder_time": reminder_time.isoformat(),
                "minutes_before": lead,
            },
        )
        item = self.queue.enqueue(item)

        event.reminder_scheduled = True
        self.db.commit()

        logger.info(
            "Scheduled calendar reminder",
            extra={
                "event_id": event.id,
                "guid": item.guid,
                "scheduled_for": scheduled_for.isoformat(),
            },
        )
        return item

    def reschedule_reminder(
        self, event_id: int, new_start: datetime
    ) -> Optional[NotificationQueueItem]:
        """
        Move an event and replace its pending reminder.

        The event end moves by the same amount as the start. Repeated calls
        leave exactly one live reminder (or none, per schedule_reminder).

        Args:
            event_id: Calendar event ID
            new_start: New start instant (naive UTC)

        Returns:
            The new reminder, or None

        Raises:
            NotFoundError: If the event does not exist
        """
        event = self.get_event(event_id)

        self.queue.cancel_event_reminders(event.id)

        delta = new_start - event.start_time
        event.start_time = new_start
        event.end_time = event.end_time + delta
        event.reminder_scheduled = False
        event.reminder_sent = False
        self.db.commit()

        logger.info(
            "Rescheduled calendar event",
            extra={"event_id": event.id, "new_start": new_start.isoformat()},
        )
        return self.schedule_reminder(event)

    def _build_message(self, event: CalendarEvent, lead: int) -> str:
        kind = event.event_type.value
        parts = [f"Your {kind} session \"{event.title}\""]
        if event.subject:
            parts.append(f"for {event.subject}")
        parts.append(f"starts in {lead} minutes.")
        return " ".join(parts)


def reminder_event_start(item: NotificationQueueItem) -> Optional[datetime]:
    """
    Event start a calendar reminder was built for.

    Derived from the reminder's ``original_reminder_time`` plus its
    ``minutes_before`` lead. Returns None for reminders without that metadata.
    """
    metadata = item.metadata_json or {}
    original = metadata.get("original_reminder_time")
    minutes_before = metadata.get("minutes_before")
    if original is None or minutes_before is None:
        return None
    return datetime.fromisoformat(original) + timedelta(minutes=minutes_before)
