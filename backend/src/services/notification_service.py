"""
Notification service: the entry point other features call.

Wraps the engine's components behind best-effort operations. A failure in
the notification engine must never break the calling feature (saving a
calendar event, answering a chat message), so every operation here logs
the error, rolls back the session, and returns a neutral value instead of
raising.
"""

from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import CalendarEvent, NotificationQueueItem, UserActivity
from backend.src.schemas.notifications import ActivityCreate
from backend.src.services.activity_service import ActivityService
from backend.src.services.calendar_reminder_service import CalendarReminderService
from backend.src.services.notification_queue_service import NotificationQueueService
from backend.src.services.preference_service import PreferenceService
from backend.src.services.quiet_hours import QuietHoursResolver
from backend.src.services.quota_monitor import QuotaMonitor
from backend.src.utils.logging_config import get_logger
from backend.src.utils.time_utils import Clock


logger = get_logger("services")

T = TypeVar("T")


class NotificationService:
    """
    Best-effort facade over the notification engine.

    Usage:
        >>> service = NotificationService(db)
        >>> service.schedule_calendar_reminder(event)
        >>> service.record_usage_and_warn("user-42", 120, 300, "chat_message")
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        settings: Optional[AppSettings] = None,
    ):
        """
        Initialize notification service.

        Args:
            db: SQLAlchemy database session
            clock: Time source (system clock if None)
            settings: Application settings (cached settings if None)
        """
        self.db = db
        self.clock = clock or Clock()
        self.settings = settings or get_settings()

        self.preferences = PreferenceService(db)
        self.queue = NotificationQueueService(db, clock=self.clock)
        self.quiet_hours = QuietHoursResolver(db, preference_service=self.preferences)
        self.calendar = CalendarReminderService(
            db,
            clock=self.clock,
            preference_service=self.preferences,
            queue_service=self.queue,
        )
        self.quota = QuotaMonitor(
            db,
            clock=self.clock,
            settings=self.settings,
            preference_service=self.preferences,
            queue_service=self.queue,
        )
        self.activity = ActivityService(db, clock=self.clock)

    def _best_effort(
        self,
        operation: str,
        fn: Callable[[], T],
        default: T,
        **context: Any,
    ) -> T:
        try:
            return fn()
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Notification operation {operation} failed: {e}",
                exc_info=True,
                extra={"operation": operation, **context},
            )
            return default

    # ========================================================================
    # Producers
    # ========================================================================

    def schedule_calendar_reminder(
        self, event: CalendarEvent
    ) -> Optional[NotificationQueueItem]:
        return self._best_effort(
            "schedule_calendar_reminder",
            lambda: self.calendar.schedule_reminder(event),
            None,
            event_id=event.id,
        )

    def reschedule_calendar_reminder(
        self, event_id: int, new_start: datetime
    ) -> Optional[NotificationQueueItem]:
        return self._best_effort(
            "reschedule_calendar_reminder",
            lambda: self.calendar.reschedule_reminder(event_id, new_start),
            None,
            event_id=event_id,
        )

    def record_usage_and_warn(
        self,
        owner_id: str,
        units_used: int,
        units_remaining: int,
        usage_kind: str,
    ) -> Optional[NotificationQueueItem]:
        return self._best_effort(
            "record_usage_and_warn",
            lambda: self.quota.record_usage_and_warn(
                owner_id, units_used, units_remaining, usage_kind
            ),
            None,
            owner_id=owner_id,
        )

    def track_activity(self, activity: ActivityCreate) -> Optional[UserActivity]:
        return self._best_effort(
            "track_activity",
            lambda: self.activity.track(activity),
            None,
            owner_id=activity.owner_id,
        )

    def resolve_delivery_time(self, owner_id: str, candidate: datetime) -> datetime:
        """Quiet-hours adjusted delivery time (candidate itself on failure)."""
        return self._best_effort(
            "resolve_delivery_time",
            lambda: self.quiet_hours.resolve_delivery_time(owner_id, candidate),
            candidate,
            owner_id=owner_id,
        )

    # ========================================================================
    # Inbox
    # ========================================================================

    def list_in_app_notifications(
        self, owner_id: str, limit: int = 50
    ) -> List[Tuple[NotificationQueueItem, bool]]:
        """Delivered in-app notifications with their read flag, newest first."""
        return self._best_effort(
            "list_in_app_notifications",
            lambda: self.queue.list_in_app(owner_id, limit),
            [],
            owner_id=owner_id,
        )

    def mark_read(self, notification_guid: str) -> bool:
        """Record an opened row for an in-app notification (at most once)."""
        return self._best_effort(
            "mark_read",
            lambda: self.queue.mark_read(notification_guid),
            False,
            guid=notification_guid,
        )
