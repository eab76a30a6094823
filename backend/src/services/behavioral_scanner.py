"""
Behavioral trigger scanner.

Periodically walks every owner with behavioral hints enabled and enqueues
nudges for prolonged disuse:

- tutor disuse: one behavioral_tip per known tutor not used for
  ``tutor_unused_days``
- tool disuse: a tool_reminder after ``tools_unused_days`` without any
  study-tool activity
- upload disuse: an upload_nudge after ``upload_nudge_days`` without an upload

A nudge is suppressed if a non-cancelled item of the same class for the
same (owner, tutor) was created within ``behavioral_dedup_hours``. A failure
for one owner is logged and the scan moves on to the next.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import (
    ActivityType,
    NotificationClass,
    NotificationIcon,
    NotificationQueueItem,
)
from backend.src.schemas.notifications import PreferenceSnapshot
from backend.src.services.activity_service import ActivityService
from backend.src.services.notification_queue_service import NotificationQueueService
from backend.src.services.preference_service import PreferenceService
from backend.src.services.quiet_hours import defer_past_quiet_hours
from backend.src.utils.logging_config import get_logger
from backend.src.utils.time_utils import Clock


logger = get_logger("jobs")


# Days reported for an activity the owner never performed
NEVER_USED_DAYS = 999

# Templates containing {days} are only used when the activity happened before
TUTOR_TIP_TEMPLATES = [
    "Ready to explore {tutor}? Your personalised tutor is waiting to help you master new concepts.",
    "{tutor} hasn't been visited in {days} days. Why not dive back in?",
    "{tutor} has fresh insights for you. Perfect time for a quick learning session.",
    "Missing {tutor}? Your tutor is ready to help with any challenging topic.",
]

TOOL_REMINDER_TEMPLATES = [
    "Ready to boost your learning? Try creating some flashcards or taking a quiz.",
    "Your study tools are missing you. Time to write some notes or practise with flashcards.",
    "{days} days without using study tools? Let's get back on track with some active learning.",
    "Quick study session? Generate a quiz or review your notes to keep your momentum going.",
]

UPLOAD_NUDGE_TEMPLATES = [
    "Got new study materials? Upload them to unlock personalised learning.",
    "Time to upload some resources. The more you share, the better your tutors can help.",
    "{days} days since your last upload. Ready to add fresh content to your library?",
    "Upload notes, textbooks or past papers to get study sessions tailored to you.",
]


def days_since(last: Optional[datetime], now: datetime) -> int:
    """Whole days elapsed since an instant (NEVER_USED_DAYS if None)."""
    if last is None:
        return NEVER_USED_DAYS
    return max(0, (now - last).days)


@dataclass
class ScanSummary:
    """Counts from one scanner cycle."""

    owners_scanned: int = 0
    enqueued: int = 0
    suppressed: int = 0
    errors: int = 0


class BehavioralScanner:
    """
    Scan activity logs and enqueue behavioral nudges.

    Usage:
        >>> scanner = BehavioralScanner(db)
        >>> summary = scanner.scan()
        >>> print(summary.enqueued)
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        settings: Optional[AppSettings] = None,
        rng: Optional[random.Random] = None,
        preference_service: Optional[PreferenceService] = None,
        queue_service: Optional[NotificationQueueService] = None,
        activity_service: Optional[ActivityService] = None,
    ):
        """
        Initialize the scanner.

        Args:
            db: SQLAlchemy database session
            clock: Time source (system clock if None)
            settings: Application settings (cached settings if None)
            rng: Random source used to pick message templates
        """
        self.db = db
        self.clock = clock or Clock()
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()
        self.preferences = preference_service or PreferenceService(db)
        self.queue = queue_service or NotificationQueueService(db, clock=self.clock)
        self.activity = activity_service or ActivityService(db, clock=self.clock)

    def scan(self) -> ScanSummary:
        """Run one full scan over every hint recipient."""
        summary = ScanSummary()

        for owner_id, prefs in self.preferences.list_hint_recipients():
            summary.owners_scanned += 1
            try:
                self.scan_owner(owner_id, prefs, summary)
            except Exception as e:
                self.db.rollback()
                summary.errors += 1
                logger.error(
                    f"Behavioral scan failed for owner: {e}",
                    exc_info=True,
                    extra={"owner_id": owner_id},
                )

        logger.info(
            "Behavioral scan complete",
            extra={
                "owners_scanned": summary.owners_scanned,
                "enqueued": summary.enqueued,
                "suppressed": summary.suppressed,
                "errors": summary.errors,
            },
        )
        return summary

    def scan_owner(
        self, owner_id: str, prefs: PreferenceSnapshot, summary: ScanSummary
    ) -> None:
        now = self.clock.now()

        # Tutor disuse
        for tutor_id, tutor_name in self.settings.known_tutors_map.items():
            last = self.activity.last_activity_at(
                owner_id, ActivityType.TUTOR_USAGE, tutor_id=tutor_id
            )
            days = days_since(last, now)
            if days < prefs.tutor_unused_days:
                continue
            self._enqueue_nudge(
                owner_id,
                prefs,
                summary,
                notification_class=NotificationClass.BEHAVIORAL_TIP,
                tutor_id=tutor_id,
                title=f"{tutor_name} Tip",
                message=self._pick(TUTOR_TIP_TEMPLATES, days, tutor=tutor_name),
                action_url=f"/tutors/{tutor_id}",
                icon_type=NotificationIcon.TIP,
                metadata={"tutor_id": tutor_id, "days_since_last_use": days},
            )

        # Study tool disuse
        days = days_since(
            self.activity.last_activity_at(owner_id, ActivityType.TOOL_USAGE), now
        )
        if days >= prefs.tools_unused_days:
            self._enqueue_nudge(
                owner_id,
                prefs,
                summary,
                notification_class=NotificationClass.TOOL_REMINDER,
                title="Study Tools Reminder",
                message=self._pick(TOOL_REMINDER_TEMPLATES, days),
                action_url="/workspace",
                icon_type=NotificationIcon.REMINDER,
                metadata={"days_since_last_use": days},
            )

        # Upload disuse
        days = days_since(
            self.activity.last_activity_at(owner_id, ActivityType.UPLOAD), now
        )
        if days >= prefs.upload_nudge_days:
            self._enqueue_nudge(
                owner_id,
                prefs,
                summary,
                notification_class=NotificationClass.UPLOAD_NUDGE,
                title="Resource Upload Reminder",
                message=self._pick(UPLOAD_NUDGE_TEMPLATES, days),
                action_url="/workspace?tab=resources",
                icon_type=NotificationIcon.INFO,
                metadata={"days_since_last_upload": days},
            )

    def _pick(self, templates: List[str], days: int, **values) -> str:
        if days == NEVER_USED_DAYS:
            templates = [t for t in templates if "{days}" not in t]
        return self.rng.choice(templates).format(days=days, **values)

    def _enqueue_nudge(
        self,
        owner_id: str,
        prefs: PreferenceSnapshot,
        summary: ScanSummary,
        notification_class: NotificationClass,
        title: str,
        message: str,
        action_url: str,
        icon_type: NotificationIcon,
        metadata: Dict,
        tutor_id: Optional[str] = None,
    ) -> Optional[NotificationQueueItem]:
        now = self.clock.now()
        since = now - timedelta(hours=self.settings.behavioral_dedup_hours)

        recent = self.queue.find_recent(
            owner_id,
            notification_class,
            since,
            tutor_id=tutor_id,
            exclude_cancelled=True,
        )
        if recent is not None:
            summary.suppressed += 1
            logger.debug(
                "Behavioral nudge suppressed",
                extra={
                    "owner_id": owner_id,
                    "notification_class": notification_class.value,
                    "tutor_id": tutor_id,
                },
            )
            return None

        item = self.queue.enqueue(NotificationQueueItem(
            owner_id=owner_id,
            notification_class=notification_class,
            deliver_via_push=prefs.push_enabled,
            deliver_via_email=prefs.email_enabled,
            deliver_via_inapp=prefs.inapp_enabled,
            title=title,
            message=message,
            action_url=action_url,
            icon_type=icon_type,
            scheduled_for=defer_past_quiet_hours(now, prefs),
            tutor_id=tutor_id,
            metadata_json=metadata,
        ))
        summary.enqueued += 1
        return item


def build_scan_cycle(
    session_factory: Callable[[], Session],
    clock: Optional[Clock] = None,
    settings: Optional[AppSettings] = None,
) -> Callable[[], ScanSummary]:
    """
    Build a blocking scan cycle that owns its own session.

    After the scan, terminal queue items older than the retention period
    are purged. Meant to be run off the event loop (asyncio.to_thread).
    """
    settings = settings or get_settings()

    def cycle() -> ScanSummary:
        db = session_factory()
        try:
            summary = BehavioralScanner(db, clock=clock, settings=settings).scan()
            NotificationQueueService(db, clock=clock).purge_terminal(
                settings.queue_retention_days
            )
            return summary
        finally:
            db.close()

    return cycle
