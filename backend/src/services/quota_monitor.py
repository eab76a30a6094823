"""
Quota threshold monitor.

Called after each billable action. Records usage and, when the remaining
share of the owner's quota drops to the configured threshold, enqueues a
quota warning (at most one per owner per dedup window).
"""

import math
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import (
    NotificationClass,
    NotificationIcon,
    NotificationQueueItem,
    UsageLogEntry,
)
from backend.src.services.notification_queue_service import NotificationQueueService
from backend.src.services.preference_service import PreferenceService
from backend.src.services.quiet_hours import defer_past_quiet_hours
from backend.src.utils.logging_config import get_logger
from backend.src.utils.time_utils import Clock


logger = get_logger("services")


URGENCY_TITLES = {
    "critical": "Almost out of study credits",
    "high": "Study credits running low",
    "low": "Study credits update",
}


def remaining_percentage(units_used: int, units_remaining: int) -> float:
    """Remaining share of the quota in percent; an empty quota counts as 0%."""
    total = units_used + units_remaining
    if total <= 0:
        return 0.0
    return units_remaining * 100 / total


def urgency_level(percentage: float) -> str:
    if percentage <= 5:
        return "critical"
    if percentage <= 10:
        return "high"
    return "low"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class QuotaMonitor:
    """Record usage and warn when the remaining quota is low."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        settings: Optional[AppSettings] = None,
        preference_service: Optional[PreferenceService] = None,
        queue_service: Optional[NotificationQueueService] = None,
    ):
        self.db = db
        self.clock = clock or Clock()
        self.settings = settings or get_settings()
        self.preferences = preference_service or PreferenceService(db)
        self.queue = queue_service or NotificationQueueService(db, clock=self.clock)

    def record_usage_and_warn(
        self,
        owner_id: str,
        units_used: int,
        units_remaining: int,
        usage_kind: str,
    ) -> Optional[NotificationQueueItem]:
        """
        Append a usage row and enqueue a quota warning if warranted.

        Args:
            owner_id: User billed for the action
            units_used: Units consumed by the action
            units_remaining: Units left after the action
            usage_kind: What consumed the units

        Returns:
            The enqueued warning, or None
        """
        now = self.clock.now()

        self.db.add(UsageLogEntry(
            owner_id=owner_id,
            units_used=units_used,
            units_remaining=units_remaining,
            usage_kind=usage_kind,
            created_at=now,
        ))
        self.db.commit()

        prefs = self.preferences.get_preferences(owner_id)
        if not prefs.quota_warning_enabled:
            return None

        pct = remaining_percentage(units_used, units_remaining)
        if pct > prefs.quota_threshold_percentage:
            return None

        since = now - timedelta(hours=self.settings.quota_dedup_hours)
        recent = self.queue.find_recent(owner_id, NotificationClass.QUOTA_WARNING, since)
        if recent is not None:
            logger.debug(
                "Quota warning suppressed, one was sent recently",
                extra={"owner_id": owner_id, "guid": recent.guid},
            )
            return None

        level = urgency_level(pct)
        rounded = round_half_up(pct)

        item = NotificationQueueItem(
            owner_id=owner_id,
            notification_class=NotificationClass.QUOTA_WARNING,
            deliver_via_push=prefs.push_enabled,
            deliver_via_email=prefs.email_enabled,
            # Quota warnings always reach the inbox
            deliver_via_inapp=True,
            title=URGENCY_TITLES[level],
            message=(
                f"You have {units_remaining} units left ({rounded}% of your quota). "
                "Upgrade your plan to keep studying without interruption."
            ),
            action_url="/settings?tab=subscription",
            icon_type=NotificationIcon.WARNING,
            scheduled_for=defer_past_quiet_hours(now, prefs),
            metadata_json={
                "units_remaining": units_remaining,
                "percentage_remaining": rounded,
                "urgency_level": level,
                "usage_kind": usage_kind,
            },
        )
        item = self.queue.enqueue(item)

        logger.info(
            "Queued quota warning",
            extra={"owner_id": owner_id, "urgency_level": level, "percentage": rounded},
        )
        return item
