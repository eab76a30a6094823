"""
Quiet-hours deferral.

Given a candidate delivery instant that falls inside the owner's quiet-hours
window, returns the window's end time of day on the day that window closes.
Both bounds are inclusive, so the returned instant is itself the last quiet
minute rather than the first one outside the window. Candidates outside the
window are returned unchanged. The window is evaluated in the owner's local
timezone and the result is returned as naive UTC, like every instant the
engine stores.
"""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from backend.src.schemas.notifications import PreferenceSnapshot
from backend.src.services.preference_service import PreferenceService
from backend.src.utils.logging_config import get_logger
from backend.src.utils.time_utils import (
    crosses_midnight,
    is_within_window,
    minutes_of_day,
    parse_time_of_day,
)


logger = get_logger("services")


def defer_past_quiet_hours(candidate: datetime, prefs: PreferenceSnapshot) -> datetime:
    """
    Apply a preference set's quiet hours to a naive UTC candidate instant.

    Inside the window, the result is the window's end time of day on the
    same local date, or the next local date when the window crosses
    midnight and the candidate is at or after its start.
    """
    if not prefs.quiet_hours_enabled:
        return candidate

    try:
        zone = ZoneInfo(prefs.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown timezone in preferences, using UTC",
            extra={"timezone": prefs.timezone},
        )
        zone = ZoneInfo("UTC")

    local = candidate.replace(tzinfo=timezone.utc).astimezone(zone)

    start = minutes_of_day(prefs.quiet_hours_start)
    end = minutes_of_day(prefs.quiet_hours_end)
    current = minutes_of_day(local)

    if not is_within_window(current, start, end):
        return candidate

    end_time: time = parse_time_of_day(prefs.quiet_hours_end)
    target_date = local.date()
    if crosses_midnight(start, end) and current >= start:
        target_date = target_date + timedelta(days=1)

    deferred_local = datetime.combine(target_date, end_time, tzinfo=zone)
    return deferred_local.astimezone(timezone.utc).replace(tzinfo=None)


class QuietHoursResolver:
    """Resolve delivery times against an owner's stored preferences."""

    def __init__(self, db: Session, preference_service: PreferenceService = None):
        self.db = db
        self.preferences = preference_service or PreferenceService(db)

    def resolve_delivery_time(self, owner_id: str, candidate: datetime) -> datetime:
        """
        Get the delivery instant for a notification to an owner.

        Args:
            owner_id: Recipient
            candidate: Desired delivery instant (naive UTC)

        Returns:
            candidate, or the end of the quiet-hours window it falls in
        """
        prefs = self.preferences.get_preferences(owner_id)
        resolved = defer_past_quiet_hours(candidate, prefs)
        if resolved != candidate:
            logger.debug(
                "Deferred delivery past quiet hours",
                extra={
                    "owner_id": owner_id,
                    "candidate": candidate.isoformat(),
                    "resolved": resolved.isoformat(),
                },
            )
        return resolved
