"""
Activity tracking for behavioral hints.

Other features report what a user did; the behavioral scanner reads the
most recent row per category (and per tutor) to compute disuse.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.src.models import ActivityType, UserActivity
from backend.src.schemas.notifications import ActivityCreate
from backend.src.utils.logging_config import get_logger
from backend.src.utils.time_utils import Clock


logger = get_logger("services")


class ActivityService:
    """Append and query the user activity log."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or Clock()

    def track(self, activity: ActivityCreate) -> UserActivity:
        """
        Append an activity row stamped with the current time.

        Args:
            activity: Validated activity payload

        Returns:
            Created UserActivity
        """
        record = UserActivity(
            owner_id=activity.owner_id,
            activity_type=activity.activity_type,
            tutor_id=activity.tutor_id,
            tool_type=activity.tool_type,
            subject=activity.subject,
            metadata_json=activity.metadata,
            created_at=self.clock.now(),
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)

        logger.debug(
            "Tracked activity",
            extra={
                "owner_id": record.owner_id,
                "activity_type": record.activity_type.value,
                "tutor_id": record.tutor_id,
            },
        )
        return record

    def last_activity_at(
        self,
        owner_id: str,
        activity_type: ActivityType,
        tutor_id: Optional[str] = None,
    ) -> Optional[datetime]:
        """
        Get the instant of the most recent activity of a type.

        Args:
            owner_id: User
            activity_type: Category to look at
            tutor_id: Restrict to one tutor (tutor_usage only)

        Returns:
            Latest created_at, or None if the user never did it
        """
        query = self.db.query(func.max(UserActivity.created_at)).filter(
            UserActivity.owner_id == owner_id,
            UserActivity.activity_type == activity_type,
        )
        if tutor_id is not None:
            query = query.filter(UserActivity.tutor_id == tutor_id)
        return query.scalar()
