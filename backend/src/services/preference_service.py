"""
Preference resolution for the notification engine.

Preferences are stored one row per owner and created lazily. Every reader
goes through get_preferences(), which returns the default set when no row
exists, so a missing row is never an error.
"""

from typing import Any, Dict, List, Tuple, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.src.models import NotificationPreferences, UserActivity
from backend.src.schemas.notifications import (
    NotificationPreferencesUpdate,
    PreferenceSnapshot,
)
from backend.src.services.exceptions import ValidationError
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


# Preferences in effect for an owner with no stored row
DEFAULT_PREFERENCES: Dict[str, Any] = PreferenceSnapshot().model_dump()


class PreferenceService:
    """Read and upsert per-owner notification preferences."""

    def __init__(self, db: Session):
        self.db = db

    def get_default_preferences(self) -> PreferenceSnapshot:
        return PreferenceSnapshot(**DEFAULT_PREFERENCES)

    def get_preferences(self, owner_id: str) -> PreferenceSnapshot:
        """
        Get the effective preferences for an owner.

        Args:
            owner_id: Owner identifier

        Returns:
            Stored preferences, or the default set if the owner has none
        """
        record = self.db.get(NotificationPreferences, owner_id)
        if record is None:
            return self.get_default_preferences()
        return PreferenceSnapshot.model_validate(record)

    def update_preferences(
        self,
        owner_id: str,
        updates: Union[NotificationPreferencesUpdate, Dict[str, Any]],
    ) -> PreferenceSnapshot:
        """
        Update preferences for an owner (partial merge, upsert).

        Only known keys with non-None values are applied. The first update
        for an owner creates the row from the default set.

        Args:
            owner_id: Owner identifier
            updates: Update schema or dict of preference keys

        Returns:
            The preferences after the update

        Raises:
            ValidationError: If a value fails validation
        """
        if isinstance(updates, dict):
            try:
                updates = NotificationPreferencesUpdate(**updates)
            except PydanticValidationError as e:
                first = e.errors()[0]
                field = ".".join(str(p) for p in first.get("loc", ()))
                raise ValidationError(first.get("msg", str(e)), field=field or None)

        changes = updates.model_dump(exclude_none=True)

        record = self.db.get(NotificationPreferences, owner_id)
        if record is None:
            record = NotificationPreferences(owner_id=owner_id, **DEFAULT_PREFERENCES)
            self.db.add(record)

        for key, value in changes.items():
            setattr(record, key, value)

        self.db.commit()
        self.db.refresh(record)

        logger.info(
            "Updated notification preferences",
            extra={"owner_id": owner_id, "fields": sorted(changes)},
        )
        return PreferenceSnapshot.model_validate(record)

    def list_hint_recipients(self) -> List[Tuple[str, PreferenceSnapshot]]:
        """
        List every owner eligible for behavioral hints.

        Includes owners with stored preferences and hints enabled, plus
        owners seen in the activity log who never stored preferences (the
        default set enables hints).

        Returns:
            List of (owner_id, preferences) sorted by owner_id
        """
        recipients: Dict[str, PreferenceSnapshot] = {}

        stored = (
            self.db.query(NotificationPreferences)
            .filter(NotificationPreferences.hints_enabled.is_(True))
            .all()
        )
        for record in stored:
            recipients[record.owner_id] = PreferenceSnapshot.model_validate(record)

        stored_owner_ids = select(NotificationPreferences.owner_id)
        activity_only = (
            self.db.query(UserActivity.owner_id)
            .filter(UserActivity.owner_id.notin_(stored_owner_ids))
            .distinct()
            .all()
        )
        defaults = self.get_default_preferences()
        if defaults.hints_enabled:
            for (owner_id,) in activity_only:
                recipients[owner_id] = defaults

        return sorted(recipients.items())
