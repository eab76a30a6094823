"""
Append-only activity and usage logs.

UserActivity records what a user did (talked to a tutor, used a study tool,
uploaded a resource, logged in, studied). UsageLogEntry records metered
usage after each billable action. Neither table is ever updated or deleted
by the engine; producers only read the most recent row per key.
"""

import enum
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Enum, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB

from backend.src.models import Base


class ActivityType(str, enum.Enum):
    """Category of a tracked user activity."""
    TUTOR_USAGE = "tutor_usage"
    TOOL_USAGE = "tool_usage"
    UPLOAD = "upload"
    LOGIN = "login"
    SESSION = "session"


class UserActivity(Base):
    """
    A single tracked activity.

    Attributes:
        owner_id: User who performed the activity
        activity_type: tutor_usage, tool_usage, upload, login or session
        tutor_id: Tutor identity for tutor_usage rows
        tool_type: Study tool (flashcards, quiz, notes, ...) for tool_usage rows
        subject: Optional subject label
        metadata_json: Free-form JSON payload
        created_at: When the activity happened
    """

    __tablename__ = "user_activity_tracking"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False)
    activity_type = Column(
        Enum(ActivityType, native_enum=False, length=20, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    tutor_id = Column(String(64), nullable=True)
    tool_type = Column(String(50), nullable=True)
    subject = Column(String(100), nullable=True)
    metadata_json = Column("metadata", JSONB().with_variant(JSON(), "sqlite"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Latest-row lookups by (owner, type[, tutor])
    __table_args__ = (
        Index(
            "ix_user_activity_owner_type_created",
            "owner_id",
            "activity_type",
            "created_at",
        ),
    )


class UsageLogEntry(Base):
    """
    Metered usage recorded after a billable action.

    Attributes:
        owner_id: User the usage is billed to
        units_used: Units consumed by the action
        units_remaining: Units left after the action
        usage_kind: What consumed the units (e.g. "chat_message")
    """

    __tablename__ = "token_usage_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)
    units_used = Column(Integer, nullable=False)
    units_remaining = Column(Integer, nullable=False)
    usage_kind = Column(String(50), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
