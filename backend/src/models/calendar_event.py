"""
CalendarEvent model for study-calendar entries.

Events are owned by the calendar feature of the surrounding application.
The engine reads them to compute reminders and flips the two reminder
tracking flags.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin


class CalendarEventType(str, enum.Enum):
    """Category of a study-calendar event."""
    STUDY = "study"
    EXAM = "exam"
    ASSIGNMENT = "assignment"
    REVISION = "revision"
    BREAK = "break"


class CalendarEvent(Base, GuidMixin):
    """
    A scheduled study-calendar event.

    Attributes:
        owner_id: Owning user
        title: Event title shown in reminders
        description: Optional free text
        start_time / end_time: Naive UTC instants
        event_type: study, exam, assignment, revision or break
        subject: Optional subject label (e.g. "Chemistry")
        reminder_scheduled: A reminder item has been queued for the current start
        reminder_sent: The reminder for the current start has been delivered

    Relationships:
        reminders: Queue items referencing this event
    """

    __tablename__ = "calendar_events"
    GUID_PREFIX = "evt"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    event_type = Column(
        Enum(CalendarEventType, native_enum=False, length=20, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=CalendarEventType.STUDY,
    )
    subject = Column(String(100), nullable=True)

    # Reminder tracking
    reminder_scheduled = Column(Boolean, nullable=False, default=False)
    reminder_sent = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    reminders = relationship("NotificationQueueItem", back_populates="related_event")
