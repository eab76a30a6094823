"""
NotificationQueueItem model: the durable notification queue.

Producers (calendar reminders, behavioral scanner, quota monitor) insert
rows in ``pending`` state with a precomputed ``scheduled_for``. The delivery
dispatcher claims due rows and moves them to a terminal state. Only the
notification queue service changes ``status``.

Lifecycle:
    pending -> in_progress -> delivered | failed
    pending -> delivered | failed | cancelled
    in_progress -> pending (stale claim release)
"""

import enum
from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin


class NotificationClass(str, enum.Enum):
    """Kind of notification, drives dedup guards and inbox rendering."""
    CALENDAR_REMINDER = "calendar_reminder"
    BEHAVIORAL_TIP = "behavioral_tip"
    TOOL_REMINDER = "tool_reminder"
    UPLOAD_NUDGE = "upload_nudge"
    QUOTA_WARNING = "quota_warning"
    ACHIEVEMENT = "achievement"
    SYSTEM = "system"


class NotificationIcon(str, enum.Enum):
    """Icon hint for clients."""
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    REMINDER = "reminder"
    TIP = "tip"


class QueueStatus(str, enum.Enum):
    """Queue item lifecycle status."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    QueueStatus.DELIVERED,
    QueueStatus.FAILED,
    QueueStatus.CANCELLED,
})

LIVE_STATUSES = frozenset({QueueStatus.PENDING, QueueStatus.IN_PROGRESS})


class NotificationQueueItem(Base, GuidMixin):
    """
    A notification waiting for (or done with) delivery.

    Attributes:
        owner_id: Recipient
        notification_class: See NotificationClass
        deliver_via_push / deliver_via_email / deliver_via_inapp:
            Channel flags frozen from preferences at enqueue time
        title: Short title (max 200 chars)
        message: Body text (max 1000 chars)
        action_url: Client navigation target
        icon_type: See NotificationIcon
        scheduled_for: Earliest delivery instant (after quiet-hours deferral)
        related_event_id: Calendar event for calendar reminders
        tutor_id / subject: Optional context used by dedup guards and clients
        metadata_json: Free-form JSON payload (stored as "metadata")
        status: See QueueStatus
        claimed_at: When a dispatcher claimed the item
        delivered_at: When the item reached ``delivered``
    """

    __tablename__ = "notifications_queue"
    GUID_PREFIX = "ntf"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)

    notification_class = Column(
        Enum(NotificationClass, native_enum=False, length=30, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )

    # Delivery channels
    deliver_via_push = Column(Boolean, nullable=False, default=True)
    deliver_via_email = Column(Boolean, nullable=False, default=False)
    deliver_via_inapp = Column(Boolean, nullable=False, default=True)

    # Content
    title = Column(String(200), nullable=False)
    message = Column(String(1000), nullable=False)
    action_url = Column(String(500), nullable=True)
    icon_type = Column(
        Enum(NotificationIcon, native_enum=False, length=20, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=NotificationIcon.INFO,
    )

    # Scheduling
    scheduled_for = Column(DateTime, nullable=False)

    # Context
    related_event_id = Column(
        Integer,
        ForeignKey("calendar_events.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    tutor_id = Column(String(64), nullable=True)
    subject = Column(String(100), nullable=True)
    metadata_json = Column("metadata", JSONB().with_variant(JSON(), "sqlite"), nullable=True)

    # Status
    status = Column(
        Enum(QueueStatus, native_enum=False, length=20, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=QueueStatus.PENDING,
    )
    claimed_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    related_event = relationship("CalendarEvent", back_populates="reminders")
    delivery_logs = relationship(
        "DeliveryLogEntry",
        back_populates="notification",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        # Dispatcher scan: pending rows ordered by scheduled_for
        Index("ix_notifications_queue_status_scheduled", "status", "scheduled_for"),
        # Dedup guards: recent rows by owner and class
        Index(
            "ix_notifications_queue_owner_class_created",
            "owner_id",
            "notification_class",
            "created_at",
        ),
    )

    @property
    def enabled_channels(self):
        """Channel names whose delivery flag is set, in dispatch order."""
        channels = []
        if self.deliver_via_push:
            channels.append("push")
        if self.deliver_via_email:
            channels.append("email")
        if self.deliver_via_inapp:
            channels.append("inapp")
        return channels

    def __repr__(self) -> str:
        return (
            f"<NotificationQueueItem(id={self.id}, owner='{self.owner_id}', "
            f"class='{self.notification_class}', status='{self.status}')>"
        )
