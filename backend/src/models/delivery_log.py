"""
DeliveryLogEntry model: append-only record of per-channel delivery attempts.

One row per channel that actually produced a send attempt (``sent`` or
``failed``), plus ``opened`` rows written when the user reads an in-app
notification.
"""

import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from backend.src.models import Base


class DeliveryChannel(str, enum.Enum):
    PUSH = "push"
    EMAIL = "email"
    INAPP = "inapp"


class DeliveryOutcome(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    OPENED = "opened"


class DeliveryLogEntry(Base):
    """Outcome of one channel for one queue item."""

    __tablename__ = "notification_delivery_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    notification_id = Column(
        Integer,
        ForeignKey("notifications_queue.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id = Column(String(64), nullable=False, index=True)
    channel = Column(
        Enum(DeliveryChannel, native_enum=False, length=10, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    outcome = Column(
        Enum(DeliveryOutcome, native_enum=False, length=10, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    notification = relationship("NotificationQueueItem", back_populates="delivery_logs")
