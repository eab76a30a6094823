"""
NotificationSubscription model for Web Push subscriptions.

Stores the push service endpoint and encryption keys needed to deliver
push notifications to a specific user's device/browser. A user may hold
several subscriptions (one per device).
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin


class NotificationSubscription(Base, GuidMixin):
    """
    Web Push subscription for one user on one device/browser.

    Attributes:
        owner_id: Owning user
        endpoint: Push service URL (unique per subscription)
        p256dh_key: ECDH public key for payload encryption (Base64url)
        auth_key: Auth secret for message authentication (Base64url)
        user_agent: Optional client description
        is_active: Cleared when the push service reports the endpoint gone
        last_used_at: Timestamp of last successful push delivery

    Lifecycle:
        Created when the user enables push on a device. Re-registering the
        same endpoint re-activates and re-keys the row. Deactivated on
        404/410 from the push service or explicit unsubscribe.
    """

    __tablename__ = "notification_subscriptions"
    GUID_PREFIX = "sub"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)

    # Push subscription data
    endpoint = Column(String(1024), nullable=False, unique=True)
    p256dh_key = Column(String(255), nullable=False)
    auth_key = Column(String(255), nullable=False)
    user_agent = Column(String(255), nullable=True)

    # Tracking
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )
