"""
Push subscription service for managing Web Push registrations.

Registering an endpoint that already exists re-keys and re-activates it,
possibly moving it to a different owner (the browser profile changed hands).
Unsubscribing deactivates rather than deletes, so delivery history keeps a
consistent picture of which devices existed.
"""

from typing import List

from sqlalchemy.orm import Session

from backend.src.models import NotificationSubscription
from backend.src.schemas.notifications import PushSubscriptionCreate
from backend.src.services.exceptions import NotFoundError
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


class PushSubscriptionService:
    """Register, deactivate and list push subscriptions."""

    def __init__(self, db: Session):
        self.db = db

    def register(self, data: PushSubscriptionCreate) -> NotificationSubscription:
        """
        Create or re-activate a push subscription (upsert by endpoint).

        Args:
            data: Validated subscription payload

        Returns:
            Created or updated NotificationSubscription
        """
        existing = (
            self.db.query(NotificationSubscription)
            .filter(NotificationSubscription.endpoint == data.endpoint)
            .first()
        )

        if existing:
            existing.owner_id = data.owner_id
            existing.p256dh_key = data.p256dh_key
            existing.auth_key = data.auth_key
            existing.user_agent = data.user_agent
            existing.is_active = True
            self.db.commit()
            self.db.refresh(existing)
            logger.info(
                "Re-activated push subscription",
                extra={"guid": existing.guid, "owner_id": data.owner_id},
            )
            return existing

        subscription = NotificationSubscription(
            owner_id=data.owner_id,
            endpoint=data.endpoint,
            p256dh_key=data.p256dh_key,
            auth_key=data.auth_key,
            user_agent=data.user_agent,
            is_active=True,
        )
        self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)
        logger.info(
            "Created push subscription",
            extra={"guid": subscription.guid, "owner_id": data.owner_id},
        )
        return subscription

    def deactivate(self, endpoint: str) -> NotificationSubscription:
        """
        Deactivate a subscription by endpoint.

        Raises:
            NotFoundError: If no subscription has this endpoint
        """
        subscription = (
            self.db.query(NotificationSubscription)
            .filter(NotificationSubscription.endpoint == endpoint)
            .first()
        )
        if not subscription:
            raise NotFoundError("PushSubscription", endpoint[:60])

        subscription.is_active = False
        self.db.commit()
        self.db.refresh(subscription)
        logger.info(
            "Deactivated push subscription",
            extra={"guid": subscription.guid, "endpoint_prefix": endpoint[:60]},
        )
        return subscription

    def list_active(self, owner_id: str) -> List[NotificationSubscription]:
        return (
            self.db.query(NotificationSubscription)
            .filter(
                NotificationSubscription.owner_id == owner_id,
                NotificationSubscription.is_active.is_(True),
            )
            .order_by(NotificationSubscription.created_at.desc())
            .all()
        )
