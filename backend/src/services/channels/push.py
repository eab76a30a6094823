"""
Web Push channel (pywebpush with VAPID authentication).

Sends the item to every active subscription of the owner. Subscriptions the
push service reports as gone (404/410) are deactivated. The item counts as
sent if at least one subscription accepted it.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Dict, Optional

from pywebpush import WebPushException, webpush
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import (
    DeliveryChannel,
    NotificationQueueItem,
    NotificationSubscription,
)
from backend.src.services.channels.base import ChannelResult, ChannelSender
from backend.src.services.exceptions import ChannelDeliveryError, PushGoneError
from backend.src.utils.logging_config import get_logger
from backend.src.utils.time_utils import Clock


logger = get_logger("services")

PUSH_TTL_SECONDS = 86400


def build_push_payload(item: NotificationQueueItem) -> Dict[str, Any]:
    """Build the JSON payload the service worker renders."""
    return {
        "title": item.title,
        "body": item.message,
        "icon_type": item.icon_type.value,
        "tag": item.guid,
        "data": {
            "url": item.action_url or "/",
            "guid": item.guid,
            "notification_class": item.notification_class.value,
        },
    }


class PushChannelSender(ChannelSender):
    """Deliver queue items to a user's registered browsers/devices."""

    channel = DeliveryChannel.PUSH

    def __init__(
        self,
        db: Session,
        settings: Optional[AppSettings] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock or Clock()

    @property
    def vapid_claims(self) -> Dict[str, str]:
        return {"sub": self.settings.vapid_subject}

    async def send(self, item: NotificationQueueItem) -> ChannelResult:
        subscriptions = (
            self.db.query(NotificationSubscription)
            .filter(
                NotificationSubscription.owner_id == item.owner_id,
                NotificationSubscription.is_active.is_(True),
            )
            .all()
        )
        if not subscriptions:
            return ChannelResult.skipped("no active push subscription")

        if not self.settings.vapid_configured:
            logger.warning(
                "Push skipped, VAPID keys not configured",
                extra={"guid": item.guid},
            )
            return ChannelResult.skipped("push not configured")

        payload_json = json.dumps(build_push_payload(item))
        success_count = 0
        removed_count = 0
        errors = []

        for sub in subscriptions:
            endpoint_short = sub.endpoint[:60]
            try:
                await asyncio.to_thread(
                    self._send_push,
                    sub.endpoint,
                    sub.p256dh_key,
                    sub.auth_key,
                    payload_json,
                )
                sub.last_used_at = self.clock.now()
                success_count += 1
            except PushGoneError:
                logger.info(
                    "Deactivating expired push subscription",
                    extra={"subscription_guid": sub.guid, "endpoint": endpoint_short},
                )
                sub.is_active = False
                removed_count += 1
                errors.append(f"{endpoint_short}: gone")
            except ChannelDeliveryError as e:
                logger.warning(
                    f"Push delivery failed: {e}",
                    extra={"subscription_guid": sub.guid, "endpoint": endpoint_short},
                )
                errors.append(f"{endpoint_short}: {e.message}")

        self.db.commit()

        if removed_count or errors:
            logger.info(
                "Push delivery summary",
                extra={
                    "guid": item.guid,
                    "total": len(subscriptions),
                    "success": success_count,
                    "removed": removed_count,
                },
            )

        if success_count:
            return ChannelResult.sent()
        return ChannelResult.failed("; ".join(errors) or "push delivery failed")

    def _send_push(self, endpoint: str, p256dh_key: str, auth_key: str, payload_json: str) -> None:
        """
        Send a push message to one subscription (blocking).

        Raises:
            PushGoneError: If the push service returned 404 or 410
            ChannelDeliveryError: If delivery failed for other reasons
        """
        subscription_info = {
            "endpoint": endpoint,
            "keys": {"p256dh": p256dh_key, "auth": auth_key},
        }
        try:
            webpush(
                subscription_info=subscription_info,
                data=payload_json,
                vapid_private_key=self.settings.vapid_private_key,
                vapid_claims=dict(self.vapid_claims),
                ttl=PUSH_TTL_SECONDS,
                headers={"Urgency": "high"},
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in (404, 410):
                raise PushGoneError(endpoint, status_code) from e
            raise ChannelDeliveryError("push", str(e), status_code) from e
