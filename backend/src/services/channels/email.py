"""
Email channel over a transactional email HTTP API.

Posts one message per item to ``EMAIL_API_URL`` (Resend-compatible JSON
body, bearer authentication). The recipient address comes from the owner's
preferences.
"""

from html import escape
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import DeliveryChannel, NotificationQueueItem
from backend.src.services.channels.base import ChannelResult, ChannelSender
from backend.src.services.exceptions import ChannelDeliveryError
from backend.src.services.preference_service import PreferenceService
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


class EmailChannelSender(ChannelSender):
    """Deliver queue items by email."""

    channel = DeliveryChannel.EMAIL

    def __init__(
        self,
        db: Session,
        settings: Optional[AppSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        preference_service: Optional[PreferenceService] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.preferences = preference_service or PreferenceService(db)
        self._client = client

    def build_message(self, item: NotificationQueueItem, to_address: str) -> Dict[str, Any]:
        body_html = f"<p>{escape(item.message)}</p>"
        if item.action_url:
            body_html += f'<p><a href="{escape(item.action_url)}">Open</a></p>'
        return {
            "from": self.settings.email_from,
            "to": [to_address],
            "subject": item.title,
            "html": body_html,
            "text": item.message,
        }

    async def send(self, item: NotificationQueueItem) -> ChannelResult:
        prefs = self.preferences.get_preferences(item.owner_id)
        if not prefs.email_address:
            return ChannelResult.skipped("no email address")
        if not self.settings.email_configured:
            return ChannelResult.skipped("email not configured")

        headers = {"Authorization": f"Bearer {self.settings.email_api_key}"}
        message = self.build_message(item, prefs.email_address)

        if self._client is not None:
            response = await self._client.post(
                self.settings.email_api_url, json=message, headers=headers
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.settings.email_api_url,
                    json=message,
                    headers=headers,
                    timeout=self.settings.channel_send_timeout_seconds,
                )

        if response.status_code >= 300:
            raise ChannelDeliveryError(
                "email",
                f"email API returned {response.status_code}",
                response.status_code,
            )

        logger.debug("Email delivered", extra={"guid": item.guid})
        return ChannelResult.sent()
