"""
Delivery channel senders.

Each sender implements ``async send(item) -> ChannelResult``.
"""

from typing import Dict, Optional

import httpx
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings
from backend.src.services.channels.base import ChannelOutcome, ChannelResult, ChannelSender
from backend.src.services.channels.email import EmailChannelSender
from backend.src.services.channels.inapp import InAppChannelSender
from backend.src.services.channels.push import PushChannelSender
from backend.src.utils.time_utils import Clock


def build_default_senders(
    db: Session,
    settings: Optional[AppSettings] = None,
    clock: Optional[Clock] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, ChannelSender]:
    """Build the push, email and in-app senders keyed by channel name."""
    return {
        "push": PushChannelSender(db, settings=settings, clock=clock),
        "email": EmailChannelSender(db, settings=settings, client=http_client),
        "inapp": InAppChannelSender(),
    }


__all__ = [
    "ChannelOutcome",
    "ChannelResult",
    "ChannelSender",
    "EmailChannelSender",
    "InAppChannelSender",
    "PushChannelSender",
    "build_default_senders",
]
