"""
Channel sender contract.

A sender delivers one queue item over one transport and reports the outcome.
``skipped`` means there was nothing to do (no registered device, no address,
transport not configured) and is not recorded as a delivery attempt.
Raising is allowed; the dispatcher turns any exception into ``failed`` for
that channel only.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from backend.src.models import DeliveryChannel, NotificationQueueItem


class ChannelOutcome(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ChannelResult:
    """Outcome of one send, with an error or skip reason when relevant."""

    outcome: ChannelOutcome
    error: Optional[str] = None

    @classmethod
    def sent(cls) -> "ChannelResult":
        return cls(ChannelOutcome.SENT)

    @classmethod
    def failed(cls, error: str) -> "ChannelResult":
        return cls(ChannelOutcome.FAILED, error)

    @classmethod
    def skipped(cls, reason: str) -> "ChannelResult":
        return cls(ChannelOutcome.SKIPPED, reason)


class ChannelSender(ABC):
    """Base class for delivery channel senders."""

    channel: DeliveryChannel

    @abstractmethod
    async def send(self, item: NotificationQueueItem) -> ChannelResult:
        """Deliver an item over this channel."""
