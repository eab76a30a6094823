"""In-app channel: the delivered item is what the inbox lists."""

from backend.src.models import DeliveryChannel, NotificationQueueItem
from backend.src.services.channels.base import ChannelResult, ChannelSender


class InAppChannelSender(ChannelSender):

    channel = DeliveryChannel.INAPP

    async def send(self, item: NotificationQueueItem) -> ChannelResult:
        return ChannelResult.sent()
