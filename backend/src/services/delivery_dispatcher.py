"""
Delivery dispatcher.

Each cycle releases stale claims, fetches due pending items and claims
them. The channel sends of every claimed item then run concurrently under
one semaphore with a per-send timeout. Finally each item gets one delivery
log row per channel attempt and is completed, one item at a time, so a
rollback for one item never discards another item's writes.

Channel failures are isolated: an exception or timeout in one channel is
recorded as a failed attempt for that channel while the others still run,
and the item is still marked delivered. Only an engine-level error (for
example a failed store write) marks the item failed.

A calendar reminder delivered after its event was moved does not mark the
event reminded; the event gets a fresh reminder for its new start instead.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import (
    CalendarEvent,
    DeliveryChannel,
    DeliveryOutcome,
    NotificationClass,
    NotificationQueueItem,
)
from backend.src.services.channels import (
    ChannelOutcome,
    ChannelResult,
    ChannelSender,
    build_default_senders,
)
from backend.src.services.calendar_reminder_service import (
    CalendarReminderService,
    reminder_event_start,
)
from backend.src.services.notification_queue_service import NotificationQueueService
from backend.src.utils.logging_config import get_logger
from backend.src.utils.time_utils import Clock


logger = get_logger("jobs")


@dataclass
class DispatchSummary:
    """Counts from one dispatcher cycle."""

    released: int = 0
    fetched: int = 0
    claimed: int = 0
    delivered: int = 0
    failed: int = 0
    lost_race: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class DeliveryDispatcher:
    """
    Deliver due queue items over their enabled channels.

    Usage:
        >>> dispatcher = DeliveryDispatcher(db, senders=build_default_senders(db))
        >>> summary = await dispatcher.run_cycle()
    """

    def __init__(
        self,
        db: Session,
        senders: Optional[Dict[str, ChannelSender]] = None,
        clock: Optional[Clock] = None,
        settings: Optional[AppSettings] = None,
        queue_service: Optional[NotificationQueueService] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            db: SQLAlchemy database session
            senders: Channel senders keyed by channel name (push/email/inapp)
            clock: Time source (system clock if None)
            settings: Application settings (cached settings if None)
            queue_service: Queue service sharing the same session
        """
        self.db = db
        self.clock = clock or Clock()
        self.settings = settings or get_settings()
        self.senders = senders if senders is not None else build_default_senders(
            db, settings=self.settings, clock=self.clock
        )
        self.queue = queue_service or NotificationQueueService(db, clock=self.clock)
        self.calendar = CalendarReminderService(db, clock=self.clock, queue_service=self.queue)

    async def run_cycle(self) -> DispatchSummary:
        """
        Run one dispatch cycle over the current batch of due items.

        Every claimed item's channel sends run together, bounded by
        max_concurrent_sends, so the cycle takes about one send timeout
        rather than one per item. Results are then recorded item by item.
        """
        summary = DispatchSummary()

        cutoff = self.clock.now() - timedelta(minutes=self.settings.stale_claim_minutes)
        summary.released = self.queue.release_stale_claims(cutoff)

        items = self.queue.due_items(self.settings.dispatch_batch_size)
        summary.fetched = len(items)
        if not items:
            return summary

        claimed = []
        for item in items:
            if self.queue.claim(item.id):
                claimed.append(item)
                summary.claimed += 1
            else:
                summary.lost_race += 1

        semaphore = asyncio.Semaphore(self.settings.max_concurrent_sends)
        sends = await asyncio.gather(*(
            self._send_item(item, semaphore) for item in claimed
        ))

        for item, (channels, results) in zip(claimed, sends):
            self._complete_item(item, channels, results, summary)

        logger.info("Dispatch cycle complete", extra=summary.to_dict())
        return summary

    async def _send_item(
        self,
        item: NotificationQueueItem,
        semaphore: asyncio.Semaphore,
    ) -> Tuple[List[str], List[ChannelResult]]:
        channels = item.enabled_channels
        results = await asyncio.gather(*(
            self._send_channel(channel, item, semaphore) for channel in channels
        ))
        return channels, list(results)

    def _complete_item(
        self,
        item: NotificationQueueItem,
        channels: List[str],
        results: List[ChannelResult],
        summary: DispatchSummary,
    ) -> None:
        item_id = item.id
        moved_event = None
        try:
            for channel, result in zip(channels, results):
                if result.outcome == ChannelOutcome.SKIPPED:
                    logger.debug(
                        "Channel skipped",
                        extra={"guid": item.guid, "channel": channel, "reason": result.error},
                    )
                    continue
                self.queue.record_delivery(
                    item,
                    DeliveryChannel(channel),
                    DeliveryOutcome(result.outcome.value),
                    result.error,
                )

            if (
                item.notification_class == NotificationClass.CALENDAR_REMINDER
                and item.related_event_id is not None
            ):
                event = self.db.get(CalendarEvent, item.related_event_id)
                if event is not None:
                    built_for = reminder_event_start(item)
                    if built_for is None or built_for == event.start_time:
                        event.reminder_sent = True
                    else:
                        # Event moved while this reminder was in flight
                        moved_event = event

            self.db.commit()
            self.queue.mark_delivered(item_id)
            summary.delivered += 1

        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to dispatch notification: {e}",
                exc_info=True,
                extra={"item_id": item_id},
            )
            self.queue.mark_failed(item_id)
            summary.failed += 1

        else:
            if moved_event is not None:
                self._schedule_moved_event(moved_event)

    def _schedule_moved_event(self, event: CalendarEvent) -> None:
        """Give an event moved during delivery a reminder for its new start."""
        event_id = event.id
        try:
            reminder = self.calendar.schedule_reminder(event)
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to schedule reminder for moved event: {e}",
                exc_info=True,
                extra={"event_id": event_id},
            )
            return

        if reminder is not None:
            logger.info(
                "Scheduled reminder for moved event",
                extra={"event_id": event_id, "guid": reminder.guid},
            )

    async def _send_channel(
        self,
        channel: str,
        item: NotificationQueueItem,
        semaphore: asyncio.Semaphore,
    ) -> ChannelResult:
        sender = self.senders.get(channel)
        if sender is None:
            return ChannelResult.failed(f"no sender configured for {channel}")

        timeout = self.settings.channel_send_timeout_seconds
        async with semaphore:
            try:
                return await asyncio.wait_for(sender.send(item), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Channel send timed out",
                    extra={"guid": item.guid, "channel": channel, "timeout": timeout},
                )
                return ChannelResult.failed(f"timed out after {timeout}s")
            except Exception as e:
                logger.warning(
                    f"Channel send failed: {e}",
                    extra={"guid": item.guid, "channel": channel},
                )
                return ChannelResult.failed(str(e))


def build_dispatch_cycle(
    session_factory: Callable[[], Session],
    clock: Optional[Clock] = None,
    settings: Optional[AppSettings] = None,
) -> Callable[[], Awaitable[DispatchSummary]]:
    """Build an async dispatch cycle that owns its own session."""
    async def cycle() -> DispatchSummary:
        db = session_factory()
        try:
            return await DeliveryDispatcher(db, clock=clock, settings=settings).run_cycle()
        finally:
            db.close()

    return cycle
