"""
Notification queue service.

Owns every status change of a NotificationQueueItem. Producers only call
enqueue(); the delivery dispatcher claims and completes items; the calendar
reminder scheduler cancels them.

Status transitions are conditional UPDATE statements filtered on the
allowed source states, so two workers racing on the same item cannot both
win, and terminal states are never overwritten.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, lazyload

from backend.src.models import (
    DeliveryChannel,
    DeliveryLogEntry,
    DeliveryOutcome,
    NotificationClass,
    NotificationQueueItem,
    QueueStatus,
    TERMINAL_STATUSES,
)
from backend.src.services.exceptions import NotFoundError
from backend.src.utils.logging_config import get_logger
from backend.src.utils.time_utils import Clock


logger = get_logger("services")


class NotificationQueueService:
    """
    Durable notification queue backed by the notifications_queue table.

    Usage:
        >>> queue = NotificationQueueService(db)
        >>> queue.enqueue(item)
        >>> for item in queue.due_items(limit=50):
        ...     if queue.claim(item.id):
        ...         ...
        ...         queue.mark_delivered(item.id)
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        """
        Initialize the queue service.

        Args:
            db: SQLAlchemy database session
            clock: Time source (system clock if None)
        """
        self.db = db
        self.clock = clock or Clock()
        # SQLite has no FOR UPDATE SKIP LOCKED
        self._is_sqlite = self._check_is_sqlite()

    def _check_is_sqlite(self) -> bool:
        try:
            return self.db.bind.dialect.name == "sqlite"
        except Exception:
            return False

    # =========================================================================
    # Producer side
    # =========================================================================

    def enqueue(self, item: NotificationQueueItem) -> NotificationQueueItem:
        """
        Insert a new item in pending state.

        Args:
            item: Transient queue item with content and scheduled_for set

        Returns:
            The persisted item (guid available)
        """
        now = self.clock.now()
        item.status = QueueStatus.PENDING
        item.created_at = now
        item.updated_at = now
        item.title = item.title[:200]
        item.message = item.message[:1000]

        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)

        logger.info(
            "Enqueued notification",
            extra={
                "guid": item.guid,
                "owner_id": item.owner_id,
                "notification_class": item.notification_class.value,
                "scheduled_for": item.scheduled_for.isoformat(),
            },
        )
        return item

    def find_recent(
        self,
        owner_id: str,
        notification_class: NotificationClass,
        since: datetime,
        tutor_id: Optional[str] = None,
        exclude_cancelled: bool = False,
    ) -> Optional[NotificationQueueItem]:
        """
        Find the newest item of a class for an owner created at or after since.

        Args:
            owner_id: Recipient
            notification_class: Class to match
            since: Lower bound on created_at
            tutor_id: Tutor to match (None matches items without a tutor)
            exclude_cancelled: Ignore cancelled items

        Returns:
            Matching item or None
        """
        query = self.db.query(NotificationQueueItem).filter(
            NotificationQueueItem.owner_id == owner_id,
            NotificationQueueItem.notification_class == notification_class,
            NotificationQueueItem.created_at >= since,
        )
        if tutor_id is None:
            query = query.filter(NotificationQueueItem.tutor_id.is_(None))
        else:
            query = query.filter(NotificationQueueItem.tutor_id == tutor_id)
        if exclude_cancelled:
            query = query.filter(NotificationQueueItem.status != QueueStatus.CANCELLED)

        return query.order_by(NotificationQueueItem.created_at.desc()).first()

    def find_live_event_reminder(self, event_id: int) -> Optional[NotificationQueueItem]:
        """Get a pending or in-progress calendar reminder for an event, if any."""
        return (
            self.db.query(NotificationQueueItem)
            .filter(
                NotificationQueueItem.related_event_id == event_id,
                NotificationQueueItem.notification_class == NotificationClass.CALENDAR_REMINDER,
                NotificationQueueItem.status.in_(
                    [QueueStatus.PENDING, QueueStatus.IN_PROGRESS]
                ),
            )
            .order_by(NotificationQueueItem.created_at.desc())
            .first()
        )

    # =========================================================================
    # Dispatcher side
    # =========================================================================

    def due_items(self, limit: int) -> List[NotificationQueueItem]:
        """
        Get pending items whose scheduled_for has passed.

        Args:
            limit: Maximum number of items

        Returns:
            Items ordered by scheduled_for ascending
        """
        query = (
            self.db.query(NotificationQueueItem)
            .filter(
                NotificationQueueItem.status == QueueStatus.PENDING,
                NotificationQueueItem.scheduled_for <= self.clock.now(),
            )
            .order_by(NotificationQueueItem.scheduled_for.asc(), NotificationQueueItem.id.asc())
            .limit(limit)
        )

        # Lets concurrent dispatchers on PostgreSQL fetch disjoint batches
        if not self._is_sqlite:
            query = query.options(lazyload('*')).with_for_update(skip_locked=True)

        return query.all()

    def claim(self, item_id: int) -> bool:
        """
        Atomically move an item from pending to in_progress.

        Returns:
            True if this caller won the claim
        """
        now = self.clock.now()
        return self._transition(
            item_id,
            allowed_from=[QueueStatus.PENDING],
            new_status=QueueStatus.IN_PROGRESS,
            claimed_at=now,
        )

    def mark_delivered(self, item_id: int) -> bool:
        """
        Move an item to delivered (from pending or in_progress).

        Returns:
            True if the transition happened, False if the item was already
            terminal or does not exist
        """
        return self._transition(
            item_id,
            allowed_from=[QueueStatus.PENDING, QueueStatus.IN_PROGRESS],
            new_status=QueueStatus.DELIVERED,
            delivered_at=self.clock.now(),
        )

    def mark_failed(self, item_id: int) -> bool:
        """Move an item to failed (from pending or in_progress)."""
        return self._transition(
            item_id,
            allowed_from=[QueueStatus.PENDING, QueueStatus.IN_PROGRESS],
            new_status=QueueStatus.FAILED,
        )

    def cancel(self, item_id: int) -> bool:
        """Cancel a pending item. Claimed or terminal items are left alone."""
        return self._transition(
            item_id,
            allowed_from=[QueueStatus.PENDING],
            new_status=QueueStatus.CANCELLED,
        )

    def cancel_event_reminders(self, event_id: int) -> int:
        """
        Cancel every pending calendar reminder referencing an event.

        Returns:
            Number of items cancelled
        """
        count = (
            self.db.query(NotificationQueueItem)
            .filter(
                NotificationQueueItem.related_event_id == event_id,
                NotificationQueueItem.notification_class == NotificationClass.CALENDAR_REMINDER,
                NotificationQueueItem.status == QueueStatus.PENDING,
            )
            .update(
                {"status": QueueStatus.CANCELLED, "updated_at": self.clock.now()},
                synchronize_session=False,
            )
        )
        self.db.commit()

        if count:
            logger.info(
                "Cancelled calendar reminders",
                extra={"event_id": event_id, "count": count},
            )
        return count

    def release_stale_claims(self, older_than: datetime) -> int:
        """
        Return in_progress items claimed before a cutoff to pending.

        Recovers items whose dispatcher died between claim and completion.

        Args:
            older_than: Claims made before this instant are released

        Returns:
            Number of items released
        """
        count = (
            self.db.query(NotificationQueueItem)
            .filter(
                NotificationQueueItem.status == QueueStatus.IN_PROGRESS,
                NotificationQueueItem.claimed_at < older_than,
            )
            .update(
                {
                    "status": QueueStatus.PENDING,
                    "claimed_at": None,
                    "updated_at": self.clock.now(),
                },
                synchronize_session=False,
            )
        )
        self.db.commit()

        if count:
            logger.warning(
                "Released stale notification claims",
                extra={"count": count, "older_than": older_than.isoformat()},
            )
        return count

    def _transition(
        self,
        item_id: int,
        allowed_from: Iterable[QueueStatus],
        new_status: QueueStatus,
        **values,
    ) -> bool:
        values["status"] = new_status
        values["updated_at"] = self.clock.now()

        count = (
            self.db.query(NotificationQueueItem)
            .filter(
                NotificationQueueItem.id == item_id,
                NotificationQueueItem.status.in_(list(allowed_from)),
            )
            .update(values, synchronize_session=False)
        )
        self.db.commit()

        if count != 1:
            logger.debug(
                "Queue transition not applied",
                extra={"item_id": item_id, "new_status": new_status.value},
            )
            return False
        return True

    # =========================================================================
    # Delivery log
    # =========================================================================

    def record_delivery(
        self,
        item: NotificationQueueItem,
        channel: DeliveryChannel,
        outcome: DeliveryOutcome,
        error_message: Optional[str] = None,
    ) -> DeliveryLogEntry:
        """Append a delivery log row (flushed, committed by the caller)."""
        entry = DeliveryLogEntry(
            notification_id=item.id,
            owner_id=item.owner_id,
            channel=channel,
            outcome=outcome,
            error_message=error_message[:2000] if error_message else None,
            created_at=self.clock.now(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def mark_read(self, guid: str) -> bool:
        """
        Record that the owner opened an in-app notification.

        Returns:
            True if an opened row was added, False if one already existed

        Raises:
            NotFoundError: If no notification has this GUID
        """
        item = self.get_by_guid(guid)

        already_opened = (
            self.db.query(DeliveryLogEntry.id)
            .filter(
                DeliveryLogEntry.notification_id == item.id,
                DeliveryLogEntry.channel == DeliveryChannel.INAPP,
                DeliveryLogEntry.outcome == DeliveryOutcome.OPENED,
            )
            .first()
        )
        if already_opened:
            return False

        self.record_delivery(item, DeliveryChannel.INAPP, DeliveryOutcome.OPENED)
        self.db.commit()
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    def get_by_guid(self, guid: str) -> NotificationQueueItem:
        """
        Get a queue item by GUID.

        Raises:
            NotFoundError: If the GUID is malformed or unknown
        """
        try:
            uuid_value = NotificationQueueItem.parse_guid(guid)
        except ValueError:
            raise NotFoundError("Notification", guid)

        item = (
            self.db.query(NotificationQueueItem)
            .filter(NotificationQueueItem.uuid == uuid_value)
            .first()
        )
        if not item:
            raise NotFoundError("Notification", guid)
        return item

    def _opened_ids(self, item_ids: List[int]) -> set:
        if not item_ids:
            return set()
        rows = (
            self.db.query(DeliveryLogEntry.notification_id)
            .filter(
                DeliveryLogEntry.notification_id.in_(item_ids),
                DeliveryLogEntry.outcome == DeliveryOutcome.OPENED,
            )
            .distinct()
            .all()
        )
        return {row[0] for row in rows}

    def list_in_app(
        self, owner_id: str, limit: int = 50
    ) -> List[Tuple[NotificationQueueItem, bool]]:
        """
        List delivered in-app notifications for an owner, newest first.

        Args:
            owner_id: Recipient
            limit: Maximum number of items

        Returns:
            List of (item, is_read) tuples
        """
        items = (
            self.db.query(NotificationQueueItem)
            .filter(
                NotificationQueueItem.owner_id == owner_id,
                NotificationQueueItem.deliver_via_inapp.is_(True),
                NotificationQueueItem.status == QueueStatus.DELIVERED,
            )
            .order_by(
                NotificationQueueItem.delivered_at.desc(),
                NotificationQueueItem.id.desc(),
            )
            .limit(limit)
            .all()
        )
        opened = self._opened_ids([item.id for item in items])
        return [(item, item.id in opened) for item in items]

    def count_unread(self, owner_id: str) -> int:
        """Count delivered in-app notifications without an opened log row."""
        opened = (
            self.db.query(DeliveryLogEntry.notification_id)
            .filter(
                DeliveryLogEntry.owner_id == owner_id,
                DeliveryLogEntry.outcome == DeliveryOutcome.OPENED,
            )
        )
        return (
            self.db.query(func.count(NotificationQueueItem.id))
            .filter(
                NotificationQueueItem.owner_id == owner_id,
                NotificationQueueItem.deliver_via_inapp.is_(True),
                NotificationQueueItem.status == QueueStatus.DELIVERED,
                NotificationQueueItem.id.notin_(opened.scalar_subquery()),
            )
            .scalar()
        )

    # =========================================================================
    # Retention
    # =========================================================================

    def purge_terminal(self, older_than_days: int) -> int:
        """
        Delete terminal items (and their delivery log rows) past retention.

        Args:
            older_than_days: Items last updated more than this many days ago

        Returns:
            Number of queue items deleted
        """
        cutoff = self.clock.now() - timedelta(days=older_than_days)

        item_ids = [
            row[0]
            for row in self.db.query(NotificationQueueItem.id)
            .filter(
                NotificationQueueItem.status.in_(list(TERMINAL_STATUSES)),
                NotificationQueueItem.updated_at < cutoff,
            )
            .all()
        ]
        if not item_ids:
            return 0

        self.db.query(DeliveryLogEntry).filter(
            DeliveryLogEntry.notification_id.in_(item_ids)
        ).delete(synchronize_session=False)
        count = (
            self.db.query(NotificationQueueItem)
            .filter(NotificationQueueItem.id.in_(item_ids))
            .delete(synchronize_session=False)
        )
        self.db.commit()

        logger.info(
            "Purged terminal notifications",
            extra={"count": count, "older_than_days": older_than_days},
        )
        return count
