"""
Unit tests for the delivery dispatcher.

Tests claim-then-deliver, per-channel failure isolation, timeouts, skipped
channels, bounded send concurrency, calendar reminder bookkeeping and
engine-level failures.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from backend.src.models import (
    CalendarEvent,
    DeliveryChannel,
    DeliveryLogEntry,
    DeliveryOutcome,
    NotificationClass,
    NotificationQueueItem,
    QueueStatus,
)
from backend.src.services.calendar_reminder_service import CalendarReminderService
from backend.src.services.channels import ChannelResult, ChannelSender
from backend.src.services.delivery_dispatcher import (
    DeliveryDispatcher,
    DispatchSummary,
    build_dispatch_cycle,
)


# ============================================================================
# Helpers
# ============================================================================


def _logs(db, item_id):
    db.expire_all()
    rows = (
        db.query(DeliveryLogEntry)
        .filter(DeliveryLogEntry.notification_id == item_id)
        .all()
    )
    return {row.channel: row for row in rows}


def _item(db, item_id):
    db.expire_all()
    return db.get(NotificationQueueItem, item_id)


@pytest.fixture
def make_dispatcher(test_db_session, clock, test_settings):
    def _make(senders, **setting_overrides):
        settings = test_settings.model_copy(update=setting_overrides)
        return DeliveryDispatcher(
            test_db_session, senders=senders, clock=clock, settings=settings
        )
    return _make


# ============================================================================
# Test: run_cycle
# ============================================================================


class TestRunCycle:
    """Tests for DeliveryDispatcher.run_cycle."""

    @pytest.mark.asyncio
    async def test_delivers_due_items_on_all_channels(
        self, make_dispatcher, fake_senders, sample_queue_item, test_db_session
    ):
        item = sample_queue_item()

        summary = await make_dispatcher(fake_senders).run_cycle()

        assert summary.fetched == 1
        assert summary.claimed == 1
        assert summary.delivered == 1
        stored = _item(test_db_session, item.id)
        assert stored.status == QueueStatus.DELIVERED
        assert stored.delivered_at is not None
        logs = _logs(test_db_session, item.id)
        assert set(logs) == {DeliveryChannel.PUSH, DeliveryChannel.EMAIL, DeliveryChannel.INAPP}
        assert all(row.outcome == DeliveryOutcome.SENT for row in logs.values())

    @pytest.mark.asyncio
    async def test_future_items_are_left_pending(
        self, make_dispatcher, fake_senders, sample_queue_item, clock, test_db_session
    ):
        item = sample_queue_item(scheduled_for=clock.now() + timedelta(minutes=5))

        summary = await make_dispatcher(fake_senders).run_cycle()

        assert summary.fetched == 0
        assert _item(test_db_session, item.id).status == QueueStatus.PENDING
        assert fake_senders["inapp"].sent_items == []

    @pytest.mark.asyncio
    async def test_only_enabled_channels_are_used(
        self, make_dispatcher, fake_senders, sample_queue_item, test_db_session
    ):
        item = sample_queue_item(deliver_via_push=False, deliver_via_email=False)

        await make_dispatcher(fake_senders).run_cycle()

        assert fake_senders["push"].sent_items == []
        assert fake_senders["email"].sent_items == []
        assert fake_senders["inapp"].sent_items == [item.id]
        assert set(_logs(test_db_session, item.id)) == {DeliveryChannel.INAPP}

    @pytest.mark.asyncio
    async def test_batch_size_limits_fetch(
        self, make_dispatcher, fake_senders, sample_queue_item
    ):
        for _ in range(3):
            sample_queue_item()

        summary = await make_dispatcher(fake_senders, dispatch_batch_size=2).run_cycle()

        assert summary.fetched == 2
        assert summary.delivered == 2

    @pytest.mark.asyncio
    async def test_releases_stale_claims_first(
        self, make_dispatcher, fake_senders, sample_queue_item, clock, test_db_session
    ):
        """An item stuck in progress is released and delivered in the same cycle."""
        item = sample_queue_item(
            status=QueueStatus.IN_PROGRESS,
            claimed_at=clock.now() - timedelta(hours=1),
        )

        summary = await make_dispatcher(fake_senders).run_cycle()

        assert summary.released == 1
        assert summary.delivered == 1
        assert _item(test_db_session, item.id).status == QueueStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_summary_dict(self, make_dispatcher, fake_senders):
        summary = await make_dispatcher(fake_senders).run_cycle()
        assert summary.to_dict() == DispatchSummary().to_dict()


# ============================================================================
# Test: channel failure isolation
# ============================================================================


class TestChannelIsolation:
    """A failing channel never blocks the others."""

    @pytest.mark.asyncio
    async def test_push_exception_does_not_block_other_channels(
        self, make_dispatcher, make_sender, sample_queue_item, test_db_session
    ):
        """Should log push failed, email and in-app sent, and deliver the item."""
        senders = {
            "push": make_sender(error=RuntimeError("push service unreachable")),
            "email": make_sender(),
            "inapp": make_sender(),
        }
        item = sample_queue_item()

        summary = await make_dispatcher(senders).run_cycle()

        assert summary.delivered == 1
        assert _item(test_db_session, item.id).status == QueueStatus.DELIVERED
        logs = _logs(test_db_session, item.id)
        assert len(logs) == 3
        assert logs[DeliveryChannel.PUSH].outcome == DeliveryOutcome.FAILED
        assert "push service unreachable" in logs[DeliveryChannel.PUSH].error_message
        assert logs[DeliveryChannel.EMAIL].outcome == DeliveryOutcome.SENT
        assert logs[DeliveryChannel.INAPP].outcome == DeliveryOutcome.SENT

    @pytest.mark.asyncio
    async def test_slow_channel_times_out(
        self, make_dispatcher, make_sender, sample_queue_item, test_db_session
    ):
        senders = {
            "push": make_sender(delay=5),
            "email": make_sender(),
            "inapp": make_sender(),
        }
        item = sample_queue_item()

        await make_dispatcher(senders, channel_send_timeout_seconds=0.05).run_cycle()

        logs = _logs(test_db_session, item.id)
        assert logs[DeliveryChannel.PUSH].outcome == DeliveryOutcome.FAILED
        assert "timed out" in logs[DeliveryChannel.PUSH].error_message
        assert logs[DeliveryChannel.INAPP].outcome == DeliveryOutcome.SENT
        assert _item(test_db_session, item.id).status == QueueStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_failed_result_is_logged(
        self, make_dispatcher, make_sender, sample_queue_item, test_db_session
    ):
        senders = {
            "push": make_sender(),
            "email": make_sender(result=ChannelResult.failed("email API returned 500")),
            "inapp": make_sender(),
        }
        item = sample_queue_item()

        await make_dispatcher(senders).run_cycle()

        row = _logs(test_db_session, item.id)[DeliveryChannel.EMAIL]
        assert row.outcome == DeliveryOutcome.FAILED
        assert row.error_message == "email API returned 500"

    @pytest.mark.asyncio
    async def test_skipped_channel_is_not_logged(
        self, make_dispatcher, make_sender, sample_queue_item, test_db_session
    ):
        senders = {
            "push": make_sender(result=ChannelResult.skipped("no active push subscription")),
            "email": make_sender(result=ChannelResult.skipped("no email address")),
            "inapp": make_sender(),
        }
        item = sample_queue_item()

        await make_dispatcher(senders).run_cycle()

        assert set(_logs(test_db_session, item.id)) == {DeliveryChannel.INAPP}
        assert _item(test_db_session, item.id).status == QueueStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_missing_sender_is_a_failed_attempt(
        self, make_dispatcher, make_sender, sample_queue_item, test_db_session
    ):
        item = sample_queue_item()

        await make_dispatcher({"inapp": make_sender()}).run_cycle()

        logs = _logs(test_db_session, item.id)
        assert logs[DeliveryChannel.PUSH].outcome == DeliveryOutcome.FAILED
        assert logs[DeliveryChannel.EMAIL].outcome == DeliveryOutcome.FAILED
        assert logs[DeliveryChannel.INAPP].outcome == DeliveryOutcome.SENT


# ============================================================================
# Test: claims and engine failures
# ============================================================================


class TestClaimsAndFailures:

    @pytest.mark.asyncio
    async def test_lost_race_skips_item(
        self, make_dispatcher, fake_senders, sample_queue_item, test_db_session
    ):
        """Should not send an item another dispatcher claimed after the fetch."""
        item = sample_queue_item()
        dispatcher = make_dispatcher(fake_senders)
        fetched = dispatcher.queue.due_items(10)
        dispatcher.queue.claim(item.id)

        with patch.object(dispatcher.queue, "due_items", return_value=fetched):
            summary = await dispatcher.run_cycle()

        assert summary.fetched == 1
        assert summary.lost_race == 1
        assert summary.claimed == 0
        assert fake_senders["inapp"].sent_items == []
        assert _logs(test_db_session, item.id) == {}

    @pytest.mark.asyncio
    async def test_engine_error_marks_item_failed(
        self, make_dispatcher, fake_senders, sample_queue_item, test_db_session
    ):
        item = sample_queue_item()
        dispatcher = make_dispatcher(fake_senders)

        with patch.object(
            dispatcher.queue,
            "record_delivery",
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
        ):
            summary = await dispatcher.run_cycle()

        assert summary.failed == 1
        assert summary.delivered == 0
        assert _item(test_db_session, item.id).status == QueueStatus.FAILED

    @pytest.mark.asyncio
    async def test_delivered_item_is_not_redelivered(
        self, make_dispatcher, fake_senders, sample_queue_item
    ):
        sample_queue_item()
        dispatcher = make_dispatcher(fake_senders)

        await dispatcher.run_cycle()
        second = await dispatcher.run_cycle()

        assert second.fetched == 0
        assert len(fake_senders["inapp"].sent_items) == 1


# ============================================================================
# Test: calendar reminders
# ============================================================================


class TestCalendarReminderDelivery:

    @pytest.mark.asyncio
    async def test_sets_reminder_sent_on_event(
        self, make_dispatcher, fake_senders, sample_event, sample_queue_item, test_db_session
    ):
        event = sample_event()
        sample_queue_item(
            notification_class=NotificationClass.CALENDAR_REMINDER,
            related_event_id=event.id,
        )

        await make_dispatcher(fake_senders).run_cycle()

        test_db_session.expire_all()
        assert test_db_session.get(CalendarEvent, event.id).reminder_sent is True

    @pytest.mark.asyncio
    async def test_other_classes_leave_event_alone(
        self, make_dispatcher, fake_senders, sample_event, sample_queue_item, test_db_session
    ):
        event = sample_event()
        sample_queue_item(
            notification_class=NotificationClass.SYSTEM,
            related_event_id=event.id,
        )

        await make_dispatcher(fake_senders).run_cycle()

        test_db_session.expire_all()
        assert test_db_session.get(CalendarEvent, event.id).reminder_sent is False

    @pytest.mark.asyncio
    async def test_scheduled_reminder_for_unmoved_event(
        self, make_dispatcher, fake_senders, sample_event, test_db_session, clock
    ):
        event = sample_event(start_time=clock.now() + timedelta(minutes=10))
        calendar = CalendarReminderService(test_db_session, clock=clock)
        calendar.schedule_reminder(event)

        summary = await make_dispatcher(fake_senders).run_cycle()

        assert summary.delivered == 1
        test_db_session.expire_all()
        assert test_db_session.get(CalendarEvent, event.id).reminder_sent is True
        assert calendar.queue.find_live_event_reminder(event.id) is None

    @pytest.mark.asyncio
    async def test_event_moved_during_delivery_gets_new_reminder(
        self, make_dispatcher, fake_senders, sample_event, test_db_session, clock
    ):
        """A reminder claimed before its event moved is delivered, then replaced."""
        event = sample_event(start_time=clock.now() + timedelta(minutes=10))
        calendar = CalendarReminderService(test_db_session, clock=clock)
        old = calendar.schedule_reminder(event)
        old_id = old.id
        calendar.queue.claim(old_id)

        new_start = datetime(2026, 3, 11, 10, 0)
        assert calendar.reschedule_reminder(event.id, new_start) is None

        # Old claim goes stale and is picked up again
        clock.advance(minutes=20)
        summary = await make_dispatcher(fake_senders).run_cycle()

        assert summary.released == 1
        assert summary.delivered == 1
        assert _item(test_db_session, old_id).status == QueueStatus.DELIVERED

        refreshed = test_db_session.get(CalendarEvent, event.id)
        assert refreshed.reminder_sent is False
        assert refreshed.reminder_scheduled is True

        fresh = calendar.queue.find_live_event_reminder(event.id)
        assert fresh is not None
        assert fresh.id != old_id
        assert fresh.status == QueueStatus.PENDING
        assert fresh.scheduled_for == new_start - timedelta(minutes=15)

    @pytest.mark.asyncio
    async def test_moved_event_reschedule_failure_keeps_delivery(
        self, make_dispatcher, fake_senders, sample_event, test_db_session, clock
    ):
        event = sample_event(start_time=clock.now() + timedelta(minutes=10))
        calendar = CalendarReminderService(test_db_session, clock=clock)
        old = calendar.schedule_reminder(event)
        old_id = old.id
        calendar.queue.claim(old_id)
        calendar.reschedule_reminder(event.id, datetime(2026, 3, 11, 10, 0))
        clock.advance(minutes=20)

        dispatcher = make_dispatcher(fake_senders)
        with patch.object(
            dispatcher.calendar, "schedule_reminder",
            side_effect=OperationalError("INSERT", {}, Exception("database is locked")),
        ), patch("backend.src.services.delivery_dispatcher.logger") as mock_logger:
            summary = await dispatcher.run_cycle()

        assert summary.delivered == 1
        assert summary.failed == 0
        assert _item(test_db_session, old_id).status == QueueStatus.DELIVERED
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.kwargs["extra"] == {"event_id": event.id}


# ============================================================================
# Test: build_dispatch_cycle
# ============================================================================


class TestBuildDispatchCycle:

    @pytest.mark.asyncio
    async def test_cycle_with_default_senders(
        self, test_session_factory, clock, test_settings, sample_queue_item, test_db_session
    ):
        """Unconfigured push and email are skipped; in-app is delivered."""
        item = sample_queue_item()

        cycle = build_dispatch_cycle(test_session_factory, clock=clock, settings=test_settings)
        summary = await cycle()

        assert summary.delivered == 1
        logs = _logs(test_db_session, item.id)
        assert set(logs) == {DeliveryChannel.INAPP}
        assert _item(test_db_session, item.id).status == QueueStatus.DELIVERED


# ============================================================================
# Test: bounded concurrency
# ============================================================================


class InFlightCounter:
    """Shared tally of sends currently in progress across senders."""

    def __init__(self):
        self.current = 0
        self.peak = 0


class CountingSender(ChannelSender):
    """Sender that sleeps while counted as in flight."""

    def __init__(self, counter, delay):
        self.counter = counter
        self.delay = delay

    async def send(self, item):
        self.counter.current += 1
        self.counter.peak = max(self.counter.peak, self.counter.current)
        try:
            await asyncio.sleep(self.delay)
            return ChannelResult.sent()
        finally:
            self.counter.current -= 1


class TestBoundedConcurrency:

    @pytest.mark.asyncio
    async def test_batch_sends_run_together(
        self, make_dispatcher, sample_queue_item, test_db_session
    ):
        """A batch of slow items takes about one timeout, not one per item."""
        counter = InFlightCounter()
        senders = {
            name: CountingSender(counter, delay=0.3) for name in ("push", "email", "inapp")
        }
        items = [sample_queue_item() for _ in range(5)]
        dispatcher = make_dispatcher(
            senders, channel_send_timeout_seconds=0.2, max_concurrent_sends=50
        )

        loop = asyncio.get_running_loop()
        started = loop.time()
        summary = await dispatcher.run_cycle()
        elapsed = loop.time() - started

        assert counter.peak == 15
        assert elapsed < 0.6
        assert summary.delivered == 5
        for item in items:
            logs = _logs(test_db_session, item.id)
            assert {row.outcome for row in logs.values()} == {DeliveryOutcome.FAILED}

    @pytest.mark.asyncio
    async def test_semaphore_caps_sends_in_flight(
        self, make_dispatcher, sample_queue_item, test_db_session
    ):
        counter = InFlightCounter()
        senders = {
            name: CountingSender(counter, delay=0.02) for name in ("push", "email", "inapp")
        }
        items = [sample_queue_item() for _ in range(5)]

        summary = await make_dispatcher(senders, max_concurrent_sends=4).run_cycle()

        assert counter.peak == 4
        assert summary.delivered == 5
        for item in items:
            assert _item(test_db_session, item.id).status == QueueStatus.DELIVERED
