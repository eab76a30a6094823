"""
Pytest configuration and fixtures for backend tests.

Provides shared fixtures for:
- Test database sessions
- A manual clock and test settings
- Sample data factories (preferences, events, activity, queue items)
- Fake channel senders
- FastAPI test client
"""

import os
import random
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['STUDYNOTIFY_DB_URL'] = 'sqlite:///:memory:'
os.environ['RUN_BACKGROUND_TASKS'] = 'false'

from backend.src.config.settings import get_settings
from backend.src.models import (
    ActivityType,
    Base,
    CalendarEvent,
    CalendarEventType,
    NotificationClass,
    NotificationIcon,
    NotificationPreferences,
    NotificationQueueItem,
    NotificationSubscription,
    QueueStatus,
    UserActivity,
)
from backend.src.services.channels import ChannelResult, ChannelSender
from backend.src.utils.time_utils import ManualClock


# Tuesday, outside the default 22:00-08:00 quiet hours
TEST_NOW = datetime(2026, 3, 10, 12, 0, 0)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    from sqlalchemy import event

    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # Enable foreign key constraints for SQLite
    # This must be set for each connection
    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute('pragma foreign_keys=ON')

    event.listen(engine, 'connect', _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_session_factory(test_db_engine):
    """Session factory bound to the test engine (for cycle builders)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture(scope='function')
def test_db_session(test_session_factory):
    """Create a test database session."""
    session = test_session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Utility Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def clock():
    """Manual clock pinned to TEST_NOW."""
    return ManualClock(TEST_NOW)


@pytest.fixture(scope='function')
def test_settings():
    """Default settings with a fast dispatcher and no transports configured."""
    return get_settings().model_copy(update={
        'vapid_public_key': '',
        'vapid_private_key': '',
        'vapid_subject': '',
        'email_api_key': '',
        'channel_send_timeout_seconds': 1.0,
    })


@pytest.fixture(scope='function')
def seeded_rng():
    return random.Random(1234)


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def sample_preferences(test_db_session):
    """Factory for storing NotificationPreferences rows."""
    def _create(owner_id='user-1', **overrides):
        prefs = NotificationPreferences(owner_id=owner_id, **overrides)
        test_db_session.add(prefs)
        test_db_session.commit()
        test_db_session.refresh(prefs)
        return prefs
    return _create


@pytest.fixture
def sample_event(test_db_session):
    """Factory for creating CalendarEvent rows."""
    def _create(
        owner_id='user-1',
        title='Organic Chemistry Revision',
        start_time=datetime(2026, 3, 10, 14, 0),
        duration_minutes=60,
        event_type=CalendarEventType.REVISION,
        subject='Chemistry',
    ):
        event = CalendarEvent(
            owner_id=owner_id,
            title=title,
            start_time=start_time,
            end_time=start_time + timedelta(minutes=duration_minutes),
            event_type=event_type,
            subject=subject,
        )
        test_db_session.add(event)
        test_db_session.commit()
        test_db_session.refresh(event)
        return event
    return _create


@pytest.fixture
def sample_activity(test_db_session):
    """Factory for appending UserActivity rows at a given instant."""
    def _create(owner_id='user-1', activity_type=None, created_at=TEST_NOW, **fields):
        activity = UserActivity(
            owner_id=owner_id,
            activity_type=activity_type or ActivityType.LOGIN,
            created_at=created_at,
            **fields,
        )
        test_db_session.add(activity)
        test_db_session.commit()
        test_db_session.refresh(activity)
        return activity
    return _create


@pytest.fixture
def sample_queue_item(test_db_session):
    """Factory for inserting NotificationQueueItem rows directly."""
    def _create(
        owner_id='user-1',
        notification_class=NotificationClass.SYSTEM,
        status=QueueStatus.PENDING,
        scheduled_for=TEST_NOW,
        created_at=TEST_NOW,
        deliver_via_push=True,
        deliver_via_email=True,
        deliver_via_inapp=True,
        **fields,
    ):
        item = NotificationQueueItem(
            owner_id=owner_id,
            notification_class=notification_class,
            status=status,
            scheduled_for=scheduled_for,
            created_at=created_at,
            updated_at=created_at,
            deliver_via_push=deliver_via_push,
            deliver_via_email=deliver_via_email,
            deliver_via_inapp=deliver_via_inapp,
            title=fields.pop('title', 'Test notification'),
            message=fields.pop('message', 'Test message'),
            icon_type=fields.pop('icon_type', NotificationIcon.INFO),
            **fields,
        )
        test_db_session.add(item)
        test_db_session.commit()
        test_db_session.refresh(item)
        return item
    return _create


@pytest.fixture
def sample_subscription(test_db_session):
    """Factory for creating push subscriptions."""
    _counter = [0]

    def _create(owner_id='user-1', endpoint=None, is_active=True):
        _counter[0] += 1
        sub = NotificationSubscription(
            owner_id=owner_id,
            endpoint=endpoint or f"https://push.example.com/sub/{_counter[0]}",
            p256dh_key="test-p256dh-key",
            auth_key="test-auth-key",
            is_active=is_active,
        )
        test_db_session.add(sub)
        test_db_session.commit()
        test_db_session.refresh(sub)
        return sub
    return _create


# ============================================================================
# Channel Fixtures
# ============================================================================

class FakeSender(ChannelSender):
    """Channel sender returning a fixed result, raising, or hanging."""

    def __init__(self, result=None, error=None, delay=None):
        self.result = result or ChannelResult.sent()
        self.error = error
        self.delay = delay
        self.sent_items = []

    async def send(self, item):
        import asyncio
        self.sent_items.append(item.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def make_sender():
    """Factory for FakeSender instances."""
    return FakeSender


@pytest.fixture
def fake_senders():
    """Fresh senders that succeed on every channel."""
    return {
        'push': FakeSender(),
        'email': FakeSender(),
        'inapp': FakeSender(),
    }


# ============================================================================
# API Fixtures
# ============================================================================

@pytest.fixture
def test_client(test_db_session, clock, test_settings):
    """Create a test client for FastAPI application."""
    from fastapi.testclient import TestClient
    from backend.src.main import app
    from backend.src.api.notifications import get_clock
    from backend.src.db.database import get_db

    # Override dependencies
    def get_test_db():
        try:
            yield test_db_session
        finally:
            pass

    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_settings] = lambda: test_settings

    with TestClient(app) as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()
