"""
Unit tests for notifications API endpoints.

Tests preferences, inbox, activity and usage reporting, push subscriptions,
calendar events and the on-demand dispatcher cycle.
"""

from datetime import timedelta

from sqlalchemy.exc import OperationalError

from backend.src.models import (
    CalendarEvent,
    DeliveryLogEntry,
    NotificationClass,
    NotificationQueueItem,
    QueueStatus,
    UserActivity,
)


BASE = "/api/notifications"


def _enqueue_error():
    return OperationalError("INSERT", {}, Exception("database is locked"))


# ============================================================================
# Preferences
# ============================================================================


class TestPreferencesEndpoints:

    def test_get_defaults(self, test_client):
        response = test_client.get(f"{BASE}/preferences/user-1")

        assert response.status_code == 200
        data = response.json()
        assert data["owner_id"] == "user-1"
        assert data["calendar_reminder_minutes"] == 15
        assert data["quiet_hours_start"] == "22:00"
        assert data["timezone"] == "UTC"

    def test_update_then_get(self, test_client):
        response = test_client.put(
            f"{BASE}/preferences/user-1",
            json={"calendar_reminder_minutes": 5, "timezone": "Europe/London"},
        )
        assert response.status_code == 200
        assert response.json()["calendar_reminder_minutes"] == 5

        data = test_client.get(f"{BASE}/preferences/user-1").json()
        assert data["timezone"] == "Europe/London"
        assert data["push_enabled"] is True

    def test_update_invalid_lead_time(self, test_client):
        response = test_client.put(
            f"{BASE}/preferences/user-1",
            json={"calendar_reminder_minutes": 30},
        )
        assert response.status_code == 422


# ============================================================================
# Inbox
# ============================================================================


class TestInboxEndpoints:

    def test_inbox_and_mark_read(self, test_client, sample_queue_item, clock):
        item = sample_queue_item(
            status=QueueStatus.DELIVERED,
            title="Chemistry Tip",
            delivered_at=clock.now(),
        )
        sample_queue_item(status=QueueStatus.PENDING)

        data = test_client.get(f"{BASE}/inbox/user-1").json()
        assert data["unread_count"] == 1
        assert len(data["items"]) == 1
        entry = data["items"][0]
        assert entry["guid"] == item.guid
        assert entry["title"] == "Chemistry Tip"
        assert entry["is_read"] is False
        assert entry["delivered_at"].endswith("Z")

        response = test_client.post(f"{BASE}/{item.guid}/read")
        assert response.status_code == 200
        assert response.json() == {"recorded": True}

        response = test_client.post(f"{BASE}/{item.guid}/read")
        assert response.json() == {"recorded": False}

        data = test_client.get(f"{BASE}/inbox/user-1").json()
        assert data["unread_count"] == 0
        assert data["items"][0]["is_read"] is True

    def test_mark_read_unknown(self, test_client):
        response = test_client.post(f"{BASE}/ntf_00000000000000000000000000/read")
        assert response.status_code == 404

    def test_inbox_limit_validation(self, test_client):
        assert test_client.get(f"{BASE}/inbox/user-1?limit=0").status_code == 422


# ============================================================================
# Activity & usage
# ============================================================================


class TestActivityAndUsageEndpoints:

    def test_track_activity(self, test_client, test_db_session):
        response = test_client.post(f"{BASE}/activity", json={
            "owner_id": "user-1",
            "activity_type": "tutor_usage",
            "tutor_id": "chemistry",
        })

        assert response.status_code == 204
        assert test_db_session.query(UserActivity).count() == 1

    def test_track_activity_requires_tutor(self, test_client):
        response = test_client.post(f"{BASE}/activity", json={
            "owner_id": "user-1",
            "activity_type": "tutor_usage",
        })
        assert response.status_code == 422

    def test_usage_returns_warning_guid(self, test_client):
        response = test_client.post(f"{BASE}/usage", json={
            "owner_id": "user-1",
            "units_used": 95,
            "units_remaining": 5,
            "usage_kind": "chat_message",
        })

        assert response.status_code == 200
        assert response.json()["warning_guid"].startswith("ntf_")

        response = test_client.post(f"{BASE}/usage", json={
            "owner_id": "user-1",
            "units_used": 96,
            "units_remaining": 4,
            "usage_kind": "chat_message",
        })
        assert response.json()["warning_guid"] is None

    def test_usage_survives_queue_failure(self, test_client, mocker):
        mocker.patch(
            "backend.src.services.notification_queue_service.NotificationQueueService.enqueue",
            side_effect=_enqueue_error(),
        )

        response = test_client.post(f"{BASE}/usage", json={
            "owner_id": "user-1",
            "units_used": 95,
            "units_remaining": 5,
            "usage_kind": "chat_message",
        })

        assert response.status_code == 200
        assert response.json()["warning_guid"] is None

    def test_track_activity_survives_store_failure(self, test_client, mocker):
        mocker.patch(
            "backend.src.services.activity_service.ActivityService.track",
            side_effect=_enqueue_error(),
        )

        response = test_client.post(f"{BASE}/activity", json={
            "owner_id": "user-1",
            "activity_type": "upload",
        })

        assert response.status_code == 204


# ============================================================================
# Push subscriptions
# ============================================================================


class TestSubscriptionEndpoints:

    def test_subscribe_and_unsubscribe(self, test_client):
        body = {
            "owner_id": "user-1",
            "endpoint": "https://push.example.com/sub/1",
            "p256dh_key": "test-p256dh",
            "auth_key": "test-auth",
        }
        response = test_client.post(f"{BASE}/subscriptions", json=body)
        assert response.status_code == 201
        assert response.json()["guid"].startswith("sub_")
        assert response.json()["is_active"] is True

        response = test_client.request(
            "DELETE", f"{BASE}/subscriptions", json={"endpoint": body["endpoint"]}
        )
        assert response.status_code == 204

    def test_subscribe_rejects_http(self, test_client):
        response = test_client.post(f"{BASE}/subscriptions", json={
            "owner_id": "user-1",
            "endpoint": "http://push.example.com/sub/1",
            "p256dh_key": "k",
            "auth_key": "a",
        })
        assert response.status_code == 422

    def test_unsubscribe_unknown(self, test_client):
        response = test_client.request(
            "DELETE", f"{BASE}/subscriptions", json={"endpoint": "https://push.example.com/x"}
        )
        assert response.status_code == 404


# ============================================================================
# Calendar
# ============================================================================


class TestCalendarEndpoints:

    def test_create_event_schedules_reminder(self, test_client, test_db_session):
        response = test_client.post(f"{BASE}/calendar/events", json={
            "owner_id": "user-1",
            "title": "Mock exam",
            "start_time": "2026-03-10T14:00:00Z",
            "end_time": "2026-03-10T16:00:00Z",
            "event_type": "exam",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["guid"].startswith("evt_")
        assert data["reminder_scheduled"] is True
        assert data["start_time"] == "2026-03-10T14:00:00Z"

        reminder = (
            test_db_session.query(NotificationQueueItem)
            .filter(NotificationQueueItem.notification_class == NotificationClass.CALENDAR_REMINDER)
            .one()
        )
        assert reminder.guid == data["reminder_guid"]
        assert reminder.scheduled_for.isoformat() == "2026-03-10T13:45:00"

    def test_create_event_with_offset_is_normalized(self, test_client):
        response = test_client.post(f"{BASE}/calendar/events", json={
            "owner_id": "user-1",
            "title": "Revision",
            "start_time": "2026-03-10T15:00:00+01:00",
            "end_time": "2026-03-10T16:00:00+01:00",
        })
        assert response.json()["start_time"] == "2026-03-10T14:00:00Z"

    def test_end_before_start_rejected(self, test_client):
        response = test_client.post(f"{BASE}/calendar/events", json={
            "owner_id": "user-1",
            "title": "Backwards",
            "start_time": "2026-03-10T14:00:00Z",
            "end_time": "2026-03-10T13:00:00Z",
        })
        assert response.status_code == 422

    def test_create_event_survives_queue_failure(self, test_client, test_db_session, mocker):
        mocker.patch(
            "backend.src.services.notification_queue_service.NotificationQueueService.enqueue",
            side_effect=_enqueue_error(),
        )

        response = test_client.post(f"{BASE}/calendar/events", json={
            "owner_id": "user-1",
            "title": "Mock exam",
            "start_time": "2026-03-10T14:00:00Z",
            "end_time": "2026-03-10T16:00:00Z",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["reminder_scheduled"] is False
        assert data["reminder_guid"] is None
        assert test_db_session.query(CalendarEvent).count() == 1
        assert test_db_session.query(NotificationQueueItem).count() == 0

    def test_reschedule_survives_queue_failure(self, test_client, test_db_session, mocker):
        created = test_client.post(f"{BASE}/calendar/events", json={
            "owner_id": "user-1",
            "title": "Mock exam",
            "start_time": "2026-03-10T14:00:00Z",
            "end_time": "2026-03-10T16:00:00Z",
        }).json()
        mocker.patch(
            "backend.src.services.notification_queue_service.NotificationQueueService.enqueue",
            side_effect=_enqueue_error(),
        )

        response = test_client.post(
            f"{BASE}/calendar/events/{created['guid']}/reschedule",
            json={"new_start": "2026-03-11T09:00:00Z"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["start_time"] == "2026-03-11T09:00:00Z"
        assert data["reminder_guid"] is None

    def test_reschedule(self, test_client, test_db_session):
        created = test_client.post(f"{BASE}/calendar/events", json={
            "owner_id": "user-1",
            "title": "Mock exam",
            "start_time": "2026-03-10T14:00:00Z",
            "end_time": "2026-03-10T16:00:00Z",
        }).json()

        for _ in range(2):
            response = test_client.post(
                f"{BASE}/calendar/events/{created['guid']}/reschedule",
                json={"new_start": "2026-03-11T09:00:00Z"},
            )
            assert response.status_code == 200

        data = response.json()
        assert data["end_time"] == "2026-03-11T11:00:00Z"
        live = (
            test_db_session.query(NotificationQueueItem)
            .filter(NotificationQueueItem.status == QueueStatus.PENDING)
            .all()
        )
        assert len(live) == 1
        assert live[0].guid == data["reminder_guid"]

    def test_reschedule_unknown(self, test_client):
        response = test_client.post(
            f"{BASE}/calendar/events/evt_00000000000000000000000000/reschedule",
            json={"new_start": "2026-03-11T09:00:00Z"},
        )
        assert response.status_code == 404


# ============================================================================
# Dispatcher
# ============================================================================


class TestDispatchEndpoint:

    def test_run_dispatch_cycle(self, test_client, sample_queue_item, clock, test_db_session):
        item = sample_queue_item(scheduled_for=clock.now() - timedelta(minutes=1))

        response = test_client.post(f"{BASE}/dispatch/run")

        assert response.status_code == 200
        data = response.json()
        assert data["fetched"] == 1
        assert data["delivered"] == 1
        test_db_session.expire_all()
        assert test_db_session.get(NotificationQueueItem, item.id).status == QueueStatus.DELIVERED
        assert test_db_session.query(DeliveryLogEntry).count() == 1

    def test_run_dispatch_cycle_logs_summary(self, test_client, mocker):
        mock_logger = mocker.patch("backend.src.api.notifications.logger")

        response = test_client.post(f"{BASE}/dispatch/run")

        assert response.status_code == 200
        assert response.json()["fetched"] == 0
        mock_logger.info.assert_called_once()
        assert mock_logger.info.call_args.kwargs["extra"]["delivered"] == 0


class TestHealth:

    def test_health(self, test_client):
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["background_tasks"] == {}
