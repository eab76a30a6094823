"""
Service layer for the notification engine.

This module exports the service classes used by API endpoints and by other
features that produce notifications.
"""

from backend.src.services.exceptions import (
    ServiceError,
    NotFoundError,
    ValidationError,
    ChannelDeliveryError,
    PushGoneError,
)
from backend.src.services.preference_service import PreferenceService
from backend.src.services.notification_queue_service import NotificationQueueService
from backend.src.services.activity_service import ActivityService
from backend.src.services.push_subscription_service import PushSubscriptionService
# Producers
from backend.src.services.calendar_reminder_service import CalendarReminderService
from backend.src.services.quota_monitor import QuotaMonitor
from backend.src.services.behavioral_scanner import BehavioralScanner
# Delivery
from backend.src.services.delivery_dispatcher import DeliveryDispatcher
from backend.src.services.notification_service import NotificationService

__all__ = [
    "ServiceError",
    "NotFoundError",
    "ValidationError",
    "ChannelDeliveryError",
    "PushGoneError",
    "PreferenceService",
    "NotificationQueueService",
    "ActivityService",
    "PushSubscriptionService",
    # Producers
    "CalendarReminderService",
    "QuotaMonitor",
    "BehavioralScanner",
    # Delivery
    "DeliveryDispatcher",
    "NotificationService",
]
