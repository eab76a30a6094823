"""
Configuration module for the notification engine backend.

Provides centralized configuration for:
- Channel transports (Web Push VAPID keys, email API)
- Recurring task cadences and dispatcher bounds
- Deduplication windows
"""

from backend.src.config.settings import AppSettings, get_settings

__all__ = [
    "AppSettings",
    "get_settings",
]
