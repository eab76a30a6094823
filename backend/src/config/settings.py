"""
Application settings configuration for the notification engine.

Centralized settings loaded from environment variables.
"""

from functools import lru_cache
from typing import Dict

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


# Tutors checked by the behavioral scanner when KNOWN_TUTORS is not set
DEFAULT_KNOWN_TUTORS = (
    "arts:Arts & Literature,"
    "astrology:Astrology & Astronomy,"
    "business:Business Studies,"
    "chemistry:Chemistry,"
    "computer-science:Computer Science"
)


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment Variables:
        VAPID_PUBLIC_KEY: Web Push VAPID public key (Base64url-encoded)
        VAPID_PRIVATE_KEY: Web Push VAPID private key (Base64url-encoded)
        VAPID_SUBJECT: VAPID subject identifier (mailto: or https: URL)
        EMAIL_API_URL: Transactional email HTTP endpoint
        EMAIL_API_KEY: Bearer token for the email API (empty = email disabled)
        EMAIL_FROM: Sender address for notification emails
        DISPATCH_INTERVAL_SECONDS: Delivery dispatcher period (default: 60)
        DISPATCH_BATCH_SIZE: Due items fetched per dispatcher cycle (default: 50)
        CHANNEL_SEND_TIMEOUT_SECONDS: Upper bound for one channel send (default: 10)
        MAX_CONCURRENT_SENDS: Channel sends allowed in flight at once (default: 10)
        STALE_CLAIM_MINUTES: Age after which an in-progress claim is released (default: 15)
        SCAN_INTERVAL_SECONDS: Behavioral scanner period (default: 86400)
        BEHAVIORAL_DEDUP_HOURS: Suppression window for behavioral tips (default: 24)
        QUOTA_DEDUP_HOURS: Suppression window for quota warnings (default: 24)
        QUEUE_RETENTION_DAYS: Days to keep terminal queue items (default: 30)
        KNOWN_TUTORS: Comma-separated "id:Display Name" pairs
        RUN_BACKGROUND_TASKS: Start dispatcher and scanner with the app (default: True)
    """

    # VAPID settings for Web Push notifications
    vapid_public_key: str = Field(
        default="",
        validation_alias="VAPID_PUBLIC_KEY",
        description="Base64url-encoded VAPID public key for Web Push subscriptions"
    )

    vapid_private_key: str = Field(
        default="",
        validation_alias="VAPID_PRIVATE_KEY",
        description="Base64url-encoded VAPID private key for signing push messages"
    )

    vapid_subject: str = Field(
        default="",
        validation_alias="VAPID_SUBJECT",
        description="VAPID subject (mailto: or https: URL identifying the push sender)"
    )

    # Email delivery
    email_api_url: str = Field(
        default="https://api.resend.com/emails",
        validation_alias="EMAIL_API_URL",
    )

    email_api_key: str = Field(
        default="",
        validation_alias="EMAIL_API_KEY",
        description="Bearer token for the email API. Empty disables the email channel."
    )

    email_from: str = Field(
        default="notifications@example.com",
        validation_alias="EMAIL_FROM",
    )

    # Delivery dispatcher
    dispatch_interval_seconds: float = Field(
        default=60,
        validation_alias="DISPATCH_INTERVAL_SECONDS",
        gt=0,
    )

    dispatch_batch_size: int = Field(
        default=50,
        validation_alias="DISPATCH_BATCH_SIZE",
        ge=1,
        le=1000,
    )

    channel_send_timeout_seconds: float = Field(
        default=10,
        validation_alias="CHANNEL_SEND_TIMEOUT_SECONDS",
        gt=0,
    )

    max_concurrent_sends: int = Field(
        default=10,
        validation_alias="MAX_CONCURRENT_SENDS",
        ge=1,
    )

    stale_claim_minutes: int = Field(
        default=15,
        validation_alias="STALE_CLAIM_MINUTES",
        ge=1,
    )

    # Behavioral trigger scanner
    scan_interval_seconds: float = Field(
        default=24 * 60 * 60,
        validation_alias="SCAN_INTERVAL_SECONDS",
        gt=0,
    )

    behavioral_dedup_hours: int = Field(
        default=24,
        validation_alias="BEHAVIORAL_DEDUP_HOURS",
        ge=0,
    )

    quota_dedup_hours: int = Field(
        default=24,
        validation_alias="QUOTA_DEDUP_HOURS",
        ge=0,
    )

    queue_retention_days: int = Field(
        default=30,
        validation_alias="QUEUE_RETENTION_DAYS",
        ge=1,
    )

    known_tutors: str = Field(
        default=DEFAULT_KNOWN_TUTORS,
        validation_alias="KNOWN_TUTORS",
        description="Comma-separated id:name pairs of tutors checked for disuse"
    )

    run_background_tasks: bool = Field(
        default=True,
        validation_alias="RUN_BACKGROUND_TASKS",
    )

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("known_tutors")
    @classmethod
    def validate_known_tutors(cls, v: str) -> str:
        """Every entry must look like id:name."""
        for entry in v.split(","):
            entry = entry.strip()
            if entry and ":" not in entry:
                raise ValueError(f"KNOWN_TUTORS entry '{entry}' must be 'id:Display Name'")
        return v

    @property
    def vapid_configured(self) -> bool:
        """Check if VAPID keys are properly configured for Web Push."""
        return bool(self.vapid_public_key and self.vapid_private_key and self.vapid_subject)

    @property
    def email_configured(self) -> bool:
        return bool(self.email_api_url and self.email_api_key)

    @property
    def known_tutors_map(self) -> Dict[str, str]:
        """
        Get the tutors checked for disuse.

        Returns:
            Dict mapping tutor id to display name, in configured order
        """
        tutors: Dict[str, str] = {}
        for entry in self.known_tutors.split(","):
            if not entry.strip():
                continue
            tutor_id, _, name = entry.partition(":")
            tutors[tutor_id.strip()] = name.strip() or tutor_id.strip()
        return tutors


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings instance.

    Returns:
        AppSettings: Configured application settings from environment
    """
    return AppSettings()
