"""
GUID mixin for SQLAlchemy models.

Provides UUID-based Global Unique Identifiers for entities referenced from
outside the engine (inbox links, calendar callbacks, push registrations).
Uses UUIDv7 (time-ordered) with Crockford's Base32 encoding for URL-safe,
human-readable identifiers.

GUID Format: {prefix}_{base32_uuid}
Examples:
    - ntf_01HGW2BBG0000000000000000 (NotificationQueueItem)
    - evt_01HGW2BBG0000000000000001 (CalendarEvent)
    - sub_01HGW2BBG0000000000000002 (NotificationSubscription)
"""

import uuid as uuid_module
from typing import ClassVar, Optional

import base32_crockford
from sqlalchemy import Column, Uuid
from uuid_extensions import uuid7


GUID_ENCODED_LENGTH = 26


def encode_guid(prefix: str, value: uuid_module.UUID) -> str:
    """Encode a UUID as {prefix}_{crockford base32}."""
    encoded = base32_crockford.encode(value.int)
    return f"{prefix}_{encoded.zfill(GUID_ENCODED_LENGTH).lower()}"


class GuidMixin:
    """
    Mixin providing GUID support for entities.

    Adds:
    - uuid: UUIDv7 column (time-ordered)
    - guid: Property returning the prefixed Base32 string
    - parse_guid: Class method decoding a GUID string back to a UUID

    Usage:
        class CalendarEvent(Base, GuidMixin):
            GUID_PREFIX = "evt"

    Entity Prefixes:
        - ntf: NotificationQueueItem
        - evt: CalendarEvent
        - sub: NotificationSubscription
    """

    # Subclasses define their 3-character prefix
    GUID_PREFIX: ClassVar[str]

    # Native UUID on PostgreSQL, CHAR(32) on SQLite
    uuid = Column(
        Uuid(),
        nullable=False,
        unique=True,
        index=True,
        default=uuid7,
    )

    @property
    def guid(self) -> Optional[str]:
        """GUID in format {prefix}_{base32_uuid}, or None before flush."""
        if self.uuid is None:
            return None
        return encode_guid(self.GUID_PREFIX, self.uuid)

    @classmethod
    def parse_guid(cls, guid: str) -> uuid_module.UUID:
        """
        Parse a GUID string to a UUID object.

        Raises:
            ValueError: If the GUID format is invalid or the prefix doesn't match
        """
        if not guid:
            raise ValueError("GUID cannot be empty")

        expected_prefix = f"{cls.GUID_PREFIX}_"
        if not guid.lower().startswith(expected_prefix):
            raise ValueError(
                f"Invalid prefix for {cls.__name__}. "
                f"Expected '{cls.GUID_PREFIX}', got '{guid.split('_')[0]}'"
            )

        encoded_part = guid[len(expected_prefix):]
        if len(encoded_part) != GUID_ENCODED_LENGTH:
            raise ValueError(
                f"Invalid GUID length. Expected {GUID_ENCODED_LENGTH} characters "
                f"after prefix, got {len(encoded_part)}"
            )

        try:
            uuid_int = base32_crockford.decode(encoded_part.upper())
            return uuid_module.UUID(bytes=uuid_int.to_bytes(16, "big"))
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid GUID encoding: {e}")
