"""
Custom exceptions for service layer.

Provides specific exception types for business logic errors
that can be translated to appropriate HTTP responses.
"""

from typing import Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class ValidationError(ServiceError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class ChannelDeliveryError(ServiceError):
    """Raised by a channel sender when the transport rejects a send."""

    def __init__(self, channel: str, message: str, status_code: Optional[int] = None):
        self.channel = channel
        self.message = message
        self.status_code = status_code
        super().__init__(f"{channel} delivery failed: {message}")


class PushGoneError(ChannelDeliveryError):
    """Push endpoint is permanently invalid (HTTP 404 or 410)."""

    def __init__(self, endpoint: str, status_code: int):
        self.endpoint = endpoint
        super().__init__("push", f"endpoint gone ({status_code})", status_code)
